"""Session manager: values, flash messages, CSRF tokens and lifecycle.

The manager never copies the session. It works on ``handler.data``, the same
dict the handler fills from the backend on start and writes back on close.

Flash messages are two-phase: ``set_flash`` writes into a pending batch which
only becomes readable when the next manager loads the session, i.e. on the
request after a redirect. Reading a flash consumes it.
"""

from __future__ import annotations

import hmac
import logging
import random
import secrets
import time
from collections.abc import Callable, Mapping
from typing import Any, Protocol, runtime_checkable

from .. import audit
from ..config import Settings, resolve_settings
from ..exceptions import (
    ConfigRejected,
    DestroyFailure,
    HeadersAlreadySent,
    NotStarted,
    RegenerationFailure,
    StartFailure,
)
from .handler import SessionHandler

logger = logging.getLogger(__name__)

FLASH_KEY = "__flash"
FLASH_NEW_KEY = "__flash_new"
TOKEN_KEY = "_token"
TOKEN_TIMESTAMP_KEY = "_token_timestamp"
LAST_REGENERATION_KEY = "__last_regeneration"

FLASH_LIFETIME = 3600  # 1 hour
TOKEN_LIFETIME = 1800  # 30 minutes
REGENERATION_INTERVAL = 300  # 5 minutes
TOKEN_BYTES = 32


@runtime_checkable
class SessionAccess(Protocol):
    """Keyed access to session values."""

    def get(self, key: str, default: Any = None) -> Any: ...

    def set(self, key: str, value: Any) -> None: ...

    def has(self, key: str) -> bool: ...

    def delete(self, key: str) -> None: ...


def _now() -> int:
    return int(time.time())


def _is_timestamp(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


class SessionManager:
    """Facade over one client's session.

    Args:
        handler: The per-request session mechanism.
        config: ``None`` for process settings, a ``Settings`` instance, or a
            mapping of overrides merged over the process settings.
        clock: Returns the current time in whole seconds.
        random_bytes: Returns ``n`` cryptographically secure bytes.
        rng: Returns a float in [0, 1); drives probabilistic gc.

    Raises:
        ConfigRejected: ``config`` tries to disable a mandatory option.
    """

    def __init__(
        self,
        handler: SessionHandler,
        config: Settings | Mapping[str, Any] | None = None,
        *,
        clock: Callable[[], int] | None = None,
        random_bytes: Callable[[int], bytes] | None = None,
        rng: Callable[[], float] | None = None,
    ) -> None:
        try:
            self.settings = resolve_settings(config)
        except ConfigRejected as e:
            audit.session_event(
                activity_id=audit.SessionActivity.CONFIGURE,
                status_id=audit.Status.FAILURE,
                severity_id=audit.Severity.HIGH,
                message=e.message,
                extra_metadata={"option": e.option},
            )
            raise
        self._handler = handler
        self._session = handler.data
        self._clock = clock or _now
        self._random_bytes = random_bytes or secrets.token_bytes
        self._rng = rng or random.random
        self._started = False
        self._destroyed = False
        self._flash_loaded = False
        self.last_regeneration: int | None = None
        self._apply_config()

    def _apply_config(self) -> None:
        # Cookie parameters cannot change under a live session.
        if self._handler.active:
            logger.debug("Session already active, keeping its configuration")
            return
        self._handler.configure(self.settings)

    @property
    def is_started(self) -> bool:
        return self._started

    @property
    def is_destroyed(self) -> bool:
        return self._destroyed

    @property
    def session_id(self) -> str | None:
        return self._handler.session_id

    def _require_started(self, operation: str) -> None:
        if not self._started:
            raise NotStarted(operation)

    def _audit(self, activity_id: int, status_id: int, severity_id: int, message: str, **metadata: Any) -> None:
        audit.session_event(
            activity_id=activity_id,
            status_id=status_id,
            severity_id=severity_id,
            session_id=self._handler.session_id,
            hash_function=self.settings.hash_function,
            message=message,
            extra_metadata=metadata or None,
        )

    # ── Lifecycle ─────────────────────────────────────────────────────────

    async def start(self) -> None:
        """Start the session.

        No-op if this manager already started it. After a successful start
        the flash batches are loaded, the id is rotated if it is older than
        ``REGENERATION_INTERVAL`` and a probabilistic gc pass runs.

        Raises:
            HeadersAlreadySent: The response has begun; cookies can't be set.
            StartFailure: The mechanism failed, or the session was destroyed.
            RegenerationFailure: The scheduled id rotation failed.
        """
        if self._started:
            return
        if self._destroyed:
            raise StartFailure("Session was destroyed")
        if self._handler.headers_sent:
            raise HeadersAlreadySent("Cannot start session: response headers already sent")

        try:
            ok = await self._handler.start(
                use_strict_mode=True,
                cookie_httponly=True,
                cookie_secure=True,
            )
        except Exception as e:
            logger.error("Session start failed: %s", e)
            self._audit(
                audit.SessionActivity.START,
                audit.Status.FAILURE,
                audit.Severity.MEDIUM,
                f"Session start failed: {e}",
            )
            raise StartFailure(f"Session start failed: {e}") from e
        if not ok:
            raise StartFailure("Session start failed")

        self._started = True
        self._audit(
            audit.SessionActivity.START,
            audit.Status.SUCCESS,
            audit.Severity.INFORMATIONAL,
            "Session started",
        )
        self._load_flash_data()
        await self._check_regenerate_id()
        await self.gc()

    async def _check_regenerate_id(self) -> None:
        now = self._clock()
        if self.last_regeneration is None:
            mirrored = self._session.get(LAST_REGENERATION_KEY)
            if _is_timestamp(mirrored):
                self.last_regeneration = int(mirrored)
        if self.last_regeneration is None or now - self.last_regeneration > REGENERATION_INTERVAL:
            await self.regenerate_id()
            self.last_regeneration = now
            self._session[LAST_REGENERATION_KEY] = now

    async def regenerate_id(self, delete_old_session: bool = True) -> None:
        """Move the session to a fresh id.

        With ``delete_old_session`` the old record is deleted immediately, so
        a concurrent request still holding the old id starts a new session.
        """
        self._require_started("regenerate the session id")
        old_fp = audit.fingerprint(self._handler.session_id, self.settings.hash_function)
        try:
            ok = await self._handler.regenerate_id(delete_old_session)
        except Exception as e:
            logger.error("Session id regeneration failed: %s", e)
            raise RegenerationFailure(f"Session id regeneration failed: {e}") from e
        if not ok:
            raise RegenerationFailure("Session id regeneration failed")
        self._audit(
            audit.SessionActivity.ROTATE,
            audit.Status.SUCCESS,
            audit.Severity.INFORMATIONAL,
            "Session id rotated",
            previous=old_fp,
            deleted_old=delete_old_session,
        )

    async def close_write(self) -> bool:
        """Persist the session and release its write lock.

        Returns False, leaving the session started, if the write fails.
        """
        if not self._started:
            return True
        try:
            ok = await self._handler.write_close()
        except Exception:
            logger.exception(
                "Failed to write session %s",
                audit.fingerprint(self._handler.session_id, self.settings.hash_function),
            )
            ok = False
        if not ok:
            self._audit(
                audit.SessionActivity.CLOSE,
                audit.Status.FAILURE,
                audit.Severity.MEDIUM,
                "Session write failed",
            )
            return False
        self._started = False
        return True

    def abort(self) -> None:
        """Release the session without saving changes made since start."""
        if self._started:
            self._handler.abort()
            self._started = False

    async def release(self) -> bool:
        """Close the session if active; abort it if the write fails.

        Whatever happens the write lock is released.
        """
        if not self._started:
            return True
        if await self.close_write():
            return True
        logger.warning("Session write failed, discarding changes")
        self.abort()
        return False

    async def gc(self, force: bool = False) -> bool:
        """Best-effort removal of expired sessions store-wide. Never raises."""
        if not self._started:
            return False
        if not force and self._rng() >= self.settings.gc_chance:
            return True
        try:
            removed = await self._handler.gc()
        except Exception:
            logger.exception("Session garbage collection failed")
            return False
        logger.debug("Session gc removed %d sessions", removed)
        if removed:
            self._audit(
                audit.SessionActivity.GC,
                audit.Status.SUCCESS,
                audit.Severity.INFORMATIONAL,
                f"Garbage collected {removed} sessions",
            )
        return True

    async def destroy(self) -> None:
        """Wipe the session and expire its cookie.

        The cookie is expired even if no session was started. A destroyed
        manager cannot be started again.

        Raises:
            DestroyFailure: The stored record could not be deleted.
        """
        try:
            if self._started:
                session_fp = audit.fingerprint(self._handler.session_id, self.settings.hash_function)
                self._session.clear()
                try:
                    ok = await self._handler.destroy()
                except Exception as e:
                    logger.error("Session destroy failed: %s", e)
                    raise DestroyFailure(f"Session destroy failed: {e}") from e
                if not ok:
                    raise DestroyFailure("Session destroy failed")
                self._started = False
                audit.session_event(
                    activity_id=audit.SessionActivity.DESTROY,
                    status_id=audit.Status.SUCCESS,
                    severity_id=audit.Severity.INFORMATIONAL,
                    message="Session destroyed",
                    extra_metadata={"session": {"fingerprint": session_fp}},
                )
            self._destroyed = True
        finally:
            self._handler.expire_cookie()

    async def __aenter__(self) -> SessionManager:
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.release()

    # ── Values ────────────────────────────────────────────────────────────

    def set(self, key: str, value: Any) -> None:
        self._require_started("write to the session")
        self._session[key] = value

    def get(self, key: str, default: Any = None) -> Any:
        self._require_started("read from the session")
        return self._session.get(key, default)

    def has(self, key: str) -> bool:
        self._require_started("read from the session")
        return key in self._session

    def delete(self, key: str) -> None:
        self._require_started("write to the session")
        self._session.pop(key, None)

    def clear(self) -> None:
        self._require_started("write to the session")
        self._session.clear()

    def all(self) -> dict[str, Any]:
        """Shallow copy of everything in the session, bookkeeping included."""
        self._require_started("read from the session")
        return dict(self._session)

    # ── CSRF ──────────────────────────────────────────────────────────────

    def _token_expired(self, now: int) -> bool:
        issued = self._session.get(TOKEN_TIMESTAMP_KEY)
        return not _is_timestamp(issued) or now - issued > TOKEN_LIFETIME

    def token(self) -> str:
        """Current CSRF token; a new one is minted when absent or expired."""
        self._require_started("issue a CSRF token")
        now = self._clock()
        token = self._session.get(TOKEN_KEY)
        if not token or self._token_expired(now):
            token = self._random_bytes(TOKEN_BYTES).hex()
            self._session[TOKEN_KEY] = token
            self._session[TOKEN_TIMESTAMP_KEY] = now
        return token

    def validate_token(self, candidate: Any) -> bool:
        self._require_started("validate a CSRF token")
        token = self._session.get(TOKEN_KEY)
        if not token or not isinstance(candidate, str):
            return False
        if self._token_expired(self._clock()):
            return False
        return hmac.compare_digest(token.encode(), candidate.encode())

    # ── Flash messages ────────────────────────────────────────────────────

    @staticmethod
    def _flash_expired(entry: Any, now: int) -> bool:
        stamp = entry.get("timestamp") if isinstance(entry, dict) else None
        return not _is_timestamp(stamp) or now - stamp > FLASH_LIFETIME

    def _load_flash_data(self) -> None:
        if self._flash_loaded:
            return
        self._flash_loaded = True
        now = self._clock()
        active = self._session.get(FLASH_KEY) or {}
        pending = self._session.pop(FLASH_NEW_KEY, None) or {}
        merged = {
            key: entry
            for key, entry in {**active, **pending}.items()
            if not self._flash_expired(entry, now)
        }
        if merged:
            self._session[FLASH_KEY] = merged
        else:
            self._session.pop(FLASH_KEY, None)

    def set_flash(self, key: str, value: Any, type: str = "info") -> None:
        """Queue a flash message for the next request."""
        self._require_started("set a flash message")
        pending = self._session.setdefault(FLASH_NEW_KEY, {})
        pending[key] = {"value": value, "type": type, "timestamp": self._clock()}

    def get_flash(self, key: str, default: Any = None) -> Any:
        """Consume a flash message. Expired or missing messages yield default."""
        self._require_started("read a flash message")
        active = self._session.get(FLASH_KEY)
        if not active or key not in active:
            return default
        entry = active.pop(key)
        if not active:
            del self._session[FLASH_KEY]
        if self._flash_expired(entry, self._clock()):
            return default
        return entry.get("value")

    def has_flash(self, key: str, type: str | None = None) -> bool:
        self._require_started("read a flash message")
        active = self._session.get(FLASH_KEY)
        if not active or key not in active:
            return False
        entry = active[key]
        if self._flash_expired(entry, self._clock()):
            del active[key]
            if not active:
                del self._session[FLASH_KEY]
            return False
        return type is None or entry.get("type") == type
