"""Per-request session mechanism.

A ``SessionHandler`` owns everything the session manager treats as the host's
job: the session id, the per-id write lock, the round-trip to the backend,
the session cookie and the cache headers sent with session responses. One
handler is created per request by ``SessionMiddleware``.
"""

from __future__ import annotations

import asyncio
import logging
import secrets
import time
from email.utils import formatdate
from enum import Enum
from typing import Any

from itsdangerous import URLSafeTimedSerializer

from ..audit import fingerprint
from ..config import Settings, get_settings
from .backend import SessionBackend

logger = logging.getLogger(__name__)

_ALPHABETS = {
    4: "0123456789abcdef",
    5: "0123456789abcdefghijklmnopqrstuv",
    6: "0123456789abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ,-",
}

_NOCACHE_EXPIRES = "Thu, 19 Nov 1981 08:52:00 GMT"
_COOKIE_EPOCH = "Thu, 01 Jan 1970 00:00:01 GMT"


def generate_session_id(length: int = 64, bits_per_character: int = 5) -> str:
    """Random session id drawn from a 2**bits_per_character alphabet."""
    alphabet = _ALPHABETS[bits_per_character]
    return "".join(secrets.choice(alphabet) for _ in range(length))


def cache_headers_for(settings: Settings) -> list[tuple[str, str]]:
    """Response headers implied by the configured cache limiter."""
    max_age = settings.cache_expire * 60
    limiter = settings.cache_limiter
    if limiter == "nocache":
        return [
            ("expires", _NOCACHE_EXPIRES),
            ("cache-control", "no-store, no-cache, must-revalidate"),
            ("pragma", "no-cache"),
        ]
    if limiter == "private":
        return [
            ("expires", _NOCACHE_EXPIRES),
            ("cache-control", f"private, max-age={max_age}"),
        ]
    if limiter == "private_no_expire":
        return [("cache-control", f"private, max-age={max_age}")]
    if limiter == "public":
        return [
            ("expires", formatdate(time.time() + max_age, usegmt=True)),
            ("cache-control", f"public, max-age={max_age}"),
        ]
    return []


class SessionStatus(Enum):
    NONE = "none"
    ACTIVE = "active"


class SessionLocks:
    """Write locks keyed by session id.

    Share one instance between all requests of a process so that requests
    carrying the same id run their session sections one at a time.
    """

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}

    async def acquire(self, session_id: str) -> None:
        lock = self._locks.get(session_id)
        if lock is None:
            lock = self._locks[session_id] = asyncio.Lock()
        self._users[session_id] = self._users.get(session_id, 0) + 1
        try:
            await lock.acquire()
        except BaseException:
            self._forget(session_id)
            raise

    def release(self, session_id: str) -> None:
        lock = self._locks.get(session_id)
        if lock is None or not lock.locked():
            return
        lock.release()
        self._forget(session_id)

    def locked(self, session_id: str) -> bool:
        lock = self._locks.get(session_id)
        return lock is not None and lock.locked()

    def _forget(self, session_id: str) -> None:
        remaining = self._users.get(session_id, 0) - 1
        if remaining <= 0:
            self._users.pop(session_id, None)
            self._locks.pop(session_id, None)
        else:
            self._users[session_id] = remaining


class SessionHandler:
    """The session mechanism for a single request.

    ``data`` is the live session mapping. It is refilled in place on every
    ``start()`` so holders of the reference always see the current session.
    Methods return ``False`` when the session is not in a state where the
    operation applies; backend errors propagate to the caller.
    """

    def __init__(
        self,
        backend: SessionBackend,
        settings: Settings | None = None,
        *,
        session_id: str | None = None,
        signer: URLSafeTimedSerializer | None = None,
        locks: SessionLocks | None = None,
        data: dict[str, Any] | None = None,
    ) -> None:
        self.backend = backend
        self.settings = settings or get_settings()
        self.requested_id = session_id
        self.session_id: str | None = None
        self.data: dict[str, Any] = data if data is not None else {}
        self.status = SessionStatus.NONE
        self.headers_sent = False
        self._signer = signer
        self._locks = locks or SessionLocks()
        self._client_id = session_id
        self._pending_cookie: str | None = None
        self._cache_headers: list[tuple[str, str]] = []

    @property
    def active(self) -> bool:
        return self.status is SessionStatus.ACTIVE

    def configure(self, settings: Settings) -> bool:
        if self.active:
            return False
        self.settings = settings
        return True

    def _fingerprint(self, session_id: str | None) -> str | None:
        return fingerprint(session_id, self.settings.hash_function)

    # ── Lifecycle ─────────────────────────────────────────────────────────

    async def start(self, **overrides: Any) -> bool:
        if self.active:
            return True
        settings = self.settings.model_copy(update=overrides) if overrides else self.settings

        session_id = self.session_id or self.requested_id
        data: dict[str, Any] | None = None
        if session_id:
            await self._locks.acquire(session_id)
            try:
                data = await self.backend.load(session_id)
            except BaseException:
                self._locks.release(session_id)
                raise
            if data is None and settings.use_strict_mode:
                logger.info("Rejecting uninitialized session id %s", self._fingerprint(session_id))
                self._locks.release(session_id)
                session_id = None

        if session_id is None:
            session_id = generate_session_id(settings.sid_length, settings.sid_bits_per_character)
            await self._locks.acquire(session_id)

        if session_id != self._client_id:
            self._set_cookie(session_id)

        self.session_id = session_id
        self.data.clear()
        self.data.update(data or {})
        self.status = SessionStatus.ACTIVE
        self._cache_headers = cache_headers_for(settings)
        return True

    async def write_close(self) -> bool:
        if not self.active:
            return False
        await self.backend.save(self.session_id, dict(self.data))
        self._locks.release(self.session_id)
        self.status = SessionStatus.NONE
        return True

    def abort(self) -> bool:
        """Release the session without saving changes."""
        if not self.active:
            return False
        self._locks.release(self.session_id)
        self.status = SessionStatus.NONE
        return True

    async def regenerate_id(self, delete_old: bool = True) -> bool:
        if not self.active:
            return False
        old_id = self.session_id
        new_id = generate_session_id(self.settings.sid_length, self.settings.sid_bits_per_character)
        await self._locks.acquire(new_id)
        try:
            if delete_old:
                await self.backend.delete(old_id)
            else:
                await self.backend.save(old_id, dict(self.data))
        except BaseException:
            self._locks.release(new_id)
            raise
        self._locks.release(old_id)
        self.session_id = new_id
        self._set_cookie(new_id)
        return True

    async def destroy(self) -> bool:
        if not self.active:
            return False
        await self.backend.delete(self.session_id)
        self._locks.release(self.session_id)
        self.status = SessionStatus.NONE
        self.session_id = None
        self.requested_id = None
        self.data.clear()
        return True

    async def gc(self) -> int:
        return await self.backend.gc(self.settings.gc_maxlifetime)

    # ── Cookie transport ──────────────────────────────────────────────────

    def make_cookie(self, value: str, *, expire: bool = False) -> str:
        s = self.settings
        parts = [f"{s.cookie_name}={value}"]
        if expire:
            parts += ["Max-Age=0", f"Expires={_COOKIE_EPOCH}"]
        elif s.cookie_lifetime:
            parts.append(f"Max-Age={s.cookie_lifetime}")
        parts.append(f"Path={s.cookie_path}")
        if s.cookie_domain:
            parts.append(f"Domain={s.cookie_domain}")
        if s.cookie_secure:
            parts.append("Secure")
        if s.cookie_httponly:
            parts.append("HttpOnly")
        parts.append(f"SameSite={s.cookie_samesite}")
        return "; ".join(parts)

    def _set_cookie(self, session_id: str) -> None:
        value = self._signer.dumps(session_id) if self._signer else session_id
        self._pending_cookie = self.make_cookie(value)
        self._client_id = session_id

    def expire_cookie(self) -> bool:
        """Queue a cookie that makes the client forget its session id."""
        if self.headers_sent:
            logger.warning("Cannot expire session cookie: headers already sent")
            return False
        self._pending_cookie = self.make_cookie("", expire=True)
        self._client_id = None
        return True

    def pop_cookie(self) -> str | None:
        cookie, self._pending_cookie = self._pending_cookie, None
        return cookie

    def cache_headers(self) -> list[tuple[str, str]]:
        return list(self._cache_headers)
