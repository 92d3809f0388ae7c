"""Session storage backends."""

from __future__ import annotations

import copy
import time
from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class SessionBackend(Protocol):
    """Protocol for server-side session storage."""

    async def load(self, session_id: str) -> dict[str, Any] | None:
        """Load session data by ID. Returns None if not found or expired."""
        ...

    async def save(self, session_id: str, data: dict[str, Any]) -> None:
        """Save session data and refresh its last-modified time."""
        ...

    async def delete(self, session_id: str) -> None:
        """Delete a session."""
        ...

    async def gc(self, max_lifetime: int) -> int:
        """Delete sessions idle for more than max_lifetime seconds.

        Returns the number of sessions removed.
        """
        ...


class InMemoryBackend:
    """In-memory session backend for development/testing.

    Not suitable for production: sessions are lost on restart and not
    shared across processes.
    """

    def __init__(self, max_age: int = 1440) -> None:
        self._store: dict[str, tuple[dict[str, Any], float]] = {}
        self._max_age = max_age

    async def load(self, session_id: str) -> dict[str, Any] | None:
        entry = self._store.get(session_id)
        if entry is None:
            return None
        data, updated = entry
        if time.time() - updated > self._max_age:
            del self._store[session_id]
            return None
        return copy.deepcopy(data)

    async def save(self, session_id: str, data: dict[str, Any]) -> None:
        self._store[session_id] = (copy.deepcopy(data), time.time())

    async def delete(self, session_id: str) -> None:
        self._store.pop(session_id, None)

    async def gc(self, max_lifetime: int) -> int:
        cutoff = time.time() - max_lifetime
        expired = [sid for sid, (_, updated) in self._store.items() if updated < cutoff]
        for sid in expired:
            del self._store[sid]
        return len(expired)
