"""
Server-side Session Store
=========================

Keeps per-browser session state on the server. The browser only holds an
opaque session identifier in a cookie; the named fields (``profile``,
``id_token``, ``access_token``, ...) live in a pluggable storage backend.

Components:
    - SessionStorage: async key-value contract a backend has to fulfil
    - MemoryStorage:  in-process backend with a sliding expiry window
    - Session:        request-local view of one session's fields
    - SessionManager: resolves sessions from requests and issues cookies

Field mutations are made on the request-local ``Session`` and only become
visible to other requests once ``SessionManager.save`` has run.
"""

import asyncio
import json
import logging
import time
import uuid
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Iterator, Optional, Tuple

from fastapi import Request, Response

from ..config import Settings
from ..errors import SessionStoreError
from ..models import SessionCookieConfig

logger = logging.getLogger(__name__)


def generate_session_id() -> str:
    """Random UUID4 string, unguessable and opaque to the browser."""
    return str(uuid.uuid4())


# =============================================================================
# Storage Backends
# =============================================================================

class SessionStorage(ABC):
    """
    Key-value contract for session backends.

    Backends are expected to serialise concurrent writes to the same key
    themselves; this layer does no locking of its own.
    """

    @abstractmethod
    async def get(self, key: str) -> Optional[Dict[str, Any]]:
        """Return the stored fields, or None when the key is unknown or expired."""

    @abstractmethod
    async def set(self, key: str, value: Dict[str, Any], expires_in: int) -> None:
        """Store the fields under key for expires_in seconds."""

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Forget key. Unknown keys are ignored."""

    @abstractmethod
    async def reset(self) -> None:
        """Drop every stored session."""


class MemoryStorage(SessionStorage):
    """
    In-process session backend.

    Values are stored JSON-encoded so that only plain data ends up in a
    session, the same restriction a networked backend would impose.
    Expired entries are dropped when read and by ``purge_expired``.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._entries: Dict[str, Tuple[float, str]] = {}
        self._lock = asyncio.Lock()
        self._clock = clock

    async def get(self, key: str) -> Optional[Dict[str, Any]]:
        async with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            expires_at, raw = entry
            if expires_at <= self._clock():
                del self._entries[key]
                return None

        try:
            return json.loads(raw)
        except ValueError as e:
            raise SessionStoreError(f"Corrupt session data for key {key}: {e}") from e

    async def set(self, key: str, value: Dict[str, Any], expires_in: int) -> None:
        try:
            raw = json.dumps(value)
        except (TypeError, ValueError) as e:
            raise SessionStoreError(f"Session data is not serialisable: {e}") from e

        async with self._lock:
            self._entries[key] = (self._clock() + expires_in, raw)

    async def delete(self, key: str) -> None:
        async with self._lock:
            self._entries.pop(key, None)

    async def reset(self) -> None:
        async with self._lock:
            self._entries.clear()

    async def purge_expired(self) -> int:
        """
        Remove every expired entry.

        Returns:
            Number of entries removed
        """
        async with self._lock:
            now = self._clock()
            expired = [key for key, (expires_at, _) in self._entries.items() if expires_at <= now]
            for key in expired:
                del self._entries[key]

        if expired:
            logger.debug(f"Purged {len(expired)} expired sessions")
        return len(expired)

    def __len__(self) -> int:
        return len(self._entries)


# =============================================================================
# Session
# =============================================================================

class Session:
    """Request-local view of one session. Changes persist on save()."""

    def __init__(self, manager: "SessionManager", session_id: str, data: Dict[str, Any], fresh: bool):
        self._manager = manager
        self._id = session_id
        self._data = data
        self._fresh = fresh

    @property
    def id(self) -> str:
        return self._id

    @property
    def fresh(self) -> bool:
        """True until the session has been saved at least once."""
        return self._fresh

    def get(self, key: str, default: Any = None) -> Any:
        return self._data.get(key, default)

    def set(self, key: str, value: Any) -> None:
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self) -> Iterator[str]:
        return iter(list(self._data.keys()))

    def reset(self) -> None:
        """Clear every field."""
        self._data.clear()

    def to_dict(self) -> Dict[str, Any]:
        return dict(self._data)

    async def save(self, response: Response) -> None:
        await self._manager.save(self, response)

    async def destroy(self, response: Response) -> None:
        await self._manager.destroy(self, response)

    def __contains__(self, key: str) -> bool:
        return key in self._data

    def __repr__(self) -> str:
        return f"Session(id={self._id!r}, fresh={self._fresh}, keys={sorted(self._data)})"


# =============================================================================
# Session Manager
# =============================================================================

class SessionManager:
    """
    Binds sessions to requests through the session cookie.

    Args:
        storage: Backend holding the session fields (MemoryStorage by default)
        cookie: Cookie attributes and inactivity window
        key_generator: Produces new session identifiers
    """

    def __init__(
        self,
        storage: Optional[SessionStorage] = None,
        cookie: Optional[SessionCookieConfig] = None,
        key_generator: Callable[[], str] = generate_session_id,
    ):
        self.storage = storage if storage is not None else MemoryStorage()
        self.cookie = cookie or SessionCookieConfig()
        self._key_generator = key_generator

    @classmethod
    def from_settings(cls, settings: Settings, storage: Optional[SessionStorage] = None) -> "SessionManager":
        return cls(storage=storage, cookie=SessionCookieConfig.from_settings(settings))

    async def get(self, request: Request) -> Session:
        """
        Resolve the session bound to the request cookie.

        A missing cookie, or one naming a session the backend does not know
        (expired, destroyed, never issued), yields a fresh empty session
        with a newly generated identifier.

        Raises:
            SessionStoreError: If the backend fails
        """
        cookie_id = request.cookies.get(self.cookie.name)

        if cookie_id:
            data = await self._call_backend("load", self.storage.get, cookie_id)
            if data is not None:
                return Session(self, cookie_id, data, fresh=False)
            logger.debug("Session cookie names no stored session, issuing a new one")

        return Session(self, self._key_generator(), {}, fresh=True)

    async def save(self, session: Session, response: Response) -> None:
        """
        Persist the session fields and (re)issue the session cookie.

        Raises:
            SessionStoreError: If the backend fails or the data is not storable
        """
        await self._call_backend(
            "save",
            self.storage.set,
            session.id,
            session.to_dict(),
            self.cookie.expiration_seconds,
        )
        session._fresh = False

        response.set_cookie(
            key=self.cookie.name,
            value=session.id,
            max_age=self.cookie.expiration_seconds,
            expires=self.cookie.expiration_seconds,
            path=self.cookie.path,
            domain=self.cookie.domain,
            secure=self.cookie.secure,
            httponly=self.cookie.http_only,
            samesite=self.cookie.same_site,
        )

    async def destroy(self, session: Session, response: Response) -> None:
        """
        Remove the stored session, clear its fields and expire the cookie.

        Raises:
            SessionStoreError: If the backend fails
        """
        await self._call_backend("destroy", self.storage.delete, session.id)
        session.reset()

        response.delete_cookie(
            key=self.cookie.name,
            path=self.cookie.path,
            domain=self.cookie.domain,
            secure=self.cookie.secure,
            httponly=self.cookie.http_only,
            samesite=self.cookie.same_site,
        )

    async def _call_backend(self, operation: str, func, *args):
        try:
            return await func(*args)
        except SessionStoreError:
            raise
        except Exception as e:
            logger.error(f"Session backend failed to {operation}: {e}", exc_info=True)
            raise SessionStoreError(f"Session backend failed to {operation} session: {e}") from e


__all__ = [
    "SessionStorage",
    "MemoryStorage",
    "Session",
    "SessionManager",
    "generate_session_id",
]
