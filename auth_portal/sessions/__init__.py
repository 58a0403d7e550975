"""
Sessions Package

Server-side session storage keyed by an opaque identifier carried in the
session cookie.

Usage:
------
    from auth_portal.sessions import SessionManager, MemoryStorage
    sessions = SessionManager(storage=MemoryStorage())
"""

from .store import MemoryStorage, Session, SessionManager, SessionStorage, generate_session_id

__all__ = [
    "MemoryStorage",
    "Session",
    "SessionManager",
    "SessionStorage",
    "generate_session_id",
]
