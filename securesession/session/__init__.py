from .backend import SessionBackend, InMemoryBackend
from .dynamodb import DynamoDBSessionBackend
from .handler import SessionHandler, SessionLocks, SessionStatus, generate_session_id
from .manager import SessionAccess, SessionManager
from .middleware import SessionMiddleware

__all__ = [
    "SessionBackend",
    "InMemoryBackend",
    "DynamoDBSessionBackend",
    "SessionHandler",
    "SessionLocks",
    "SessionStatus",
    "generate_session_id",
    "SessionAccess",
    "SessionManager",
    "SessionMiddleware",
]
