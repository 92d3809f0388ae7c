"""Server-side sessions with flash messages, CSRF tokens and id rotation."""

from .config import Settings, get_settings, override_settings
from .exceptions import (
    ConfigRejected,
    DestroyFailure,
    HeadersAlreadySent,
    NotStarted,
    RegenerationFailure,
    SessionError,
    StartFailure,
)
from .session import InMemoryBackend, SessionHandler, SessionManager, SessionMiddleware

__version__ = "0.3.0"

__all__ = [
    "Settings",
    "get_settings",
    "override_settings",
    "SessionError",
    "ConfigRejected",
    "HeadersAlreadySent",
    "StartFailure",
    "RegenerationFailure",
    "DestroyFailure",
    "NotStarted",
    "InMemoryBackend",
    "SessionHandler",
    "SessionManager",
    "SessionMiddleware",
]
