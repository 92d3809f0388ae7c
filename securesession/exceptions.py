"""Session lifecycle errors.

Only fatal conditions raise. Lookups (``get``, ``get_flash``, ``validate_token``)
return defaults instead, and ``gc``/``close_write`` report failure as ``False``.
"""

from __future__ import annotations

from enum import Enum


class ErrorCode(str, Enum):
    CONFIG_REJECTED = "CONFIG_REJECTED"
    HEADERS_ALREADY_SENT = "HEADERS_ALREADY_SENT"
    START_FAILURE = "START_FAILURE"
    REGENERATION_FAILURE = "REGENERATION_FAILURE"
    DESTROY_FAILURE = "DESTROY_FAILURE"
    NOT_STARTED = "NOT_STARTED"


class SessionError(Exception):
    """Base class for all session errors.

    Attributes:
        message: Human-readable error message.
        error_code: Machine-readable code from ``ErrorCode``.
    """

    error_code: ErrorCode

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ConfigRejected(SessionError):
    """A caller tried to weaken a mandatory security option."""

    error_code = ErrorCode.CONFIG_REJECTED

    def __init__(self, option: str, message: str | None = None) -> None:
        super().__init__(message or f"Refusing to weaken mandatory session option: {option}")
        self.option = option


class HeadersAlreadySent(SessionError):
    error_code = ErrorCode.HEADERS_ALREADY_SENT


class StartFailure(SessionError):
    error_code = ErrorCode.START_FAILURE


class RegenerationFailure(SessionError):
    error_code = ErrorCode.REGENERATION_FAILURE


class DestroyFailure(SessionError):
    error_code = ErrorCode.DESTROY_FAILURE


class NotStarted(SessionError):
    """An operation that needs an active session ran before ``start()``."""

    error_code = ErrorCode.NOT_STARTED

    def __init__(self, operation: str) -> None:
        super().__init__(f"Session not started: cannot {operation}")
        self.operation = operation
