"""Structured session audit events.

Security-relevant session events are logged to the ``securesession.audit``
logger as JSON. Consumers attach their own handlers (CloudWatch JSON
formatter, Firehose, structlog, etc.).

Usage::

    from securesession import audit
    audit.session_event(
        activity_id=audit.SessionActivity.ROTATE,
        status_id=audit.Status.SUCCESS,
        severity_id=audit.Severity.INFORMATIONAL,
        session_id=handler.session_id,
        hash_function=settings.hash_function,
        message="Session id rotated",
    )
"""

from __future__ import annotations

import hashlib
import json
import logging
import time
from typing import Any

logger = logging.getLogger("securesession.audit")


class SessionActivity:
    START = 1
    ROTATE = 2
    CLOSE = 3
    DESTROY = 4
    CSRF_CHECK = 5
    CONFIGURE = 6
    GC = 7


_ACTIVITY_NAMES = {
    SessionActivity.START: "Start",
    SessionActivity.ROTATE: "Rotate",
    SessionActivity.CLOSE: "Close",
    SessionActivity.DESTROY: "Destroy",
    SessionActivity.CSRF_CHECK: "CSRF Check",
    SessionActivity.CONFIGURE: "Configure",
    SessionActivity.GC: "Garbage Collection",
}


class Status:
    SUCCESS = 1
    FAILURE = 2


class Severity:
    INFORMATIONAL = 1
    LOW = 2
    MEDIUM = 3
    HIGH = 4
    CRITICAL = 5


_SEVERITY_NAMES = {
    Severity.INFORMATIONAL: "Informational",
    Severity.LOW: "Low",
    Severity.MEDIUM: "Medium",
    Severity.HIGH: "High",
    Severity.CRITICAL: "Critical",
}

_PRODUCT = {
    "name": "securesession",
    "version": "0.3.0",
}


def fingerprint(session_id: str | None, hash_function: str = "sha256") -> str | None:
    """Short digest of a session id, safe to put in logs."""
    if not session_id:
        return None
    return hashlib.new(hash_function, session_id.encode()).hexdigest()[:16]


def emit(event: dict[str, Any]) -> None:
    """Log an audit event as JSON. Errors are logged and never propagate."""
    try:
        logger.info(json.dumps(event, default=str))
    except Exception:
        logger.warning("Could not serialize audit event", exc_info=True)


def session_event(
    *,
    activity_id: int,
    status_id: int,
    severity_id: int,
    session_id: str | None = None,
    hash_function: str = "sha256",
    message: str = "",
    extra_metadata: dict[str, Any] | None = None,
) -> None:
    """Emit a session lifecycle event."""
    event: dict[str, Any] = {
        "activity_id": activity_id,
        "activity_name": _ACTIVITY_NAMES.get(activity_id, "Other"),
        "severity_id": severity_id,
        "severity": _SEVERITY_NAMES.get(severity_id, "Unknown"),
        "status_id": status_id,
        "status": "Success" if status_id == Status.SUCCESS else "Failure",
        "time": int(time.time() * 1000),
        "metadata": {
            "product": _PRODUCT,
            **(extra_metadata or {}),
        },
        "message": message,
    }
    fp = fingerprint(session_id, hash_function)
    if fp:
        event["session"] = {"fingerprint": fp}
    emit(event)
