"""
security/logger.py -- In-memory log of security-relevant events.

SecurityLogger is a plain service object. The app lifespan builds one and
stores it on app.state.security_logger; route handlers and middleware take
it from there. Tests build a fresh instance per test.

Storage is a bounded deque: once max_events is reached every append drops
the oldest entry. Append and trim happen under one lock so concurrent
requests can neither lose an event nor push the buffer past its bound.
Readers take a snapshot under the same lock and filter outside it.

Events are also written to the "authstarter.security" stdlib logger, which
is the only record that outlives the process. The buffer itself is gone on
restart.

Critical events invoke the alert hook synchronously, after the event is
stored. A failing hook is logged and otherwise ignored.
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

logger = logging.getLogger("authstarter.security")


class SecurityEventType(str, Enum):
    LOGIN_SUCCESS = "login_success"
    LOGIN_FAILED = "login_failed"
    ACCOUNT_LOCKED = "account_locked"
    RATE_LIMIT_EXCEEDED = "rate_limit_exceeded"
    INVALID_SESSION_TOKEN = "invalid_session_token"
    SESSION_REVOKED = "session_revoked"
    SIGNUP_CONFLICT = "signup_conflict"
    PASSWORD_RESET_REQUESTED = "password_reset_requested"
    PASSWORD_RESET_COMPLETED = "password_reset_completed"
    EMAIL_VERIFIED = "email_verified"
    PATH_TRAVERSAL_ATTEMPT = "path_traversal_attempt"


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


_LOG_LEVELS = {
    Severity.LOW: logging.INFO,
    Severity.MEDIUM: logging.WARNING,
    Severity.HIGH: logging.WARNING,
    Severity.CRITICAL: logging.CRITICAL,
}

ANONYMOUS = "anonymous"


@dataclass(frozen=True)
class SecurityEvent:
    type: SecurityEventType
    user_id: str
    timestamp: str
    severity: Severity
    ip: str | None = None
    user_agent: str | None = None
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type.value,
            "user_id": self.user_id,
            "timestamp": self.timestamp,
            "severity": self.severity.value,
            "ip": self.ip,
            "user_agent": self.user_agent,
            "details": dict(self.details),
        }


AlertHook = Callable[[SecurityEvent], None]


def log_alert(event: SecurityEvent) -> None:
    """Default alert hook: a CRITICAL line for whatever ships logs to on-call."""
    logger.critical(
        "ALERT %s user=%s ip=%s details=%s",
        event.type.value,
        event.user_id,
        event.ip or "-",
        event.details,
    )


class SecurityLogger:
    """Bounded, thread-safe, append-only store of SecurityEvents.

    Args:
        max_events: Buffer size; the oldest event is evicted beyond it.
        alert_hook: Called synchronously for critical events.
    """

    def __init__(self, max_events: int = 1000, alert_hook: AlertHook | None = log_alert) -> None:
        self.max_events = max_events
        self._alert_hook = alert_hook
        self._events: deque[SecurityEvent] = deque(maxlen=max_events)
        self._lock = threading.Lock()

    def log(
        self,
        type: SecurityEventType,
        user_id: str | int | None,
        severity: Severity,
        ip: str | None = None,
        user_agent: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> SecurityEvent:
        """Timestamp and record an event; returns the stored event."""
        event = SecurityEvent(
            type=SecurityEventType(type),
            user_id=str(user_id) if user_id is not None else ANONYMOUS,
            timestamp=datetime.now(timezone.utc).isoformat(),
            severity=Severity(severity),
            ip=ip,
            user_agent=user_agent,
            details=dict(details or {}),
        )
        with self._lock:
            self._events.append(event)

        logger.log(
            _LOG_LEVELS[event.severity],
            "security_event type=%s severity=%s user=%s ip=%s",
            event.type.value,
            event.severity.value,
            event.user_id,
            event.ip or "-",
        )

        if event.severity is Severity.CRITICAL and self._alert_hook is not None:
            try:
                self._alert_hook(event)
            except Exception:
                logger.exception("Security alert hook failed for %s", event.type.value)
        return event

    def get_recent_events(self, limit: int = 100) -> list[SecurityEvent]:
        """Return up to limit most recent events, oldest first."""
        if limit <= 0:
            return []
        with self._lock:
            snapshot = list(self._events)
        return snapshot[-limit:]

    def get_events_by_user(self, user_id: str | int, limit: int = 50) -> list[SecurityEvent]:
        """Return up to limit most recent events for one user, oldest first."""
        if limit <= 0:
            return []
        wanted = str(user_id)
        with self._lock:
            snapshot = list(self._events)
        return [e for e in snapshot if e.user_id == wanted][-limit:]

    def clear(self) -> None:
        with self._lock:
            self._events.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._events)
