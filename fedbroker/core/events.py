"""Audit events for broker decisions.

Every broker outcome, success or failure, is recorded on an EventBuilder
before it is returned, so each decision can be traced afterwards.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

logger = logging.getLogger("fedbroker.events")


class EventType(StrEnum):
    """Kinds of audited broker events."""

    LOGIN = "LOGIN"
    IDENTITY_PROVIDER_LOGIN = "IDENTITY_PROVIDER_LOGIN"
    TOKEN_EXCHANGE = "TOKEN_EXCHANGE"


class Errors(StrEnum):
    """Machine-readable error codes attached to failed events."""

    INVALID_REQUEST = "invalid_request"
    INVALID_TOKEN = "invalid_token"
    INVALID_TOKEN_TYPE = "invalid_token_type"
    NOT_LINKED = "not_linked"
    IDENTITY_PROVIDER_ERROR = "identity_provider_error"
    IDENTITY_PROVIDER_LOGIN_FAILURE = "identity_provider_login_failure"


class Details:
    """Well-known detail keys."""

    REASON = "reason"
    IDENTITY_PROVIDER = "identity_provider"
    IDENTITY_PROVIDER_USERNAME = "identity_provider_identity"
    REQUESTED_TOKEN_TYPE = "requested_token_type"
    VALIDATION_METHOD = "validation_method"
    CLIENT_AUTH_METHOD = "client_auth_method"


@dataclass
class AuditEvent:
    """A finished audit event."""

    type: str
    realm: str | None
    details: dict[str, str] = field(default_factory=dict)
    error: str | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def is_success(self) -> bool:
        return self.error is None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "type": self.type,
            "realm": self.realm,
            "details": dict(self.details),
            "error": self.error,
            "timestamp": self.timestamp.isoformat(),
        }


class EventBuilder:
    """Collects details for one request and emits success or error events.

    One builder belongs to one request. Details accumulate until success()
    or error() is called, which snapshots them into an AuditEvent.
    """

    def __init__(self, realm: str | None = None, event_type: str = EventType.LOGIN) -> None:
        self.realm = realm
        self._type = str(event_type)
        self._details: dict[str, str] = {}
        self.events: list[AuditEvent] = []

    def event(self, event_type: str) -> EventBuilder:
        """Set the event type."""
        self._type = str(event_type)
        return self

    def detail(self, key: str, value: str | None) -> EventBuilder:
        """Record a detail; None removes the key."""
        if value is None:
            self._details.pop(key, None)
        else:
            self._details[key] = str(value)
        return self

    @property
    def details(self) -> dict[str, str]:
        return dict(self._details)

    def success(self) -> AuditEvent:
        """Emit a success event."""
        return self._emit(None)

    def error(self, code: str) -> AuditEvent:
        """Emit an error event with a machine-readable code."""
        return self._emit(str(code))

    @property
    def last(self) -> AuditEvent | None:
        return self.events[-1] if self.events else None

    def _emit(self, error: str | None) -> AuditEvent:
        audit_event = AuditEvent(
            type=self._type if error is None else f"{self._type}_ERROR",
            realm=self.realm,
            details=dict(self._details),
            error=error,
        )
        self.events.append(audit_event)

        if error is None:
            logger.info(f"type={audit_event.type}, realm={self.realm}, details={audit_event.details}")
        else:
            logger.warning(
                f"type={audit_event.type}, realm={self.realm}, error={error}, details={audit_event.details}"
            )
        return audit_event
