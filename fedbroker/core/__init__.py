"""Core services: configuration, logging, audit events and secrets."""

from fedbroker.core.events import AuditEvent, Details, Errors, EventBuilder, EventType
from fedbroker.core.logging import (
    HTTPExchange,
    LoggingClient,
    LogLevel,
    ProtocolLog,
    ProtocolLogger,
    configure_logging,
    fingerprint_secret,
    get_protocol_logger,
    redact_sensitive,
    set_protocol_logger,
)
from fedbroker.core.vault import EnvironmentVault, StaticVault, VaultStringSecret

__all__ = [
    "AuditEvent",
    "Details",
    "Errors",
    "EventBuilder",
    "EventType",
    "HTTPExchange",
    "LoggingClient",
    "LogLevel",
    "ProtocolLog",
    "ProtocolLogger",
    "configure_logging",
    "fingerprint_secret",
    "get_protocol_logger",
    "redact_sensitive",
    "set_protocol_logger",
    "EnvironmentVault",
    "StaticVault",
    "VaultStringSecret",
]
