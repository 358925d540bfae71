"""Broker exception hierarchy.

These exceptions are raised inside the broker components. The public
operations convert them into outcome objects before returning.
"""

from __future__ import annotations

from typing import Any


class BrokerError(Exception):
    """Base exception for broker errors."""


class ProviderConfigError(BrokerError):
    """Raised when a provider is configured inconsistently."""


class ProtocolError(BrokerError):
    """Malformed authorization response or missing code/token."""


class ExtractionError(ProtocolError):
    """Raised when a token response body cannot be parsed."""


class CredentialError(BrokerError):
    """Raised when client credentials cannot be resolved or signed."""


class LinkageError(BrokerError):
    """The session or user is not linked to the provider, or the link expired."""


class UnsupportedRequestError(BrokerError):
    """The caller asked for something this broker does not support."""


class TransportError(BrokerError):
    """A collaborator call failed or answered with a non-2xx status."""

    def __init__(self, message: str, url: str | None = None, status: int | None = None) -> None:
        super().__init__(message)
        self.url = url
        self.status = status


class ErrorResponseError(BrokerError):
    """An OAuth error that maps directly onto an HTTP error response."""

    def __init__(self, error: str, error_description: str, status: int = 400) -> None:
        super().__init__(f"{error}: {error_description}")
        self.error = error
        self.error_description = error_description
        self.status = status

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.error, "error_description": self.error_description}


class InvalidTokenError(ErrorResponseError):
    """A subject token was missing, of the wrong type, or failed validation."""

    def __init__(self, error_description: str = "invalid token", status: int = 400) -> None:
        super().__init__("invalid_token", error_description, status)
