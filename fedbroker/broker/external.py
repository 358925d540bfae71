"""Validation of tokens issued by an external provider.

Used when a client presents a token minted directly by the provider and
asks the broker to accept it. The token is validated by presenting it to
the provider's profile endpoint.
"""

from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, Any, NoReturn

import httpx

from fedbroker.broker.errors import BrokerError, InvalidTokenError, ProtocolError
from fedbroker.broker.models import (
    ACCESS_TOKEN_TYPE,
    FEDERATED_ACCESS_TOKEN,
    SUBJECT_ISSUER,
    SUBJECT_TOKEN,
    SUBJECT_TOKEN_TYPE,
    FederatedIdentity,
)
from fedbroker.broker.tokens import parse_json_document
from fedbroker.core.events import Details, Errors, EventBuilder, EventType

if TYPE_CHECKING:
    from fedbroker.broker.provider import OAuth2IdentityProvider

logger = logging.getLogger(__name__)

VALIDATION_METHOD_USER_INFO = "user info"
INVALID_TOKEN_TYPE_DESCRIPTION = "invalid token type"


class ExternalValidationStatus(StrEnum):
    VALID = "valid"
    INVALID_TOKEN = "invalid_token"
    INVALID_TOKEN_TYPE = "invalid_token_type"


@dataclass
class ExternalValidationOutcome:
    """Result of validating an external token."""

    status: ExternalValidationStatus
    identity: FederatedIdentity | None = None
    error_description: str | None = None

    @property
    def is_valid(self) -> bool:
        return self.status == ExternalValidationStatus.VALID

    @property
    def http_status(self) -> int:
        return 200 if self.is_valid else 400

    def to_dict(self) -> dict[str, Any]:
        if self.identity is not None:
            return self.identity.to_dict()
        return {"error": "invalid_token", "error_description": self.error_description}


class ExternalTokenValidator:
    """Validates external access tokens through the profile endpoint."""

    def __init__(self, provider: OAuth2IdentityProvider) -> None:
        self.provider = provider

    def is_issuer(self, issuer: str | None, params: dict[str, str]) -> bool:
        """Whether a token from ``issuer`` belongs to this provider.

        The ``subject_issuer`` parameter takes precedence over the supplied
        issuer. Always False when external exchange is unsupported.
        """
        if not self.provider.resolver.supports_external_exchange:
            return False
        requested_issuer = params.get(SUBJECT_ISSUER)
        if requested_issuer is None:
            requested_issuer = issuer
        return requested_issuer == self.provider.config.alias

    def validate_external_token(
        self,
        subject_token: str | None,
        subject_token_type: str | None,
        event: EventBuilder | None = None,
    ) -> ExternalValidationOutcome:
        """Validate a subject token and return an outcome instead of raising."""
        event = event or EventBuilder(self.provider.realm.name, EventType.TOKEN_EXCHANGE)
        params = {SUBJECT_TOKEN: subject_token, SUBJECT_TOKEN_TYPE: subject_token_type}
        try:
            identity = self.validate_params(event, {k: v for k, v in params.items() if v is not None})
        except InvalidTokenError as e:
            status = (
                ExternalValidationStatus.INVALID_TOKEN_TYPE
                if e.error_description == INVALID_TOKEN_TYPE_DESCRIPTION
                else ExternalValidationStatus.INVALID_TOKEN
            )
            return ExternalValidationOutcome(status, error_description=e.error_description)
        except Exception:
            logger.exception(f"Unexpected error validating external token for {self.provider.config.alias}")
            event.detail(Details.REASON, "unexpected error")
            event.error(Errors.INVALID_TOKEN)
            return ExternalValidationOutcome(ExternalValidationStatus.INVALID_TOKEN, error_description="invalid token")
        return ExternalValidationOutcome(ExternalValidationStatus.VALID, identity=identity)

    def validate_params(self, event: EventBuilder, params: dict[str, str]) -> FederatedIdentity:
        """Validate the subject token carried in exchange parameters.

        Raises:
            InvalidTokenError: If the token is missing, has an unsupported
                type, or the profile endpoint rejects it.
        """
        subject_token = params.get(SUBJECT_TOKEN)
        if subject_token is None:
            event.detail(Details.REASON, f"{SUBJECT_TOKEN} param unset")
            event.error(Errors.INVALID_TOKEN)
            raise InvalidTokenError("token not set")

        subject_token_type = params.get(SUBJECT_TOKEN_TYPE) or ACCESS_TOKEN_TYPE
        if subject_token_type != ACCESS_TOKEN_TYPE:
            event.detail(Details.REASON, f"{SUBJECT_TOKEN_TYPE} invalid")
            event.error(Errors.INVALID_TOKEN_TYPE)
            raise InvalidTokenError(INVALID_TOKEN_TYPE_DESCRIPTION)

        return self.validate_through_user_info(event, subject_token)

    def validate_through_user_info(self, event: EventBuilder, subject_token: str) -> FederatedIdentity:
        """Present the token to the profile endpoint and map the answer.

        Raises:
            InvalidTokenError: If validation is unsupported or fails.
        """
        event.detail(Details.VALIDATION_METHOD, VALIDATION_METHOD_USER_INFO)
        resolver = self.provider.resolver

        url = resolver.profile_endpoint_for_validation()
        if not url:
            self._reject(event, "exchange unsupported")

        log = self.provider.protocol_logger.start_flow(secrets.token_hex(8), "external_token_validation")
        status = 0
        body = ""
        try:
            with self.provider.http_client(log) as client:
                response = client.get(
                    url,
                    headers={"Authorization": f"Bearer {subject_token}", "Accept": "application/json"},
                )
                status = response.status_code
                body = response.text
        except httpx.HTTPError as e:
            logger.debug(f"Failed to invoke user info for external exchange: {e}")
        finally:
            self.provider.protocol_logger.end_flow(log)

        if status != 200:
            logger.debug(f"Failed to invoke user info status: {status}")
            self._reject(event, "user info call failure")

        try:
            profile = parse_json_document(body)
        except ProtocolError:
            self._reject(event, "user info call failure")

        try:
            identity = resolver.extract_identity_from_profile(profile)
        except BrokerError as e:
            logger.debug(f"Failed to map user info for external exchange: {e}")
            self._reject(event, "user info call failure")
        if identity.external_user_id is None:
            self._reject(event, "user info call failure")

        identity.context_data[FEDERATED_ACCESS_TOKEN] = subject_token
        return identity

    def _reject(self, event: EventBuilder, reason: str) -> NoReturn:
        event.detail(Details.REASON, reason)
        event.error(Errors.INVALID_TOKEN)
        raise InvalidTokenError("invalid token")
