"""Authorization callback handling.

Processes the redirect back from the external provider:

    AWAITING_REDIRECT -> TOKEN_REQUESTED -> IDENTITY_RESOLVED -> AUTHENTICATED

with CANCELLED and FAILED as the other terminal states. Every terminal
state is reported to the login-completion collaborator and recorded on
the audit event.
"""

from __future__ import annotations

import json
import logging
import secrets
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING, Any

import httpx

from fedbroker.broker.errors import (
    BrokerError,
    ExtractionError,
    ProtocolError,
    TransportError,
)
from fedbroker.broker.models import (
    FEDERATED_ACCESS_TOKEN,
    FEDERATED_ACCESS_TOKEN_RESPONSE,
    FederatedIdentity,
    TokenResponse,
)
from fedbroker.broker.tokens import extract_token
from fedbroker.core.events import Details, Errors, EventBuilder, EventType

if TYPE_CHECKING:
    from fedbroker.broker.collaborators import AuthenticationCallback
    from fedbroker.broker.provider import OAuth2IdentityProvider
    from fedbroker.core.logging import ProtocolLog

logger = logging.getLogger(__name__)

ACCESS_DENIED = "access_denied"

# Scope and type of the token the broker issues for a completed callback
SYNTHESIZED_TOKEN_SCOPE = "profile email"
SYNTHESIZED_TOKEN_TYPE = "bearer"

BAD_GATEWAY = 502


class CallbackStatus(StrEnum):
    """States of a broker callback."""

    AWAITING_REDIRECT = "awaiting_redirect"
    TOKEN_REQUESTED = "token_requested"
    IDENTITY_RESOLVED = "identity_resolved"
    AUTHENTICATED = "authenticated"
    CANCELLED = "cancelled"
    FAILED = "failed"


TERMINAL_STATUSES = frozenset(
    {CallbackStatus.AUTHENTICATED, CallbackStatus.CANCELLED, CallbackStatus.FAILED}
)


@dataclass
class CallbackOutcome:
    """Result of processing one callback."""

    status: CallbackStatus
    state: str | None
    identity: FederatedIdentity | None = None
    message: str | None = None
    http_status: int | None = None
    response: Any = None
    transitions: list[CallbackStatus] = field(default_factory=list)
    protocol_log: ProtocolLog | None = None

    @property
    def is_success(self) -> bool:
        return self.status == CallbackStatus.AUTHENTICATED

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for display."""
        return {
            "status": str(self.status),
            "state": self.state,
            "identity": self.identity.to_dict() if self.identity else None,
            "message": self.message,
            "http_status": self.http_status,
            "transitions": [str(s) for s in self.transitions],
        }


class _CallbackFailure(Exception):
    """Internal signal carrying the user message and audit reason of a failure."""

    def __init__(self, message: str, reason: str) -> None:
        super().__init__(reason)
        self.message = message
        self.reason = reason


class CallbackHandler:
    """Handles one authorization callback for a provider.

    A handler is created per callback request and holds no state that
    outlives it.
    """

    def __init__(
        self,
        provider: OAuth2IdentityProvider,
        callback: AuthenticationCallback | None = None,
        event: EventBuilder | None = None,
    ) -> None:
        self.provider = provider
        self.callback = callback
        self.event = event or EventBuilder(provider.realm.name, EventType.LOGIN)
        self._transitions: list[CallbackStatus] = [CallbackStatus.AWAITING_REDIRECT]

    @property
    def status(self) -> CallbackStatus:
        return self._transitions[-1]

    def _move(self, status: CallbackStatus) -> None:
        logger.debug(f"Broker callback for {self.provider.config.alias}: {self.status} -> {status}")
        self._transitions.append(status)

    def handle_callback(
        self,
        state: str | None,
        code: str | None = None,
        error: str | None = None,
        expected_state: str | None = None,
        require_state: bool = False,
    ) -> CallbackOutcome:
        """Process the provider's redirect.

        Args:
            state: The state parameter echoed by the provider.
            code: Authorization code, on success.
            error: Error parameter, when the provider refused the login.
            expected_state: State issued for this login, if known.
            require_state: Fail unless ``expected_state`` is known, i.e.
                there is a pending login to match the redirect against.

        Returns:
            The terminal outcome. Failures never raise.
        """
        config = self.provider.config
        messages = config.messages
        self.event.detail(Details.IDENTITY_PROVIDER, config.alias)

        if error:
            logger.error(f"{error} for broker login {config.alias}")
            if error == ACCESS_DENIED:
                return self._cancelled(state)
            return self._failed(state, messages.login_failed, error, http_status=None)

        if require_state and expected_state is None:
            logger.error(f"No pending broker login for {config.alias}")
            return self._failed(state, messages.login_failed, "no pending login", http_status=None)

        if expected_state is not None and state != expected_state:
            logger.error(f"State mismatch for broker login {config.alias}")
            return self._failed(state, messages.login_failed, "state mismatch", http_status=None)

        if not code:
            return self._failed(state, messages.login_failed, "no authorization code", http_status=None)

        log = self.provider.protocol_logger.start_flow(secrets.token_hex(8), "broker_callback")
        try:
            identity = self._complete(state, code, log)
        except _CallbackFailure as e:
            return self._failed(state, e.message, e.reason, log=log)
        except TransportError as e:
            logger.error(f"Failed to make identity provider oauth callback: {e}")
            return self._failed(state, messages.profile_unavailable, "identity provider unreachable", log=log)
        except ExtractionError as e:
            logger.error(f"Failed to make identity provider oauth callback: {e}")
            return self._failed(state, messages.login_failed, "unparseable token response", log=log)
        except ProtocolError as e:
            logger.error(f"Failed to make identity provider oauth callback: {e}")
            return self._failed(state, messages.profile_unavailable, str(e), log=log)
        except BrokerError as e:
            logger.error(f"Failed to make identity provider oauth callback: {e}")
            return self._failed(state, messages.unexpected_error, str(e), log=log)
        except Exception:
            logger.exception(f"Unexpected error in broker callback for {config.alias}")
            return self._failed(state, messages.unexpected_error, "unexpected error", log=log)
        finally:
            self.provider.protocol_logger.end_flow(log)

        try:
            response = self.callback.authenticated(identity) if self.callback else None
        except Exception:
            logger.exception(f"Could not complete broker login for {config.alias}")
            return self._failed(state, messages.unexpected_error, "login completion failed", log=log)

        self._move(CallbackStatus.AUTHENTICATED)
        self.event.detail(Details.IDENTITY_PROVIDER_USERNAME, identity.username)
        self.event.success()
        return CallbackOutcome(
            status=CallbackStatus.AUTHENTICATED,
            state=state,
            identity=identity,
            response=response,
            transitions=list(self._transitions),
            protocol_log=log,
        )

    def _complete(self, state: str | None, code: str, log: ProtocolLog) -> FederatedIdentity:
        provider = self.provider
        config = provider.config
        realm = provider.realm

        with provider.http_client(log) as client:
            self._move(CallbackStatus.TOKEN_REQUESTED)
            try:
                response = provider.generate_token_request(code).send(client)
            except httpx.HTTPError as e:
                raise TransportError(f"Token request failed: {e}", url=config.token_url) from e
            if response.status_code < 200 or response.status_code >= 300:
                raise TransportError(
                    f"Token endpoint answered with status {response.status_code}",
                    url=config.token_url,
                    status=response.status_code,
                )

            access_token = extract_token(response.text, provider.access_token_response_parameter)
            if not access_token:
                raise _CallbackFailure(config.messages.login_failed, "no access token in token response")

            identity = provider.resolver.fetch_identity(client, access_token)

        self._move(CallbackStatus.IDENTITY_RESOLVED)

        user = provider.user_store.find_user_by_external_id(realm.name, config.alias, identity.external_user_id)
        if user is None:
            if not config.create_user:
                raise _CallbackFailure(config.messages.login_failed, "user not found")
            user = provider.user_store.create_user(realm.name, identity.external_user_id)
            user.enabled = True
            logger.info(f"Created user {identity.external_user_id} in realm {realm.name} from {config.alias}")

        token_response = TokenResponse(
            access_token=provider.authenticator.sign(provider.authenticator.generate_token()),
            expires_in=realm.access_code_lifespan,
            session_state=state,
            scope=SYNTHESIZED_TOKEN_SCOPE,
            token_type=SYNTHESIZED_TOKEN_TYPE,
        )

        identity.user_id = user.id
        identity.provider_alias = config.alias
        identity.provider_config = config
        identity.provider = provider
        identity.code = state
        identity.context_data[FEDERATED_ACCESS_TOKEN_RESPONSE] = token_response
        identity.context_data[FEDERATED_ACCESS_TOKEN] = access_token
        if config.store_token and identity.token is None:
            identity.token = json.dumps(
                {
                    "access_token": token_response.access_token,
                    "session_state": token_response.session_state,
                    "scope": token_response.scope,
                    "token_type": token_response.token_type,
                }
            )
        return identity

    def _cancelled(self, state: str | None) -> CallbackOutcome:
        self._move(CallbackStatus.CANCELLED)
        self.event.detail(Details.REASON, "login cancelled by user")
        self.event.error(Errors.IDENTITY_PROVIDER_LOGIN_FAILURE)
        response = self.callback.cancelled(state) if self.callback else None
        return CallbackOutcome(
            status=CallbackStatus.CANCELLED,
            state=state,
            response=response,
            transitions=list(self._transitions),
        )

    def _failed(
        self,
        state: str | None,
        message: str,
        reason: str,
        http_status: int | None = BAD_GATEWAY,
        log: ProtocolLog | None = None,
    ) -> CallbackOutcome:
        self._move(CallbackStatus.FAILED)
        self.event.event(EventType.LOGIN)
        self.event.detail(Details.REASON, reason)
        self.event.error(Errors.IDENTITY_PROVIDER_LOGIN_FAILURE)
        response = self.callback.error(state, message) if self.callback else None
        return CallbackOutcome(
            status=CallbackStatus.FAILED,
            state=state,
            message=message,
            http_status=http_status,
            response=response,
            transitions=list(self._transitions),
            protocol_log=log,
        )


def is_terminal(status: CallbackStatus) -> bool:
    return status in TERMINAL_STATUSES
