"""RFC 8693 token exchange for already-federated users.

A local client holding a broker session asks for the external provider's
token of that session's user. The router answers from the session notes
or from the stored federated identity; it never calls the provider.
"""

from __future__ import annotations

import base64
import hashlib
import logging
import uuid
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, Any
from urllib.parse import urlencode

from fedbroker.broker.errors import ErrorResponseError, ExtractionError, LinkageError, UnsupportedRequestError
from fedbroker.broker.models import (
    ACCESS_TOKEN_TYPE,
    ACCOUNT_LINK_URL,
    CLEARED_TOKEN,
    EXCHANGE_PROVIDER,
    EXTERNAL_IDENTITY_PROVIDER,
    FEDERATED_ACCESS_TOKEN,
    FEDERATED_ID_TOKEN,
    ID_TOKEN_TYPE,
    IDENTITY_PROVIDER_NOTE,
    ExchangeContext,
    TokenResponse,
)
from fedbroker.broker.tokens import extract_token
from fedbroker.core.events import Details, Errors, EventBuilder, EventType

if TYPE_CHECKING:
    from fedbroker.broker.collaborators import SessionNotes
    from fedbroker.broker.provider import OAuth2IdentityProvider

logger = logging.getLogger(__name__)

BAD_REQUEST = 400


class ExchangeStatus(StrEnum):
    """Outcomes of a token exchange."""

    SUCCESS = "success"
    NOT_LINKED = "not_linked"
    TOKEN_EXPIRED = "token_expired"
    UNSUPPORTED_TYPE = "unsupported_type"
    INVALID_REQUEST = "invalid_request"


# OAuth error bodies of the failure outcomes
_ERROR_BODIES: dict[ExchangeStatus, dict[str, str]] = {
    ExchangeStatus.NOT_LINKED: {"error": "not_linked"},
    ExchangeStatus.TOKEN_EXPIRED: {"error": "token_expired"},
    ExchangeStatus.UNSUPPORTED_TYPE: {
        "error": "invalid_target",
        "error_description": "response_token_type_unsupported",
    },
    ExchangeStatus.INVALID_REQUEST: {"error": "invalid_request"},
}


@dataclass
class ExchangeOutcome:
    """Result of a token exchange: a token response or a named failure."""

    status: ExchangeStatus
    token_response: TokenResponse | None = None
    reason: str | None = None
    account_link_url: str | None = None

    @property
    def is_success(self) -> bool:
        return self.status == ExchangeStatus.SUCCESS

    @property
    def http_status(self) -> int:
        return 200 if self.is_success else BAD_REQUEST

    def to_dict(self) -> dict[str, Any]:
        """Wire body of the outcome."""
        if self.token_response is not None:
            return self.token_response.to_dict()
        body = dict(_ERROR_BODIES[self.status])
        if self.account_link_url:
            body[ACCOUNT_LINK_URL] = self.account_link_url
        return body

    def raise_for_status(self) -> ExchangeOutcome:
        """Raise the matching broker error for a failure outcome.

        Raises:
            LinkageError: If the session is not linked or the token expired.
            UnsupportedRequestError: If the requested token type is unsupported.
            ErrorResponseError: If the request itself was invalid.
        """
        if self.is_success:
            return self
        message = f"{self.status}: {self.reason}"
        if self.status in (ExchangeStatus.NOT_LINKED, ExchangeStatus.TOKEN_EXPIRED):
            raise LinkageError(message)
        if self.status == ExchangeStatus.UNSUPPORTED_TYPE:
            raise UnsupportedRequestError(message)
        raise ErrorResponseError("invalid_request", self.reason or "invalid request", self.http_status)


def linking_url(
    realm_url: str,
    provider_alias: str,
    session_id: str,
    client_id: str,
    nonce: str | None = None,
) -> str:
    """URL a client can send the user to in order to (re)link the provider.

    The hash binds the nonce to the session, client and provider so the
    link endpoint can verify the request came from this session.
    """
    nonce = nonce or str(uuid.uuid4())
    digest = hashlib.sha256(f"{nonce}{session_id}{client_id}{provider_alias}".encode()).digest()
    hash_value = base64.urlsafe_b64encode(digest).decode("ascii").rstrip("=")
    query = urlencode({"nonce": nonce, "hash": hash_value, "client_id": client_id})
    return f"{realm_url}/broker/{provider_alias}/link?{query}"


def _token_response(
    access_token: str | None = None,
    id_token: str | None = None,
    issued_token_type: str = ACCESS_TOKEN_TYPE,
    account_link_url: str | None = None,
    expires_in: int | None = None,
) -> TokenResponse:
    response = TokenResponse(
        access_token=access_token,
        id_token=id_token,
        refresh_expires_in=0,
        expires_in=expires_in,
        issued_token_type=issued_token_type,
    )
    if account_link_url:
        response.other_claims[ACCOUNT_LINK_URL] = account_link_url
    return response


class TokenExchangeRouter:
    """Routes exchange requests to the session or the stored identity."""

    def __init__(self, provider: OAuth2IdentityProvider) -> None:
        self.provider = provider

    @property
    def alias(self) -> str:
        return self.provider.config.alias

    def exchange_token(self, context: ExchangeContext, event: EventBuilder | None = None) -> ExchangeOutcome:
        """Answer a token-exchange request.

        Args:
            context: The incoming request and its resolved session and user.
            event: Audit event builder for this request.

        Returns:
            A success outcome carrying a token response, or a named failure.
        """
        event = event or EventBuilder(self.provider.realm.name, EventType.TOKEN_EXCHANGE)
        event.detail(Details.IDENTITY_PROVIDER, self.alias)
        event.detail(Details.REQUESTED_TOKEN_TYPE, context.requested_token_type)

        session = context.target_user_session
        if session is None or context.target_user is None:
            return self._failure(
                event, ExchangeStatus.INVALID_REQUEST, Errors.INVALID_REQUEST, "target user session missing"
            )

        shortcut = self._already_exchanged(session, context.requested_token_type)
        if shortcut is not None:
            logger.debug(f"Answering exchange for {self.alias} from external exchange session notes")
            event.success()
            return ExchangeOutcome(ExchangeStatus.SUCCESS, token_response=shortcut)

        requested = context.requested_token_type
        if requested is not None and requested != ACCESS_TOKEN_TYPE:
            return self._failure(
                event, ExchangeStatus.UNSUPPORTED_TYPE, Errors.INVALID_REQUEST, "requested_token_type unsupported"
            )

        if not self.provider.config.store_token:
            broker_id = session.get_note(IDENTITY_PROVIDER_NOTE)
            if broker_id is None:
                broker_id = session.get_note(EXTERNAL_IDENTITY_PROVIDER)
            if broker_id != self.alias:
                return self._failure(
                    event,
                    ExchangeStatus.NOT_LINKED,
                    Errors.INVALID_REQUEST,
                    "requested_issuer has not linked",
                    self.get_linking_url(context),
                )
            return self._exchange_session_token(context, event)

        return self._exchange_stored_token(context, event)

    def _already_exchanged(self, session: SessionNotes, requested_type: str | None) -> TokenResponse | None:
        if session.get_note(EXCHANGE_PROVIDER) != self.alias:
            return None

        if requested_type is None or requested_type == ACCESS_TOKEN_TYPE:
            access_token = session.get_note(FEDERATED_ACCESS_TOKEN)
            if access_token is not None:
                return _token_response(access_token=access_token, expires_in=0)
        elif requested_type == ID_TOKEN_TYPE:
            id_token = session.get_note(FEDERATED_ID_TOKEN)
            if id_token is not None:
                return _token_response(id_token=id_token, issued_token_type=ID_TOKEN_TYPE, expires_in=0)
        return None

    def _exchange_session_token(self, context: ExchangeContext, event: EventBuilder) -> ExchangeOutcome:
        access_token = context.target_user_session.get_note(FEDERATED_ACCESS_TOKEN)
        link_url = self.get_linking_url(context)
        if access_token is None:
            return self._failure(
                event, ExchangeStatus.TOKEN_EXPIRED, Errors.INVALID_TOKEN, "requested_issuer is not linked", link_url
            )
        event.success()
        return ExchangeOutcome(
            ExchangeStatus.SUCCESS,
            token_response=_token_response(access_token=access_token, account_link_url=link_url),
        )

    def _exchange_stored_token(self, context: ExchangeContext, event: EventBuilder) -> ExchangeOutcome:
        realm = context.requesting_client.realm
        user = context.target_user
        store = self.provider.user_store
        link_url = self.get_linking_url(context)

        model = store.get_federated_identity(user, self.alias, realm)
        if model is None or model.token is None:
            return self._failure(
                event, ExchangeStatus.NOT_LINKED, Errors.INVALID_TOKEN, "requested_issuer is not linked", link_url
            )

        try:
            access_token = extract_token(model.token, self.provider.access_token_response_parameter)
        except ExtractionError as e:
            logger.warning(f"Stored token of {self.alias} for user {user.id} is unreadable: {e}")
            access_token = None

        if access_token is None:
            if model.token != CLEARED_TOKEN:
                model.token = CLEARED_TOKEN
                store.update_federated_identity(realm, user, model)
            return self._failure(
                event, ExchangeStatus.TOKEN_EXPIRED, Errors.INVALID_TOKEN, "requested_issuer token expired", link_url
            )

        event.success()
        return ExchangeOutcome(
            ExchangeStatus.SUCCESS,
            token_response=_token_response(access_token=access_token, account_link_url=link_url),
        )

    def get_linking_url(self, context: ExchangeContext) -> str:
        return linking_url(
            self.provider.realm.realm_url,
            self.alias,
            context.target_user_session.id,
            context.requesting_client.client_id,
        )

    def _failure(
        self,
        event: EventBuilder,
        status: ExchangeStatus,
        error: Errors,
        reason: str,
        account_link_url: str | None = None,
    ) -> ExchangeOutcome:
        event.detail(Details.REASON, reason)
        event.error(error)
        return ExchangeOutcome(status, reason=reason, account_link_url=account_link_url)
