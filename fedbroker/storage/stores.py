"""SQLAlchemy implementations of the broker's persistence collaborators.

Stores flush their writes; committing is left to the owner of the
session so a whole request can be committed or rolled back at once.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from sqlalchemy import select

from fedbroker.broker.errors import LinkageError
from fedbroker.storage.models import FederatedIdentityLink, LocalUser, UserSessionRecord

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

    from fedbroker.broker.models import FederatedIdentity

logger = logging.getLogger(__name__)


class SqlUserStore:
    """Local users and federated identity links."""

    def __init__(self, session: Session) -> None:
        self.session = session

    def find_user_by_external_id(
        self, realm: str, provider_alias: str, external_user_id: str | None
    ) -> LocalUser | None:
        """User linked to ``external_user_id`` at the given provider."""
        if not external_user_id:
            return None
        return self.session.scalar(
            select(LocalUser)
            .join(FederatedIdentityLink, FederatedIdentityLink.user_id == LocalUser.id)
            .where(
                LocalUser.realm == realm,
                FederatedIdentityLink.realm == realm,
                FederatedIdentityLink.provider_alias == provider_alias,
                FederatedIdentityLink.external_user_id == external_user_id,
            )
        )

    def get_user(self, realm: str, user_id: str) -> LocalUser | None:
        user = self.session.get(LocalUser, user_id)
        if user is None or user.realm != realm:
            return None
        return user

    def create_user(self, realm: str, username: str) -> LocalUser:
        user = LocalUser(realm=realm, username=username, enabled=False)
        self.session.add(user)
        self.session.flush()
        logger.debug(f"Created local user {username} in realm {realm}")
        return user

    def get_federated_identity(
        self, user: LocalUser, provider_alias: str, realm: str
    ) -> FederatedIdentityLink | None:
        return self.session.scalar(
            select(FederatedIdentityLink).where(
                FederatedIdentityLink.user_id == user.id,
                FederatedIdentityLink.provider_alias == provider_alias,
                FederatedIdentityLink.realm == realm,
            )
        )

    def update_federated_identity(self, realm: str, user: LocalUser, identity: FederatedIdentityLink) -> None:
        identity.realm = realm
        identity.user_id = user.id
        self.session.add(identity)
        self.session.flush()

    def link_identity(self, realm: str, user: LocalUser, identity: FederatedIdentity) -> FederatedIdentityLink:
        """Create or refresh the link for a completed broker login.

        The stored token is only replaced when the login produced one.

        Raises:
            LinkageError: If the user is already linked to another
                account at the same provider.
        """
        link = self.get_federated_identity(user, identity.provider_alias, realm)
        if link is not None and link.external_user_id not in (None, identity.external_user_id):
            raise LinkageError(
                f"User {user.username} is already linked to another {identity.provider_alias} account"
            )
        if link is None:
            link = FederatedIdentityLink(
                user_id=user.id,
                realm=realm,
                provider_alias=identity.provider_alias,
            )
        link.external_user_id = identity.external_user_id
        link.external_username = identity.username
        if identity.token is not None:
            link.token = identity.token

        if identity.first_name and not user.first_name:
            user.first_name = identity.first_name
        if identity.last_name and not user.last_name:
            user.last_name = identity.last_name
        if identity.email and not user.email:
            user.email = identity.email

        self.update_federated_identity(realm, user, link)
        return link


class SqlSessionStore:
    """Local user sessions."""

    def __init__(self, session: Session) -> None:
        self.session = session

    def create_session(self, realm: str, user: LocalUser, notes: dict[str, str] | None = None) -> UserSessionRecord:
        record = UserSessionRecord(realm=realm, user_id=user.id, notes=dict(notes or {}))
        self.session.add(record)
        self.session.flush()
        return record

    def get_session(self, realm: str, session_id: str) -> UserSessionRecord | None:
        record = self.session.get(UserSessionRecord, session_id)
        if record is None or record.realm != realm:
            return None
        return record
