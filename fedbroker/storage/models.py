"""SQLAlchemy 2.x ORM models for local users, federation links and sessions."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import JSON, DateTime, ForeignKey, String, Text, UniqueConstraint, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def _new_id() -> str:
    return str(uuid.uuid4())


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    type_annotation_map = {
        dict[str, Any]: JSON,
    }


class LocalUser(Base):
    """A user account in a realm."""

    __tablename__ = "users"
    __table_args__ = (UniqueConstraint("realm", "username", name="uq_users_realm_username"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    realm: Mapped[str] = mapped_column(String(255), nullable=False)
    username: Mapped[str] = mapped_column(String(255), nullable=False)
    enabled: Mapped[bool] = mapped_column(default=False)
    first_name: Mapped[str | None] = mapped_column(String(255))
    last_name: Mapped[str | None] = mapped_column(String(255))
    email: Mapped[str | None] = mapped_column(String(255))

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    federated_identities: Mapped[list[FederatedIdentityLink]] = relationship(
        back_populates="user", cascade="all, delete-orphan"
    )
    sessions: Mapped[list[UserSessionRecord]] = relationship(
        back_populates="user", cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:
        return f"<LocalUser(realm='{self.realm}', username='{self.username}')>"


class FederatedIdentityLink(Base):
    """Link between a local user and an identity at an external provider.

    ``token`` holds the raw token response when the provider stores tokens.
    """

    __tablename__ = "federated_identities"
    __table_args__ = (UniqueConstraint("user_id", "provider_alias", name="uq_federated_user_provider"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[str] = mapped_column(ForeignKey("users.id"), nullable=False)
    realm: Mapped[str] = mapped_column(String(255), nullable=False)
    provider_alias: Mapped[str] = mapped_column(String(255), nullable=False)
    external_user_id: Mapped[str | None] = mapped_column(String(255))
    external_username: Mapped[str | None] = mapped_column(String(255))
    token: Mapped[str | None] = mapped_column(Text)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    user: Mapped[LocalUser] = relationship(back_populates="federated_identities")

    def __repr__(self) -> str:
        return f"<FederatedIdentityLink(provider='{self.provider_alias}', user_id='{self.user_id}')>"


class UserSessionRecord(Base):
    """A local user session and its notes."""

    __tablename__ = "user_sessions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    realm: Mapped[str] = mapped_column(String(255), nullable=False)
    user_id: Mapped[str] = mapped_column(ForeignKey("users.id"), nullable=False)
    notes: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    user: Mapped[LocalUser] = relationship(back_populates="sessions")

    def get_note(self, key: str) -> str | None:
        return (self.notes or {}).get(key)

    def set_note(self, key: str, value: str) -> None:
        # Reassign so the JSON column is flagged as modified
        self.notes = {**(self.notes or {}), key: value}

    def remove_note(self, key: str) -> None:
        notes = dict(self.notes or {})
        notes.pop(key, None)
        self.notes = notes

    def __repr__(self) -> str:
        return f"<UserSessionRecord(id='{self.id}', user_id='{self.user_id}')>"
