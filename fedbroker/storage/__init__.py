"""Storage module for fedbroker.

Provides SQLAlchemy storage for local users, federated identity links
and user sessions.
"""

from fedbroker.storage.database import (
    DEFAULT_DB_PATH,
    DEFAULT_DB_URL,
    ENV_DB_URL,
    Database,
    DatabaseError,
    create_database_engine,
    get_database_url,
)
from fedbroker.storage.models import (
    Base,
    FederatedIdentityLink,
    LocalUser,
    UserSessionRecord,
)
from fedbroker.storage.stores import SqlSessionStore, SqlUserStore

__all__ = [
    # Database management
    "Database",
    "DatabaseError",
    "create_database_engine",
    "get_database_url",
    # Constants
    "DEFAULT_DB_PATH",
    "DEFAULT_DB_URL",
    "ENV_DB_URL",
    # Models
    "Base",
    "FederatedIdentityLink",
    "LocalUser",
    "UserSessionRecord",
    # Stores
    "SqlSessionStore",
    "SqlUserStore",
]
