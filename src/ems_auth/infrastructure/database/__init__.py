"""Database engine, session factory and tables"""

from ems_auth.infrastructure.database.base import Base
from ems_auth.infrastructure.database.models import AuditLog, User
from ems_auth.infrastructure.database.session import (
    close_db,
    create_engine,
    create_session_factory,
    init_db,
)

__all__ = [
    "Base",
    "User",
    "AuditLog",
    "create_engine",
    "create_session_factory",
    "init_db",
    "close_db",
]
