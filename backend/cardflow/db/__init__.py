"""
Database package initialization.
"""

from cardflow.db.database import (
    Base,
    DatabaseError,
    async_session_maker,
    close_db,
    engine,
    get_db_session,
    init_db,
)
from cardflow.db.models import CardModel

__all__ = [
    # Database
    "Base",
    "engine",
    "async_session_maker",
    "get_db_session",
    "init_db",
    "close_db",
    "DatabaseError",
    # Models
    "CardModel",
]
