"""
Database Infrastructure Package for CareConnect

Exports database connection and session utilities. Repositories, services
and FastAPI providers live in their own modules.
"""

from careconnect.infrastructure.db.database import (
    DatabaseManager,
    get_db_manager,
    get_session,
    init_db,
    close_db,
)


__all__ = [
    "DatabaseManager",
    "get_db_manager",
    "get_session",
    "init_db",
    "close_db",
]
