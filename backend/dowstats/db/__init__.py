from .base import Base
from .session import (
    build_engine,
    init_db,
    make_sessionmaker,
    select_database_url,
)

__all__ = [
    "Base",
    "build_engine",
    "init_db",
    "make_sessionmaker",
    "select_database_url",
]
