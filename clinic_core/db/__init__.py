"""Database package: clinic store engine, session factory, and Redis client."""

from clinic_core.db.base import Base, bind_engine, close_db, create_tables, get_session_factory, init_db
from clinic_core.db.redis import bind_redis, close_redis, get_redis, init_redis

__all__ = [
    "Base",
    "bind_engine",
    "bind_redis",
    "close_db",
    "close_redis",
    "create_tables",
    "get_redis",
    "get_session_factory",
    "init_db",
    "init_redis",
]
