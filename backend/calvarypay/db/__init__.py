"""Database package — engine/session factory construction and the Redis client."""

from calvarypay.db.base import Base, create_engine_and_factory, init_db
from calvarypay.db.redis import close_redis, create_redis

__all__ = [
    "Base",
    "close_redis",
    "create_engine_and_factory",
    "create_redis",
    "init_db",
]
