"""
Repositories Layer
MongoDB connection management and the integration connection registry.
"""
from .connection import db_manager, get_database, ensure_indexes, DatabaseManager
from .base import BaseRepository
from .connections import ConnectionStore, MongoConnectionRepository
from .memory import InMemoryConnectionStore

__all__ = [
    "db_manager",
    "get_database",
    "ensure_indexes",
    "DatabaseManager",
    "BaseRepository",
    "ConnectionStore",
    "MongoConnectionRepository",
    "InMemoryConnectionStore",
]
