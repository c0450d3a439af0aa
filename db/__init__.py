"""
Database module for maps-scrape-bot.

This module handles:
- Database connection management
- SQLAlchemy models
- Dataset and key-value storage
"""

from db.models import Base, DatasetItem, KeyValueRecord
from db.storage import (
    DatasetSink,
    KeyValueStore,
    create_db_engine,
    create_session_factory,
)

__version__ = "0.1.0"

__all__ = [
    "Base",
    "DatasetItem",
    "KeyValueRecord",
    "DatasetSink",
    "KeyValueStore",
    "create_db_engine",
    "create_session_factory",
]
