"""
Dataset and key-value storage backed by SQLAlchemy.

This module provides:
- Engine/session creation from DATABASE_URL
- DatasetSink: append-only record output
- KeyValueStore: JSON values under named keys
"""

import json
import os
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from dotenv import load_dotenv
from sqlalchemy import create_engine, select
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import Session, sessionmaker

from db.models import Base, DatasetItem, KeyValueRecord
from runner.logging_setup import get_logger


# Load environment
load_dotenv()

logger = get_logger("storage")

DEFAULT_DATABASE_URL = "sqlite:///data/maps_scrape.db"


def create_db_engine(database_url: Optional[str] = None) -> Engine:
    """
    Create the engine and make sure the tables exist.

    Args:
        database_url: SQLAlchemy URL (default: DATABASE_URL env var or local SQLite)

    Returns:
        SQLAlchemy Engine
    """
    database_url = database_url or os.getenv("DATABASE_URL", DEFAULT_DATABASE_URL)

    url = make_url(database_url)
    if url.get_backend_name() == "sqlite" and url.database and url.database != ":memory:":
        Path(url.database).parent.mkdir(parents=True, exist_ok=True)

    engine = create_engine(database_url, echo=False)
    Base.metadata.create_all(engine)
    return engine


def create_session_factory(database_url: Optional[str] = None) -> Callable[[], Session]:
    """Session factory bound to a freshly created engine."""
    return sessionmaker(bind=create_db_engine(database_url), expire_on_commit=False)


class DatasetSink:
    """Append-only dataset of JSON records."""

    def __init__(self, session_factory: Callable[[], Session], name: str = "default"):
        self.session_factory = session_factory
        self.name = name

    def push(self, record: Dict[str, Any]):
        """Append one record."""
        with self.session_factory() as session:
            session.add(DatasetItem(dataset=self.name, payload=record))
            session.commit()

    def items(self) -> List[Dict[str, Any]]:
        """All records in insertion order."""
        with self.session_factory() as session:
            rows = session.scalars(
                select(DatasetItem).where(DatasetItem.dataset == self.name).order_by(DatasetItem.id)
            ).all()
            return [row.payload for row in rows]

    def count(self) -> int:
        return len(self.items())

    def export(self, path: str) -> int:
        """
        Write all records to a JSON array file.

        Returns:
            Number of records written
        """
        items = self.items()
        target = Path(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        with open(target, "w", encoding="utf-8") as f:
            json.dump(items, f, ensure_ascii=False, indent=2)
        logger.info(f"Exported {len(items)} records from dataset '{self.name}' to {target}")
        return len(items)


class KeyValueStore:
    """JSON values stored under string keys."""

    def __init__(self, session_factory: Callable[[], Session]):
        self.session_factory = session_factory

    def get(self, key: str, default: Any = None) -> Any:
        with self.session_factory() as session:
            record = session.get(KeyValueRecord, key)
            if record is None:
                return default
            return record.value

    def set(self, key: str, value: Any):
        with self.session_factory() as session:
            record = session.get(KeyValueRecord, key)
            if record is None:
                session.add(KeyValueRecord(key=key, value=value))
            else:
                record.value = value
            session.commit()
