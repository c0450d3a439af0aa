"""
Database models for maps-scrape-bot using SQLAlchemy 2.0 style.

Models:
- DatasetItem: Append-only output records (listings, failed requests)
- KeyValueRecord: Named JSON values (run state, cost summary, error pages)
"""

from datetime import datetime
from typing import Any

from sqlalchemy import DateTime, Integer, String, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import JSON


class Base(DeclarativeBase):
    """Base class for all database models."""

    pass


class DatasetItem(Base):
    """
    One record pushed to a named dataset.

    Attributes:
        id: Primary key (insertion order)
        dataset: Dataset name ('default', 'FAILED_REQUESTS', ...)
        payload: The record as JSON
        created_at: Insertion timestamp
    """

    __tablename__ = "dataset_items"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    dataset: Mapped[str] = mapped_column(String(128), index=True, nullable=False)
    payload: Mapped[Any] = mapped_column(JSON, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    def __repr__(self) -> str:
        return f"<DatasetItem(id={self.id}, dataset='{self.dataset}')>"


class KeyValueRecord(Base):
    """
    A JSON value stored under a unique key.

    Attributes:
        key: Primary key
        value: Stored JSON value
        updated_at: Last write timestamp
    """

    __tablename__ = "key_value_records"

    key: Mapped[str] = mapped_column(String(255), primary_key=True)
    value: Mapped[Any] = mapped_column(JSON, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    def __repr__(self) -> str:
        return f"<KeyValueRecord(key='{self.key}')>"
