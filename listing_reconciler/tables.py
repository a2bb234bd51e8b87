"""SQLAlchemy tables for runs, property records and the dedup cache.

Records are stored denormalized: the full PropertyRecord lives in a JSON
column, with the columns that are queried (run, status, identity keys)
pulled out beside it. The pydantic model is the schema; this table is a
container for it.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import JSON, DateTime, Float, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from .database import Base


class RunRow(Base):
    """One pipeline run over one uploaded document."""

    __tablename__ = "runs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    file_hash: Mapped[str] = mapped_column(String(64), index=True)
    file_name: Mapped[str] = mapped_column(Text, default="")
    status: Mapped[str] = mapped_column(String(32), index=True)
    progress: Mapped[float] = mapped_column(Float, default=0)
    data: Mapped[dict] = mapped_column(JSON, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))


class PropertyRow(Base):
    """A PropertyRecord snapshot keyed by record id."""

    __tablename__ = "properties"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    run_id: Mapped[str] = mapped_column(String(36), index=True)
    status: Mapped[str] = mapped_column(String(16), index=True)
    source_page: Mapped[int | None] = mapped_column(Integer)
    data: Mapped[dict] = mapped_column(JSON, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))


class DedupCacheRow(Base):
    """Normalized identity keys of every accepted record, across all runs."""

    __tablename__ = "dedup_cache"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    address_normalized: Mapped[str | None] = mapped_column(Text)
    url_normalized: Mapped[str | None] = mapped_column(Text)
    run_id: Mapped[str] = mapped_column(String(36))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))

    __table_args__ = (
        Index("ix_dedup_cache_address", "address_normalized"),
        Index("ix_dedup_cache_url", "url_normalized"),
    )
