from __future__ import annotations

from sqlalchemy import DateTime, ForeignKey, Integer, LargeBinary, String, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.types import JSON

# Use JSONB on Postgres, fallback to JSON for SQLite/test environments.
JSONType = JSON().with_variant(JSONB, "postgresql")

from savepast.models.base import Base


class CachePartition(Base):
    __tablename__ = "cache_partitions"
    name: Mapped[str] = mapped_column(String(200), primary_key=True)
    created_at: Mapped["DateTime"] = mapped_column(DateTime(timezone=True), nullable=False)


class CacheEntry(Base):
    __tablename__ = "cache_entries"
    __table_args__ = (UniqueConstraint("partition", "method", "url", name="uq_cache_entries_partition_request"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    partition: Mapped[str] = mapped_column(
        String(200), ForeignKey("cache_partitions.name", ondelete="CASCADE"), nullable=False
    )
    method: Mapped[str] = mapped_column(String(10), nullable=False)
    url: Mapped[str] = mapped_column(Text, nullable=False)

    status: Mapped[int] = mapped_column(Integer, nullable=False)
    headers: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)
    body: Mapped[bytes] = mapped_column(LargeBinary, nullable=False, default=b"")
    stored_at: Mapped["DateTime"] = mapped_column(DateTime(timezone=True), nullable=False)


class QueuedOperation(Base):
    __tablename__ = "queued_operations"
    # seq gives strict insertion order; created_at alone can tie.
    seq: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    id: Mapped[str] = mapped_column(String(36), nullable=False, unique=True)

    type: Mapped[str] = mapped_column(String(50), nullable=False)  # reconstruct3d/generateInfoCard/colorize
    payload: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)
    retry_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped["DateTime"] = mapped_column(DateTime(timezone=True), nullable=False)


class AuditLog(Base):
    __tablename__ = "audit_log"
    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    event_type: Mapped[str] = mapped_column(String(100), nullable=False)
    severity: Mapped[str] = mapped_column(String(20), nullable=False)
    message: Mapped[str] = mapped_column(String(1000), nullable=False)
    context: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)
    created_at: Mapped["DateTime"] = mapped_column(DateTime(timezone=True), nullable=False)
