"""
SQLAlchemy 2.0 ORM models and the lifecycle status enum.

All durable state lives in one namespaced key-value table: content records,
the request index and the live status events. ``version`` increments on
every write and backs the store's compare-and-set.
"""

from __future__ import annotations

import enum
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import JSON, DateTime, Integer, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


# ── Enums ───────────────────────────────────────────────────
class RequestStatus(str, enum.Enum):
    QUEUED = "queued"
    TRANSCRIBING = "transcribing"
    GENERATING = "generating"
    GENERATED = "generated"
    PENDING_APPROVAL = "pending_approval"
    APPROVED = "approved"
    REJECTED = "rejected"
    PUBLISHING = "publishing"
    PUBLISHED = "published"
    EXPIRED = "expired"
    ERROR = "error"


# ── Models ──────────────────────────────────────────────────
class StateEntry(Base):
    __tablename__ = "state_entries"

    namespace: Mapped[str] = mapped_column(String(64), primary_key=True)
    key: Mapped[str] = mapped_column("entry_key", String(128), primary_key=True)
    value: Mapped[Any] = mapped_column(JSON)
    version: Mapped[int] = mapped_column(Integer, default=1)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(UTC)
    )
