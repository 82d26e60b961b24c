"""
Event Ledger — SQLAlchemy models for the append-only record of action events.

Every event an action commits (configuration changes and executions) is
persisted as one row of a SHA-256 hash chain:

1. Verifiable   — each row stores SHA-256(previous_hash || canonical_json(fields))
2. Append-only  — rows are never updated or deleted
3. Auditable    — the chain can be re-verified from genesis at any time
"""

from __future__ import annotations

from uuid import uuid4

from sqlalchemy import JSON, BigInteger, Column, DateTime, Index, Integer, String, Uuid, func
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """SQLAlchemy declarative base for ledger models."""
    pass


class EventEntryDB(Base):
    """
    A single committed action event.

    The hash covers the event itself (id, name, source, ledger time and
    payload) plus its position in the chain; ``recorded_at`` is wall-clock
    bookkeeping and is not hashed.
    """

    __tablename__ = "event_entries"

    id = Column(Uuid, primary_key=True, default=uuid4)

    sequence_number = Column(
        Integer, nullable=False, unique=True, index=True,
        comment="Monotonically increasing sequence number",
    )

    previous_hash = Column(
        String(64), nullable=False,
        comment="SHA-256 hash of the previous entry",
    )
    entry_hash = Column(
        String(64), nullable=False, unique=True,
        comment="SHA-256 hash of this entry",
    )

    event_id = Column(Uuid, nullable=False, unique=True, comment="ActionEvent.id")
    event_name = Column(String(100), nullable=False, index=True)
    source = Column(String(200), nullable=False, comment="Name of the emitting action")
    event_timestamp = Column(BigInteger, nullable=False, comment="Ledger time at emission")
    payload = Column(JSON, nullable=False, default=dict)

    recorded_at = Column(DateTime(timezone=True), nullable=False, default=func.now())

    __table_args__ = (
        Index("ix_event_source_name", "source", "event_name"),
    )

    def __repr__(self) -> str:
        return (
            f"<EventEntry seq={self.sequence_number} "
            f"name={self.event_name} hash={self.entry_hash[:12]}...>"
        )
