"""
Event Ledger Service — append-only, hash-chained record of action events.

Actions publish committed events to their ``EventBuffer`` sinks; subscribing
``EventLedger.append`` to an action persists every configuration change and
execution as the of-record history of that action:

    ledger = EventLedger(settings.database_url)
    ledger.initialize()
    swapper = Swapper("swapper", owner, custody, host, event_sinks=[ledger.append])

Events of reverted invocations are never published, so they never reach
the ledger.
"""

from __future__ import annotations

import hashlib
import json
import logging
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import create_engine, func, select
from sqlalchemy.orm import sessionmaker

from custody_actions.domain.schema import ActionEvent
from custody_actions.ledger.models import Base, EventEntryDB

logger = logging.getLogger(__name__)


# ════════════════════════════════════════════════════════════════
# Genesis Constants
# ════════════════════════════════════════════════════════════════

GENESIS_HASH = "0" * 64
GENESIS_NAME = "Genesis"
GENESIS_SOURCE = "system"


class LedgerIntegrityError(Exception):
    """Raised when the ledger cannot be appended to consistently."""
    pass


class EventLedger:
    """
    Persistent event log of one or more actions.

    Usage:
        ledger = EventLedger("sqlite:///custody_actions.db")
        ledger.initialize()
        ledger.append(event)
        ok, count, message = ledger.verify_chain()
    """

    def __init__(self, database_url: str) -> None:
        """
        Initialize the ledger.

        Args:
            database_url: SQLAlchemy connection string (sync driver).
        """
        self.engine = create_engine(database_url, echo=False)
        self.SessionLocal = sessionmaker(bind=self.engine)

    def initialize(self) -> None:
        """Create the schema and seed the genesis entry if it is missing."""
        Base.metadata.create_all(self.engine)

        with self.SessionLocal() as session:
            existing = session.execute(
                select(EventEntryDB).where(EventEntryDB.sequence_number == 0)
            ).scalar_one_or_none()

            if existing is None:
                genesis = self._build_entry(
                    sequence_number=0,
                    previous_hash=GENESIS_HASH,
                    event_id=uuid4(),
                    event_name=GENESIS_NAME,
                    source=GENESIS_SOURCE,
                    event_timestamp=0,
                    payload={"message": "Genesis of the custody action event ledger"},
                )
                session.add(genesis)
                session.commit()
                logger.info("Genesis entry created: hash=%s", genesis.entry_hash[:16])

    def append(self, event: ActionEvent) -> EventEntryDB:
        """
        Append a committed event to the chain.

        Returns:
            The newly created EventEntryDB record.

        Raises:
            LedgerIntegrityError: If the ledger has not been initialized.
        """
        data = event.model_dump(mode="json")

        with self.SessionLocal() as session:
            last_entry = session.execute(
                select(EventEntryDB)
                .order_by(EventEntryDB.sequence_number.desc())
                .limit(1)
            ).scalar_one_or_none()

            if last_entry is None:
                raise LedgerIntegrityError(
                    "Cannot append: no genesis entry found. Call initialize() first."
                )

            entry = self._build_entry(
                sequence_number=last_entry.sequence_number + 1,
                previous_hash=last_entry.entry_hash,
                event_id=event.id,
                event_name=event.name,
                source=event.source,
                event_timestamp=event.timestamp,
                payload=data["payload"],
            )
            session.add(entry)
            session.commit()
            session.refresh(entry)

            logger.info(
                "Event appended: seq=%d source=%s name=%s hash=%s",
                entry.sequence_number, event.source, event.name, entry.entry_hash[:16],
            )
            return entry

    def verify_chain(self) -> tuple[bool, int, str]:
        """
        Verify the integrity of the entire hash chain.

        Returns:
            Tuple of (is_valid, entries_verified, message).
        """
        with self.SessionLocal() as session:
            entries = session.execute(
                select(EventEntryDB).order_by(EventEntryDB.sequence_number.asc())
            ).scalars().all()

            if not entries:
                return False, 0, "No entries found in ledger"

            first = entries[0]
            if first.sequence_number != 0:
                return False, 0, f"First entry has sequence {first.sequence_number}, expected 0"
            if first.previous_hash != GENESIS_HASH:
                return False, 0, "Genesis entry has incorrect previous_hash"

            for i, entry in enumerate(entries):
                expected_hash = self._compute_hash(
                    sequence_number=entry.sequence_number,
                    previous_hash=entry.previous_hash,
                    event_id=entry.event_id,
                    event_name=entry.event_name,
                    source=entry.source,
                    event_timestamp=entry.event_timestamp,
                    payload=entry.payload,
                )
                if entry.entry_hash != expected_hash:
                    return (
                        False, i,
                        f"Hash mismatch at sequence {entry.sequence_number}: "
                        f"stored={entry.entry_hash[:16]}... "
                        f"computed={expected_hash[:16]}..."
                    )
                if i > 0 and entry.previous_hash != entries[i - 1].entry_hash:
                    return (
                        False, i,
                        f"Chain break at sequence {entry.sequence_number}: "
                        f"previous_hash does not match prior entry's hash"
                    )

            return True, len(entries), f"Chain verified: {len(entries)} entries, integrity intact"

    def get_by_sequence(self, sequence_number: int) -> EventEntryDB | None:
        with self.SessionLocal() as session:
            return session.execute(
                select(EventEntryDB).where(EventEntryDB.sequence_number == sequence_number)
            ).scalar_one_or_none()

    def get_entries_by_source(self, source: str, limit: int = 100) -> list[EventEntryDB]:
        """Retrieve the events of one action, newest first."""
        with self.SessionLocal() as session:
            return list(
                session.execute(
                    select(EventEntryDB)
                    .where(EventEntryDB.source == source)
                    .order_by(EventEntryDB.sequence_number.desc())
                    .limit(limit)
                ).scalars().all()
            )

    def get_entries_by_name(self, event_name: str, limit: int = 100) -> list[EventEntryDB]:
        with self.SessionLocal() as session:
            return list(
                session.execute(
                    select(EventEntryDB)
                    .where(EventEntryDB.event_name == event_name)
                    .order_by(EventEntryDB.sequence_number.desc())
                    .limit(limit)
                ).scalars().all()
            )

    def get_latest_entries(self, limit: int = 50) -> list[EventEntryDB]:
        with self.SessionLocal() as session:
            return list(
                session.execute(
                    select(EventEntryDB)
                    .order_by(EventEntryDB.sequence_number.desc())
                    .limit(limit)
                ).scalars().all()
            )

    def get_entry_count(self) -> int:
        with self.SessionLocal() as session:
            result = session.execute(select(func.count()).select_from(EventEntryDB))
            return result.scalar() or 0

    # ── Internal ────────────────────────────────────────────────

    def _build_entry(self, **fields: Any) -> EventEntryDB:
        return EventEntryDB(id=uuid4(), entry_hash=self._compute_hash(**fields), **fields)

    @staticmethod
    def _compute_hash(
        sequence_number: int,
        previous_hash: str,
        event_id: UUID,
        event_name: str,
        source: str,
        event_timestamp: int,
        payload: dict[str, Any],
    ) -> str:
        """Hash = SHA-256(previous_hash || canonical_json(entry_fields))."""
        hashable = {
            "sequence_number": sequence_number,
            "previous_hash": previous_hash,
            "event_id": str(event_id),
            "event_name": event_name,
            "source": source,
            "event_timestamp": event_timestamp,
            "payload": payload,
        }
        canonical = json.dumps(hashable, sort_keys=True, default=str)
        return hashlib.sha256((previous_hash + canonical).encode("utf-8")).hexdigest()


def entry_to_dict(entry: EventEntryDB) -> dict[str, Any]:
    """JSON-ready view of a ledger row."""
    return {
        "sequence": entry.sequence_number,
        "hash": entry.entry_hash,
        "event_id": str(entry.event_id),
        "name": entry.event_name,
        "source": entry.source,
        "timestamp": entry.event_timestamp,
        "payload": entry.payload,
    }
