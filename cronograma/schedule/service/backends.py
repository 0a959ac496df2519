"""Slot backends: where snapshot documents actually live.

A backend stores one JSON document per slot together with a revision counter.
``write`` re-reads the document inside the same transaction and only commits
once the caller's verifier accepts the read-back copy, so a failed write or
verification leaves the previous document untouched.
"""
import json
import sqlite3
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Protocol

from loguru import logger

from ..errors import PersistenceError
from ..models import now_ms

logger = logger.bind(module="schedule.backends")

Verifier = Callable[[dict[str, Any]], None]


@dataclass
class StoredDocument:
    """A slot document as read back from storage."""
    slot: str
    document: dict[str, Any]
    revision: int
    updated_at_ms: int


class SlotBackend(Protocol):
    """Protocol for durable slot storage."""

    def read(self, slot: str) -> StoredDocument | None:
        """Return the stored document, or None if the slot is empty."""
        ...

    def write(self, slot: str, document: dict[str, Any], verify: Verifier) -> StoredDocument:
        """Write, read back, verify and commit atomically."""
        ...

    def revision(self, slot: str) -> int:
        """Current revision of a slot (0 when empty)."""
        ...

    def close(self) -> None:
        ...


# ============== SQLite ==============

_INIT_SQL = """
CREATE TABLE IF NOT EXISTS slots (
    slot          TEXT PRIMARY KEY,
    document      TEXT NOT NULL,
    revision      INTEGER NOT NULL DEFAULT 1,
    updated_at_ms INTEGER NOT NULL
);
"""


class SQLiteSlotBackend:
    """Slot documents in a single SQLite table.

    Other processes may write the same database; they bump ``revision``,
    which the gateway's watcher uses to detect external changes.
    """

    def __init__(self, db_path: str | Path):
        self.db_path = Path(db_path).expanduser()
        self._db: sqlite3.Connection | None = None

    def open(self) -> None:
        if self._db is not None:
            return
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            # Autocommit mode: transactions are managed explicitly in write()
            self._db = sqlite3.connect(
                str(self.db_path), check_same_thread=False, isolation_level=None
            )
            self._db.row_factory = sqlite3.Row
            self._db.execute("PRAGMA journal_mode=WAL")
            self._db.execute("PRAGMA synchronous=NORMAL")
            self._db.executescript(_INIT_SQL)
        except (sqlite3.Error, OSError) as e:
            raise PersistenceError(f"Cannot open {self.db_path}: {e}") from e
        logger.info(f"Slot database opened at {self.db_path}")

    def close(self) -> None:
        if self._db:
            self._db.close()
            self._db = None

    @property
    def db(self) -> sqlite3.Connection:
        if self._db is None:
            self.open()
        assert self._db is not None
        return self._db

    def read(self, slot: str) -> StoredDocument | None:
        try:
            row = self.db.execute(
                "SELECT * FROM slots WHERE slot = ?", (slot,)
            ).fetchone()
        except sqlite3.Error as e:
            raise PersistenceError(f"Read of slot {slot} failed: {e}", slot=slot) from e
        if row is None:
            return None
        try:
            document = json.loads(row["document"])
        except json.JSONDecodeError as e:
            raise PersistenceError(f"Slot {slot} holds invalid JSON: {e}", slot=slot) from e
        return StoredDocument(
            slot=slot,
            document=document,
            revision=row["revision"],
            updated_at_ms=row["updated_at_ms"],
        )

    def revision(self, slot: str) -> int:
        try:
            row = self.db.execute(
                "SELECT revision FROM slots WHERE slot = ?", (slot,)
            ).fetchone()
        except sqlite3.Error as e:
            raise PersistenceError(f"Revision check of slot {slot} failed: {e}", slot=slot) from e
        return row["revision"] if row else 0

    def write(self, slot: str, document: dict[str, Any], verify: Verifier) -> StoredDocument:
        db = self.db
        try:
            db.execute("BEGIN IMMEDIATE")
        except sqlite3.Error as e:
            raise PersistenceError(f"Cannot lock slot {slot}: {e}", slot=slot) from e

        try:
            current = db.execute(
                "SELECT revision FROM slots WHERE slot = ?", (slot,)
            ).fetchone()
            revision = (current["revision"] if current else 0) + 1
            updated_at_ms = now_ms()
            db.execute(
                """INSERT INTO slots (slot, document, revision, updated_at_ms)
                   VALUES (?, ?, ?, ?)
                   ON CONFLICT(slot) DO UPDATE SET
                    document=excluded.document,
                    revision=excluded.revision,
                    updated_at_ms=excluded.updated_at_ms
                """,
                (slot, json.dumps(document, ensure_ascii=False), revision, updated_at_ms),
            )
            row = db.execute(
                "SELECT document FROM slots WHERE slot = ?", (slot,)
            ).fetchone()
            readback = json.loads(row["document"])
            verify(readback)
            db.execute("COMMIT")
        except sqlite3.Error as e:
            db.execute("ROLLBACK")
            raise PersistenceError(f"Write of slot {slot} failed: {e}", slot=slot) from e
        except Exception:
            db.execute("ROLLBACK")
            raise

        return StoredDocument(
            slot=slot, document=readback, revision=revision, updated_at_ms=updated_at_ms
        )


# ============== Memory ==============

class MemorySlotBackend:
    """Process-local backend. Documents are stored as JSON text so readers
    never share objects with writers.
    """

    def __init__(self):
        self._slots: dict[str, tuple[str, int, int]] = {}

    def read(self, slot: str) -> StoredDocument | None:
        entry = self._slots.get(slot)
        if entry is None:
            return None
        text, revision, updated_at_ms = entry
        return StoredDocument(
            slot=slot, document=json.loads(text), revision=revision, updated_at_ms=updated_at_ms
        )

    def revision(self, slot: str) -> int:
        entry = self._slots.get(slot)
        return entry[1] if entry else 0

    def write(self, slot: str, document: dict[str, Any], verify: Verifier) -> StoredDocument:
        text = json.dumps(document, ensure_ascii=False)
        readback = json.loads(text)
        verify(readback)

        revision = self.revision(slot) + 1
        updated_at_ms = now_ms()
        self._slots[slot] = (text, revision, updated_at_ms)
        return StoredDocument(
            slot=slot, document=readback, revision=revision, updated_at_ms=updated_at_ms
        )

    def close(self) -> None:
        pass
