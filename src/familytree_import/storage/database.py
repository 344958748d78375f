"""
Family-tree person and relationship storage.

SQLite via the standard library. Every multi-row write goes through
``transaction()``, which opens ``BEGIN IMMEDIATE`` and either commits
everything or rolls everything back.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Generator

from familytree_import.core.models import (
    ParentRole,
    RelationshipType,
    StoredPerson,
    StoredRelationship,
)

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS people (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    first_name TEXT NOT NULL DEFAULT '',
    last_name TEXT NOT NULL DEFAULT '',
    gender TEXT,
    birth_date TEXT,
    birth_place TEXT,
    death_date TEXT,
    death_place TEXT,
    photo_url TEXT,
    notes TEXT,
    user_id INTEGER NOT NULL,
    created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
);

CREATE INDEX IF NOT EXISTS people_user_idx ON people (user_id);

CREATE TABLE IF NOT EXISTS relationships (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    person1_id INTEGER NOT NULL REFERENCES people (id) ON DELETE CASCADE,
    person2_id INTEGER NOT NULL REFERENCES people (id) ON DELETE CASCADE,
    type TEXT NOT NULL CHECK (type IN ('spouse', 'parentOf')),
    parent_role TEXT CHECK (parent_role IN ('mother', 'father')),
    user_id INTEGER NOT NULL,
    created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
);

CREATE UNIQUE INDEX IF NOT EXISTS relationships_natural_key
    ON relationships (person1_id, person2_id, type, COALESCE(parent_role, ''), user_id);
"""

PERSON_COLUMNS = (
    "first_name",
    "last_name",
    "gender",
    "birth_date",
    "birth_place",
    "death_date",
    "death_place",
    "photo_url",
    "notes",
)


def _row_to_person(row: sqlite3.Row) -> StoredPerson:
    return StoredPerson(
        id=row["id"],
        first_name=row["first_name"] or "",
        last_name=row["last_name"] or "",
        gender=row["gender"],
        birth_date=row["birth_date"],
        birth_place=row["birth_place"],
        death_date=row["death_date"],
        death_place=row["death_place"],
        photo_url=row["photo_url"],
        notes=row["notes"],
        user_id=row["user_id"],
    )


def _row_to_relationship(row: sqlite3.Row) -> StoredRelationship:
    return StoredRelationship(
        id=row["id"],
        person1_id=row["person1_id"],
        person2_id=row["person2_id"],
        type=RelationshipType(row["type"]),
        parent_role=ParentRole(row["parent_role"]) if row["parent_role"] else None,
        user_id=row["user_id"],
    )


class StorageTransaction:
    """Writes scoped to one open transaction."""

    def __init__(self, cursor: sqlite3.Cursor):
        self._cursor = cursor

    def insert_person(self, person: StoredPerson, user_id: int) -> int:
        """Insert a person and return the new id."""
        values = [getattr(person, column) for column in PERSON_COLUMNS]
        self._cursor.execute(
            f"INSERT INTO people ({', '.join(PERSON_COLUMNS)}, user_id) "
            f"VALUES ({', '.join('?' * len(PERSON_COLUMNS))}, ?)",
            (*values, user_id),
        )
        return int(self._cursor.lastrowid)

    def update_person(self, person_id: int, person: StoredPerson, user_id: int) -> bool:
        """Overwrite every person field. False when no such person is owned by ``user_id``."""
        assignments = ", ".join(f"{column} = ?" for column in PERSON_COLUMNS)
        values = [getattr(person, column) for column in PERSON_COLUMNS]
        self._cursor.execute(
            f"UPDATE people SET {assignments} WHERE id = ? AND user_id = ?",
            (*values, person_id, user_id),
        )
        return self._cursor.rowcount == 1

    def insert_relationship(self, relationship: StoredRelationship) -> bool:
        """Insert unless the natural tuple already exists. True when a row was written."""
        self._cursor.execute(
            "INSERT OR IGNORE INTO relationships "
            "(person1_id, person2_id, type, parent_role, user_id) VALUES (?, ?, ?, ?, ?)",
            (
                relationship.person1_id,
                relationship.person2_id,
                relationship.type.value,
                relationship.parent_role.value if relationship.parent_role else None,
                relationship.user_id,
            ),
        )
        return self._cursor.rowcount == 1


class FamilyTreeDatabase:
    """
    SQLite-backed store of people and relationships.

    One connection is shared between threads and guarded by a lock, so an
    in-memory database works the same as a file one.
    """

    def __init__(self, db_path: str | Path = ":memory:", timeout: float = 30.0):
        self.db_path = str(db_path)
        self.timeout = timeout
        self._conn: sqlite3.Connection | None = None
        self._lock = threading.RLock()

    def connect(self) -> FamilyTreeDatabase:
        """Open the database and create the schema if needed."""
        if self._conn is not None:
            return self

        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        self._conn = sqlite3.connect(
            self.db_path,
            timeout=self.timeout,
            isolation_level=None,
            check_same_thread=False,
        )
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA foreign_keys = ON")
        self._conn.executescript(SCHEMA)
        logger.debug("Opened family tree database %s", self.db_path)
        return self

    def close(self) -> None:
        """Close database connection."""
        if self._conn:
            self._conn.close()
            self._conn = None

    @property
    def connection(self) -> sqlite3.Connection:
        if self._conn is None:
            raise RuntimeError("Not connected to database")
        return self._conn

    @contextmanager
    def transaction(self) -> Generator[StorageTransaction, None, None]:
        """All-or-nothing write scope."""
        with self._lock:
            conn = self.connection
            cursor = conn.cursor()
            cursor.execute("BEGIN IMMEDIATE")
            try:
                yield StorageTransaction(cursor)
                conn.execute("COMMIT")
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            finally:
                cursor.close()

    # =========================================================================
    # Reads
    # =========================================================================

    def list_people(self, user_id: int) -> list[StoredPerson]:
        with self._lock:
            rows = self.connection.execute(
                "SELECT * FROM people WHERE user_id = ? ORDER BY id", (user_id,)
            ).fetchall()
        return [_row_to_person(row) for row in rows]

    def get_person(self, person_id: int, user_id: int) -> StoredPerson | None:
        with self._lock:
            row = self.connection.execute(
                "SELECT * FROM people WHERE id = ? AND user_id = ?", (person_id, user_id)
            ).fetchone()
        return _row_to_person(row) if row else None

    def list_relationships(self, user_id: int) -> list[StoredRelationship]:
        with self._lock:
            rows = self.connection.execute(
                "SELECT * FROM relationships WHERE user_id = ? ORDER BY id", (user_id,)
            ).fetchall()
        return [_row_to_relationship(row) for row in rows]

    # =========================================================================
    # Single-row writes
    # =========================================================================

    def add_person(self, person: StoredPerson, user_id: int) -> int:
        with self.transaction() as tx:
            return tx.insert_person(person, user_id)

    def add_relationship(self, relationship: StoredRelationship) -> bool:
        with self.transaction() as tx:
            return tx.insert_relationship(relationship)
