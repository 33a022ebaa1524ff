from __future__ import annotations

import json
import logging
import os
import sqlite3
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path

from .results import SessionRecord

log = logging.getLogger(__name__)

SCHEMA_VERSION = 1
DB_PATH_ENV = "REACTION_AGE_DB_PATH"


@dataclass(frozen=True, slots=True)
class StoredRecord:
    record_id: int
    record: SessionRecord


def open_db(path: Path) -> sqlite3.Connection:
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(path)
    conn.execute("PRAGMA journal_mode=WAL;")
    conn.execute("PRAGMA synchronous=NORMAL;")
    _migrate(conn)
    return conn


def _migrate(conn: sqlite3.Connection) -> None:
    row = conn.execute("PRAGMA user_version;").fetchone()
    ver = int(row[0]) if row else 0
    if ver >= SCHEMA_VERSION:
        return

    log.debug("Migrating results database from v%d to v%d", ver, SCHEMA_VERSION)
    with conn:
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS session_result (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                recorded_at_utc TEXT NOT NULL,
                subject_name TEXT NOT NULL,
                subject_age INTEGER NOT NULL,
                subject_sex TEXT NOT NULL,
                grand_average_ms INTEGER NOT NULL,
                biological_age REAL,
                payload TEXT NOT NULL
            );
            """
        )
        conn.execute(f"PRAGMA user_version={SCHEMA_VERSION};")


class ResultStore:
    """sqlite-backed store of completed sessions: save / get_all / delete."""

    def __init__(self, path: Path) -> None:
        self._path = path

    @classmethod
    def default_path(cls) -> Path:
        explicit = os.environ.get(DB_PATH_ENV)
        if explicit:
            return Path(explicit).expanduser()
        return Path.home() / ".reaction_age" / "results.sqlite3"

    @property
    def path(self) -> Path:
        return self._path

    def save(self, record: SessionRecord) -> int:
        payload = json.dumps(record.to_dict(), ensure_ascii=False)
        bio_age = None if record.norm is None else float(record.norm.biological_age)
        conn = open_db(self._path)
        try:
            with conn:
                cur = conn.execute(
                    """
                    INSERT INTO session_result(
                        recorded_at_utc, subject_name, subject_age, subject_sex,
                        grand_average_ms, biological_age, payload
                    )
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        record.recorded_at_utc,
                        record.subject.name,
                        int(record.subject.age),
                        record.subject.sex.value,
                        int(record.result.grand_average_ms),
                        bio_age,
                        payload,
                    ),
                )
                record_id = int(cur.lastrowid)
        finally:
            conn.close()
        log.info("Saved session result %d for %r", record_id, record.subject.name)
        return record_id

    def get_all(self) -> list[StoredRecord]:
        conn = open_db(self._path)
        try:
            rows = conn.execute("SELECT id, payload FROM session_result ORDER BY id").fetchall()
        finally:
            conn.close()
        return [
            StoredRecord(record_id=int(row_id), record=SessionRecord.from_dict(json.loads(payload)))
            for row_id, payload in rows
        ]

    def delete(self, record_id: int) -> bool:
        conn = open_db(self._path)
        try:
            with conn:
                cur = conn.execute("DELETE FROM session_result WHERE id = ?", (int(record_id),))
                deleted = cur.rowcount > 0
        finally:
            conn.close()
        if deleted:
            log.info("Deleted session result %d", record_id)
        return deleted


def export_records_json(records: Iterable[StoredRecord], path: Path) -> Path:
    """Write stored records as a JSON array; returns the written path."""

    items = [{"id": stored.record_id, **stored.record.to_dict()} for stored in records]
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_suffix(f"{path.suffix}.tmp")
    tmp_path.write_text(json.dumps(items, indent=2, ensure_ascii=False), encoding="utf-8")
    tmp_path.replace(path)
    log.info("Exported %d session results to %s", len(items), path)
    return path
