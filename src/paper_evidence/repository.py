"""SQLite persistence for ingestions, tables, data points and compute runs.

Implements ScientificDataRepositoryProtocol. Creation of ingestions and
compute runs is an idempotent upsert: the store deduplicates on
(owner, content hash) and on deterministic hash respectively, so concurrent
writers need no external locking.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
import uuid
from contextlib import contextmanager
from dataclasses import replace
from pathlib import Path

from .models import (
    ComputeRun,
    ExtractedTable,
    Ingestion,
    ProseProvenance,
    ScientificDataPoint,
    TableProvenance,
    utc_now,
)

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

SCHEMA = """\
CREATE TABLE IF NOT EXISTS ingestions (
    id              TEXT PRIMARY KEY,
    owner_id        TEXT NOT NULL,
    file_name       TEXT NOT NULL,
    content_hash    TEXT NOT NULL,
    size_bytes      INTEGER NOT NULL,
    status          TEXT NOT NULL DEFAULT 'pending',
    version         INTEGER NOT NULL DEFAULT 1,
    page_count      INTEGER,
    metadata_json   TEXT NOT NULL DEFAULT '{}',
    error_message   TEXT,
    created_at      TEXT NOT NULL,
    updated_at      TEXT NOT NULL,
    UNIQUE (owner_id, content_hash)
);

CREATE TABLE IF NOT EXISTS extracted_tables (
    id                  TEXT PRIMARY KEY,
    ingestion_id        TEXT NOT NULL REFERENCES ingestions(id),
    ingestion_version   INTEGER NOT NULL,
    page_number         INTEGER NOT NULL,
    table_index         INTEGER NOT NULL,
    headers_json        TEXT NOT NULL,
    rows_json           TEXT NOT NULL,
    confidence          REAL NOT NULL,
    parse_status        TEXT NOT NULL,
    qa_flags_json       TEXT NOT NULL,
    bbox_json           TEXT,
    created_at          TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS data_points (
    id                  TEXT PRIMARY KEY,
    ingestion_id        TEXT REFERENCES ingestions(id),
    ingestion_version   INTEGER NOT NULL DEFAULT 1,
    source_table_id     TEXT REFERENCES extracted_tables(id),
    provenance_kind     TEXT,
    extraction_lane     TEXT,
    context_snippet     TEXT,
    extraction_version  TEXT,
    x_name              TEXT NOT NULL,
    y_name              TEXT NOT NULL,
    x_value             REAL NOT NULL,
    y_value             REAL NOT NULL,
    unit_x              TEXT,
    unit_y              TEXT,
    metadata_json       TEXT NOT NULL DEFAULT '{}',
    created_at          TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS compute_runs (
    id                  TEXT PRIMARY KEY,
    ingestion_id        TEXT REFERENCES ingestions(id),
    method              TEXT NOT NULL,
    method_version      TEXT NOT NULL,
    params_json         TEXT NOT NULL,
    result_json         TEXT NOT NULL,
    deterministic_hash  TEXT NOT NULL UNIQUE,
    created_by          TEXT,
    created_at          TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_tables_ingestion ON extracted_tables (ingestion_id, ingestion_version);
CREATE INDEX IF NOT EXISTS idx_points_ingestion ON data_points (ingestion_id, ingestion_version);
CREATE INDEX IF NOT EXISTS idx_runs_ingestion ON compute_runs (ingestion_id);
"""

# Metadata keys derived from the provenance columns on read
_PROVENANCE_KEYS = ("source", "sourceTableId", "extractionVersion", "extractionLane", "contextSnippet")


class RepositoryError(RuntimeError):
    """A store operation could not complete."""


def _new_id() -> str:
    return uuid.uuid4().hex


# ---------------------------------------------------------------------------
# Row mapping
# ---------------------------------------------------------------------------

def _ingestion_from_row(row: sqlite3.Row) -> Ingestion:
    return Ingestion(
        id=row["id"],
        owner_id=row["owner_id"],
        file_name=row["file_name"],
        content_hash=row["content_hash"],
        size_bytes=row["size_bytes"],
        status=row["status"],
        version=row["version"],
        page_count=row["page_count"],
        metadata=json.loads(row["metadata_json"] or "{}"),
        error_message=row["error_message"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _table_from_row(row: sqlite3.Row) -> ExtractedTable:
    bbox = json.loads(row["bbox_json"]) if row["bbox_json"] else None
    return ExtractedTable(
        id=row["id"],
        ingestion_id=row["ingestion_id"],
        ingestion_version=row["ingestion_version"],
        page_number=row["page_number"],
        table_index=row["table_index"],
        headers=json.loads(row["headers_json"]),
        rows=json.loads(row["rows_json"]),
        confidence=row["confidence"],
        parse_status=row["parse_status"],
        qa_flags=json.loads(row["qa_flags_json"]),
        bbox=tuple(bbox) if bbox else None,
    )


def _point_from_row(row: sqlite3.Row) -> ScientificDataPoint:
    provenance = None
    if row["provenance_kind"] == "table" and row["source_table_id"]:
        provenance = TableProvenance(table_id=row["source_table_id"])
    elif row["provenance_kind"] == "prose":
        provenance = ProseProvenance(
            lane=row["extraction_lane"],
            context_snippet=row["context_snippet"] or "",
            extraction_version=row["extraction_version"] or "",
        )
    metadata = json.loads(row["metadata_json"] or "{}")
    for key in _PROVENANCE_KEYS:
        metadata.pop(key, None)
    return ScientificDataPoint(
        id=row["id"],
        ingestion_id=row["ingestion_id"],
        ingestion_version=row["ingestion_version"],
        x_name=row["x_name"],
        y_name=row["y_name"],
        x_value=row["x_value"],
        y_value=row["y_value"],
        unit_x=row["unit_x"],
        unit_y=row["unit_y"],
        provenance=provenance,
        metadata=metadata,
        created_at=row["created_at"],
    )


def _run_from_row(row: sqlite3.Row) -> ComputeRun:
    return ComputeRun(
        id=row["id"],
        ingestion_id=row["ingestion_id"],
        method=row["method"],
        method_version=row["method_version"],
        params=json.loads(row["params_json"]),
        result=json.loads(row["result_json"]),
        deterministic_hash=row["deterministic_hash"],
        created_by=row["created_by"],
        created_at=row["created_at"],
    )


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------

class SQLiteRepository:
    """Thread-safe SQLite store; pass ":memory:" for an ephemeral database."""

    def __init__(self, db_path: Path | str = ":memory:") -> None:
        self._db_path = str(db_path)
        if self._db_path != ":memory:":
            Path(self._db_path).expanduser().parent.mkdir(parents=True, exist_ok=True)
        # Calls arrive from worker threads (asyncio.to_thread); access is
        # serialized by the lock.
        self._conn = sqlite3.connect(self._db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.RLock()
        with self._lock:
            self._conn.executescript(SCHEMA)
            self._conn.commit()

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    def __enter__(self) -> SQLiteRepository:
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    @contextmanager
    def _transaction(self, operation: str):
        """Serialize access and commit on success; wrap sqlite errors."""
        with self._lock:
            try:
                with self._conn:
                    yield self._conn
            except sqlite3.Error as e:
                logger.error(f"{operation} failed: {e}")
                raise RepositoryError(f"{operation} failed: {e}") from e

    # ------------------------------------------------------------------
    # Ingestions
    # ------------------------------------------------------------------

    def create_ingestion(
        self,
        owner_id: str,
        file_name: str,
        content_hash: str,
        size_bytes: int,
        metadata: dict | None = None,
    ) -> Ingestion:
        now = utc_now()
        with self._transaction("create_ingestion") as conn:
            conn.execute(
                "INSERT OR IGNORE INTO ingestions "
                "(id, owner_id, file_name, content_hash, size_bytes, status, version, "
                " metadata_json, created_at, updated_at) "
                "VALUES (?, ?, ?, ?, ?, 'pending', 1, ?, ?, ?)",
                (_new_id(), owner_id, file_name, content_hash, size_bytes,
                 json.dumps(metadata or {}), now, now),
            )
            row = conn.execute(
                "SELECT * FROM ingestions WHERE owner_id = ? AND content_hash = ? "
                "ORDER BY version DESC LIMIT 1",
                (owner_id, content_hash),
            ).fetchone()
        return _ingestion_from_row(row)

    def update_ingestion_status(
        self,
        ingestion_id: str,
        status: str,
        error_message: str | None = None,
        *,
        page_count: int | None = None,
        metadata: dict | None = None,
        increment_version: bool = False,
        expected_status: str | None = None,
    ) -> Ingestion | None:
        """Apply a status change; with ``expected_status`` it only applies while
        the stored status still matches, otherwise None is returned."""
        with self._transaction("update_ingestion_status") as conn:
            row = conn.execute(
                "SELECT metadata_json, status FROM ingestions WHERE id = ?", (ingestion_id,)
            ).fetchone()
            if row is None:
                return None
            if expected_status is not None and row["status"] != expected_status:
                logger.info(
                    f"Ingestion {ingestion_id} is {row['status']}, not {expected_status}; "
                    f"skipping move to {status}"
                )
                return None
            merged = json.loads(row["metadata_json"] or "{}")
            if metadata:
                merged.update(metadata)

            assignments = ["status = ?", "error_message = ?", "metadata_json = ?", "updated_at = ?"]
            params: list = [status, error_message, json.dumps(merged), utc_now()]
            if page_count is not None:
                assignments.append("page_count = ?")
                params.append(page_count)
            if increment_version:
                assignments.append("version = version + 1")
            query = f"UPDATE ingestions SET {', '.join(assignments)} WHERE id = ?"
            params.append(ingestion_id)
            if expected_status is not None:
                query += " AND status = ?"
                params.append(expected_status)
            if conn.execute(query, params).rowcount == 0:
                return None
            updated = conn.execute(
                "SELECT * FROM ingestions WHERE id = ?", (ingestion_id,)
            ).fetchone()
        return _ingestion_from_row(updated)

    def get_ingestion(self, ingestion_id: str) -> Ingestion | None:
        with self._transaction("get_ingestion") as conn:
            row = conn.execute(
                "SELECT * FROM ingestions WHERE id = ?", (ingestion_id,)
            ).fetchone()
        return _ingestion_from_row(row) if row else None

    def list_ingestions(
        self, owner_id: str, limit: int = 50, status: str | None = None
    ) -> list[Ingestion]:
        query = "SELECT * FROM ingestions WHERE owner_id = ?"
        params: list = [owner_id]
        if status is not None:
            query += " AND status = ?"
            params.append(status)
        query += " ORDER BY created_at DESC, rowid DESC LIMIT ?"
        params.append(limit)
        with self._transaction("list_ingestions") as conn:
            rows = conn.execute(query, params).fetchall()
        return [_ingestion_from_row(r) for r in rows]

    def _current_version(self, conn: sqlite3.Connection, ingestion_id: str) -> int | None:
        row = conn.execute(
            "SELECT version FROM ingestions WHERE id = ?", (ingestion_id,)
        ).fetchone()
        return row["version"] if row else None

    # ------------------------------------------------------------------
    # Tables
    # ------------------------------------------------------------------

    def save_extracted_tables(
        self, ingestion_id: str, version: int, tables: list[ExtractedTable]
    ) -> list[ExtractedTable]:
        if not tables:
            return []
        now = utc_now()
        saved = [
            replace(t, id=t.id or _new_id(), ingestion_id=ingestion_id, ingestion_version=version)
            for t in tables
        ]
        with self._transaction("save_extracted_tables") as conn:
            conn.executemany(
                "INSERT INTO extracted_tables "
                "(id, ingestion_id, ingestion_version, page_number, table_index, headers_json, "
                " rows_json, confidence, parse_status, qa_flags_json, bbox_json, created_at) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                [
                    (t.id, ingestion_id, version, t.page_number, t.table_index,
                     json.dumps(t.headers), json.dumps(t.rows), t.confidence, t.parse_status,
                     json.dumps(t.qa_flags), json.dumps(t.bbox) if t.bbox else None, now)
                    for t in saved
                ],
            )
        return saved

    def get_extracted_tables(
        self, ingestion_id: str, version: int | None = None
    ) -> list[ExtractedTable]:
        with self._transaction("get_extracted_tables") as conn:
            if version is None:
                version = self._current_version(conn, ingestion_id)
                if version is None:
                    return []
            rows = conn.execute(
                "SELECT * FROM extracted_tables WHERE ingestion_id = ? AND ingestion_version = ? "
                "ORDER BY page_number, table_index",
                (ingestion_id, version),
            ).fetchall()
        return [_table_from_row(r) for r in rows]

    # ------------------------------------------------------------------
    # Data points
    # ------------------------------------------------------------------

    def save_data_points(self, points: list[ScientificDataPoint]) -> list[ScientificDataPoint]:
        if not points:
            return []
        now = utc_now()
        saved = [replace(p, id=p.id or _new_id(), created_at=p.created_at or now) for p in points]
        records = []
        for p in saved:
            prose = p.provenance if isinstance(p.provenance, ProseProvenance) else None
            records.append((
                p.id, p.ingestion_id, p.ingestion_version, p.source_table_id,
                p.provenance.kind if p.provenance else None,
                prose.lane if prose else None,
                prose.context_snippet if prose else None,
                prose.extraction_version if prose else None,
                p.x_name, p.y_name, p.x_value, p.y_value, p.unit_x, p.unit_y,
                json.dumps(p.full_metadata()), p.created_at,
            ))
        with self._transaction("save_data_points") as conn:
            conn.executemany(
                "INSERT INTO data_points "
                "(id, ingestion_id, ingestion_version, source_table_id, provenance_kind, "
                " extraction_lane, context_snippet, extraction_version, x_name, y_name, "
                " x_value, y_value, unit_x, unit_y, metadata_json, created_at) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                records,
            )
        return saved

    def get_data_points(
        self, ingestion_id: str, version: int | None = None
    ) -> list[ScientificDataPoint]:
        with self._transaction("get_data_points") as conn:
            if version is None:
                version = self._current_version(conn, ingestion_id)
                if version is None:
                    return []
            rows = conn.execute(
                "SELECT * FROM data_points WHERE ingestion_id = ? AND ingestion_version = ? "
                "ORDER BY rowid",
                (ingestion_id, version),
            ).fetchall()
        return [_point_from_row(r) for r in rows]

    # ------------------------------------------------------------------
    # Compute runs
    # ------------------------------------------------------------------

    def save_compute_run(self, run: ComputeRun) -> ComputeRun:
        with self._transaction("save_compute_run") as conn:
            conn.execute(
                "INSERT OR IGNORE INTO compute_runs "
                "(id, ingestion_id, method, method_version, params_json, result_json, "
                " deterministic_hash, created_by, created_at) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (run.id or _new_id(), run.ingestion_id, run.method, run.method_version,
                 json.dumps(run.params, sort_keys=True), json.dumps(run.result),
                 run.deterministic_hash, run.created_by, run.created_at or utc_now()),
            )
            row = conn.execute(
                "SELECT * FROM compute_runs WHERE deterministic_hash = ?",
                (run.deterministic_hash,),
            ).fetchone()
        return _run_from_row(row)

    def get_compute_runs(
        self, ingestion_id: str | None = None, limit: int = 50
    ) -> list[ComputeRun]:
        query = "SELECT * FROM compute_runs"
        params: list = []
        if ingestion_id is not None:
            query += " WHERE ingestion_id = ?"
            params.append(ingestion_id)
        query += " ORDER BY created_at DESC, rowid DESC LIMIT ?"
        params.append(limit)
        with self._transaction("get_compute_runs") as conn:
            rows = conn.execute(query, params).fetchall()
        return [_run_from_row(r) for r in rows]

    def find_compute_run_by_hash(self, deterministic_hash: str) -> ComputeRun | None:
        with self._transaction("find_compute_run_by_hash") as conn:
            row = conn.execute(
                "SELECT * FROM compute_runs WHERE deterministic_hash = ?",
                (deterministic_hash,),
            ).fetchone()
        return _run_from_row(row) if row else None
