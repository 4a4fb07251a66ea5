"""MetricsCollector: operation metrics for content stores, kept in SQLite."""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

_SCHEMA = """\
CREATE TABLE IF NOT EXISTS operations (
    id             INTEGER PRIMARY KEY AUTOINCREMENT,
    timestamp      TEXT    NOT NULL,
    site_id        TEXT    NOT NULL,
    kind           TEXT    NOT NULL,
    path           TEXT    NOT NULL DEFAULT '',
    size           INTEGER,
    duration_ms    REAL    NOT NULL DEFAULT 0,
    success        INTEGER NOT NULL,
    error_code     TEXT,
    metadata_json  TEXT    NOT NULL DEFAULT '{}'
);
CREATE INDEX IF NOT EXISTS idx_operations_site ON operations(site_id);
CREATE INDEX IF NOT EXISTS idx_operations_kind ON operations(kind);
"""


class MetricsCollector:
    """Record one row per content operation.

    Parameters
    ----------
    db_path:
        Path to the metrics database.  Defaults to ``':memory:'``.

    The connection is shared across worker threads behind a lock.
    """

    def __init__(self, db_path: str | Path = ":memory:") -> None:
        self._db_path = str(db_path)
        self._lock = threading.Lock()
        self._conn = sqlite3.connect(self._db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        if self._db_path != ":memory:":
            self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.executescript(_SCHEMA)
        self._conn.commit()

    def record(
        self,
        site_id: str,
        kind: str,
        path: str = "",
        size: int | None = None,
        duration_ms: float = 0.0,
        success: bool = True,
        error_code: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> int:
        """Record an operation.

        Returns the row id.
        """
        ts = datetime.now(timezone.utc).isoformat()
        meta_json = json.dumps(metadata or {}, default=str)
        with self._lock:
            cur = self._conn.execute(
                "INSERT INTO operations "
                "(timestamp, site_id, kind, path, size, duration_ms, success, error_code, metadata_json) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (ts, site_id, kind, path, size, duration_ms, int(success), error_code, meta_json),
            )
            self._conn.commit()
        return cur.lastrowid or 0

    def get_operations(
        self,
        site_id: str | None = None,
        kind: str | None = None,
        success: bool | None = None,
        limit: int = 1000,
    ) -> list[dict[str, Any]]:
        """Query operations with optional filters, newest first."""
        clauses: list[str] = []
        params: list[Any] = []
        if site_id:
            clauses.append("site_id = ?")
            params.append(site_id)
        if kind:
            clauses.append("kind = ?")
            params.append(kind)
        if success is not None:
            clauses.append("success = ?")
            params.append(int(success))

        where = (" WHERE " + " AND ".join(clauses)) if clauses else ""
        sql = f"SELECT * FROM operations{where} ORDER BY id DESC LIMIT ?"
        params.append(limit)

        with self._lock:
            rows = self._conn.execute(sql, params).fetchall()
        results = []
        for row in rows:
            item = dict(row)
            item["success"] = bool(item["success"])
            item["metadata"] = json.loads(item.pop("metadata_json"))
            results.append(item)
        return results

    def summary(self, site_id: str | None = None) -> dict[str, dict[str, Any]]:
        """Aggregate count, failures and mean duration per operation kind."""
        where, params = ("WHERE site_id = ?", [site_id]) if site_id else ("", [])
        sql = (
            "SELECT kind, COUNT(*) AS count, SUM(1 - success) AS failures, "
            f"AVG(duration_ms) AS avg_ms FROM operations {where} GROUP BY kind"
        )
        with self._lock:
            rows = self._conn.execute(sql, params).fetchall()
        return {
            r["kind"]: {
                "count": r["count"],
                "failures": r["failures"] or 0,
                "avg_ms": round(r["avg_ms"] or 0.0, 3),
            }
            for r in rows
        }

    def close(self) -> None:
        with self._lock:
            self._conn.close()
