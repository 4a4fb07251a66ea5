"""RelationalRecordStore: row-level CRUD on SQLite files inside a site.

Uses stdlib sqlite3 only.  Table and column names are checked against a
strict identifier pattern and quoted; every value is a bound parameter.
"""

from __future__ import annotations

import logging
import re
import sqlite3
import threading
import time
import uuid
from collections.abc import Callable, Iterator, Sequence
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from sitepress.access.guard import (
    normalize_path,
    resolve_column_access,
    resolve_relational_file_config,
    resolve_table_access,
)
from sitepress.config import DEFAULT_ROW_LIMIT
from sitepress.content.base import BaseStore, site_root
from sitepress.errors import AccessDenied, NotFound, StorageError, ValidationError
from sitepress.metrics import MetricsCollector
from sitepress.models.results import FileOperationResult
from sitepress.models.site import (
    PrimaryKeyStrategy,
    RelationalFileConfig,
    SiteConfig,
    TableAccessConfig,
)

logger = logging.getLogger(__name__)

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_READ_ONLY_PREFIXES = ("select", "pragma")


def quote_identifier(name: str) -> str:
    """Validate a table or column name and return it double-quoted."""
    if not _IDENTIFIER.match(name):
        raise ValidationError(f"Invalid identifier: {name!r}")
    return f'"{name}"'


def generate_primary_key(strategy: PrimaryKeyStrategy) -> Any:
    """Return a key value for *strategy*, or None to let SQLite assign one."""
    if strategy is PrimaryKeyStrategy.RANDOM_TOKEN:
        return uuid.uuid4().hex
    if strategy is PrimaryKeyStrategy.TIMESTAMP:
        return int(time.time() * 1000)
    return None


@dataclass
class _Connection:
    conn: sqlite3.Connection
    lock: threading.Lock = field(default_factory=threading.Lock)


class ConnectionRegistry:
    """Keyed store of open SQLite connections, one per (site id, file path)."""

    def __init__(self) -> None:
        self._connections: dict[tuple[str, str], _Connection] = {}
        self._lock = threading.Lock()

    def acquire(self, site_id: str, rel_path: str, full_path: Path) -> _Connection:
        """Return the cached connection for the key, opening it on first use."""
        key = (site_id, rel_path)
        with self._lock:
            handle = self._connections.get(key)
            if handle is None:
                if not full_path.is_file():
                    raise NotFound(f"Database file does not exist: {rel_path}")
                conn = sqlite3.connect(str(full_path), check_same_thread=False)
                conn.row_factory = sqlite3.Row
                handle = _Connection(conn)
                self._connections[key] = handle
                logger.debug("Opened database %s for site %s", rel_path, site_id)
            return handle

    def close(self, site_id: str, rel_path: str | None = None) -> int:
        """Close one connection, or every connection of *site_id*.

        Returns the number of connections closed.
        """
        with self._lock:
            keys = [
                key for key in self._connections
                if key[0] == site_id and (rel_path is None or key[1] == rel_path)
            ]
            for key in keys:
                handle = self._connections.pop(key)
                with handle.lock:
                    handle.conn.close()
        if keys:
            logger.info("Closed %d database connection(s) for site %s", len(keys), site_id)
        return len(keys)

    def close_all(self) -> int:
        with self._lock:
            handles = list(self._connections.values())
            self._connections.clear()
        for handle in handles:
            with handle.lock:
                handle.conn.close()
        return len(handles)

    def __len__(self) -> int:
        with self._lock:
            return len(self._connections)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._connections


class RelationalRecordStore(BaseStore):
    """Tables inside configured SQLite files.

    Parameters
    ----------
    metrics:
        Optional operation metrics collector.
    connections:
        Connection registry; a private one is created if omitted.
    """

    def __init__(
        self,
        metrics: MetricsCollector | None = None,
        connections: ConnectionRegistry | None = None,
    ) -> None:
        super().__init__(metrics)
        self.connections = connections if connections is not None else ConnectionRegistry()

    # -- Plumbing -----------------------------------------------------------------

    @contextmanager
    def _database(
        self, config: SiteConfig, path: str,
    ) -> Iterator[tuple[sqlite3.Connection, RelationalFileConfig, str]]:
        file_config = resolve_relational_file_config(config, path)
        rel = normalize_path(path)
        handle = self.connections.acquire(config.id, rel, site_root(config) / rel)
        with handle.lock:
            try:
                yield handle.conn, file_config, rel
            except sqlite3.Error as exc:
                handle.conn.rollback()
                raise StorageError(f"Database error in {rel}: {exc}") from exc

    def _run(
        self,
        config: SiteConfig,
        kind: str,
        path: str,
        operation: Callable[[sqlite3.Connection, RelationalFileConfig], Any],
    ) -> FileOperationResult:
        def run() -> Any:
            with self._database(config, path) as (conn, file_config, _):
                return operation(conn, file_config)

        return self._execute(config, kind, path, run)

    @staticmethod
    def _table_columns(conn: sqlite3.Connection, table: str) -> list[sqlite3.Row]:
        columns = conn.execute(f"PRAGMA table_info({quote_identifier(table)})").fetchall()
        if not columns:
            raise NotFound(f"Table does not exist: {table}")
        return columns

    @staticmethod
    def _readable_columns(table_config: TableAccessConfig, all_columns: list[str]) -> list[str]:
        if table_config.readable_columns:
            return [c for c in table_config.readable_columns if c in all_columns]
        if table_config.editable_columns:
            return [c for c in table_config.editable_columns if c in all_columns]
        return list(all_columns)

    # -- Reads --------------------------------------------------------------------

    def list_tables(self, config: SiteConfig, path: str) -> FileOperationResult:
        """List every table in the file and the configured editable ones."""
        def op(conn: sqlite3.Connection, file_config: RelationalFileConfig) -> dict[str, Any]:
            rows = conn.execute(
                "SELECT name FROM sqlite_master WHERE type='table' ORDER BY name"
            ).fetchall()
            names = [r["name"] for r in rows]
            return {
                "all_tables": names,
                "editable_tables": [
                    {
                        "table_name": t.table_name,
                        "display_name": t.display_name or t.table_name,
                        "editable_columns": t.editable_columns,
                        "exists": t.table_name in names,
                    }
                    for t in file_config.editable_tables
                ],
            }

        return self._run(config, "list_tables", path, op)

    def get_table_data(
        self,
        config: SiteConfig,
        path: str,
        table: str,
        limit: int = DEFAULT_ROW_LIMIT,
        offset: int = 0,
    ) -> FileOperationResult:
        """Return a page of rows restricted to the table's readable columns."""
        def op(conn: sqlite3.Connection, file_config: RelationalFileConfig) -> dict[str, Any]:
            table_config = resolve_table_access(file_config, table)
            all_columns = [c["name"] for c in self._table_columns(conn, table)]
            readable = self._readable_columns(table_config, all_columns)
            editable = (
                [c for c in table_config.editable_columns if c in all_columns]
                if table_config.editable_columns else list(all_columns)
            )
            select = ", ".join(quote_identifier(c) for c in readable) or "*"
            rows = conn.execute(
                f"SELECT {select} FROM {quote_identifier(table)} LIMIT ? OFFSET ?",
                (limit, offset),
            ).fetchall()
            total = conn.execute(f"SELECT COUNT(*) FROM {quote_identifier(table)}").fetchone()[0]
            return {
                "table_name": table,
                "columns": readable,
                "rows": [dict(r) for r in rows],
                "total_rows": total,
                "meta": {
                    "editable_columns": editable,
                    "readable_columns": readable,
                    "all_columns": all_columns,
                    "display_name": table_config.display_name,
                    "primary_key_strategy": table_config.primary_key_strategy.value,
                    "default_values": table_config.default_values,
                },
            }

        return self._run(config, "read_table", path, op)

    def get_full_table(self, config: SiteConfig, path: str, table: str) -> FileOperationResult:
        """Return every row of *table*."""
        return self.get_table_data(config, path, table, limit=-1, offset=0)

    def _read_authorizer(
        self, conn: sqlite3.Connection, file_config: RelationalFileConfig, denied: list[str],
    ) -> Callable[..., int]:
        readable: dict[str, set[str]] = {}
        for table_config in file_config.editable_tables:
            info = conn.execute(
                f"PRAGMA table_info({quote_identifier(table_config.table_name)})"
            ).fetchall()
            all_columns = [c["name"] for c in info]
            keys = {c["name"] for c in info if c["pk"]} | {"ROWID"}
            readable[table_config.table_name] = keys | set(self._readable_columns(table_config, all_columns))

        def authorize(action: int, arg1: str | None, arg2: str | None, *_: Any) -> int:
            if action != sqlite3.SQLITE_READ or arg1 is None or arg1.startswith("sqlite_"):
                return sqlite3.SQLITE_OK
            if arg1 in readable and (not arg2 or arg2 in readable[arg1]):
                return sqlite3.SQLITE_OK
            denied.append(f"{arg1}.{arg2}" if arg2 else arg1)
            return sqlite3.SQLITE_DENY

        return authorize

    def execute_read_only_query(
        self,
        config: SiteConfig,
        path: str,
        query: str,
        params: Sequence[Any] = (),
    ) -> FileOperationResult:
        """Run a single SELECT or PRAGMA statement and return its rows.

        The statement may only read configured tables, and of those only
        their readable columns.
        """
        def op(conn: sqlite3.Connection, file_config: RelationalFileConfig) -> list[dict[str, Any]]:
            if not query.strip().lower().startswith(_READ_ONLY_PREFIXES):
                raise ValidationError("Only SELECT and PRAGMA queries are allowed")
            denied: list[str] = []
            authorizer = self._read_authorizer(conn, file_config, denied)
            conn.execute("PRAGMA query_only = ON")
            conn.set_authorizer(authorizer)
            try:
                rows = conn.execute(query, tuple(params)).fetchall()
            except sqlite3.DatabaseError:
                if denied:
                    raise AccessDenied(f"Access denied: query reads {', '.join(denied)}") from None
                raise
            finally:
                conn.set_authorizer(None)
                conn.execute("PRAGMA query_only = OFF")
            return [dict(r) for r in rows]

        return self._run(config, "query", path, op)

    # -- Writes -------------------------------------------------------------------

    def insert_row(
        self,
        config: SiteConfig,
        path: str,
        table: str,
        data: dict[str, Any],
        row_id: Any = None,
    ) -> FileOperationResult:
        """Insert a row, applying configured defaults and the key strategy."""
        def op(conn: sqlite3.Connection, file_config: RelationalFileConfig) -> dict[str, Any]:
            table_config = resolve_table_access(file_config, table)
            resolve_column_access(table_config, data.keys())
            columns = self._table_columns(conn, table)

            values = dict(data)
            for column, default in (table_config.default_values or {}).items():
                values.setdefault(column, default)

            pk_columns = [c["name"] for c in columns if c["pk"]]
            if len(pk_columns) == 1 and pk_columns[0] not in values:
                pk = pk_columns[0]
                if row_id is not None:
                    values[pk] = row_id
                elif table_config.primary_key_strategy is PrimaryKeyStrategy.CUSTOM:
                    raise ValidationError(f"A value for primary key {pk} is required")
                else:
                    generated = generate_primary_key(table_config.primary_key_strategy)
                    if generated is not None:
                        values[pk] = generated

            if not values:
                cur = conn.execute(f"INSERT INTO {quote_identifier(table)} DEFAULT VALUES")
            else:
                names = ", ".join(quote_identifier(c) for c in values)
                placeholders = ", ".join("?" for _ in values)
                cur = conn.execute(
                    f"INSERT INTO {quote_identifier(table)} ({names}) VALUES ({placeholders})",
                    tuple(values.values()),
                )
            conn.commit()
            inserted_id = values.get(pk_columns[0]) if len(pk_columns) == 1 else None
            return {
                "rows_affected": cur.rowcount,
                "inserted_id": inserted_id if inserted_id is not None else cur.lastrowid,
                "inserted_data": values,
            }

        return self._run(config, "insert_row", path, op)

    def update_row(
        self,
        config: SiteConfig,
        path: str,
        table: str,
        row_id: Any,
        data: dict[str, Any],
        id_column: str = "id",
    ) -> FileOperationResult:
        """Update the row whose *id_column* equals *row_id*."""
        def op(conn: sqlite3.Connection, file_config: RelationalFileConfig) -> dict[str, Any]:
            table_config = resolve_table_access(file_config, table)
            if not data:
                raise ValidationError("No columns to update")
            resolve_column_access(table_config, data.keys())
            all_columns = [c["name"] for c in self._table_columns(conn, table)]
            if id_column not in all_columns:
                raise ValidationError(f"ID column {id_column!r} does not exist in table {table}")

            assignments = ", ".join(f"{quote_identifier(c)} = ?" for c in data)
            cur = conn.execute(
                f"UPDATE {quote_identifier(table)} SET {assignments} "
                f"WHERE {quote_identifier(id_column)} = ?",
                (*data.values(), row_id),
            )
            if cur.rowcount == 0:
                conn.rollback()
                raise NotFound(f"No row found with {id_column} = {row_id}")
            conn.commit()
            return {"rows_affected": cur.rowcount, "updated_id": row_id, "updated_data": dict(data)}

        return self._run(config, "update_row", path, op)

    def delete_row(
        self,
        config: SiteConfig,
        path: str,
        table: str,
        row_id: Any,
        id_column: str = "id",
    ) -> FileOperationResult:
        """Delete the row whose *id_column* equals *row_id*."""
        def op(conn: sqlite3.Connection, file_config: RelationalFileConfig) -> dict[str, Any]:
            resolve_table_access(file_config, table)
            all_columns = [c["name"] for c in self._table_columns(conn, table)]
            if id_column not in all_columns:
                raise ValidationError(f"ID column {id_column!r} does not exist in table {table}")
            cur = conn.execute(
                f"DELETE FROM {quote_identifier(table)} WHERE {quote_identifier(id_column)} = ?",
                (row_id,),
            )
            if cur.rowcount == 0:
                conn.rollback()
                raise NotFound(f"No row found with {id_column} = {row_id}")
            conn.commit()
            return {"rows_affected": cur.rowcount, "deleted_id": row_id}

        return self._run(config, "delete_row", path, op)

    # -- Connections --------------------------------------------------------------

    def close_connection(self, site_id: str, path: str | None = None) -> int:
        """Release one database handle of *site_id*, or all of them."""
        rel = normalize_path(path) if path is not None else None
        return self.connections.close(site_id, rel)

    def close_all(self) -> int:
        """Release every database handle."""
        return self.connections.close_all()
