# -*- coding: utf-8 -*-
"""
Read-only access to .uhc package containers.

A container is a SQLite file with a ``manifest`` key/value table, one table
per entity family and an optional ``attachments`` table of file blobs.
Connections are opened read-only and always closed; any still open are
tracked so a file release hook can close them before deleting the file.
"""

import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Union

from services.exceptions import ContainerCorrupt
from utils.logger import get_logger

logger = get_logger(__name__)

MANIFEST_TABLE = "manifest"
ATTACHMENTS_TABLE = "attachments"

_open_connections: Dict[int, sqlite3.Connection] = {}
_registry_lock = threading.Lock()


def _register(conn: sqlite3.Connection) -> None:
    with _registry_lock:
        _open_connections[id(conn)] = conn


def _unregister(conn: sqlite3.Connection) -> None:
    with _registry_lock:
        _open_connections.pop(id(conn), None)


def close_all_connections() -> int:
    """Close every container connection still open. Returns how many were closed."""
    with _registry_lock:
        connections = list(_open_connections.values())
        _open_connections.clear()
    for conn in connections:
        try:
            conn.close()
        except sqlite3.Error as e:
            logger.warning(f"Could not close container connection: {e}")
    return len(connections)


class ContainerReader:
    """Read-only view over one open container."""

    def __init__(self, path: Path, conn: sqlite3.Connection):
        self.path = path
        self._conn = conn

    def table_names(self) -> List[str]:
        """All user tables, sorted by name."""
        rows = self._conn.execute(
            "SELECT name FROM sqlite_master WHERE type = 'table' ORDER BY name"
        ).fetchall()
        return [row[0] for row in rows]

    def data_table_names(self) -> List[str]:
        """Tables holding entity data (excludes manifest, attachments and sqlite_*)."""
        return [
            name for name in self.table_names()
            if name.lower() not in (MANIFEST_TABLE, ATTACHMENTS_TABLE)
            and not name.lower().startswith("sqlite_")
        ]

    def has_table(self, name: str) -> bool:
        return name.lower() in (t.lower() for t in self.table_names())

    def column_names(self, table: str) -> List[str]:
        rows = self._conn.execute(f'PRAGMA table_info("{table}")').fetchall()
        return [row[1] for row in rows]

    def iter_rows(self, table: str, columns: Optional[List[str]] = None) -> Iterator[Dict[str, Any]]:
        """Yield rows of ``table`` as dicts."""
        columns = columns or self.column_names(table)
        select = ", ".join(f'"{c}"' for c in columns)
        cursor = self._conn.execute(f'SELECT {select} FROM "{table}"')
        try:
            for row in cursor:
                yield dict(zip(columns, row))
        finally:
            cursor.close()

    def read_rows(self, table: str) -> List[Dict[str, Any]]:
        if not self.has_table(table):
            return []
        return list(self.iter_rows(table))

    def read_manifest(self) -> Dict[str, Optional[str]]:
        """Manifest key/value pairs with lower-cased keys."""
        if not self.has_table(MANIFEST_TABLE):
            raise ContainerCorrupt(f"Container has no manifest table: {self.path}", path=str(self.path))
        rows = self._conn.execute(f"SELECT key, value FROM {MANIFEST_TABLE}").fetchall()
        return {str(key).strip().lower(): value for key, value in rows if key is not None}

    def read_attachments(self) -> Dict[str, bytes]:
        """Attachment blobs keyed by evidence id."""
        if not self.has_table(ATTACHMENTS_TABLE):
            return {}
        columns = self.column_names(ATTACHMENTS_TABLE)
        blob_column = "content" if "content" in columns else "data"
        blobs: Dict[str, bytes] = {}
        for row in self.iter_rows(ATTACHMENTS_TABLE, ["evidence_id", blob_column]):
            if row["evidence_id"] and row[blob_column] is not None:
                blobs[str(row["evidence_id"])] = bytes(row[blob_column])
        return blobs

    def count_rows(self, table: str) -> int:
        if not self.has_table(table):
            return 0
        return self._conn.execute(f'SELECT COUNT(*) FROM "{table}"').fetchone()[0]


@contextmanager
def open_container(path: Union[str, Path]) -> Iterator[ContainerReader]:
    """
    Open a container read-only.

    Raises:
        ContainerCorrupt: if the file is missing or not a SQLite database
    """
    path = Path(path)
    if not path.is_file():
        raise ContainerCorrupt(f"Container file not found: {path}", path=str(path))

    try:
        conn = sqlite3.connect(f"{path.resolve().as_uri()}?mode=ro", uri=True)
    except sqlite3.Error as e:
        raise ContainerCorrupt(f"Cannot open container {path}: {e}", path=str(path)) from e

    _register(conn)
    try:
        try:
            # Forces SQLite to read the header; fails on non-database files
            conn.execute("SELECT name FROM sqlite_master LIMIT 1").fetchall()
        except sqlite3.DatabaseError as e:
            raise ContainerCorrupt(f"Not a valid package container: {path} ({e})", path=str(path)) from e
        yield ContainerReader(path, conn)
    finally:
        _unregister(conn)
        conn.close()
