# -*- coding: utf-8 -*-
"""
Package container writer.

Produces .uhc containers in the device export format: a ``manifest``
key/value table, one table per entity family and an ``attachments`` table.
The declared checksum is the content checksum and, when a verifier is
given, the package is signed the same way a device signs it. Used by the
command-line tooling and by the test suite.
"""

import json
import sqlite3
import uuid
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from services.integrity_service import IntegrityVerifier
from utils.datetime_utils import utc_now
from utils.logger import get_logger

logger = get_logger(__name__)

SCHEMA_VERSION = "1.0.0"
APP_VERSION = "1.0.0"

# Manifest count keys per container table
COUNT_KEYS = {
    "surveys": "survey_count",
    "buildings": "building_count",
    "property_units": "property_unit_count",
    "persons": "person_count",
    "households": "household_count",
    "person_property_relations": "relation_count",
    "claims": "claim_count",
    "evidences": "document_count",
}


def _sql_type(values: List[Any]) -> str:
    kinds = {type(v) for v in values if v is not None}
    if kinds and kinds <= {int, bool}:
        return "INTEGER"
    if kinds and kinds <= {int, float, bool}:
        return "REAL"
    if kinds and kinds <= {bytes, bytearray}:
        return "BLOB"
    return "TEXT"


class ContainerWriter:
    """
    Collects manifest values, table rows and attachments, then writes a container.

    Usage:
        writer = ContainerWriter(exported_by_user_id=user_id)
        writer.add_rows("buildings", [{"id": "b-1", ...}])
        writer.write(path, verifier=IntegrityVerifier(settings))
    """

    def __init__(self, package_id: Optional[str] = None, exported_by_user_id: Optional[str] = None,
                 device_id: str = "TABLET-01", created_utc: Optional[datetime] = None,
                 vocab_versions: Optional[Dict[str, str]] = None):
        now = created_utc or utc_now()
        self.manifest: Dict[str, Any] = {
            "package_id": package_id or str(uuid.uuid4()),
            "schema_version": SCHEMA_VERSION,
            "created_utc": now.isoformat() + "Z",
            "device_id": device_id,
            "app_version": APP_VERSION,
            "exported_by_user_id": exported_by_user_id or str(uuid.uuid4()),
            "exported_date_utc": now.isoformat() + "Z",
            "form_schema_version": "1.0.0",
        }
        if vocab_versions is not None:
            self.manifest["vocab_versions"] = vocab_versions
        self.tables: Dict[str, List[Dict[str, Any]]] = {}
        self.attachments: List[Dict[str, Any]] = []

    @property
    def package_id(self) -> str:
        return self.manifest["package_id"]

    def set_manifest(self, **values) -> 'ContainerWriter':
        """Set (or with None, remove) manifest keys."""
        for key, value in values.items():
            if value is None:
                self.manifest.pop(key, None)
            else:
                self.manifest[key] = value
        return self

    def add_rows(self, table: str, rows: List[Dict[str, Any]]) -> 'ContainerWriter':
        self.tables.setdefault(table, []).extend(dict(r) for r in rows)
        return self

    def add_attachment(self, evidence_id: str, content: bytes,
                       file_name: Optional[str] = None) -> 'ContainerWriter':
        self.attachments.append({
            "id": str(uuid.uuid4()),
            "evidence_id": evidence_id,
            "file_name": file_name,
            "content": content,
            "size": len(content),
        })
        return self

    # ==================== Writing ====================

    def write(self, path: Union[str, Path], verifier: Optional[IntegrityVerifier] = None,
              declare_checksum: bool = True, sign: bool = True) -> Path:
        """
        Write the container to ``path`` (overwrites).

        Args:
            path: Destination file
            verifier: Used to compute the content checksum and signature
            declare_checksum: Store the computed content checksum in the manifest
                (unless a checksum was set explicitly)
            sign: Store a signature (needs ``verifier``; skipped when one was set)
        """
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        if path.exists():
            path.unlink()

        manifest = dict(self.manifest)
        for table, key in COUNT_KEYS.items():
            manifest.setdefault(key, len(self.tables.get(table, [])))
        manifest.setdefault("total_attachment_size_bytes", sum(a["size"] for a in self.attachments))

        conn = sqlite3.connect(str(path))
        try:
            cursor = conn.cursor()
            cursor.execute("CREATE TABLE manifest (key TEXT PRIMARY KEY, value TEXT)")
            for table, rows in self.tables.items():
                self._write_table(cursor, table, rows)
            cursor.execute(
                "CREATE TABLE attachments (id TEXT PRIMARY KEY, evidence_id TEXT, "
                "file_name TEXT, content BLOB, size INTEGER)"
            )
            for att in self.attachments:
                cursor.execute(
                    "INSERT INTO attachments (id, evidence_id, file_name, content, size) VALUES (?, ?, ?, ?, ?)",
                    (att["id"], att["evidence_id"], att["file_name"], att["content"], att["size"])
                )
            conn.commit()
        finally:
            conn.close()

        if verifier is not None and declare_checksum and "checksum" not in manifest:
            manifest["checksum"] = verifier.compute_content_checksum(path)
            if sign and "digital_signature" not in manifest:
                manifest["digital_signature"] = verifier.sign(manifest["checksum"])

        conn = sqlite3.connect(str(path))
        try:
            for key, value in manifest.items():
                if isinstance(value, (dict, list)):
                    value = json.dumps(value)
                conn.execute(
                    "INSERT INTO manifest (key, value) VALUES (?, ?)",
                    (key, str(value) if value is not None else None)
                )
            conn.commit()
        finally:
            conn.close()

        logger.debug(f"Wrote container {path} ({sum(len(r) for r in self.tables.values())} rows)")
        return path

    @staticmethod
    def _write_table(cursor, table: str, rows: List[Dict[str, Any]]) -> None:
        columns: List[str] = []
        for row in rows:
            for col in row:
                if col not in columns:
                    columns.append(col)
        if not columns:
            columns = ["id"]

        column_defs = ", ".join(
            f'"{col}" {_sql_type([row.get(col) for row in rows])}' for col in columns
        )
        cursor.execute(f'CREATE TABLE "{table}" ({column_defs})')
        quoted = ", ".join(f'"{col}"' for col in columns)
        placeholders = ", ".join("?" for _ in columns)
        cursor.executemany(
            f'INSERT INTO "{table}" ({quoted}) VALUES ({placeholders})',
            [tuple(row.get(col) for col in columns) for row in rows]
        )
