# -*- coding: utf-8 -*-
"""
Import package repository for database operations.
"""

from datetime import datetime
from typing import List, Optional

from models.import_package import ImportPackage, ImportStatus
from .db_adapter import DatabaseAdapter
from utils.datetime_utils import to_isoformat
from utils.logger import get_logger

logger = get_logger(__name__)


class ImportPackageRepository:
    """Repository for ImportPackage CRUD operations."""

    def __init__(self, db: DatabaseAdapter):
        self.db = db

    def create(self, package: ImportPackage) -> ImportPackage:
        """Create a new import package record."""
        row = package.to_row()
        columns = list(row.keys())
        query = (
            f"INSERT INTO import_packages ({', '.join(columns)}) "
            f"VALUES ({', '.join('?' for _ in columns)})"
        )
        self.db.execute(query, tuple(row[c] for c in columns))
        logger.debug(f"Created import package: {package.package_number} ({package.package_id})")
        return package

    def update(self, package: ImportPackage) -> ImportPackage:
        """Persist all fields of an existing package."""
        row = package.to_row()
        columns = [c for c in row.keys() if c != "id"]
        assignments = ", ".join(f"{c} = ?" for c in columns)
        params = tuple(row[c] for c in columns) + (package.id,)
        self.db.execute(f"UPDATE import_packages SET {assignments} WHERE id = ?", params)
        logger.debug(f"Updated import package {package.package_number}: {package.status.value}")
        return package

    def get_by_id(self, package_id: str) -> Optional[ImportPackage]:
        """Get package by server id."""
        row = self.db.fetch_one("SELECT * FROM import_packages WHERE id = ?", (package_id,))
        return ImportPackage.from_row(row) if row else None

    def get_by_package_id(self, manifest_package_id: str) -> Optional[ImportPackage]:
        """Get package by the GUID declared in its manifest."""
        row = self.db.fetch_one(
            "SELECT * FROM import_packages WHERE package_id = ?", (manifest_package_id,)
        )
        return ImportPackage.from_row(row) if row else None

    def get_by_status(self, status: ImportStatus) -> List[ImportPackage]:
        rows = self.db.fetch_all(
            "SELECT * FROM import_packages WHERE status = ? ORDER BY created_at",
            (status.value,)
        )
        return [ImportPackage.from_row(row) for row in rows]

    def get_all(self, limit: int = 100, offset: int = 0) -> List[ImportPackage]:
        rows = self.db.fetch_all(
            "SELECT * FROM import_packages ORDER BY created_at DESC LIMIT ? OFFSET ?",
            (limit, offset)
        )
        return [ImportPackage.from_row(row) for row in rows]

    def get_finished_before(self, cutoff: datetime) -> List[ImportPackage]:
        """Completed or cancelled packages last updated before ``cutoff``."""
        rows = self.db.fetch_all(
            "SELECT * FROM import_packages WHERE status IN (?, ?, ?) AND updated_at < ? "
            "ORDER BY updated_at",
            (ImportStatus.COMPLETED.value, ImportStatus.PARTIALLY_COMPLETED.value,
             ImportStatus.CANCELLED.value, to_isoformat(cutoff))
        )
        return [ImportPackage.from_row(row) for row in rows]

    def count(self) -> int:
        result = self.db.fetch_one("SELECT COUNT(*) as count FROM import_packages")
        return result["count"] if result else 0
