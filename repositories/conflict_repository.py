# -*- coding: utf-8 -*-
"""
Conflict repository for database operations.
"""

from typing import Dict, List, Optional

from models.conflict import (
    ConflictResolution, ConflictStatus, ConflictPriority, ResolutionAction, make_pair_key,
)
from .db_adapter import DatabaseAdapter
from utils.logger import get_logger

logger = get_logger(__name__)

_OPEN_STATUSES = (ConflictStatus.PENDING_REVIEW.value, ConflictStatus.ESCALATED.value)


class ConflictRepository:
    """Repository for ConflictResolution CRUD operations."""

    def __init__(self, db: DatabaseAdapter):
        self.db = db

    def create(self, conflict: ConflictResolution) -> ConflictResolution:
        row = conflict.to_row()
        columns = list(row.keys())
        query = (
            f"INSERT INTO conflict_resolutions ({', '.join(columns)}) "
            f"VALUES ({', '.join('?' for _ in columns)})"
        )
        self.db.execute(query, tuple(row[c] for c in columns))
        logger.debug(f"Created conflict {conflict.conflict_number} ({conflict.conflict_type.value})")
        return conflict

    def update(self, conflict: ConflictResolution) -> ConflictResolution:
        row = conflict.to_row()
        columns = [c for c in row.keys() if c != "id"]
        assignments = ", ".join(f"{c} = ?" for c in columns)
        params = tuple(row[c] for c in columns) + (conflict.id,)
        self.db.execute(f"UPDATE conflict_resolutions SET {assignments} WHERE id = ?", params)
        return conflict

    def get_by_id(self, conflict_id: str) -> Optional[ConflictResolution]:
        row = self.db.fetch_one("SELECT * FROM conflict_resolutions WHERE id = ?", (conflict_id,))
        return ConflictResolution.from_row(row) if row else None

    def get_by_pair(self, package_id: str, first_id: str, second_id: str) -> Optional[ConflictResolution]:
        """Find the conflict for an entity pair regardless of order."""
        row = self.db.fetch_one(
            "SELECT * FROM conflict_resolutions WHERE import_package_id = ? AND pair_key = ?",
            (package_id, make_pair_key(first_id, second_id))
        )
        return ConflictResolution.from_row(row) if row else None

    def exists_for_pair(self, package_id: str, first_id: str, second_id: str) -> bool:
        return self.get_by_pair(package_id, first_id, second_id) is not None

    def get_by_package(self, package_id: str, status: Optional[ConflictStatus] = None,
                       priority: Optional[ConflictPriority] = None) -> List[ConflictResolution]:
        query = "SELECT * FROM conflict_resolutions WHERE import_package_id = ?"
        params: List = [package_id]
        if status:
            query += " AND status = ?"
            params.append(status.value)
        if priority:
            query += " AND priority = ?"
            params.append(priority.value)
        query += " ORDER BY detected_date, conflict_number"
        rows = self.db.fetch_all(query, tuple(params))
        return [ConflictResolution.from_row(row) for row in rows]

    def get_open(self, package_id: Optional[str] = None) -> List[ConflictResolution]:
        """PendingReview and Escalated conflicts, optionally for one package."""
        query = "SELECT * FROM conflict_resolutions WHERE status IN (?, ?)"
        params: List = list(_OPEN_STATUSES)
        if package_id:
            query += " AND import_package_id = ?"
            params.append(package_id)
        query += " ORDER BY detected_date"
        rows = self.db.fetch_all(query, tuple(params))
        return [ConflictResolution.from_row(row) for row in rows]

    def get_merges(self, package_id: str) -> List[ConflictResolution]:
        """Resolved merges of a package (source of commit-time id redirects)."""
        rows = self.db.fetch_all(
            "SELECT * FROM conflict_resolutions WHERE import_package_id = ? "
            "AND resolution_action = ? AND discarded_entity_id IS NOT NULL",
            (package_id, ResolutionAction.MERGE.value)
        )
        return [ConflictResolution.from_row(row) for row in rows]

    def count_unresolved(self, package_id: str) -> int:
        result = self.db.fetch_one(
            "SELECT COUNT(*) as count FROM conflict_resolutions "
            "WHERE import_package_id = ? AND status IN (?, ?)",
            (package_id,) + _OPEN_STATUSES
        )
        return result["count"] if result else 0

    def count_by_package(self, package_id: str) -> int:
        result = self.db.fetch_one(
            "SELECT COUNT(*) as count FROM conflict_resolutions WHERE import_package_id = ?",
            (package_id,)
        )
        return result["count"] if result else 0

    def count_by_type(self, package_id: str) -> Dict[str, int]:
        rows = self.db.fetch_all(
            "SELECT conflict_type, COUNT(*) as count FROM conflict_resolutions "
            "WHERE import_package_id = ? GROUP BY conflict_type",
            (package_id,)
        )
        return {row["conflict_type"]: row["count"] for row in rows}

    def stats(self, package_id: Optional[str] = None) -> Dict[str, int]:
        """Counts by status and priority."""
        query = "SELECT status, priority, COUNT(*) as count FROM conflict_resolutions"
        params: tuple = ()
        if package_id:
            query += " WHERE import_package_id = ?"
            params = (package_id,)
        query += " GROUP BY status, priority"

        stats = {"total": 0}
        for status in ConflictStatus:
            stats[status.value] = 0
        for priority in ConflictPriority:
            stats[f"priority_{priority.value}"] = 0
        for row in self.db.fetch_all(query, params):
            stats["total"] += row["count"]
            stats[row["status"]] = stats.get(row["status"], 0) + row["count"]
            if row["priority"]:
                key = f"priority_{row['priority']}"
                stats[key] = stats.get(key, 0) + row["count"]
        return stats

    def delete_by_package(self, package_id: str) -> int:
        count = self.count_by_package(package_id)
        self.db.execute("DELETE FROM conflict_resolutions WHERE import_package_id = ?", (package_id,))
        return count
