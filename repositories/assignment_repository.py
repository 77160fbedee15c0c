# -*- coding: utf-8 -*-
"""
Building assignment repository for database operations.
"""

from datetime import datetime
from typing import List, Optional

from models.assignment import BuildingAssignment, TransferStatus
from .db_adapter import DatabaseAdapter
from utils.datetime_utils import to_isoformat
from utils.logger import get_logger

logger = get_logger(__name__)

_TERMINAL = (TransferStatus.CANCELLED.value, TransferStatus.SYNCHRONIZED.value)


class AssignmentRepository:
    """Repository for BuildingAssignment CRUD operations."""

    def __init__(self, db: DatabaseAdapter):
        self.db = db

    def create(self, assignment: BuildingAssignment) -> BuildingAssignment:
        row = assignment.to_row()
        columns = list(row.keys())
        query = (
            f"INSERT INTO building_assignments ({', '.join(columns)}) "
            f"VALUES ({', '.join('?' for _ in columns)})"
        )
        self.db.execute(query, tuple(row[c] for c in columns))
        logger.debug(f"Created assignment {assignment.id} for building {assignment.building_id}")
        return assignment

    def update(self, assignment: BuildingAssignment) -> BuildingAssignment:
        row = assignment.to_row()
        columns = [c for c in row.keys() if c != "id"]
        assignments = ", ".join(f"{c} = ?" for c in columns)
        params = tuple(row[c] for c in columns) + (assignment.id,)
        self.db.execute(f"UPDATE building_assignments SET {assignments} WHERE id = ?", params)
        return assignment

    def get_by_id(self, assignment_id: str) -> Optional[BuildingAssignment]:
        row = self.db.fetch_one("SELECT * FROM building_assignments WHERE id = ?", (assignment_id,))
        return BuildingAssignment.from_row(row) if row else None

    def get_active_for_building(self, building_id: str) -> List[BuildingAssignment]:
        """Active assignments of a building that are not in a terminal status."""
        rows = self.db.fetch_all(
            "SELECT * FROM building_assignments WHERE building_id = ? AND is_active = 1 "
            "AND transfer_status NOT IN (?, ?) ORDER BY assigned_date",
            (building_id,) + _TERMINAL
        )
        return [BuildingAssignment.from_row(row) for row in rows]

    def get_children(self, assignment_id: str) -> List[BuildingAssignment]:
        """Revisits created from the given assignment."""
        rows = self.db.fetch_all(
            "SELECT * FROM building_assignments WHERE original_assignment_id = ? ORDER BY assigned_date",
            (assignment_id,)
        )
        return [BuildingAssignment.from_row(row) for row in rows]

    def get_for_collector(self, collector_id: str, statuses: List[TransferStatus],
                          since: Optional[datetime] = None) -> List[BuildingAssignment]:
        query = (
            f"SELECT * FROM building_assignments WHERE field_collector_id = ? AND is_active = 1 "
            f"AND transfer_status IN ({', '.join('?' for _ in statuses)})"
        )
        params: List = [collector_id] + [s.value for s in statuses]
        if since is not None:
            query += " AND modified_at > ?"
            params.append(to_isoformat(since))
        query += " ORDER BY priority, assigned_date"
        rows = self.db.fetch_all(query, tuple(params))
        return [BuildingAssignment.from_row(row) for row in rows]

    def get_retry_eligible(self, now: datetime, max_retries: int) -> List[BuildingAssignment]:
        """Failed assignments whose back-off has elapsed and retries remain."""
        rows = self.db.fetch_all(
            "SELECT * FROM building_assignments WHERE transfer_status = ? AND is_active = 1 "
            "AND transfer_retry_count < ? AND (next_retry_at IS NULL OR next_retry_at <= ?) "
            "ORDER BY next_retry_at",
            (TransferStatus.FAILED.value, max_retries, to_isoformat(now))
        )
        return [BuildingAssignment.from_row(row) for row in rows]

    def get_by_status(self, status: TransferStatus) -> List[BuildingAssignment]:
        rows = self.db.fetch_all(
            "SELECT * FROM building_assignments WHERE transfer_status = ? ORDER BY assigned_date",
            (status.value,)
        )
        return [BuildingAssignment.from_row(row) for row in rows]
