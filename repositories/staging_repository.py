# -*- coding: utf-8 -*-
"""
Staging repository.

One generic repository serves all eight staging tables; the entity family
descriptor supplies the table name, the record dataclass and the columns.
"""

from typing import Dict, Iterable, List, Optional, Sequence, Set

from models.staging import (
    EntityFamily, FAMILIES, StagingRecord, StagingStatus, VALIDATABLE_STATUSES,
)
from .db_adapter import DatabaseAdapter
from utils.logger import get_logger

logger = get_logger(__name__)


class StagingRepository:
    """Repository for staged records of one entity family."""

    def __init__(self, db: DatabaseAdapter, family: EntityFamily):
        self.db = db
        self.family = family
        self.table = family.staging_table
        self._columns = family.record_class.columns()

    def _insert_sql(self) -> str:
        placeholders = ", ".join("?" for _ in self._columns)
        return (
            f"INSERT INTO {self.table} ({', '.join(self._columns)}) VALUES ({placeholders}) "
            f"ON CONFLICT (import_package_id, original_entity_id) DO NOTHING"
        )

    def _params(self, record: StagingRecord) -> tuple:
        row = record.to_row()
        return tuple(row[c] for c in self._columns)

    def _row_to_record(self, row) -> StagingRecord:
        return self.family.record_class.from_row(row)

    # ==================== Writes ====================

    def add(self, record: StagingRecord) -> StagingRecord:
        """Insert a staged record. A second row for the same original id is ignored."""
        self.db.execute(self._insert_sql(), self._params(record))
        logger.debug(f"Staged {self.family.label} {record.original_entity_id}")
        return record

    def add_many(self, records: Sequence[StagingRecord]) -> int:
        """Insert staged records; returns how many rows were actually inserted."""
        if not records:
            return 0
        inserted = self.db.execute_many(self._insert_sql(), [self._params(r) for r in records])
        if inserted < 0:
            inserted = len(records)
        logger.debug(f"Staged {inserted} of {len(records)} {self.family.label} record(s)")
        return inserted

    def update(self, record: StagingRecord) -> StagingRecord:
        """Persist every column of an existing staged record."""
        columns = [c for c in self._columns if c != "id"]
        assignments = ", ".join(f"{c} = ?" for c in columns)
        row = record.to_row()
        params = tuple(row[c] for c in columns) + (record.id,)
        self.db.execute(f"UPDATE {self.table} SET {assignments} WHERE id = ?", params)
        return record

    def update_many(self, records: Iterable[StagingRecord]) -> int:
        count = 0
        for record in records:
            self.update(record)
            count += 1
        return count

    def delete_by_package(self, package_id: str) -> int:
        count = self.count_by_package(package_id)
        self.db.execute(f"DELETE FROM {self.table} WHERE import_package_id = ?", (package_id,))
        return count

    # ==================== Reads ====================

    def get_by_id(self, record_id: str) -> Optional[StagingRecord]:
        row = self.db.fetch_one(f"SELECT * FROM {self.table} WHERE id = ?", (record_id,))
        return self._row_to_record(row) if row else None

    def get_by_original_id(self, package_id: str, original_id: str) -> Optional[StagingRecord]:
        row = self.db.fetch_one(
            f"SELECT * FROM {self.table} WHERE import_package_id = ? AND original_entity_id = ?",
            (package_id, original_id)
        )
        return self._row_to_record(row) if row else None

    def get_by_package(self, package_id: str,
                       statuses: Optional[Sequence[StagingStatus]] = None) -> List[StagingRecord]:
        """Records of a package, optionally filtered by status, in staging order."""
        query = f"SELECT * FROM {self.table} WHERE import_package_id = ?"
        params: List = [package_id]
        if statuses:
            query += f" AND validation_status IN ({', '.join('?' for _ in statuses)})"
            params.extend(s.value for s in statuses)
        query += " ORDER BY staged_at_utc, original_entity_id"
        rows = self.db.fetch_all(query, tuple(params))
        return [self._row_to_record(row) for row in rows]

    def get_for_validation(self, package_id: str) -> List[StagingRecord]:
        """Records validators may touch (Pending, Valid, Invalid)."""
        return self.get_by_package(package_id, VALIDATABLE_STATUSES)

    def get_committable(self, package_id: str) -> List[StagingRecord]:
        """Approved records not yet promoted."""
        rows = self.db.fetch_all(
            f"SELECT * FROM {self.table} WHERE import_package_id = ? "
            f"AND validation_status = ? AND committed_entity_id IS NULL "
            f"ORDER BY staged_at_utc, original_entity_id",
            (package_id, StagingStatus.APPROVED.value)
        )
        return [self._row_to_record(row) for row in rows]

    def find_referencing(self, package_id: str, field_name: str, value: str) -> List[StagingRecord]:
        """Records whose ``field_name`` holds ``value``."""
        if field_name not in self._columns:
            raise ValueError(f"{self.family.label} has no field {field_name}")
        rows = self.db.fetch_all(
            f"SELECT * FROM {self.table} WHERE import_package_id = ? AND {field_name} = ?",
            (package_id, value)
        )
        return [self._row_to_record(row) for row in rows]

    def original_ids(self, package_id: str,
                     exclude: Sequence[StagingStatus] = (StagingStatus.REJECTED, StagingStatus.SKIPPED)) -> Set[str]:
        """Original ids present in the package, minus excluded statuses."""
        query = f"SELECT original_entity_id FROM {self.table} WHERE import_package_id = ?"
        params: List = [package_id]
        if exclude:
            query += f" AND validation_status NOT IN ({', '.join('?' for _ in exclude)})"
            params.extend(s.value for s in exclude)
        rows = self.db.fetch_all(query, tuple(params))
        return {row["original_entity_id"] for row in rows}

    def count_by_package(self, package_id: str) -> int:
        result = self.db.fetch_one(
            f"SELECT COUNT(*) as count FROM {self.table} WHERE import_package_id = ?",
            (package_id,)
        )
        return result["count"] if result else 0

    def count_by_status(self, package_id: str) -> Dict[StagingStatus, int]:
        rows = self.db.fetch_all(
            f"SELECT validation_status, COUNT(*) as count FROM {self.table} "
            f"WHERE import_package_id = ? GROUP BY validation_status",
            (package_id,)
        )
        counts = {status: 0 for status in StagingStatus}
        for row in rows:
            counts[StagingStatus(row["validation_status"])] = row["count"]
        return counts

    def count_with_warnings(self, package_id: str, status: StagingStatus = StagingStatus.VALID) -> int:
        result = self.db.fetch_one(
            f"SELECT COUNT(*) as count FROM {self.table} WHERE import_package_id = ? "
            f"AND validation_status = ? AND validation_warnings IS NOT NULL",
            (package_id, status.value)
        )
        return result["count"] if result else 0

    def package_ids(self) -> Set[str]:
        rows = self.db.fetch_all(f"SELECT DISTINCT import_package_id FROM {self.table}")
        return {row["import_package_id"] for row in rows}


def staging_repositories(db: DatabaseAdapter) -> Dict[str, StagingRepository]:
    """One repository per entity family, keyed by family name."""
    return {name: StagingRepository(db, family) for name, family in FAMILIES.items()}
