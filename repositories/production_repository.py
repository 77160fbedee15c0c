# -*- coding: utf-8 -*-
"""
Production (system of record) repository.

Only the operations the pipeline needs: create promoted rows, look rows up
by id, and read candidates for duplicate detection.
"""

import uuid
from typing import Any, Dict, List, Optional

from models.staging import EntityFamily
from .db_adapter import DatabaseAdapter, RowProxy
from utils.datetime_utils import utc_now, to_isoformat
from utils.logger import get_logger

logger = get_logger(__name__)


class ProductionRepository:
    """Writes and reads the production tables of all entity families."""

    def __init__(self, db: DatabaseAdapter):
        self.db = db

    def create(self, family: EntityFamily, values: Dict[str, Any],
               source_package_id: Optional[str] = None,
               source_original_id: Optional[str] = None,
               created_by: Optional[str] = None) -> str:
        """
        Insert a production row.

        Args:
            family: Entity family
            values: Production column -> value (FKs already translated)
            source_package_id: Import package the row came from
            source_original_id: Original id of the row in the package

        Returns:
            The new server-assigned id
        """
        allowed = set(family.production_columns()) | {"attachment_path"}
        unknown = set(values) - allowed
        if unknown:
            raise ValueError(f"Unknown {family.label} column(s): {', '.join(sorted(unknown))}")

        server_id = str(uuid.uuid4())
        row = dict(values)
        row.update({
            "id": server_id,
            "source_package_id": source_package_id,
            "source_original_id": source_original_id,
            "created_at": to_isoformat(utc_now()),
            "created_by": created_by,
        })
        columns = list(row.keys())
        query = (
            f"INSERT INTO {family.production_table} ({', '.join(columns)}) "
            f"VALUES ({', '.join('?' for _ in columns)})"
        )
        self.db.execute(query, tuple(row[c] for c in columns))
        logger.debug(f"Created {family.label} {server_id} (original {source_original_id})")
        return server_id

    def set_column(self, family: EntityFamily, entity_id: str, column: str, value: Any) -> None:
        if column not in family.production_columns() and column != "attachment_path":
            raise ValueError(f"{family.label} has no column {column}")
        self.db.execute(
            f"UPDATE {family.production_table} SET {column} = ? WHERE id = ?",
            (value, entity_id)
        )

    def get(self, family: EntityFamily, entity_id: str) -> Optional[RowProxy]:
        return self.db.fetch_one(f"SELECT * FROM {family.production_table} WHERE id = ?", (entity_id,))

    def exists(self, family: EntityFamily, entity_id: str) -> bool:
        if not entity_id:
            return False
        row = self.db.fetch_one(
            f"SELECT 1 as found FROM {family.production_table} WHERE id = ?", (entity_id,)
        )
        return row is not None

    def count(self, family: EntityFamily) -> int:
        result = self.db.fetch_one(f"SELECT COUNT(*) as count FROM {family.production_table}")
        return result["count"] if result else 0

    def count_by_source(self, family: EntityFamily, package_id: str) -> int:
        result = self.db.fetch_one(
            f"SELECT COUNT(*) as count FROM {family.production_table} WHERE source_package_id = ?",
            (package_id,)
        )
        return result["count"] if result else 0

    def get_by_source(self, family: EntityFamily, package_id: str) -> List[RowProxy]:
        return self.db.fetch_all(
            f"SELECT * FROM {family.production_table} WHERE source_package_id = ? ORDER BY created_at",
            (package_id,)
        )

    # ==================== Duplicate detection candidates ====================

    def find_persons_by_national_id(self, national_id: str) -> List[RowProxy]:
        return self.db.fetch_all(
            "SELECT * FROM persons WHERE national_id = ?", (national_id,)
        )

    def get_persons(self, limit: int = 10000) -> List[RowProxy]:
        return self.db.fetch_all("SELECT * FROM persons ORDER BY created_at LIMIT ?", (limit,))

    def find_buildings_by_code(self, building_code: str) -> List[RowProxy]:
        return self.db.fetch_all(
            "SELECT * FROM buildings WHERE building_code = ?", (building_code,)
        )

    def find_buildings_in_box(self, min_lat: float, max_lat: float,
                              min_lng: float, max_lng: float) -> List[RowProxy]:
        """Buildings whose point lies in the box (pre-filter for distance checks)."""
        return self.db.fetch_all(
            "SELECT * FROM buildings WHERE latitude BETWEEN ? AND ? AND longitude BETWEEN ? AND ?",
            (min_lat, max_lat, min_lng, max_lng)
        )
