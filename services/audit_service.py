# -*- coding: utf-8 -*-
"""
Audit trail.

Who changed what: conflict decisions, package status changes and commits
are written to the ``audit_log`` table.
"""

import json
import uuid
from typing import Any, Dict, List, Optional

from repositories.db_adapter import DatabaseAdapter
from utils.datetime_utils import utc_now, to_isoformat
from utils.logger import get_logger

logger = get_logger(__name__)


class AuditService:
    """Writes and reads audit entries."""

    def __init__(self, db: DatabaseAdapter):
        self.db = db

    def record(self, entity_type: str, entity_id: str, action: str,
               actor_id: Optional[str] = None, details: Optional[Dict[str, Any]] = None) -> str:
        """
        Append an audit entry.

        Args:
            entity_type: e.g. "import_package", "conflict"
            entity_id: Id of the changed entity
            action: Short verb ("resolved", "status_changed", "committed")
            actor_id: User who acted (None for system actions)
            details: JSON-serializable context

        Returns:
            Id of the audit entry
        """
        entry_id = str(uuid.uuid4())
        self.db.execute(
            "INSERT INTO audit_log (id, entity_type, entity_id, action, actor_id, details, created_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?)",
            (entry_id, entity_type, entity_id, action, actor_id,
             json.dumps(details or {}, ensure_ascii=False, default=str),
             to_isoformat(utc_now()))
        )
        logger.debug(f"Audit: {entity_type} {entity_id} {action} by {actor_id or 'system'}")
        return entry_id

    def history(self, entity_type: str, entity_id: str) -> List[Dict[str, Any]]:
        """Entries for one entity, oldest first."""
        rows = self.db.fetch_all(
            "SELECT * FROM audit_log WHERE entity_type = ? AND entity_id = ? ORDER BY created_at, rowid",
            (entity_type, entity_id)
        )
        entries = []
        for row in rows:
            entry = row.to_dict()
            try:
                entry["details"] = json.loads(entry.get("details") or "{}")
            except ValueError:
                entry["details"] = {"raw": entry.get("details")}
            entries.append(entry)
        return entries
