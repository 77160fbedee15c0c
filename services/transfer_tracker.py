# -*- coding: utf-8 -*-
"""
Transfer/sync tracker for building assignments.

Follows an assignment from creation through transfer to the collector's
tablet, failed transfers and their back-off retries, partial transfers,
and the device's acknowledgement once the data is synchronized back.
Revisits are new assignments that point at the one they follow up.
"""

import json
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Sequence

from app.config import PipelineSettings
from models.assignment import BuildingAssignment, TransferStatus
from repositories.assignment_repository import AssignmentRepository
from repositories.db_adapter import DatabaseAdapter
from services.exceptions import AssignmentNotFound, TransferFailure, ValidationException
from utils.datetime_utils import utc_now
from utils.logger import get_logger
from utils.retry import next_delay

logger = get_logger(__name__)


@dataclass
class AcknowledgeResult:
    """Outcome of a device acknowledgement."""
    acknowledged: List[str] = field(default_factory=list)
    rejected: Dict[str, str] = field(default_factory=dict)  # id -> reason


class TransferTracker:
    """Assignment lifecycle on top of AssignmentRepository."""

    def __init__(self, db: DatabaseAdapter, settings: Optional[PipelineSettings] = None):
        self.db = db
        self.settings = settings or PipelineSettings.from_config()
        self.assignments = AssignmentRepository(db)

    def get(self, assignment_id: str) -> BuildingAssignment:
        assignment = self.assignments.get_by_id(assignment_id)
        if assignment is None:
            raise AssignmentNotFound(assignment_id)
        return assignment

    # ========== Assignment Management ==========

    def create_assignment(
        self,
        building_id: str,
        collector_id: str,
        assigned_by: str,
        total_units: int = 0,
        priority: str = "Normal",
        notes: Optional[str] = None
    ) -> BuildingAssignment:
        """
        Assign a building to a field collector.

        Raises:
            ValidationException: the building already has an active assignment
        """
        existing = self.assignments.get_active_for_building(building_id)
        if existing:
            raise ValidationException(
                f"Building {building_id} already has an active assignment ({existing[0].id})",
                field="building_id",
            )

        assignment = BuildingAssignment(
            building_id=building_id,
            field_collector_id=collector_id,
            assigned_by_user_id=assigned_by,
            total_property_units=total_units,
            priority=priority,
            notes=notes,
        )
        self.assignments.create(assignment)
        logger.info(f"Created assignment {assignment.id}: building {building_id} -> {collector_id}")
        return assignment

    def create_revisit(self, original_assignment_id: str, units: Sequence[str], reason: str,
                       assigned_by: str) -> BuildingAssignment:
        """
        Follow-up assignment for selected units of an earlier one.

        The original stays in the revisit chain but is no longer active, so the
        building keeps a single active assignment.
        """
        original = self.get(original_assignment_id)
        revisit = BuildingAssignment(
            building_id=original.building_id,
            field_collector_id=original.field_collector_id,
            assigned_by_user_id=assigned_by,
            is_revisit=True,
            original_assignment_id=original.id,
            units_for_revisit=json.dumps(list(units)),
            revisit_reason=reason,
            total_property_units=len(units),
            priority=original.priority,
        )
        original.supersede(revisit.id)
        with self.db.transaction():
            self.assignments.create(revisit)
            self.assignments.update(original)
        logger.info(f"Created revisit {revisit.id} of assignment {original.id} ({len(units)} unit(s))")
        return revisit

    def get_revisit_chain(self, assignment_id: str) -> List[BuildingAssignment]:
        """The assignment followed by its ancestors, nearest first."""
        chain: List[BuildingAssignment] = []
        seen = set()
        current = self.get(assignment_id)
        while current is not None and current.id not in seen:
            chain.append(current)
            seen.add(current.id)
            if not current.original_assignment_id:
                break
            current = self.assignments.get_by_id(current.original_assignment_id)
        return chain

    # ========== Transfer ==========

    def start_transfer(self, assignment_id: str) -> BuildingAssignment:
        assignment = self.get(assignment_id)
        assignment.mark_in_progress()
        self.assignments.update(assignment)
        logger.info(f"Transfer started: {assignment_id}")
        return assignment

    def mark_transferred(self, assignment_id: str) -> BuildingAssignment:
        assignment = self.get(assignment_id)
        assignment.mark_transferred()
        self.assignments.update(assignment)
        logger.info(f"Transferred to tablet: {assignment_id}")
        return assignment

    def mark_failed(self, assignment_id: str, error: str) -> BuildingAssignment:
        """Record a failed transfer and schedule the next attempt."""
        assignment = self.get(assignment_id)
        retry_at = utc_now() + next_delay(assignment.transfer_retry_count + 1)
        assignment.mark_failed(error, next_retry_at=retry_at)
        self.assignments.update(assignment)
        logger.warning(
            f"Transfer failed for assignment {assignment_id} "
            f"(attempt {assignment.transfer_retry_count}): {error}"
        )
        return assignment

    def retry(self, assignment_id: str) -> BuildingAssignment:
        """
        Put a failed assignment back to Pending.

        Raises:
            TransferFailure: retries are used up; the assignment stays Failed
        """
        assignment = self.get(assignment_id)
        max_retries = self.settings.transfer_max_retries
        if (assignment.transfer_status == TransferStatus.FAILED
                and assignment.transfer_retry_count >= max_retries):
            logger.error(
                f"Assignment {assignment_id} exhausted {max_retries} transfer retries: "
                f"{assignment.transfer_error_message}"
            )
            raise TransferFailure(
                f"Assignment {assignment_id} failed {assignment.transfer_retry_count} time(s); "
                f"operator action required",
                assignment_id=assignment_id,
                retry_count=assignment.transfer_retry_count,
            )
        assignment.reset_to_pending()
        assignment.next_retry_at = None
        self.assignments.update(assignment)
        logger.info(f"Reset transfer for retry: {assignment_id}")
        return assignment

    def mark_partial(self, assignment_id: str, transferred_units: int) -> BuildingAssignment:
        assignment = self.get(assignment_id)
        assignment.mark_partial(transferred_units)
        self.assignments.update(assignment)
        logger.info(f"Partial transfer {assignment_id}: {transferred_units} unit(s)")
        return assignment

    def push_delta(self, assignment_id: str) -> BuildingAssignment:
        """Queue the remaining units of a partial transfer."""
        assignment = self.get(assignment_id)
        if assignment.transfer_status != TransferStatus.PARTIAL_TRANSFER:
            raise ValidationException(
                f"Assignment {assignment_id} is {assignment.transfer_status.value}, "
                f"expected {TransferStatus.PARTIAL_TRANSFER.value}",
                field="transfer_status",
            )
        assignment.reset_to_pending()
        self.assignments.update(assignment)
        logger.info(f"Delta queued for assignment {assignment_id}")
        return assignment

    # ========== Synchronization ==========

    def acknowledge(self, assignment_ids: Sequence[str], collector_id: str) -> AcknowledgeResult:
        """
        Device confirmation that transferred assignments arrived.

        Ids of other collectors or not in Transferred are reported in
        ``rejected`` rather than raised.
        """
        result = AcknowledgeResult()
        with self.db.transaction():
            for assignment_id in assignment_ids:
                assignment = self.assignments.get_by_id(assignment_id)
                if assignment is None:
                    result.rejected[assignment_id] = "not found"
                elif assignment.field_collector_id != collector_id:
                    result.rejected[assignment_id] = "assigned to another collector"
                elif assignment.transfer_status != TransferStatus.TRANSFERRED:
                    result.rejected[assignment_id] = f"status is {assignment.transfer_status.value}"
                else:
                    assignment.mark_synchronized()
                    self.assignments.update(assignment)
                    result.acknowledged.append(assignment_id)

        if result.rejected:
            logger.warning(f"Acknowledge from {collector_id}: {len(result.rejected)} id(s) rejected")
        logger.info(f"Acknowledge from {collector_id}: {len(result.acknowledged)} synchronized")
        return result

    def cancel(self, assignment_id: str, reason: str) -> BuildingAssignment:
        assignment = self.get(assignment_id)
        assignment.cancel(reason)
        self.assignments.update(assignment)
        logger.info(f"Cancelled assignment {assignment_id}: {reason}")
        return assignment

    def update_progress(self, assignment_id: str, completed_units: int) -> BuildingAssignment:
        assignment = self.get(assignment_id)
        try:
            assignment.update_progress(completed_units)
        except ValueError as e:
            raise ValidationException(str(e), field="completed_units") from e
        self.assignments.update(assignment)
        return assignment

    # ========== Queries ==========

    def get_pending_for_collector(self, collector_id: str,
                                  since: Optional[datetime] = None) -> List[BuildingAssignment]:
        """Pending or Failed assignments of a collector changed after ``since``."""
        return self.assignments.get_for_collector(
            collector_id, [TransferStatus.PENDING, TransferStatus.FAILED], since
        )

    def get_retry_eligible(self, now: Optional[datetime] = None) -> List[BuildingAssignment]:
        return self.assignments.get_retry_eligible(now or utc_now(), self.settings.transfer_max_retries)
