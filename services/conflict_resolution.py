# -*- coding: utf-8 -*-
"""
Conflict Resolution Service
===========================

Features:
- Conflict creation from duplicate detection (one conflict per unordered
  entity pair per package)
- Review queue ordered by priority, with assignment and statistics
- Resolution actions: keep both, keep one side, merge, mark as duplicate,
  ignore, escalate
- Merge re-points staged children from the discarded record to the survivor
- Audit trail for every action
- Moves a package to ReadyToCommit when its last open conflict is closed
"""

import json
from typing import Any, Dict, List, Optional, Union

from models.conflict import (
    ConfidenceLevel, ConflictEntityType, ConflictPriority, ConflictResolution,
    ConflictStatus, ConflictType, ResolutionAction,
)
from models.import_package import ImportStatus
from models.staging import (
    BUILDING, CLAIM, EntityFamily, FAMILIES, PERSON, PROPERTY_UNIT, StagingRecord, StagingStatus,
)
from repositories.conflict_repository import ConflictRepository
from repositories.db_adapter import DatabaseAdapter
from repositories.import_package_repository import ImportPackageRepository
from repositories.staging_repository import StagingRepository, staging_repositories
from services.audit_service import AuditService
from services.exceptions import ConflictNotFound, ValidationException
from utils.datetime_utils import utc_now
from utils.logger import get_logger

logger = get_logger(__name__)

ENTITY_FAMILIES: Dict[ConflictEntityType, EntityFamily] = {
    ConflictEntityType.PERSON: PERSON,
    ConflictEntityType.BUILDING: BUILDING,
    ConflictEntityType.PROPERTY_UNIT: PROPERTY_UNIT,
    ConflictEntityType.CLAIM: CLAIM,
}

_PRIORITY_RANK = {
    ConflictPriority.HIGH: 0,
    ConflictPriority.NORMAL: 1,
    ConflictPriority.LOW: 2,
}


class ConflictResolutionService:
    """
    Conflict queue and resolution.

    Conflict sides are staging record ids, except the second side of a
    conflict against production (``is_second_committed``), which is a
    production id.
    """

    def __init__(self, db: DatabaseAdapter):
        self.db = db
        self.conflicts = ConflictRepository(db)
        self.packages = ImportPackageRepository(db)
        self.staging: Dict[str, StagingRepository] = staging_repositories(db)
        self.audit = AuditService(db)

    # ==================== Detection ====================

    def create_conflict(
        self,
        package_id: str,
        entity_type: ConflictEntityType,
        conflict_type: ConflictType,
        first_entity_id: str,
        second_entity_id: str,
        similarity_score: float,
        confidence_level: ConfidenceLevel,
        is_second_committed: bool = False,
        first_identifier: Optional[str] = None,
        second_identifier: Optional[str] = None,
        description: str = "",
        criteria: Optional[Dict[str, Any]] = None,
    ) -> Optional[ConflictResolution]:
        """
        Queue a conflict for human review.

        Returns:
            The new conflict, or None if the pair already has one in this package
        """
        existing = self.conflicts.get_by_pair(package_id, first_entity_id, second_entity_id)
        if existing:
            logger.debug(f"Conflict for pair already exists: {existing.conflict_number}")
            return None

        conflict = ConflictResolution(
            import_package_id=package_id,
            entity_type=entity_type,
            conflict_type=conflict_type,
            first_entity_id=first_entity_id,
            second_entity_id=second_entity_id,
            first_entity_identifier=first_identifier,
            second_entity_identifier=second_identifier,
            is_second_committed=is_second_committed,
            similarity_score=similarity_score,
            confidence_level=confidence_level,
            conflict_description=description,
            matching_criteria=json.dumps(criteria, ensure_ascii=False, default=str) if criteria else None,
        )
        self.conflicts.create(conflict)
        self.audit.record("conflict", conflict.id, "detected", None, {
            "conflict_number": conflict.conflict_number,
            "conflict_type": conflict_type.value,
            "similarity_score": similarity_score,
        })
        logger.info(
            f"Conflict {conflict.conflict_number} ({conflict_type.value}, score {similarity_score}) "
            f"queued for package {package_id}"
        )
        return conflict

    # ==================== Queue ====================

    def get_conflict(self, conflict_id: str) -> ConflictResolution:
        conflict = self.conflicts.get_by_id(conflict_id)
        if conflict is None:
            raise ConflictNotFound(conflict_id)
        return conflict

    def get_queue(self, package_id: Optional[str] = None, status: Optional[ConflictStatus] = None,
                  priority: Optional[ConflictPriority] = None) -> List[ConflictResolution]:
        """Conflicts ordered by priority then detection date (open ones by default)."""
        if package_id:
            conflicts = self.conflicts.get_by_package(package_id, status, priority)
            if status is None:
                conflicts = [c for c in conflicts if c.is_open]
        else:
            conflicts = self.conflicts.get_open()
            if status:
                conflicts = [c for c in conflicts if c.status == status]
            if priority:
                conflicts = [c for c in conflicts if c.priority == priority]
        return sorted(conflicts, key=lambda c: (_PRIORITY_RANK[c.priority], c.detected_date))

    def get_queue_stats(self, package_id: Optional[str] = None) -> Dict[str, Any]:
        stats: Dict[str, Any] = dict(self.conflicts.stats(package_id))
        now = utc_now()
        stats["overdue"] = sum(1 for c in self.conflicts.get_open(package_id) if c.is_overdue(now))
        return stats

    def assign(self, conflict_id: str, user_id: str, target_hours: Optional[int] = None) -> ConflictResolution:
        with self.db.transaction():
            conflict = self.get_conflict(conflict_id)
            conflict.assign(user_id, target_hours)
            self.conflicts.update(conflict)
            self.audit.record("conflict", conflict.id, "assigned", user_id,
                              {"target_resolution_hours": target_hours})
        logger.info(f"Conflict {conflict.conflict_number} assigned to {user_id}")
        return conflict

    def are_all_resolved(self, package_id: str) -> bool:
        return self.conflicts.count_unresolved(package_id) == 0

    def unresolved_count(self, package_id: str) -> int:
        return self.conflicts.count_unresolved(package_id)

    # ==================== Resolution ====================

    def resolve(
        self,
        conflict_id: str,
        action: Union[ResolutionAction, str],
        actor_id: str,
        merge_target: Optional[str] = None,
        reason: str = "",
        notes: Optional[str] = None,
    ) -> ConflictResolution:
        """
        Apply a decision to a conflict.

        Args:
            conflict_id: Conflict to resolve
            action: Resolution action (enum or its name / value)
            actor_id: User deciding
            merge_target: Surviving entity id (Merge only; must be one of the pair)
            reason: Why
            notes: Free-text notes

        Raises:
            ConflictNotFound: unknown conflict
            InvalidStateTransition: the conflict is already closed
            ValidationException: Merge without a valid merge target
        """
        if isinstance(action, str):
            action = ResolutionAction.parse(action)

        with self.db.transaction():
            conflict = self.get_conflict(conflict_id)
            previous_status = conflict.status

            if action == ResolutionAction.ESCALATE:
                conflict.escalate(actor_id, reason)
            elif action in (ResolutionAction.KEEP_BOTH, ResolutionAction.IGNORED):
                conflict.resolve(action, actor_id, reason, notes)
            elif action == ResolutionAction.MERGE:
                self._merge(conflict, actor_id, merge_target, reason, notes)
            else:
                keep_first = action == ResolutionAction.KEEP_FIRST
                if action == ResolutionAction.MARK_AS_DUPLICATE:
                    # The staged record duplicates production: drop it
                    keep_first = not conflict.is_second_committed
                kept = conflict.first_entity_id if keep_first else conflict.second_entity_id
                discarded = conflict.other_side(kept)
                if self._is_staged(conflict, discarded):
                    self._discard(conflict, discarded, kept, f"{action.value} by conflict {conflict.conflict_number}")
                conflict.resolve(action, actor_id, reason, notes,
                                 discarded_entity_id=discarded)

            self.conflicts.update(conflict)
            self.audit.record("conflict", conflict.id, action.value, actor_id, {
                "from_status": previous_status.value,
                "to_status": conflict.status.value,
                "merged_entity_id": conflict.merged_entity_id,
                "discarded_entity_id": conflict.discarded_entity_id,
                "reason": reason,
            })
            if not conflict.is_open:
                self._close_package_review(conflict.import_package_id, actor_id)

        logger.info(f"Conflict {conflict.conflict_number}: {action.value} by {actor_id}")
        return conflict

    def _merge(self, conflict: ConflictResolution, actor_id: str, merge_target: Optional[str],
               reason: str, notes: Optional[str]) -> None:
        if not merge_target or not conflict.involves(merge_target):
            raise ValidationException(
                f"Merge target must be one of {conflict.first_entity_id} / {conflict.second_entity_id}",
                field="merge_target",
            )
        discarded = conflict.other_side(merge_target)

        if self._is_staged(conflict, discarded):
            self._discard(conflict, discarded, merge_target,
                          f"Merged into {merge_target} by conflict {conflict.conflict_number}")

        conflict.resolve(ResolutionAction.MERGE, actor_id, reason, notes,
                         merged_entity_id=merge_target, discarded_entity_id=discarded)

    def _discard(self, conflict: ConflictResolution, discarded: str, survivor: str, reason: str) -> None:
        """Reject the staged ``discarded`` record and move its staged children to ``survivor``."""
        family = ENTITY_FAMILIES[conflict.entity_type]
        discarded_record = self._staged_record(family, discarded)
        survivor_ref = self._reference_value(conflict, survivor)
        self._reject(conflict, discarded, reason)
        moved = self._repoint_children(conflict.import_package_id, family,
                                       discarded_record.original_entity_id, survivor_ref)
        if moved:
            logger.info(f"Conflict {conflict.conflict_number}: {moved} staged reference(s) re-pointed to {survivor_ref}")

    def _is_staged(self, conflict: ConflictResolution, entity_id: str) -> bool:
        return not (conflict.is_second_committed and entity_id == conflict.second_entity_id)

    def _staged_record(self, family: EntityFamily, record_id: str) -> StagingRecord:
        record = self.staging[family.name].get_by_id(record_id)
        if record is None:
            raise ValidationException(f"Staged {family.label} {record_id} not found", field="entity_id")
        return record

    def _reference_value(self, conflict: ConflictResolution, entity_id: str) -> str:
        """Value a child FK must hold to point at ``entity_id``."""
        if not self._is_staged(conflict, entity_id):
            return entity_id
        family = ENTITY_FAMILIES[conflict.entity_type]
        return self._staged_record(family, entity_id).original_entity_id

    def _reject(self, conflict: ConflictResolution, record_id: str, reason: str) -> None:
        family = ENTITY_FAMILIES[conflict.entity_type]
        repo = self.staging[family.name]
        record = self._staged_record(family, record_id)
        if record.validation_status == StagingStatus.REJECTED:
            return
        record.reject(reason)
        repo.update(record)

    def _repoint_children(self, package_id: str, family: EntityFamily,
                          old_original_id: str, new_value: str) -> int:
        """Point staged FKs at ``family``/``old_original_id`` to ``new_value``."""
        moved = 0
        for child in FAMILIES.values():
            for fk in child.foreign_keys:
                if fk.family != family.name:
                    continue
                repo = self.staging[child.name]
                for record in repo.find_referencing(package_id, fk.field, old_original_id):
                    if record.validation_status == StagingStatus.COMMITTED:
                        continue
                    setattr(record, fk.field, new_value)
                    repo.update(record)
                    moved += 1
        return moved

    def _close_package_review(self, package_id: str, actor_id: str) -> None:
        if self.conflicts.count_unresolved(package_id) > 0:
            return
        package = self.packages.get_by_id(package_id)
        if package is None or package.status != ImportStatus.REVIEWING_CONFLICTS:
            return
        package.mark_conflicts_resolved()
        self.packages.update(package)
        self.audit.record("import_package", package.id, "status_changed", actor_id, {
            "from_status": ImportStatus.REVIEWING_CONFLICTS.value,
            "to_status": package.status.value,
        })
        logger.info(f"Package {package.package_number}: all conflicts resolved, ready to commit")
