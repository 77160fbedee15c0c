# -*- coding: utf-8 -*-
"""
Conflict resolution model.

A conflict pairs two entities that look like the same real-world person or
property: either two staged records of one package, or a staged record and
an already-committed one. Conflicts block commit until a human decides.

Conflict Number Format: CNF-YYYY-NNNN
"""

import json
import random
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from utils.datetime_utils import utc_now, to_isoformat, from_isoformat


class ConflictType(Enum):
    PERSON_DUPLICATE = "person_duplicate"
    PERSON_DUPLICATE_WITHIN_BATCH = "person_duplicate_within_batch"
    PROPERTY_DUPLICATE = "property_duplicate"
    PROPERTY_DUPLICATE_WITHIN_BATCH = "property_duplicate_within_batch"
    CLAIM_OVERLAP = "claim_overlap"


class ConflictEntityType(Enum):
    PERSON = "person"
    BUILDING = "building"
    PROPERTY_UNIT = "property_unit"
    CLAIM = "claim"


class ConflictStatus(Enum):
    PENDING_REVIEW = "PendingReview"
    RESOLVED = "Resolved"
    IGNORED = "Ignored"
    ESCALATED = "Escalated"

    @property
    def is_open(self) -> bool:
        """Open conflicts block commit."""
        return self in (ConflictStatus.PENDING_REVIEW, ConflictStatus.ESCALATED)


class ResolutionAction(Enum):
    KEEP_BOTH = "KeepBoth"
    MERGE = "Merge"
    KEEP_FIRST = "KeepFirst"
    KEEP_SECOND = "KeepSecond"
    MARK_AS_DUPLICATE = "MarkAsDuplicate"
    ESCALATE = "Escalate"
    IGNORED = "Ignored"

    @classmethod
    def parse(cls, value: str) -> 'ResolutionAction':
        """Accept enum values or names in any case ("keep_first", "KeepFirst")."""
        normalized = value.replace("_", "").replace("-", "").lower()
        for action in cls:
            if action.value.lower() == normalized or action.name.replace("_", "").lower() == normalized:
                return action
        raise ValueError(f"Unknown resolution action: {value}")


class ConfidenceLevel(Enum):
    HIGH = "High"
    MEDIUM = "Medium"
    LOW = "Low"


class ConflictPriority(Enum):
    HIGH = "High"
    NORMAL = "Normal"
    LOW = "Low"


def compute_priority(confidence: ConfidenceLevel, score: float) -> ConflictPriority:
    if confidence == ConfidenceLevel.HIGH and score >= 90:
        return ConflictPriority.HIGH
    if confidence == ConfidenceLevel.MEDIUM or score >= 70:
        return ConflictPriority.NORMAL
    return ConflictPriority.LOW


def make_pair_key(first_id: str, second_id: str) -> str:
    """Order-independent key for an entity pair."""
    a, b = sorted((first_id, second_id))
    return f"{a}|{b}"


def generate_conflict_number() -> str:
    return f"CNF-{utc_now().year}-{random.randint(1000, 9999):04d}"


@dataclass
class ConflictResolution:
    """Conflict between two entities awaiting (or after) a human decision."""

    import_package_id: str = ""
    entity_type: ConflictEntityType = ConflictEntityType.PERSON
    conflict_type: ConflictType = ConflictType.PERSON_DUPLICATE
    first_entity_id: str = ""
    second_entity_id: str = ""
    first_entity_identifier: Optional[str] = None
    second_entity_identifier: Optional[str] = None
    is_second_committed: bool = False  # second side is a production id

    similarity_score: float = 0.0
    confidence_level: ConfidenceLevel = ConfidenceLevel.MEDIUM
    conflict_description: str = ""
    matching_criteria: Optional[str] = None  # JSON

    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    conflict_number: str = field(default_factory=generate_conflict_number)
    status: ConflictStatus = ConflictStatus.PENDING_REVIEW
    resolution_action: Optional[ResolutionAction] = None
    priority: ConflictPriority = ConflictPriority.NORMAL

    # Assignment
    assigned_to_user_id: Optional[str] = None
    assigned_date: Optional[datetime] = None
    target_resolution_hours: Optional[int] = None

    # Resolution
    detected_date: datetime = field(default_factory=utc_now)
    resolved_date: Optional[datetime] = None
    resolved_by_user_id: Optional[str] = None
    resolution_reason: Optional[str] = None
    resolution_notes: Optional[str] = None
    merged_entity_id: Optional[str] = None
    discarded_entity_id: Optional[str] = None

    # Escalation
    is_escalated: bool = False
    escalation_reason: Optional[str] = None
    escalated_date: Optional[datetime] = None
    escalated_by_user_id: Optional[str] = None

    review_attempt_count: int = 0
    is_auto_detected: bool = True

    def __post_init__(self):
        if self.status == ConflictStatus.PENDING_REVIEW and self.resolution_action is None \
                and not self.is_escalated:
            self.priority = compute_priority(self.confidence_level, self.similarity_score)

    @property
    def pair_key(self) -> str:
        return make_pair_key(self.first_entity_id, self.second_entity_id)

    @property
    def is_open(self) -> bool:
        return self.status.is_open

    def involves(self, entity_id: str) -> bool:
        return entity_id in (self.first_entity_id, self.second_entity_id)

    def other_side(self, entity_id: str) -> str:
        if entity_id == self.first_entity_id:
            return self.second_entity_id
        if entity_id == self.second_entity_id:
            return self.first_entity_id
        raise ValueError(f"Entity {entity_id} is not part of conflict {self.conflict_number}")

    # ==================== Workflow ====================

    def assign(self, user_id: str, target_hours: Optional[int] = None) -> None:
        self.assigned_to_user_id = user_id
        self.assigned_date = utc_now()
        self.target_resolution_hours = target_hours

    def resolve(self, action: ResolutionAction, actor_id: str, reason: str = "",
                notes: Optional[str] = None, merged_entity_id: Optional[str] = None,
                discarded_entity_id: Optional[str] = None) -> None:
        """Close the conflict with a decision."""
        from services.exceptions import InvalidStateTransition

        target = ConflictStatus.IGNORED if action == ResolutionAction.IGNORED else ConflictStatus.RESOLVED
        if not self.is_open:
            raise InvalidStateTransition(f"Conflict {self.conflict_number}", self.status, target)

        self.status = target
        self.resolution_action = action
        self.resolved_by_user_id = actor_id
        self.resolved_date = utc_now()
        self.resolution_reason = reason
        self.resolution_notes = notes
        self.merged_entity_id = merged_entity_id
        self.discarded_entity_id = discarded_entity_id
        self.review_attempt_count += 1

    def escalate(self, actor_id: str, reason: str) -> None:
        from services.exceptions import InvalidStateTransition

        if not self.is_open:
            raise InvalidStateTransition(f"Conflict {self.conflict_number}", self.status,
                                         ConflictStatus.ESCALATED)
        self.status = ConflictStatus.ESCALATED
        self.resolution_action = ResolutionAction.ESCALATE
        self.priority = ConflictPriority.HIGH
        self.is_escalated = True
        self.escalation_reason = reason
        self.escalated_date = utc_now()
        self.escalated_by_user_id = actor_id
        self.review_attempt_count += 1

    def is_overdue(self, now: Optional[datetime] = None) -> bool:
        if not self.is_open or not self.target_resolution_hours or not self.assigned_date:
            return False
        elapsed = (now or utc_now()) - self.assigned_date
        return elapsed.total_seconds() > self.target_resolution_hours * 3600

    def criteria(self) -> Dict[str, Any]:
        if not self.matching_criteria:
            return {}
        try:
            return json.loads(self.matching_criteria)
        except (TypeError, ValueError):
            return {}

    # ==================== Serialization ====================

    _ENUM_FIELDS = {
        "entity_type": ConflictEntityType,
        "conflict_type": ConflictType,
        "confidence_level": ConfidenceLevel,
        "status": ConflictStatus,
        "resolution_action": ResolutionAction,
        "priority": ConflictPriority,
    }
    _DATETIME_FIELDS = ("assigned_date", "detected_date", "resolved_date", "escalated_date")
    _BOOL_FIELDS = ("is_second_committed", "is_escalated", "is_auto_detected")

    def to_row(self) -> Dict[str, Any]:
        row = dict(self.__dict__)
        for name in self._ENUM_FIELDS:
            value = row[name]
            row[name] = value.value if value is not None else None
        for name in self._DATETIME_FIELDS:
            row[name] = to_isoformat(row[name])
        for name in self._BOOL_FIELDS:
            row[name] = 1 if row[name] else 0
        row["pair_key"] = self.pair_key
        return row

    @classmethod
    def from_row(cls, row) -> 'ConflictResolution':
        data = dict(row.items())
        data.pop("pair_key", None)
        for name, enum_cls in cls._ENUM_FIELDS.items():
            value = data.get(name)
            data[name] = enum_cls(value) if value is not None else None
        for name in cls._DATETIME_FIELDS:
            data[name] = from_isoformat(data.get(name))
        for name in cls._BOOL_FIELDS:
            data[name] = bool(data.get(name))
        data["detected_date"] = data["detected_date"] or utc_now()
        return cls(**data)

    def to_dict(self) -> Dict[str, Any]:
        data = self.to_row()
        for name in self._BOOL_FIELDS:
            data[name] = getattr(self, name)
        return data
