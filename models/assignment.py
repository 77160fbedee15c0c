# -*- coding: utf-8 -*-
"""
Building assignment model.

Tracks a building handed to a field collector: transfer of the work
package to the tablet, retries after failed transfers, synchronization
back, and revisit assignments that point at the assignment they follow up.
"""

import json
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from utils.datetime_utils import utc_now, to_isoformat, from_isoformat


class TransferStatus(Enum):
    PENDING = "Pending"
    IN_PROGRESS = "InProgress"
    TRANSFERRED = "Transferred"
    FAILED = "Failed"
    CANCELLED = "Cancelled"
    PARTIAL_TRANSFER = "PartialTransfer"
    SYNCHRONIZED = "Synchronized"

    @property
    def is_terminal(self) -> bool:
        return self in (TransferStatus.CANCELLED, TransferStatus.SYNCHRONIZED)

    def can_transition_to(self, target: 'TransferStatus') -> bool:
        return target in _TRANSFER_TRANSITIONS[self]


_TRANSFER_TRANSITIONS = {
    TransferStatus.PENDING: (TransferStatus.IN_PROGRESS, TransferStatus.CANCELLED),
    TransferStatus.IN_PROGRESS: (TransferStatus.TRANSFERRED, TransferStatus.FAILED,
                                 TransferStatus.PARTIAL_TRANSFER, TransferStatus.CANCELLED),
    TransferStatus.FAILED: (TransferStatus.PENDING, TransferStatus.CANCELLED),
    TransferStatus.PARTIAL_TRANSFER: (TransferStatus.PENDING, TransferStatus.CANCELLED),
    TransferStatus.TRANSFERRED: (TransferStatus.SYNCHRONIZED, TransferStatus.PENDING,
                                 TransferStatus.CANCELLED),
    TransferStatus.SYNCHRONIZED: (),
    TransferStatus.CANCELLED: (),
}


@dataclass
class BuildingAssignment:
    """Assignment of one building to one field collector."""

    building_id: str = ""
    field_collector_id: str = ""
    assigned_by_user_id: Optional[str] = None
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    assigned_date: datetime = field(default_factory=utc_now)

    transfer_status: TransferStatus = TransferStatus.PENDING
    transfer_retry_count: int = 0
    last_transfer_attempt_date: Optional[datetime] = None
    next_retry_at: Optional[datetime] = None
    transfer_error_message: Optional[str] = None
    transferred_to_tablet_date: Optional[datetime] = None
    synchronized_from_tablet_date: Optional[datetime] = None

    # Revisit
    is_revisit: bool = False
    original_assignment_id: Optional[str] = None
    units_for_revisit: Optional[str] = None  # JSON list of unit ids
    revisit_reason: Optional[str] = None

    priority: str = "Normal"
    is_active: bool = True
    total_property_units: int = 0
    completed_property_units: int = 0
    transferred_units: int = 0
    notes: Optional[str] = None
    modified_at: datetime = field(default_factory=utc_now)

    # ==================== Status ====================

    def _move(self, target: TransferStatus) -> None:
        from services.exceptions import InvalidStateTransition

        if not self.transfer_status.can_transition_to(target):
            raise InvalidStateTransition(f"Assignment {self.id}", self.transfer_status, target)
        self.transfer_status = target
        self.modified_at = utc_now()

    def mark_in_progress(self) -> None:
        self._move(TransferStatus.IN_PROGRESS)
        self.last_transfer_attempt_date = utc_now()

    def mark_transferred(self) -> None:
        self._move(TransferStatus.TRANSFERRED)
        self.transferred_to_tablet_date = utc_now()
        self.transfer_error_message = None
        self.next_retry_at = None

    def mark_failed(self, error_message: str, next_retry_at: Optional[datetime] = None) -> None:
        self._move(TransferStatus.FAILED)
        self.transfer_retry_count += 1
        self.transfer_error_message = error_message
        self.next_retry_at = next_retry_at

    def mark_partial(self, transferred_units: int) -> None:
        self._move(TransferStatus.PARTIAL_TRANSFER)
        self.transferred_units = transferred_units

    def reset_to_pending(self) -> None:
        """Back to Pending for another transfer (retry or delta push)."""
        self._move(TransferStatus.PENDING)

    def mark_synchronized(self) -> None:
        self._move(TransferStatus.SYNCHRONIZED)
        self.synchronized_from_tablet_date = utc_now()

    def cancel(self, reason: Optional[str] = None) -> None:
        self._move(TransferStatus.CANCELLED)
        self.is_active = False
        if reason:
            self.notes = f"{self.notes}\n[Cancelled]: {reason}" if self.notes else f"[Cancelled]: {reason}"

    def supersede(self, revisit_id: str) -> None:
        """Retire this assignment in favour of the revisit that follows it up."""
        self.is_active = False
        note = f"[Superseded]: revisit {revisit_id}"
        self.notes = f"{self.notes}\n{note}" if self.notes else note
        self.modified_at = utc_now()

    def reassign(self, field_collector_id: str, assigned_by_user_id: Optional[str] = None) -> None:
        """Hand the building to another collector; transfer starts over."""
        if self.transfer_status != TransferStatus.PENDING:
            self._move(TransferStatus.PENDING)
        self.field_collector_id = field_collector_id
        self.assigned_by_user_id = assigned_by_user_id or self.assigned_by_user_id
        self.assigned_date = utc_now()
        self.transfer_retry_count = 0
        self.transfer_error_message = None
        self.next_retry_at = None
        self.modified_at = utc_now()

    def update_progress(self, completed_units: int) -> None:
        if completed_units < 0:
            raise ValueError("Completed units cannot be negative")
        if self.total_property_units and completed_units > self.total_property_units:
            raise ValueError(
                f"Completed units ({completed_units}) exceed total ({self.total_property_units})"
            )
        self.completed_property_units = completed_units
        self.modified_at = utc_now()

    # ==================== Properties ====================

    @property
    def completion_percentage(self) -> float:
        if not self.total_property_units:
            return 0.0
        return self.completed_property_units / self.total_property_units * 100

    @property
    def revisit_units(self) -> List[str]:
        if not self.units_for_revisit:
            return []
        try:
            return list(json.loads(self.units_for_revisit))
        except (TypeError, ValueError):
            return []

    # ==================== Serialization ====================

    _DATETIME_FIELDS = (
        "assigned_date", "last_transfer_attempt_date", "next_retry_at",
        "transferred_to_tablet_date", "synchronized_from_tablet_date", "modified_at",
    )
    _BOOL_FIELDS = ("is_revisit", "is_active")

    def to_row(self) -> Dict[str, Any]:
        row = dict(self.__dict__)
        row["transfer_status"] = self.transfer_status.value
        for name in self._DATETIME_FIELDS:
            row[name] = to_isoformat(row[name])
        for name in self._BOOL_FIELDS:
            row[name] = 1 if row[name] else 0
        return row

    @classmethod
    def from_row(cls, row) -> 'BuildingAssignment':
        data = dict(row.items())
        data["transfer_status"] = TransferStatus(data["transfer_status"])
        for name in cls._DATETIME_FIELDS:
            data[name] = from_isoformat(data.get(name))
        for name in cls._BOOL_FIELDS:
            data[name] = bool(data.get(name))
        data["assigned_date"] = data["assigned_date"] or utc_now()
        data["modified_at"] = data["modified_at"] or utc_now()
        return cls(**data)

    def to_dict(self) -> Dict[str, Any]:
        data = self.to_row()
        data["completion_percentage"] = round(self.completion_percentage, 1)
        return data
