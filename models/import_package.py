# -*- coding: utf-8 -*-
"""
Import package model.

One row per uploaded .uhc package. Tracks the package through integrity
checks, staging, validation, conflict review and commit.

Package Number Format: PKG-YYYY-NNNN
"""

import json
import random
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from utils.datetime_utils import utc_now, to_isoformat, from_isoformat


class ImportStatus(Enum):
    """Lifecycle of an import package."""
    PENDING = "Pending"
    VALIDATING = "Validating"
    STAGING = "Staging"
    VALIDATION_FAILED = "ValidationFailed"
    QUARANTINED = "Quarantined"
    REVIEWING_CONFLICTS = "ReviewingConflicts"
    READY_TO_COMMIT = "ReadyToCommit"
    COMMITTING = "Committing"
    COMPLETED = "Completed"
    FAILED = "Failed"
    PARTIALLY_COMPLETED = "PartiallyCompleted"
    CANCELLED = "Cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (ImportStatus.COMPLETED, ImportStatus.FAILED, ImportStatus.CANCELLED)

    def can_transition_to(self, target: 'ImportStatus') -> bool:
        return target in _IMPORT_TRANSITIONS[self]


_IMPORT_TRANSITIONS = {
    ImportStatus.PENDING: (ImportStatus.VALIDATING, ImportStatus.VALIDATION_FAILED,
                           ImportStatus.QUARANTINED, ImportStatus.CANCELLED),
    ImportStatus.VALIDATING: (ImportStatus.VALIDATING, ImportStatus.STAGING,
                              ImportStatus.VALIDATION_FAILED, ImportStatus.QUARANTINED,
                              ImportStatus.CANCELLED),
    ImportStatus.VALIDATION_FAILED: (ImportStatus.VALIDATION_FAILED, ImportStatus.VALIDATING, ImportStatus.QUARANTINED,
                                     ImportStatus.REVIEWING_CONFLICTS, ImportStatus.READY_TO_COMMIT,
                                     ImportStatus.CANCELLED),
    ImportStatus.STAGING: (ImportStatus.VALIDATING, ImportStatus.REVIEWING_CONFLICTS,
                           ImportStatus.READY_TO_COMMIT, ImportStatus.VALIDATION_FAILED,
                           ImportStatus.CANCELLED),
    ImportStatus.QUARANTINED: (ImportStatus.QUARANTINED, ImportStatus.CANCELLED),
    ImportStatus.REVIEWING_CONFLICTS: (ImportStatus.REVIEWING_CONFLICTS, ImportStatus.READY_TO_COMMIT,
                                       ImportStatus.VALIDATING, ImportStatus.CANCELLED),
    ImportStatus.READY_TO_COMMIT: (ImportStatus.READY_TO_COMMIT, ImportStatus.COMMITTING,
                                   ImportStatus.REVIEWING_CONFLICTS, ImportStatus.VALIDATING,
                                   ImportStatus.CANCELLED),
    ImportStatus.COMMITTING: (ImportStatus.COMPLETED, ImportStatus.PARTIALLY_COMPLETED,
                              ImportStatus.FAILED, ImportStatus.READY_TO_COMMIT),
    # Failed is terminal for processing; only an explicit reset re-opens it
    ImportStatus.FAILED: (ImportStatus.READY_TO_COMMIT,),
    ImportStatus.PARTIALLY_COMPLETED: (ImportStatus.READY_TO_COMMIT,),
    ImportStatus.COMPLETED: (),
    ImportStatus.CANCELLED: (),
}


def generate_package_number() -> str:
    return f"PKG-{utc_now().year}-{random.randint(1000, 9999):04d}"


@dataclass
class ImportPackage:
    """
    Import package entity.

    Domain methods move ``status`` through ``ImportStatus`` and raise
    ``InvalidStateTransition`` on illegal moves.
    """

    package_id: str = ""
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    package_number: str = field(default_factory=generate_package_number)

    # File
    file_name: str = ""
    file_size_bytes: int = 0
    file_path: Optional[str] = None

    # Manifest
    created_utc: Optional[datetime] = None
    exported_date_utc: Optional[datetime] = None
    exported_by_user_id: Optional[str] = None
    device_id: Optional[str] = None
    app_version: Optional[str] = None

    status: ImportStatus = ImportStatus.PENDING

    # Security
    checksum: str = ""
    digital_signature: Optional[str] = None
    is_checksum_valid: bool = False
    is_signature_valid: bool = False

    # Schema
    schema_version: str = "1.0.0"
    form_schema_version: Optional[str] = None
    is_schema_valid: bool = False

    # Declared content counts
    survey_count: int = 0
    building_count: int = 0
    property_unit_count: int = 0
    person_count: int = 0
    household_count: int = 0
    relation_count: int = 0
    claim_count: int = 0
    document_count: int = 0
    total_attachment_size_bytes: int = 0

    # Vocabulary
    vocabulary_versions: Optional[str] = None  # JSON object domain -> version
    is_vocabulary_compatible: bool = True
    is_vocabulary_fully_compatible: bool = True
    vocabulary_compatibility_issues: Optional[str] = None

    # Validation
    validation_error_count: int = 0
    validation_warning_count: int = 0
    validation_errors: Optional[str] = None  # JSON
    validation_warnings: Optional[str] = None  # JSON
    validation_started_at: Optional[datetime] = None
    validation_completed_at: Optional[datetime] = None

    # Duplicates
    person_duplicate_count: int = 0
    property_duplicate_count: int = 0
    conflict_count: int = 0
    are_conflicts_resolved: bool = False

    # Outcome
    successful_import_count: int = 0
    failed_import_count: int = 0
    skipped_import_count: int = 0
    import_summary: Optional[str] = None
    failed_entity_ids: List[str] = field(default_factory=list)
    error_message: Optional[str] = None
    error_log: Optional[str] = None

    # Archive
    archive_path: Optional[str] = None
    is_archived: bool = False
    archived_date: Optional[datetime] = None

    processing_notes: Optional[str] = None
    import_method: Optional[str] = None

    # Dates / actors
    imported_date: Optional[datetime] = None
    imported_by_user_id: Optional[str] = None
    commit_started_at: Optional[datetime] = None
    committed_date: Optional[datetime] = None
    committed_by_user_id: Optional[str] = None
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    # ==================== Status ====================

    def _move(self, target: ImportStatus) -> None:
        from services.exceptions import InvalidStateTransition

        if not self.status.can_transition_to(target):
            raise InvalidStateTransition(f"ImportPackage {self.package_number}", self.status, target)
        self.status = target
        self.updated_at = utc_now()

    def mark_as_imported(self, imported_by_user_id: str, import_method: str = "upload") -> None:
        self._move(ImportStatus.VALIDATING)
        self.imported_by_user_id = imported_by_user_id
        self.import_method = import_method
        self.imported_date = utc_now()

    def set_security_validation(self, is_checksum_valid: bool, is_signature_valid: bool) -> None:
        self.is_checksum_valid = is_checksum_valid
        self.is_signature_valid = is_signature_valid
        if not is_checksum_valid or not is_signature_valid:
            self._move(ImportStatus.VALIDATION_FAILED)

    def set_schema_validation(self, is_valid: bool, form_schema_version: Optional[str] = None) -> None:
        self.is_schema_valid = is_valid
        if form_schema_version:
            self.form_schema_version = form_schema_version
        if not is_valid:
            self._move(ImportStatus.VALIDATION_FAILED)

    def set_vocabulary_compatibility(self, versions_json: str, is_compatible: bool,
                                     is_fully_compatible: bool, issues: Optional[str]) -> None:
        self.vocabulary_versions = versions_json
        self.is_vocabulary_compatible = is_compatible
        self.is_vocabulary_fully_compatible = is_fully_compatible
        self.vocabulary_compatibility_issues = issues
        if not is_compatible:
            self.quarantine(f"Vocabulary incompatible: {issues}")

    def start_validation(self) -> None:
        self._move(ImportStatus.VALIDATING)
        self.validation_started_at = utc_now()
        self.validation_completed_at = None

    def add_validation_results(self, error_count: int, warning_count: int,
                               errors_json: Optional[str] = None,
                               warnings_json: Optional[str] = None,
                               incomplete: bool = False) -> None:
        """Record validation counts; errors or a validator that did not finish fail the package."""
        self.validation_error_count = error_count
        self.validation_warning_count = warning_count
        self.validation_errors = errors_json
        self.validation_warnings = warnings_json
        self.validation_completed_at = utc_now()
        if error_count > 0 or incomplete:
            self._move(ImportStatus.VALIDATION_FAILED)
        else:
            self._move(ImportStatus.STAGING)

    def set_duplicate_results(self, person_duplicates: int, property_duplicates: int,
                              conflict_count: int) -> None:
        """Record duplicate detection results and route the package."""
        self.person_duplicate_count = person_duplicates
        self.property_duplicate_count = property_duplicates
        self.conflict_count = conflict_count
        self.are_conflicts_resolved = conflict_count == 0
        if conflict_count > 0:
            self._move(ImportStatus.REVIEWING_CONFLICTS)
        else:
            self._move(ImportStatus.READY_TO_COMMIT)

    def mark_conflicts_resolved(self) -> None:
        self.are_conflicts_resolved = True
        self._move(ImportStatus.READY_TO_COMMIT)

    def start_commit(self, committed_by_user_id: str) -> None:
        self._move(ImportStatus.COMMITTING)
        self.commit_started_at = utc_now()
        self.committed_by_user_id = committed_by_user_id

    def mark_as_completed(self, success_count: int, failed_count: int, skipped_count: int,
                          summary: Optional[str] = None) -> None:
        self._move(ImportStatus.COMPLETED)
        self._set_outcome(success_count, failed_count, skipped_count, summary)
        self.committed_date = utc_now()

    def mark_as_partially_completed(self, success_count: int, failed_count: int,
                                    skipped_count: int, summary: Optional[str] = None) -> None:
        self._move(ImportStatus.PARTIALLY_COMPLETED)
        self._set_outcome(success_count, failed_count, skipped_count, summary)
        self.committed_date = utc_now()

    def mark_as_failed(self, error_message: str, error_log: Optional[str] = None,
                       failed_entity_ids: Optional[List[str]] = None) -> None:
        self._move(ImportStatus.FAILED)
        self.error_message = error_message
        self.error_log = error_log
        self.failed_entity_ids = list(failed_entity_ids or [])

    def quarantine(self, reason: str) -> None:
        self._move(ImportStatus.QUARANTINED)
        self.error_message = reason

    def cancel(self, reason: str) -> None:
        self._move(ImportStatus.CANCELLED)
        self.add_processing_note(f"[Cancelled]: {reason}")

    def reset_commit(self, reason: str) -> None:
        """Re-open a stuck or failed commit for another attempt."""
        self._move(ImportStatus.READY_TO_COMMIT)
        self.commit_started_at = None
        self.add_processing_note(f"[Reset]: {reason}")

    def archive(self, archive_path: str) -> None:
        self.archive_path = str(archive_path)
        self.is_archived = True
        self.archived_date = utc_now()
        self.updated_at = utc_now()

    def add_processing_note(self, note: str) -> None:
        self.processing_notes = note if not self.processing_notes else f"{self.processing_notes}\n{note}"
        self.updated_at = utc_now()

    def _set_outcome(self, success_count: int, failed_count: int, skipped_count: int,
                     summary: Optional[str]) -> None:
        self.successful_import_count = success_count
        self.failed_import_count = failed_count
        self.skipped_import_count = skipped_count
        self.import_summary = summary

    def success_rate(self) -> float:
        """Percentage of processed records that were imported."""
        total = self.successful_import_count + self.failed_import_count + self.skipped_import_count
        if total == 0:
            return 0.0
        return self.successful_import_count / total * 100

    # ==================== Helpers ====================

    def vocabulary_version_map(self) -> Dict[str, str]:
        if not self.vocabulary_versions:
            return {}
        try:
            return json.loads(self.vocabulary_versions)
        except (TypeError, ValueError):
            return {}

    _DATETIME_FIELDS = (
        "created_utc", "exported_date_utc", "validation_started_at", "validation_completed_at",
        "archived_date", "imported_date", "commit_started_at", "committed_date",
        "created_at", "updated_at",
    )
    _BOOL_FIELDS = (
        "is_checksum_valid", "is_signature_valid", "is_schema_valid", "is_vocabulary_compatible",
        "is_vocabulary_fully_compatible", "are_conflicts_resolved", "is_archived",
    )

    def to_row(self) -> Dict[str, Any]:
        """Column -> DB value mapping."""
        row = dict(self.__dict__)
        row["status"] = self.status.value
        row["failed_entity_ids"] = json.dumps(self.failed_entity_ids) if self.failed_entity_ids else None
        for name in self._DATETIME_FIELDS:
            row[name] = to_isoformat(row[name])
        for name in self._BOOL_FIELDS:
            row[name] = 1 if row[name] else 0
        return row

    @classmethod
    def from_row(cls, row) -> 'ImportPackage':
        data = dict(row.items())
        data["status"] = ImportStatus(data["status"])
        raw_ids = data.get("failed_entity_ids")
        data["failed_entity_ids"] = json.loads(raw_ids) if raw_ids else []
        for name in cls._DATETIME_FIELDS:
            data[name] = from_isoformat(data.get(name))
        for name in cls._BOOL_FIELDS:
            data[name] = bool(data.get(name))
        data["created_at"] = data["created_at"] or utc_now()
        data["updated_at"] = data["updated_at"] or utc_now()
        return cls(**data)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for reporting."""
        data = self.to_row()
        data["failed_entity_ids"] = list(self.failed_entity_ids)
        data["success_rate"] = round(self.success_rate(), 2)
        for name in self._BOOL_FIELDS:
            data[name] = getattr(self, name)
        return data
