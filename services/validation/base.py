# -*- coding: utf-8 -*-
"""
Staging validator base class.

Validators inspect the staged records of one package and append errors or
warnings to them. The write-back rules live here so every level applies
them the same way:

- an error is appended and the record becomes Invalid;
- warnings are appended; a Pending record becomes Valid, an Invalid one
  stays Invalid;
- a record without findings is left untouched (the pipeline finalizes
  Pending records once every level has run).
"""

import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple

from app.config import PipelineSettings
from models.staging import (
    COMMIT_ORDER, EntityFamily, StagingRecord, VALIDATABLE_STATUSES,
)
from repositories.db_adapter import DatabaseAdapter
from repositories.staging_repository import StagingRepository, staging_repositories
from services.vocabulary_service import VocabularyService
from utils.logger import get_logger

logger = get_logger(__name__)

Findings = Tuple[List[str], List[str]]


@dataclass
class ValidatorResult:
    """Counts produced by one validator run."""
    validator_name: str
    level: int
    error_count: int = 0
    warning_count: int = 0
    records_checked: int = 0
    duration_ms: float = 0.0
    error_message: Optional[str] = None

    @property
    def crashed(self) -> bool:
        return self.error_count < 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "validator_name": self.validator_name,
            "level": self.level,
            "error_count": self.error_count,
            "warning_count": self.warning_count,
            "records_checked": self.records_checked,
            "duration_ms": round(self.duration_ms, 1),
            "error_message": self.error_message,
        }


class BaseValidator(ABC):
    """
    Abstract base class for staging validators.

    Subclasses set ``name``, ``level`` and ``families`` and implement
    ``check``. Validators that need the whole batch (duplicates, sums,
    references) load what they need in ``prepare``.
    """

    name: str = "BaseValidator"
    level: int = 0
    families: Sequence[EntityFamily] = tuple(COMMIT_ORDER)

    def __init__(self, db: DatabaseAdapter, vocabulary_service: Optional[VocabularyService] = None,
                 settings: Optional[PipelineSettings] = None):
        self.db = db
        self.vocabulary_service = vocabulary_service
        self.settings = settings or PipelineSettings.from_config()
        self.repositories: Dict[str, StagingRepository] = staging_repositories(db)

    def prepare(self, package_id: str) -> None:
        """Load batch-wide context before records are checked."""

    def finish(self, package_id: str, result: ValidatorResult) -> None:
        """Hook run after all records were checked (inside the transaction)."""

    @abstractmethod
    def check(self, family: EntityFamily, record: StagingRecord) -> Findings:
        """
        Check one staged record.

        Args:
            family: Family of the record
            record: Staged record (Pending, Valid or Invalid)

        Returns:
            (errors, warnings) lists of messages
        """

    def validate(self, package_id: str) -> ValidatorResult:
        """
        Run this validator over every validatable record of a package.

        Returns:
            ValidatorResult with the counts of new findings
        """
        started = time.perf_counter()
        result = ValidatorResult(validator_name=self.name, level=self.level)

        with self.db.transaction():
            self.prepare(package_id)
            for family in self.families:
                repo = self.repositories[family.name]
                for record in repo.get_for_validation(package_id):
                    result.records_checked += 1
                    errors, warnings = self.check(family, record)
                    self.apply_findings(repo, record, errors, warnings, result)
            self.finish(package_id, result)

        result.duration_ms = (time.perf_counter() - started) * 1000
        logger.info(
            f"{self.name} (L{self.level}): {result.records_checked} checked, "
            f"{result.error_count} error(s), {result.warning_count} warning(s)"
        )
        return result

    @staticmethod
    def apply_findings(repo: StagingRepository, record: StagingRecord,
                       errors: List[str], warnings: List[str],
                       result: Optional[ValidatorResult] = None) -> bool:
        """
        Append findings to a record and persist it.

        Returns:
            True if the record was written
        """
        errors = [e for e in errors if e]
        warnings = [w for w in warnings if w]
        if not errors and not warnings:
            return False
        if record.validation_status not in VALIDATABLE_STATUSES:
            return False

        record.add_findings(errors=errors, warnings=warnings)
        repo.update(record)
        if result is not None:
            result.error_count += len(errors)
            result.warning_count += len(warnings)
        return True

    # ==================== Helpers ====================

    def is_valid_code(self, domain: str, code) -> bool:
        if self.vocabulary_service is None:
            return True
        return self.vocabulary_service.is_valid_code(domain, code)
