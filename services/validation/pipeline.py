# -*- coding: utf-8 -*-
"""
Validation pipeline.

Runs the staging validators of one package in level order, finalizes the
records nobody objected to and summarizes the outcome.
"""

import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Type

from app.config import PipelineSettings
from models.staging import COMMIT_ORDER, StagingStatus
from repositories.db_adapter import DatabaseAdapter
from repositories.staging_repository import staging_repositories
from services.validation.base import BaseValidator, ValidatorResult
from services.validation.building_code import BuildingCodeValidator
from services.validation.claim_lifecycle import ClaimLifecycleValidator
from services.validation.data_consistency import DataConsistencyValidator
from services.validation.duplicate_detection import DuplicateDetectionValidator
from services.validation.household_structure import HouseholdStructureValidator
from services.validation.ownership_evidence import OwnershipEvidenceValidator
from services.validation.referential_integrity import ReferentialIntegrityValidator
from services.validation.spatial_geometry import SpatialGeometryValidator
from services.vocabulary_service import VocabularyService
from utils.logger import get_logger

logger = get_logger(__name__)

DEFAULT_VALIDATORS: List[Type[BaseValidator]] = [
    DataConsistencyValidator,
    ReferentialIntegrityValidator,
    OwnershipEvidenceValidator,
    DuplicateDetectionValidator,
    SpatialGeometryValidator,
    HouseholdStructureValidator,
    BuildingCodeValidator,
    ClaimLifecycleValidator,
]


@dataclass
class ValidationSummary:
    """Outcome of one pipeline run over a package."""
    package_id: str
    total: int = 0
    valid: int = 0
    invalid: int = 0
    warning: int = 0
    pending: int = 0
    skipped: int = 0
    results: List[ValidatorResult] = field(default_factory=list)
    duration_ms: float = 0.0
    errors: List[Dict[str, Any]] = field(default_factory=list)
    warnings: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def error_count(self) -> int:
        return len(self.errors)

    @property
    def warning_count(self) -> int:
        return len(self.warnings)

    @property
    def crashed_validators(self) -> List[str]:
        return [r.validator_name for r in self.results if r.crashed]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "package_id": self.package_id,
            "total": self.total,
            "valid": self.valid,
            "invalid": self.invalid,
            "warning": self.warning,
            "pending": self.pending,
            "skipped": self.skipped,
            "error_count": self.error_count,
            "warning_count": self.warning_count,
            "results": [r.to_dict() for r in self.results],
            "duration_ms": round(self.duration_ms, 1),
        }


class ValidationPipeline:
    """
    Ordered validator chain.

    A validator that raises is logged and recorded with ``error_count=-1``;
    the remaining levels still run.
    """

    def __init__(self, db: DatabaseAdapter, vocabulary_service: Optional[VocabularyService] = None,
                 settings: Optional[PipelineSettings] = None,
                 validators: Optional[Sequence[BaseValidator]] = None):
        self.db = db
        self.vocabulary_service = vocabulary_service
        self.settings = settings or PipelineSettings.from_config()
        if validators is None:
            validators = [cls(db, vocabulary_service, self.settings) for cls in DEFAULT_VALIDATORS]
        self.validators: List[BaseValidator] = sorted(validators, key=lambda v: v.level)
        self.repositories = staging_repositories(db)

    def run(self, package_id: str) -> ValidationSummary:
        started = time.perf_counter()
        summary = ValidationSummary(package_id=package_id)

        for validator in self.validators:
            try:
                result = validator.validate(package_id)
            except Exception as e:
                logger.error(f"{validator.name} (L{validator.level}) failed on package {package_id}: {e}",
                             exc_info=True)
                result = ValidatorResult(
                    validator_name=validator.name,
                    level=validator.level,
                    error_count=-1,
                    error_message=str(e),
                )
            summary.results.append(result)

        finalized = self._finalize_pending(package_id)
        self._summarize(package_id, summary)
        summary.duration_ms = (time.perf_counter() - started) * 1000

        logger.info(
            f"Validation of package {package_id}: {summary.total} record(s), "
            f"{summary.valid} valid ({summary.warning} with warnings), {summary.invalid} invalid, "
            f"{finalized} finalized, {summary.duration_ms:.0f} ms"
        )
        return summary

    def _finalize_pending(self, package_id: str) -> int:
        """Pending records no validator objected to become Valid."""
        count = 0
        with self.db.transaction():
            for family in COMMIT_ORDER:
                repo = self.repositories[family.name]
                for record in repo.get_by_package(package_id, (StagingStatus.PENDING,)):
                    record.mark_valid()
                    repo.update(record)
                    count += 1
        return count

    def _summarize(self, package_id: str, summary: ValidationSummary) -> None:
        for family in COMMIT_ORDER:
            repo = self.repositories[family.name]
            counts = repo.count_by_status(package_id)
            summary.total += sum(counts.values())
            summary.valid += counts[StagingStatus.VALID]
            summary.invalid += counts[StagingStatus.INVALID]
            summary.pending += counts[StagingStatus.PENDING]
            summary.skipped += counts[StagingStatus.SKIPPED] + counts[StagingStatus.REJECTED]
            summary.warning += repo.count_with_warnings(package_id)

            for record in repo.get_for_validation(package_id):
                for message in record.validation_errors:
                    summary.errors.append({
                        "entity": family.label,
                        "original_id": record.original_entity_id,
                        "message": message,
                    })
                for message in record.validation_warnings:
                    summary.warnings.append({
                        "entity": family.label,
                        "original_id": record.original_entity_id,
                        "message": message,
                    })
