# -*- coding: utf-8 -*-
"""
Import Pipeline
===============

Orchestrates a field package from upload to commit:

    upload -> stage_and_validate -> (conflict review) -> approve -> commit

Features:
- Idempotent upload keyed by the manifest package id
- Integrity (checksum, signature), schema and vocabulary checks before
  anything is staged; failures quarantine the package with a reason
- Validation pipeline over the staged records, conflict queue routing
- Approval with optional exclusion of invalid records
- Cancellation, revalidation and retention cleanup
- A full report (status, itemized findings, conflicts, audit trail) for
  any package at any time
"""

import json
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from app.config import PipelineSettings
from models.import_package import ImportPackage, ImportStatus
from models.manifest import ManifestData
from models.staging import COMMIT_ORDER, StagingStatus, get_family
from repositories.conflict_repository import ConflictRepository
from repositories.db_adapter import DatabaseAdapter
from repositories.import_package_repository import ImportPackageRepository
from repositories.staging_repository import staging_repositories
from services.audit_service import AuditService
from services.commit_service import CommitReport, CommitService
from services.conflict_resolution import ConflictResolutionService
from services.exceptions import (
    CommitPreconditionFailed, ContainerCorrupt, IntegrityFailure, InvalidStateTransition,
    ManifestInvalid, PackageNotFound, PackageStoreError, VocabularyIncompatible,
)
from services.integrity_service import IntegrityVerifier
from services.manifest_reader import ManifestReader
from services.package_store import PackageStore
from services.staging_service import StagingResult, StagingService
from services.validation import ValidationPipeline, ValidationSummary
from services.vocabulary_compatibility import (
    VocabularyCompatibilityChecker, VocabularyCompatibilityResult, parse_semver,
)
from services.vocabulary_service import VocabularyService
from utils.datetime_utils import utc_now
from utils.logger import get_logger

logger = get_logger(__name__)

_REVALIDATABLE = (
    ImportStatus.VALIDATION_FAILED,
    ImportStatus.STAGING,
    ImportStatus.REVIEWING_CONFLICTS,
    ImportStatus.READY_TO_COMMIT,
)
_APPROVABLE = (
    ImportStatus.VALIDATION_FAILED,
    ImportStatus.REVIEWING_CONFLICTS,
    ImportStatus.READY_TO_COMMIT,
)


@dataclass
class UploadResult:
    """Outcome of ImportPipeline.upload."""
    package: ImportPackage
    is_duplicate: bool = False
    file_checksum: str = ""
    content_checksum: Optional[str] = None
    compatibility: Optional[VocabularyCompatibilityResult] = None
    warnings: List[str] = field(default_factory=list)

    @property
    def is_quarantined(self) -> bool:
        return self.package.status == ImportStatus.QUARANTINED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "package_id": self.package.id,
            "package_number": self.package.package_number,
            "manifest_package_id": self.package.package_id,
            "status": self.package.status.value,
            "is_duplicate": self.is_duplicate,
            "file_checksum": self.file_checksum,
            "content_checksum": self.content_checksum,
            "warnings": list(self.warnings),
        }


@dataclass
class CleanupResult:
    packages: int = 0
    records_removed: int = 0
    files_removed: int = 0


class ImportPipeline:
    """Entry point for package processing."""

    def __init__(self, db: DatabaseAdapter, vocabulary_service: VocabularyService,
                 settings: Optional[PipelineSettings] = None,
                 store: Optional[PackageStore] = None):
        self.db = db
        self.settings = settings or PipelineSettings.from_config()
        self.vocabulary_service = vocabulary_service
        self.store = store or PackageStore(self.settings)
        self.verifier = IntegrityVerifier(self.settings)
        self.manifest_reader = ManifestReader()
        self.compatibility = VocabularyCompatibilityChecker(vocabulary_service)
        self.packages = ImportPackageRepository(db)
        self.conflicts = ConflictRepository(db)
        self.staging = StagingService(db, self.settings)
        self.staging_repositories = staging_repositories(db)
        self.conflict_service = ConflictResolutionService(db)
        self.commit_service = CommitService(db, self.settings, self.store)
        self.audit = AuditService(db)

    def get_package(self, package_id: str) -> ImportPackage:
        package = self.packages.get_by_id(package_id)
        if package is None:
            raise PackageNotFound(package_id)
        return package

    # ==================== Upload ====================

    def upload(self, file_path: Union[str, Path], uploaded_by: str,
               remove_source: bool = False) -> UploadResult:
        """
        Receive a container.

        Args:
            file_path: Uploaded .uhc file
            uploaded_by: User uploading
            remove_source: Delete ``file_path`` once it is stored (temp uploads)

        Returns:
            UploadResult; ``is_duplicate`` when the manifest package id is known

        Raises:
            ContainerCorrupt, ManifestInvalid: unreadable container (quarantined by hash)
            VocabularyIncompatible: major vocabulary mismatch while blocking is on
        """
        file_path = Path(file_path)
        file_checksum = self.verifier.compute_file_checksum(file_path)

        try:
            manifest = self.manifest_reader.read(file_path)
        except (ContainerCorrupt, ManifestInvalid) as e:
            self.store.quarantine_by_hash(file_path, file_checksum, str(e))
            logger.error(f"Rejected {file_path.name}: {e}")
            raise

        existing = self.packages.get_by_package_id(manifest.package_id)
        if existing is not None:
            logger.info(f"Package {manifest.package_id} already uploaded as {existing.package_number}")
            if remove_source:
                self._remove_quietly(file_path)
            return UploadResult(package=existing, is_duplicate=True, file_checksum=file_checksum)

        stored = self.store.save(file_path, manifest.package_id, file_checksum)
        try:
            result = self._receive(manifest, file_path.name, stored, file_checksum, uploaded_by)
        except Exception as e:
            logger.error(f"Upload of {file_path.name} failed: {e}", exc_info=True)
            self.store.delete_package(manifest.package_id)
            raise

        if remove_source:
            self._remove_quietly(file_path)

        if (result.compatibility is not None and not result.compatibility.is_compatible
                and self.settings.block_on_major_vocab_mismatch):
            raise VocabularyIncompatible(
                f"Package {manifest.package_id} uses incompatible vocabularies",
                issues=result.compatibility.issues,
            )
        return result

    def _receive(self, manifest: ManifestData, file_name: str, stored: Path,
                 file_checksum: str, uploaded_by: str) -> UploadResult:
        content_checksum = self.verifier.compute_content_checksum(stored)
        checksum_ok = self.verifier.verify_checksum(manifest.checksum, content_checksum)
        signature_ok = self.verifier.verify_signature(manifest.digital_signature, content_checksum)
        compatibility = self.compatibility.check(manifest.vocab_versions)

        package = ImportPackage(
            file_name=file_name,
            file_size_bytes=stored.stat().st_size,
            file_path=str(stored),
        )
        manifest.apply_to(package)
        package.mark_as_imported(uploaded_by)
        package.set_security_validation(checksum_ok, signature_ok)
        package.set_schema_validation(self._is_supported_schema(manifest.schema_version),
                                      manifest.form_schema_version)
        package.set_vocabulary_compatibility(
            compatibility.versions_json,
            compatibility.is_compatible,
            compatibility.is_fully_compatible,
            compatibility.issues_json,
        )

        reason = None
        if not checksum_ok:
            reason = f"Checksum mismatch: declared {manifest.checksum}, computed {content_checksum}"
        elif not signature_ok:
            reason = "Digital signature missing or invalid"
        elif not compatibility.is_compatible:
            reason = f"Vocabulary incompatible: {compatibility.summary}"
        if reason:
            package.quarantine(reason)
            self.store.write_reason(manifest.package_id, reason)

        result = UploadResult(package=package, file_checksum=file_checksum,
                              content_checksum=content_checksum, compatibility=compatibility)
        if not package.is_schema_valid:
            result.warnings.append(f"Unsupported schema version {manifest.schema_version}")
        if compatibility.is_compatible and not compatibility.is_fully_compatible:
            note = f"[Vocabulary]: {compatibility.summary}"
            package.add_processing_note(note)
            result.warnings.append(note)

        with self.db.transaction():
            self.packages.create(package)
            self.audit.record("import_package", package.id, "uploaded", uploaded_by, {
                "manifest_package_id": package.package_id,
                "status": package.status.value,
                "file_checksum": file_checksum,
            })

        if reason:
            logger.warning(f"Package {package.package_number} quarantined: {reason}")
        else:
            logger.info(f"Package {package.package_number} uploaded ({package.status.value})")
        return result

    def _is_supported_schema(self, schema_version: str) -> bool:
        major = parse_semver(schema_version)[0]
        return any(parse_semver(v)[0] == major for v in self.settings.supported_schema_versions)

    def _remove_quietly(self, path: Path) -> None:
        try:
            self.store.delete(path)
        except PackageStoreError as e:
            logger.warning(f"Could not remove uploaded file {path}: {e}")

    # ==================== Staging & validation ====================

    def stage_and_validate(self, package_id: str, actor_id: Optional[str] = None) -> ValidationSummary:
        """
        Stage the container (first run only) and run the validation pipeline.

        Raises:
            IntegrityFailure: the package failed its checksum or signature check
            InvalidStateTransition: the package is not in a stageable state
        """
        package = self.get_package(package_id)
        if not package.is_checksum_valid or not package.is_signature_valid:
            kind = "checksum" if not package.is_checksum_valid else "signature"
            raise IntegrityFailure(
                f"Package {package.package_number} failed its {kind} check",
                package_id=package.id, kind=kind, expected=package.checksum,
            )
        if not package.is_schema_valid:
            raise InvalidStateTransition(f"ImportPackage {package.package_number}",
                                         package.status, ImportStatus.VALIDATING,
                                         context=f"unsupported schema {package.schema_version}")

        previous = package.status
        package.start_validation()
        self.packages.update(package)

        if not any(self.staging.count_records(package.id).values()):
            staged = self.staging.stage(package, package.file_path)
            self._note_staging(package, staged)

        return self._validate(package.id, previous, actor_id)

    def revalidate(self, package_id: str, actor_id: Optional[str] = None) -> ValidationSummary:
        """Clear findings of all reviewable records and run the validators again."""
        package = self.get_package(package_id)
        if package.status not in _REVALIDATABLE:
            raise InvalidStateTransition(f"ImportPackage {package.package_number}",
                                         package.status, ImportStatus.VALIDATING)
        previous = package.status
        package.start_validation()
        self.packages.update(package)

        with self.db.transaction():
            for family in COMMIT_ORDER:
                repo = self.staging_repositories[family.name]
                for record in repo.get_by_package(package.id, (StagingStatus.VALID, StagingStatus.INVALID,
                                                               StagingStatus.APPROVED)):
                    if record.validation_status == StagingStatus.APPROVED:
                        record.revoke_approval()
                    record.reset_validation()
                    repo.update(record)

        return self._validate(package.id, previous, actor_id)

    def _validate(self, package_id: str, previous: ImportStatus, actor_id: Optional[str]) -> ValidationSummary:
        pipeline = ValidationPipeline(self.db, self.vocabulary_service, self.settings)
        summary = pipeline.run(package_id)

        # Duplicate detection updated the counts on the stored row
        package = self.get_package(package_id)
        package.add_validation_results(
            summary.error_count,
            summary.warning_count,
            json.dumps(summary.errors, ensure_ascii=False) if summary.errors else None,
            json.dumps(summary.warnings, ensure_ascii=False) if summary.warnings else None,
            incomplete=bool(summary.crashed_validators),
        )
        if package.status == ImportStatus.STAGING:
            package.set_duplicate_results(
                package.person_duplicate_count,
                package.property_duplicate_count,
                self.conflicts.count_unresolved(package.id),
            )
        for name in summary.crashed_validators:
            package.add_processing_note(f"[Validation]: {name} did not complete")
        self.packages.update(package)
        self._audit_status(package, previous, actor_id, {"validation": summary.to_dict()})

        logger.info(
            f"Package {package.package_number} validated: {summary.error_count} error(s), "
            f"{summary.warning_count} warning(s) -> {package.status.value}"
        )
        return summary

    def _note_staging(self, package: ImportPackage, staged: StagingResult) -> None:
        for message in staged.count_mismatches:
            package.add_processing_note(f"[Staging]: {message}")
        if staged.duplicate_rows:
            package.add_processing_note(f"[Staging]: {staged.duplicate_rows} duplicate row id(s) ignored")
        if staged.skipped_rows:
            package.add_processing_note(f"[Staging]: {staged.skipped_rows} row(s) without id skipped")
        self.packages.update(package)

    # ==================== Review ====================

    def approve(self, package_id: str, actor_id: str, exclude_invalid: bool = False) -> Dict[str, int]:
        """
        Approve every Valid record of a package for commit.

        With ``exclude_invalid`` the Invalid records are skipped, which lets
        a package that failed validation go on without them. Records that
        need a Skipped or Rejected parent are skipped along with it.

        Raises:
            CommitPreconditionFailed: wrong status, or invalid records remain
        """
        package = self.get_package(package_id)
        if package.status not in _APPROVABLE or not package.is_checksum_valid or not package.is_signature_valid:
            raise CommitPreconditionFailed(
                f"Package {package.package_number} cannot be approved in status {package.status.value}",
                package_id=package.id,
            )

        invalid = sum(self.staging_repositories[f.name].count_by_status(package.id)[StagingStatus.INVALID]
                      for f in COMMIT_ORDER)
        if invalid and not exclude_invalid:
            raise CommitPreconditionFailed(
                f"Package {package.package_number} has {invalid} invalid record(s); "
                f"fix them or approve with exclude_invalid",
                package_id=package.id,
            )

        counts = {"approved": 0, "skipped": 0}
        previous = package.status
        with self.db.transaction():
            if exclude_invalid:
                for family in COMMIT_ORDER:
                    repo = self.staging_repositories[family.name]
                    for record in repo.get_by_package(package.id, (StagingStatus.INVALID,)):
                        record.skip("excluded at approval")
                        repo.update(record)
                        counts["skipped"] += 1
            counts["skipped"] += self._skip_orphans(package.id)

            for family in COMMIT_ORDER:
                repo = self.staging_repositories[family.name]
                for record in repo.get_by_package(package.id, (StagingStatus.VALID,)):
                    record.approve()
                    repo.update(record)
                    counts["approved"] += 1

            if package.status == ImportStatus.VALIDATION_FAILED:
                package.set_duplicate_results(
                    package.person_duplicate_count,
                    package.property_duplicate_count,
                    self.conflicts.count_unresolved(package.id),
                )
            package.add_processing_note(
                f"[Approved]: {counts['approved']} record(s) by {actor_id}"
                + (f", {counts['skipped']} excluded" if counts["skipped"] else "")
            )
            self.packages.update(package)
            self._audit_status(package, previous, actor_id, {"approval": counts})

        logger.info(f"Package {package.package_number}: {counts['approved']} approved, "
                    f"{counts['skipped']} excluded")
        return counts

    def _skip_orphans(self, package_id: str) -> int:
        """
        Skip Valid/Approved records whose required parent will not be committed.

        Repeats until stable, so a skipped relation also drops the evidence
        attached to it. Warning-only references are left to the commit.
        """
        dropped = set()
        for family in COMMIT_ORDER:
            repo = self.staging_repositories[family.name]
            for record in repo.get_by_package(package_id, (StagingStatus.SKIPPED, StagingStatus.REJECTED)):
                dropped.add((family.name, record.original_entity_id))

        skipped = 0
        changed = bool(dropped)
        while changed:
            changed = False
            for family in COMMIT_ORDER:
                repo = self.staging_repositories[family.name]
                candidates = repo.get_by_package(package_id, (StagingStatus.VALID, StagingStatus.APPROVED))
                for record in candidates:
                    parent = self._dropped_parent(family, record, dropped)
                    if parent is None:
                        continue
                    if record.validation_status == StagingStatus.APPROVED:
                        record.revoke_approval()
                    record.skip(f"parent {parent} excluded")
                    repo.update(record)
                    dropped.add((family.name, record.original_entity_id))
                    skipped += 1
                    changed = True
                    logger.info(f"Skipping {family.label} {record.original_entity_id}: parent {parent} excluded")
        return skipped

    @staticmethod
    def _dropped_parent(family, record, dropped) -> Optional[str]:
        for fk in family.foreign_keys:
            if fk.warning_only:
                continue
            value = getattr(record, fk.field, None)
            if value is None or str(value).strip() == "":
                continue
            value = str(value).strip()
            if (fk.family, value) in dropped:
                return f"{get_family(fk.family).label} {value}"
        return None

    def resolve_conflict(self, conflict_id: str, action: str, actor_id: str,
                         merge_target: Optional[str] = None, reason: str = ""):
        return self.conflict_service.resolve(conflict_id, action, actor_id, merge_target, reason)

    # ==================== Commit ====================

    def commit(self, package_id: str, actor_id: str, cleanup_staging: bool = False) -> CommitReport:
        return self.commit_service.commit(package_id, actor_id, cleanup_staging)

    def reset_commit(self, package_id: str, actor_id: str, reason: str) -> ImportPackage:
        """Re-open a Failed (or stuck Committing) package for another commit."""
        package = self.get_package(package_id)
        previous = package.status
        package.reset_commit(reason)
        self.packages.update(package)
        self._audit_status(package, previous, actor_id, {"reason": reason})
        return package

    # ==================== Cancel / cleanup ====================

    def cancel(self, package_id: str, actor_id: str, reason: str) -> ImportPackage:
        package = self.get_package(package_id)
        previous = package.status
        package.cancel(reason)
        self.packages.update(package)
        self._audit_status(package, previous, actor_id, {"reason": reason})
        self.staging.clear(package.id)
        try:
            self.store.delete_package(package.package_id)
        except PackageStoreError as e:
            logger.warning(f"Cancelled package {package.package_number} but kept its file: {e}")
        logger.info(f"Package {package.package_number} cancelled: {reason}")
        return package

    def cleanup(self, days: Optional[int] = None) -> CleanupResult:
        """Drop staged rows of packages finished more than ``days`` ago."""
        days = self.settings.staging_retention_days if days is None else days
        cutoff = utc_now() - timedelta(days=days)
        result = CleanupResult()
        for package in self.packages.get_finished_before(cutoff):
            removed = self.staging.clear(package.id)
            files = 0
            if package.status == ImportStatus.CANCELLED:
                try:
                    files = self.store.delete_package(package.package_id)
                except PackageStoreError as e:
                    logger.warning(f"Cleanup kept files of {package.package_number}: {e}")
            if removed or files:
                result.packages += 1
                result.records_removed += removed
                result.files_removed += files
        logger.info(f"Cleanup (older than {days} day(s)): {result.packages} package(s), "
                    f"{result.records_removed} staged record(s)")
        return result

    # ==================== Reporting ====================

    def get_package_report(self, package_id: str) -> Dict[str, Any]:
        """Status, staged record counts, itemized findings, conflicts and audit trail."""
        package = self.get_package(package_id)
        records: Dict[str, Dict[str, int]] = {}
        findings: List[Dict[str, Any]] = []
        for family in COMMIT_ORDER:
            repo = self.staging_repositories[family.name]
            counts = repo.count_by_status(package.id)
            records[family.name] = {status.value: n for status, n in counts.items() if n}
            for record in repo.get_by_package(package.id):
                if record.validation_errors or record.validation_warnings:
                    findings.append({
                        "entity": family.label,
                        "id": record.id,
                        "original_id": record.original_entity_id,
                        "status": record.validation_status.value,
                        "errors": list(record.validation_errors),
                        "warnings": list(record.validation_warnings),
                    })

        return {
            "package": package.to_dict(),
            "records": records,
            "findings": findings,
            "conflicts": [c.to_dict() for c in self.conflicts.get_by_package(package.id)],
            "conflict_stats": self.conflict_service.get_queue_stats(package.id),
            "audit": self.audit.history("import_package", package.id),
        }

    def _audit_status(self, package: ImportPackage, previous: ImportStatus, actor_id: Optional[str],
                      details: Optional[Dict[str, Any]] = None) -> None:
        payload = {"from_status": previous.value, "to_status": package.status.value}
        payload.update(details or {})
        self.audit.record("import_package", package.id, "status_changed", actor_id, payload)
