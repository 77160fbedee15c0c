# -*- coding: utf-8 -*-
"""
Commit Service
==============

Promotes the approved staged records of a package into production.

Features:
- Precondition check before any write (status, open conflicts, pending rows)
- One transaction for the whole package; any failure rolls everything back
- Families committed in dependency order with original ids translated to
  server ids; references to later families are wired once those exist
- Ids discarded by a merge resolve to the surviving entity
- Idempotent re-runs: already committed rows are counted as skipped
- Evidence attachments moved to the attachment store after the commit
- Container archived afterwards (best-effort)
"""

import shutil
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from app.config import PipelineSettings
from models.import_package import ImportPackage, ImportStatus
from models.staging import (
    BUILDING, COMMIT_ORDER, EVIDENCE, EntityFamily, FAMILIES, ForeignKey,
    StagingRecord, StagingStatus, get_family,
)
from repositories.conflict_repository import ConflictRepository
from repositories.db_adapter import DatabaseAdapter
from repositories.import_package_repository import ImportPackageRepository
from repositories.production_repository import ProductionRepository
from repositories.staging_repository import StagingRepository, staging_repositories
from services.audit_service import AuditService
from services.conflict_resolution import ENTITY_FAMILIES
from services.exceptions import (
    CommitFailure, CommitPreconditionFailed, PackageNotFound, PackageStoreError, UnresolvedConflict,
)
from services.package_store import PackageStore
from services.staging_service import StagingService
from utils.logger import get_logger

logger = get_logger(__name__)

# (family name, original id)
RecordKey = Tuple[str, str]


@dataclass
class CommitReport:
    """Outcome of one commit attempt."""
    package_id: str
    succeeded: bool = False
    status: Optional[str] = None
    promoted_count: int = 0
    skipped_count: int = 0
    excluded_count: int = 0
    failed_entity_ids: List[str] = field(default_factory=list)
    per_family: Dict[str, int] = field(default_factory=dict)
    archive_path: Optional[str] = None
    errors: List[str] = field(default_factory=list)
    duration_ms: float = 0.0
    failure: Optional[CommitFailure] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "package_id": self.package_id,
            "succeeded": self.succeeded,
            "status": self.status,
            "promoted_count": self.promoted_count,
            "skipped_count": self.skipped_count,
            "excluded_count": self.excluded_count,
            "failed_entity_ids": list(self.failed_entity_ids),
            "per_family": dict(self.per_family),
            "archive_path": self.archive_path,
            "errors": list(self.errors),
            "duration_ms": round(self.duration_ms, 1),
        }


@dataclass
class _DeferredReference:
    family: EntityFamily
    server_id: str
    foreign_key: ForeignKey
    value: str
    original_id: str


class CommitService:
    """Atomic promotion of staged records into production."""

    def __init__(self, db: DatabaseAdapter, settings: Optional[PipelineSettings] = None,
                 store: Optional[PackageStore] = None):
        self.db = db
        self.settings = settings or PipelineSettings.from_config()
        self.packages = ImportPackageRepository(db)
        self.conflicts = ConflictRepository(db)
        self.production = ProductionRepository(db)
        self.staging: Dict[str, StagingRepository] = staging_repositories(db)
        self.audit = AuditService(db)
        self.store = store or PackageStore(self.settings)

    # ==================== Preconditions ====================

    def check_preconditions(self, package: ImportPackage) -> None:
        """
        Raises:
            CommitPreconditionFailed: wrong status or records still Pending
            UnresolvedConflict: conflicts still PendingReview or Escalated
        """
        if package.status != ImportStatus.READY_TO_COMMIT:
            raise CommitPreconditionFailed(
                f"Package {package.package_number} is {package.status.value}, expected "
                f"{ImportStatus.READY_TO_COMMIT.value}",
                package_id=package.id,
            )
        unresolved = self.conflicts.count_unresolved(package.id)
        if unresolved:
            raise UnresolvedConflict(package.id, unresolved)
        pending = sum(self.staging[f.name].count_by_status(package.id)[StagingStatus.PENDING]
                      for f in COMMIT_ORDER)
        if pending:
            raise CommitPreconditionFailed(
                f"Package {package.package_number} still has {pending} unvalidated record(s)",
                package_id=package.id,
            )

    # ==================== Commit ====================

    def commit(self, package_id: str, actor_id: str, cleanup_staging: bool = False) -> CommitReport:
        """
        Promote a ReadyToCommit package.

        Args:
            package_id: ImportPackage id
            actor_id: User committing
            cleanup_staging: Delete the staged rows after a successful commit

        Returns:
            CommitReport (``succeeded`` is False when the transaction rolled back)

        Raises:
            PackageNotFound, CommitPreconditionFailed, UnresolvedConflict
        """
        started = time.perf_counter()
        package = self.packages.get_by_id(package_id)
        if package is None:
            raise PackageNotFound(package_id)

        self.check_preconditions(package)

        package.start_commit(actor_id)
        self.packages.update(package)
        self._audit_status(package, ImportStatus.READY_TO_COMMIT, actor_id)
        logger.info(f"Committing package {package.package_number} by {actor_id}")

        report = CommitReport(package_id=package.id, per_family={f.name: 0 for f in COMMIT_ORDER})
        attachments: List[Tuple[str, str]] = []
        current: Optional[str] = None

        try:
            with self.db.transaction():
                redirects = self._merge_redirects(package.id)
                id_map: Dict[RecordKey, str] = {}
                deferred: List[_DeferredReference] = []

                for family in COMMIT_ORDER:
                    repo = self.staging[family.name]
                    for record in repo.get_by_package(package.id, (StagingStatus.COMMITTED,)):
                        id_map[(family.name, record.original_entity_id)] = record.committed_entity_id
                        report.skipped_count += 1

                    for record in repo.get_committable(package.id):
                        current = f"{family.label}:{record.original_entity_id}"
                        server_id = self._promote(package, family, record, id_map, redirects,
                                                  deferred, actor_id)
                        record.mark_committed(server_id)
                        repo.update(record)
                        id_map[(family.name, record.original_entity_id)] = server_id
                        report.per_family[family.name] += 1
                        report.promoted_count += 1
                        if family is EVIDENCE and record.attachment_path:
                            attachments.append((record.attachment_path, server_id))

                for ref in deferred:
                    current = f"{ref.family.label}:{ref.original_id}"
                    target = self._translate(package.id, ref.family, ref.original_id, ref.foreign_key,
                                             ref.value, id_map, redirects)
                    if target is not None:
                        self.production.set_column(ref.family, ref.server_id,
                                                   ref.foreign_key.production_column, target)
                current = None

        except Exception as e:
            failed_ids = [current] if current else []
            failure = e if isinstance(e, CommitFailure) else CommitFailure(
                f"Commit of package {package.package_number} failed: {e}",
                package_id=package.id,
                failed_entity_ids=failed_ids,
                original_error=e,
            )
            if isinstance(e, CommitFailure) and not failure.failed_entity_ids:
                failure.failed_entity_ids = failed_ids
            logger.error(f"Commit of package {package.package_number} rolled back: {e}", exc_info=True)

            package.mark_as_failed(str(failure), error_log=repr(e), failed_entity_ids=failure.failed_entity_ids)
            self.packages.update(package)
            self._audit_status(package, ImportStatus.COMMITTING, actor_id, {"error": str(failure)})

            report.succeeded = False
            report.status = package.status.value
            report.failure = failure
            report.failed_entity_ids = list(failure.failed_entity_ids)
            report.errors.append(str(failure))
            report.promoted_count = 0
            report.per_family = {f.name: 0 for f in COMMIT_ORDER}
            report.duration_ms = (time.perf_counter() - started) * 1000
            return report

        report.errors.extend(self._store_attachments(attachments))
        report.excluded_count = self._excluded_count(package.id)

        summary = (f"{report.promoted_count} promoted, {report.skipped_count} already committed, "
                   f"{report.excluded_count} excluded")
        if report.excluded_count:
            package.mark_as_partially_completed(report.promoted_count, report.excluded_count,
                                                report.skipped_count, summary)
        else:
            package.mark_as_completed(report.promoted_count, 0, report.skipped_count, summary)
        self.packages.update(package)
        self.audit.record("import_package", package.id, "committed", actor_id, report.to_dict())
        self._audit_status(package, ImportStatus.COMMITTING, actor_id)

        report.archive_path = self._archive(package)
        if cleanup_staging:
            StagingService(self.db, self.settings).clear(package.id)

        report.succeeded = True
        report.status = package.status.value
        report.duration_ms = (time.perf_counter() - started) * 1000
        logger.info(f"Package {package.package_number} committed: {summary}")
        return report

    def _promote(self, package: ImportPackage, family: EntityFamily, record: StagingRecord,
                 id_map: Dict[RecordKey, str], redirects: Dict[RecordKey, str],
                 deferred: List[_DeferredReference], actor_id: str) -> str:
        """Insert one staged record into production and return its server id."""
        values = record.data()
        values.pop("attachment_path", None)
        if family is BUILDING and not values.get("building_code"):
            values["building_code"] = record.composite_code

        pending_refs = []
        for fk in family.foreign_keys:
            raw = values.pop(fk.field, None)
            if fk.deferred:
                values[fk.production_column] = None
                if raw:
                    pending_refs.append((fk, raw))
                continue
            values[fk.production_column] = self._translate(
                package.id, family, record.original_entity_id, fk, raw, id_map, redirects
            )

        server_id = self.production.create(
            family, values,
            source_package_id=package.id,
            source_original_id=record.original_entity_id,
            created_by=actor_id,
        )
        for fk, raw in pending_refs:
            deferred.append(_DeferredReference(family, server_id, fk, raw, record.original_entity_id))
        return server_id

    def _translate(self, package_id: str, family: EntityFamily, original_id: str, fk: ForeignKey,
                   value: Optional[str], id_map: Dict[RecordKey, str],
                   redirects: Dict[RecordKey, str]) -> Optional[str]:
        """
        Production value of a reference held by a staged record.

        Raises:
            CommitFailure: the reference cannot be resolved
        """
        if value is None or str(value).strip() == "":
            return None
        value = self._follow_redirects(fk.family, str(value).strip(), redirects)

        key = (fk.family, value)
        if key in id_map:
            return id_map[key]

        parent = get_family(fk.family)
        staged = self.staging[parent.name].get_by_original_id(package_id, value)
        if staged is not None and fk.warning_only:
            logger.warning(f"{family.label} {original_id}: dropping {fk.field} {value} "
                           f"({parent.label} not committed: {staged.validation_status.value})")
            return None
        if staged is not None:
            raise CommitFailure(
                f"{family.label} {original_id} references {parent.label} {value} "
                f"which was not committed ({staged.validation_status.value})",
                package_id=package_id,
                failed_entity_ids=[f"{family.label}:{original_id}"],
            )
        if self.production.exists(parent, value):
            return value
        if fk.warning_only:
            logger.warning(f"{family.label} {original_id}: dropping unresolved {fk.field} {value}")
            return None
        raise CommitFailure(
            f"{family.label} {original_id} references {parent.label} {value} "
            f"which does not exist in batch or production",
            package_id=package_id,
            failed_entity_ids=[f"{family.label}:{original_id}"],
        )

    @staticmethod
    def _follow_redirects(family_name: str, value: str, redirects: Dict[RecordKey, str]) -> str:
        seen = set()
        while (family_name, value) in redirects and value not in seen:
            seen.add(value)
            value = redirects[(family_name, value)]
        return value

    def _merge_redirects(self, package_id: str) -> Dict[RecordKey, str]:
        """(family, discarded original id) -> reference value of the survivor."""
        redirects: Dict[RecordKey, str] = {}
        for conflict in self.conflicts.get_merges(package_id):
            family = ENTITY_FAMILIES.get(conflict.entity_type)
            if family is None:
                continue
            repo = self.staging[family.name]
            discarded = repo.get_by_id(conflict.discarded_entity_id)
            if discarded is None:
                continue
            survivor_id = conflict.merged_entity_id
            if conflict.is_second_committed and survivor_id == conflict.second_entity_id:
                redirects[(family.name, discarded.original_entity_id)] = survivor_id
                continue
            survivor = repo.get_by_id(survivor_id)
            if survivor is not None:
                redirects[(family.name, discarded.original_entity_id)] = survivor.original_entity_id
        return redirects

    # ==================== After commit ====================

    def _store_attachments(self, attachments: List[Tuple[str, str]]) -> List[str]:
        """Move staged attachment files to ATTACHMENTS_DIR/{server_id}."""
        errors = []
        if not attachments:
            return errors
        self.settings.attachments_dir.mkdir(parents=True, exist_ok=True)
        for source, server_id in attachments:
            target = self.settings.attachments_dir / server_id
            try:
                shutil.move(source, str(target))
            except OSError as e:
                logger.warning(f"Could not store attachment of evidence {server_id}: {e}")
                errors.append(f"Attachment of evidence {server_id}: {e}")
                continue
            self.production.set_column(EVIDENCE, server_id, "attachment_path", str(target))
        return errors

    def _archive(self, package: ImportPackage) -> Optional[str]:
        try:
            path = self.store.archive(package.package_id)
        except (PackageStoreError, OSError) as e:
            logger.warning(f"Package {package.package_number} committed but not archived: {e}")
            package.add_processing_note(f"[Archive]: {e}")
            self.packages.update(package)
            return None
        package.archive(str(path))
        self.packages.update(package)
        return str(path)

    def _excluded_count(self, package_id: str) -> int:
        """Records left behind: Invalid, Valid but not approved, or skipped at approval."""
        total = 0
        for family in FAMILIES.values():
            counts = self.staging[family.name].count_by_status(package_id)
            total += (counts[StagingStatus.INVALID] + counts[StagingStatus.VALID]
                      + counts[StagingStatus.SKIPPED])
        return total

    def _audit_status(self, package: ImportPackage, previous: ImportStatus, actor_id: str,
                      details: Optional[Dict[str, Any]] = None) -> None:
        payload = {"from_status": previous.value, "to_status": package.status.value}
        payload.update(details or {})
        self.audit.record("import_package", package.id, "status_changed", actor_id, payload)
