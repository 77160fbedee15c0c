# -*- coding: utf-8 -*-
"""
Staging service.

Copies the data tables of a container into the staging tables, one staged
record per container row. Values are coerced to the field kinds declared on
the staging dataclasses; a value that cannot be converted is recorded as a
validation error on its record instead of aborting the package. Attachment
blobs are written to files under the staging attachments directory.
"""

import hashlib
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

from app.config import PipelineSettings
from models.import_package import ImportPackage
from models.staging import COMMIT_ORDER, EVIDENCE, EntityFamily, StagingRecord
from repositories.db_adapter import DatabaseAdapter
from repositories.staging_repository import StagingRepository, staging_repositories
from services.container_reader import ContainerReader, open_container
from utils.datetime_utils import from_isoformat
from utils.logger import get_logger

logger = get_logger(__name__)

# Manifest count declared for each family
DECLARED_COUNT_FIELDS = {
    "building": "building_count",
    "property_unit": "property_unit_count",
    "person": "person_count",
    "household": "household_count",
    "person_property_relation": "relation_count",
    "evidence": "document_count",
    "claim": "claim_count",
    "survey": "survey_count",
}

_TRUE_VALUES = ("1", "true", "yes", "y")


@dataclass
class StagingResult:
    """Outcome of staging one package."""
    package_id: str
    counts: Dict[str, int] = field(default_factory=dict)
    skipped_rows: int = 0
    duplicate_rows: int = 0
    conversion_errors: int = 0
    attachments_written: int = 0
    count_mismatches: List[str] = field(default_factory=list)

    @property
    def total(self) -> int:
        return sum(self.counts.values())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "package_id": self.package_id,
            "counts": dict(self.counts),
            "total": self.total,
            "skipped_rows": self.skipped_rows,
            "duplicate_rows": self.duplicate_rows,
            "conversion_errors": self.conversion_errors,
            "attachments_written": self.attachments_written,
            "count_mismatches": list(self.count_mismatches),
        }


def _is_blank(value) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def coerce_value(kind: str, value) -> Tuple[Any, Optional[str]]:
    """
    Convert a container value to a field kind.

    Returns:
        (converted value, error message or None). Blank values convert to None.
    """
    if _is_blank(value):
        return None, None

    if kind == "str":
        if isinstance(value, (bytes, bytearray)):
            return bytes(value).decode("utf-8", errors="replace").strip(), None
        if isinstance(value, float) and value.is_integer():
            # Codes exported from numeric columns ("01" would already be text)
            return str(int(value)), None
        return str(value).strip(), None

    if kind == "int":
        if isinstance(value, bool):
            return int(value), None
        try:
            number = float(str(value).strip())
        except ValueError:
            return None, f"expected an integer, got '{value}'"
        if not number.is_integer():
            return None, f"expected an integer, got '{value}'"
        return int(number), None

    if kind == "float":
        try:
            return float(str(value).strip()), None
        except ValueError:
            return None, f"expected a number, got '{value}'"

    if kind == "date":
        parsed = from_isoformat(str(value))
        if parsed is None:
            return None, f"expected an ISO date, got '{value}'"
        return parsed.date().isoformat(), None

    if kind == "bool":
        return str(value).strip().lower() in _TRUE_VALUES, None

    return value, None


def build_record(family: EntityFamily, package_id: str, row: Dict[str, Any]) -> StagingRecord:
    """Staged record for one container row (conversion problems become errors)."""
    values: Dict[str, Any] = {}
    errors: List[str] = []
    for f in family.record_class.data_fields():
        if f.name == "attachment_path":
            continue
        column = f.metadata.get("column") or f.name
        raw = row.get(column, row.get(f.name))
        value, error = coerce_value(f.metadata.get("kind", "str"), raw)
        if error:
            errors.append(f"{family.label}.{f.name}: {error}")
        if value is None and f.default is not None:
            value = f.default
        values[f.name] = value

    record = family.record_class(
        import_package_id=package_id,
        original_entity_id=str(row["id"]).strip(),
        **values
    )
    if errors:
        record.add_findings(errors=errors)
    return record


class StagingService:
    """Loads container content into staging and clears it again."""

    def __init__(self, db: DatabaseAdapter, settings: Optional[PipelineSettings] = None):
        self.db = db
        self.settings = settings or PipelineSettings.from_config()
        self.repositories: Dict[str, StagingRepository] = staging_repositories(db)

    def staging_attachment_dir(self, package_id: str) -> Path:
        return self.settings.attachments_dir / "staging" / package_id

    def stage(self, package: ImportPackage, container_path: Union[str, Path]) -> StagingResult:
        """
        Stage every data row of a container for ``package``.

        Rows without an ``id`` are skipped. A second row with an id already
        seen in the same table is ignored (one staged row per original id).
        """
        result = StagingResult(package_id=package.id)
        staged: Dict[str, List[StagingRecord]] = {}

        with open_container(container_path) as container:
            for family in COMMIT_ORDER:
                staged[family.name] = self._read_family(container, family, package.id, result)
            blobs = container.read_attachments()

        for record in staged[EVIDENCE.name]:
            content = blobs.get(record.original_entity_id)
            if content is not None:
                self._write_attachment(package.id, record, content)
                result.attachments_written += 1

        with self.db.transaction():
            for family in COMMIT_ORDER:
                records = staged[family.name]
                self.repositories[family.name].add_many(records)
                result.counts[family.name] = len(records)

        for family in COMMIT_ORDER:
            declared = getattr(package, DECLARED_COUNT_FIELDS[family.name], 0)
            actual = result.counts.get(family.name, 0)
            if declared and declared != actual:
                message = f"{family.label}: manifest declares {declared}, container holds {actual}"
                result.count_mismatches.append(message)
                logger.warning(f"Package {package.package_number}: {message}")

        logger.info(
            f"Staged package {package.package_number}: {result.total} record(s), "
            f"{result.attachments_written} attachment(s), {result.conversion_errors} conversion error(s)"
        )
        return result

    def _read_family(self, container: ContainerReader, family: EntityFamily,
                     package_id: str, result: StagingResult) -> List[StagingRecord]:
        if not container.has_table(family.source_table):
            return []

        records: List[StagingRecord] = []
        seen = set()
        for row in container.iter_rows(family.source_table):
            if _is_blank(row.get("id")):
                result.skipped_rows += 1
                logger.warning(f"Skipping {family.label} row without id in {family.source_table}")
                continue
            record = build_record(family, package_id, row)
            if record.original_entity_id in seen:
                result.duplicate_rows += 1
                logger.warning(f"Duplicate {family.label} id {record.original_entity_id}; keeping the first row")
                continue
            seen.add(record.original_entity_id)
            if record.validation_errors:
                result.conversion_errors += len(record.validation_errors)
            records.append(record)
        return records

    def _write_attachment(self, package_id: str, record: StagingRecord, content: bytes) -> None:
        directory = self.staging_attachment_dir(package_id)
        directory.mkdir(parents=True, exist_ok=True)
        path = directory / record.original_entity_id
        path.write_bytes(content)
        record.attachment_path = str(path)
        if not record.file_size_bytes:
            record.file_size_bytes = len(content)
        if not record.file_hash:
            record.file_hash = hashlib.sha256(content).hexdigest()

    # ==================== Queries / cleanup ====================

    def count_records(self, package_id: str) -> Dict[str, int]:
        return {name: repo.count_by_package(package_id) for name, repo in self.repositories.items()}

    def clear(self, package_id: str) -> int:
        """Delete all staged rows and staged attachment files of a package."""
        removed = 0
        with self.db.transaction():
            for family in reversed(COMMIT_ORDER):
                removed += self.repositories[family.name].delete_by_package(package_id)
        directory = self.staging_attachment_dir(package_id)
        if directory.exists():
            shutil.rmtree(str(directory))
        logger.info(f"Cleared {removed} staged record(s) of package {package_id}")
        return removed
