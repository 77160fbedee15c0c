# -*- coding: utf-8 -*-
"""
Staging entity models.

Every record proposed for import lives in a staging table until it is
validated, approved and committed. All eight entity families share the
``StagingRecord`` header; each family adds its own typed fields. The
``EntityFamily`` descriptors tie a family to its container table, staging
table, production table and foreign keys, so one generic repository can
serve all of them.
"""

import json
import uuid
from dataclasses import dataclass, field, fields
from datetime import datetime
from enum import Enum
from typing import Any, ClassVar, Dict, List, Optional, Tuple, Type

from utils.datetime_utils import utc_now, to_isoformat, from_isoformat


class StagingStatus(Enum):
    """Validation / commit status of a staged record."""
    PENDING = "Pending"
    VALID = "Valid"
    INVALID = "Invalid"
    APPROVED = "ApprovedForCommit"
    COMMITTED = "Committed"
    REJECTED = "Rejected"      # Discarded by conflict resolution, never committed
    SKIPPED = "Skipped"


_TRANSITIONS: Dict[StagingStatus, Tuple[StagingStatus, ...]] = {
    StagingStatus.PENDING: (StagingStatus.VALID, StagingStatus.INVALID,
                            StagingStatus.REJECTED, StagingStatus.SKIPPED),
    StagingStatus.VALID: (StagingStatus.APPROVED, StagingStatus.INVALID, StagingStatus.PENDING,
                          StagingStatus.REJECTED, StagingStatus.SKIPPED),
    StagingStatus.INVALID: (StagingStatus.PENDING, StagingStatus.REJECTED, StagingStatus.SKIPPED),
    StagingStatus.APPROVED: (StagingStatus.COMMITTED, StagingStatus.VALID,
                             StagingStatus.INVALID, StagingStatus.REJECTED),
    StagingStatus.COMMITTED: (),
    StagingStatus.REJECTED: (),
    StagingStatus.SKIPPED: (StagingStatus.PENDING,),
}

# Staying put is allowed for these (validators append more findings)
_SELF_LOOPS = (StagingStatus.PENDING, StagingStatus.VALID, StagingStatus.INVALID)

# Statuses validators are allowed to write
VALIDATABLE_STATUSES = (StagingStatus.PENDING, StagingStatus.VALID, StagingStatus.INVALID)


def can_transition(current: StagingStatus, target: StagingStatus) -> bool:
    if current == target:
        return current in _SELF_LOOPS
    return target in _TRANSITIONS[current]


def transition(current: StagingStatus, target: StagingStatus,
               entity: str = "StagingRecord") -> StagingStatus:
    """
    Move a staged record from ``current`` to ``target``.

    Raises:
        InvalidStateTransition: if the move is not allowed
    """
    from services.exceptions import InvalidStateTransition

    if not can_transition(current, target):
        raise InvalidStateTransition(entity, current, target)
    return target


# ==================== Field helpers ====================

def _col(kind: str, column: Optional[str] = None, default: Any = None):
    """Family field: ``kind`` drives coercion, ``column`` is the container column."""
    return field(default=default, metadata={"kind": kind, "column": column})


def _load_list(value) -> List[str]:
    if not value:
        return []
    if isinstance(value, list):
        return list(value)
    try:
        loaded = json.loads(value)
    except (TypeError, ValueError):
        return [str(value)]
    return [str(v) for v in loaded] if isinstance(loaded, list) else [str(loaded)]


@dataclass
class StagingRecord:
    """
    Common header of every staged record.

    ``original_entity_id`` is the identifier the record carried in the
    originating package; it is never a key into the system of record.
    """

    import_package_id: str = ""
    original_entity_id: str = ""
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    validation_status: StagingStatus = StagingStatus.PENDING
    validation_errors: List[str] = field(default_factory=list)
    validation_warnings: List[str] = field(default_factory=list)
    is_approved_for_commit: bool = False
    committed_entity_id: Optional[str] = None
    staged_at_utc: datetime = field(default_factory=utc_now)

    HEADER_COLUMNS: ClassVar[Tuple[str, ...]] = (
        "id", "import_package_id", "original_entity_id", "validation_status",
        "validation_errors", "validation_warnings", "is_approved_for_commit",
        "committed_entity_id", "staged_at_utc",
    )

    # ==================== State changes ====================

    def _move(self, target: StagingStatus) -> None:
        self.validation_status = transition(
            self.validation_status, target, type(self).__name__
        )

    def add_findings(self, errors: List[str] = None, warnings: List[str] = None) -> None:
        """
        Append validator findings.

        Any error makes the record Invalid (approval is revoked). Warnings
        alone move a Pending record to Valid and leave Invalid records
        Invalid. Earlier findings are always kept.
        """
        errors = [e for e in (errors or []) if e]
        warnings = [w for w in (warnings or []) if w]

        if warnings:
            self.validation_warnings.extend(warnings)
        if errors:
            self.validation_errors.extend(errors)
            self._move(StagingStatus.INVALID)
            self.is_approved_for_commit = False
        elif warnings and self.validation_status == StagingStatus.PENDING:
            self._move(StagingStatus.VALID)

    def mark_valid(self) -> None:
        """Finalize a record no validator objected to."""
        if self.validation_errors:
            raise ValueError("Record with errors cannot be marked valid")
        self._move(StagingStatus.VALID)

    def approve(self) -> None:
        self._move(StagingStatus.APPROVED)
        self.is_approved_for_commit = True

    def revoke_approval(self) -> None:
        self._move(StagingStatus.VALID)
        self.is_approved_for_commit = False

    def mark_committed(self, committed_entity_id: str) -> None:
        if not committed_entity_id:
            raise ValueError("Committed entity ID cannot be empty")
        self._move(StagingStatus.COMMITTED)
        self.committed_entity_id = committed_entity_id

    def reject(self, reason: str) -> None:
        """Exclude the record from commit (conflict resolution outcome)."""
        self._move(StagingStatus.REJECTED)
        self.is_approved_for_commit = False
        if reason:
            self.validation_warnings.append(f"Rejected: {reason}")

    def skip(self, reason: str) -> None:
        self._move(StagingStatus.SKIPPED)
        self.is_approved_for_commit = False
        if reason:
            self.validation_warnings.append(f"Skipped: {reason}")

    def reset_validation(self) -> None:
        """Clear findings so the record can be corrected and re-validated."""
        self._move(StagingStatus.PENDING)
        self.validation_errors = []
        self.validation_warnings = []
        self.is_approved_for_commit = False

    # ==================== Properties ====================

    @property
    def is_invalid(self) -> bool:
        return self.validation_status == StagingStatus.INVALID

    @property
    def has_warnings(self) -> bool:
        return bool(self.validation_warnings)

    @property
    def is_committable(self) -> bool:
        return (self.validation_status == StagingStatus.APPROVED
                and self.committed_entity_id is None)

    # ==================== Serialization ====================

    @classmethod
    def data_fields(cls) -> List[Any]:
        """Family-specific dataclass fields (everything except the header)."""
        return [f for f in fields(cls) if f.name not in cls.HEADER_COLUMNS]

    @classmethod
    def columns(cls) -> List[str]:
        return list(cls.HEADER_COLUMNS) + [f.name for f in cls.data_fields()]

    def data(self) -> Dict[str, Any]:
        """Family-specific values keyed by field name."""
        return {f.name: getattr(self, f.name) for f in self.data_fields()}

    def to_row(self) -> Dict[str, Any]:
        """Convert to a column -> DB value mapping."""
        row = {
            "id": self.id,
            "import_package_id": self.import_package_id,
            "original_entity_id": self.original_entity_id,
            "validation_status": self.validation_status.value,
            "validation_errors": json.dumps(self.validation_errors, ensure_ascii=False) if self.validation_errors else None,
            "validation_warnings": json.dumps(self.validation_warnings, ensure_ascii=False) if self.validation_warnings else None,
            "is_approved_for_commit": 1 if self.is_approved_for_commit else 0,
            "committed_entity_id": self.committed_entity_id,
            "staged_at_utc": to_isoformat(self.staged_at_utc),
        }
        for f in self.data_fields():
            value = getattr(self, f.name)
            if f.metadata.get("kind") == "bool":
                value = 1 if value else 0
            row[f.name] = value
        return row

    @classmethod
    def from_row(cls, row) -> 'StagingRecord':
        """Create a record from a database row."""
        values: Dict[str, Any] = {
            "id": row["id"],
            "import_package_id": row["import_package_id"],
            "original_entity_id": row["original_entity_id"],
            "validation_status": StagingStatus(row["validation_status"]),
            "validation_errors": _load_list(row.get("validation_errors")),
            "validation_warnings": _load_list(row.get("validation_warnings")),
            "is_approved_for_commit": bool(row.get("is_approved_for_commit")),
            "committed_entity_id": row.get("committed_entity_id"),
            "staged_at_utc": from_isoformat(row.get("staged_at_utc")) or utc_now(),
        }
        for f in cls.data_fields():
            value = row.get(f.name)
            if f.metadata.get("kind") == "bool":
                value = bool(value)
            elif value is None and f.default is not None:
                value = f.default
            values[f.name] = value
        return cls(**values)


# ==================== Entity families ====================

@dataclass
class StagingBuilding(StagingRecord):
    building_code: Optional[str] = _col("str", "building_id")
    governorate_code: str = _col("str", default="")
    district_code: str = _col("str", default="")
    sub_district_code: str = _col("str", default="")
    community_code: str = _col("str", default="")
    neighborhood_code: str = _col("str", default="")
    building_number: str = _col("str", default="")
    building_type: int = _col("int", default=0)
    building_status: int = _col("int", default=0)
    damage_level: Optional[int] = _col("int")
    number_of_property_units: int = _col("int", default=0)
    number_of_apartments: int = _col("int", default=0)
    number_of_shops: int = _col("int", default=0)
    number_of_floors: Optional[int] = _col("int")
    latitude: Optional[float] = _col("float")
    longitude: Optional[float] = _col("float")
    building_geometry_wkt: Optional[str] = _col("str")
    address: Optional[str] = _col("str", "location_description")
    notes: Optional[str] = _col("str")

    @property
    def composite_code(self) -> str:
        """17-digit code: GG DD SS CCC NNN BBBBB."""
        return (f"{self.governorate_code}{self.district_code}{self.sub_district_code}"
                f"{self.community_code}{self.neighborhood_code}{self.building_number}")


@dataclass
class StagingPropertyUnit(StagingRecord):
    original_building_id: str = _col("str", "building_id", default="")
    unit_identifier: str = _col("str", default="")
    unit_type: int = _col("int", default=0)
    status: int = _col("int", default=0)
    floor_number: Optional[int] = _col("int")
    number_of_rooms: Optional[int] = _col("int")
    area_square_meters: Optional[float] = _col("float")
    description: Optional[str] = _col("str")


@dataclass
class StagingPerson(StagingRecord):
    family_name_arabic: str = _col("str", default="")
    first_name_arabic: str = _col("str", default="")
    father_name_arabic: str = _col("str", default="")
    mother_name_arabic: Optional[str] = _col("str")
    national_id: Optional[str] = _col("str")
    year_of_birth: Optional[int] = _col("int")
    gender: Optional[int] = _col("int")
    nationality: Optional[str] = _col("str")
    mobile_number: Optional[str] = _col("str")
    phone_number: Optional[str] = _col("str")
    email: Optional[str] = _col("str")
    original_household_id: Optional[str] = _col("str", "household_id")
    relationship_to_head: Optional[str] = _col("str")

    @property
    def full_name_arabic(self) -> str:
        parts = [self.first_name_arabic, self.father_name_arabic, self.family_name_arabic]
        return " ".join(p for p in parts if p)


@dataclass
class StagingHousehold(StagingRecord):
    original_property_unit_id: str = _col("str", "property_unit_id", default="")
    head_of_household_name: str = _col("str", default="")
    household_size: int = _col("int", default=0)
    male_count: int = _col("int", default=0)
    female_count: int = _col("int", default=0)
    original_head_of_household_person_id: Optional[str] = _col("str", "head_of_household_person_id")
    occupancy_nature: Optional[int] = _col("int")
    notes: Optional[str] = _col("str")


@dataclass
class StagingPersonPropertyRelation(StagingRecord):
    original_person_id: str = _col("str", "person_id", default="")
    original_property_unit_id: str = _col("str", "property_unit_id", default="")
    relation_type: int = _col("int", default=0)
    contract_type: Optional[int] = _col("int")
    ownership_share: Optional[float] = _col("float")
    start_date: Optional[str] = _col("date")
    end_date: Optional[str] = _col("date")
    notes: Optional[str] = _col("str")


@dataclass
class StagingEvidence(StagingRecord):
    evidence_type: int = _col("int", default=0)
    description: str = _col("str", default="")
    original_file_name: str = _col("str", default="")
    file_path: str = _col("str", default="")
    file_size_bytes: int = _col("int", default=0)
    mime_type: Optional[str] = _col("str")
    file_hash: Optional[str] = _col("str")
    original_person_id: Optional[str] = _col("str", "person_id")
    original_person_property_relation_id: Optional[str] = _col("str", "person_property_relation_id")
    original_claim_id: Optional[str] = _col("str", "claim_id")
    document_issued_date: Optional[str] = _col("date")
    attachment_path: Optional[str] = _col("str")

    @property
    def has_parent_link(self) -> bool:
        return bool(self.original_person_id or self.original_person_property_relation_id
                    or self.original_claim_id)


@dataclass
class StagingClaim(StagingRecord):
    original_property_unit_id: str = _col("str", "property_unit_id", default="")
    claim_type: str = _col("str", default="")
    claim_source: int = _col("int", default=0)
    original_primary_claimant_id: Optional[str] = _col("str", "primary_claimant_id")
    priority: Optional[int] = _col("int")
    tenure_contract_type: Optional[int] = _col("int")
    ownership_share: Optional[float] = _col("float")
    lifecycle_stage: Optional[int] = _col("int")
    status: Optional[int] = _col("int")
    description: Optional[str] = _col("str", "claim_description")


@dataclass
class StagingSurvey(StagingRecord):
    original_building_id: str = _col("str", "building_id", default="")
    original_property_unit_id: Optional[str] = _col("str", "property_unit_id")
    survey_date: Optional[str] = _col("date")
    survey_type: Optional[int] = _col("int", "type")
    field_collector_id: Optional[str] = _col("str")
    gps_coordinates: Optional[str] = _col("str")
    reference_code: Optional[str] = _col("str")
    notes: Optional[str] = _col("str")


@dataclass(frozen=True)
class ForeignKey:
    """
    Reference from one family to another by original identifier.

    ``deferred`` references point at a family committed later in the
    dependency order; they are wired after that family is promoted.
    """
    field: str
    family: str
    required: bool = True
    deferred: bool = False
    warning_only: bool = False

    @property
    def production_column(self) -> str:
        return self.field[len("original_"):] if self.field.startswith("original_") else self.field


@dataclass(frozen=True)
class EntityFamily:
    """Descriptor binding a staging record type to its tables."""
    name: str
    label: str
    source_table: str
    record_class: Type[StagingRecord]
    commit_order: int
    foreign_keys: Tuple[ForeignKey, ...] = ()

    @property
    def staging_table(self) -> str:
        return f"staging_{self.source_table}"

    @property
    def production_table(self) -> str:
        return self.source_table

    def production_columns(self) -> List[str]:
        renames = {fk.field: fk.production_column for fk in self.foreign_keys}
        return [renames.get(f.name, f.name) for f in self.record_class.data_fields()
                if f.name != "attachment_path"]


BUILDING = EntityFamily("building", "Building", "buildings", StagingBuilding, 1)
PROPERTY_UNIT = EntityFamily(
    "property_unit", "PropertyUnit", "property_units", StagingPropertyUnit, 2,
    (ForeignKey("original_building_id", "building"),),
)
HOUSEHOLD = EntityFamily(
    "household", "Household", "households", StagingHousehold, 3,
    (ForeignKey("original_property_unit_id", "property_unit"),
     ForeignKey("original_head_of_household_person_id", "person",
                required=False, deferred=True, warning_only=True)),
)
PERSON = EntityFamily(
    "person", "Person", "persons", StagingPerson, 4,
    (ForeignKey("original_household_id", "household", required=False),),
)
PERSON_PROPERTY_RELATION = EntityFamily(
    "person_property_relation", "PersonPropertyRelation", "person_property_relations",
    StagingPersonPropertyRelation, 5,
    (ForeignKey("original_person_id", "person"),
     ForeignKey("original_property_unit_id", "property_unit")),
)
EVIDENCE = EntityFamily(
    "evidence", "Evidence", "evidences", StagingEvidence, 6,
    (ForeignKey("original_person_id", "person", required=False),
     ForeignKey("original_person_property_relation_id", "person_property_relation", required=False),
     ForeignKey("original_claim_id", "claim", required=False, deferred=True)),
)
CLAIM = EntityFamily(
    "claim", "Claim", "claims", StagingClaim, 7,
    (ForeignKey("original_property_unit_id", "property_unit"),
     ForeignKey("original_primary_claimant_id", "person", required=False)),
)
SURVEY = EntityFamily(
    "survey", "Survey", "surveys", StagingSurvey, 8,
    (ForeignKey("original_building_id", "building"),
     ForeignKey("original_property_unit_id", "property_unit", required=False)),
)

FAMILIES: Dict[str, EntityFamily] = {
    f.name: f for f in (BUILDING, PROPERTY_UNIT, HOUSEHOLD, PERSON,
                        PERSON_PROPERTY_RELATION, EVIDENCE, CLAIM, SURVEY)
}

# Dependency order for commit; reverse order for cleanup
COMMIT_ORDER: List[EntityFamily] = sorted(FAMILIES.values(), key=lambda f: f.commit_order)


def get_family(name: str) -> EntityFamily:
    try:
        return FAMILIES[name]
    except KeyError:
        raise KeyError(f"Unknown entity family: {name}") from None


def family_of(record: StagingRecord) -> EntityFamily:
    for family in FAMILIES.values():
        if type(record) is family.record_class:
            return family
    raise KeyError(f"No entity family for {type(record).__name__}")
