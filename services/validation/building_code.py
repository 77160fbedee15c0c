# -*- coding: utf-8 -*-
"""
Level 7: building and unit codes.

The composite building code is GG DD SS CCC NNN BBBBB (17 digits). Two
buildings of one batch may not share a code, and two units of one building
may not share an identifier.
"""

from collections import Counter
from typing import Dict, List, Tuple

from models.staging import (
    BUILDING, EntityFamily, PROPERTY_UNIT, StagingBuilding, StagingPropertyUnit,
    StagingRecord, StagingStatus,
)
from services.validation.base import BaseValidator, Findings

BUILDING_CODE_LENGTH = 17


class BuildingCodeValidator(BaseValidator):
    """Composite code format and uniqueness within the batch."""

    name = "BuildingCodeValidator"
    level = 7
    families = (BUILDING, PROPERTY_UNIT)

    def __init__(self, db, vocabulary_service=None, settings=None):
        super().__init__(db, vocabulary_service, settings)
        self._code_counts: Dict[str, int] = {}
        self._unit_counts: Dict[Tuple[str, str], int] = {}

    def prepare(self, package_id: str) -> None:
        excluded = (StagingStatus.REJECTED, StagingStatus.SKIPPED)
        buildings = [b for b in self.repositories[BUILDING.name].get_by_package(package_id)
                     if b.validation_status not in excluded]
        units = [u for u in self.repositories[PROPERTY_UNIT.name].get_by_package(package_id)
                 if u.validation_status not in excluded]
        self._code_counts = dict(Counter(b.composite_code for b in buildings if b.composite_code))
        self._unit_counts = dict(Counter(
            (u.original_building_id, u.unit_identifier.strip())
            for u in units if u.unit_identifier and u.unit_identifier.strip()
        ))

    def check(self, family: EntityFamily, record: StagingRecord) -> Findings:
        if isinstance(record, StagingBuilding):
            return self._check_building(record)
        if isinstance(record, StagingPropertyUnit):
            return self._check_unit(record)
        return [], []

    def _check_building(self, b: StagingBuilding) -> Findings:
        errors: List[str] = []
        warnings: List[str] = []
        code = b.composite_code

        if len(code) != BUILDING_CODE_LENGTH:
            errors.append(f"Composite building ID '{code}' is {len(code)} digits (expected {BUILDING_CODE_LENGTH})")
        elif not code.isdigit():
            errors.append(f"Composite building ID '{code}' contains non-digit characters")

        provided = (b.building_code or "").replace("-", "").strip()
        if provided and provided != code:
            warnings.append(f"Provided BuildingId '{b.building_code}' doesn't match computed '{code}'")

        count = self._code_counts.get(code, 0)
        if code and count > 1:
            errors.append(f"Duplicate building code '{code}' found {count} times in batch")
        return errors, warnings

    def _check_unit(self, u: StagingPropertyUnit) -> Findings:
        identifier = (u.unit_identifier or "").strip()
        if not identifier:
            return [], []
        if self._unit_counts.get((u.original_building_id, identifier), 0) > 1:
            return [f"Duplicate unit identifier '{identifier}' within building {u.original_building_id}"], []
        return [], []
