# -*- coding: utf-8 -*-
"""Level 6: household composition against the persons staged with it."""

from collections import Counter
from typing import Dict, List, Set

from models.staging import (
    EntityFamily, HOUSEHOLD, PERSON, StagingHousehold, StagingRecord, StagingStatus,
)
from services.validation.base import BaseValidator, Findings


class HouseholdStructureValidator(BaseValidator):
    """Gender breakdown, head of household and member count."""

    name = "HouseholdStructureValidator"
    level = 6
    families = (HOUSEHOLD,)

    def __init__(self, db, vocabulary_service=None, settings=None):
        super().__init__(db, vocabulary_service, settings)
        self._person_ids: Set[str] = set()
        self._members: Dict[str, int] = {}

    def prepare(self, package_id: str) -> None:
        persons = [
            p for p in self.repositories[PERSON.name].get_by_package(package_id)
            if p.validation_status not in (StagingStatus.REJECTED, StagingStatus.SKIPPED)
        ]
        self._person_ids = {p.original_entity_id for p in persons}
        self._members = dict(Counter(p.original_household_id for p in persons if p.original_household_id))

    def check(self, family: EntityFamily, record: StagingRecord) -> Findings:
        if not isinstance(record, StagingHousehold):
            return [], []
        warnings: List[str] = []

        m, f, size = record.male_count, record.female_count, record.household_size
        total = m + f
        if total > 0 and total != size:
            warnings.append(f"MaleCount({m}) + FemaleCount({f}) = {total} ≠ HouseholdSize({size})")

        head = record.original_head_of_household_person_id
        if head and head not in self._person_ids:
            warnings.append(f"Head of household person {head} not found in batch")

        linked = self._members.get(record.original_entity_id, 0)
        if linked and linked != size:
            warnings.append(f"Declared HouseholdSize={size} but {linked} persons linked")

        return [], warnings
