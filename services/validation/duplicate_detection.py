# -*- coding: utf-8 -*-
"""
Level 4: duplicate detection.

Staged persons and buildings are matched against each other and against
production. Every pair scoring at or above the medium threshold becomes a
conflict for human review; the staged records involved get a warning.
Duplicates never make a record Invalid.
"""

from collections import defaultdict
from typing import Any, Dict, List

from models.conflict import ConfidenceLevel, ConflictEntityType, ConflictType
from models.staging import (
    BUILDING, EntityFamily, PERSON, StagingBuilding, StagingRecord, StagingStatus,
)
from repositories.import_package_repository import ImportPackageRepository
from repositories.production_repository import ProductionRepository
from services.conflict_resolution import ConflictResolutionService
from services.matching_service import MatchCandidate, MatchingService, MatchType
from services.validation.base import BaseValidator, Findings, ValidatorResult
from utils.logger import get_logger

logger = get_logger(__name__)

_CANDIDATE_STATUSES = (StagingStatus.PENDING, StagingStatus.VALID)


def _as_match_input(record: StagingRecord) -> Dict[str, Any]:
    data = record.data()
    data["id"] = record.id
    if isinstance(record, StagingBuilding) and not data.get("building_code"):
        data["building_code"] = record.composite_code
    return data


class DuplicateDetectionValidator(BaseValidator):
    """Person and property duplicate detection feeding the conflict queue."""

    name = "DuplicateDetectionValidator"
    level = 4
    families = (PERSON, BUILDING)

    def __init__(self, db, vocabulary_service=None, settings=None):
        super().__init__(db, vocabulary_service, settings)
        self.matching = MatchingService(ProductionRepository(db), self.settings)
        self.conflict_service = ConflictResolutionService(db)
        self.packages = ImportPackageRepository(db)
        self._flags: Dict[str, List[str]] = {}
        self._person_matches = 0
        self._property_matches = 0

    def prepare(self, package_id: str) -> None:
        self._flags = defaultdict(list)
        persons = [_as_match_input(r) for r in
                   self.repositories[PERSON.name].get_by_package(package_id, _CANDIDATE_STATUSES)]
        buildings = [_as_match_input(r) for r in
                     self.repositories[BUILDING.name].get_by_package(package_id, _CANDIDATE_STATUSES)]

        person_matches = self.matching.find_person_duplicates(persons)
        property_matches = self.matching.find_property_duplicates(buildings)
        self._person_matches = len(person_matches)
        self._property_matches = len(property_matches)

        for match in person_matches:
            self._queue(package_id, match, ConflictEntityType.PERSON,
                        ConflictType.PERSON_DUPLICATE if match.is_committed
                        else ConflictType.PERSON_DUPLICATE_WITHIN_BATCH)
        for match in property_matches:
            self._queue(package_id, match, ConflictEntityType.BUILDING,
                        ConflictType.PROPERTY_DUPLICATE if match.is_committed
                        else ConflictType.PROPERTY_DUPLICATE_WITHIN_BATCH)

    def _queue(self, package_id: str, match: MatchCandidate,
               entity_type: ConflictEntityType, conflict_type: ConflictType) -> None:
        confidence = (ConfidenceLevel.HIGH
                      if match.match_type in (MatchType.EXACT, MatchType.HIGH_CONFIDENCE)
                      else ConfidenceLevel.MEDIUM)
        where = "production" if match.is_committed else "this package"
        conflict = self.conflict_service.create_conflict(
            package_id=package_id,
            entity_type=entity_type,
            conflict_type=conflict_type,
            first_entity_id=match.first_id,
            second_entity_id=match.second_id,
            similarity_score=match.score,
            confidence_level=confidence,
            is_second_committed=match.is_committed,
            first_identifier=match.first_identifier,
            second_identifier=match.second_identifier,
            description=f"{match.first_identifier} looks like {match.second_identifier} in {where}",
            criteria=match.to_dict(),
        )
        if conflict is None:
            existing = self.conflict_service.conflicts.get_by_pair(package_id, match.first_id, match.second_id)
            if existing is None or not existing.is_open:
                return
            conflict = existing

        self._flags[match.first_id].append(
            f"Possible duplicate of {match.second_identifier} in {where} "
            f"(score {match.score:g}, conflict {conflict.conflict_number})"
        )
        if not match.is_committed:
            self._flags[match.second_id].append(
                f"Possible duplicate of {match.first_identifier} in {where} "
                f"(score {match.score:g}, conflict {conflict.conflict_number})"
            )

    def check(self, family: EntityFamily, record: StagingRecord) -> Findings:
        warnings = [w for w in self._flags.get(record.id, []) if w not in record.validation_warnings]
        return [], warnings

    def finish(self, package_id: str, result: ValidatorResult) -> None:
        package = self.packages.get_by_id(package_id)
        if package is None:
            return
        package.person_duplicate_count = self._person_matches
        package.property_duplicate_count = self._property_matches
        package.conflict_count = self.conflict_service.unresolved_count(package_id)
        package.are_conflicts_resolved = package.conflict_count == 0
        self.packages.update(package)
        logger.info(
            f"Package {package.package_number}: {self._person_matches} person and "
            f"{self._property_matches} property duplicate(s), {package.conflict_count} open conflict(s)"
        )
