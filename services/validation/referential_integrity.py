# -*- coding: utf-8 -*-
"""
Level 2: cross-entity references.

Every foreign key a staged record declares must point either at a staged
record of the referenced family in the same package, or at an entity that
is already in production.
"""

from typing import Dict, Set

from models.staging import EntityFamily, FAMILIES, StagingRecord
from repositories.production_repository import ProductionRepository
from services.validation.base import BaseValidator, Findings


class ReferentialIntegrityValidator(BaseValidator):
    """Checks declared foreign keys against the batch and production."""

    name = "ReferentialIntegrityValidator"
    level = 2

    def __init__(self, db, vocabulary_service=None, settings=None):
        super().__init__(db, vocabulary_service, settings)
        self.production = ProductionRepository(db)
        self._batch_ids: Dict[str, Set[str]] = {}

    def prepare(self, package_id: str) -> None:
        # Rejected / skipped rows will never be committed, so they cannot be referenced
        self._batch_ids = {
            name: repo.original_ids(package_id) for name, repo in self.repositories.items()
        }

    def resolves(self, family_name: str, original_id: str) -> bool:
        if original_id in self._batch_ids.get(family_name, set()):
            return True
        return self.production.exists(FAMILIES[family_name], original_id)

    def check(self, family: EntityFamily, record: StagingRecord) -> Findings:
        errors = []
        warnings = []
        for fk in family.foreign_keys:
            value = getattr(record, fk.field)
            if not value:
                continue
            if self.resolves(fk.family, value):
                continue
            parent = FAMILIES[fk.family].label
            message = f"{family.label} references {parent} {value} which does not exist in batch or production"
            if fk.warning_only:
                warnings.append(message)
            else:
                errors.append(message)
        return errors, warnings
