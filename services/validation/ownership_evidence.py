# -*- coding: utf-8 -*-
"""
Level 3: ownership and tenure rules.

Ownership relations need a share and should be backed by evidence; tenant
relations need a contract type; ownership shares of one property unit must
not add up to more than 100.
"""

from collections import defaultdict
from typing import Dict, List, Set

from models import vocabulary as vocab
from models.staging import (
    CLAIM, EVIDENCE, EntityFamily, PERSON_PROPERTY_RELATION, StagingClaim,
    StagingEvidence, StagingPersonPropertyRelation, StagingRecord, StagingStatus,
)
from services.validation.base import BaseValidator, Findings

_EXCLUDED = (StagingStatus.REJECTED, StagingStatus.SKIPPED)


class OwnershipEvidenceValidator(BaseValidator):
    """Ownership shares, tenure contracts and supporting evidence."""

    name = "OwnershipEvidenceValidator"
    level = 3
    families = (PERSON_PROPERTY_RELATION, EVIDENCE, CLAIM)

    def __init__(self, db, vocabulary_service=None, settings=None):
        super().__init__(db, vocabulary_service, settings)
        self._relations_with_evidence: Set[str] = set()
        self._share_totals: Dict[str, float] = {}

    def prepare(self, package_id: str) -> None:
        evidences = self._live(EVIDENCE.name, package_id)
        self._relations_with_evidence = {
            e.original_person_property_relation_id for e in evidences
            if e.original_person_property_relation_id
        }

        totals: Dict[str, float] = defaultdict(float)
        for relation in self._live(PERSON_PROPERTY_RELATION.name, package_id):
            if relation.relation_type == vocab.RELATION_OWNER and relation.ownership_share:
                totals[relation.original_property_unit_id] += relation.ownership_share
        self._share_totals = dict(totals)

    def _live(self, family_name: str, package_id: str) -> List[StagingRecord]:
        records = self.repositories[family_name].get_by_package(package_id)
        return [r for r in records if r.validation_status not in _EXCLUDED]

    def check(self, family: EntityFamily, record: StagingRecord) -> Findings:
        if isinstance(record, StagingPersonPropertyRelation):
            return self._check_relation(record)
        if isinstance(record, StagingEvidence):
            return self._check_evidence(record)
        if isinstance(record, StagingClaim):
            return self._check_claim(record)
        return [], []

    def _check_relation(self, r: StagingPersonPropertyRelation) -> Findings:
        errors: List[str] = []
        warnings: List[str] = []

        if r.relation_type == vocab.RELATION_OWNER:
            if not r.ownership_share or r.ownership_share <= 0:
                errors.append("Ownership relation requires OwnershipShare > 0")
            if r.original_entity_id not in self._relations_with_evidence:
                warnings.append("Ownership relation has no supporting evidence documents")
            total = self._share_totals.get(r.original_property_unit_id, 0.0)
            if total > 100 and r.ownership_share:
                errors.append(
                    f"Ownership shares of property unit {r.original_property_unit_id} "
                    f"add up to {total:g} (more than 100)"
                )
        elif r.relation_type == vocab.RELATION_TENANT:
            if r.contract_type is None:
                errors.append("Tenant relation requires ContractType")
            elif not self.is_valid_code(vocab.CONTRACT_TYPE, r.contract_type):
                errors.append(f"Invalid ContractType: {r.contract_type}")

        return errors, warnings

    @staticmethod
    def _check_evidence(e: StagingEvidence) -> Findings:
        if not (e.file_path or "").strip() and not e.attachment_path:
            return [], ["Evidence record has empty file path"]
        return [], []

    @staticmethod
    def _check_claim(c: StagingClaim) -> Findings:
        if (c.claim_type or "").strip().lower() == vocab.CLAIM_TYPE_OWNERSHIP:
            if not c.ownership_share or c.ownership_share <= 0:
                return ["Ownership claim requires OwnershipShare > 0"], []
        return [], []
