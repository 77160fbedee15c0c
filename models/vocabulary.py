# -*- coding: utf-8 -*-
"""
Controlled vocabulary domains and the codes the pipeline refers to by name.

Codes are integers as exported by the field app. The full code sets are
served by the vocabulary service; ``DEFAULT_VOCABULARIES`` is the seed used
by ``init-db`` and offline runs.
"""

from dataclasses import dataclass, field
from typing import Dict, List


# ==================== Domains ====================

BUILDING_TYPE = "building_type"
BUILDING_STATUS = "building_status"
PROPERTY_UNIT_TYPE = "property_unit_type"
PROPERTY_UNIT_STATUS = "property_unit_status"
GENDER = "gender"
RELATION_TYPE = "relation_type"
CONTRACT_TYPE = "contract_type"
EVIDENCE_TYPE = "evidence_type"
CLAIM_SOURCE = "claim_source"
SURVEY_TYPE = "survey_type"
DAMAGE_LEVEL = "damage_level"
CASE_PRIORITY = "case_priority"

# ==================== Well-known codes ====================

RELATION_OWNER = 1
RELATION_TENANT = 3

CLAIM_TYPE_OWNERSHIP = "ownership"
CLAIM_SOURCE_FIELD_COLLECTION = 1

# Claim lifecycle of a tablet export before commit
LIFECYCLE_DRAFT_PENDING_SUBMISSION = 1
CLAIM_STATUS_DRAFT = 1


@dataclass
class VocabularyDomain:
    """One vocabulary domain at a given version."""
    name: str
    version: str
    codes: Dict[int, str] = field(default_factory=dict)

    def is_valid(self, code) -> bool:
        try:
            return int(code) in self.codes
        except (TypeError, ValueError):
            return False

    def label(self, code: int) -> str:
        return self.codes.get(code, str(code))


DEFAULT_VOCABULARIES: List[VocabularyDomain] = [
    VocabularyDomain(BUILDING_TYPE, "1.0.0", {
        1: "Residential", 2: "Commercial", 3: "MixedUse", 4: "Industrial", 5: "Public",
    }),
    VocabularyDomain(BUILDING_STATUS, "1.0.0", {
        1: "Intact", 2: "MinorDamage", 3: "ModerateDamage", 4: "MajorDamage",
        5: "Destroyed", 6: "UnderConstruction",
    }),
    VocabularyDomain(PROPERTY_UNIT_TYPE, "1.0.0", {
        1: "Apartment", 2: "Shop", 3: "Office", 4: "Warehouse", 5: "House", 99: "Other",
    }),
    VocabularyDomain(PROPERTY_UNIT_STATUS, "1.0.0", {
        1: "Occupied", 2: "Vacant", 3: "Damaged", 4: "Destroyed", 5: "UnderRenovation",
    }),
    VocabularyDomain(GENDER, "1.0.0", {1: "Male", 2: "Female"}),
    VocabularyDomain(RELATION_TYPE, "1.0.0", {
        RELATION_OWNER: "Owner", 2: "Occupant", RELATION_TENANT: "Tenant",
        4: "Guest", 5: "Heir", 99: "Other",
    }),
    VocabularyDomain(CONTRACT_TYPE, "1.0.0", {
        1: "FullOwnership", 2: "SharedOwnership", 3: "LongTermRental",
        4: "ShortTermRental", 5: "InformalTenure", 99: "Other",
    }),
    VocabularyDomain(EVIDENCE_TYPE, "1.0.0", {
        1: "IdentificationDocument", 2: "OwnershipDeed", 3: "RentalContract",
        4: "UtilityBill", 5: "Photo", 6: "CourtRuling", 99: "Other",
    }),
    VocabularyDomain(CLAIM_SOURCE, "1.0.0", {
        1: "FieldCollection", 2: "OfficeSubmission", 3: "SystemImport",
    }),
    VocabularyDomain(SURVEY_TYPE, "1.0.0", {1: "Field", 2: "Office"}),
    VocabularyDomain(DAMAGE_LEVEL, "1.0.0", {
        1: "NoDamage", 2: "Minor", 3: "Moderate", 4: "Major", 5: "Severe", 6: "Destroyed",
    }),
    VocabularyDomain(CASE_PRIORITY, "1.0.0", {1: "Low", 2: "Normal", 3: "High", 4: "Urgent"}),
]


def default_versions() -> Dict[str, str]:
    return {d.name: d.version for d in DEFAULT_VOCABULARIES}
