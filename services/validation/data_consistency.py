# -*- coding: utf-8 -*-
"""
Level 1: field-level consistency of each staged record.

Required fields, administrative code formats, vocabulary codes, non-negative
counts and plausibility checks. Nothing here looks at other records.
"""

from datetime import timedelta
from typing import Callable, Dict, List

from models import vocabulary as vocab
from models.staging import (
    EntityFamily, StagingBuilding, StagingClaim, StagingEvidence, StagingHousehold,
    StagingPerson, StagingPersonPropertyRelation, StagingPropertyUnit, StagingRecord,
    StagingSurvey,
)
from services.validation.base import BaseValidator, Findings
from utils.datetime_utils import from_isoformat, utc_now

# (field, label, digits) of the administrative building code parts
BUILDING_CODE_PARTS = (
    ("governorate_code", "GovernorateCode", 2),
    ("district_code", "DistrictCode", 2),
    ("sub_district_code", "SubDistrictCode", 2),
    ("community_code", "CommunityCode", 3),
    ("neighborhood_code", "NeighborhoodCode", 3),
    ("building_number", "BuildingNumber", 5),
)

NATIONAL_ID_MAX_LENGTH = 20
MIN_YEAR_OF_BIRTH = 1900
MIN_FLOOR, MAX_FLOOR = -5, 200


def _blank(value) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


class DataConsistencyValidator(BaseValidator):
    """Per-record field checks for all eight families."""

    name = "DataConsistencyValidator"
    level = 1

    def check(self, family: EntityFamily, record: StagingRecord) -> Findings:
        checks: Dict[type, Callable[[StagingRecord, List[str], List[str]], None]] = {
            StagingBuilding: self._check_building,
            StagingPropertyUnit: self._check_property_unit,
            StagingPerson: self._check_person,
            StagingHousehold: self._check_household,
            StagingPersonPropertyRelation: self._check_relation,
            StagingEvidence: self._check_evidence,
            StagingClaim: self._check_claim,
            StagingSurvey: self._check_survey,
        }
        errors: List[str] = []
        warnings: List[str] = []
        checks[type(record)](record, errors, warnings)
        return errors, warnings

    # ==================== Families ====================

    def _check_building(self, b: StagingBuilding, errors: List[str], warnings: List[str]) -> None:
        for field_name, label, digits in BUILDING_CODE_PARTS:
            value = getattr(b, field_name)
            if _blank(value):
                errors.append(f"{label} is required")
            elif len(value) != digits or not value.isdigit():
                errors.append(f"{label} must be {digits} digits")

        if not self.is_valid_code(vocab.BUILDING_TYPE, b.building_type):
            errors.append(f"Invalid BuildingType: {b.building_type}")
        if not self.is_valid_code(vocab.BUILDING_STATUS, b.building_status):
            errors.append(f"Invalid BuildingStatus: {b.building_status}")
        if b.damage_level is not None and not self.is_valid_code(vocab.DAMAGE_LEVEL, b.damage_level):
            warnings.append(f"Unknown DamageLevel value: {b.damage_level}")

        if b.number_of_property_units < 0:
            errors.append("NumberOfPropertyUnits cannot be negative")
        if b.number_of_apartments < 0:
            errors.append("NumberOfApartments cannot be negative")
        if b.number_of_shops < 0:
            errors.append("NumberOfShops cannot be negative")
        if (b.number_of_property_units > 0
                and b.number_of_apartments + b.number_of_shops > b.number_of_property_units):
            warnings.append("Apartments + Shops exceeds total PropertyUnits")

        s = self.settings
        if b.latitude is not None and not s.min_lat <= b.latitude <= s.max_lat:
            warnings.append(f"Latitude {b.latitude} outside Syria bounds ({s.min_lat}-{s.max_lat})")
        if b.longitude is not None and not s.min_lng <= b.longitude <= s.max_lng:
            warnings.append(f"Longitude {b.longitude} outside Syria bounds ({s.min_lng}-{s.max_lng})")

    def _check_property_unit(self, u: StagingPropertyUnit, errors: List[str], warnings: List[str]) -> None:
        if _blank(u.original_building_id):
            errors.append("OriginalBuildingId is required")
        if _blank(u.unit_identifier):
            errors.append("UnitIdentifier is required")
        if not self.is_valid_code(vocab.PROPERTY_UNIT_TYPE, u.unit_type):
            errors.append(f"Invalid UnitType: {u.unit_type}")
        if not self.is_valid_code(vocab.PROPERTY_UNIT_STATUS, u.status):
            errors.append(f"Invalid PropertyUnitStatus: {u.status}")
        if u.area_square_meters is not None and u.area_square_meters <= 0:
            warnings.append("AreaSquareMeters should be positive")
        if u.floor_number is not None and not MIN_FLOOR <= u.floor_number <= MAX_FLOOR:
            warnings.append(f"FloorNumber {u.floor_number} outside expected range ({MIN_FLOOR}-{MAX_FLOOR})")

    def _check_person(self, p: StagingPerson, errors: List[str], warnings: List[str]) -> None:
        for field_name, label in (("family_name_arabic", "FamilyNameArabic"),
                                  ("first_name_arabic", "FirstNameArabic"),
                                  ("father_name_arabic", "FatherNameArabic")):
            if _blank(getattr(p, field_name)):
                errors.append(f"{label} is required")

        if p.national_id:
            if len(p.national_id) > NATIONAL_ID_MAX_LENGTH:
                warnings.append(f"NationalId length ({len(p.national_id)}) exceeds expected maximum")
            if not p.national_id.isdigit():
                warnings.append("NationalId contains non-digit characters")

        current_year = utc_now().year
        if p.year_of_birth is not None and not MIN_YEAR_OF_BIRTH <= p.year_of_birth <= current_year:
            warnings.append(f"YearOfBirth {p.year_of_birth} seems invalid")

        if p.gender is not None and not self.is_valid_code(vocab.GENDER, p.gender):
            errors.append(f"Invalid Gender: {p.gender}")

    def _check_household(self, h: StagingHousehold, errors: List[str], warnings: List[str]) -> None:
        if _blank(h.original_property_unit_id):
            errors.append("OriginalPropertyUnitId is required")
        if _blank(h.head_of_household_name):
            errors.append("HeadOfHouseholdName is required")
        if h.household_size <= 0:
            errors.append("HouseholdSize must be > 0")
        if h.male_count < 0 or h.female_count < 0:
            errors.append("Gender counts cannot be negative")

    def _check_relation(self, r: StagingPersonPropertyRelation, errors: List[str], warnings: List[str]) -> None:
        if _blank(r.original_person_id):
            errors.append("OriginalPersonId is required")
        if _blank(r.original_property_unit_id):
            errors.append("OriginalPropertyUnitId is required")
        if not self.is_valid_code(vocab.RELATION_TYPE, r.relation_type):
            errors.append(f"Invalid RelationType: {r.relation_type}")
        if r.ownership_share is not None and not 0 <= r.ownership_share <= 100:
            errors.append(f"OwnershipShare must be 0-100, got {r.ownership_share}")

    def _check_evidence(self, e: StagingEvidence, errors: List[str], warnings: List[str]) -> None:
        if not self.is_valid_code(vocab.EVIDENCE_TYPE, e.evidence_type):
            errors.append(f"Invalid EvidenceType: {e.evidence_type}")
        if _blank(e.original_file_name):
            errors.append("OriginalFileName is required")
        if e.file_size_bytes <= 0:
            warnings.append("FileSizeBytes is 0 or negative")
        if not e.has_parent_link:
            warnings.append("Evidence has no linked Person, Relation, or Claim")

    def _check_claim(self, c: StagingClaim, errors: List[str], warnings: List[str]) -> None:
        if _blank(c.original_property_unit_id):
            errors.append("OriginalPropertyUnitId is required")
        if _blank(c.claim_type):
            errors.append("ClaimType is required")
        if not self.is_valid_code(vocab.CLAIM_SOURCE, c.claim_source):
            errors.append(f"Invalid ClaimSource: {c.claim_source}")
        if c.priority is not None and not self.is_valid_code(vocab.CASE_PRIORITY, c.priority):
            warnings.append(f"Unknown CasePriority value: {c.priority}")

    def _check_survey(self, s: StagingSurvey, errors: List[str], warnings: List[str]) -> None:
        if _blank(s.original_building_id):
            errors.append("OriginalBuildingId is required")
        if _blank(s.survey_date):
            errors.append("SurveyDate is required")
            return
        survey_date = from_isoformat(s.survey_date)
        if survey_date is not None and survey_date > utc_now() + timedelta(days=1):
            warnings.append(f"SurveyDate {s.survey_date} is in the future")
