# -*- coding: utf-8 -*-
"""
Entity Matching Service
=======================
Similarity scoring used by duplicate detection.

Features:
- Person matching: exact national id, or a composite of phone, Arabic
  full-name similarity, year of birth and gender
- Arabic name normalization (diacritics, tatweel, alef / taa marbuta /
  alef maksura variants) and Levenshtein similarity
- Property matching: exact building code, or spatial proximity with a
  building type bonus
- Staged-vs-staged (within batch) and staged-vs-production comparisons

All scores are on a 0-100 scale.
"""

import math
import re
import unicodedata
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from app.config import PipelineSettings
from repositories.production_repository import ProductionRepository
from utils.logger import get_logger

logger = get_logger(__name__)

# Person score components
NATIONAL_ID_SCORE = 100.0
PHONE_SCORE = 30.0
MAX_NAME_SCORE = 40.0
YEAR_OF_BIRTH_SCORE = 15.0
GENDER_SCORE = 15.0
MAX_COMPOSITE_SCORE = 100.0

# Name part weights in the full-name similarity
NAME_WEIGHTS = {
    'first_name_arabic': 0.30,
    'father_name_arabic': 0.30,
    'family_name_arabic': 0.40,
}

# Property score components
BUILDING_CODE_SCORE = 100.0
MAX_PROXIMITY_SCORE = 80.0
BUILDING_TYPE_BONUS = 20.0

EARTH_RADIUS_METERS = 6371000.0
METERS_PER_DEGREE_LAT = 111320.0


class MatchType(Enum):
    """Type of match detection."""
    EXACT = "exact"                  # Exact match on unique identifier
    HIGH_CONFIDENCE = "high"         # Very likely same entity
    MEDIUM_CONFIDENCE = "medium"     # Likely same entity, needs review
    NO_MATCH = "no_match"


class MatchField(Enum):
    """Fields used for matching."""
    # Person fields
    NATIONAL_ID = "national_id"
    PHONE = "phone"
    NAME = "name"
    YEAR_OF_BIRTH = "year_of_birth"
    GENDER = "gender"

    # Property fields
    BUILDING_CODE = "building_code"
    COORDINATES = "coordinates"
    BUILDING_TYPE = "building_type"


@dataclass
class MatchCandidate:
    """
    A scored pair of entities.

    ``first_id`` is always a staged record id; ``second_id`` is another
    staged record id (within batch) or a production id (``is_committed``).
    """
    first_id: str
    second_id: str
    entity_type: str  # 'person' or 'building'
    score: float
    match_type: MatchType
    is_committed: bool = False
    first_identifier: str = ""
    second_identifier: str = ""
    matched_fields: List[MatchField] = field(default_factory=list)
    field_scores: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_within_batch(self) -> bool:
        return not self.is_committed

    def to_dict(self) -> Dict[str, Any]:
        return {
            'first_id': self.first_id,
            'second_id': self.second_id,
            'entity_type': self.entity_type,
            'score': self.score,
            'match_type': self.match_type.value,
            'is_committed': self.is_committed,
            'matched_fields': [f.value for f in self.matched_fields],
            'field_scores': self.field_scores,
        }


class ArabicNameMatcher:
    """
    Arabic name similarity matching.
    Handles:
    - Diacritics and tatweel removal
    - Letter variants (alef forms, taa marbuta, alef maksura)
    - Levenshtein edit distance
    """

    # Arabic normalization mappings
    ARABIC_NORMALIZATIONS = {
        'أ': 'ا', 'إ': 'ا', 'آ': 'ا', 'ٱ': 'ا',  # Alef variants
        'ة': 'ه',  # Taa marbuta
        'ى': 'ي',  # Alef maksura
    }

    TATWEEL = 'ـ'

    @classmethod
    def normalize_arabic(cls, text: str) -> str:
        """Normalize Arabic text for comparison."""
        if not text:
            return ""

        # Remove diacritics (combining marks) and tatweel
        text = ''.join(
            ch for ch in text
            if unicodedata.category(ch) not in ('Mn', 'Me') and ch != cls.TATWEEL
        )

        for orig, repl in cls.ARABIC_NORMALIZATIONS.items():
            text = text.replace(orig, repl)

        return ' '.join(text.split())

    @classmethod
    def calculate_similarity(cls, name1: Optional[str], name2: Optional[str]) -> float:
        """
        Similarity of two names, 0-100 rounded to one decimal.

        Examples:
            >>> ArabicNameMatcher.calculate_similarity("فاطمة", "فاطمه")
            100.0
        """
        norm1 = cls.normalize_arabic(name1 or "")
        norm2 = cls.normalize_arabic(name2 or "")
        if not norm1 or not norm2:
            return 0.0
        if norm1 == norm2:
            return 100.0

        distance = cls.edit_distance(norm1, norm2)
        similarity = (1.0 - distance / max(len(norm1), len(norm2))) * 100.0
        return max(0.0, round(similarity, 1))

    @classmethod
    def full_name_similarity(cls, a: Dict[str, Any], b: Dict[str, Any]) -> float:
        """Weighted similarity of first, father and family names (0-100)."""
        total = sum(
            cls.calculate_similarity(a.get(key), b.get(key)) * weight
            for key, weight in NAME_WEIGHTS.items()
        )
        return round(total, 1)

    @staticmethod
    def edit_distance(s1: str, s2: str) -> int:
        """Levenshtein distance."""
        if not s1:
            return len(s2)
        if not s2:
            return len(s1)

        previous = list(range(len(s2) + 1))
        for i in range(1, len(s1) + 1):
            current = [i] + [0] * len(s2)
            for j in range(1, len(s2) + 1):
                cost = 0 if s1[i-1] == s2[j-1] else 1
                current[j] = min(
                    previous[j] + 1,        # Deletion
                    current[j-1] + 1,       # Insertion
                    previous[j-1] + cost    # Substitution
                )
            previous = current
        return previous[len(s2)]


def normalize_phone(phone: Optional[str]) -> str:
    """Digits only, without the Syrian country code or trunk zero."""
    digits = re.sub(r'\D', '', phone or '')
    if digits.startswith('963') and len(digits) > 9:
        digits = digits[3:]
    if digits.startswith('0') and len(digits) > 9:
        digits = digits[1:]
    return digits


def _phone(person: Dict[str, Any]) -> str:
    return normalize_phone(person.get('mobile_number') or person.get('phone_number'))


def person_identifier(person: Dict[str, Any]) -> str:
    name = ' '.join(
        str(person.get(key)) for key in ('first_name_arabic', 'father_name_arabic', 'family_name_arabic')
        if person.get(key)
    )
    national_id = person.get('national_id')
    return f"{name} (NID: {national_id})" if national_id else name


def building_identifier(building: Dict[str, Any]) -> str:
    if building.get('building_code'):
        return str(building['building_code'])
    parts = [building.get(key) or '' for key in (
        'governorate_code', 'district_code', 'sub_district_code',
        'community_code', 'neighborhood_code', 'building_number')]
    return '-'.join(parts)


def haversine_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Calculate distance between two points in meters."""
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    delta_phi = math.radians(lat2 - lat1)
    delta_lambda = math.radians(lon2 - lon1)

    a = (math.sin(delta_phi / 2) ** 2 +
         math.cos(phi1) * math.cos(phi2) * math.sin(delta_lambda / 2) ** 2)
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))

    return EARTH_RADIUS_METERS * c


class PersonMatcher:
    """
    Person matching.

    A national id match scores 100. Otherwise the score is the sum of
    phone (30), full-name similarity scaled to 40, year of birth (15) and
    gender (15), capped at 100.
    """

    def __init__(self, production: ProductionRepository, settings: PipelineSettings):
        self.production = production
        self.settings = settings

    def score(self, a: Dict[str, Any], b: Dict[str, Any]) -> Tuple[float, Dict[str, Any], List[MatchField]]:
        """
        Score two persons.

        Returns:
            (score, field_scores, matched_fields)
        """
        nid_a = (a.get('national_id') or '').strip().lower()
        nid_b = (b.get('national_id') or '').strip().lower()
        name_similarity = ArabicNameMatcher.full_name_similarity(a, b)
        field_scores: Dict[str, Any] = {'name_similarity': name_similarity}

        if nid_a and nid_a == nid_b:
            field_scores['national_id'] = True
            return NATIONAL_ID_SCORE, field_scores, [MatchField.NATIONAL_ID]

        score = 0.0
        matched: List[MatchField] = []

        phone_a, phone_b = _phone(a), _phone(b)
        field_scores['phone'] = bool(phone_a) and phone_a == phone_b
        if field_scores['phone']:
            score += PHONE_SCORE
            matched.append(MatchField.PHONE)

        score += name_similarity / 100.0 * MAX_NAME_SCORE
        if name_similarity > 0:
            matched.append(MatchField.NAME)

        field_scores['year_of_birth'] = (a.get('year_of_birth') is not None
                                         and a.get('year_of_birth') == b.get('year_of_birth'))
        if field_scores['year_of_birth']:
            score += YEAR_OF_BIRTH_SCORE
            matched.append(MatchField.YEAR_OF_BIRTH)

        field_scores['gender'] = a.get('gender') is not None and a.get('gender') == b.get('gender')
        if field_scores['gender']:
            score += GENDER_SCORE
            matched.append(MatchField.GENDER)

        return round(min(score, MAX_COMPOSITE_SCORE), 1), field_scores, matched

    def _candidate(self, a: Dict[str, Any], b: Dict[str, Any],
                   is_committed: bool) -> Optional[MatchCandidate]:
        score, field_scores, matched = self.score(a, b)
        match_type = classify(score, self.settings,
                              exact=MatchField.NATIONAL_ID in matched)
        if match_type == MatchType.NO_MATCH:
            return None
        return MatchCandidate(
            first_id=a['id'],
            second_id=b['id'],
            entity_type='person',
            score=score,
            match_type=match_type,
            is_committed=is_committed,
            first_identifier=person_identifier(a),
            second_identifier=person_identifier(b),
            matched_fields=matched,
            field_scores=field_scores,
        )

    def find_within_batch(self, persons: List[Dict[str, Any]]) -> List[MatchCandidate]:
        """Pairwise comparison of staged persons (each unordered pair once)."""
        matches = []
        for i in range(len(persons)):
            for j in range(i + 1, len(persons)):
                candidate = self._candidate(persons[i], persons[j], is_committed=False)
                if candidate:
                    matches.append(candidate)
        return matches

    def find_in_production(self, person: Dict[str, Any], limit: int = 10000) -> List[MatchCandidate]:
        """Committed persons similar to a staged person."""
        matches = []
        if person.get('national_id'):
            for row in self.production.find_persons_by_national_id(person['national_id']):
                candidate = self._candidate(person, row.to_dict(), is_committed=True)
                if candidate:
                    matches.append(candidate)
            if matches:
                return matches

        for row in self.production.get_persons(limit):
            candidate = self._candidate(person, row.to_dict(), is_committed=True)
            if candidate:
                matches.append(candidate)
        return matches


class PropertyMatcher:
    """
    Building matching.

    An identical building code scores 100. Otherwise buildings of the same
    type within the spatial threshold score 80 at 0 m, decaying linearly to
    0 at the threshold, plus 20 for the type match.
    """

    def __init__(self, production: ProductionRepository, settings: PipelineSettings):
        self.production = production
        self.settings = settings

    def score(self, a: Dict[str, Any], b: Dict[str, Any]) -> Tuple[float, Dict[str, Any], List[MatchField]]:
        code_a = (a.get('building_code') or '').strip()
        code_b = (b.get('building_code') or '').strip()
        distance = self._distance(a, b)
        field_scores: Dict[str, Any] = {
            'distance_meters': round(distance, 1) if distance is not None else None,
            'building_type': a.get('building_type') == b.get('building_type'),
        }
        if code_a and code_a == code_b:
            field_scores['building_code'] = True
            return BUILDING_CODE_SCORE, field_scores, [MatchField.BUILDING_CODE]

        if not field_scores['building_type'] or distance is None:
            return 0.0, field_scores, []

        threshold = self.settings.spatial_threshold_meters
        proximity = MAX_PROXIMITY_SCORE * (1 - distance / threshold) if distance <= threshold else 0.0
        if proximity <= 0:
            return 0.0, field_scores, []
        score = round(proximity + BUILDING_TYPE_BONUS, 1)
        return score, field_scores, [MatchField.COORDINATES, MatchField.BUILDING_TYPE]

    @staticmethod
    def _distance(a: Dict[str, Any], b: Dict[str, Any]) -> Optional[float]:
        coords = (a.get('latitude'), a.get('longitude'), b.get('latitude'), b.get('longitude'))
        if any(c is None for c in coords):
            return None
        return haversine_distance(*(float(c) for c in coords))

    def _candidate(self, a: Dict[str, Any], b: Dict[str, Any],
                   is_committed: bool) -> Optional[MatchCandidate]:
        score, field_scores, matched = self.score(a, b)
        match_type = classify(score, self.settings,
                              exact=MatchField.BUILDING_CODE in matched)
        if match_type == MatchType.NO_MATCH:
            return None
        return MatchCandidate(
            first_id=a['id'],
            second_id=b['id'],
            entity_type='building',
            score=score,
            match_type=match_type,
            is_committed=is_committed,
            first_identifier=building_identifier(a),
            second_identifier=building_identifier(b),
            matched_fields=matched,
            field_scores=field_scores,
        )

    def find_within_batch(self, buildings: List[Dict[str, Any]]) -> List[MatchCandidate]:
        matches = []
        for i in range(len(buildings)):
            for j in range(i + 1, len(buildings)):
                candidate = self._candidate(buildings[i], buildings[j], is_committed=False)
                if candidate:
                    matches.append(candidate)
        return matches

    def find_in_production(self, building: Dict[str, Any]) -> List[MatchCandidate]:
        """Committed buildings with the same code or close by."""
        matches: Dict[str, MatchCandidate] = {}
        if building.get('building_code'):
            for row in self.production.find_buildings_by_code(building['building_code']):
                candidate = self._candidate(building, row.to_dict(), is_committed=True)
                if candidate:
                    matches[candidate.second_id] = candidate

        lat, lng = building.get('latitude'), building.get('longitude')
        if lat is not None and lng is not None:
            threshold = self.settings.spatial_threshold_meters
            d_lat = threshold / METERS_PER_DEGREE_LAT
            d_lng = threshold / (METERS_PER_DEGREE_LAT * max(math.cos(math.radians(lat)), 0.01))
            for row in self.production.find_buildings_in_box(lat - d_lat, lat + d_lat,
                                                             lng - d_lng, lng + d_lng):
                if row['id'] in matches:
                    continue
                candidate = self._candidate(building, row.to_dict(), is_committed=True)
                if candidate:
                    matches[candidate.second_id] = candidate
        return list(matches.values())


def classify(score: float, settings: PipelineSettings, exact: bool = False) -> MatchType:
    """Determine match type from score and the configured thresholds."""
    if exact:
        return MatchType.EXACT
    if score >= settings.match_high_threshold:
        return MatchType.HIGH_CONFIDENCE
    if score >= settings.match_medium_threshold:
        return MatchType.MEDIUM_CONFIDENCE
    return MatchType.NO_MATCH


class MatchingService:
    """
    Unified matching service combining person and property matching.
    """

    def __init__(self, production: ProductionRepository, settings: Optional[PipelineSettings] = None):
        """
        Initialize matching service.

        Args:
            production: Repository of committed entities
            settings: Thresholds (defaults from Config)
        """
        self.settings = settings or PipelineSettings.from_config()
        self.person_matcher = PersonMatcher(production, self.settings)
        self.property_matcher = PropertyMatcher(production, self.settings)

    def find_person_duplicates(self, persons: List[Dict[str, Any]]) -> List[MatchCandidate]:
        """Within-batch and production matches for staged persons."""
        matches = self.person_matcher.find_within_batch(persons)
        for person in persons:
            matches.extend(self.person_matcher.find_in_production(person))
        logger.info(f"Person matching: {len(persons)} scanned, {len(matches)} match(es)")
        return matches

    def find_property_duplicates(self, buildings: List[Dict[str, Any]]) -> List[MatchCandidate]:
        """Within-batch and production matches for staged buildings."""
        matches = self.property_matcher.find_within_batch(buildings)
        for building in buildings:
            matches.extend(self.property_matcher.find_in_production(building))
        logger.info(f"Property matching: {len(buildings)} scanned, {len(matches)} match(es)")
        return matches
