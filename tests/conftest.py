# -*- coding: utf-8 -*-
"""
Shared fixtures for the import pipeline tests.

Every test gets its own SQLite database and storage directories under
pytest's ``tmp_path``; nothing touches the configured data directory.
"""

import copy
from datetime import date

import pytest

from app.config import PipelineSettings
from models import staging as st
from models.vocabulary import RELATION_OWNER, RELATION_TENANT, default_versions
from repositories.db_adapter import SQLiteAdapter
from repositories.staging_repository import staging_repositories
from services.container_writer import ContainerWriter
from services.integrity_service import IntegrityVerifier
from services.staging_service import build_record
from services.vocabulary_service import InMemoryVocabularyService

ACTOR = "user-reviewer"


# ==================== Sample package rows ====================

SAMPLE_ROWS = {
    "buildings": [
        {
            "id": "B-1",
            "governorate_code": "01",
            "district_code": "02",
            "sub_district_code": "03",
            "community_code": "004",
            "neighborhood_code": "005",
            "building_number": "00001",
            "building_type": 1,
            "building_status": 1,
            "number_of_property_units": 2,
            "number_of_apartments": 2,
            "number_of_shops": 0,
            "number_of_floors": 3,
            "latitude": 36.2021,
            "longitude": 37.1343,
        },
    ],
    "property_units": [
        {"id": "U-1", "building_id": "B-1", "unit_identifier": "01", "unit_type": 1,
         "status": 1, "floor_number": 1, "number_of_rooms": 3, "area_square_meters": 95.0},
        {"id": "U-2", "building_id": "B-1", "unit_identifier": "02", "unit_type": 1,
         "status": 1, "floor_number": 2, "number_of_rooms": 2, "area_square_meters": 70.0},
    ],
    "households": [
        {"id": "H-1", "property_unit_id": "U-1", "head_of_household_name": "أحمد الخطيب",
         "household_size": 2, "male_count": 1, "female_count": 1,
         "head_of_household_person_id": "P-1"},
    ],
    "persons": [
        {"id": "P-1", "family_name_arabic": "الخطيب", "first_name_arabic": "أحمد",
         "father_name_arabic": "محمود", "national_id": "01020304050", "year_of_birth": 1975,
         "gender": 1, "mobile_number": "+963944111111", "household_id": "H-1"},
        {"id": "P-2", "family_name_arabic": "السعيد", "first_name_arabic": "فاطمة",
         "father_name_arabic": "علي", "national_id": "01020304051", "year_of_birth": 1980,
         "gender": 2, "mobile_number": "+963944222222", "household_id": "H-1"},
    ],
    "person_property_relations": [
        {"id": "R-1", "person_id": "P-1", "property_unit_id": "U-1",
         "relation_type": RELATION_OWNER, "ownership_share": 100.0, "start_date": "2010-05-01"},
        {"id": "R-2", "person_id": "P-2", "property_unit_id": "U-2",
         "relation_type": RELATION_TENANT, "contract_type": 3, "start_date": "2019-01-01"},
    ],
    "evidences": [
        {"id": "E-1", "evidence_type": 2, "description": "Title deed",
         "original_file_name": "deed.jpg", "mime_type": "image/jpeg",
         "person_property_relation_id": "R-1", "claim_id": "C-1"},
    ],
    "claims": [
        {"id": "C-1", "property_unit_id": "U-1", "claim_type": "ownership", "claim_source": 1,
         "primary_claimant_id": "P-1", "ownership_share": 100.0},
    ],
    "surveys": [
        {"id": "S-1", "building_id": "B-1", "property_unit_id": "U-1",
         "survey_date": "2024-03-10", "type": 1},
    ],
}

ATTACHMENTS = {"E-1": (b"scanned deed", "deed.jpg")}


@pytest.fixture
def sample_rows():
    """A consistent package: one row of every family, all references resolvable."""
    return copy.deepcopy(SAMPLE_ROWS)


# ==================== Infrastructure ====================

@pytest.fixture
def db(tmp_path):
    """Initialized SQLite adapter on a temp file."""
    adapter = SQLiteAdapter(tmp_path / "test.db")
    adapter.initialize()
    yield adapter
    adapter.close()


@pytest.fixture
def settings(tmp_path):
    """Pipeline settings with storage under tmp_path and no retry sleeps."""
    return PipelineSettings.for_directory(tmp_path / "store", delete_base_delay_ms=1)


@pytest.fixture
def vocabulary():
    """Built-in vocabularies, all at 1.0.0."""
    return InMemoryVocabularyService()


@pytest.fixture
def verifier(settings):
    return IntegrityVerifier(settings)


@pytest.fixture
def make_container(tmp_path, verifier, sample_rows):
    """
    Build a signed container.

    Usage:
        path, writer = make_container()
        path, writer = make_container(rows, name="x.uhc", manifest={...}, sign=False)
    """
    counter = {"n": 0}

    def _make(rows=None, name=None, manifest=None, sign=True, declare_checksum=True,
              attachments=True, vocab_versions=None):
        counter["n"] += 1
        writer = ContainerWriter(
            vocab_versions=vocab_versions if vocab_versions is not None else default_versions()
        )
        for table, table_rows in (rows if rows is not None else sample_rows).items():
            writer.add_rows(table, table_rows)
        if attachments:
            for evidence_id, (content, file_name) in ATTACHMENTS.items():
                writer.add_attachment(evidence_id, content, file_name)
        if manifest:
            writer.set_manifest(**manifest)
        path = tmp_path / "uploads" / (name or f"package-{counter['n']}.uhc")
        writer.write(path, verifier=verifier, declare_checksum=declare_checksum, sign=sign)
        return path, writer

    return _make


# ==================== Direct staging ====================

@pytest.fixture
def stage_rows(db):
    """
    Put container-shaped rows straight into staging (no container, no upload).

    Usage:
        records = stage_rows("pkg-1", {"persons": [...], ...})
    Returns:
        {family name: [StagingRecord, ...]}
    """
    repositories = staging_repositories(db)

    def _stage(package_id, rows):
        by_table = {family.source_table: family for family in st.COMMIT_ORDER}
        staged = {}
        for table, table_rows in rows.items():
            family = by_table[table]
            records = [build_record(family, package_id, row) for row in table_rows]
            repositories[family.name].add_many(records)
            staged[family.name] = records
        return staged

    return _stage


@pytest.fixture
def staged(db):
    """Read staged records back: staged("person", package_id, "P-1")."""
    repositories = staging_repositories(db)

    def _get(family_name, package_id, original_id):
        return repositories[family_name].get_by_original_id(package_id, original_id)

    return _get


def today_iso():
    return date.today().isoformat()
