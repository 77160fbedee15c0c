# -*- coding: utf-8 -*-
"""
Tests for the validation pipeline.

Tests cover:
- Level ordering of validators
- Finalizing records nobody objected to
- Summary counts and itemized findings
- A crashing validator does not stop later levels
"""

import pytest

from models import staging as st
from models.staging import StagingStatus
from repositories.staging_repository import staging_repositories
from services.validation import DEFAULT_VALIDATORS, BaseValidator, ValidationPipeline
from services.validation.building_code import BuildingCodeValidator
from services.validation.data_consistency import DataConsistencyValidator
from services.validation.household_structure import HouseholdStructureValidator

PKG = "pkg-1"


class CrashingValidator(BaseValidator):
    name = "CrashingValidator"
    level = 3
    families = (st.PERSON,)

    def check(self, family, record):
        raise RuntimeError("boom")


@pytest.fixture
def pipeline(db, vocabulary, settings):
    return ValidationPipeline(db, vocabulary, settings)


def all_records(db, package_id=PKG):
    records = []
    for family in st.COMMIT_ORDER:
        records.extend(staging_repositories(db)[family.name].get_by_package(package_id))
    return records


class TestOrdering:

    def test_default_chain_has_eight_levels(self, pipeline):
        assert [v.level for v in pipeline.validators] == [1, 2, 3, 4, 5, 6, 7, 8]
        assert len(DEFAULT_VALIDATORS) == 8

    def test_validators_sorted_by_level(self, db, vocabulary, settings):
        validators = [
            BuildingCodeValidator(db, vocabulary, settings),
            DataConsistencyValidator(db, vocabulary, settings),
        ]
        pipeline = ValidationPipeline(db, vocabulary, settings, validators=validators)

        assert [v.name for v in pipeline.validators] == ["DataConsistencyValidator", "BuildingCodeValidator"]


class TestRun:
    """Test full runs over staged rows."""

    def test_clean_batch_is_all_valid(self, pipeline, stage_rows, db, sample_rows):
        stage_rows(PKG, sample_rows)
        summary = pipeline.run(PKG)

        assert summary.total == 11
        assert summary.valid == 11
        assert summary.invalid == 0
        assert summary.pending == 0
        assert summary.error_count == 0
        assert summary.crashed_validators == []
        assert len(summary.results) == 8
        assert all(r.validation_status == StagingStatus.VALID for r in all_records(db))

    def test_findings_are_itemized(self, pipeline, stage_rows, sample_rows):
        sample_rows["persons"][1]["gender"] = 7
        stage_rows(PKG, sample_rows)
        summary = pipeline.run(PKG)

        assert summary.invalid == 1
        assert {"entity": "Person", "original_id": "P-2", "message": "Invalid Gender: 7"} in summary.errors
        # Staged directly, the evidence has no attachment
        assert any(w["original_id"] == "E-1" for w in summary.warnings)
        assert summary.warning >= 1

    def test_invalid_exactly_when_errors(self, pipeline, stage_rows, db, sample_rows):
        sample_rows["person_property_relations"][0]["person_id"] = "P-404"
        sample_rows["households"][0]["male_count"] = 3
        sample_rows["buildings"][0]["latitude"] = 38.0
        stage_rows(PKG, sample_rows)
        pipeline.run(PKG)

        for record in all_records(db):
            assert (record.validation_status == StagingStatus.INVALID) == bool(record.validation_errors)
        assert staged_status(db, "person_property_relation", "R-1") == StagingStatus.INVALID
        assert staged_status(db, "household", "H-1") == StagingStatus.VALID
        assert staged_status(db, "building", "B-1") == StagingStatus.INVALID

    def test_rejected_records_are_not_revisited(self, pipeline, stage_rows, db, sample_rows):
        records = stage_rows(PKG, sample_rows)
        survey = records["survey"][0]
        survey.reject("not needed")
        staging_repositories(db)["survey"].update(survey)

        summary = pipeline.run(PKG)

        assert summary.skipped == 1
        assert staged_status(db, "survey", "S-1") == StagingStatus.REJECTED

    def test_summary_dict(self, pipeline, stage_rows, sample_rows):
        stage_rows(PKG, sample_rows)
        data = pipeline.run(PKG).to_dict()

        assert data["package_id"] == PKG
        assert [r["level"] for r in data["results"]] == [1, 2, 3, 4, 5, 6, 7, 8]


class TestCrashIsolation:

    def test_crash_is_recorded_and_later_levels_run(self, db, vocabulary, settings, stage_rows, sample_rows):
        sample_rows["households"][0]["male_count"] = 3
        stage_rows(PKG, sample_rows)
        pipeline = ValidationPipeline(db, vocabulary, settings, validators=[
            DataConsistencyValidator(db, vocabulary, settings),
            CrashingValidator(db, vocabulary, settings),
            HouseholdStructureValidator(db, vocabulary, settings),
        ])
        summary = pipeline.run(PKG)

        assert summary.crashed_validators == ["CrashingValidator"]
        crashed = summary.results[1]
        assert crashed.error_count == -1
        assert crashed.error_message == "boom"
        assert summary.results[2].warning_count == 1
        assert summary.pending == 0


def staged_status(db, family_name, original_id):
    return staging_repositories(db)[family_name].get_by_original_id(PKG, original_id).validation_status
