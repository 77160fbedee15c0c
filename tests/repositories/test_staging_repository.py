# -*- coding: utf-8 -*-
"""
Tests for the generic staging repository.

Tests cover:
- Insert / read back per family
- Uniqueness of (package, original id)
- Status filters and counts
- Referencing lookups
- Package deletion
"""

import pytest

from models import staging as st
from models.staging import StagingStatus
from repositories.staging_repository import StagingRepository, staging_repositories


@pytest.fixture
def repos(db):
    return staging_repositories(db)


class TestWrites:

    def test_every_family_round_trips(self, repos, stage_rows, sample_rows):
        stage_rows("pkg-1", sample_rows)

        for family in st.COMMIT_ORDER:
            expected = len(sample_rows[family.source_table])
            assert repos[family.name].count_by_package("pkg-1") == expected

    def test_fields_survive_storage(self, stage_rows, staged, sample_rows):
        stage_rows("pkg-1", sample_rows)

        person = staged("person", "pkg-1", "P-1")
        assert person.family_name_arabic == "الخطيب"
        assert person.year_of_birth == 1975
        assert person.original_household_id == "H-1"

        relation = staged("person_property_relation", "pkg-1", "R-1")
        assert relation.ownership_share == 100.0
        assert relation.original_property_unit_id == "U-1"

    def test_same_original_id_is_stored_once(self, repos):
        repo = repos["person"]
        repo.add(st.StagingPerson(import_package_id="pkg-1", original_entity_id="P-1",
                                  first_name_arabic="first"))
        repo.add(st.StagingPerson(import_package_id="pkg-1", original_entity_id="P-1",
                                  first_name_arabic="second"))

        assert repo.count_by_package("pkg-1") == 1
        assert repo.get_by_original_id("pkg-1", "P-1").first_name_arabic == "first"

    def test_add_many_counts_only_inserted_rows(self, repos):
        repo = repos["person"]
        repo.add(st.StagingPerson(import_package_id="pkg-1", original_entity_id="P-1"))

        inserted = repo.add_many([
            st.StagingPerson(import_package_id="pkg-1", original_entity_id="P-1"),
            st.StagingPerson(import_package_id="pkg-1", original_entity_id="P-2"),
        ])

        assert inserted == 1
        assert repo.count_by_package("pkg-1") == 2
        assert repo.add_many([]) == 0

    def test_same_original_id_in_other_package(self, repos):
        repo = repos["person"]
        repo.add(st.StagingPerson(import_package_id="pkg-1", original_entity_id="P-1"))
        repo.add(st.StagingPerson(import_package_id="pkg-2", original_entity_id="P-1"))

        assert repo.package_ids() == {"pkg-1", "pkg-2"}

    def test_update_persists_findings(self, repos, stage_rows, sample_rows):
        records = stage_rows("pkg-1", sample_rows)
        person = records["person"][0]
        person.add_findings(errors=["Invalid Gender: 9"])
        repos["person"].update(person)

        stored = repos["person"].get_by_id(person.id)
        assert stored.validation_status == StagingStatus.INVALID
        assert stored.validation_errors == ["Invalid Gender: 9"]


class TestReads:

    def test_status_filters(self, repos, stage_rows, sample_rows):
        records = stage_rows("pkg-1", sample_rows)
        first, second = records["person"]
        first.add_findings(errors=["bad"])
        second.mark_valid()
        second.approve()
        repos["person"].update_many([first, second])

        repo = repos["person"]
        assert [r.original_entity_id for r in repo.get_committable("pkg-1")] == ["P-2"]
        assert len(repo.get_for_validation("pkg-1")) == 1
        counts = repo.count_by_status("pkg-1")
        assert counts[StagingStatus.INVALID] == 1
        assert counts[StagingStatus.APPROVED] == 1
        assert counts[StagingStatus.COMMITTED] == 0

    def test_original_ids_exclude_rejected(self, repos, stage_rows, sample_rows):
        records = stage_rows("pkg-1", sample_rows)
        rejected = records["person"][1]
        rejected.reject("duplicate")
        repos["person"].update(rejected)

        assert repos["person"].original_ids("pkg-1") == {"P-1"}
        assert repos["person"].original_ids("pkg-1", exclude=()) == {"P-1", "P-2"}

    def test_find_referencing(self, repos, stage_rows, sample_rows):
        stage_rows("pkg-1", sample_rows)

        members = repos["person"].find_referencing("pkg-1", "original_household_id", "H-1")
        assert {p.original_entity_id for p in members} == {"P-1", "P-2"}

    def test_find_referencing_unknown_field(self, repos):
        with pytest.raises(ValueError):
            repos["person"].find_referencing("pkg-1", "shoe_size", "42")

    def test_count_with_warnings(self, repos, stage_rows, sample_rows):
        records = stage_rows("pkg-1", sample_rows)
        person = records["person"][0]
        person.add_findings(warnings=["odd"])
        repos["person"].update(person)

        assert repos["person"].count_with_warnings("pkg-1") == 1


class TestDelete:

    def test_delete_by_package_leaves_other_packages(self, db, stage_rows, sample_rows):
        stage_rows("pkg-1", sample_rows)
        stage_rows("pkg-2", sample_rows)
        repo = StagingRepository(db, st.PERSON)

        assert repo.delete_by_package("pkg-1") == 2
        assert repo.count_by_package("pkg-1") == 0
        assert repo.count_by_package("pkg-2") == 2
