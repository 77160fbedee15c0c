# -*- coding: utf-8 -*-
"""
Tests for staged records and entity families.

Tests cover:
- Status transitions (allowed, forbidden, self loops)
- Findings write-back (errors make a record Invalid, warnings never do)
- Approval, commit, reject and skip
- Row serialization
- Entity family descriptors
"""

import pytest

from models import staging as st
from models.staging import StagingPerson, StagingStatus, can_transition
from services.exceptions import InvalidStateTransition


@pytest.fixture
def person():
    return StagingPerson(
        import_package_id="pkg-1",
        original_entity_id="P-1",
        family_name_arabic="الخطيب",
        first_name_arabic="أحمد",
        father_name_arabic="محمود",
        national_id="01020304050",
    )


class TestTransitions:
    """Test the staged record state machine."""

    def test_pending_can_become_valid_or_invalid(self):
        assert can_transition(StagingStatus.PENDING, StagingStatus.VALID)
        assert can_transition(StagingStatus.PENDING, StagingStatus.INVALID)

    def test_committed_is_final(self):
        for target in StagingStatus:
            assert not can_transition(StagingStatus.COMMITTED, target)

    def test_pending_cannot_be_approved_directly(self):
        assert not can_transition(StagingStatus.PENDING, StagingStatus.APPROVED)

    def test_self_loop_only_for_validation_statuses(self):
        assert can_transition(StagingStatus.INVALID, StagingStatus.INVALID)
        assert not can_transition(StagingStatus.APPROVED, StagingStatus.APPROVED)

    def test_illegal_move_raises(self, person):
        with pytest.raises(InvalidStateTransition) as exc:
            person.mark_committed("server-1")
        assert "Pending" in str(exc.value)
        assert exc.value.target == StagingStatus.COMMITTED


class TestFindings:
    """Test add_findings write-back."""

    def test_error_makes_record_invalid(self, person):
        person.add_findings(errors=["FamilyNameArabic is required"])

        assert person.validation_status == StagingStatus.INVALID
        assert person.validation_errors == ["FamilyNameArabic is required"]

    def test_warning_moves_pending_to_valid(self, person):
        person.add_findings(warnings=["YearOfBirth 1850 seems invalid"])

        assert person.validation_status == StagingStatus.VALID
        assert person.has_warnings

    def test_warning_keeps_invalid_record_invalid(self, person):
        person.add_findings(errors=["Invalid Gender: 7"])
        person.add_findings(warnings=["NationalId contains non-digit characters"])

        assert person.validation_status == StagingStatus.INVALID
        assert len(person.validation_errors) == 1
        assert len(person.validation_warnings) == 1

    def test_findings_accumulate(self, person):
        person.add_findings(warnings=["first"])
        person.add_findings(warnings=["second"], errors=["third"])

        assert person.validation_warnings == ["first", "second"]
        assert person.validation_errors == ["third"]

    def test_empty_messages_ignored(self, person):
        person.add_findings(errors=[""], warnings=[None])

        assert person.validation_status == StagingStatus.PENDING
        assert not person.validation_errors

    def test_error_revokes_approval(self, person):
        person.mark_valid()
        person.approve()
        person.add_findings(errors=["late error"])

        assert person.validation_status == StagingStatus.INVALID
        assert person.is_approved_for_commit is False

    def test_mark_valid_refuses_records_with_errors(self, person):
        person.add_findings(errors=["bad"])
        with pytest.raises(ValueError):
            person.mark_valid()

    def test_reset_validation_clears_findings(self, person):
        person.add_findings(errors=["bad"], warnings=["odd"])
        person.reset_validation()

        assert person.validation_status == StagingStatus.PENDING
        assert person.validation_errors == []
        assert person.validation_warnings == []


class TestLifecycle:
    """Test approval, commit and exclusion."""

    def test_approve_then_commit(self, person):
        person.mark_valid()
        person.approve()
        assert person.is_committable

        person.mark_committed("server-1")
        assert person.validation_status == StagingStatus.COMMITTED
        assert person.committed_entity_id == "server-1"
        assert not person.is_committable

    def test_commit_requires_server_id(self, person):
        person.mark_valid()
        person.approve()
        with pytest.raises(ValueError):
            person.mark_committed("")

    def test_reject_records_reason(self, person):
        person.mark_valid()
        person.reject("merged into P-9")

        assert person.validation_status == StagingStatus.REJECTED
        assert "Rejected: merged into P-9" in person.validation_warnings

    def test_skipped_record_can_be_revalidated(self, person):
        person.add_findings(errors=["bad"])
        person.skip("excluded at approval")
        person.reset_validation()

        assert person.validation_status == StagingStatus.PENDING


class TestSerialization:
    """Test to_row / from_row."""

    def test_round_trip_keeps_findings_and_fields(self, person):
        person.add_findings(warnings=["تحذير"])
        row = person.to_row()

        assert row["validation_status"] == "Valid"
        assert row["is_approved_for_commit"] == 0

        restored = StagingPerson.from_row(row)
        assert restored.validation_warnings == ["تحذير"]
        assert restored.national_id == "01020304050"
        assert restored.validation_status == StagingStatus.VALID

    def test_malformed_findings_column_is_kept_as_text(self, person):
        row = person.to_row()
        row["validation_errors"] = "not json"

        restored = StagingPerson.from_row(row)
        assert restored.validation_errors == ["not json"]

    def test_data_excludes_header(self, person):
        data = person.data()

        assert "national_id" in data
        assert "validation_status" not in data
        assert "import_package_id" not in data


class TestEntityFamilies:
    """Test family descriptors."""

    def test_commit_order(self):
        names = [f.name for f in st.COMMIT_ORDER]
        assert names == [
            "building", "property_unit", "household", "person",
            "person_property_relation", "evidence", "claim", "survey",
        ]

    def test_references_point_backwards_unless_deferred(self):
        for family in st.COMMIT_ORDER:
            for fk in family.foreign_keys:
                parent = st.get_family(fk.family)
                if fk.deferred:
                    assert parent.commit_order > family.commit_order
                else:
                    assert parent.commit_order < family.commit_order

    def test_production_columns_drop_original_prefix(self):
        columns = st.PERSON_PROPERTY_RELATION.production_columns()

        assert "person_id" in columns
        assert "property_unit_id" in columns
        assert "original_person_id" not in columns

    def test_evidence_attachment_path_is_not_a_production_column(self):
        assert "attachment_path" not in st.EVIDENCE.production_columns()

    def test_composite_building_code(self):
        building = st.StagingBuilding(
            governorate_code="01", district_code="02", sub_district_code="03",
            community_code="004", neighborhood_code="005", building_number="00001",
        )
        assert building.composite_code == "01020300400500001"
        assert len(building.composite_code) == 17

    def test_family_of(self, person):
        assert st.family_of(person) is st.PERSON

    def test_unknown_family(self):
        with pytest.raises(KeyError):
            st.get_family("vehicle")
