# -*- coding: utf-8 -*-
"""
Tests for the ImportPackage lifecycle.

Tests cover:
- Happy path Pending -> Completed
- Integrity, schema and vocabulary routing
- Quarantine and terminal states
- Commit reset
- Row round trip
"""

import json

import pytest

from models.import_package import ImportPackage, ImportStatus
from services.exceptions import InvalidStateTransition


@pytest.fixture
def package():
    return ImportPackage(package_id="5b0f6a55-8d3c-4f7e-9d7a-3c4f1f0b6e21", file_name="field.uhc")


def _to_staging(package):
    package.mark_as_imported("user-1")
    package.set_security_validation(True, True)
    package.set_schema_validation(True)
    package.add_validation_results(0, 0)


class TestHappyPath:
    """Test the normal progression."""

    def test_full_lifecycle(self, package):
        _to_staging(package)
        assert package.status == ImportStatus.STAGING

        package.set_duplicate_results(0, 0, 0)
        assert package.status == ImportStatus.READY_TO_COMMIT
        assert package.are_conflicts_resolved

        package.start_commit("user-2")
        package.mark_as_completed(10, 0, 0, "10 imported")

        assert package.status == ImportStatus.COMPLETED
        assert package.committed_by_user_id == "user-2"
        assert package.committed_date is not None
        assert package.success_rate() == 100.0

    def test_conflicts_route_to_review(self, package):
        _to_staging(package)
        package.set_duplicate_results(2, 0, 2)

        assert package.status == ImportStatus.REVIEWING_CONFLICTS
        assert not package.are_conflicts_resolved

        package.mark_conflicts_resolved()
        assert package.status == ImportStatus.READY_TO_COMMIT

    def test_validation_errors_fail_package(self, package):
        package.mark_as_imported("user-1")
        package.add_validation_results(3, 1, json.dumps(["a", "b", "c"]))

        assert package.status == ImportStatus.VALIDATION_FAILED
        assert package.validation_error_count == 3

    def test_incomplete_validation_fails_package(self, package):
        package.mark_as_imported("user-1")
        package.add_validation_results(0, 0, incomplete=True)

        assert package.status == ImportStatus.VALIDATION_FAILED
        assert package.validation_error_count == 0


class TestRouting:
    """Test integrity, schema and vocabulary outcomes."""

    def test_bad_checksum_fails_validation(self, package):
        package.mark_as_imported("user-1")
        package.set_security_validation(False, True)

        assert package.status == ImportStatus.VALIDATION_FAILED
        assert not package.is_checksum_valid

    def test_bad_schema_fails_validation(self, package):
        package.mark_as_imported("user-1")
        package.set_schema_validation(False, "2.0.0")

        assert package.status == ImportStatus.VALIDATION_FAILED
        assert package.form_schema_version == "2.0.0"

    def test_vocabulary_incompatible_quarantines(self, package):
        package.mark_as_imported("user-1")
        package.set_vocabulary_compatibility('{"gender": "2.0.0"}', False, False, "gender major")

        assert package.status == ImportStatus.QUARANTINED
        assert "gender major" in package.error_message
        assert package.vocabulary_version_map() == {"gender": "2.0.0"}

    def test_quarantined_package_can_only_be_cancelled(self, package):
        package.quarantine("suspicious")

        with pytest.raises(InvalidStateTransition):
            package.start_validation()

        package.cancel("rejected by supervisor")
        assert package.status == ImportStatus.CANCELLED
        assert "[Cancelled]: rejected by supervisor" in package.processing_notes


class TestTerminalStates:
    """Test states that cannot move on."""

    def test_completed_cannot_be_cancelled(self, package):
        _to_staging(package)
        package.set_duplicate_results(0, 0, 0)
        package.start_commit("user-2")
        package.mark_as_completed(1, 0, 0)

        with pytest.raises(InvalidStateTransition):
            package.cancel("too late")

    def test_cannot_commit_from_pending(self, package):
        with pytest.raises(InvalidStateTransition) as exc:
            package.start_commit("user-2")
        assert exc.value.current == ImportStatus.PENDING

    def test_failed_commit_can_be_reset(self, package):
        _to_staging(package)
        package.set_duplicate_results(0, 0, 0)
        package.start_commit("user-2")
        package.mark_as_failed("boom", failed_entity_ids=["x"])

        assert package.status == ImportStatus.FAILED
        assert package.failed_entity_ids == ["x"]

        package.reset_commit("retry after fix")
        assert package.status == ImportStatus.READY_TO_COMMIT
        assert package.commit_started_at is None

    def test_terminal_flags(self):
        assert ImportStatus.COMPLETED.is_terminal
        assert ImportStatus.CANCELLED.is_terminal
        assert not ImportStatus.REVIEWING_CONFLICTS.is_terminal


class TestSerialization:
    """Test to_row / from_row."""

    def test_round_trip(self, package):
        _to_staging(package)
        package.set_duplicate_results(1, 0, 1)
        package.failed_entity_ids = ["a", "b"]

        restored = ImportPackage.from_row(package.to_row())

        assert restored.status == ImportStatus.REVIEWING_CONFLICTS
        assert restored.failed_entity_ids == ["a", "b"]
        assert restored.is_checksum_valid is True
        assert restored.imported_date == package.imported_date

    def test_package_number_format(self, package):
        prefix, year, number = package.package_number.split("-")
        assert prefix == "PKG"
        assert len(year) == 4
        assert len(number) == 4

    def test_success_rate_without_outcome(self, package):
        assert package.success_rate() == 0.0
