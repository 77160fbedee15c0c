# -*- coding: utf-8 -*-
"""
Tests for BuildingAssignment.

Tests cover:
- Transfer state machine
- Retry counting
- Progress and revisit helpers
"""

import json

import pytest

from models.assignment import BuildingAssignment, TransferStatus
from services.exceptions import InvalidStateTransition


@pytest.fixture
def assignment():
    return BuildingAssignment(building_id="b-1", field_collector_id="collector-1",
                              total_property_units=4)


class TestTransferStates:

    def test_transfer_then_synchronize(self, assignment):
        assignment.mark_in_progress()
        assignment.mark_transferred()
        assignment.mark_synchronized()

        assert assignment.transfer_status == TransferStatus.SYNCHRONIZED
        assert assignment.transferred_to_tablet_date is not None
        assert assignment.synchronized_from_tablet_date is not None

    def test_failure_counts_retry(self, assignment):
        assignment.mark_in_progress()
        assignment.mark_failed("device offline")

        assert assignment.transfer_status == TransferStatus.FAILED
        assert assignment.transfer_retry_count == 1
        assert assignment.transfer_error_message == "device offline"

        assignment.reset_to_pending()
        assert assignment.transfer_status == TransferStatus.PENDING
        assert assignment.transfer_retry_count == 1

    def test_cannot_transfer_without_starting(self, assignment):
        with pytest.raises(InvalidStateTransition):
            assignment.mark_transferred()

    def test_cancel_deactivates(self, assignment):
        assignment.cancel("building demolished")

        assert assignment.transfer_status == TransferStatus.CANCELLED
        assert assignment.is_active is False
        assert "building demolished" in assignment.notes

    def test_synchronized_is_terminal(self, assignment):
        assignment.mark_in_progress()
        assignment.mark_transferred()
        assignment.mark_synchronized()

        with pytest.raises(InvalidStateTransition):
            assignment.cancel()

    def test_reassign_restarts_transfer(self, assignment):
        assignment.mark_in_progress()
        assignment.mark_failed("timeout")
        assignment.reassign("collector-2")

        assert assignment.transfer_status == TransferStatus.PENDING
        assert assignment.field_collector_id == "collector-2"
        assert assignment.transfer_retry_count == 0


class TestProgress:

    def test_completion_percentage(self, assignment):
        assignment.update_progress(3)
        assert assignment.completion_percentage == 75.0

    def test_progress_bounds(self, assignment):
        with pytest.raises(ValueError):
            assignment.update_progress(-1)
        with pytest.raises(ValueError):
            assignment.update_progress(5)

    def test_revisit_units(self, assignment):
        assignment.units_for_revisit = json.dumps(["u-1", "u-2"])
        assert assignment.revisit_units == ["u-1", "u-2"]

        assignment.units_for_revisit = "garbage"
        assert assignment.revisit_units == []

    def test_row_round_trip(self, assignment):
        assignment.mark_in_progress()
        restored = BuildingAssignment.from_row(assignment.to_row())

        assert restored.transfer_status == TransferStatus.IN_PROGRESS
        assert restored.is_active is True
        assert restored.last_transfer_attempt_date == assignment.last_transfer_attempt_date
