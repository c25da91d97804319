from datetime import datetime, timedelta

import pytest

from patientflow.domain.beds import BedStatus, validate_bed_transition
from patientflow.domain.constants import Priority, most_severe_priority
from patientflow.domain.errors import StateError
from patientflow.domain.queueing import QueueEntryStatus, validate_entry_transition, wait_minutes


T0 = datetime(2026, 3, 2, 9, 0)


def test_entry_status_moves() -> None:
    validate_entry_transition("waiting", "in_progress")
    validate_entry_transition("in_progress", "on_hold")
    validate_entry_transition("on_hold", "waiting")
    with pytest.raises(StateError):
        validate_entry_transition("in_progress", "waiting")
    with pytest.raises(StateError):
        validate_entry_transition("waiting", "completed")
    with pytest.raises(StateError):
        validate_entry_transition(QueueEntryStatus.COMPLETED.value, "waiting")


def test_wait_minutes_never_negative() -> None:
    assert wait_minutes(T0, T0 + timedelta(minutes=14, seconds=59)) == 14
    assert wait_minutes(T0, T0 - timedelta(minutes=5)) == 0


def test_most_severe_priority() -> None:
    assert most_severe_priority("routine", "emergency", "urgent") == Priority.EMERGENCY
    assert most_severe_priority(None, "") == Priority.ROUTINE


def test_bed_status_moves() -> None:
    validate_bed_transition(BedStatus.AVAILABLE.value, BedStatus.OCCUPIED.value)
    validate_bed_transition(BedStatus.OCCUPIED.value, BedStatus.CLEANING.value)
    validate_bed_transition(BedStatus.CLEANING.value, BedStatus.AVAILABLE.value)
    with pytest.raises(StateError):
        validate_bed_transition(BedStatus.OCCUPIED.value, BedStatus.AVAILABLE.value)
    with pytest.raises(StateError):
        validate_bed_transition(BedStatus.MAINTENANCE.value, BedStatus.OCCUPIED.value)
