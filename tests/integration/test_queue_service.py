from __future__ import annotations

from datetime import date

import pytest

from patientflow.domain.errors import NotFoundError, StateError, ValidationError


def _waiting_at_doctor(container, name: str, priority: str) -> int:
    result = container.identity_service.register_patient(
        {
            "first_name": name,
            "last_name": "Test",
            "dob": date(1980, 2, 2),
            "gender": "female",
            "phone": "03004445555",
            "visit": {"priority": priority},
        }
    )
    container.workflow_service.advance_visit(result.visit_id, "fast_track")
    return result.visit_id


def _queue_ids(container, station: str = "doctor") -> list[int]:
    return [entry.visit_id for entry in container.queue_service.list_queue(station)]


def test_call_next_orders_by_priority_then_arrival(container, clock) -> None:
    a = _waiting_at_doctor(container, "A", "routine")
    clock.advance(minutes=1)
    b = _waiting_at_doctor(container, "B", "emergency")
    clock.advance(minutes=1)
    c = _waiting_at_doctor(container, "C", "urgent")
    clock.advance(minutes=5)

    assert _queue_ids(container) == [b, c, a]

    queue = container.queue_service
    called = [queue.call_next("doctor", actor="dr.smith") for _ in range(3)]

    assert [entry.visit_id for entry in called] == [b, c, a]
    assert all(entry.status == "in_progress" for entry in called)
    assert called[0].assigned_to == "dr.smith"
    assert called[0].wait_minutes == 6
    assert container.workflow_service.get_visit(b).state == "in_consultation"
    assert queue.call_next("doctor") is None


def test_call_next_on_empty_queue(container) -> None:
    assert container.queue_service.call_next("pharmacy") is None


def test_station_names_are_validated(container) -> None:
    with pytest.raises(ValidationError):
        container.queue_service.list_queue("radiology")
    with pytest.raises(ValidationError):
        container.queue_service.call_next("registration")


def test_hold_and_release_keep_enqueue_order(container, clock) -> None:
    first = _waiting_at_doctor(container, "First", "routine")
    clock.advance(minutes=1)
    second = _waiting_at_doctor(container, "Second", "routine")
    queue = container.queue_service
    entry_id = queue.list_queue("doctor")[0].id

    held = queue.hold(entry_id, actor="nurse")
    assert held.status == "on_hold"
    assert held.held_at == clock.now

    clock.advance(minutes=10)
    assert queue.call_next("doctor").visit_id == second

    released = queue.release(entry_id)
    assert released.status == "waiting"
    assert released.enqueued_at == held.enqueued_at
    assert queue.call_next("doctor").visit_id == first


def test_release_restores_position_ahead_of_later_arrivals(container, clock) -> None:
    early = _waiting_at_doctor(container, "Early", "urgent")
    clock.advance(minutes=1)
    late = _waiting_at_doctor(container, "Late", "urgent")
    queue = container.queue_service
    early_entry = queue.list_queue("doctor")[0].id

    queue.hold(early_entry)
    assert [e.visit_id for e in queue.list_queue("doctor")] == [early, late]
    queue.release(early_entry)

    assert queue.call_next("doctor").visit_id == early


def test_hold_in_progress_entry_pauses_visit(container) -> None:
    visit_id = _waiting_at_doctor(container, "Paused", "routine")
    queue = container.queue_service
    entry = queue.call_next("doctor")

    held = queue.hold(entry.id)

    assert held.status == "on_hold"
    assert container.workflow_service.get_visit(visit_id).state == "waiting_doctor"
    with pytest.raises(StateError):
        container.workflow_service.advance_visit(visit_id, "start_consultation")
    assert queue.call_next("doctor") is None

    queue.release(entry.id)
    assert queue.call_next("doctor").id == entry.id


def test_release_requires_held_entry(container) -> None:
    _waiting_at_doctor(container, "Waiting", "routine")
    entry_id = container.queue_service.list_queue("doctor")[0].id

    with pytest.raises(StateError):
        container.queue_service.release(entry_id)


def test_complete_uses_station_default_route(container) -> None:
    visit_id = _waiting_at_doctor(container, "Done", "routine")
    queue = container.queue_service
    entry = queue.call_next("doctor")

    completed = queue.complete(entry.id)

    assert completed.status == "completed"
    assert completed.left_at is not None
    assert container.workflow_service.get_visit(visit_id).state == "waiting_billing"
    assert [e.visit_id for e in queue.list_queue("billing")] == [visit_id]


def test_complete_with_explicit_route(container) -> None:
    visit_id = _waiting_at_doctor(container, "Lab", "routine")
    queue = container.queue_service
    entry = queue.call_next("doctor")

    queue.complete(entry.id, next_transition="sendToLab")

    assert container.workflow_service.get_visit(visit_id).state == "waiting_lab"
    lab_entry = queue.call_next("lab")
    queue.complete(lab_entry.id, next_transition="discharge")
    assert container.workflow_service.get_visit(visit_id).state == "completed"
    assert queue.list_queue("lab") == []


def test_complete_must_leave_the_station(container) -> None:
    _waiting_at_doctor(container, "Stay", "routine")
    queue = container.queue_service
    entry = queue.call_next("doctor")

    with pytest.raises(StateError):
        queue.complete(entry.id, next_transition="pause")
    assert queue.list_queue("doctor")[0].status == "in_progress"


def test_complete_refuses_cancellation(container) -> None:
    visit_id = _waiting_at_doctor(container, "Gone", "routine")
    queue = container.queue_service
    entry = queue.call_next("doctor")

    with pytest.raises(StateError):
        queue.complete(entry.id, next_transition="cancel")

    assert queue.list_queue("doctor")[0].status == "in_progress"
    assert container.workflow_service.get_visit(visit_id).state == "in_consultation"

    container.workflow_service.advance_visit(visit_id, "cancel")
    assert container.workflow_service.get_visit(visit_id).state == "cancelled"
    assert queue.list_queue("doctor") == []


def test_complete_requires_in_progress_entry(container) -> None:
    _waiting_at_doctor(container, "Early", "routine")
    queue = container.queue_service
    entry_id = queue.list_queue("doctor")[0].id

    with pytest.raises(StateError):
        queue.complete(entry_id)

    queue.call_next("doctor")
    queue.complete(entry_id)
    with pytest.raises(StateError):
        queue.complete(entry_id)
    with pytest.raises(NotFoundError):
        queue.hold(9999)


def test_queue_stats(container) -> None:
    _waiting_at_doctor(container, "One", "routine")
    _waiting_at_doctor(container, "Two", "urgent")
    queue = container.queue_service
    queue.call_next("doctor")

    stats = {item.station: item for item in queue.queue_stats()}

    assert list(stats) == ["vitals", "doctor", "pharmacy", "lab", "billing"]
    assert (stats["doctor"].waiting, stats["doctor"].in_progress, stats["doctor"].on_hold) == (1, 1, 0)
    assert stats["vitals"].waiting == 0
