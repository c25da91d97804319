from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import date

import pytest
from sqlalchemy import select

from patientflow.application.events import VISIT_TRANSITION
from patientflow.domain.errors import ConflictError, NotFoundError, StateError, ValidationError
from patientflow.infrastructure.db.models_sqlalchemy import QueueEntry


def _open_visit(container, *, priority: str = "routine", first_name: str = "Ahmed") -> int:
    result = container.identity_service.register_patient(
        {
            "first_name": first_name,
            "last_name": "Khan",
            "dob": date(1990, 1, 1),
            "gender": "male",
            "phone": "03001234567",
            "visit": {"priority": priority},
        }
    )
    assert result.visit_id is not None
    return result.visit_id


def _open_entry(container, visit_id: int):
    with container.session_factory() as session:
        entry = container.queue_repo.get_open_for_visit(session, visit_id)
        return None if entry is None else (entry.station, entry.status)


def test_full_outpatient_path(container) -> None:
    workflow = container.workflow_service
    visit_id = _open_visit(container)

    steps = [
        ("checkIn", "waiting_vitals", ("vitals", "waiting")),
        ("start_vitals", "in_vitals", ("vitals", "in_progress")),
        ("finish_vitals", "waiting_doctor", ("doctor", "waiting")),
        ("start_consultation", "in_consultation", ("doctor", "in_progress")),
        ("sendToPharmacy", "waiting_pharmacy", ("pharmacy", "waiting")),
        ("start_pharmacy", "in_pharmacy", ("pharmacy", "in_progress")),
        ("discharge", "completed", None),
    ]
    for transition, state, entry in steps:
        visit = workflow.advance_visit(visit_id, transition, actor="nurse.a")
        assert visit.state == state
        assert _open_entry(container, visit_id) == entry

    assert visit.station == "exit"
    assert visit.closed_at is not None
    assert visit.allowed_transitions == []
    assert visit.version == 1 + len(steps)

    history = workflow.get_visit_history(visit_id)
    assert [h.transition for h in history] == [
        "check_in",
        "start_vitals",
        "finish_vitals",
        "start_consultation",
        "send_to_pharmacy",
        "start_pharmacy",
        "discharge",
    ]
    assert history[0].from_state == "registered"
    assert all(h.actor == "nurse.a" for h in history)


def test_leaving_a_station_completes_the_served_entry(container) -> None:
    workflow = container.workflow_service
    visit_id = _open_visit(container)
    workflow.advance_visit(visit_id, "check_in")
    workflow.advance_visit(visit_id, "start_vitals")
    workflow.advance_visit(visit_id, "finish_vitals")

    with container.session_factory() as session:
        vitals_entry = next(e for e in _entries(session, visit_id) if e.station == "vitals")
        assert vitals_entry.status == "completed"
        assert vitals_entry.left_at is not None


def test_illegal_transition_changes_nothing(container) -> None:
    workflow = container.workflow_service
    visit_id = _open_visit(container)
    workflow.advance_visit(visit_id, "check_in")

    with pytest.raises(StateError):
        workflow.advance_visit(visit_id, "discharge")

    visit = workflow.get_visit(visit_id)
    assert visit.state == "waiting_vitals"
    assert visit.version == 2
    assert len(workflow.get_visit_history(visit_id)) == 1
    assert _open_entry(container, visit_id) == ("vitals", "waiting")


def test_unknown_transition_and_visit(container) -> None:
    workflow = container.workflow_service
    visit_id = _open_visit(container)

    with pytest.raises(ValidationError):
        workflow.advance_visit(visit_id, "teleport")
    with pytest.raises(NotFoundError):
        workflow.advance_visit(9999, "check_in")
    with pytest.raises(NotFoundError):
        workflow.get_visit_history(9999)


def test_cancel_archives_without_completing(container) -> None:
    workflow = container.workflow_service
    visit_id = _open_visit(container)
    workflow.advance_visit(visit_id, "fast_track")
    workflow.advance_visit(visit_id, "start_consultation")

    visit = workflow.advance_visit(visit_id, "cancel")

    assert visit.state == "cancelled"
    assert _open_entry(container, visit_id) is None
    with container.session_factory() as session:
        (entry,) = _entries(session, visit_id)
        assert entry.status == "in_progress"
        assert entry.completed_at is None
        assert entry.left_at is not None


def test_only_one_active_visit_per_patient(container) -> None:
    workflow = container.workflow_service
    visit_id = _open_visit(container)
    patient_id = workflow.get_visit(visit_id).patient_id

    with pytest.raises(ConflictError):
        workflow.open_visit({"patient_id": patient_id})

    workflow.advance_visit(visit_id, "cancel")
    reopened = workflow.open_visit({"patient_id": patient_id, "care_setting": "emergency"})
    assert reopened.id != visit_id
    assert reopened.care_setting == "emergency"

    with pytest.raises(NotFoundError):
        workflow.open_visit({"patient_id": 9999})


def test_list_active_visits_by_station(container) -> None:
    workflow = container.workflow_service
    at_vitals = _open_visit(container, first_name="Ahmed")
    at_doctor = _open_visit(container, first_name="Bilal")
    closed = _open_visit(container, first_name="Sara")
    workflow.advance_visit(at_vitals, "check_in")
    workflow.advance_visit(at_doctor, "fast_track")
    workflow.advance_visit(closed, "cancel")

    assert [v.id for v in workflow.list_active_visits()] == [at_vitals, at_doctor]
    assert [v.id for v in workflow.list_active_visits("vitals")] == [at_vitals]
    assert [v.id for v in workflow.list_active_visits("Doctor")] == [at_doctor]
    assert workflow.list_active_visits("exit") == []
    with pytest.raises(ValidationError):
        workflow.list_active_visits("radiology")


def test_transitions_are_published(container) -> None:
    events = []
    container.event_bus.subscribe(VISIT_TRANSITION, events.append)
    visit_id = _open_visit(container)

    container.workflow_service.advance_visit(visit_id, "check_in", actor="desk")

    (event,) = events
    assert event.entity_id == str(visit_id)
    assert event.actor == "desk"
    assert event.payload["transition"] == "check_in"
    assert event.payload["station"] == "vitals"


def test_concurrent_transitions_on_one_visit_are_serialized(container) -> None:
    workflow = container.workflow_service
    visit_id = _open_visit(container)
    workflow.advance_visit(visit_id, "check_in")
    attempts = 2
    barrier = threading.Barrier(attempts)

    def start_vitals(_: int) -> str:
        barrier.wait()
        try:
            workflow.advance_visit(visit_id, "start_vitals", actor="nurse")
            return "ok"
        except (StateError, ConflictError):
            return "rejected"

    with ThreadPoolExecutor(max_workers=attempts) as pool:
        outcomes = list(pool.map(start_vitals, range(attempts)))

    assert sorted(outcomes) == ["ok", "rejected"]
    assert workflow.get_visit(visit_id).state == "in_vitals"
    assert _open_entry(container, visit_id) == ("vitals", "in_progress")
    assert [h.transition for h in workflow.get_visit_history(visit_id)] == ["check_in", "start_vitals"]
    with container.session_factory() as session:
        open_entries = [e for e in _entries(session, visit_id) if e.left_at is None]
        assert len(open_entries) == 1


def _entries(session, visit_id: int):
    stmt = select(QueueEntry).where(QueueEntry.visit_id == visit_id).order_by(QueueEntry.id)
    return list(session.execute(stmt).scalars())
