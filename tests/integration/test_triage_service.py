from __future__ import annotations

from datetime import date

import pytest

from patientflow.application.events import TRIAGE_RECORDED
from patientflow.domain.errors import NotFoundError, StateError, ValidationError


def _emergency_visit(container, name: str = "Ali") -> int:
    result = container.identity_service.register_patient(
        {
            "first_name": name,
            "last_name": "Raza",
            "dob": date(1975, 7, 7),
            "gender": "male",
            "phone": "03125550000",
            "visit": {"care_setting": "emergency", "chief_complaint": "Chest pain"},
        }
    )
    return result.visit_id


def test_classify_is_side_effect_free(container) -> None:
    result = container.triage_service.classify(
        {"complaint_id": "chest_pain", "observed_ids": ["cp_7", "cp_4"]}
    )

    assert result.level == 2
    assert result.name == "Very Urgent"
    assert result.color == "orange"
    assert result.sla_minutes == 10
    assert result.priority == "emergency"
    assert result.discriminator_id == "cp_4"
    with container.session_factory() as session:
        assert container.triage_repo.list_for_visit(session, 1) == []


def test_classify_validates_input(container) -> None:
    with pytest.raises(ValidationError):
        container.triage_service.classify({"complaint_id": ""})
    with pytest.raises(ValidationError):
        container.triage_service.classify({"complaint_id": "chest_pain", "vitals": {"oxygen_saturation": 140}})
    with pytest.raises(NotFoundError):
        container.triage_service.classify({"complaint_id": "toothache"})


def test_record_raises_visit_and_queue_priority(container, clock) -> None:
    routine = _emergency_visit(container, "Early")
    container.workflow_service.advance_visit(routine, "fast_track")
    clock.advance(minutes=3)
    triaged = _emergency_visit(container, "Late")
    container.workflow_service.advance_visit(triaged, "fast_track")
    enqueued_at = container.queue_service.list_queue("doctor")[1].enqueued_at
    events = []
    container.event_bus.subscribe(TRIAGE_RECORDED, events.append)

    assessment = container.triage_service.record(
        triaged,
        {
            "complaint_id": "shortness_of_breath",
            "observed_ids": [],
            "vitals": {"oxygen_saturation": 86, "consciousness": "alert"},
            "assessed_by": "triage.nurse",
        },
    )

    assert assessment.level == 2
    assert assessment.reason == "Critical Vital Sign: Low SpO2"
    assert assessment.visit_id == triaged
    assert assessment.assessed_by == "triage.nurse"

    visit = container.workflow_service.get_visit(triaged)
    assert visit.priority == "emergency"
    assert visit.triage_level == 2
    assert visit.triage_sla_minutes == 10

    queue = container.queue_service.list_queue("doctor")
    assert [e.visit_id for e in queue] == [triaged, routine]
    assert queue[0].priority == "emergency"
    assert queue[0].enqueued_at == enqueued_at

    assert [e.payload["level"] for e in events] == [2]
    assert [a.id for a in container.triage_service.list_assessments(triaged)] == [assessment.id]


def test_record_never_lowers_priority(container) -> None:
    result = container.identity_service.register_patient(
        {
            "first_name": "Nadia",
            "last_name": "Shah",
            "dob": date(1999, 9, 9),
            "gender": "female",
            "phone": "03007778888",
            "visit": {"priority": "emergency"},
        }
    )

    assessment = container.triage_service.record(result.visit_id, {"complaint_id": "abdominal_pain"})

    assert assessment.level == 5
    assert assessment.priority == "routine"
    assert container.workflow_service.get_visit(result.visit_id).priority == "emergency"


def test_record_rejects_closed_or_missing_visit(container) -> None:
    visit_id = _emergency_visit(container)
    container.workflow_service.advance_visit(visit_id, "cancel")

    with pytest.raises(StateError):
        container.triage_service.record(visit_id, {"complaint_id": "head_injury"})
    with pytest.raises(NotFoundError):
        container.triage_service.record(9999, {"complaint_id": "head_injury"})


def test_list_complaints(container) -> None:
    complaints = {c.id: c for c in container.triage_service.list_complaints()}

    assert set(complaints) == {"chest_pain", "abdominal_pain", "head_injury", "shortness_of_breath"}
    assert complaints["chest_pain"].discriminators[0].id == "cp_1"
    assert complaints["chest_pain"].discriminators[0].level == 1
