from __future__ import annotations

import json
from datetime import date

import pytest

from patientflow.bootstrap.startup import seed_wards
from patientflow.domain.errors import ValidationError

REGISTRATION = {
    "first_name": "Hina",
    "last_name": "Qureshi",
    "dob": date(1992, 4, 4),
    "gender": "female",
    "phone": "03451234567",
}


def test_success_result_carries_value(container) -> None:
    api = container.api

    result = api.register_patient(REGISTRATION, actor="desk")

    assert result.ok
    assert result.error is None
    assert result.error_code is None
    assert result.unwrap().mr_number == "MR-2026-0001"
    assert api.search_patients("hina").unwrap()[0].id == result.value.patient_id


def test_failures_are_scoped_to_the_operation(container) -> None:
    api = container.api

    invalid = api.register_patient({"first_name": "Hina"})
    assert not invalid.ok
    assert invalid.value is None
    assert invalid.error_code == "validation_error"
    assert "last_name" in invalid.error.message
    with pytest.raises(ValidationError):
        invalid.unwrap()

    assert api.get_patient(42).error_code == "not_found"
    assert api.call_next("doctor").error_code == "not_found"
    assert api.list_queue("radiology").error_code == "validation_error"

    visit = api.open_visit({"patient_id": api.register_patient(REGISTRATION).value.patient_id}).unwrap()
    illegal = api.advance_visit(visit.id, "discharge")
    assert illegal.error_code == "state_error"
    assert set(illegal.error.details["allowed"]) == {"check_in", "fast_track", "cancel"}
    assert illegal.error.to_dict()["code"] == "state_error"
    assert api.open_visit({"patient_id": visit.patient_id}).error_code == "conflict"


def test_unexpected_errors_propagate(container, monkeypatch) -> None:
    def broken(*_args, **_kwargs):
        raise RuntimeError("database exploded")

    monkeypatch.setattr(container.identity_service, "search_patients", broken)

    with pytest.raises(RuntimeError):
        container.api.search_patients("x")


def test_intake_to_bed_through_the_api(container) -> None:
    api = container.api
    seed_wards(container.session_factory)
    registered = api.register_patient({**REGISTRATION, "visit": {"care_setting": "emergency"}}).unwrap()

    triage = api.record_triage(registered.visit_id, {"complaint_id": "head_injury", "observed_ids": ["hi_1"]}).unwrap()
    assert triage.priority == "emergency"

    api.advance_visit(registered.visit_id, "fast_track").unwrap()
    called = api.call_next("doctor", actor="dr.er").unwrap()
    assert called.visit_id == registered.visit_id
    assert called.priority == "emergency"

    request = api.create_admission_request(
        {
            "patient_id": registered.patient_id,
            "visit_id": registered.visit_id,
            "department": "Neurosurgery",
            "requesting_doctor": "Dr. Er",
            "diagnosis": "Head injury",
        }
    ).unwrap()
    assert request.priority == "emergency"

    icu = next(w for w in api.list_wards().unwrap() if w.ward_type == "icu")
    bed = api.list_available_beds(icu.id).unwrap()[0]
    assigned = api.assign_bed(request.id, bed.id, actor="bed.manager").unwrap()
    assert assigned.bed.status == "occupied"
    assert api.assign_bed(request.id, bed.id).error_code == "state_error"

    api.complete_queue_entry(called.id, "discharge").unwrap()
    assert api.get_visit(registered.visit_id).unwrap().state == "completed"


def test_events_are_written_to_the_audit_log(container) -> None:
    api = container.api
    registered = api.register_patient({**REGISTRATION, "visit": {}}, actor="desk").unwrap()
    api.advance_visit(registered.visit_id, "check_in", actor="desk").unwrap()

    with container.session_factory() as session:
        patient_rows = container.audit_repo.list_for_entity(session, "patient", str(registered.patient_id))
        visit_rows = container.audit_repo.list_for_entity(session, "visit", str(registered.visit_id))
        patient_actions = [(row.action, row.actor) for row in patient_rows]
        visit_payloads = [json.loads(row.payload_json) for row in visit_rows]

    assert patient_actions == [("patient.registered", "desk")]
    assert [p["transition"] for p in visit_payloads] == ["check_in"]
