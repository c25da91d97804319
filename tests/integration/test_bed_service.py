from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import date

import pytest

from patientflow.bootstrap.startup import seed_wards
from patientflow.domain.errors import ConflictError, NotFoundError, StateError, ValidationError


@pytest.fixture
def beds(container):
    seed_wards(container.session_factory)
    return container.bed_service


def _patient(container, name: str = "Imran", visit: dict | None = None):
    payload = {
        "first_name": name,
        "last_name": "Malik",
        "dob": date(1968, 3, 3),
        "gender": "male",
        "phone": "03331112222",
    }
    if visit is not None:
        payload["visit"] = visit
    return container.identity_service.register_patient(payload)


def _request(beds, patient_id: int, **overrides):
    payload = {
        "patient_id": patient_id,
        "department": "Cardiology",
        "requesting_doctor": "Dr. Aslam",
        "diagnosis": "Unstable angina",
    }
    payload.update(overrides)
    return beds.create_admission_request(payload)


def _first_bed(beds, ward_id: int = 1) -> int:
    return beds.list_available_beds(ward_id)[0].id


def test_seeded_wards_report_occupancy(beds) -> None:
    wards = beds.list_wards()

    assert [w.code for w in wards] == ["w1", "w2", "w3", "w4"]
    icu = wards[3]
    assert icu.ward_type == "icu"
    assert (icu.total_beds, icu.available, icu.occupied) == (6, 6, 0)
    assert len(beds.list_available_beds(wards[2].id)) == 5
    with pytest.raises(NotFoundError):
        beds.list_available_beds(999)


def test_seed_is_idempotent(container, beds) -> None:
    assert seed_wards(container.session_factory) == 0
    assert seed_wards(container.session_factory, only_if_empty=False) == 0
    assert sum(w.total_beds for w in beds.list_wards()) == 31


def test_admission_priority_resolution(container, beds) -> None:
    plain = _request(beds, _patient(container, "Plain").patient_id)
    assert plain.priority == "routine"
    assert plain.status == "pending"

    with_visit = _patient(container, "Visit", visit={"priority": "urgent"})
    from_visit = _request(beds, with_visit.patient_id, visit_id=with_visit.visit_id)
    assert from_visit.priority == "urgent"

    triaged = _request(
        beds,
        _patient(container, "Triaged").patient_id,
        triage={"complaint_id": "chest_pain", "observed_ids": ["cp_2"]},
    )
    assert triaged.priority == "emergency"
    with container.session_factory() as session:
        (assessment,) = container.triage_repo.list_for_admission(session, triaged.id)
        assert assessment.level == 1
        assert assessment.discriminator_id == "cp_2"

    pending = beds.list_pending_admission_requests()
    assert [r.id for r in pending] == [triaged.id, from_visit.id, plain.id]


def test_admission_request_validation(container, beds) -> None:
    owner = _patient(container, "Owner", visit={})
    other = _patient(container, "Other")

    with pytest.raises(ValidationError):
        _request(beds, other.patient_id, diagnosis="  ")
    with pytest.raises(ValidationError):
        _request(beds, other.patient_id, visit_id=owner.visit_id)
    with pytest.raises(NotFoundError):
        _request(beds, 999)
    with pytest.raises(NotFoundError):
        _request(beds, other.patient_id, visit_id=999)


def test_assign_bed_admits_request(container, beds) -> None:
    request = _request(beds, _patient(container).patient_id)
    bed_id = _first_bed(beds)

    result = beds.assign_bed(request.id, bed_id, actor="admissions")

    assert result.request.status == "admitted"
    assert result.request.bed_id == bed_id
    assert result.request.resolved_at is not None
    assert result.bed.status == "occupied"
    assert result.bed.version == 2
    assert bed_id not in [b.id for b in beds.list_available_beds(1)]
    assert beds.list_wards()[0].occupied == 1
    assert beds.list_pending_admission_requests() == []

    with pytest.raises(StateError):
        beds.assign_bed(request.id, _first_bed(beds))


def test_taken_bed_is_a_conflict(container, beds) -> None:
    first = _request(beds, _patient(container, "First").patient_id)
    second = _request(beds, _patient(container, "Second").patient_id)
    bed_id = _first_bed(beds)
    beds.assign_bed(first.id, bed_id)

    with pytest.raises(ConflictError):
        beds.assign_bed(second.id, bed_id)

    assert beds.get_admission_request(second.id).status == "pending"
    with pytest.raises(NotFoundError):
        beds.assign_bed(second.id, 9999)
    with pytest.raises(NotFoundError):
        beds.assign_bed(9999, bed_id)


def test_concurrent_assignment_has_one_winner(container, beds) -> None:
    requests = [_request(beds, _patient(container, f"P{n}").patient_id).id for n in range(2)]
    bed_id = _first_bed(beds, ward_id=4)
    barrier = threading.Barrier(len(requests))

    def attempt(request_id: int) -> str:
        barrier.wait()
        try:
            beds.assign_bed(request_id, bed_id)
            return "ok"
        except ConflictError:
            return "conflict"

    with ThreadPoolExecutor(max_workers=len(requests)) as pool:
        outcomes = list(pool.map(attempt, requests))

    assert sorted(outcomes) == ["conflict", "ok"]
    statuses = sorted(beds.get_admission_request(r).status for r in requests)
    assert statuses == ["admitted", "pending"]


def test_cancel_admission_request(container, beds) -> None:
    request = _request(beds, _patient(container).patient_id)

    cancelled = beds.cancel_admission_request(request.id)

    assert cancelled.status == "cancelled"
    with pytest.raises(StateError):
        beds.cancel_admission_request(request.id)
    with pytest.raises(StateError):
        beds.assign_bed(request.id, _first_bed(beds))


def test_discharge_cleaning_cycle(container, beds) -> None:
    request = _request(beds, _patient(container).patient_id)
    bed_id = _first_bed(beds)

    with pytest.raises(StateError):
        beds.discharge_admission(request.id)

    beds.assign_bed(request.id, bed_id)
    discharged = beds.discharge_admission(request.id)
    assert discharged.discharged_at is not None
    assert beds.list_wards()[0].cleaning == 1

    with pytest.raises(StateError):
        beds.discharge_admission(request.id)

    cleaned = beds.mark_bed_clean(bed_id)
    assert cleaned.status == "available"
    with pytest.raises(StateError):
        beds.mark_bed_clean(bed_id)

    again = _request(beds, _patient(container, "Next").patient_id)
    assert beds.assign_bed(again.id, bed_id).bed.status == "occupied"


def test_maintenance_blocks_assignment(container, beds) -> None:
    request = _request(beds, _patient(container).patient_id)
    bed_id = _first_bed(beds, ward_id=3)

    assert beds.set_bed_maintenance(bed_id, True).status == "maintenance"
    with pytest.raises(ConflictError):
        beds.assign_bed(request.id, bed_id)

    assert beds.set_bed_maintenance(bed_id, False).status == "available"
    with pytest.raises(StateError):
        beds.set_bed_maintenance(bed_id, False)
    assert beds.assign_bed(request.id, bed_id).request.status == "admitted"
