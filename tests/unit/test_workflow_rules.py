import pytest

from patientflow.domain.errors import StateError, ValidationError
from patientflow.domain.workflow import (
    DEFAULT_NEXT,
    QUEUE_STATIONS,
    START_TRANSITION,
    TRANSITIONS,
    QueuePhase,
    Station,
    VisitState,
    allowed_transitions,
    normalize_transition_name,
    parse_station,
    placement,
    plan_transition,
    station_for,
)


def test_every_state_has_exactly_one_station() -> None:
    for state in VisitState:
        assert isinstance(station_for(state), Station)


def test_opd_happy_path_moves_through_stations() -> None:
    state = VisitState.REGISTERED.value
    path = [
        ("check_in", Station.VITALS),
        ("start_vitals", Station.VITALS),
        ("finish_vitals", Station.DOCTOR),
        ("start_consultation", Station.DOCTOR),
        ("send_to_pharmacy", Station.PHARMACY),
        ("start_pharmacy", Station.PHARMACY),
        ("send_to_billing", Station.BILLING),
        ("start_billing", Station.BILLING),
        ("discharge", Station.EXIT),
    ]
    for name, station in path:
        plan = plan_transition(state, name)
        assert plan.target_station == station
        state = plan.target.value
    assert state == VisitState.COMPLETED.value


def test_camel_case_transition_names_are_accepted() -> None:
    assert normalize_transition_name("sendToPharmacy") == "send_to_pharmacy"
    assert normalize_transition_name("checkIn") == "check_in"
    assert normalize_transition_name(" discharge ") == "discharge"


def test_unknown_transition_is_a_validation_error() -> None:
    with pytest.raises(ValidationError):
        normalize_transition_name("teleport")
    with pytest.raises(ValidationError):
        plan_transition(VisitState.REGISTERED.value, "")


def test_illegal_transition_lists_allowed_moves() -> None:
    with pytest.raises(StateError) as exc_info:
        plan_transition(VisitState.WAITING_VITALS.value, "discharge")
    details = exc_info.value.details
    assert details["state"] == "waiting_vitals"
    assert "start_vitals" in details["allowed"]
    assert "cancel" in details["allowed"]


def test_terminal_states_allow_nothing() -> None:
    for state in (VisitState.COMPLETED, VisitState.CANCELLED):
        assert allowed_transitions(state) == []
        with pytest.raises(StateError):
            plan_transition(state.value, "cancel")


def test_pharmacy_and_lab_complete_through_service() -> None:
    with pytest.raises(StateError):
        plan_transition(VisitState.WAITING_PHARMACY.value, "discharge")
    assert plan_transition(VisitState.IN_PHARMACY.value, "discharge").closes_visit
    assert plan_transition(VisitState.IN_LAB.value, "discharge").closes_visit


def test_pause_stays_on_station() -> None:
    for state, target in TRANSITIONS["pause"].items():
        plan = plan_transition(state.value, "pause")
        assert not plan.changes_station
        assert plan.source_phase == QueuePhase.IN_PROGRESS
        assert plan.target_phase == QueuePhase.WAITING
        assert target == plan.target


def test_start_transitions_begin_service_at_their_station() -> None:
    for station, name in START_TRANSITION.items():
        (source, target), = TRANSITIONS[name].items()
        assert placement(source) == (station, QueuePhase.WAITING)
        assert placement(target) == (station, QueuePhase.IN_PROGRESS)


def test_default_routes_leave_the_station() -> None:
    for state, name in DEFAULT_NEXT.items():
        assert plan_transition(state.value, name).changes_station


def test_parse_station() -> None:
    assert parse_station(" Doctor ") == Station.DOCTOR
    assert Station.REGISTRATION not in QUEUE_STATIONS
    with pytest.raises(ValidationError):
        parse_station("radiology")
