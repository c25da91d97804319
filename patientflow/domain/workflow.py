"""Visit lifecycle across hospital stations.

The transition table below is the single place where legal moves are
defined. Station membership and queue-entry status are derived from the
visit state, never stored next to it.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from enum import StrEnum
from typing import Final

from patientflow.domain.errors import StateError, ValidationError


class Station(StrEnum):
    REGISTRATION = "registration"
    VITALS = "vitals"
    DOCTOR = "doctor"
    PHARMACY = "pharmacy"
    LAB = "lab"
    BILLING = "billing"
    EXIT = "exit"

    @classmethod
    def values(cls) -> list[str]:
        return [item.value for item in cls]


class VisitState(StrEnum):
    REGISTERED = "registered"
    WAITING_VITALS = "waiting_vitals"
    IN_VITALS = "in_vitals"
    WAITING_DOCTOR = "waiting_doctor"
    IN_CONSULTATION = "in_consultation"
    WAITING_PHARMACY = "waiting_pharmacy"
    IN_PHARMACY = "in_pharmacy"
    WAITING_LAB = "waiting_lab"
    IN_LAB = "in_lab"
    WAITING_BILLING = "waiting_billing"
    IN_BILLING = "in_billing"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    @classmethod
    def values(cls) -> list[str]:
        return [item.value for item in cls]


class QueuePhase(StrEnum):
    WAITING = "waiting"
    IN_PROGRESS = "in_progress"


TERMINAL_STATES: Final = frozenset({VisitState.COMPLETED, VisitState.CANCELLED})

# state -> (station, queue phase or None when the state has no queue entry)
_PLACEMENT: Final[dict[VisitState, tuple[Station, QueuePhase | None]]] = {
    VisitState.REGISTERED: (Station.REGISTRATION, None),
    VisitState.WAITING_VITALS: (Station.VITALS, QueuePhase.WAITING),
    VisitState.IN_VITALS: (Station.VITALS, QueuePhase.IN_PROGRESS),
    VisitState.WAITING_DOCTOR: (Station.DOCTOR, QueuePhase.WAITING),
    VisitState.IN_CONSULTATION: (Station.DOCTOR, QueuePhase.IN_PROGRESS),
    VisitState.WAITING_PHARMACY: (Station.PHARMACY, QueuePhase.WAITING),
    VisitState.IN_PHARMACY: (Station.PHARMACY, QueuePhase.IN_PROGRESS),
    VisitState.WAITING_LAB: (Station.LAB, QueuePhase.WAITING),
    VisitState.IN_LAB: (Station.LAB, QueuePhase.IN_PROGRESS),
    VisitState.WAITING_BILLING: (Station.BILLING, QueuePhase.WAITING),
    VisitState.IN_BILLING: (Station.BILLING, QueuePhase.IN_PROGRESS),
    VisitState.COMPLETED: (Station.EXIT, None),
    VisitState.CANCELLED: (Station.EXIT, None),
}

CANCEL = "cancel"
PAUSE = "pause"

_S = VisitState

TRANSITIONS: Final[dict[str, dict[VisitState, VisitState]]] = {
    "check_in": {_S.REGISTERED: _S.WAITING_VITALS},
    "fast_track": {_S.REGISTERED: _S.WAITING_DOCTOR},
    "start_vitals": {_S.WAITING_VITALS: _S.IN_VITALS},
    "finish_vitals": {_S.IN_VITALS: _S.WAITING_DOCTOR},
    "start_consultation": {_S.WAITING_DOCTOR: _S.IN_CONSULTATION},
    "send_to_lab": {_S.IN_CONSULTATION: _S.WAITING_LAB},
    "send_to_pharmacy": {
        _S.IN_CONSULTATION: _S.WAITING_PHARMACY,
        _S.IN_LAB: _S.WAITING_PHARMACY,
    },
    "return_to_doctor": {_S.IN_LAB: _S.WAITING_DOCTOR},
    "send_to_billing": {
        _S.IN_CONSULTATION: _S.WAITING_BILLING,
        _S.IN_PHARMACY: _S.WAITING_BILLING,
        _S.IN_LAB: _S.WAITING_BILLING,
    },
    "start_pharmacy": {_S.WAITING_PHARMACY: _S.IN_PHARMACY},
    "start_lab": {_S.WAITING_LAB: _S.IN_LAB},
    "start_billing": {_S.WAITING_BILLING: _S.IN_BILLING},
    "discharge": {
        _S.IN_CONSULTATION: _S.COMPLETED,
        _S.IN_PHARMACY: _S.COMPLETED,
        _S.IN_LAB: _S.COMPLETED,
        _S.IN_BILLING: _S.COMPLETED,
    },
    PAUSE: {
        _S.IN_VITALS: _S.WAITING_VITALS,
        _S.IN_CONSULTATION: _S.WAITING_DOCTOR,
        _S.IN_PHARMACY: _S.WAITING_PHARMACY,
        _S.IN_LAB: _S.WAITING_LAB,
        _S.IN_BILLING: _S.WAITING_BILLING,
    },
    CANCEL: {state: _S.CANCELLED for state in _S if state not in TERMINAL_STATES},
}

# transition that moves a waiting visit into service at each queue station
START_TRANSITION: Final[dict[Station, str]] = {
    Station.VITALS: "start_vitals",
    Station.DOCTOR: "start_consultation",
    Station.PHARMACY: "start_pharmacy",
    Station.LAB: "start_lab",
    Station.BILLING: "start_billing",
}

# transition applied when a station finishes with a visit and no route is given
DEFAULT_NEXT: Final[dict[VisitState, str]] = {
    _S.IN_VITALS: "finish_vitals",
    _S.IN_CONSULTATION: "send_to_billing",
    _S.IN_PHARMACY: "send_to_billing",
    _S.IN_LAB: "send_to_billing",
    _S.IN_BILLING: "discharge",
}

QUEUE_STATIONS: Final = frozenset(START_TRANSITION)

_CAMEL_BOUNDARY = re.compile(r"(?<!^)(?=[A-Z])")


@dataclass(frozen=True, slots=True)
class TransitionPlan:
    name: str
    source: VisitState
    target: VisitState
    source_station: Station
    target_station: Station
    source_phase: QueuePhase | None
    target_phase: QueuePhase | None

    @property
    def changes_station(self) -> bool:
        return self.source_station != self.target_station

    @property
    def closes_visit(self) -> bool:
        return self.target in TERMINAL_STATES


def normalize_transition_name(name: str) -> str:
    """Accept ``sendToPharmacy`` as well as ``send_to_pharmacy``."""
    clean = (name or "").strip()
    if not clean:
        raise ValidationError("Transition name is required")
    snake = _CAMEL_BOUNDARY.sub("_", clean).replace("-", "_").lower()
    if snake not in TRANSITIONS:
        raise ValidationError(f"Unknown transition: {name}", details={"transition": name})
    return snake


def parse_station(value: str) -> Station:
    try:
        return Station(str(value).strip().lower())
    except ValueError as exc:
        raise ValidationError(f"Unknown station: {value}", details={"station": value}) from exc


def placement(state: str) -> tuple[Station, QueuePhase | None]:
    return _PLACEMENT[VisitState(state)]


def station_for(state: str) -> Station:
    return placement(state)[0]


def is_terminal(state: str) -> bool:
    return VisitState(state) in TERMINAL_STATES


def allowed_transitions(state: str) -> list[str]:
    current = VisitState(state)
    return [name for name, moves in TRANSITIONS.items() if current in moves]


def plan_transition(state: str, name: str) -> TransitionPlan:
    transition = normalize_transition_name(name)
    current = VisitState(state)
    target = TRANSITIONS[transition].get(current)
    if target is None:
        raise StateError(
            f"Transition '{transition}' is not allowed from state '{current.value}'",
            details={
                "transition": transition,
                "state": current.value,
                "allowed": allowed_transitions(current),
            },
        )
    source_station, source_phase = _PLACEMENT[current]
    target_station, target_phase = _PLACEMENT[target]
    return TransitionPlan(
        name=transition,
        source=current,
        target=target,
        source_station=source_station,
        target_station=target_station,
        source_phase=source_phase,
        target_phase=target_phase,
    )
