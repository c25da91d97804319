from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from datetime import datetime
from typing import Any, cast

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from patientflow.application.dto.visit_dto import VisitOpenRequest, VisitResponse, VisitTransitionResponse
from patientflow.application.events import VISIT_TRANSITION, DomainEvent, EventBus
from patientflow.application.locks import KeyedLock
from patientflow.application.validation import parse_request
from patientflow.domain.constants import PatientStatus
from patientflow.domain.errors import ConflictError, NotFoundError, StateError
from patientflow.domain.queueing import QueueEntryStatus
from patientflow.domain.workflow import (
    CANCEL,
    QueuePhase,
    Station,
    TransitionPlan,
    VisitState,
    allowed_transitions,
    is_terminal,
    parse_station,
    plan_transition,
    station_for,
)
from patientflow.infrastructure.db.models_sqlalchemy import QueueEntry, Visit, utc_now
from patientflow.infrastructure.db.repositories.patient_repo import PatientRepository
from patientflow.infrastructure.db.repositories.queue_repo import QueueRepository
from patientflow.infrastructure.db.repositories.visit_repo import VisitRepository
from patientflow.infrastructure.db.session import session_scope

logger = logging.getLogger(__name__)


def visit_to_response(visit: Visit) -> VisitResponse:
    state = cast(str, visit.state)
    return VisitResponse(
        id=cast(int, visit.id),
        patient_id=cast(int, visit.patient_id),
        care_setting=cast(str, visit.care_setting),
        state=state,
        station=station_for(state).value,
        priority=cast(str, visit.priority),
        department=cast(str | None, visit.department),
        doctor=cast(str | None, visit.doctor),
        chief_complaint=cast(str | None, visit.chief_complaint),
        triage_level=cast(int | None, visit.triage_level),
        triage_sla_minutes=cast(int | None, visit.triage_sla_minutes),
        version=cast(int, visit.version),
        created_at=cast(datetime, visit.created_at),
        updated_at=cast(datetime, visit.updated_at),
        closed_at=cast(datetime | None, visit.closed_at),
        allowed_transitions=[] if is_terminal(state) else allowed_transitions(state),
    )


class WorkflowService:
    """Advances a Visit through the station state machine.

    Every transition runs in one transaction: the visit row is swapped on
    (id, version, state), the open queue entry follows the new state, and a
    row is appended to the transition log. Callers on the same visit are
    serialised by ``visit_locks``; other processes lose the version check.
    """

    def __init__(
        self,
        visit_repo: VisitRepository | None = None,
        queue_repo: QueueRepository | None = None,
        patient_repo: PatientRepository | None = None,
        session_factory: Callable = session_scope,
        event_bus: EventBus | None = None,
        clock: Callable[[], datetime] = utc_now,
        visit_locks: KeyedLock | None = None,
    ) -> None:
        self.visit_repo = visit_repo or VisitRepository()
        self.queue_repo = queue_repo or QueueRepository()
        self.patient_repo = patient_repo or PatientRepository()
        self.session_factory = session_factory
        self.event_bus = event_bus or EventBus()
        self.clock = clock
        self.visit_locks = visit_locks or KeyedLock()

    def open_visit(self, request: VisitOpenRequest | Mapping[str, Any], actor: str | None = None) -> VisitResponse:
        req = parse_request(VisitOpenRequest, request)
        with self.session_factory() as session:
            visit = self.create_visit(
                session,
                patient_id=req.patient_id,
                care_setting=req.care_setting,
                department=req.department,
                doctor=req.doctor,
                priority=req.priority,
                chief_complaint=req.chief_complaint,
            )
            response = visit_to_response(visit)
        logger.info("Visit %s opened for patient %s", response.id, response.patient_id)
        return response

    def create_visit(
        self,
        session: Session,
        *,
        patient_id: int,
        care_setting: str,
        department: str | None,
        doctor: str | None,
        priority: str,
        chief_complaint: str | None,
    ) -> Visit:
        """Open a visit inside the caller's transaction."""
        patient = self.patient_repo.get_by_id(session, patient_id)
        if patient is None:
            raise NotFoundError(f"Patient {patient_id} not found", details={"patient_id": patient_id})
        if patient.status != PatientStatus.ACTIVE.value:
            raise StateError(
                "Inactive patients cannot open a visit",
                details={"patient_id": patient_id, "status": cast(str, patient.status)},
            )
        active = self.visit_repo.find_active_for_patient(session, patient_id)
        if active is not None:
            raise ConflictError(
                "Patient already has an active visit",
                details={"patient_id": patient_id, "visit_id": cast(int, active.id)},
            )
        try:
            with session.begin_nested():
                return self.visit_repo.create(
                    session,
                    patient_id=patient_id,
                    care_setting=care_setting,
                    state=VisitState.REGISTERED.value,
                    priority=priority,
                    department=department,
                    doctor=doctor,
                    chief_complaint=chief_complaint,
                    now=self.clock(),
                )
        except IntegrityError as exc:
            raise ConflictError(
                "Patient already has an active visit", details={"patient_id": patient_id}
            ) from exc

    def advance_visit(self, visit_id: int, transition: str, actor: str | None = None) -> VisitResponse:
        with self.visit_locks.hold(visit_id):
            with self.session_factory() as session:
                visit, plan = self.apply_transition(session, visit_id, transition, actor=actor)
                response = visit_to_response(visit)
        self.notify_transition(response, plan, actor)
        return response

    def apply_transition(
        self,
        session: Session,
        visit_id: int,
        transition: str,
        *,
        actor: str | None = None,
    ) -> tuple[Visit, TransitionPlan]:
        """Apply one transition inside the caller's transaction.

        The caller must hold ``visit_locks`` for ``visit_id`` and publish via
        ``notify_transition`` after commit.
        """
        visit = self.visit_repo.get_by_id(session, visit_id)
        if visit is None:
            raise NotFoundError(f"Visit {visit_id} not found", details={"visit_id": visit_id})
        plan = plan_transition(cast(str, visit.state), transition)
        entry = self.queue_repo.get_open_for_visit(session, visit_id)
        if entry is not None:
            session.refresh(entry)
        if (
            entry is not None
            and not plan.changes_station
            and plan.target_phase == QueuePhase.IN_PROGRESS
            and entry.status == QueueEntryStatus.ON_HOLD.value
        ):
            raise StateError(
                "Queue entry is on hold; release it before starting service",
                details={"visit_id": visit_id, "entry_id": cast(int, entry.id)},
            )

        now = self.clock()
        swapped = self.visit_repo.compare_and_set_state(
            session,
            visit_id=visit_id,
            expected_version=cast(int, visit.version),
            expected_state=plan.source.value,
            new_state=plan.target.value,
            now=now,
            closed=plan.closes_visit,
        )
        if not swapped:
            logger.warning("Visit %s changed concurrently; %s rejected", visit_id, plan.name)
            raise ConflictError(
                "Visit was modified concurrently; reload and retry",
                details={"visit_id": visit_id, "transition": plan.name},
            )

        self._sync_queue(session, visit, plan, entry, now, actor)
        self.visit_repo.add_transition(
            session,
            visit_id=visit_id,
            transition=plan.name,
            from_state=plan.source.value,
            to_state=plan.target.value,
            occurred_at=now,
            actor=actor,
        )
        session.flush()
        session.refresh(visit)
        return visit, plan

    def _sync_queue(
        self,
        session: Session,
        visit: Visit,
        plan: TransitionPlan,
        entry: QueueEntry | None,
        now: datetime,
        actor: str | None,
    ) -> None:
        visit_id = cast(int, visit.id)
        if not plan.changes_station:
            if entry is None:
                return
            if plan.target_phase == QueuePhase.IN_PROGRESS:
                expected, new, values = QueueEntryStatus.WAITING, QueueEntryStatus.IN_PROGRESS, {
                    "started_at": now,
                    "assigned_to": actor,
                }
            else:
                expected, new, values = QueueEntryStatus.IN_PROGRESS, QueueEntryStatus.ON_HOLD, {"held_at": now}
            moved = self.queue_repo.compare_and_set_status(
                session,
                entry_id=cast(int, entry.id),
                expected_status=expected.value,
                new_status=new.value,
                values=values,
            )
            if not moved:
                raise ConflictError(
                    "Queue entry changed concurrently; reload and retry",
                    details={"entry_id": cast(int, entry.id), "expected": expected.value},
                )
            return

        if entry is not None:
            completed = entry.status == QueueEntryStatus.IN_PROGRESS.value and plan.name != CANCEL
            self.queue_repo.archive(session, entry, now=now, completed=completed)
        if plan.target_phase is not None:
            self.queue_repo.enqueue(
                session,
                visit_id=visit_id,
                station=plan.target_station.value,
                priority=cast(str, visit.priority),
                enqueued_at=now,
            )

    def notify_transition(self, visit: VisitResponse, plan: TransitionPlan, actor: str | None) -> None:
        logger.info("Visit %s: %s (%s -> %s)", visit.id, plan.name, plan.source.value, plan.target.value)
        self.event_bus.publish(
            DomainEvent(
                name=VISIT_TRANSITION,
                entity_type="visit",
                entity_id=str(visit.id),
                actor=actor,
                payload={
                    "visit_id": visit.id,
                    "patient_id": visit.patient_id,
                    "transition": plan.name,
                    "from_state": plan.source.value,
                    "to_state": plan.target.value,
                    "station": plan.target_station.value,
                },
            )
        )

    def get_visit(self, visit_id: int) -> VisitResponse:
        with self.session_factory() as session:
            visit = self.visit_repo.get_by_id(session, visit_id)
            if visit is None:
                raise NotFoundError(f"Visit {visit_id} not found", details={"visit_id": visit_id})
            return visit_to_response(visit)

    def list_active_visits(self, station: str | None = None) -> list[VisitResponse]:
        states: list[str] | None = None
        if station is not None:
            target = parse_station(station)
            if target == Station.EXIT:
                return []
            states = [s.value for s in VisitState if station_for(s) == target]
        with self.session_factory() as session:
            return [visit_to_response(v) for v in self.visit_repo.list_active(session, states)]

    def get_visit_history(self, visit_id: int) -> list[VisitTransitionResponse]:
        with self.session_factory() as session:
            if self.visit_repo.get_by_id(session, visit_id) is None:
                raise NotFoundError(f"Visit {visit_id} not found", details={"visit_id": visit_id})
            return [
                VisitTransitionResponse(
                    transition=cast(str, row.transition),
                    from_state=cast(str, row.from_state),
                    to_state=cast(str, row.to_state),
                    occurred_at=cast(datetime, row.occurred_at),
                    actor=cast(str | None, row.actor),
                )
                for row in self.visit_repo.list_transitions(session, visit_id)
            ]
