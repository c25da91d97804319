from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime
from typing import cast

from sqlalchemy.orm import Session

from patientflow.application.dto.queue_dto import QueueEntryResponse, StationQueueStats
from patientflow.application.events import QUEUE_ENTRY_CHANGED, DomainEvent, EventBus
from patientflow.application.locks import KeyedLock
from patientflow.application.services.workflow_service import WorkflowService, visit_to_response
from patientflow.domain.errors import ConflictError, NotFoundError, StateError, ValidationError
from patientflow.domain.queueing import QueueEntryStatus, validate_entry_transition, wait_minutes
from patientflow.domain.workflow import (
    CANCEL,
    DEFAULT_NEXT,
    PAUSE,
    QUEUE_STATIONS,
    START_TRANSITION,
    Station,
    VisitState,
    parse_station,
    plan_transition,
)
from patientflow.infrastructure.db.models_sqlalchemy import QueueEntry, utc_now
from patientflow.infrastructure.db.repositories.queue_repo import QueueRepository
from patientflow.infrastructure.db.repositories.visit_repo import VisitRepository
from patientflow.infrastructure.db.session import session_scope

logger = logging.getLogger(__name__)


def entry_to_response(entry: QueueEntry, now: datetime) -> QueueEntryResponse:
    enqueued_at = cast(datetime, entry.enqueued_at)
    started_at = cast(datetime | None, entry.started_at)
    # Waiting time stops once service starts.
    waited_until = started_at or cast(datetime | None, entry.left_at) or now
    return QueueEntryResponse(
        id=cast(int, entry.id),
        visit_id=cast(int, entry.visit_id),
        station=cast(str, entry.station),
        priority=cast(str, entry.priority),
        status=cast(str, entry.status),
        enqueued_at=enqueued_at,
        started_at=started_at,
        held_at=cast(datetime | None, entry.held_at),
        completed_at=cast(datetime | None, entry.completed_at),
        left_at=cast(datetime | None, entry.left_at),
        assigned_to=cast(str | None, entry.assigned_to),
        wait_minutes=wait_minutes(enqueued_at, waited_until),
    )


class QueueService:
    def __init__(
        self,
        queue_repo: QueueRepository | None = None,
        visit_repo: VisitRepository | None = None,
        workflow_service: WorkflowService | None = None,
        session_factory: Callable = session_scope,
        event_bus: EventBus | None = None,
        clock: Callable[[], datetime] = utc_now,
        station_locks: KeyedLock | None = None,
    ) -> None:
        self.queue_repo = queue_repo or QueueRepository()
        self.visit_repo = visit_repo or VisitRepository()
        self.session_factory = session_factory
        self.event_bus = event_bus or EventBus()
        self.clock = clock
        self.workflow = workflow_service or WorkflowService(
            visit_repo=self.visit_repo,
            queue_repo=self.queue_repo,
            session_factory=session_factory,
            event_bus=self.event_bus,
            clock=clock,
        )
        self.station_locks = station_locks or KeyedLock()

    @staticmethod
    def _queue_station(station: str) -> Station:
        target = parse_station(station)
        if target not in QUEUE_STATIONS:
            raise ValidationError(f"Station '{target.value}' has no queue", details={"station": target.value})
        return target

    def _visit_id_for(self, entry_id: int) -> int:
        with self.session_factory() as session:
            entry = self.queue_repo.get_by_id(session, entry_id)
            if entry is None:
                raise NotFoundError(f"Queue entry {entry_id} not found", details={"entry_id": entry_id})
            return cast(int, entry.visit_id)

    def call_next(self, station: str, actor: str | None = None) -> QueueEntryResponse | None:
        """Start service for the highest-priority waiting entry, or None when nobody waits."""
        target = self._queue_station(station)
        skipped: set[int] = set()
        with self.station_locks.hold(target.value):
            while True:
                with self.session_factory() as session:
                    candidate = self.queue_repo.next_waiting(session, target.value, skip_ids=skipped)
                    if candidate is None:
                        return None
                    entry_id = cast(int, candidate.id)
                    visit_id = cast(int, candidate.visit_id)
                try:
                    with self.workflow.visit_locks.hold(visit_id):
                        with self.session_factory() as session:
                            visit, plan = self.workflow.apply_transition(
                                session, visit_id, START_TRANSITION[target], actor=actor
                            )
                            entry = self.queue_repo.get_by_id(session, entry_id)
                            if entry is None:
                                raise ConflictError("Queue entry disappeared", details={"entry_id": entry_id})
                            session.refresh(entry)
                            if entry.status != QueueEntryStatus.IN_PROGRESS.value:
                                raise ConflictError("Queue entry moved on", details={"entry_id": entry_id})
                            response = entry_to_response(entry, self.clock())
                            visit_response = visit_to_response(visit)
                except (StateError, ConflictError) as exc:
                    logger.warning("Skipping queue entry %s at %s: %s", entry_id, target.value, exc)
                    skipped.add(entry_id)
                    continue
                self.workflow.notify_transition(visit_response, plan, actor)
                self._publish(response, "called", actor)
                return response

    def hold(self, entry_id: int, actor: str | None = None) -> QueueEntryResponse:
        """Park an entry; an entry in service pauses its visit back to waiting."""
        visit_id = self._visit_id_for(entry_id)
        paused = None
        with self.workflow.visit_locks.hold(visit_id):
            with self.session_factory() as session:
                entry = self._open_entry(session, entry_id)
                validate_entry_transition(cast(str, entry.status), QueueEntryStatus.ON_HOLD.value)
                if entry.status == QueueEntryStatus.IN_PROGRESS.value:
                    visit, plan = self.workflow.apply_transition(session, visit_id, PAUSE, actor=actor)
                    paused = (visit_to_response(visit), plan)
                else:
                    self._swap(
                        session,
                        entry_id,
                        QueueEntryStatus.WAITING,
                        QueueEntryStatus.ON_HOLD,
                        {"held_at": self.clock()},
                    )
                session.refresh(entry)
                response = entry_to_response(entry, self.clock())
        if paused is not None:
            self.workflow.notify_transition(paused[0], paused[1], actor)
        self._publish(response, "held", actor)
        return response

    def release(self, entry_id: int, actor: str | None = None) -> QueueEntryResponse:
        """Return a held entry to the waiting list; its enqueue time is kept."""
        visit_id = self._visit_id_for(entry_id)
        with self.workflow.visit_locks.hold(visit_id):
            with self.session_factory() as session:
                entry = self._open_entry(session, entry_id)
                validate_entry_transition(cast(str, entry.status), QueueEntryStatus.WAITING.value)
                self._swap(session, entry_id, QueueEntryStatus.ON_HOLD, QueueEntryStatus.WAITING, {})
                session.refresh(entry)
                response = entry_to_response(entry, self.clock())
        self._publish(response, "released", actor)
        return response

    def complete(
        self,
        entry_id: int,
        next_transition: str | None = None,
        actor: str | None = None,
    ) -> QueueEntryResponse:
        visit_id = self._visit_id_for(entry_id)
        with self.workflow.visit_locks.hold(visit_id):
            with self.session_factory() as session:
                entry = self._open_entry(session, entry_id)
                validate_entry_transition(cast(str, entry.status), QueueEntryStatus.COMPLETED.value)
                visit = self.visit_repo.get_by_id(session, visit_id)
                if visit is None:
                    raise NotFoundError(f"Visit {visit_id} not found", details={"visit_id": visit_id})
                state = VisitState(cast(str, visit.state))
                transition = next_transition or DEFAULT_NEXT.get(state)
                if transition is None:
                    raise StateError(
                        f"No default route out of state '{state.value}'",
                        details={"visit_id": visit_id, "state": state.value},
                    )
                route = plan_transition(state.value, transition)
                if route.name == CANCEL:
                    raise StateError(
                        "A queue entry cannot be completed by cancelling the visit",
                        details={"entry_id": entry_id, "transition": route.name},
                    )
                if not route.changes_station:
                    raise StateError(
                        "Completing a queue entry must move the visit to another station",
                        details={"entry_id": entry_id, "transition": transition},
                    )
                visit, plan = self.workflow.apply_transition(session, visit_id, transition, actor=actor)
                session.refresh(entry)
                response = entry_to_response(entry, self.clock())
                visit_response = visit_to_response(visit)
        self.workflow.notify_transition(visit_response, plan, actor)
        self._publish(response, "completed", actor)
        return response

    def list_queue(self, station: str) -> list[QueueEntryResponse]:
        target = self._queue_station(station)
        now = self.clock()
        with self.session_factory() as session:
            return [entry_to_response(e, now) for e in self.queue_repo.list_open(session, target.value)]

    def queue_stats(self) -> list[StationQueueStats]:
        with self.session_factory() as session:
            counts = self.queue_repo.count_by_status(session)
        return [
            StationQueueStats(
                station=station.value,
                waiting=counts.get((station.value, QueueEntryStatus.WAITING.value), 0),
                in_progress=counts.get((station.value, QueueEntryStatus.IN_PROGRESS.value), 0),
                on_hold=counts.get((station.value, QueueEntryStatus.ON_HOLD.value), 0),
            )
            for station in Station
            if station in QUEUE_STATIONS
        ]

    def _open_entry(self, session: Session, entry_id: int) -> QueueEntry:
        entry = self.queue_repo.get_by_id(session, entry_id)
        if entry is None:
            raise NotFoundError(f"Queue entry {entry_id} not found", details={"entry_id": entry_id})
        if entry.left_at is not None:
            raise StateError(
                "Queue entry is archived",
                details={"entry_id": entry_id, "status": cast(str, entry.status)},
            )
        return entry

    def _swap(self, session: Session, entry_id: int, expected: QueueEntryStatus, new: QueueEntryStatus, values: dict) -> None:
        if not self.queue_repo.compare_and_set_status(
            session, entry_id=entry_id, expected_status=expected.value, new_status=new.value, values=values
        ):
            raise ConflictError(
                "Queue entry changed concurrently; reload and retry",
                details={"entry_id": entry_id, "expected": expected.value},
            )

    def _publish(self, entry: QueueEntryResponse, action: str, actor: str | None) -> None:
        self.event_bus.publish(
            DomainEvent(
                name=QUEUE_ENTRY_CHANGED,
                entity_type="queue_entry",
                entity_id=str(entry.id),
                actor=actor,
                payload={"action": action, "station": entry.station, "status": entry.status, "visit_id": entry.visit_id},
            )
        )
