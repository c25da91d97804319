from __future__ import annotations

from datetime import datetime
from typing import Any, cast

from sqlalchemy import case, func, select, update
from sqlalchemy.orm import Session

from patientflow.domain.constants import Priority
from patientflow.domain.queueing import QueueEntryStatus
from patientflow.infrastructure.db.models_sqlalchemy import QueueEntry

_PRIORITY_RANK = case(
    (QueueEntry.priority == Priority.EMERGENCY.value, Priority.EMERGENCY.rank),
    (QueueEntry.priority == Priority.URGENT.value, Priority.URGENT.rank),
    else_=Priority.ROUTINE.rank,
)


class QueueRepository:
    def get_by_id(self, session: Session, entry_id: int) -> QueueEntry | None:
        return session.get(QueueEntry, entry_id)

    def get_open_for_visit(self, session: Session, visit_id: int) -> QueueEntry | None:
        stmt = select(QueueEntry).where(QueueEntry.visit_id == visit_id, QueueEntry.left_at.is_(None))
        return session.execute(stmt).scalars().first()

    def enqueue(
        self,
        session: Session,
        *,
        visit_id: int,
        station: str,
        priority: str,
        enqueued_at: datetime,
    ) -> QueueEntry:
        entry = QueueEntry(
            visit_id=visit_id,
            station=station,
            priority=priority,
            status=QueueEntryStatus.WAITING.value,
            enqueued_at=enqueued_at,
        )
        session.add(entry)
        session.flush()
        return entry

    def list_open(self, session: Session, station: str, statuses: list[str] | None = None) -> list[QueueEntry]:
        """Open entries in call order: priority desc, enqueue time asc."""
        stmt = select(QueueEntry).where(QueueEntry.station == station, QueueEntry.left_at.is_(None))
        if statuses:
            stmt = stmt.where(QueueEntry.status.in_(statuses))
        stmt = stmt.order_by(_PRIORITY_RANK.desc(), QueueEntry.enqueued_at, QueueEntry.id)
        return list(session.execute(stmt).scalars())

    def next_waiting(self, session: Session, station: str, *, skip_ids: set[int] | None = None) -> QueueEntry | None:
        stmt = select(QueueEntry).where(
            QueueEntry.station == station,
            QueueEntry.left_at.is_(None),
            QueueEntry.status == QueueEntryStatus.WAITING.value,
        )
        if skip_ids:
            stmt = stmt.where(QueueEntry.id.not_in(sorted(skip_ids)))
        stmt = stmt.order_by(_PRIORITY_RANK.desc(), QueueEntry.enqueued_at, QueueEntry.id).limit(1)
        return session.execute(stmt).scalars().first()

    def compare_and_set_status(
        self,
        session: Session,
        *,
        entry_id: int,
        expected_status: str,
        new_status: str,
        values: dict[str, Any] | None = None,
    ) -> bool:
        payload: dict[str, Any] = {"status": new_status}
        payload.update(values or {})
        result = session.execute(
            update(QueueEntry)
            .where(
                QueueEntry.id == entry_id,
                QueueEntry.status == expected_status,
                QueueEntry.left_at.is_(None),
            )
            .values(**payload)
            .execution_options(synchronize_session=False)
        )
        return cast(Any, result).rowcount == 1

    def archive(self, session: Session, entry: QueueEntry, *, now: datetime, completed: bool) -> None:
        entry_obj = cast(Any, entry)
        if completed:
            entry_obj.status = QueueEntryStatus.COMPLETED.value
            entry_obj.completed_at = now
        entry_obj.left_at = now
        session.flush()

    def set_priority(self, session: Session, entry: QueueEntry, priority: str) -> None:
        cast(Any, entry).priority = priority
        session.flush()

    def count_by_status(self, session: Session) -> dict[tuple[str, str], int]:
        stmt = (
            select(QueueEntry.station, QueueEntry.status, func.count(QueueEntry.id))
            .where(QueueEntry.left_at.is_(None))
            .group_by(QueueEntry.station, QueueEntry.status)
        )
        return {(str(station), str(status)): int(count) for station, status, count in session.execute(stmt)}
