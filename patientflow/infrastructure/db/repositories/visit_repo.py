from __future__ import annotations

from datetime import datetime
from typing import Any, cast

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from patientflow.infrastructure.db.models_sqlalchemy import Visit, VisitTransition


class VisitRepository:
    def get_by_id(self, session: Session, visit_id: int) -> Visit | None:
        return session.get(Visit, visit_id)

    def find_active_for_patient(self, session: Session, patient_id: int) -> Visit | None:
        stmt = select(Visit).where(Visit.patient_id == patient_id, Visit.closed_at.is_(None))
        return session.execute(stmt).scalars().first()

    def create(
        self,
        session: Session,
        *,
        patient_id: int,
        care_setting: str,
        state: str,
        priority: str,
        department: str | None,
        doctor: str | None,
        chief_complaint: str | None,
        now: datetime,
    ) -> Visit:
        visit = Visit(
            patient_id=patient_id,
            care_setting=care_setting,
            state=state,
            priority=priority,
            department=department,
            doctor=doctor,
            chief_complaint=chief_complaint,
            version=1,
            created_at=now,
            updated_at=now,
        )
        session.add(visit)
        session.flush()
        return visit

    def compare_and_set_state(
        self,
        session: Session,
        *,
        visit_id: int,
        expected_version: int,
        expected_state: str,
        new_state: str,
        now: datetime,
        closed: bool,
    ) -> bool:
        values: dict[str, Any] = {
            "state": new_state,
            "version": Visit.version + 1,
            "updated_at": now,
        }
        if closed:
            values["closed_at"] = now
        result = session.execute(
            update(Visit)
            .where(
                Visit.id == visit_id,
                Visit.version == expected_version,
                Visit.state == expected_state,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return cast(Any, result).rowcount == 1

    def set_priority(self, session: Session, visit: Visit, *, priority: str, level: int, sla_minutes: int, now: datetime) -> None:
        visit_obj = cast(Any, visit)
        visit_obj.priority = priority
        visit_obj.triage_level = level
        visit_obj.triage_sla_minutes = sla_minutes
        visit_obj.updated_at = now
        session.flush()

    def add_transition(
        self,
        session: Session,
        *,
        visit_id: int,
        transition: str,
        from_state: str,
        to_state: str,
        occurred_at: datetime,
        actor: str | None,
    ) -> VisitTransition:
        row = VisitTransition(
            visit_id=visit_id,
            transition=transition,
            from_state=from_state,
            to_state=to_state,
            occurred_at=occurred_at,
            actor=actor,
        )
        session.add(row)
        return row

    def list_transitions(self, session: Session, visit_id: int) -> list[VisitTransition]:
        stmt = (
            select(VisitTransition)
            .where(VisitTransition.visit_id == visit_id)
            .order_by(VisitTransition.occurred_at, VisitTransition.id)
        )
        return list(session.execute(stmt).scalars())

    def list_active(self, session: Session, states: list[str] | None = None) -> list[Visit]:
        stmt = select(Visit).where(Visit.closed_at.is_(None))
        if states:
            stmt = stmt.where(Visit.state.in_(states))
        stmt = stmt.order_by(Visit.created_at, Visit.id)
        return list(session.execute(stmt).scalars())
