from __future__ import annotations

from datetime import datetime
from typing import Any, cast

from sqlalchemy import case, select, update
from sqlalchemy.orm import Session

from patientflow.domain.constants import AdmissionStatus, Priority
from patientflow.infrastructure.db.models_sqlalchemy import AdmissionRequest

_PRIORITY_RANK = case(
    (AdmissionRequest.priority == Priority.EMERGENCY.value, Priority.EMERGENCY.rank),
    (AdmissionRequest.priority == Priority.URGENT.value, Priority.URGENT.rank),
    else_=Priority.ROUTINE.rank,
)


class AdmissionRepository:
    def get_by_id(self, session: Session, request_id: int) -> AdmissionRequest | None:
        return session.get(AdmissionRequest, request_id)

    def create(
        self,
        session: Session,
        *,
        patient_id: int,
        visit_id: int | None,
        department: str,
        requesting_doctor: str,
        diagnosis: str,
        priority: str,
        requested_at: datetime,
        notes: str | None,
    ) -> AdmissionRequest:
        row = AdmissionRequest(
            patient_id=patient_id,
            visit_id=visit_id,
            department=department,
            requesting_doctor=requesting_doctor,
            diagnosis=diagnosis,
            priority=priority,
            status=AdmissionStatus.PENDING.value,
            requested_at=requested_at,
            notes=notes,
        )
        session.add(row)
        session.flush()
        return row

    def list_pending(self, session: Session) -> list[AdmissionRequest]:
        stmt = (
            select(AdmissionRequest)
            .where(AdmissionRequest.status == AdmissionStatus.PENDING.value)
            .order_by(_PRIORITY_RANK.desc(), AdmissionRequest.requested_at, AdmissionRequest.id)
        )
        return list(session.execute(stmt).scalars())

    def resolve_pending(
        self,
        session: Session,
        *,
        request_id: int,
        new_status: str,
        now: datetime,
        bed_id: int | None = None,
    ) -> bool:
        """Move a still-pending request to admitted/cancelled; False when it was resolved meanwhile."""
        values: dict[str, Any] = {"status": new_status, "resolved_at": now}
        if bed_id is not None:
            values["bed_id"] = bed_id
        result = session.execute(
            update(AdmissionRequest)
            .where(
                AdmissionRequest.id == request_id,
                AdmissionRequest.status == AdmissionStatus.PENDING.value,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return cast(Any, result).rowcount == 1

    def mark_discharged(self, session: Session, row: AdmissionRequest, *, now: datetime) -> None:
        cast(Any, row).discharged_at = now
        session.flush()
