from __future__ import annotations

import json
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.orm import Session

from patientflow.infrastructure.db.models_sqlalchemy import TriageAssessment


class TriageRepository:
    def add(
        self,
        session: Session,
        *,
        complaint_id: str,
        discriminator_id: str | None,
        observed_ids: list[str],
        vitals: dict[str, object] | None,
        level: int,
        sla_minutes: int,
        reason: str,
        assessed_at: datetime,
        assessed_by: str | None,
        visit_id: int | None = None,
        admission_request_id: int | None = None,
    ) -> TriageAssessment:
        row = TriageAssessment(
            visit_id=visit_id,
            admission_request_id=admission_request_id,
            complaint_id=complaint_id,
            discriminator_id=discriminator_id,
            observed_json=json.dumps(observed_ids, ensure_ascii=False),
            vitals_json=json.dumps(vitals, ensure_ascii=False) if vitals else None,
            level=level,
            sla_minutes=sla_minutes,
            reason=reason,
            assessed_at=assessed_at,
            assessed_by=assessed_by,
        )
        session.add(row)
        session.flush()
        return row

    def list_for_visit(self, session: Session, visit_id: int) -> list[TriageAssessment]:
        stmt = (
            select(TriageAssessment)
            .where(TriageAssessment.visit_id == visit_id)
            .order_by(TriageAssessment.assessed_at, TriageAssessment.id)
        )
        return list(session.execute(stmt).scalars())

    def list_for_admission(self, session: Session, request_id: int) -> list[TriageAssessment]:
        stmt = (
            select(TriageAssessment)
            .where(TriageAssessment.admission_request_id == request_id)
            .order_by(TriageAssessment.assessed_at, TriageAssessment.id)
        )
        return list(session.execute(stmt).scalars())
