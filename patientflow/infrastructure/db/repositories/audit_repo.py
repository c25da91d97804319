from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.orm import Session

from patientflow.infrastructure.db.models_sqlalchemy import AuditLog


class AuditLogRepository:
    def add_event(
        self,
        session: Session,
        *,
        actor: str | None,
        entity_type: str,
        entity_id: str,
        action: str,
        payload_json: str | None = None,
    ) -> AuditLog:
        entry = AuditLog(
            actor=actor,
            entity_type=entity_type,
            entity_id=entity_id,
            action=action,
            payload_json=payload_json,
        )
        session.add(entry)
        return entry

    def list_for_entity(self, session: Session, entity_type: str, entity_id: str) -> list[AuditLog]:
        stmt = (
            select(AuditLog)
            .where(AuditLog.entity_type == entity_type, AuditLog.entity_id == entity_id)
            .order_by(AuditLog.event_ts, AuditLog.id)
        )
        return list(session.execute(stmt).scalars())
