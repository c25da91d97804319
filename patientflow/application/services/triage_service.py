from __future__ import annotations

import json
import logging
from collections.abc import Callable, Mapping
from datetime import datetime
from pathlib import Path
from typing import Any, cast

from patientflow.application.dto.triage_dto import (
    ComplaintDto,
    DiscriminatorDto,
    TriageAssessmentResponse,
    TriageRequest,
    TriageResultDto,
)
from patientflow.application.events import TRIAGE_RECORDED, DomainEvent, EventBus
from patientflow.application.locks import KeyedLock
from patientflow.application.validation import parse_request
from patientflow.config import settings
from patientflow.domain.constants import most_severe_priority
from patientflow.domain.errors import NotFoundError, StateError, ValidationError
from patientflow.domain.models.triage import TriageProtocol, TriageResult, VitalSigns
from patientflow.domain.rules.triage_rules import build_protocol, classify, priority_for_level, validate_vitals
from patientflow.domain.workflow import is_terminal
from patientflow.infrastructure.db.models_sqlalchemy import TriageAssessment, utc_now
from patientflow.infrastructure.db.repositories.queue_repo import QueueRepository
from patientflow.infrastructure.db.repositories.triage_repo import TriageRepository
from patientflow.infrastructure.db.repositories.visit_repo import VisitRepository
from patientflow.infrastructure.db.session import session_scope

logger = logging.getLogger(__name__)


def load_protocol(path: Path) -> TriageProtocol:
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError as exc:
        raise ValidationError(f"Triage protocol file not found: {path}") from exc
    except json.JSONDecodeError as exc:
        raise ValidationError(f"Triage protocol file is not valid JSON: {exc}") from exc
    if not isinstance(payload, Mapping):
        raise ValidationError("Triage protocol file must contain a JSON object")
    protocol = build_protocol(payload)
    logger.info("Loaded triage protocol with %d complaints from %s", len(protocol.complaints), path)
    return protocol


def result_to_dto(result: TriageResult) -> TriageResultDto:
    return TriageResultDto(
        complaint_id=result.complaint_id,
        level=result.level,
        name=result.name,
        color=result.color,
        sla_minutes=result.sla_minutes,
        priority=result.priority.value,
        reason=result.reason,
        discriminator_id=result.discriminator_id,
    )


class TriageService:
    """Manchester-style triage over a static complaint table."""

    def __init__(
        self,
        protocol: TriageProtocol | None = None,
        protocol_file: Path | None = None,
        triage_repo: TriageRepository | None = None,
        visit_repo: VisitRepository | None = None,
        queue_repo: QueueRepository | None = None,
        session_factory: Callable = session_scope,
        event_bus: EventBus | None = None,
        clock: Callable[[], datetime] = utc_now,
        visit_locks: KeyedLock | None = None,
    ) -> None:
        self._protocol = protocol
        self.protocol_file = protocol_file or settings.triage_protocols_file
        self.triage_repo = triage_repo or TriageRepository()
        self.visit_repo = visit_repo or VisitRepository()
        self.queue_repo = queue_repo or QueueRepository()
        self.session_factory = session_factory
        self.event_bus = event_bus or EventBus()
        self.clock = clock
        self.visit_locks = visit_locks or KeyedLock()

    @property
    def protocol(self) -> TriageProtocol:
        if self._protocol is None:
            self._protocol = load_protocol(self.protocol_file)
        return self._protocol

    def evaluate(self, request: TriageRequest | Mapping[str, Any]) -> tuple[TriageRequest, TriageResult]:
        req = parse_request(TriageRequest, request)
        vitals = None
        if req.vitals is not None:
            vitals = VitalSigns(**req.vitals.model_dump())
            validate_vitals(vitals)
        return req, classify(self.protocol, req.complaint_id, req.observed_ids, vitals)

    def classify(self, request: TriageRequest | Mapping[str, Any]) -> TriageResultDto:
        _, result = self.evaluate(request)
        return result_to_dto(result)

    def record(
        self,
        visit_id: int,
        request: TriageRequest | Mapping[str, Any],
        actor: str | None = None,
    ) -> TriageAssessmentResponse:
        """Persist an assessment and raise the visit (and its open queue entry) to the triage priority."""
        req, result = self.evaluate(request)
        assessed_by = req.assessed_by or actor
        with self.visit_locks.hold(visit_id):
            with self.session_factory() as session:
                visit = self.visit_repo.get_by_id(session, visit_id)
                if visit is None:
                    raise NotFoundError(f"Visit {visit_id} not found", details={"visit_id": visit_id})
                if is_terminal(cast(str, visit.state)):
                    raise StateError(
                        "Cannot triage a closed visit",
                        details={"visit_id": visit_id, "state": cast(str, visit.state)},
                    )
                now = self.clock()
                row = self.triage_repo.add(
                    session,
                    visit_id=visit_id,
                    complaint_id=result.complaint_id,
                    discriminator_id=result.discriminator_id,
                    observed_ids=list(result.observed_ids),
                    vitals=req.vitals.model_dump(exclude_none=True) if req.vitals else None,
                    level=result.level,
                    sla_minutes=result.sla_minutes,
                    reason=result.reason,
                    assessed_at=now,
                    assessed_by=assessed_by,
                )
                priority = most_severe_priority(cast(str, visit.priority), result.priority.value)
                self.visit_repo.set_priority(
                    session,
                    visit,
                    priority=priority.value,
                    level=result.level,
                    sla_minutes=result.sla_minutes,
                    now=now,
                )
                entry = self.queue_repo.get_open_for_visit(session, visit_id)
                if entry is not None and entry.priority != priority.value:
                    # enqueue time is kept, only the ordering key moves
                    self.queue_repo.set_priority(session, entry, priority.value)
                response = self._to_response(row)

        logger.info("Visit %s triaged at level %s (%s)", visit_id, result.level, result.complaint_id)
        self.event_bus.publish(
            DomainEvent(
                name=TRIAGE_RECORDED,
                entity_type="visit",
                entity_id=str(visit_id),
                actor=assessed_by,
                payload={
                    "assessment_id": response.id,
                    "level": result.level,
                    "priority": priority.value,
                    "sla_minutes": result.sla_minutes,
                },
            )
        )
        return response

    def list_assessments(self, visit_id: int) -> list[TriageAssessmentResponse]:
        with self.session_factory() as session:
            rows = self.triage_repo.list_for_visit(session, visit_id)
            return [self._to_response(row) for row in rows]

    def list_complaints(self) -> list[ComplaintDto]:
        return [
            ComplaintDto(
                id=complaint.id,
                name=complaint.name,
                discriminators=[
                    DiscriminatorDto(id=d.id, level=d.level, description=d.description)
                    for d in complaint.discriminators
                ],
            )
            for complaint in self.protocol.complaints
        ]

    def _to_response(self, row: TriageAssessment) -> TriageAssessmentResponse:
        level = cast(int, row.level)
        info = self.protocol.level_info(level)
        return TriageAssessmentResponse(
            id=cast(int, row.id),
            visit_id=cast(int | None, row.visit_id),
            admission_request_id=cast(int | None, row.admission_request_id),
            complaint_id=cast(str, row.complaint_id),
            level=level,
            name=info.name,
            color=info.color,
            sla_minutes=cast(int, row.sla_minutes),
            priority=priority_for_level(level).value,
            reason=cast(str | None, row.reason) or "",
            discriminator_id=cast(str | None, row.discriminator_id),
            assessed_at=cast(datetime, row.assessed_at),
            assessed_by=cast(str | None, row.assessed_by),
        )
