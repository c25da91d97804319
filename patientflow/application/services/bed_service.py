from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from datetime import datetime
from typing import Any, cast

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from patientflow.application.dto.admission_dto import (
    AdmissionRequestCreate,
    AdmissionRequestResponse,
    BedAssignmentResult,
    BedResponse,
    WardResponse,
)
from patientflow.application.events import (
    ADMISSION_CANCELLED,
    ADMISSION_REQUESTED,
    BED_ASSIGNED,
    BED_STATUS_CHANGED,
    DomainEvent,
    EventBus,
)
from patientflow.application.locks import KeyedLock
from patientflow.application.services.triage_service import TriageService
from patientflow.application.validation import parse_request
from patientflow.domain.beds import BedStatus, validate_bed_transition
from patientflow.domain.constants import AdmissionStatus, Priority, most_severe_priority
from patientflow.domain.errors import ConflictError, NotFoundError, StateError, ValidationError
from patientflow.infrastructure.db.models_sqlalchemy import AdmissionRequest, Bed, utc_now
from patientflow.infrastructure.db.repositories.admission_repo import AdmissionRepository
from patientflow.infrastructure.db.repositories.patient_repo import PatientRepository
from patientflow.infrastructure.db.repositories.triage_repo import TriageRepository
from patientflow.infrastructure.db.repositories.visit_repo import VisitRepository
from patientflow.infrastructure.db.repositories.ward_repo import WardRepository
from patientflow.infrastructure.db.session import session_scope

logger = logging.getLogger(__name__)


def bed_to_response(bed: Bed) -> BedResponse:
    return BedResponse(
        id=cast(int, bed.id),
        ward_id=cast(int, bed.ward_id),
        number=cast(str, bed.number),
        bed_type=cast(str, bed.bed_type),
        price_per_day=float(cast(float, bed.price_per_day) or 0),
        status=cast(str, bed.status),
        version=cast(int, bed.version),
    )


def admission_to_response(row: AdmissionRequest) -> AdmissionRequestResponse:
    return AdmissionRequestResponse(
        id=cast(int, row.id),
        patient_id=cast(int, row.patient_id),
        visit_id=cast(int | None, row.visit_id),
        department=cast(str, row.department),
        requesting_doctor=cast(str, row.requesting_doctor),
        diagnosis=cast(str, row.diagnosis),
        priority=cast(str, row.priority),
        status=cast(str, row.status),
        requested_at=cast(datetime, row.requested_at),
        bed_id=cast(int | None, row.bed_id),
        resolved_at=cast(datetime | None, row.resolved_at),
        discharged_at=cast(datetime | None, row.discharged_at),
        notes=cast(str | None, row.notes),
    )


class BedService:
    """Admission requests and the ward/bed inventory.

    A bed is claimed with an ``available -> occupied`` compare-and-swap under a
    per-bed lock, so two assignments racing for one bed produce exactly one
    admission.
    """

    def __init__(
        self,
        ward_repo: WardRepository | None = None,
        admission_repo: AdmissionRepository | None = None,
        patient_repo: PatientRepository | None = None,
        visit_repo: VisitRepository | None = None,
        triage_repo: TriageRepository | None = None,
        triage_service: TriageService | None = None,
        session_factory: Callable = session_scope,
        event_bus: EventBus | None = None,
        clock: Callable[[], datetime] = utc_now,
        bed_locks: KeyedLock | None = None,
    ) -> None:
        self.ward_repo = ward_repo or WardRepository()
        self.admission_repo = admission_repo or AdmissionRepository()
        self.patient_repo = patient_repo or PatientRepository()
        self.visit_repo = visit_repo or VisitRepository()
        self.triage_repo = triage_repo or TriageRepository()
        self.session_factory = session_factory
        self.event_bus = event_bus or EventBus()
        self.triage_service = triage_service or TriageService(
            triage_repo=self.triage_repo,
            visit_repo=self.visit_repo,
            session_factory=session_factory,
            event_bus=self.event_bus,
            clock=clock,
        )
        self.clock = clock
        self.bed_locks = bed_locks or KeyedLock()

    def list_wards(self) -> list[WardResponse]:
        with self.session_factory() as session:
            occupancy = self.ward_repo.occupancy(session)
            result = []
            for ward in self.ward_repo.list_wards(session):
                counts = occupancy.get(cast(int, ward.id), {})
                result.append(
                    WardResponse(
                        id=cast(int, ward.id),
                        code=cast(str, ward.code),
                        name=cast(str, ward.name),
                        ward_type=cast(str, ward.ward_type),
                        floor=cast(str | None, ward.floor),
                        total_beds=sum(counts.values()),
                        available=counts.get(BedStatus.AVAILABLE.value, 0),
                        occupied=counts.get(BedStatus.OCCUPIED.value, 0),
                        cleaning=counts.get(BedStatus.CLEANING.value, 0),
                        maintenance=counts.get(BedStatus.MAINTENANCE.value, 0),
                    )
                )
            return result

    def list_available_beds(self, ward_id: int) -> list[BedResponse]:
        with self.session_factory() as session:
            if self.ward_repo.get_ward(session, ward_id) is None:
                raise NotFoundError(f"Ward {ward_id} not found", details={"ward_id": ward_id})
            beds = self.ward_repo.list_beds(session, ward_id, status=BedStatus.AVAILABLE.value)
            return [bed_to_response(b) for b in beds]

    def create_admission_request(
        self,
        request: AdmissionRequestCreate | Mapping[str, Any],
        actor: str | None = None,
    ) -> AdmissionRequestResponse:
        req = parse_request(AdmissionRequestCreate, request)
        triage = self.triage_service.evaluate(req.triage)[1] if req.triage is not None else None
        with self.session_factory() as session:
            if self.patient_repo.get_by_id(session, req.patient_id) is None:
                raise NotFoundError(f"Patient {req.patient_id} not found", details={"patient_id": req.patient_id})
            priority = req.priority
            if req.visit_id is not None:
                visit = self.visit_repo.get_by_id(session, req.visit_id)
                if visit is None:
                    raise NotFoundError(f"Visit {req.visit_id} not found", details={"visit_id": req.visit_id})
                if visit.patient_id != req.patient_id:
                    raise ValidationError(
                        "Visit belongs to another patient",
                        details={"visit_id": req.visit_id, "patient_id": req.patient_id},
                    )
                priority = priority or cast(str, visit.priority)
            resolved = Priority(priority or Priority.ROUTINE.value)
            if triage is not None:
                resolved = most_severe_priority(resolved.value, triage.priority.value)

            now = self.clock()
            row = self.admission_repo.create(
                session,
                patient_id=req.patient_id,
                visit_id=req.visit_id,
                department=req.department,
                requesting_doctor=req.requesting_doctor,
                diagnosis=req.diagnosis,
                priority=resolved.value,
                requested_at=now,
                notes=req.notes,
            )
            if triage is not None and req.triage is not None:
                self.triage_repo.add(
                    session,
                    admission_request_id=cast(int, row.id),
                    visit_id=req.visit_id,
                    complaint_id=triage.complaint_id,
                    discriminator_id=triage.discriminator_id,
                    observed_ids=list(triage.observed_ids),
                    vitals=req.triage.vitals.model_dump(exclude_none=True) if req.triage.vitals else None,
                    level=triage.level,
                    sla_minutes=triage.sla_minutes,
                    reason=triage.reason,
                    assessed_at=now,
                    assessed_by=req.triage.assessed_by or actor,
                )
            response = admission_to_response(row)

        logger.info("Admission request %s created (%s)", response.id, response.priority)
        self._publish(ADMISSION_REQUESTED, "admission_request", response.id, actor, {"priority": response.priority})
        return response

    def get_admission_request(self, request_id: int) -> AdmissionRequestResponse:
        with self.session_factory() as session:
            return admission_to_response(self._request_or_404(session, request_id))

    def list_pending_admission_requests(self) -> list[AdmissionRequestResponse]:
        with self.session_factory() as session:
            return [admission_to_response(r) for r in self.admission_repo.list_pending(session)]

    def cancel_admission_request(self, request_id: int, actor: str | None = None) -> AdmissionRequestResponse:
        with self.session_factory() as session:
            row = self._request_or_404(session, request_id)
            self._require_pending(row)
            if not self.admission_repo.resolve_pending(
                session, request_id=request_id, new_status=AdmissionStatus.CANCELLED.value, now=self.clock()
            ):
                raise ConflictError("Admission request was resolved concurrently", details={"request_id": request_id})
            session.refresh(row)
            response = admission_to_response(row)
        self._publish(ADMISSION_CANCELLED, "admission_request", request_id, actor, {})
        return response

    def assign_bed(self, request_id: int, bed_id: int, actor: str | None = None) -> BedAssignmentResult:
        with self.bed_locks.hold(bed_id):
            with self.session_factory() as session:
                row = self._request_or_404(session, request_id)
                bed = self._bed_or_404(session, bed_id)
                self._require_pending(row)

                current = self.ward_repo.read_bed_status(session, bed_id)
                if current != BedStatus.AVAILABLE.value:
                    logger.warning("Bed %s is %s; assignment for request %s rejected", bed_id, current, request_id)
                    raise ConflictError(
                        "Bed is no longer available",
                        details={"bed_id": bed_id, "status": current},
                    )
                now = self.clock()
                if not self.ward_repo.update_bed_status(
                    session,
                    bed_id=bed_id,
                    expected_status=BedStatus.AVAILABLE.value,
                    new_status=BedStatus.OCCUPIED.value,
                    now=now,
                ):
                    logger.warning("Bed %s was taken concurrently", bed_id)
                    raise ConflictError("Bed is no longer available", details={"bed_id": bed_id})
                try:
                    with session.begin_nested():
                        admitted = self.admission_repo.resolve_pending(
                            session,
                            request_id=request_id,
                            new_status=AdmissionStatus.ADMITTED.value,
                            now=now,
                            bed_id=bed_id,
                        )
                except IntegrityError as exc:
                    raise ConflictError("Bed already holds an admission", details={"bed_id": bed_id}) from exc
                if not admitted:
                    raise ConflictError(
                        "Admission request was resolved concurrently", details={"request_id": request_id}
                    )
                session.refresh(row)
                session.refresh(bed)
                result = BedAssignmentResult(request=admission_to_response(row), bed=bed_to_response(bed))

        logger.info("Bed %s assigned to admission request %s", bed_id, request_id)
        self._publish(BED_ASSIGNED, "bed", bed_id, actor, {"request_id": request_id, "patient_id": result.request.patient_id})
        return result

    def discharge_admission(self, request_id: int, actor: str | None = None) -> AdmissionRequestResponse:
        """Release the admission's bed for cleaning."""
        with self.session_factory() as session:
            row = self._request_or_404(session, request_id)
            bed_id = cast(int | None, row.bed_id)
        if row.status != AdmissionStatus.ADMITTED.value or bed_id is None or row.discharged_at is not None:
            raise StateError(
                "Only an admitted, not yet discharged request can be discharged",
                details={"request_id": request_id, "status": cast(str, row.status)},
            )
        with self.bed_locks.hold(bed_id):
            with self.session_factory() as session:
                row = self._request_or_404(session, request_id)
                if row.discharged_at is not None:
                    raise StateError("Admission already discharged", details={"request_id": request_id})
                now = self.clock()
                self._move_bed(session, bed_id, BedStatus.CLEANING, now)
                self.admission_repo.mark_discharged(session, row, now=now)
                response = admission_to_response(row)
        self._publish(BED_STATUS_CHANGED, "bed", bed_id, actor, {"status": BedStatus.CLEANING.value, "request_id": request_id})
        return response

    def mark_bed_clean(self, bed_id: int, actor: str | None = None) -> BedResponse:
        return self._change_bed_status(bed_id, BedStatus.AVAILABLE, actor, only_from={BedStatus.CLEANING})

    def set_bed_maintenance(self, bed_id: int, enabled: bool, actor: str | None = None) -> BedResponse:
        if enabled:
            return self._change_bed_status(bed_id, BedStatus.MAINTENANCE, actor)
        return self._change_bed_status(bed_id, BedStatus.AVAILABLE, actor, only_from={BedStatus.MAINTENANCE})

    def _change_bed_status(
        self,
        bed_id: int,
        target: BedStatus,
        actor: str | None,
        only_from: set[BedStatus] | None = None,
    ) -> BedResponse:
        with self.bed_locks.hold(bed_id):
            with self.session_factory() as session:
                bed = self._bed_or_404(session, bed_id)
                current = BedStatus(cast(str, self.ward_repo.read_bed_status(session, bed_id)))
                if only_from is not None and current not in only_from:
                    raise StateError(
                        f"Bed cannot move from '{current.value}' to '{target.value}' here",
                        details={"bed_id": bed_id, "from": current.value, "to": target.value},
                    )
                self._move_bed(session, bed_id, target, self.clock())
                session.refresh(bed)
                response = bed_to_response(bed)
        self._publish(BED_STATUS_CHANGED, "bed", bed_id, actor, {"status": target.value})
        return response

    def _move_bed(self, session: Session, bed_id: int, target: BedStatus, now: datetime) -> None:
        current = self.ward_repo.read_bed_status(session, bed_id)
        if current is None:
            raise NotFoundError(f"Bed {bed_id} not found", details={"bed_id": bed_id})
        validate_bed_transition(current, target.value)
        if not self.ward_repo.update_bed_status(
            session, bed_id=bed_id, expected_status=current, new_status=target.value, now=now
        ):
            raise ConflictError("Bed changed concurrently; reload and retry", details={"bed_id": bed_id})

    def _request_or_404(self, session: Session, request_id: int) -> AdmissionRequest:
        row = self.admission_repo.get_by_id(session, request_id)
        if row is None:
            raise NotFoundError(f"Admission request {request_id} not found", details={"request_id": request_id})
        return row

    def _bed_or_404(self, session: Session, bed_id: int) -> Bed:
        bed = self.ward_repo.get_bed(session, bed_id)
        if bed is None:
            raise NotFoundError(f"Bed {bed_id} not found", details={"bed_id": bed_id})
        return bed

    @staticmethod
    def _require_pending(row: AdmissionRequest) -> None:
        if row.status != AdmissionStatus.PENDING.value:
            raise StateError(
                f"Admission request is {row.status}, not pending",
                details={"request_id": cast(int, row.id), "status": cast(str, row.status)},
            )

    def _publish(self, name: str, entity_type: str, entity_id: int, actor: str | None, payload: dict[str, Any]) -> None:
        self.event_bus.publish(
            DomainEvent(name=name, entity_type=entity_type, entity_id=str(entity_id), actor=actor, payload=payload)
        )
