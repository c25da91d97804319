from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from datetime import date, datetime
from typing import Any, cast

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from patientflow.application.dto.patient_dto import (
    ContactUpdateRequest,
    DuplicateCheckRequest,
    DuplicateMatch,
    PatientRegistrationRequest,
    PatientResponse,
    RegistrationResult,
)
from patientflow.application.events import PATIENT_REGISTERED, PATIENT_UPDATED, DomainEvent, EventBus
from patientflow.application.services.workflow_service import WorkflowService
from patientflow.application.validation import parse_request
from patientflow.config import settings
from patientflow.domain.constants import PatientStatus
from patientflow.domain.errors import ConflictError, NotFoundError, ValidationError
from patientflow.domain.rules.identity_rules import IdentityFingerprint, format_mr_number, score_match
from patientflow.infrastructure.db.models_sqlalchemy import Patient, utc_now
from patientflow.infrastructure.db.repositories.patient_repo import PatientRepository
from patientflow.infrastructure.db.session import session_scope

logger = logging.getLogger(__name__)


def patient_to_response(patient: Patient) -> PatientResponse:
    return PatientResponse(
        id=cast(int, patient.id),
        mr_number=cast(str, patient.mr_number),
        first_name=cast(str, patient.first_name),
        last_name=cast(str, patient.last_name),
        dob=cast(date | None, patient.dob),
        gender=cast(str, patient.gender),
        identification_type=cast(str, patient.identification_type),
        identification_number=cast(str | None, patient.identification_number),
        phone=cast(str | None, patient.phone),
        email=cast(str | None, patient.email),
        address=cast(str | None, patient.address),
        is_unknown=bool(patient.is_unknown),
        status=cast(str, patient.status),
        created_at=cast(datetime, patient.created_at),
    )


def _fingerprint(patient: Patient) -> IdentityFingerprint:
    return IdentityFingerprint(
        first_name=cast(str | None, patient.first_name),
        last_name=cast(str | None, patient.last_name),
        phone=cast(str | None, patient.phone),
        identification_number=cast(str | None, patient.identification_number),
    )


class IdentityService:
    def __init__(
        self,
        patient_repo: PatientRepository | None = None,
        workflow_service: WorkflowService | None = None,
        session_factory: Callable = session_scope,
        event_bus: EventBus | None = None,
        clock: Callable[[], datetime] = utc_now,
        mrn_prefix: str | None = None,
        mrn_max_attempts: int | None = None,
        duplicate_threshold: int | None = None,
    ) -> None:
        self.patient_repo = patient_repo or PatientRepository()
        self.session_factory = session_factory
        self.event_bus = event_bus or EventBus()
        self.clock = clock
        self.workflow = workflow_service or WorkflowService(
            patient_repo=self.patient_repo,
            session_factory=session_factory,
            event_bus=self.event_bus,
            clock=clock,
        )
        self.mrn_prefix = mrn_prefix or settings.mrn_prefix
        self.mrn_max_attempts = max(1, mrn_max_attempts or settings.mrn_max_attempts)
        self.duplicate_threshold = settings.duplicate_threshold if duplicate_threshold is None else duplicate_threshold

    def search_patients(self, query: str, limit: int | None = None) -> list[PatientResponse]:
        if not (query or "").strip():
            return []
        with self.session_factory() as session:
            return [patient_to_response(p) for p in self.patient_repo.search(session, query, limit=limit)]

    def check_duplicates(self, candidate: DuplicateCheckRequest | Mapping[str, Any]) -> list[DuplicateMatch]:
        """Advisory scoring of a prospective registration against stored identities."""
        req = parse_request(DuplicateCheckRequest, candidate)
        prospect = IdentityFingerprint(
            first_name=req.first_name,
            last_name=req.last_name,
            phone=req.phone,
            identification_number=req.identification_number,
        )
        with self.session_factory() as session:
            return self._score_candidates(session, prospect)

    def _score_candidates(self, session: Session, prospect: IdentityFingerprint) -> list[DuplicateMatch]:
        name_key = prospect.full_name_key
        if name_key and not name_key.isascii():
            # SQL lower() only folds ASCII; score every record in Python instead.
            candidates = self.patient_repo.list_all(session)
        else:
            candidates = self.patient_repo.find_identity_candidates(
                session,
                identification_number=(prospect.identification_number or "").strip() or None,
                phone=(prospect.phone or "").strip() or None,
                full_name_key=name_key or None,
            )
        matches: list[DuplicateMatch] = []
        for patient in candidates:
            score, reasons = score_match(prospect, _fingerprint(patient))
            if score > self.duplicate_threshold:
                matches.append(DuplicateMatch(score=score, patient=patient_to_response(patient), reasons=reasons))
        # sort is stable: equal scores keep insertion order
        matches.sort(key=lambda m: m.score, reverse=True)
        return matches

    def register_patient(
        self,
        request: PatientRegistrationRequest | Mapping[str, Any],
        actor: str | None = None,
    ) -> RegistrationResult:
        req = parse_request(PatientRegistrationRequest, request)
        if req.dob is not None and req.dob > self.clock().date():
            raise ValidationError(
                "Date of birth cannot be in the future",
                details={"field": "dob", "dob": req.dob.isoformat()},
            )
        with self.session_factory() as session:
            patient = self._create_with_mrn(session, req)
            patient_id = cast(int, patient.id)
            mr_number = cast(str, patient.mr_number)
            visit_id = None
            if req.visit is not None:
                visit = self.workflow.create_visit(
                    session,
                    patient_id=patient_id,
                    care_setting=req.visit.care_setting,
                    department=req.visit.department,
                    doctor=req.visit.doctor,
                    priority=req.visit.priority,
                    chief_complaint=req.visit.chief_complaint,
                )
                visit_id = cast(int, visit.id)

        logger.info("Registered patient %s as %s", patient_id, mr_number)
        self.event_bus.publish(
            DomainEvent(
                name=PATIENT_REGISTERED,
                entity_type="patient",
                entity_id=str(patient_id),
                actor=actor,
                payload={"mr_number": mr_number, "visit_id": visit_id, "is_unknown": req.is_unknown},
            )
        )
        return RegistrationResult(
            patient_id=patient_id,
            mr_number=mr_number,
            visit_id=visit_id,
            message=f"Patient registered successfully with MR Number: {mr_number}",
        )

    def _create_with_mrn(self, session: Session, req: PatientRegistrationRequest) -> Patient:
        year = self.clock().year
        for attempt in range(1, self.mrn_max_attempts + 1):
            sequence = self.patient_repo.next_mr_sequence(session, year)
            mr_number = format_mr_number(self.mrn_prefix, year, sequence)
            if self.patient_repo.mr_number_exists(session, mr_number):
                logger.warning("MR number %s already issued (attempt %d), regenerating", mr_number, attempt)
                continue
            try:
                with session.begin_nested():
                    return self.patient_repo.create(
                        session,
                        mr_number=mr_number,
                        first_name=cast(str, req.first_name),
                        last_name=cast(str, req.last_name),
                        dob=req.dob,
                        gender=cast(str, req.gender),
                        identification_type=req.identification_type,
                        identification_number=req.identification_number,
                        phone=req.phone,
                        email=req.email,
                        address=req.address,
                        is_unknown=req.is_unknown,
                    )
            except IntegrityError:
                logger.warning("MR number %s collided on insert (attempt %d), regenerating", mr_number, attempt)
        raise ConflictError(
            "Could not issue a unique MR number; retry the registration",
            details={"attempts": self.mrn_max_attempts},
        )

    def get_patient(self, patient_id: int) -> PatientResponse:
        with self.session_factory() as session:
            patient = self.patient_repo.get_by_id(session, patient_id)
            if patient is None:
                raise NotFoundError(f"Patient {patient_id} not found", details={"patient_id": patient_id})
            return patient_to_response(patient)

    def get_by_mr_number(self, mr_number: str) -> PatientResponse:
        with self.session_factory() as session:
            patient = self.patient_repo.get_by_mr_number(session, (mr_number or "").strip())
            if patient is None:
                raise NotFoundError(f"Patient {mr_number} not found", details={"mr_number": mr_number})
            return patient_to_response(patient)

    def update_contact(
        self,
        patient_id: int,
        request: ContactUpdateRequest | Mapping[str, Any],
        actor: str | None = None,
    ) -> PatientResponse:
        req = parse_request(ContactUpdateRequest, request)
        if req.phone is None and req.email is None and req.address is None:
            raise ValidationError("Nothing to update")
        with self.session_factory() as session:
            patient = self.patient_repo.update_contact(
                session, patient_id, phone=req.phone, email=req.email, address=req.address
            )
            if patient is None:
                raise NotFoundError(f"Patient {patient_id} not found", details={"patient_id": patient_id})
            response = patient_to_response(patient)
        self._publish_update(response, "contact_updated", actor)
        return response

    def deactivate_patient(self, patient_id: int, actor: str | None = None) -> PatientResponse:
        with self.session_factory() as session:
            patient = self.patient_repo.set_status(session, patient_id, PatientStatus.INACTIVE.value)
            if patient is None:
                raise NotFoundError(f"Patient {patient_id} not found", details={"patient_id": patient_id})
            response = patient_to_response(patient)
        self._publish_update(response, "deactivated", actor)
        return response

    def _publish_update(self, patient: PatientResponse, action: str, actor: str | None) -> None:
        self.event_bus.publish(
            DomainEvent(
                name=PATIENT_UPDATED,
                entity_type="patient",
                entity_id=str(patient.id),
                actor=actor,
                payload={"action": action, "mr_number": patient.mr_number},
            )
        )
