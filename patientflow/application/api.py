"""Operation-level facade consumed by the administration UI.

Every call returns an :class:`OperationResult`; a domain failure is scoped
to the single operation that produced it and never escapes as an
exception. Anything else is a bug and is logged and re-raised.
"""
from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from patientflow.application.dto.admission_dto import (
    AdmissionRequestCreate,
    AdmissionRequestResponse,
    BedAssignmentResult,
    BedResponse,
    WardResponse,
)
from patientflow.application.dto.patient_dto import (
    ContactUpdateRequest,
    DuplicateCheckRequest,
    DuplicateMatch,
    PatientRegistrationRequest,
    PatientResponse,
    RegistrationResult,
)
from patientflow.application.dto.queue_dto import QueueEntryResponse, StationQueueStats
from patientflow.application.dto.triage_dto import (
    ComplaintDto,
    TriageAssessmentResponse,
    TriageRequest,
    TriageResultDto,
)
from patientflow.application.dto.visit_dto import VisitOpenRequest, VisitResponse, VisitTransitionResponse
from patientflow.application.services.bed_service import BedService
from patientflow.application.services.identity_service import IdentityService
from patientflow.application.services.queue_service import QueueService
from patientflow.application.services.triage_service import TriageService
from patientflow.application.services.workflow_service import WorkflowService
from patientflow.domain.errors import NotFoundError, PatientFlowError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class OperationResult(Generic[T]):
    ok: bool
    value: T | None = None
    error: PatientFlowError | None = None

    @classmethod
    def success(cls, value: T) -> OperationResult[T]:
        return cls(ok=True, value=value)

    @classmethod
    def failure(cls, error: PatientFlowError) -> OperationResult[T]:
        return cls(ok=False, error=error)

    @property
    def error_code(self) -> str | None:
        return self.error.code if self.error is not None else None

    def unwrap(self) -> T:
        if self.error is not None:
            raise self.error
        return self.value  # type: ignore[return-value]


class PatientFlowApi:
    def __init__(
        self,
        identity_service: IdentityService,
        triage_service: TriageService,
        workflow_service: WorkflowService,
        queue_service: QueueService,
        bed_service: BedService,
    ) -> None:
        self.identity = identity_service
        self.triage = triage_service
        self.workflow = workflow_service
        self.queue = queue_service
        self.beds = bed_service

    def _run(self, operation: str, func: Callable[..., T], *args: Any, **kwargs: Any) -> OperationResult[T]:
        try:
            return OperationResult.success(func(*args, **kwargs))
        except PatientFlowError as exc:
            logger.info("%s failed [%s]: %s", operation, exc.code, exc.message)
            return OperationResult.failure(exc)
        except Exception:
            logger.exception("%s failed unexpectedly", operation)
            raise

    # intake
    def search_patients(self, query: str) -> OperationResult[list[PatientResponse]]:
        return self._run("search_patients", self.identity.search_patients, query)

    def check_duplicates(
        self, candidate: DuplicateCheckRequest | Mapping[str, Any]
    ) -> OperationResult[list[DuplicateMatch]]:
        return self._run("check_duplicates", self.identity.check_duplicates, candidate)

    def register_patient(
        self, request: PatientRegistrationRequest | Mapping[str, Any], actor: str | None = None
    ) -> OperationResult[RegistrationResult]:
        return self._run("register_patient", self.identity.register_patient, request, actor=actor)

    def get_patient(self, patient_id: int) -> OperationResult[PatientResponse]:
        return self._run("get_patient", self.identity.get_patient, patient_id)

    def update_contact(
        self, patient_id: int, request: ContactUpdateRequest | Mapping[str, Any], actor: str | None = None
    ) -> OperationResult[PatientResponse]:
        return self._run("update_contact", self.identity.update_contact, patient_id, request, actor=actor)

    def deactivate_patient(self, patient_id: int, actor: str | None = None) -> OperationResult[PatientResponse]:
        return self._run("deactivate_patient", self.identity.deactivate_patient, patient_id, actor=actor)

    # triage
    def classify_triage(self, request: TriageRequest | Mapping[str, Any]) -> OperationResult[TriageResultDto]:
        return self._run("classify_triage", self.triage.classify, request)

    def list_complaints(self) -> OperationResult[list[ComplaintDto]]:
        return self._run("list_complaints", self.triage.list_complaints)

    def record_triage(
        self, visit_id: int, request: TriageRequest | Mapping[str, Any], actor: str | None = None
    ) -> OperationResult[TriageAssessmentResponse]:
        return self._run("record_triage", self.triage.record, visit_id, request, actor=actor)

    # visits
    def open_visit(
        self, request: VisitOpenRequest | Mapping[str, Any], actor: str | None = None
    ) -> OperationResult[VisitResponse]:
        return self._run("open_visit", self.workflow.open_visit, request, actor=actor)

    def advance_visit(self, visit_id: int, transition: str, actor: str | None = None) -> OperationResult[VisitResponse]:
        return self._run("advance_visit", self.workflow.advance_visit, visit_id, transition, actor=actor)

    def get_visit(self, visit_id: int) -> OperationResult[VisitResponse]:
        return self._run("get_visit", self.workflow.get_visit, visit_id)

    def list_active_visits(self, station: str | None = None) -> OperationResult[list[VisitResponse]]:
        return self._run("list_active_visits", self.workflow.list_active_visits, station)

    def get_visit_history(self, visit_id: int) -> OperationResult[list[VisitTransitionResponse]]:
        return self._run("get_visit_history", self.workflow.get_visit_history, visit_id)

    # queues
    def call_next(self, station: str, actor: str | None = None) -> OperationResult[QueueEntryResponse]:
        def _call() -> QueueEntryResponse:
            entry = self.queue.call_next(station, actor=actor)
            if entry is None:
                raise NotFoundError(f"No waiting entries at {station}", details={"station": station})
            return entry

        return self._run("call_next", _call)

    def hold_queue_entry(self, entry_id: int, actor: str | None = None) -> OperationResult[QueueEntryResponse]:
        return self._run("hold_queue_entry", self.queue.hold, entry_id, actor=actor)

    def release_queue_entry(self, entry_id: int, actor: str | None = None) -> OperationResult[QueueEntryResponse]:
        return self._run("release_queue_entry", self.queue.release, entry_id, actor=actor)

    def complete_queue_entry(
        self, entry_id: int, next_transition: str | None = None, actor: str | None = None
    ) -> OperationResult[QueueEntryResponse]:
        return self._run("complete_queue_entry", self.queue.complete, entry_id, next_transition, actor=actor)

    def list_queue(self, station: str) -> OperationResult[list[QueueEntryResponse]]:
        return self._run("list_queue", self.queue.list_queue, station)

    def queue_stats(self) -> OperationResult[list[StationQueueStats]]:
        return self._run("queue_stats", self.queue.queue_stats)

    # admissions and beds
    def create_admission_request(
        self, request: AdmissionRequestCreate | Mapping[str, Any], actor: str | None = None
    ) -> OperationResult[AdmissionRequestResponse]:
        return self._run("create_admission_request", self.beds.create_admission_request, request, actor=actor)

    def list_wards(self) -> OperationResult[list[WardResponse]]:
        return self._run("list_wards", self.beds.list_wards)

    def list_available_beds(self, ward_id: int) -> OperationResult[list[BedResponse]]:
        return self._run("list_available_beds", self.beds.list_available_beds, ward_id)

    def assign_bed(self, request_id: int, bed_id: int, actor: str | None = None) -> OperationResult[BedAssignmentResult]:
        return self._run("assign_bed", self.beds.assign_bed, request_id, bed_id, actor=actor)

    def list_pending_admission_requests(self) -> OperationResult[list[AdmissionRequestResponse]]:
        return self._run("list_pending_admission_requests", self.beds.list_pending_admission_requests)

    def cancel_admission_request(
        self, request_id: int, actor: str | None = None
    ) -> OperationResult[AdmissionRequestResponse]:
        return self._run("cancel_admission_request", self.beds.cancel_admission_request, request_id, actor=actor)

    def discharge_admission(self, request_id: int, actor: str | None = None) -> OperationResult[AdmissionRequestResponse]:
        return self._run("discharge_admission", self.beds.discharge_admission, request_id, actor=actor)

    def mark_bed_clean(self, bed_id: int, actor: str | None = None) -> OperationResult[BedResponse]:
        return self._run("mark_bed_clean", self.beds.mark_bed_clean, bed_id, actor=actor)

    def set_bed_maintenance(self, bed_id: int, enabled: bool, actor: str | None = None) -> OperationResult[BedResponse]:
        return self._run("set_bed_maintenance", self.beds.set_bed_maintenance, bed_id, enabled, actor=actor)
