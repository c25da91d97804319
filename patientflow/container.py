from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from patientflow.application.api import PatientFlowApi
from patientflow.application.events import AuditTrailSubscriber, EventBus
from patientflow.application.locks import KeyedLock
from patientflow.application.services.bed_service import BedService
from patientflow.application.services.identity_service import IdentityService
from patientflow.application.services.queue_service import QueueService
from patientflow.application.services.triage_service import TriageService
from patientflow.application.services.workflow_service import WorkflowService
from patientflow.infrastructure.db.models_sqlalchemy import utc_now
from patientflow.infrastructure.db.repositories.admission_repo import AdmissionRepository
from patientflow.infrastructure.db.repositories.audit_repo import AuditLogRepository
from patientflow.infrastructure.db.repositories.patient_repo import PatientRepository
from patientflow.infrastructure.db.repositories.queue_repo import QueueRepository
from patientflow.infrastructure.db.repositories.triage_repo import TriageRepository
from patientflow.infrastructure.db.repositories.visit_repo import VisitRepository
from patientflow.infrastructure.db.repositories.ward_repo import WardRepository
from patientflow.infrastructure.db.session import session_scope


@dataclass
class Container:
    session_factory: Callable
    event_bus: EventBus
    audit_subscriber: AuditTrailSubscriber

    audit_repo: AuditLogRepository
    patient_repo: PatientRepository
    visit_repo: VisitRepository
    queue_repo: QueueRepository
    triage_repo: TriageRepository
    ward_repo: WardRepository
    admission_repo: AdmissionRepository

    identity_service: IdentityService
    triage_service: TriageService
    workflow_service: WorkflowService
    queue_service: QueueService
    bed_service: BedService
    api: PatientFlowApi


def build_container(
    session_factory: Callable = session_scope,
    *,
    clock: Callable[[], datetime] = utc_now,
    triage_protocols_file: Path | None = None,
    audit: bool = True,
) -> Container:
    event_bus = EventBus()
    audit_repo = AuditLogRepository()
    audit_subscriber = AuditTrailSubscriber(audit_repo=audit_repo, session_factory=session_factory)
    if audit:
        audit_subscriber.attach(event_bus)

    patient_repo = PatientRepository()
    visit_repo = VisitRepository()
    queue_repo = QueueRepository()
    triage_repo = TriageRepository()
    ward_repo = WardRepository()
    admission_repo = AdmissionRepository()

    # shared so queue calls, triage and direct transitions serialise per visit
    visit_locks = KeyedLock()

    workflow_service = WorkflowService(
        visit_repo=visit_repo,
        queue_repo=queue_repo,
        patient_repo=patient_repo,
        session_factory=session_factory,
        event_bus=event_bus,
        clock=clock,
        visit_locks=visit_locks,
    )
    identity_service = IdentityService(
        patient_repo=patient_repo,
        workflow_service=workflow_service,
        session_factory=session_factory,
        event_bus=event_bus,
        clock=clock,
    )
    triage_service = TriageService(
        protocol_file=triage_protocols_file,
        triage_repo=triage_repo,
        visit_repo=visit_repo,
        queue_repo=queue_repo,
        session_factory=session_factory,
        event_bus=event_bus,
        clock=clock,
        visit_locks=visit_locks,
    )
    queue_service = QueueService(
        queue_repo=queue_repo,
        visit_repo=visit_repo,
        workflow_service=workflow_service,
        session_factory=session_factory,
        event_bus=event_bus,
        clock=clock,
    )
    bed_service = BedService(
        ward_repo=ward_repo,
        admission_repo=admission_repo,
        patient_repo=patient_repo,
        visit_repo=visit_repo,
        triage_repo=triage_repo,
        triage_service=triage_service,
        session_factory=session_factory,
        event_bus=event_bus,
        clock=clock,
    )
    api = PatientFlowApi(
        identity_service=identity_service,
        triage_service=triage_service,
        workflow_service=workflow_service,
        queue_service=queue_service,
        bed_service=bed_service,
    )

    return Container(
        session_factory=session_factory,
        event_bus=event_bus,
        audit_subscriber=audit_subscriber,
        audit_repo=audit_repo,
        patient_repo=patient_repo,
        visit_repo=visit_repo,
        queue_repo=queue_repo,
        triage_repo=triage_repo,
        ward_repo=ward_repo,
        admission_repo=admission_repo,
        identity_service=identity_service,
        triage_service=triage_service,
        workflow_service=workflow_service,
        queue_service=queue_service,
        bed_service=bed_service,
        api=api,
    )
