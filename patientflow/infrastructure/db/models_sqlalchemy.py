from __future__ import annotations

from datetime import UTC, datetime

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, relationship
from sqlalchemy.sql import expression

from patientflow.domain.beds import BedStatus
from patientflow.domain.constants import (
    AdmissionStatus,
    CareSetting,
    Gender,
    IdentificationType,
    PatientStatus,
    Priority,
    WardType,
)
from patientflow.domain.queueing import QueueEntryStatus
from patientflow.domain.workflow import Station, VisitState

naming_convention = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    # avoid constraint_name token to allow unnamed CheckConstraint
    "ck": "ck_%(table_name)s_%(column_0_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}

metadata = MetaData(naming_convention=naming_convention)


class Base(DeclarativeBase):
    metadata = metadata


def utc_now() -> datetime:
    # Stored naive (UTC) so values read back compare with values just written.
    return datetime.now(UTC).replace(tzinfo=None)


def _in_clause(column: str, values: list[str]) -> str:
    quoted = ",".join(f"'{v}'" for v in values)
    return f"{column} in ({quoted})"


class AuditLog(Base):
    __tablename__ = "audit_log"

    id = Column(Integer, primary_key=True)
    event_ts = Column(DateTime, nullable=False, default=utc_now)
    actor = Column(String, nullable=True)
    entity_type = Column(String, nullable=False)
    entity_id = Column(String, nullable=False)
    action = Column(String, nullable=False)
    payload_json = Column(Text, nullable=True)

    __table_args__ = (
        Index("ix_audit_log_entity_type_entity_id", "entity_type", "entity_id"),
    )


class Patient(Base):
    __tablename__ = "patients"

    id = Column(Integer, primary_key=True)
    mr_number = Column(String, nullable=False, unique=True)
    first_name = Column(String, nullable=False)
    last_name = Column(String, nullable=False)
    dob = Column(Date)
    gender = Column(String, nullable=False, server_default=expression.literal(Gender.UNKNOWN.value))
    identification_type = Column(
        String, nullable=False, server_default=expression.literal(IdentificationType.NONE.value)
    )
    identification_number = Column(String)
    phone = Column(String)
    email = Column(String)
    address = Column(Text)
    is_unknown = Column(Boolean, nullable=False, server_default=expression.false())
    status = Column(String, nullable=False, server_default=expression.literal(PatientStatus.ACTIVE.value))
    created_at = Column(DateTime, nullable=False, default=utc_now)
    updated_at = Column(DateTime, nullable=False, default=utc_now)

    __table_args__ = (
        CheckConstraint(_in_clause("gender", Gender.values()), name="ck_patients_gender"),
        CheckConstraint(
            _in_clause("identification_type", IdentificationType.values()),
            name="ck_patients_identification_type",
        ),
        CheckConstraint(_in_clause("status", PatientStatus.values()), name="ck_patients_status"),
        Index("ix_patients_phone", "phone"),
        Index("ix_patients_identification_number", "identification_number"),
    )


class MrNumberSequence(Base):
    __tablename__ = "mr_number_sequence"

    year = Column(Integer, primary_key=True)
    last_number = Column(Integer, nullable=False, default=0)


class Visit(Base):
    __tablename__ = "visits"

    id = Column(Integer, primary_key=True)
    patient_id = Column(Integer, ForeignKey("patients.id"), nullable=False)
    care_setting = Column(String, nullable=False, server_default=expression.literal(CareSetting.OPD.value))
    department = Column(String)
    doctor = Column(String)
    state = Column(String, nullable=False, server_default=expression.literal(VisitState.REGISTERED.value))
    priority = Column(String, nullable=False, server_default=expression.literal(Priority.ROUTINE.value))
    chief_complaint = Column(Text)
    triage_level = Column(Integer)
    triage_sla_minutes = Column(Integer)
    version = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime, nullable=False, default=utc_now)
    updated_at = Column(DateTime, nullable=False, default=utc_now)
    closed_at = Column(DateTime)

    patient = relationship("Patient")

    __table_args__ = (
        CheckConstraint(_in_clause("state", VisitState.values()), name="ck_visits_state"),
        CheckConstraint(_in_clause("priority", Priority.values()), name="ck_visits_priority"),
        CheckConstraint(_in_clause("care_setting", CareSetting.values()), name="ck_visits_care_setting"),
        # one active visit per patient
        Index(
            "uq_visits_active_patient",
            "patient_id",
            unique=True,
            sqlite_where=expression.text("closed_at IS NULL"),
            postgresql_where=expression.text("closed_at IS NULL"),
        ),
        Index("ix_visits_state", "state"),
    )


class VisitTransition(Base):
    __tablename__ = "visit_transitions"

    id = Column(Integer, primary_key=True)
    visit_id = Column(Integer, ForeignKey("visits.id", ondelete="CASCADE"), nullable=False)
    transition = Column(String, nullable=False)
    from_state = Column(String, nullable=False)
    to_state = Column(String, nullable=False)
    occurred_at = Column(DateTime, nullable=False, default=utc_now)
    actor = Column(String)

    __table_args__ = (Index("ix_visit_transitions_visit_id", "visit_id", "occurred_at"),)


class QueueEntry(Base):
    __tablename__ = "queue_entries"

    id = Column(Integer, primary_key=True)
    visit_id = Column(Integer, ForeignKey("visits.id", ondelete="CASCADE"), nullable=False)
    station = Column(String, nullable=False)
    priority = Column(String, nullable=False, server_default=expression.literal(Priority.ROUTINE.value))
    status = Column(String, nullable=False, server_default=expression.literal(QueueEntryStatus.WAITING.value))
    enqueued_at = Column(DateTime, nullable=False, default=utc_now)
    started_at = Column(DateTime)
    held_at = Column(DateTime)
    completed_at = Column(DateTime)
    left_at = Column(DateTime)
    assigned_to = Column(String)
    notes = Column(Text)

    visit = relationship("Visit")

    __table_args__ = (
        CheckConstraint(_in_clause("status", QueueEntryStatus.values()), name="ck_queue_entries_status"),
        CheckConstraint(_in_clause("station", Station.values()), name="ck_queue_entries_station"),
        CheckConstraint(_in_clause("priority", Priority.values()), name="ck_queue_entries_priority"),
        # at most one open entry per visit
        Index(
            "uq_queue_entries_open_visit",
            "visit_id",
            unique=True,
            sqlite_where=expression.text("left_at IS NULL"),
            postgresql_where=expression.text("left_at IS NULL"),
        ),
        Index("ix_queue_entries_station_open", "station", "left_at", "status"),
    )


class Ward(Base):
    __tablename__ = "wards"

    id = Column(Integer, primary_key=True)
    code = Column(String, nullable=False, unique=True)
    name = Column(String, nullable=False)
    ward_type = Column(String, nullable=False, server_default=expression.literal(WardType.GENERAL.value))
    floor = Column(String)

    beds = relationship("Bed", back_populates="ward", order_by="Bed.id")

    __table_args__ = (CheckConstraint(_in_clause("ward_type", WardType.values()), name="ck_wards_ward_type"),)


class Bed(Base):
    __tablename__ = "beds"

    id = Column(Integer, primary_key=True)
    ward_id = Column(Integer, ForeignKey("wards.id"), nullable=False)
    number = Column(String, nullable=False)
    bed_type = Column(String, nullable=False, server_default=expression.literal("general"))
    price_per_day = Column(Numeric(10, 2, asdecimal=False), nullable=False, default=0)
    status = Column(String, nullable=False, server_default=expression.literal(BedStatus.AVAILABLE.value))
    version = Column(Integer, nullable=False, default=1)
    updated_at = Column(DateTime, nullable=False, default=utc_now)

    ward = relationship("Ward", back_populates="beds")

    __table_args__ = (
        UniqueConstraint("ward_id", "number", name="uq_beds_ward_number"),
        CheckConstraint(_in_clause("status", BedStatus.values()), name="ck_beds_status"),
        Index("ix_beds_ward_status", "ward_id", "status"),
    )


class AdmissionRequest(Base):
    __tablename__ = "admission_requests"

    id = Column(Integer, primary_key=True)
    patient_id = Column(Integer, ForeignKey("patients.id"), nullable=False)
    visit_id = Column(Integer, ForeignKey("visits.id"))
    department = Column(String, nullable=False)
    requesting_doctor = Column(String, nullable=False)
    diagnosis = Column(Text, nullable=False)
    priority = Column(String, nullable=False, server_default=expression.literal(Priority.ROUTINE.value))
    status = Column(String, nullable=False, server_default=expression.literal(AdmissionStatus.PENDING.value))
    requested_at = Column(DateTime, nullable=False, default=utc_now)
    bed_id = Column(Integer, ForeignKey("beds.id"))
    resolved_at = Column(DateTime)
    discharged_at = Column(DateTime)
    notes = Column(Text)

    patient = relationship("Patient")
    bed = relationship("Bed")

    __table_args__ = (
        CheckConstraint(_in_clause("status", AdmissionStatus.values()), name="ck_admission_requests_status"),
        CheckConstraint(_in_clause("priority", Priority.values()), name="ck_admission_requests_priority"),
        # a bed holds at most one admission that has not been discharged
        Index(
            "uq_admission_requests_bed_in_use",
            "bed_id",
            unique=True,
            sqlite_where=expression.text("bed_id IS NOT NULL AND discharged_at IS NULL"),
            postgresql_where=expression.text("bed_id IS NOT NULL AND discharged_at IS NULL"),
        ),
        Index("ix_admission_requests_status", "status", "requested_at"),
    )


class TriageAssessment(Base):
    __tablename__ = "triage_assessments"

    id = Column(Integer, primary_key=True)
    visit_id = Column(Integer, ForeignKey("visits.id", ondelete="CASCADE"))
    admission_request_id = Column(Integer, ForeignKey("admission_requests.id", ondelete="CASCADE"))
    complaint_id = Column(String, nullable=False)
    discriminator_id = Column(String)
    observed_json = Column(Text, nullable=False, server_default=expression.literal("[]"))
    vitals_json = Column(Text)
    level = Column(Integer, nullable=False)
    sla_minutes = Column(Integer, nullable=False)
    reason = Column(Text)
    assessed_at = Column(DateTime, nullable=False, default=utc_now)
    assessed_by = Column(String)

    __table_args__ = (
        CheckConstraint("level between 1 and 5", name="ck_triage_assessments_level"),
        Index("ix_triage_assessments_visit_id", "visit_id"),
    )
