from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from patientflow.application.dto.patient_dto import PriorityValue
from patientflow.application.dto.triage_dto import TriageRequest


class AdmissionRequestCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    patient_id: int
    visit_id: int | None = None
    department: str = Field(..., min_length=1)
    requesting_doctor: str = Field(..., min_length=1)
    diagnosis: str = Field(..., min_length=1)
    priority: PriorityValue | None = None
    notes: str | None = None
    triage: TriageRequest | None = None


class AdmissionRequestResponse(BaseModel):
    id: int
    patient_id: int
    visit_id: int | None = None
    department: str
    requesting_doctor: str
    diagnosis: str
    priority: str
    status: str
    requested_at: datetime
    bed_id: int | None = None
    resolved_at: datetime | None = None
    discharged_at: datetime | None = None
    notes: str | None = None


class BedResponse(BaseModel):
    id: int
    ward_id: int
    number: str
    bed_type: str
    price_per_day: float
    status: str
    version: int


class WardResponse(BaseModel):
    id: int
    code: str
    name: str
    ward_type: str
    floor: str | None = None
    total_beds: int = 0
    available: int = 0
    occupied: int = 0
    cleaning: int = 0
    maintenance: int = 0


class BedAssignmentResult(BaseModel):
    request: AdmissionRequestResponse
    bed: BedResponse
