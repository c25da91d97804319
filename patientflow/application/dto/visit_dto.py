from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from patientflow.application.dto.patient_dto import CareSettingValue, PriorityValue
from patientflow.domain.constants import CareSetting, Priority


class VisitOpenRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    patient_id: int
    care_setting: CareSettingValue = CareSetting.OPD.value
    department: str | None = None
    doctor: str | None = None
    priority: PriorityValue = Priority.ROUTINE.value
    chief_complaint: str | None = None


class VisitResponse(BaseModel):
    id: int
    patient_id: int
    care_setting: str
    state: str
    station: str
    priority: str
    department: str | None = None
    doctor: str | None = None
    chief_complaint: str | None = None
    triage_level: int | None = None
    triage_sla_minutes: int | None = None
    version: int
    created_at: datetime
    updated_at: datetime
    closed_at: datetime | None = None
    allowed_transitions: list[str] = Field(default_factory=list)


class VisitTransitionResponse(BaseModel):
    transition: str
    from_state: str
    to_state: str
    occurred_at: datetime
    actor: str | None = None
