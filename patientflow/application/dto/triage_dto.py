from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class VitalSignsDto(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    temperature: float | None = None
    heart_rate: int | None = Field(default=None, ge=0)
    respiratory_rate: int | None = Field(default=None, ge=0)
    oxygen_saturation: float | None = Field(default=None, ge=0, le=100)
    systolic_bp: int | None = Field(default=None, ge=0)
    pain_scale: int | None = Field(default=None, ge=0, le=10)
    consciousness: Literal["alert", "verbal", "pain", "unresponsive"] | None = None


class TriageRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    complaint_id: str = Field(..., min_length=1)
    observed_ids: list[str] = Field(default_factory=list)
    vitals: VitalSignsDto | None = None
    assessed_by: str | None = None


class TriageResultDto(BaseModel):
    complaint_id: str
    level: int
    name: str
    color: str
    sla_minutes: int
    priority: str
    reason: str
    discriminator_id: str | None = None


class TriageAssessmentResponse(TriageResultDto):
    id: int
    visit_id: int | None = None
    admission_request_id: int | None = None
    assessed_at: datetime
    assessed_by: str | None = None


class DiscriminatorDto(BaseModel):
    id: str
    level: int
    description: str = ""


class ComplaintDto(BaseModel):
    id: str
    name: str
    discriminators: list[DiscriminatorDto] = Field(default_factory=list)
