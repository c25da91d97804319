from __future__ import annotations

from datetime import date, datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

from patientflow.domain.constants import CareSetting, Gender, IdentificationType, Priority

GenderValue = Literal["male", "female", "other", "unknown"]
IdentificationTypeValue = Literal["cnic", "passport", "driving_license", "none"]
PriorityValue = Literal["routine", "urgent", "emergency"]
CareSettingValue = Literal["opd", "emergency", "ipd"]

UNKNOWN_FIRST_NAME = "Unknown"
UNKNOWN_LAST_NAME = "Patient"


class VisitDetails(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    care_setting: CareSettingValue = CareSetting.OPD.value
    department: str | None = None
    doctor: str | None = None
    priority: PriorityValue = Priority.ROUTINE.value
    chief_complaint: str | None = None


class PatientRegistrationRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    first_name: str | None = None
    last_name: str | None = None
    dob: date | None = None
    gender: GenderValue | None = None
    identification_type: IdentificationTypeValue = IdentificationType.NONE.value
    identification_number: str | None = None
    phone: str | None = None
    email: str | None = None
    address: str | None = None
    is_unknown: bool = False
    visit: VisitDetails | None = None

    @model_validator(mode="after")
    def _require_demographics(self) -> PatientRegistrationRequest:
        if self.is_unknown:
            self.first_name = self.first_name or UNKNOWN_FIRST_NAME
            self.last_name = self.last_name or UNKNOWN_LAST_NAME
            self.gender = self.gender or Gender.UNKNOWN.value
        else:
            missing = [
                name
                for name in ("first_name", "last_name", "dob", "gender", "phone")
                if not getattr(self, name)
            ]
            if missing:
                raise ValueError(f"Required demographic fields missing: {', '.join(missing)}")
        if self.identification_number and self.identification_type == IdentificationType.NONE.value:
            raise ValueError("Identification number requires an identification type")
        if not self.identification_number:
            self.identification_number = None
        return self


class DuplicateCheckRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    first_name: str | None = None
    last_name: str | None = None
    phone: str | None = None
    identification_number: str | None = None


class ContactUpdateRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    phone: str | None = Field(default=None, min_length=1)
    email: str | None = None
    address: str | None = None


class PatientResponse(BaseModel):
    id: int
    mr_number: str
    first_name: str
    last_name: str
    dob: date | None = None
    gender: str
    identification_type: str
    identification_number: str | None = None
    phone: str | None = None
    email: str | None = None
    address: str | None = None
    is_unknown: bool = False
    status: str
    created_at: datetime

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"


class RegistrationResult(BaseModel):
    patient_id: int
    mr_number: str
    visit_id: int | None = None
    message: str = ""


class DuplicateMatch(BaseModel):
    score: int
    patient: PatientResponse
    reasons: list[str] = Field(default_factory=list)
