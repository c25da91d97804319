from __future__ import annotations

from dataclasses import dataclass, field

from patientflow.domain.constants import Priority

TRIAGE_LEVEL_MIN = 1
TRIAGE_LEVEL_MAX = 5
DEFAULT_TRIAGE_LEVEL = TRIAGE_LEVEL_MAX

SPO2_RED_FLAG_THRESHOLD = 90


@dataclass(frozen=True, slots=True)
class TriageLevelInfo:
    level: int
    name: str
    sla_minutes: int
    color: str = ""
    description: str = ""


@dataclass(frozen=True, slots=True)
class Discriminator:
    id: str
    level: int
    description: str = ""


@dataclass(frozen=True, slots=True)
class PresentingComplaint:
    id: str
    name: str
    discriminators: tuple[Discriminator, ...] = ()


@dataclass(frozen=True, slots=True)
class TriageProtocol:
    complaints: tuple[PresentingComplaint, ...]
    levels: tuple[TriageLevelInfo, ...]

    def find_complaint(self, complaint_id: str) -> PresentingComplaint | None:
        for complaint in self.complaints:
            if complaint.id == complaint_id:
                return complaint
        return None

    def level_info(self, level: int) -> TriageLevelInfo:
        for info in self.levels:
            if info.level == level:
                return info
        raise KeyError(level)


@dataclass(frozen=True, slots=True)
class VitalSigns:
    temperature: float | None = None
    heart_rate: int | None = None
    respiratory_rate: int | None = None
    oxygen_saturation: float | None = None
    systolic_bp: int | None = None
    pain_scale: int | None = None
    consciousness: str | None = None


@dataclass(frozen=True, slots=True)
class TriageResult:
    complaint_id: str
    level: int
    name: str
    color: str
    sla_minutes: int
    priority: Priority
    reason: str
    discriminator_id: str | None = None
    observed_ids: tuple[str, ...] = field(default_factory=tuple)
