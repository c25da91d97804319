from __future__ import annotations

from enum import StrEnum


class Priority(StrEnum):
    ROUTINE = "routine"
    URGENT = "urgent"
    EMERGENCY = "emergency"

    @classmethod
    def values(cls) -> list[str]:
        return [item.value for item in cls]

    @property
    def rank(self) -> int:
        return _PRIORITY_RANK[self]


_PRIORITY_RANK = {
    Priority.ROUTINE: 0,
    Priority.URGENT: 1,
    Priority.EMERGENCY: 2,
}


class Gender(StrEnum):
    MALE = "male"
    FEMALE = "female"
    OTHER = "other"
    UNKNOWN = "unknown"

    @classmethod
    def values(cls) -> list[str]:
        return [item.value for item in cls]


class IdentificationType(StrEnum):
    CNIC = "cnic"
    PASSPORT = "passport"
    DRIVING_LICENSE = "driving_license"
    NONE = "none"

    @classmethod
    def values(cls) -> list[str]:
        return [item.value for item in cls]


class PatientStatus(StrEnum):
    ACTIVE = "active"
    INACTIVE = "inactive"

    @classmethod
    def values(cls) -> list[str]:
        return [item.value for item in cls]


class CareSetting(StrEnum):
    OPD = "opd"
    EMERGENCY = "emergency"
    IPD = "ipd"

    @classmethod
    def values(cls) -> list[str]:
        return [item.value for item in cls]


class AdmissionStatus(StrEnum):
    PENDING = "pending"
    ADMITTED = "admitted"
    CANCELLED = "cancelled"

    @classmethod
    def values(cls) -> list[str]:
        return [item.value for item in cls]


class WardType(StrEnum):
    GENERAL = "general"
    PRIVATE = "private"
    ICU = "icu"
    EMERGENCY = "emergency"

    @classmethod
    def values(cls) -> list[str]:
        return [item.value for item in cls]


def most_severe_priority(*values: str | None) -> Priority:
    present = [Priority(v) for v in values if v]
    if not present:
        return Priority.ROUTINE
    return max(present, key=lambda p: p.rank)
