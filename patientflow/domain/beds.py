from __future__ import annotations

from enum import StrEnum
from typing import Final

from patientflow.domain.errors import StateError


class BedStatus(StrEnum):
    AVAILABLE = "available"
    OCCUPIED = "occupied"
    CLEANING = "cleaning"
    MAINTENANCE = "maintenance"

    @classmethod
    def values(cls) -> list[str]:
        return [item.value for item in cls]


_B = BedStatus

# available -> occupied is reserved for bed assignment (compare-and-swap).
BED_TRANSITIONS: Final[dict[BedStatus, frozenset[BedStatus]]] = {
    _B.AVAILABLE: frozenset({_B.OCCUPIED, _B.MAINTENANCE}),
    _B.OCCUPIED: frozenset({_B.CLEANING}),
    _B.CLEANING: frozenset({_B.AVAILABLE, _B.MAINTENANCE}),
    _B.MAINTENANCE: frozenset({_B.AVAILABLE}),
}


def validate_bed_transition(from_status: str, to_status: str) -> None:
    source = BedStatus(from_status)
    target = BedStatus(to_status)
    if target not in BED_TRANSITIONS[source]:
        raise StateError(
            f"Bed cannot move from '{source.value}' to '{target.value}'",
            details={"from": source.value, "to": target.value},
        )
