from __future__ import annotations

from datetime import datetime
from enum import StrEnum
from typing import Final

from patientflow.domain.errors import StateError


class QueueEntryStatus(StrEnum):
    WAITING = "waiting"
    IN_PROGRESS = "in_progress"
    ON_HOLD = "on_hold"
    COMPLETED = "completed"

    @classmethod
    def values(cls) -> list[str]:
        return [item.value for item in cls]


_Q = QueueEntryStatus

# in_progress never returns to waiting directly; it goes through on_hold.
ENTRY_TRANSITIONS: Final[dict[QueueEntryStatus, frozenset[QueueEntryStatus]]] = {
    _Q.WAITING: frozenset({_Q.IN_PROGRESS, _Q.ON_HOLD}),
    _Q.IN_PROGRESS: frozenset({_Q.COMPLETED, _Q.ON_HOLD}),
    _Q.ON_HOLD: frozenset({_Q.WAITING}),
    _Q.COMPLETED: frozenset(),
}

OPEN_STATUSES: Final = frozenset({_Q.WAITING, _Q.IN_PROGRESS, _Q.ON_HOLD})


def validate_entry_transition(from_status: str, to_status: str) -> None:
    source = QueueEntryStatus(from_status)
    target = QueueEntryStatus(to_status)
    if target not in ENTRY_TRANSITIONS[source]:
        raise StateError(
            f"Queue entry cannot move from '{source.value}' to '{target.value}'",
            details={"from": source.value, "to": target.value},
        )


def wait_minutes(enqueued_at: datetime, now: datetime) -> int:
    delta = now - enqueued_at
    return max(0, int(delta.total_seconds() // 60))
