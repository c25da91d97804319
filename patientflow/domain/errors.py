from __future__ import annotations


class PatientFlowError(ValueError):
    """Base class for failures scoped to a single core operation."""

    code = "error"

    def __init__(self, message: str, *, details: dict[str, object] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, object]:
        return {"code": self.code, "message": self.message, "details": dict(self.details)}


class ValidationError(PatientFlowError):
    """Missing or malformed input, rejected before any mutation."""

    code = "validation_error"


class ConflictError(PatientFlowError):
    """Concurrent writer won; re-read current state and retry."""

    code = "conflict"


class NotFoundError(PatientFlowError):
    code = "not_found"


class StateError(PatientFlowError):
    """Requested move is not legal from the entity's current state."""

    code = "state_error"
