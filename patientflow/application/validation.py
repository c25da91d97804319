from __future__ import annotations

from collections.abc import Mapping
from typing import Any, TypeVar

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from patientflow.domain.errors import ValidationError

ModelT = TypeVar("ModelT", bound=BaseModel)


def parse_request(model: type[ModelT], payload: ModelT | Mapping[str, Any]) -> ModelT:
    """Accept a ready DTO or a raw mapping; malformed input becomes ValidationError."""
    if isinstance(payload, model):
        return payload
    if isinstance(payload, BaseModel):
        payload = payload.model_dump()
    if not isinstance(payload, Mapping):
        raise ValidationError(f"{model.__name__}: expected a mapping, got {type(payload).__name__}")
    try:
        return model.model_validate(dict(payload))
    except PydanticValidationError as exc:
        fields = {
            ".".join(str(part) for part in err.get("loc", ())) or "__root__": err.get("msg", "invalid")
            for err in exc.errors()
        }
        summary = "; ".join(f"{name}: {msg}" for name, msg in fields.items())
        raise ValidationError(f"Invalid {model.__name__}: {summary}", details={"fields": fields}) from exc
