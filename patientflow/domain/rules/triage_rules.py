from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any

from patientflow.domain.constants import Priority
from patientflow.domain.errors import NotFoundError, ValidationError
from patientflow.domain.models.triage import (
    DEFAULT_TRIAGE_LEVEL,
    SPO2_RED_FLAG_THRESHOLD,
    TRIAGE_LEVEL_MAX,
    TRIAGE_LEVEL_MIN,
    Discriminator,
    PresentingComplaint,
    TriageLevelInfo,
    TriageProtocol,
    TriageResult,
    VitalSigns,
)

_CONSCIOUSNESS_VALUES = {"alert", "verbal", "pain", "unresponsive"}


def priority_for_level(level: int) -> Priority:
    if level <= 2:
        return Priority.EMERGENCY
    if level == 3:
        return Priority.URGENT
    return Priority.ROUTINE


def classify(
    protocol: TriageProtocol,
    complaint_id: str,
    observed_ids: Iterable[str],
    vitals: VitalSigns | None = None,
) -> TriageResult:
    complaint = protocol.find_complaint(complaint_id)
    if complaint is None:
        raise NotFoundError(f"Unknown presenting complaint: {complaint_id}", details={"complaint_id": complaint_id})

    observed = tuple(dict.fromkeys(str(item) for item in observed_ids))
    observed_set = set(observed)

    level = DEFAULT_TRIAGE_LEVEL
    reason = "Standard assessment"
    matched: str | None = None

    if vitals is not None:
        vital_level, vital_reason = _vital_sign_level(vitals)
        if vital_level is not None and vital_level < level:
            level = vital_level
            reason = vital_reason

    # A discriminator must be strictly more severe to take over; on ties the
    # vitals reason or the first listed discriminator stands.
    for discriminator in complaint.discriminators:
        if discriminator.id in observed_set and discriminator.level < level:
            level = discriminator.level
            matched = discriminator.id
            reason = f"Discriminator: {discriminator.description or discriminator.id}"

    info = protocol.level_info(level)
    return TriageResult(
        complaint_id=complaint.id,
        level=level,
        name=info.name,
        color=info.color,
        sla_minutes=info.sla_minutes,
        priority=priority_for_level(level),
        reason=reason,
        discriminator_id=matched,
        observed_ids=observed,
    )


def _vital_sign_level(vitals: VitalSigns) -> tuple[int | None, str]:
    consciousness = (vitals.consciousness or "").strip().lower()
    if consciousness == "unresponsive":
        return 1, "Critical: Unresponsive patient"
    if consciousness in {"verbal", "pain"}:
        return 2, "Altered Consciousness Level"
    if vitals.oxygen_saturation is not None and vitals.oxygen_saturation < SPO2_RED_FLAG_THRESHOLD:
        return 2, "Critical Vital Sign: Low SpO2"
    return None, ""


def validate_vitals(vitals: VitalSigns) -> None:
    consciousness = (vitals.consciousness or "").strip().lower()
    if consciousness and consciousness not in _CONSCIOUSNESS_VALUES:
        raise ValidationError(f"Unknown consciousness level: {vitals.consciousness}")
    if vitals.oxygen_saturation is not None and not (0 <= vitals.oxygen_saturation <= 100):
        raise ValidationError("Oxygen saturation must be within 0..100")
    if vitals.pain_scale is not None and not (0 <= vitals.pain_scale <= 10):
        raise ValidationError("Pain scale must be within 0..10")


def build_protocol(payload: Mapping[str, Any]) -> TriageProtocol:
    """Build a protocol table from its JSON shape, rejecting malformed tables."""
    raw_levels = payload.get("levels")
    raw_complaints = payload.get("complaints")
    if not isinstance(raw_levels, list) or not raw_levels:
        raise ValidationError("Triage protocol must define levels")
    if not isinstance(raw_complaints, list):
        raise ValidationError("Triage protocol must define complaints")

    levels: list[TriageLevelInfo] = []
    for item in raw_levels:
        level = _as_level(item.get("level"))
        sla = item.get("sla_minutes", item.get("slaMinutes"))
        if not isinstance(sla, int) or sla < 0:
            raise ValidationError(f"Level {level}: SLA minutes must be a non-negative integer")
        levels.append(
            TriageLevelInfo(
                level=level,
                name=str(item.get("name") or f"Level {level}"),
                sla_minutes=sla,
                color=str(item.get("color") or ""),
                description=str(item.get("description") or ""),
            )
        )
    defined = {info.level for info in levels}
    missing = set(range(TRIAGE_LEVEL_MIN, TRIAGE_LEVEL_MAX + 1)) - defined
    if missing:
        raise ValidationError(f"Triage protocol is missing levels: {sorted(missing)}")

    complaints: list[PresentingComplaint] = []
    seen_ids: set[str] = set()
    for item in raw_complaints:
        complaint_id = str(item.get("id") or "").strip()
        if not complaint_id:
            raise ValidationError("Presenting complaint id is required")
        if complaint_id in seen_ids:
            raise ValidationError(f"Duplicate presenting complaint: {complaint_id}")
        seen_ids.add(complaint_id)
        discriminators = tuple(
            Discriminator(
                id=str(d.get("id") or "").strip(),
                level=_as_level(d.get("level")),
                description=str(d.get("description") or ""),
            )
            for d in item.get("discriminators") or []
        )
        if any(not d.id for d in discriminators):
            raise ValidationError(f"Complaint {complaint_id}: discriminator id is required")
        complaints.append(
            PresentingComplaint(
                id=complaint_id,
                name=str(item.get("name") or complaint_id),
                discriminators=discriminators,
            )
        )
    return TriageProtocol(complaints=tuple(complaints), levels=tuple(sorted(levels, key=lambda i: i.level)))


def _as_level(value: object) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"Triage level must be an integer, got {value!r}")
    if not (TRIAGE_LEVEL_MIN <= value <= TRIAGE_LEVEL_MAX):
        raise ValidationError(f"Triage level must be within {TRIAGE_LEVEL_MIN}..{TRIAGE_LEVEL_MAX}")
    return value
