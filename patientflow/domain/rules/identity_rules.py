from __future__ import annotations

from dataclasses import dataclass

ID_MATCH_SCORE = 90
PHONE_MATCH_SCORE = 60
NAME_MATCH_SCORE = 40
MAX_MATCH_SCORE = 100
DEFAULT_DUPLICATE_THRESHOLD = 30

REASON_ID = "Exact ID Match"
REASON_PHONE = "Exact Phone Match"
REASON_NAME = "Exact Name Match"


@dataclass(frozen=True, slots=True)
class IdentityFingerprint:
    first_name: str | None = None
    last_name: str | None = None
    phone: str | None = None
    identification_number: str | None = None

    @property
    def full_name_key(self) -> str:
        return full_name_key(self.first_name, self.last_name)


def _clean(value: str | None) -> str:
    return (value or "").strip()


def full_name_key(first_name: str | None, last_name: str | None) -> str:
    parts = [p for p in (_clean(first_name), _clean(last_name)) if p]
    return " ".join(parts).casefold()


def score_match(candidate: IdentityFingerprint, existing: IdentityFingerprint) -> tuple[int, list[str]]:
    """Exact-match heuristics only; blank fields never count as a match."""
    score = 0
    reasons: list[str] = []

    candidate_id = _clean(candidate.identification_number)
    if candidate_id and candidate_id == _clean(existing.identification_number):
        score += ID_MATCH_SCORE
        reasons.append(REASON_ID)

    candidate_phone = _clean(candidate.phone)
    if candidate_phone and candidate_phone == _clean(existing.phone):
        score += PHONE_MATCH_SCORE
        reasons.append(REASON_PHONE)

    candidate_name = candidate.full_name_key
    if candidate_name and candidate_name == existing.full_name_key:
        score += NAME_MATCH_SCORE
        reasons.append(REASON_NAME)

    return min(score, MAX_MATCH_SCORE), reasons


def format_mr_number(prefix: str, year: int, sequence: int) -> str:
    return f"{prefix}-{year}-{sequence:04d}"
