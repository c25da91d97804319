from patientflow.domain.rules.identity_rules import (
    MAX_MATCH_SCORE,
    REASON_ID,
    REASON_NAME,
    REASON_PHONE,
    IdentityFingerprint,
    format_mr_number,
    full_name_key,
    score_match,
)

AHMED = IdentityFingerprint(first_name="Ahmed", last_name="Khan", phone="03001234567", identification_number="42101-1234567-1")


def test_identical_identity_is_capped() -> None:
    score, reasons = score_match(AHMED, AHMED)
    assert score == MAX_MATCH_SCORE
    assert reasons == [REASON_ID, REASON_PHONE, REASON_NAME]


def test_individual_signals() -> None:
    assert score_match(IdentityFingerprint(phone="03001234567"), AHMED) == (60, [REASON_PHONE])
    assert score_match(IdentityFingerprint(identification_number="42101-1234567-1"), AHMED) == (90, [REASON_ID])
    assert score_match(IdentityFingerprint(first_name=" ahmed ", last_name="KHAN"), AHMED) == (40, [REASON_NAME])


def test_name_and_phone_sum() -> None:
    candidate = IdentityFingerprint(first_name="Ahmed", last_name="Khan", phone="03001234567")
    assert score_match(candidate, AHMED)[0] == 100


def test_scoring_is_symmetric() -> None:
    other = IdentityFingerprint(first_name="Ahmed", last_name="Khan", phone="03111111111")
    assert score_match(other, AHMED)[0] == score_match(AHMED, other)[0]


def test_blank_fields_never_match() -> None:
    blank = IdentityFingerprint(first_name="", last_name=" ", phone=None, identification_number="")
    assert score_match(blank, blank) == (0, [])


def test_full_name_key_folds_case() -> None:
    assert full_name_key("Zoë", "STRAßE") == full_name_key("zoë", "strasse")
    assert full_name_key(None, "Khan") == "khan"


def test_mr_number_format() -> None:
    assert format_mr_number("MR", 2026, 1) == "MR-2026-0001"
    assert format_mr_number("MR", 2026, 12345) == "MR-2026-12345"
