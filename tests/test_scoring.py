import pytest

from validation.diagnostics import SUGGESTIONS, AnalysisResult, DiagnosticCode as C, check_suggestions
from validation.run_pipeline import ValidationReport
from validation.scoring import build_summary, compute_score, finalize_status

OK = AnalysisResult(ok=True)
BAD = AnalysisResult(ok=False, messages=("Photo is too blurry",), codes=(C.PHOTO_TOO_BLURRY,))
FACE_DOWN = AnalysisResult(
    ok=False,
    messages=("Face detection temporarily unavailable",),
    codes=(C.FACE_DETECTION_UNAVAILABLE,),
)
NO_FACE = AnalysisResult(ok=False, messages=("Face missing",), codes=(C.NO_FACE_DETECTED,))


def scored(**results):
    report = ValidationReport(**results)
    report = ValidationReport(**{**results, "score": compute_score(report)})
    return ValidationReport(**{**results, "score": report.score, "status": finalize_status(report)})


def test_only_present_checks_count():
    assert compute_score(ValidationReport(photo=OK)) == 100
    assert compute_score(ValidationReport(photo=OK, face=OK, signature=OK, front=OK, back=OK, ocr=OK)) == 100


def test_weights_are_normalised():
    # photo 0.2 of 0.3
    assert compute_score(ValidationReport(photo=OK, signature=BAD)) == 67


def test_empty_report():
    report = scored()
    assert report.score == 0
    assert report.status == "failed"


def test_unavailable_face_earns_partial_credit():
    down = compute_score(ValidationReport(photo=BAD, face=FACE_DOWN))
    missing = compute_score(ValidationReport(photo=BAD, face=NO_FACE))
    assert down == 42
    assert missing == 0


def test_score_is_bounded_float():
    score = compute_score(ValidationReport(photo=BAD, face=BAD, signature=BAD))
    assert isinstance(score, float)
    assert 0 <= score <= 100


def test_status_thresholds():
    assert scored(photo=OK, face=OK).status == "ok"
    assert scored(photo=OK, face=OK, signature=BAD, front=BAD).status == "flagged"
    assert scored(photo=OK, face=BAD).status == "failed"


def test_unavailable_face_caps_status_at_flagged():
    report = scored(photo=OK, face=FACE_DOWN, signature=OK, front=OK, back=OK, ocr=OK)
    assert report.score == 91
    assert report.status == "flagged"


@pytest.mark.parametrize("code", [C.FRAUD_SUSPECTED, C.CARD_SIDES_IDENTICAL, C.ANIMAL_DETECTED])
def test_security_critical_code_fails(code):
    flagged = AnalysisResult(ok=True, codes=(code,))
    report = scored(photo=OK, face=OK, signature=OK, front=flagged, back=OK, ocr=OK)
    assert report.score == 100
    assert report.status == "failed"


def test_scoring_is_idempotent():
    report = ValidationReport(photo=OK, face=FACE_DOWN, signature=BAD)
    assert compute_score(report) == compute_score(report)


def test_summary():
    ocr = AnalysisResult(ok=True, stats={"doc_type_detected": "passport"})
    summary = build_summary(scored(photo=OK, face=OK, ocr=ocr))

    assert summary["is_valid"] is True
    assert summary["detected_type"] == "passport"
    assert summary["score_ratio"] == 1.0
    assert summary["message"] == "Document compliant and readable."


def test_failed_summary_lists_photo_messages():
    summary = build_summary(scored(photo=BAD, face=NO_FACE))

    assert summary["is_valid"] is False
    assert summary["message"] == "Invalid photo: Photo is too blurry"
    assert summary["codes"] == ["PHOTO_TOO_BLURRY", "NO_FACE_DETECTED"]
    assert len(summary["suggestions"]) == 2
    assert summary["detected_type"] is None


def test_every_code_has_a_suggestion():
    check_suggestions(SUGGESTIONS)

    partial = {code: text for code, text in SUGGESTIONS.items() if code is not C.DUPLICATE_UPLOAD}
    with pytest.raises(RuntimeError, match="DUPLICATE_UPLOAD"):
        check_suggestions(partial)
