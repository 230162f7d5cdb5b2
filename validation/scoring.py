from typing import Any, Dict, List, Optional

from config import settings, SCORE_WEIGHTS
from .diagnostics import AnalysisResult, DiagnosticCode as C, SECURITY_CRITICAL_CODES, SUGGESTIONS

STATUS_MESSAGES = {
    "ok": "Document compliant and readable.",
    "flagged": "Document requires manual review.",
    "failed": "Document invalid or not compliant.",
}


def face_unavailable(report) -> bool:
    face: Optional[AnalysisResult] = getattr(report, "face", None)
    return face is not None and not face.ok and face.has_code(C.FACE_DETECTION_UNAVAILABLE)


def compute_score(report) -> float:
    """
    Weighted pass/fail over the checks that actually ran, normalised by their
    total weight. An unavailable face detector earns partial credit.
    """
    score = 0.0
    total_weight = 0.0
    unavailable = face_unavailable(report)
    for key, weight in SCORE_WEIGHTS.items():
        result = getattr(report, key, None)
        if result is None:
            continue
        total_weight += weight
        if key == "face" and unavailable:
            score += weight * settings.FACE_UNAVAILABLE_CREDIT
        else:
            score += weight * (1 if result.ok else 0)
    normalized = score / total_weight if total_weight > 0 else 0
    return float(max(0, min(100, round(normalized * 100))))


def all_results(report) -> List[AnalysisResult]:
    return [r for r in report.results().values() if r is not None]


def security_critical(report) -> List[C]:
    return [c for r in all_results(report) for c in r.codes if c in SECURITY_CRITICAL_CODES]


def finalize_status(report) -> str:
    if security_critical(report):
        return "failed"
    if report.score >= settings.SCORE_PASS_THRESHOLD:
        status = "ok"
    elif report.score >= settings.SCORE_REVIEW_THRESHOLD:
        status = "flagged"
    else:
        return "failed"
    if status == "ok" and face_unavailable(report):
        status = "flagged"
    return status


def aggregate_codes(report) -> List[C]:
    codes: List[C] = []
    for r in all_results(report):
        for c in r.codes:
            if c not in codes:
                codes.append(c)
    return codes


def build_summary(report) -> Dict[str, Any]:
    """Derived summary returned next to the report"""
    is_valid = report.status != "failed"
    message = STATUS_MESSAGES[report.status]
    if not is_valid and report.photo is not None and report.photo.messages:
        message = "Invalid photo: " + "; ".join(report.photo.messages)
    codes = aggregate_codes(report)
    detected = report.ocr.stats.get("doc_type_detected") if report.ocr is not None else None
    return {
        "is_valid": is_valid,
        "detected_type": detected,
        "message": message,
        "score_ratio": round(report.score) / 100,
        "codes": [c.value for c in codes],
        "suggestions": [SUGGESTIONS[c] for c in codes],
        "timers": dict(report.timers),
    }
