"""
Driver license back side: category and date extraction from OCR text, plus
the dual-orientation OCR that keeps whichever reading looks most like a
license back.
"""
import logging
import re
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import date
from typing import List, Optional

from config import settings, DATE_REGEX, LICENSE_CATEGORIES, LICENSE_CATEGORY_REGEX
from .capabilities import call_with_timeout
from .diagnostics import AnalysisResult, DiagnosticCode as C, ResultBuilder
from .errors import CapabilityUnavailable
from .ocr import DocumentType, OCRDocResult, OcrEngine, run_document_ocr
from .preprocess import rotate_90

logger = logging.getLogger(__name__)

LABEL_WINDOW = 80

_date_re = re.compile(DATE_REGEX)
_category_re = re.compile(LICENSE_CATEGORY_REGEX)
_pipe_dates_re = re.compile(r"\b(\d{2}[./-]\d{2}[./-]\d{2,4})\s*\|\s*(\d{2}[./-]\d{2}[./-]\d{2,4})\b")

ISSUE_LABEL = re.compile(r"(DELIV|DÉLIV|DELIVRE|DÉLIVRÉ|EMIS|ÉMIS|DATE\s+DE\s+DÉLIV)")
EXPIRY_LABEL = re.compile(r"(EXPIR|EXPIRATION|VALABLE\s+JUSQU|DATE\s+D'EXPIRATION|DATE\s+DE\s+VALIDITÉ)")
BIRTH_LABEL = re.compile(r"(NAISSANCE|NÉ\s+LE|NE\s+LE|DATE\s+DE\s+NAISSANCE)")


@dataclass(frozen=True)
class LicenseBackExtract:
    categories: List[str] = field(default_factory=list)
    issue_date: Optional[date] = None
    expiry_date: Optional[date] = None
    birth_date: Optional[date] = None

    @property
    def looks_like_license_back(self) -> bool:
        return bool(self.categories) or bool(self.issue_date and self.expiry_date) or bool(self.birth_date)

    def to_dict(self):
        return {
            "categories": list(self.categories),
            "issue_date": self.issue_date.isoformat() if self.issue_date else None,
            "expiry_date": self.expiry_date.isoformat() if self.expiry_date else None,
            "birth_date": self.birth_date.isoformat() if self.birth_date else None,
        }


def to_date(dd: str, mm: str, yy: str, today: date) -> Optional[date]:
    """Two-digit years up to the current year's last two digits are 20xx, later ones 19xx"""
    year = int(yy)
    if len(yy) == 2:
        year = 2000 + year if year <= today.year % 100 else 1900 + year
    try:
        return date(year, int(mm), int(dd))
    except ValueError:
        return None


def _all_dates(text: str, today: date) -> List[date]:
    found: List[date] = []
    for m in _date_re.finditer(text):
        d = to_date(m.group(1), m.group(2), m.group(3), today)
        if d and d not in found:
            found.append(d)
    return found


def _date_near(text: str, label: re.Pattern, today: date) -> Optional[date]:
    lm = label.search(text)
    if not lm:
        return None
    window = text[lm.start():lm.start() + LABEL_WINDOW]
    dm = _date_re.search(window)
    return to_date(dm.group(1), dm.group(2), dm.group(3), today) if dm else None


def parse_license_back(text: Optional[str], today: Optional[date] = None) -> LicenseBackExtract:
    if not text:
        return LicenseBackExtract()
    today = today or date.today()
    t = re.sub(r"\s+", " ", text).upper()

    seen = {m.group(1) for m in _category_re.finditer(t)}
    categories = [c for c in LICENSE_CATEGORIES if c in seen]

    issue = expiry = None
    pm = _pipe_dates_re.search(t)
    if pm:
        d1, d2 = _date_re.search(pm.group(1)), _date_re.search(pm.group(2))
        issue = to_date(*d1.groups(), today) if d1 else None
        expiry = to_date(*d2.groups(), today) if d2 else None

    issue = issue or _date_near(t, ISSUE_LABEL, today)
    expiry = expiry or _date_near(t, EXPIRY_LABEL, today)
    birth = _date_near(t, BIRTH_LABEL, today)

    dates = _all_dates(t, today)
    if birth is None and len(dates) >= 3:
        birth = dates[2]
    if issue is None and dates:
        issue = dates[0]
    if expiry is None and len(dates) > 1:
        expiry = dates[1]

    return LicenseBackExtract(categories=categories, issue_date=issue, expiry_date=expiry, birth_date=birth)


def score_back_orientation(ocr: OCRDocResult, extract: LicenseBackExtract) -> int:
    score = 0
    if ocr.doc_type_detected is DocumentType.DRIVER_LICENSE:
        score += 3
    if extract.categories:
        score += 2
    if extract.issue_date and extract.expiry_date:
        score += 2
    if extract.birth_date:
        score += 1
    return score + min(len(ocr.keywords), 3)


@dataclass(frozen=True)
class BackOcrOutcome:
    orientation: str  # "original" or "rotated_90"
    ocr: OCRDocResult
    extract: LicenseBackExtract
    score: int
    scores: dict


def run_back_ocr_dual(image_bytes: bytes, engine: OcrEngine, today: Optional[date] = None,
                      timeout: Optional[float] = None) -> BackOcrOutcome:
    """
    OCR the back side as-is and rotated by 90 degrees, concurrently. The
    rotated reading wins only with a strictly greater score. Raises
    CapabilityUnavailable when neither orientation could be read.
    """
    timeout = timeout or settings.CAPABILITY_TIMEOUT
    candidates = {"original": image_bytes, "rotated_90": rotate_90(image_bytes)}

    def attempt(name):
        try:
            ocr = call_with_timeout("ocr", run_document_ocr, candidates[name], engine, timeout=timeout)
        except CapabilityUnavailable as e:
            return name, None, e
        return name, ocr, None

    with ThreadPoolExecutor(max_workers=2, thread_name_prefix="ocr-back") as pool:
        attempts = list(pool.map(attempt, candidates))

    readings = {}
    errors = []
    for name, ocr, err in attempts:
        if ocr is None:
            errors.append(err.reason)
            continue
        extract = parse_license_back(ocr.text, today)
        readings[name] = (ocr, extract, score_back_orientation(ocr, extract))

    if not readings:
        raise CapabilityUnavailable("ocr", "; ".join(errors))

    scores = {name: r[2] for name, r in readings.items()}
    chosen = "original" if "original" in readings else "rotated_90"
    if "rotated_90" in readings and chosen == "original" and scores["rotated_90"] > scores["original"]:
        chosen = "rotated_90"
    ocr, extract, score = readings[chosen]
    logger.debug("Back OCR orientation %s (scores %s)", chosen, scores)
    return BackOcrOutcome(orientation=chosen, ocr=ocr, extract=extract, score=score, scores=scores)


def back_ocr_result(outcome: BackOcrOutcome) -> AnalysisResult:
    """ocr_back sub-result: recognised as a document, with license back findings as messages"""
    ocr, extract = outcome.ocr, outcome.extract
    b = ResultBuilder()
    if ocr.doc_type_detected is not DocumentType.DRIVER_LICENSE:
        b.fail(C.LICENSE_BACK_NOT_RECOGNIZED, "Back side not recognised as a driver license")
    if not extract.categories:
        b.fail(C.LICENSE_CATEGORIES_MISSING, "Categories not detected on the back side")
    if not (extract.issue_date and extract.expiry_date):
        b.fail(C.LICENSE_DATES_MISSING, "Issue/expiry dates not detected on the back side")
    if not extract.birth_date:
        b.fail(C.LICENSE_BIRTH_DATE_MISSING, "Birth date not detected on the back side")
    if not extract.looks_like_license_back:
        b.fail(C.LICENSE_BACK_FEATURES_MISSING, "Back side: characteristic license features missing (categories/dates)")
    return b.build(
        ok=ocr.doc_type_detected is not DocumentType.UNKNOWN,
        stats={
            "doc_type_detected": ocr.doc_type_detected.value,
            "mrz_valid": ocr.mrz.valid,
            "keywords_csv": ",".join(ocr.keywords),
            "orientation": outcome.orientation,
            "orientation_score": outcome.score,
            "categories_csv": ",".join(extract.categories),
            "issue_date": extract.issue_date.isoformat() if extract.issue_date else "",
            "expiry_date": extract.expiry_date.isoformat() if extract.expiry_date else "",
            "birth_date": extract.birth_date.isoformat() if extract.birth_date else "",
            "likely_license_back": extract.looks_like_license_back,
        },
    )
