"""
Document OCR: text recognition capability, MRZ detection and document type
classification by keyword vocabularies.
"""
import io
import logging
import re
import unicodedata
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Protocol, Tuple

import pytesseract
from PIL import Image

from config import settings, LICENSE_CATEGORY_REGEX, MRZ_REGEX, PAIRED_DATE_REGEX

logger = logging.getLogger(__name__)


class DocumentType(str, Enum):
    PASSPORT = "passport"
    VOTER_CARD = "voter_card"
    DRIVER_LICENSE = "driver_license"
    POLICE_CARD = "police_card"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class MRZResult:
    valid: bool
    raw: Optional[str] = None


@dataclass(frozen=True)
class OCRDocResult:
    text: str
    mrz: MRZResult
    doc_type_detected: DocumentType
    keywords: List[str] = field(default_factory=list)

    def to_dict(self):
        return {
            "text": self.text,
            "mrz": {"valid": self.mrz.valid, "raw": self.mrz.raw},
            "doc_type_detected": self.doc_type_detected.value,
            "keywords": list(self.keywords),
        }


class OcrEngine(Protocol):
    def recognize(self, image_bytes: bytes) -> str:
        ...


class TesseractOcrEngine:
    """Stateless pytesseract wrapper"""

    def __init__(self, lang: Optional[str] = None, tesseract_cmd: Optional[str] = None):
        self.lang = lang or settings.OCR_LANG
        cmd = tesseract_cmd or settings.TESSERACT_CMD
        if cmd:
            pytesseract.pytesseract.tesseract_cmd = cmd

    def recognize(self, image_bytes: bytes) -> str:
        with Image.open(io.BytesIO(image_bytes)) as pil:
            return pytesseract.image_to_string(pil.convert("RGB"), lang=self.lang)


# Priority order settles ties between equal keyword scores
VOCABULARIES: List[Tuple[DocumentType, List[str]]] = [
    (DocumentType.PASSPORT, [
        "republique democratique du congo", "democratic republic of the congo",
        "passeport", "passport", "type", "numero", "n passeport", "number of passport",
        "nationality", "nationalite", "place of birth", "lieu de naissance",
        "date of birth", "date de naissance", "authority", "autorite",
        "ministere", "ministry", "page", "photo",
    ]),
    (DocumentType.VOTER_CARD, [
        "commission electorale nationale independante", "commission electorale", "ceni",
        "carte d electeur", "carte electeur", "code cielect", "code ci", "numero electeur",
        "n bre d electeur", "n de votant", "bureau de vote", "voter", "voter is a right",
        "nom", "post nom", "prenom", "date de naissance", "lieu de delivrance", "valable",
        "voter est un droit", "enrolement",
    ]),
    (DocumentType.DRIVER_LICENSE, [
        "permis de conduire", "driving license", "permit", "conduite", "permis",
        "ministere des transports", "ministry of transports", "categories", "category",
        "categorie", "date de delivrance", "date of issue", "delivre le",
        "date d expiration", "expiry date", "expire le", "expiration", "valable jusqu",
        "numero de permis", "n permis", "cgo",
    ]),
    (DocumentType.POLICE_CARD, [
        "police nationale congolaise", "pnc", "police", "carte de service",
        "carte professionnelle", "ministere de l interieur", "ministere de l interieur et securite",
        "agent de police", "numero matricule", "matricule", "carte d agent",
        "carte d agent de police", "carte de police", "identite professionnelle", "fonction",
        "grade", "brigadier", "inspecteur", "unite", "commissariat",
        "direction generale de la police", "direction de la police", "police congolaise",
    ]),
]

FIELD_KEYWORDS = [
    "nom", "prenom", "date naissance", "numero", "expire", "delivre", "province", "commune",
    "matricule", "fonction", "grade", "unite", "commissariat",
]

_category_re = re.compile(LICENSE_CATEGORY_REGEX, re.IGNORECASE)
_paired_date_re = re.compile(PAIRED_DATE_REGEX)
_mrz_re = re.compile(MRZ_REGEX, re.MULTILINE)


def normalize_text(text: str) -> str:
    """Case-fold, strip diacritics and apostrophes, collapse whitespace"""
    text = unicodedata.normalize("NFD", text.lower())
    text = "".join(ch for ch in text if not unicodedata.combining(ch))
    text = re.sub(r"['’]", "", text)
    return re.sub(r"\s+", " ", text).strip()


def detect_mrz(raw_text: str) -> MRZResult:
    """Two consecutive lines of 44 (TD3) or 36 (TD2) MRZ characters, on un-normalized text"""
    lines = [re.sub(r"\s+", "", line).upper() for line in raw_text.splitlines()]
    match = _mrz_re.search("\n".join(line for line in lines if line))
    return MRZResult(valid=bool(match), raw=match.group(0) if match else None)


def keyword_scores(text: str) -> Dict[DocumentType, int]:
    return {doc_type: sum(1 for kw in vocab if kw in text) for doc_type, vocab in VOCABULARIES}


def classify_document_type(text: str) -> DocumentType:
    """
    Highest vocabulary hit count wins, ties broken by priority. Without any
    vocabulary hit, license categories or a pair of dates mean a license back.
    """
    scores = keyword_scores(text)
    best = max(scores.values())
    if best > 0:
        for doc_type, _ in VOCABULARIES:
            if scores[doc_type] == best:
                return doc_type
    if _category_re.search(text) or _paired_date_re.search(text):
        return DocumentType.DRIVER_LICENSE
    return DocumentType.UNKNOWN


def compute_keywords(text: str) -> List[str]:
    return [f for f in FIELD_KEYWORDS if f in text]


def analyze_text(raw_text: str) -> OCRDocResult:
    text = normalize_text(raw_text or "")
    return OCRDocResult(
        text=text,
        mrz=detect_mrz(raw_text or ""),
        doc_type_detected=classify_document_type(text),
        keywords=compute_keywords(text),
    )


def run_document_ocr(image_bytes: bytes, engine: OcrEngine) -> OCRDocResult:
    """Recognise text and classify. Engine errors propagate to the caller's time box."""
    return analyze_text(engine.recognize(image_bytes))
