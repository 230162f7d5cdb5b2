"""
Diagnostic codes, their canonical suggestions, and the AnalysisResult value
produced by every analyzer.
"""
from dataclasses import dataclass, field, replace
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

STATS_SCHEMA_VERSION = 1


class DiagnosticCode(str, Enum):
    # Face / photo
    FACE_DETECTION_UNAVAILABLE = "FACE_DETECTION_UNAVAILABLE"
    FACE_DETECTION_ERROR = "FACE_DETECTION_ERROR"
    NO_FACE_DETECTED = "NO_FACE_DETECTED"
    INVALID_FACE = "INVALID_FACE"
    FACE_CONFIDENCE_LOW = "FACE_CONFIDENCE_LOW"
    FACE_TOO_SMALL = "FACE_TOO_SMALL"
    FRAUD_SUSPECTED = "FRAUD_SUSPECTED"
    LOW_FACE_QUALITY = "LOW_FACE_QUALITY"
    NOT_REAL_PERSON = "NOT_REAL_PERSON"
    ANIMAL_DETECTED = "ANIMAL_DETECTED"
    NON_HUMAN_SUBJECT = "NON_HUMAN_SUBJECT"
    BACKGROUND_NOT_UNIFORM = "BACKGROUND_NOT_UNIFORM"
    PHOTO_TOO_BLURRY = "PHOTO_TOO_BLURRY"
    LOW_CONTRAST = "LOW_CONTRAST"
    COLOR_CAST_DETECTED = "COLOR_CAST_DETECTED"
    BACKGROUND_NOT_WHITE = "BACKGROUND_NOT_WHITE"
    PROFILE_DIM_TOO_SMALL_OR_NOT_SQUARE = "PROFILE_DIM_TOO_SMALL_OR_NOT_SQUARE"
    DIM_TOO_SMALL = "DIM_TOO_SMALL"
    ORIGINAL_DIMENSIONS_TOO_SMALL = "ORIGINAL_DIMENSIONS_TOO_SMALL"
    NOT_PORTRAIT = "NOT_PORTRAIT"
    LOW_DPI = "LOW_DPI"
    FORMAT_PNG_USED = "FORMAT_PNG_USED"
    FORMAT_PNG_LANDSCAPE_REJECTED = "FORMAT_PNG_LANDSCAPE_REJECTED"
    MULTIPLE_FACES = "MULTIPLE_FACES"
    FACE_NOT_CENTERED = "FACE_NOT_CENTERED"
    LANDMARKS_NOT_VISIBLE = "LANDMARKS_NOT_VISIBLE"
    EYES_CLOSED = "EYES_CLOSED"
    MOUTH_OPEN = "MOUTH_OPEN"
    NON_NEUTRAL_EXPRESSION = "NON_NEUTRAL_EXPRESSION"
    SHADOWS_REFLECTIONS = "SHADOWS_REFLECTIONS"
    BAD_HEAD_HEIGHT_RATIO = "BAD_HEAD_HEIGHT_RATIO"
    BAD_HEAD_RATIO = "BAD_HEAD_RATIO"
    NON_HUMAN_OR_NON_PORTRAIT = "NON_HUMAN_OR_NON_PORTRAIT"
    SCREENSHOT_DETECTED = "SCREENSHOT_DETECTED"
    FACE_TOO_DARK = "FACE_TOO_DARK"
    FACE_TOO_BRIGHT = "FACE_TOO_BRIGHT"
    FACE_OBSCURED = "FACE_OBSCURED"
    BACKGROUND_NOT_WHITE_EDGES = "BACKGROUND_NOT_WHITE_EDGES"
    BACKGROUND_CONTENT_DETECTED = "BACKGROUND_CONTENT_DETECTED"
    LOW_GLOBAL_QUALITY = "LOW_GLOBAL_QUALITY"
    LOGO_DETECTED = "LOGO_DETECTED"
    IMAGE_UNREADABLE = "IMAGE_UNREADABLE"

    # Signature
    SIGNATURE_NOT_VISIBLE = "SIGNATURE_NOT_VISIBLE"
    SIGNATURE_TOO_BLURRY = "SIGNATURE_TOO_BLURRY"
    SIGNATURE_ABSENT = "SIGNATURE_ABSENT"
    SIGNATURE_TOO_UNIFORM = "SIGNATURE_TOO_UNIFORM"
    SIGNATURE_BACKGROUND_NOT_WHITE = "SIGNATURE_BACKGROUND_NOT_WHITE"
    SIGNATURE_COLOR_CAST = "SIGNATURE_COLOR_CAST"

    # Card sides
    CARD_SIZE_MISMATCH = "CARD_SIZE_MISMATCH"
    CARD_SIDES_IDENTICAL = "CARD_SIDES_IDENTICAL"
    CARD_BACK_LANDSCAPE = "CARD_BACK_LANDSCAPE"
    CARD_TOO_SMALL = "CARD_TOO_SMALL"
    DOCUMENT_NOT_RECOGNIZED_VISUALLY = "DOCUMENT_NOT_RECOGNIZED_VISUALLY"
    VISION_UNAVAILABLE = "VISION_UNAVAILABLE"

    # OCR
    OCR_UNAVAILABLE = "OCR_UNAVAILABLE"
    DOCUMENT_TYPE_UNKNOWN = "DOCUMENT_TYPE_UNKNOWN"
    LICENSE_BACK_NOT_RECOGNIZED = "LICENSE_BACK_NOT_RECOGNIZED"
    LICENSE_CATEGORIES_MISSING = "LICENSE_CATEGORIES_MISSING"
    LICENSE_DATES_MISSING = "LICENSE_DATES_MISSING"
    LICENSE_BIRTH_DATE_MISSING = "LICENSE_BIRTH_DATE_MISSING"
    LICENSE_BACK_FEATURES_MISSING = "LICENSE_BACK_FEATURES_MISSING"

    # Deduplication
    DUPLICATE_UPLOAD = "DUPLICATE_UPLOAD"


SUGGESTIONS: Dict[DiagnosticCode, str] = {
    DiagnosticCode.FACE_DETECTION_UNAVAILABLE: "Manual review required: face detection is temporarily unavailable",
    DiagnosticCode.FACE_DETECTION_ERROR: "Verification service unavailable, please try again later",
    DiagnosticCode.NO_FACE_DETECTED: "Upload a passport-style photo showing a human face",
    DiagnosticCode.INVALID_FACE: "Face the camera with your face well lit",
    DiagnosticCode.FACE_CONFIDENCE_LOW: "Retake the photo with a sharp, well lit face",
    DiagnosticCode.FACE_TOO_SMALL: "Move closer so your face fills more of the frame",
    DiagnosticCode.FRAUD_SUSPECTED: "Use an original photo, not a picture of a screen or document",
    DiagnosticCode.LOW_FACE_QUALITY: "Improve lighting and focus",
    DiagnosticCode.NOT_REAL_PERSON: "Use a real photo of yourself without masks or filters",
    DiagnosticCode.ANIMAL_DETECTED: "Upload a photo of your face, not an animal",
    DiagnosticCode.NON_HUMAN_SUBJECT: "Upload a photo of your face",
    DiagnosticCode.BACKGROUND_NOT_UNIFORM: "Use a plain white background without patterns",
    DiagnosticCode.PHOTO_TOO_BLURRY: "Hold the camera steady and improve the focus",
    DiagnosticCode.LOW_CONTRAST: "Increase brightness and contrast",
    DiagnosticCode.COLOR_CAST_DETECTED: "Avoid colour casts, use neutral lighting",
    DiagnosticCode.BACKGROUND_NOT_WHITE: "Stand in front of a white background",
    DiagnosticCode.PROFILE_DIM_TOO_SMALL_OR_NOT_SQUARE: "Use a square photo of at least 200x200 pixels",
    DiagnosticCode.DIM_TOO_SMALL: "Use an image of at least 600x600 pixels for a passport photo",
    DiagnosticCode.ORIGINAL_DIMENSIONS_TOO_SMALL: "Use an image of at least 600x600",
    DiagnosticCode.NOT_PORTRAIT: "Use a portrait or square photo (600x600 recommended)",
    DiagnosticCode.LOW_DPI: "Use an image with a resolution of at least 300 DPI",
    DiagnosticCode.FORMAT_PNG_USED: "Prefer the JPEG format for better compatibility",
    DiagnosticCode.FORMAT_PNG_LANDSCAPE_REJECTED: "Landscape PNG is not accepted, use a portrait or square JPEG",
    DiagnosticCode.MULTIPLE_FACES: "Only one face must be visible",
    DiagnosticCode.FACE_NOT_CENTERED: "Center your face in the picture",
    DiagnosticCode.LANDMARKS_NOT_VISIBLE: "Keep your eyes, nose and mouth clearly visible",
    DiagnosticCode.EYES_CLOSED: "Keep your eyes open",
    DiagnosticCode.MOUTH_OPEN: "Keep your mouth closed",
    DiagnosticCode.NON_NEUTRAL_EXPRESSION: "Adopt a neutral expression",
    DiagnosticCode.SHADOWS_REFLECTIONS: "Light your face evenly to avoid shadows and reflections",
    DiagnosticCode.BAD_HEAD_HEIGHT_RATIO: "Crop so that the head fills about 70-80% of the height",
    DiagnosticCode.BAD_HEAD_RATIO: "Adjust the framing so the head fills the frame correctly",
    DiagnosticCode.NON_HUMAN_OR_NON_PORTRAIT: "Use a passport photo showing a human face",
    DiagnosticCode.SCREENSHOT_DETECTED: "Take a real photo with the camera, not a screenshot",
    DiagnosticCode.FACE_TOO_DARK: "Add light in front of your face",
    DiagnosticCode.FACE_TOO_BRIGHT: "Reduce direct light on your face",
    DiagnosticCode.FACE_OBSCURED: "Remove dark glasses or hats and uncover your face",
    DiagnosticCode.BACKGROUND_NOT_WHITE_EDGES: "Make sure the background is white up to the edges",
    DiagnosticCode.BACKGROUND_CONTENT_DETECTED: "Use a plain background and remove objects or people behind you",
    DiagnosticCode.LOW_GLOBAL_QUALITY: "Retake the photo with better framing, focus and lighting",
    DiagnosticCode.LOGO_DETECTED: "Send a photo of your face, not a logo",
    DiagnosticCode.IMAGE_UNREADABLE: "Upload a valid JPEG or PNG image",
    DiagnosticCode.SIGNATURE_NOT_VISIBLE: "Sign with a dark pen so the signature is visible",
    DiagnosticCode.SIGNATURE_TOO_BLURRY: "Scan the signature again with a sharp focus",
    DiagnosticCode.SIGNATURE_ABSENT: "Sign clearly on the sheet before scanning",
    DiagnosticCode.SIGNATURE_TOO_UNIFORM: "Press harder so the signature strokes are marked",
    DiagnosticCode.SIGNATURE_BACKGROUND_NOT_WHITE: "Sign on a plain white sheet of paper",
    DiagnosticCode.SIGNATURE_COLOR_CAST: "Scan under neutral light on a white sheet",
    DiagnosticCode.CARD_SIZE_MISMATCH: "Photograph both sides of the card at the same distance",
    DiagnosticCode.CARD_SIDES_IDENTICAL: "Upload the front and the back of the document, not the same side twice",
    DiagnosticCode.CARD_BACK_LANDSCAPE: "Check the orientation of the back side",
    DiagnosticCode.CARD_TOO_SMALL: "Use images of at least 400 pixels on each side",
    DiagnosticCode.DOCUMENT_NOT_RECOGNIZED_VISUALLY: "Photograph the whole document on a flat surface",
    DiagnosticCode.VISION_UNAVAILABLE: "No action needed: the visual document check was skipped",
    DiagnosticCode.OCR_UNAVAILABLE: "Manual review required: text recognition is temporarily unavailable",
    DiagnosticCode.DOCUMENT_TYPE_UNKNOWN: "Upload a passport, voter card, driver license or police card",
    DiagnosticCode.LICENSE_BACK_NOT_RECOGNIZED: "Upload the back side of your driver license",
    DiagnosticCode.LICENSE_CATEGORIES_MISSING: "Make sure the license categories are readable",
    DiagnosticCode.LICENSE_DATES_MISSING: "Make sure the issue and expiry dates are readable",
    DiagnosticCode.LICENSE_BIRTH_DATE_MISSING: "Make sure the birth date is readable",
    DiagnosticCode.LICENSE_BACK_FEATURES_MISSING: "Retake the back side so categories and dates are visible",
    DiagnosticCode.DUPLICATE_UPLOAD: "This file was already uploaded, send a new capture",
}


def check_suggestions(table: Dict[DiagnosticCode, str]) -> None:
    missing = sorted(c.value for c in DiagnosticCode if c not in table)
    if missing:
        raise RuntimeError(f"Diagnostic codes without a suggestion: {', '.join(missing)}")


check_suggestions(SUGGESTIONS)

# Codes that force a failed status regardless of score
SECURITY_CRITICAL_CODES = frozenset({
    DiagnosticCode.FRAUD_SUSPECTED,
    DiagnosticCode.NOT_REAL_PERSON,
    DiagnosticCode.ANIMAL_DETECTED,
    DiagnosticCode.NON_HUMAN_SUBJECT,
    DiagnosticCode.CARD_SIDES_IDENTICAL,
})


def suggestion_for(code: DiagnosticCode) -> str:
    return SUGGESTIONS[DiagnosticCode(code)]


def _dedupe(codes: Iterable[DiagnosticCode]) -> Tuple[DiagnosticCode, ...]:
    seen: List[DiagnosticCode] = []
    for code in codes:
        code = DiagnosticCode(code)
        if code not in seen:
            seen.append(code)
    return tuple(seen)


@dataclass(frozen=True)
class AnalysisResult:
    """
    Outcome of one analyzer. Immutable once returned: use with_message to
    derive an amended copy.
    """
    ok: bool
    messages: Tuple[str, ...] = ()
    codes: Tuple[DiagnosticCode, ...] = ()
    stats: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, "messages", tuple(self.messages))
        object.__setattr__(self, "codes", _dedupe(self.codes))
        object.__setattr__(self, "stats", MappingProxyType(dict(self.stats)))

    @property
    def suggestions(self) -> List[str]:
        return [SUGGESTIONS[c] for c in self.codes]

    def has_code(self, code: DiagnosticCode) -> bool:
        return DiagnosticCode(code) in self.codes

    def with_message(self, message: str, code: Optional[DiagnosticCode] = None) -> "AnalysisResult":
        codes = self.codes + ((code,) if code else ())
        return replace(self, messages=self.messages + (message,), codes=codes)

    def with_stats(self, **extra: Any) -> "AnalysisResult":
        return replace(self, stats={**self.stats, **extra})

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ok": self.ok,
            "messages": list(self.messages),
            "codes": [c.value for c in self.codes],
            "suggestions": self.suggestions,
            "stats": dict(self.stats),
        }


class ResultBuilder:
    """Accumulates messages and codes for one analyzer run"""

    def __init__(self):
        # (code, message) pairs; message is None for advisory codes
        self._entries: List[Tuple[DiagnosticCode, Optional[str]]] = []

    def fail(self, code: DiagnosticCode, message: str) -> None:
        self._entries.append((code, message))

    def flag(self, code: DiagnosticCode) -> None:
        """Record a code without a blocking message"""
        self._entries.append((code, None))

    def drop(self, codes: Iterable[DiagnosticCode]) -> None:
        """Forget every entry carrying one of the given codes"""
        drop = set(codes)
        self._entries = [(c, m) for c, m in self._entries if c not in drop]

    def has(self, code: DiagnosticCode) -> bool:
        return any(c == code for c, _ in self._entries)

    @property
    def messages(self) -> List[str]:
        return [m for _, m in self._entries if m is not None]

    @property
    def codes(self) -> List[DiagnosticCode]:
        return [c for c, _ in self._entries]

    def build(self, ok: Optional[bool] = None, stats: Optional[Dict[str, Any]] = None) -> AnalysisResult:
        if ok is None:
            ok = not self.messages
        stats = dict(stats or {})
        stats.setdefault("schema_version", STATS_SCHEMA_VERSION)
        return AnalysisResult(ok=ok, messages=tuple(self.messages), codes=tuple(self.codes), stats=stats)
