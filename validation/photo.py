import io
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import numpy as np
from PIL import Image

from config import settings, PHOTO_RULES, PHOTO_THRESHOLDS
from .capabilities import call_with_timeout
from .diagnostics import AnalysisResult, DiagnosticCode as C, ResultBuilder
from .errors import CapabilityUnavailable, InvalidImageError
from .face import FaceDetector, FaceOutcome
from .image_stats import ImageStats, border_white_ratio, decode_image, stats_from_array, to_gray
from .metrics import AnalysisMetrics
from .vision import VisionClient

logger = logging.getLogger(__name__)
photo_log = logging.getLogger("kyc.photo")

SCREEN_DIMENSIONS = {720, 768, 900, 1080, 1200, 1280, 1366, 1440, 1536, 1600, 1920, 2160, 2560, 2880, 3200, 3840}

ANIMAL_LABELS = ("dog", "cat", "bird", "horse", "sheep", "cow", "elephant", "bear", "zebra", "giraffe", "animal", "goat")

FACE_KINDS = ("profile", "passport")


@dataclass(frozen=True)
class ImageMeta:
    format: str = ""
    dpi: Optional[float] = None
    has_exif: bool = False


def read_image_meta(image_bytes: bytes) -> ImageMeta:
    """Container format, declared density and EXIF presence, via PIL"""
    try:
        with Image.open(io.BytesIO(image_bytes)) as im:
            dpi = im.info.get("dpi")
            exif = im.info.get("exif") or b""
            return ImageMeta(
                format=(im.format or "").lower(),
                dpi=float(dpi[0]) if dpi else None,
                has_exif=len(exif) > 0,
            )
    except (OSError, ValueError) as e:
        logger.debug("Image metadata unreadable: %s", e)
        return ImageMeta()


def is_screenshot(stats: ImageStats, meta: ImageMeta) -> bool:
    """No EXIF, screen-like dimensions and a hard contrast"""
    w, h = stats.width, stats.height
    screen_like = (
        w in SCREEN_DIMENSIONS
        or h in SCREEN_DIMENSIONS
        or (w > 0 and h > 0 and abs(w / h - 16 / 9) < 0.02)
    )
    return not meta.has_exif and screen_like and stats.contrast > 40


class PhotoAnalyzer:
    """
    Evaluates an identity photo (profile, passport or driver license portrait).

    Runs the face detector and the optional vision subject check under a time
    box, applies the pixel checks with the threshold set matching the detector
    outcome, then settles accepted / rejected / needs_review. A detector that
    is down never lets a photo through: it goes to manual review.
    """

    def __init__(self, detector: FaceDetector, vision: Optional[VisionClient] = None,
                 metrics: Optional[AnalysisMetrics] = None, timeout: Optional[float] = None):
        self.detector = detector
        self.vision = vision
        self.metrics = metrics or AnalysisMetrics()
        self.timeout = timeout or settings.CAPABILITY_TIMEOUT

    def detect_face(self, image_bytes: bytes) -> FaceOutcome:
        try:
            outcome = call_with_timeout("face_detector", self.detector.detect, image_bytes, timeout=self.timeout)
        except CapabilityUnavailable as e:
            outcome = FaceOutcome.unavailable(e.reason)
        self.metrics.record_face(outcome)
        return outcome

    def check_subject(self, image_bytes: bytes, b: ResultBuilder) -> bool:
        """Vision double-check for animals or a missing person. Returns True when an animal is seen."""
        if self.vision is None or not self.vision.enabled:
            return False
        try:
            detection = call_with_timeout("vision_objects", self.vision.detect_objects, image_bytes, timeout=self.timeout)
        except CapabilityUnavailable:
            return False
        if not detection.available or not detection.objects:
            return False

        animals = [
            o for o in detection.objects
            if o.score > PHOTO_RULES["animal_min_score"] and any(a in o.label for a in ANIMAL_LABELS)
        ]
        if animals:
            b.fail(C.ANIMAL_DETECTED, f"Invalid subject detected: {animals[0].label} (animal)")
            return True
        persons = [o for o in detection.objects if o.score > PHOTO_RULES["person_min_score"] and o.label == "person"]
        if not persons:
            b.fail(C.NON_HUMAN_SUBJECT, "No human confirmed in the picture")
        return False

    def check_format(self, kind: str, stats: ImageStats, meta: ImageMeta, b: ResultBuilder) -> None:
        if kind not in FACE_KINDS or meta.format != "png":
            return
        if kind == "passport" and stats.width > stats.height:
            b.fail(C.FORMAT_PNG_LANDSCAPE_REJECTED, "Landscape PNG is not accepted for a passport photo")
        else:
            b.flag(C.FORMAT_PNG_USED)

    def check_dimensions(self, kind: str, stats: ImageStats, meta: ImageMeta, b: ResultBuilder) -> None:
        if kind == "profile":
            side = PHOTO_RULES["profile_min_square"]
            if not (stats.width == stats.height and stats.width >= side):
                b.fail(C.PROFILE_DIM_TOO_SMALL_OR_NOT_SQUARE, f"Photo must be square and at least {side}x{side}")
        if kind == "passport":
            side = PHOTO_RULES["passport_min_dimension"]
            if stats.width < side or stats.height < side:
                b.fail(C.DIM_TOO_SMALL, f"Passport photo must be at least {side}x{side}")
            min_dpi = PHOTO_RULES["min_dpi"]
            if min_dpi and meta.dpi and 0 < meta.dpi < min_dpi:
                b.fail(C.LOW_DPI, f"Resolution too low (DPI < {min_dpi})")
        if stats.width > stats.height:
            b.fail(C.NOT_PORTRAIT, "Photo is not portrait (landscape format)")
        if kind in FACE_KINDS and stats.min_side < PHOTO_RULES["normalized_dimension"]:
            b.fail(C.ORIGINAL_DIMENSIONS_TOO_SMALL, f"Original dimensions too small (<{PHOTO_RULES['normalized_dimension']} px)")

    def check_background(self, kind: str, stats: ImageStats, edge_white: float,
                         thresholds: Dict[str, Any], b: ResultBuilder) -> None:
        if stats.background_std_dev > thresholds["bg_std_max"][kind]:
            b.fail(C.BACKGROUND_NOT_UNIFORM, "Background is not uniform")
        if stats.blur < thresholds["blur_min"]:
            b.fail(C.PHOTO_TOO_BLURRY, "Photo is too blurry")
        if stats.contrast < thresholds["contrast_min"]:
            b.fail(C.LOW_CONTRAST, "Contrast is too low")
        if stats.rgb_balance_delta > PHOTO_RULES["rgb_delta_max"][kind]:
            b.fail(C.COLOR_CAST_DETECTED, "Colour cast detected: use a neutral white background")
        if kind in FACE_KINDS and (
            stats.white_pixel_ratio < thresholds["white_ratio_min"] or stats.brightness < thresholds["brightness_min"]
        ):
            b.fail(C.BACKGROUND_NOT_WHITE, "White background required")
        if stats.background_std_dev > 22 and stats.contrast > 35:
            b.fail(C.SHADOWS_REFLECTIONS, "Disturbing shadows or reflections")
        if edge_white < thresholds["white_edge_min"]:
            b.fail(C.BACKGROUND_NOT_WHITE_EDGES, "Background is not white up to the edges")
        if stats.background_std_dev > 25 and stats.white_pixel_ratio < 0.5:
            b.fail(C.BACKGROUND_CONTENT_DETECTED, "Objects or content visible in the background")

    def check_face_geometry(self, kind: str, outcome: FaceOutcome, stats: ImageStats,
                            img: np.ndarray, b: ResultBuilder) -> None:
        if outcome.is_unavailable:
            return
        face = outcome.check
        strict = kind in FACE_KINDS

        if not face.face_detected or face.fraud_score > PHOTO_RULES["invalid_face_fraud_max"] \
                or face.quality_score < PHOTO_RULES["invalid_face_quality_min"] or not face.is_real_person:
            b.fail(C.INVALID_FACE, "No valid face detected")

        if strict:
            conf_min = PHOTO_RULES["confidence_min"][kind]
            if face.face_score < conf_min:
                b.fail(C.FACE_CONFIDENCE_LOW, f"Uncertain face detection (score < {conf_min:.2f})")
        if face.face_count > 1:
            b.fail(C.MULTIPLE_FACES, "Several faces detected")
        if face.face_centered is False:
            b.fail(C.FACE_NOT_CENTERED, "Face is not centered")
        if face.landmarks_ok is False:
            b.fail(C.LANDMARKS_NOT_VISIBLE, "Facial features not visible (eyes, nose, mouth)")
        if strict and face.eyes_open is False:
            b.fail(C.EYES_CLOSED, "Eyes are not open")
        if strict and face.mouth_closed is False:
            b.fail(C.MOUTH_OPEN, "Mouth is open")
        if strict and face.neutral_expression is False:
            b.fail(C.NON_NEUTRAL_EXPRESSION, "Expression is not neutral")

        box = face.primary_box
        if box is None or not face.face_detected or box.width <= 0 or box.height <= 0:
            return

        low, high = PHOTO_RULES["head_height_ratio"]
        if not low <= box.height / stats.height <= high:
            b.fail(C.BAD_HEAD_HEIGHT_RATIO, f"Head to frame height ratio out of range ({low:.0%}-{high:.0%})")
        low, high = PHOTO_RULES["head_area_ratio"]
        if not low <= box.area / (stats.width * stats.height) <= high:
            b.fail(C.BAD_HEAD_RATIO, "Head to frame proportions out of range")

        x0, y0 = max(0, int(box.x)), max(0, int(box.y))
        region = img[y0:y0 + int(box.height), x0:x0 + int(box.width)]
        if region.size:
            face_brightness = float(to_gray(region).mean())
            if face_brightness < PHOTO_RULES["face_dark_max"]:
                b.fail(C.FACE_TOO_DARK, "Face is under-exposed")
            if face_brightness > PHOTO_RULES["face_bright_min"]:
                b.fail(C.FACE_TOO_BRIGHT, "Face is over-exposed")
        if face.face_score > 0.9 and face.landmarks_ok is False:
            b.fail(C.FACE_OBSCURED, "Accessories hide the face (glasses, hat)")

    def global_score(self, outcome: FaceOutcome, stats: ImageStats) -> float:
        face_score = 0.0 if outcome.is_unavailable else outcome.check.face_score
        return (
            face_score * 0.4
            + max(0.0, 1 - stats.blur / 100) * 0.2
            + max(0.0, min(1.0, stats.white_pixel_ratio)) * 0.2
            + max(0.0, 1 - stats.background_std_dev / 50) * 0.2
        )

    def decide(self, outcome: FaceOutcome, stats: ImageStats, b: ResultBuilder) -> str:
        """Final state machine: needs_review, rejected or accepted"""
        if outcome.is_unavailable:
            b.fail(C.FACE_DETECTION_UNAVAILABLE, "Face detection temporarily unavailable: manual review required")
            b.fail(C.FACE_DETECTION_ERROR, "Verification service unavailable, please try again later")
            return "needs_review"

        face = outcome.check
        if not face.face_detected:
            b.fail(C.NO_FACE_DETECTED, "No human face detected, upload a valid passport photo")
            return "rejected"

        if face.face_score < PHOTO_RULES["strict_confidence_min"]:
            b.fail(C.FACE_CONFIDENCE_LOW, "Face not clearly identified (confidence too low)")
        box = face.primary_box
        if box is not None and box.area / (stats.width * stats.height) < PHOTO_RULES["min_face_area_ratio"]:
            b.fail(C.FACE_TOO_SMALL, "Face too small or too far away")
        if face.fraud_score > PHOTO_RULES["fraud_max"]:
            b.fail(C.FRAUD_SUSPECTED, "Suspicious image detected")
        if face.quality_score < PHOTO_RULES["quality_min"]:
            b.fail(C.LOW_FACE_QUALITY, "Insufficient quality (blurry, dark)")
        if face.is_real_person is False:
            b.fail(C.NOT_REAL_PERSON, "Please use a real photo")

        return "rejected" if b.messages else "accepted"

    def analyze(self, image_bytes: bytes, kind: str = "passport") -> AnalysisResult:
        b = ResultBuilder()
        try:
            img = decode_image(image_bytes)
        except InvalidImageError as e:
            b.fail(C.IMAGE_UNREADABLE, str(e))
            return b.build(ok=False, stats={"decision": "rejected"})

        stats = stats_from_array(img)
        meta = read_image_meta(image_bytes)
        outcome = self.detect_face(image_bytes)

        tolerant = outcome.is_unavailable and kind in FACE_KINDS
        thresholds = PHOTO_THRESHOLDS["tolerant" if tolerant else "normal"]
        edge_white = border_white_ratio(to_gray(img))

        animal = kind in FACE_KINDS and self.check_subject(image_bytes, b)

        self.check_format(kind, stats, meta, b)
        self.check_dimensions(kind, stats, meta, b)
        self.check_background(kind, stats, edge_white, thresholds, b)
        self.check_face_geometry(kind, outcome, stats, img, b)

        face_found = not outcome.is_unavailable and outcome.check.face_detected
        if not face_found and stats.white_pixel_ratio < 0.5 and stats.background_std_dev > 18:
            b.fail(C.NON_HUMAN_OR_NON_PORTRAIT, "Non-human or non-portrait image (object, animal, landscape)")
        if is_screenshot(stats, meta):
            b.fail(C.SCREENSHOT_DETECTED, "Screenshot detected")

        global_score = self.global_score(outcome, stats)
        if global_score < thresholds["global_score_min"]:
            b.fail(C.LOW_GLOBAL_QUALITY, "Overall quality insufficient")
        if not outcome.is_unavailable and not face_found and stats.white_pixel_ratio <= 0.6:
            b.fail(C.LOGO_DETECTED, "Logo or background type image not allowed")

        decision = self.decide(outcome, stats, b)
        if animal:
            decision = "rejected"

        face = outcome.check
        box = face.primary_box if face else None
        result_stats = {
            **stats.to_dict(),
            "white_edge_ratio": edge_white,
            "image_format": meta.format,
            "dpi": meta.dpi,
            "global_score": round(global_score, 4),
            "threshold_set": "tolerant" if tolerant else "normal",
            "face_outcome": outcome.kind.value,
            "face_detected": face_found,
            "face_score": face.face_score if face else None,
            "face_centered": face.face_centered if face else None,
            "face_count": face.face_count if face else 0,
            "landmarks_ok": face.landmarks_ok if face else None,
            "fraud_score": face.fraud_score if face else None,
            "quality_score": face.quality_score if face else None,
            "decision": decision,
        }
        if box:
            result_stats.update(face_x=box.x, face_y=box.y, face_w=box.width, face_h=box.height)
        # stats stay flat primitives; unknown values are left out
        result_stats = {k: v for k, v in result_stats.items() if v is not None}
        result = b.build(ok=decision == "accepted", stats=result_stats)
        self.log_photo(image_bytes, result)
        return result

    def log_photo(self, image_bytes: bytes, result: AnalysisResult) -> None:
        """One JSON line per analyzed photo for threshold calibration"""
        if not settings.PHOTO_LOG_ENABLED:
            return
        st = result.stats
        has_box = "face_w" in st
        entry = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "file_size": len(image_bytes),
            "image_format": st.get("image_format"),
            "face_count": st.get("face_count"),
            "face_position": {
                "cx": st["face_x"] + st["face_w"] / 2,
                "cy": st["face_y"] + st["face_h"] / 2,
            } if has_box else None,
            "sharpness_score": st.get("blur"),
            "brightness_score": st.get("brightness"),
            "background_variance": st.get("background_std_dev"),
            "rgb_balance_delta": st.get("rgb_balance_delta"),
            "decision": st.get("decision"),
            "codes": [c.value for c in result.codes],
            "suggestions": result.suggestions,
        }
        photo_log.info(json.dumps(entry))


def analyze_photo(image_bytes: bytes, kind: str, detector: FaceDetector, **kwargs) -> AnalysisResult:
    return PhotoAnalyzer(detector, **kwargs).analyze(image_bytes, kind)


def face_result_from_photo(photo: AnalysisResult) -> AnalysisResult:
    """Derive the face sub-result from a photo analysis"""
    b = ResultBuilder()
    st = photo.stats
    if photo.has_code(C.FACE_DETECTION_UNAVAILABLE):
        b.fail(C.FACE_DETECTION_UNAVAILABLE, "Face detection temporarily unavailable")
    elif not st.get("face_detected"):
        b.fail(C.NO_FACE_DETECTED, "Face missing or not detected")
    return b.build(
        ok=bool(st.get("face_detected")),
        stats={
            "face_detected": bool(st.get("face_detected")),
            "face_centered": bool(st.get("face_centered")),
            "face_count": st.get("face_count", 0),
            "decision": st.get("decision"),
        },
    )
