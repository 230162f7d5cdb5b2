import logging
from typing import Optional

from config import settings, CARD_SIDE_RULES
from .capabilities import call_with_timeout
from .diagnostics import AnalysisResult, DiagnosticCode as C, ResultBuilder
from .errors import CapabilityUnavailable, InvalidImageError
from .hashing import average_hash, hamming
from .image_stats import compute_image_stats
from .vision import VisionClient

logger = logging.getLogger(__name__)


def vision_note(vision: Optional[VisionClient], image_bytes: bytes, b: ResultBuilder) -> dict:
    """Optional realness score on a document side; adds a message, never rejects"""
    if vision is None or not vision.enabled:
        return {}
    try:
        score = call_with_timeout("vision_document", vision.score_document, image_bytes,
                                  timeout=settings.CAPABILITY_TIMEOUT)
    except CapabilityUnavailable as e:
        b.fail(C.VISION_UNAVAILABLE, f"Visual document check skipped: {e.reason}")
        return {"vision_available": False}

    if not score.available:
        b.fail(C.VISION_UNAVAILABLE, f"Visual document check skipped: {score.message}")
        return {"vision_available": False}
    if not score.ok:
        b.fail(C.DOCUMENT_NOT_RECOGNIZED_VISUALLY, "Image does not look like a document to the vision model")
    return {
        "vision_available": True,
        "vision_top_label": score.top_label,
        "vision_top_score": score.top_score,
    }


def analyze_card_sides(front: bytes, back: bytes, vision: Optional[VisionClient] = None) -> AnalysisResult:
    """
    Compare the two sides of an identity card.
    Flags size mismatch, identical sides, a landscape back and small scans.
    """
    rules = CARD_SIDE_RULES
    b = ResultBuilder()
    try:
        f_stats = compute_image_stats(front)
        b_stats = compute_image_stats(back)
        dist = hamming(average_hash(front, rules["hash_size"]), average_hash(back, rules["hash_size"]))
    except InvalidImageError as e:
        b.fail(C.CARD_TOO_SMALL, f"Card image unreadable: {e}")
        return b.build(ok=False)

    if abs(f_stats.width - b_stats.width) / max(f_stats.width, b_stats.width) > rules["width_tolerance"]:
        b.fail(C.CARD_SIZE_MISMATCH, "Front and back do not have the same size")
    if dist < rules["identical_hash_distance"]:
        b.fail(C.CARD_SIDES_IDENTICAL, "Front and back look identical")
    if b_stats.width > b_stats.height:
        b.fail(C.CARD_BACK_LANDSCAPE, "Unusual format: back side is landscape (wider than high)")
    if min(f_stats.min_side, b_stats.min_side) < rules["min_side"]:
        b.fail(C.CARD_TOO_SMALL, "Image too small for front/back")

    stats = {
        "front_width": f_stats.width,
        "front_height": f_stats.height,
        "back_width": b_stats.width,
        "back_height": b_stats.height,
        "hash_distance": dist,
    }
    ok = not b.messages
    stats.update(vision_note(vision, front, b))
    return b.build(ok=ok, stats=stats)


def analyze_card_side(image_bytes: bytes, vision: Optional[VisionClient] = None) -> AnalysisResult:
    """Single-side upload: only the size floor applies"""
    b = ResultBuilder()
    try:
        stats = compute_image_stats(image_bytes)
    except InvalidImageError as e:
        b.fail(C.CARD_TOO_SMALL, f"Card image unreadable: {e}")
        return b.build(ok=False)
    if stats.min_side < CARD_SIDE_RULES["min_side"]:
        b.fail(C.CARD_TOO_SMALL, "Image too small for a card side")
    ok = not b.messages
    extra = vision_note(vision, image_bytes, b)
    return b.build(ok=ok, stats={**stats.to_dict(), **extra})
