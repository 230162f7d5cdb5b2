import hashlib

import numpy as np

from fakes import FakeVision, encode, horizontal_gradient, solid, vertical_gradient
from validation.card_sides import analyze_card_side, analyze_card_sides
from validation.diagnostics import DiagnosticCode as C
from validation.hashing import average_hash, content_digest, hamming
from validation.vision import VisionClient, VisionScore

FRONT = encode(horizontal_gradient())
BACK = encode(vertical_gradient())


def test_distinct_sides_pass():
    result = analyze_card_sides(FRONT, BACK)

    assert result.ok
    assert result.messages == ()
    assert result.stats["hash_distance"] >= 10
    assert (result.stats["front_width"], result.stats["front_height"]) == (500, 700)


def test_identical_sides():
    result = analyze_card_sides(FRONT, FRONT)

    assert not result.ok
    assert result.stats["hash_distance"] == 0
    assert result.has_code(C.CARD_SIDES_IDENTICAL)


def test_landscape_back():
    result = analyze_card_sides(FRONT, encode(vertical_gradient(width=700, height=500)))
    assert result.has_code(C.CARD_BACK_LANDSCAPE)
    assert not result.ok


def test_size_mismatch():
    result = analyze_card_sides(FRONT, encode(vertical_gradient(width=800, height=1000)))
    assert result.has_code(C.CARD_SIZE_MISMATCH)


def test_small_sides():
    result = analyze_card_sides(encode(horizontal_gradient(300, 300)), encode(vertical_gradient(300, 300)))
    assert result.has_code(C.CARD_TOO_SMALL)


def test_single_side():
    assert analyze_card_side(FRONT).ok
    small = analyze_card_side(encode(solid(300, 300, 200)))
    assert not small.ok
    assert small.has_code(C.CARD_TOO_SMALL)


def test_disabled_vision_adds_nothing():
    result = analyze_card_sides(FRONT, BACK, vision=VisionClient(api_key=""))
    assert result.ok
    assert "vision_available" not in result.stats


def test_vision_doubt_is_a_note_not_a_rejection():
    vision = FakeVision(document=VisionScore(ok=False, top_label="letter", top_score=0.3))
    result = analyze_card_sides(FRONT, BACK, vision=vision)

    assert result.ok
    assert result.has_code(C.DOCUMENT_NOT_RECOGNIZED_VISUALLY)
    assert result.stats["vision_top_label"] == "letter"


def test_vision_error_is_reported_as_unavailable():
    vision = FakeVision(document=VisionScore(ok=True, available=False, message="vision error: 503"))
    result = analyze_card_side(FRONT, vision=vision)

    assert result.ok
    assert result.has_code(C.VISION_UNAVAILABLE)
    assert result.stats["vision_available"] is False


def test_average_hash_and_hamming():
    a = average_hash(FRONT)
    b = average_hash(BACK)
    assert a.shape == (32 * 32,)
    assert hamming(a, a) == 0
    assert hamming(a, b) > 100
    assert hamming(np.array([True, False]), np.array([True])) == 1


def test_content_digest():
    assert content_digest(b"abc") == hashlib.sha256(b"abc").digest()
    assert len(content_digest(FRONT)) == 32
