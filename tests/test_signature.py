from fakes import encode, signature_image, solid
from config import SIGNATURE_RULES
from validation.diagnostics import DiagnosticCode as C
from validation.signature import SignatureAnalyzer, analyze_signature, blue_ink_ratio


def test_blank_sheet_is_rejected():
    result = analyze_signature(encode(solid(300, 300, 255)))

    assert not result.ok
    assert result.has_code(C.SIGNATURE_ABSENT)
    assert result.has_code(C.SIGNATURE_NOT_VISIBLE)
    assert "Signature absent or very faint" in result.messages
    assert result.stats["override_applied"] is False


def test_dark_strokes_on_white_pass():
    result = analyze_signature(encode(signature_image()))

    assert result.ok
    assert not result.has_code(C.SIGNATURE_ABSENT)
    assert result.stats["ink_coverage"] > 0.01
    assert result.stats["override_applied"] is True


def test_override_silences_background_complaint():
    result = analyze_signature(encode(signature_image(background=150)))

    assert result.ok
    assert not result.has_code(C.SIGNATURE_BACKGROUND_NOT_WHITE)
    assert result.messages == ()


def test_background_complaint_without_override():
    analyzer = SignatureAnalyzer(rules={**SIGNATURE_RULES, "override_enabled": False})
    result = analyzer.analyze(encode(signature_image(background=150)))

    assert not result.ok
    assert result.has_code(C.SIGNATURE_BACKGROUND_NOT_WHITE)


def test_small_scan_never_overridden():
    result = analyze_signature(encode(solid(200, 200, 255)))
    assert not result.ok
    assert result.stats["override_applied"] is False


def test_blue_ink_counts():
    img = solid(100, 100, 255)
    img[40:50, 10:90] = (255, 0, 0)
    assert blue_ink_ratio(img) > 0.05
    assert blue_ink_ratio(solid(100, 100, 255)) == 0


def test_unreadable_signature():
    result = analyze_signature(b"garbage")
    assert not result.ok
    assert result.has_code(C.SIGNATURE_ABSENT)
