import numpy as np

from config import SIGNATURE_RULES
from .diagnostics import AnalysisResult, DiagnosticCode as C, ResultBuilder
from .errors import InvalidImageError
from .image_stats import decode_image, ratio_above, ratio_below, stats_from_array, to_gray, WHITE_LUMA_THRESHOLD

INK_LUMA_MAX = 80

# Complaints the override path silences
OVERRIDABLE_CODES = (
    C.SIGNATURE_BACKGROUND_NOT_WHITE,
    C.SIGNATURE_COLOR_CAST,
    C.SIGNATURE_ABSENT,
    C.SIGNATURE_NOT_VISIBLE,
)


def blue_ink_ratio(img: np.ndarray) -> float:
    """Share of pixels where blue clearly dominates red and green"""
    if img.ndim != 3 or img.size == 0:
        return 0.0
    b, g, r = (img[..., i].astype(np.int16) for i in range(3))
    whiteish = (r > WHITE_LUMA_THRESHOLD) & (g > WHITE_LUMA_THRESHOLD) & (b > WHITE_LUMA_THRESHOLD)
    blue = ~whiteish & (b > r + 25) & (b > g + 25) & (b > 80)
    return float(blue.mean())


class SignatureAnalyzer:
    """
    Checks a scanned handwritten signature: visible ink on a plain white sheet.
    """

    def __init__(self, rules=None):
        self.rules = rules or SIGNATURE_RULES

    def ink_coverage(self, img: np.ndarray) -> float:
        dark = ratio_below(to_gray(img), INK_LUMA_MAX)
        blue = blue_ink_ratio(img)
        return max(dark, blue * 0.8) if blue > 0 else dark

    def analyze(self, image_bytes: bytes) -> AnalysisResult:
        r = self.rules
        b = ResultBuilder()
        try:
            img = decode_image(image_bytes)
        except InvalidImageError as e:
            b.fail(C.SIGNATURE_ABSENT, str(e))
            return b.build(ok=False)

        stats = stats_from_array(img)
        gray = to_gray(img)
        dark = ratio_below(gray, INK_LUMA_MAX)
        white_ratio = ratio_above(gray, WHITE_LUMA_THRESHOLD)

        if stats.brightness > r["invisible_brightness"] and stats.contrast < r["invisible_contrast"]:
            b.fail(C.SIGNATURE_NOT_VISIBLE, "Signature not visible (background too light, low contrast)")
        if stats.blur < r["blur_min"]:
            b.fail(C.SIGNATURE_TOO_BLURRY, "Signature is too blurry")
        if dark < r["ink_min"]:
            b.fail(C.SIGNATURE_ABSENT, "Signature absent or very faint")
        if stats.background_std_dev < r["uniform_bg_std"] and dark < r["uniform_ink"] \
                and stats.contrast < r["uniform_contrast"]:
            b.fail(C.SIGNATURE_TOO_UNIFORM, "Background too uniform, signature barely marked")
        if white_ratio < r["white_ratio_min"] or stats.brightness < r["brightness_min"]:
            b.fail(C.SIGNATURE_BACKGROUND_NOT_WHITE, "White background required: use a plain white sheet")
        if stats.rgb_balance_delta > r["rgb_delta_max"]:
            b.fail(C.SIGNATURE_COLOR_CAST, "Colour cast detected: use a neutral white background")

        ink = self.ink_coverage(img)
        override = bool(r["override_enabled"]) and stats.min_side >= r["override_min_side"] and (
            ink >= r["override_ink_min"] or stats.contrast >= r["override_contrast_min"]
        )
        if override:
            b.drop(OVERRIDABLE_CODES)

        return b.build(
            ok=override or not b.messages,
            stats={
                **stats.to_dict(),
                "ink_coverage": ink,
                "signature_white_ratio": white_ratio,
                "override_applied": override,
            },
        )


def analyze_signature(image_bytes: bytes) -> AnalysisResult:
    return SignatureAnalyzer().analyze(image_bytes)
