"""
Image preparation before OCR and storage. Every helper takes and returns
encoded bytes so results can be handed straight to a capability.
"""
import logging
from typing import Dict, Tuple

import cv2
import numpy as np

from .errors import InvalidImageError
from .image_stats import decode_image, to_gray

logger = logging.getLogger(__name__)

OCR_MIN_SIDE = 500


def encode_png(img: np.ndarray) -> bytes:
    ok, buf = cv2.imencode(".png", img)
    if not ok:
        raise InvalidImageError("Image could not be encoded")
    return buf.tobytes()


def auto_crop_document(image_bytes: bytes, tolerance: int = 10) -> Tuple[bytes, bool]:
    """
    Trim uniform borders (large scan margins) around a document.
    Border colour is taken from the top-left pixel.
    """
    img = decode_image(image_bytes)
    gray = to_gray(img).astype(np.int16)
    mask = np.abs(gray - gray[0, 0]) > tolerance
    if not mask.any():
        return image_bytes, False
    ys, xs = np.where(mask)
    y0, y1, x0, x1 = ys.min(), ys.max() + 1, xs.min(), xs.max() + 1
    h, w = gray.shape
    if (y0, y1, x0, x1) == (0, h, 0, w):
        return image_bytes, False
    return encode_png(img[y0:y1, x0:x1]), True


def enhance_for_ocr(image_bytes: bytes) -> bytes:
    """Grey, normalise, gamma 1.1, contrast stretch, 3x3 median"""
    gray = to_gray(decode_image(image_bytes))
    norm = cv2.normalize(gray, None, 0, 255, cv2.NORM_MINMAX)
    lut = np.array([((i / 255.0) ** (1 / 1.1)) * 255 for i in range(256)], dtype=np.uint8)
    gamma = cv2.LUT(norm, lut)
    contrasted = cv2.convertScaleAbs(gamma, alpha=1.2, beta=-10)
    return encode_png(cv2.medianBlur(contrasted, 3))


def upscale_for_ocr(image_bytes: bytes, min_side: int = OCR_MIN_SIDE) -> Tuple[bytes, bool]:
    img = decode_image(image_bytes)
    h, w = img.shape[:2]
    if min(h, w) >= min_side:
        return image_bytes, False
    factor = min_side / float(min(h, w))
    resized = cv2.resize(img, (int(round(w * factor)), int(round(h * factor))), interpolation=cv2.INTER_CUBIC)
    return encode_png(resized), True


def rotate_90(image_bytes: bytes) -> bytes:
    return encode_png(cv2.rotate(decode_image(image_bytes), cv2.ROTATE_90_CLOCKWISE))


def prepare_for_ocr(image_bytes: bytes) -> bytes:
    upscaled, _ = upscale_for_ocr(image_bytes)
    return enhance_for_ocr(upscaled)


def normalize_profile_photo(image_bytes: bytes, size: int = 500) -> Tuple[bytes, Dict[str, int], bool]:
    """Centre square crop resized to size x size. Returns (bytes, original dims, normalized)."""
    img = decode_image(image_bytes)
    h, w = img.shape[:2]
    original = {"width": int(w), "height": int(h)}
    side = min(h, w)
    if side == 0:
        return image_bytes, original, False
    top, left = (h - side) // 2, (w - side) // 2
    square = cv2.resize(img[top:top + side, left:left + side], (size, size), interpolation=cv2.INTER_AREA)
    return encode_png(square), original, True
