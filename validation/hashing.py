import hashlib

import cv2
import numpy as np

from .image_stats import decode_image, to_gray


def average_hash(image_bytes: bytes, size: int = 32) -> np.ndarray:
    """
    Perceptual average hash: greyscale, resize to size x size, one bit per
    pixel set when the pixel is brighter than the mean.
    """
    gray = to_gray(decode_image(image_bytes))
    small = cv2.resize(gray, (size, size), interpolation=cv2.INTER_AREA).astype(np.float64)
    return (small > small.mean()).flatten()


def hamming(a: np.ndarray, b: np.ndarray) -> int:
    n = min(len(a), len(b))
    return int(np.count_nonzero(a[:n] != b[:n])) + abs(len(a) - len(b))


def content_digest(data: bytes) -> bytes:
    """SHA-256 over the raw upload bytes"""
    return hashlib.sha256(data).digest()
