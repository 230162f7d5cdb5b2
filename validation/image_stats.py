import io
from dataclasses import dataclass, asdict
from typing import Dict, Any

import cv2
import numpy as np
from PIL import Image

from .errors import InvalidImageError

WHITE_LUMA_THRESHOLD = 232

# 4-neighbour Laplacian
LAPLACIAN_KERNEL = np.array([[0, 1, 0], [1, -4, 1], [0, 1, 0]], dtype=np.float64)


@dataclass(frozen=True)
class ImageStats:
    """Pixel-level metrics shared by every analyzer"""
    width: int
    height: int
    brightness: float          # mean luminance
    contrast: float            # stdev of luminance
    blur: float                # Laplacian variance, low means blurry
    background_std_dev: float  # stdev of border pixels
    r_mean: float
    g_mean: float
    b_mean: float
    rgb_balance_delta: float   # max pairwise channel mean difference
    white_pixel_ratio: float   # share of grey pixels above WHITE_LUMA_THRESHOLD

    @property
    def min_side(self) -> int:
        return min(self.width, self.height)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def decode_image(image_bytes: bytes) -> np.ndarray:
    """Decode raw bytes into a BGR array, falling back to PIL"""
    if not image_bytes:
        raise InvalidImageError("Empty image")
    arr = np.frombuffer(image_bytes, dtype=np.uint8)
    img = cv2.imdecode(arr, cv2.IMREAD_COLOR)
    if img is None:
        try:
            pil = Image.open(io.BytesIO(image_bytes)).convert("RGB")
        except Exception as e:
            raise InvalidImageError(f"Image could not be decoded: {e}") from e
        img = cv2.cvtColor(np.array(pil), cv2.COLOR_RGB2BGR)
    return img


def to_gray(img: np.ndarray) -> np.ndarray:
    if img.ndim == 2:
        return img
    return cv2.cvtColor(img, cv2.COLOR_BGR2GRAY)


def laplacian_variance(gray: np.ndarray) -> float:
    """Variance of the Laplacian over interior pixels; 0 for images without interior"""
    h, w = gray.shape[:2]
    if h < 3 or w < 3:
        return 0.0
    lap = cv2.filter2D(gray.astype(np.float64), cv2.CV_64F, LAPLACIAN_KERNEL)
    return float(lap[1:-1, 1:-1].var())


def border_pixels(gray: np.ndarray) -> np.ndarray:
    return np.concatenate([gray[0, :], gray[-1, :], gray[:, 0], gray[:, -1]]).astype(np.float64)


def border_std(gray: np.ndarray) -> float:
    return float(border_pixels(gray).std())


def border_white_ratio(gray: np.ndarray, threshold: int = 240) -> float:
    edge = border_pixels(gray)
    if edge.size == 0:
        return 0.0
    return float((edge > threshold).mean())


def ratio_above(gray: np.ndarray, threshold: int) -> float:
    if gray.size == 0:
        return 0.0
    return float((gray > threshold).mean())


def ratio_below(gray: np.ndarray, threshold: int) -> float:
    if gray.size == 0:
        return 0.0
    return float((gray < threshold).mean())


def stats_from_array(img: np.ndarray) -> ImageStats:
    gray = to_gray(img)
    h, w = gray.shape[:2]
    gray_f = gray.astype(np.float64)

    if img.ndim == 3 and img.shape[2] >= 3:
        b_mean, g_mean, r_mean = (float(img[..., i].mean()) for i in range(3))
    else:
        r_mean = g_mean = b_mean = float(gray_f.mean())

    return ImageStats(
        width=int(w),
        height=int(h),
        brightness=float(gray_f.mean()),
        contrast=float(gray_f.std()),
        blur=laplacian_variance(gray),
        background_std_dev=border_std(gray),
        r_mean=r_mean,
        g_mean=g_mean,
        b_mean=b_mean,
        rgb_balance_delta=max(abs(r_mean - g_mean), abs(g_mean - b_mean), abs(r_mean - b_mean)),
        white_pixel_ratio=ratio_above(gray, WHITE_LUMA_THRESHOLD),
    )


def compute_image_stats(image_bytes: bytes) -> ImageStats:
    """
    Compute pixel statistics for raw image bytes.
    Pure and deterministic; dimension policy is left to the consuming analyzer.
    """
    return stats_from_array(decode_image(image_bytes))
