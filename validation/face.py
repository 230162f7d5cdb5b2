"""
Face-detection capability.

The detector answers with a three-valued FaceOutcome so that "detector down"
can never be confused with "no face in the picture".
"""
import logging
import os
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Protocol

import cv2
import numpy as np
import requests

from config import settings
from .errors import InvalidImageError
from .image_stats import decode_image, laplacian_variance, to_gray

logger = logging.getLogger(__name__)

DEFAULT_YUNET_URLS = [
    "https://raw.githubusercontent.com/opencv/opencv_zoo/main/models/face_detection_yunet/face_detection_yunet_2023mar.onnx",
    "https://media.githubusercontent.com/media/opencv/opencv_zoo/main/models/face_detection_yunet/face_detection_yunet_2023mar.onnx",
]


@dataclass(frozen=True)
class FaceBox:
    x: float
    y: float
    width: float
    height: float
    score: Optional[float] = None

    @property
    def area(self) -> float:
        return self.width * self.height


@dataclass(frozen=True)
class FaceCheck:
    face_detected: bool
    face_score: float = 0.0
    face_centered: Optional[bool] = None
    face_count: int = 0
    boxes: List[FaceBox] = field(default_factory=list)
    landmarks_ok: Optional[bool] = None
    eyes_open: Optional[bool] = None
    mouth_closed: Optional[bool] = None
    neutral_expression: Optional[bool] = None
    fraud_score: float = 0.0
    quality_score: float = 0.0
    is_real_person: Optional[bool] = None

    @property
    def primary_box(self) -> Optional[FaceBox]:
        return self.boxes[0] if self.boxes else None


class FaceOutcomeKind(str, Enum):
    UNAVAILABLE = "unavailable"
    NO_FACE = "no_face"
    DETECTED = "detected"


@dataclass(frozen=True)
class FaceOutcome:
    kind: FaceOutcomeKind
    check: Optional[FaceCheck] = None
    reason: Optional[str] = None

    @classmethod
    def unavailable(cls, reason: str) -> "FaceOutcome":
        return cls(FaceOutcomeKind.UNAVAILABLE, reason=reason)

    @classmethod
    def no_face(cls) -> "FaceOutcome":
        return cls(FaceOutcomeKind.NO_FACE, check=FaceCheck(face_detected=False))

    @classmethod
    def detected(cls, check: FaceCheck) -> "FaceOutcome":
        if not check.face_detected:
            return cls.no_face()
        return cls(FaceOutcomeKind.DETECTED, check=check)

    @property
    def is_unavailable(self) -> bool:
        return self.kind is FaceOutcomeKind.UNAVAILABLE


class FaceDetector(Protocol):
    def detect(self, image_bytes: bytes) -> FaceOutcome:
        ...


def ensure_model(file_name: str, urls: List[str], directory: str) -> str:
    """Download the model file once; raise RuntimeError if every source fails"""
    os.makedirs(directory, exist_ok=True)
    path = os.path.join(directory, file_name)
    if os.path.exists(path) and os.path.getsize(path) > 1024:
        return path

    errors = []
    for url in urls:
        try:
            resp = requests.get(url, timeout=90)
            resp.raise_for_status()
            if len(resp.content) < 1024:
                errors.append(f"{url} -> response too small (git-lfs pointer?)")
                continue
            with open(path, "wb") as f:
                f.write(resp.content)
            return path
        except requests.RequestException as e:
            errors.append(f"{url} -> {e}")

    raise RuntimeError(f"Could not download model '{file_name}': " + "; ".join(errors))


def liveness_scores(img_bgr: np.ndarray) -> tuple:
    """
    Loose liveness heuristics: sharpness, colour presence and a moire penalty
    from the FFT high-frequency share. Returns (quality, fraud), both 0..1.
    Not spoof-resistant.
    """
    gray = to_gray(img_bgr)
    sharp = min(1.0, laplacian_variance(gray) / 150.0)

    hsv = cv2.cvtColor(img_bgr, cv2.COLOR_BGR2HSV)
    sat_mean = float(hsv[..., 1].mean()) / 255.0

    magnitude = np.abs(np.fft.fftshift(np.fft.fft2(gray)))
    h, w = gray.shape
    cy, cx = h // 2, w // 2
    central = magnitude[max(0, cy - 15):cy + 15, max(0, cx - 15):cx + 15].sum() + 1e-6
    total = magnitude.sum() + 1e-6
    moire_penalty = min(1.0, (1.0 - central / total) * 1.5)

    quality = 0.7 * sharp + 0.3 * min(1.0, sat_mean * 2)
    fraud = max(0.0, min(1.0, moire_penalty - 0.6 * sharp))
    return float(max(0.0, min(1.0, quality))), float(fraud)


class YuNetFaceDetector:
    """
    Face detection using OpenCV YuNet. The model is loaded lazily; a load
    failure makes every call answer UNAVAILABLE. One instance is shared by
    every request thread.
    """

    def __init__(self, score_threshold: float = None, model_dir: str = None):
        self.score_threshold = score_threshold or settings.FACE_DETECTION_SCORE_THRESHOLD
        self.model_dir = model_dir or settings.FACE_MODEL_DIR
        self._detector = None
        # FaceDetectorYN keeps the input size between setInputSize and detect
        self._lock = threading.Lock()

    def _load(self):
        if self._detector is None:
            urls = [settings.YUNET_URL] if settings.YUNET_URL else DEFAULT_YUNET_URLS
            path = ensure_model(settings.YUNET_FILE, urls, self.model_dir)
            self._detector = cv2.FaceDetectorYN_create(path, "", (320, 320), self.score_threshold, 0.3, 5000)
        return self._detector

    def detect(self, image_bytes: bytes) -> FaceOutcome:
        try:
            with self._lock:
                detector = self._load()
        except Exception as e:
            logger.error("Face detector could not be loaded: %s", e)
            return FaceOutcome.unavailable(str(e))

        try:
            img = decode_image(image_bytes)
        except InvalidImageError:
            return FaceOutcome.no_face()

        h, w = img.shape[:2]
        with self._lock:
            detector.setInputSize((w, h))
            _, faces = detector.detect(img)
        if faces is None or len(faces) == 0:
            return FaceOutcome.no_face()

        # rows: x, y, w, h, 5 landmark pairs, score; largest face first
        rows = sorted(faces, key=lambda r: float(r[2] * r[3]), reverse=True)
        boxes = [FaceBox(float(r[0]), float(r[1]), float(r[2]), float(r[3]), float(r[14])) for r in rows]
        main = rows[0]
        box = boxes[0]

        cx, cy = box.x + box.width / 2, box.y + box.height / 2
        centered = abs(cx - w / 2) <= 0.15 * w and abs(cy - h / 2) <= 0.2 * h

        landmarks = np.asarray(main[4:14], dtype=np.float32).reshape(5, 2)
        inside = [
            box.x <= lx <= box.x + box.width and box.y <= ly <= box.y + box.height
            for lx, ly in landmarks
        ]
        landmarks_ok = all(inside)

        # Eyes (0, 1) above the mouth corners (3, 4) and roughly level
        eye_y = (landmarks[0][1] + landmarks[1][1]) / 2
        mouth_y = (landmarks[3][1] + landmarks[4][1]) / 2
        eyes_level = abs(landmarks[0][1] - landmarks[1][1]) <= 0.1 * box.height

        quality, fraud = liveness_scores(img)
        return FaceOutcome.detected(FaceCheck(
            face_detected=True,
            face_score=float(main[14]),
            face_centered=centered,
            face_count=len(rows),
            boxes=boxes,
            landmarks_ok=landmarks_ok,
            eyes_open=None,
            mouth_closed=None,
            neutral_expression=bool(eyes_level and eye_y < mouth_y),
            fraud_score=fraud,
            quality_score=quality,
            is_real_person=quality >= 0.35 and fraud <= 0.5,
        ))
