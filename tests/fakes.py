import io
import time

import cv2
import numpy as np
from PIL import Image

from validation.face import FaceBox, FaceCheck, FaceOutcome
from validation.vision import ObjectDetection, VisionScore


def encode(img, ext=".png"):
    ok, buf = cv2.imencode(ext, img)
    assert ok
    return buf.tobytes()


def solid(width, height, value=255):
    return np.full((height, width, 3), value, dtype=np.uint8)


def passport_photo(width=600, height=750):
    """White background with a grey head-sized block filling ~75% of the height"""
    img = solid(width, height, 255)
    img[90:652, 180:420] = 150
    return img


def signature_image(background=255):
    img = solid(300, 300, background)
    img[100:120, 50:150] = 0
    return img


def horizontal_gradient(width=500, height=700):
    row = np.linspace(0, 255, width).astype(np.uint8)
    return cv2.cvtColor(np.tile(row, (height, 1)), cv2.COLOR_GRAY2BGR)


def vertical_gradient(width=500, height=700):
    col = np.linspace(0, 255, height).astype(np.uint8).reshape(-1, 1)
    return cv2.cvtColor(np.tile(col, (1, width)), cv2.COLOR_GRAY2BGR)


def good_face(**overrides):
    values = dict(
        face_detected=True,
        face_score=0.98,
        face_centered=True,
        face_count=1,
        boxes=[FaceBox(180, 90, 240, 562, 0.98)],
        landmarks_ok=True,
        eyes_open=True,
        mouth_closed=True,
        neutral_expression=True,
        fraud_score=0.05,
        quality_score=0.9,
        is_real_person=True,
    )
    values.update(overrides)
    return FaceCheck(**values)


class FakeDetector:
    def __init__(self, outcome=None, error=None, delay=0.0):
        self.outcome = outcome or FaceOutcome.detected(good_face())
        self.error = error
        self.delay = delay
        self.calls = 0

    def detect(self, image_bytes):
        self.calls += 1
        if self.delay:
            time.sleep(self.delay)
        if self.error:
            raise self.error
        return self.outcome


class FakeOcr:
    """Returns portrait_text for portrait/square images and landscape_text otherwise"""

    def __init__(self, portrait_text="", landscape_text=None, error=None, fail_landscape=False, delay=0.0):
        self.portrait_text = portrait_text
        self.landscape_text = portrait_text if landscape_text is None else landscape_text
        self.error = error
        self.fail_landscape = fail_landscape
        self.delay = delay

    def recognize(self, image_bytes):
        if self.delay:
            time.sleep(self.delay)
        if self.error:
            raise self.error
        with Image.open(io.BytesIO(image_bytes)) as im:
            w, h = im.size
        if w > h:
            if self.fail_landscape:
                raise RuntimeError("ocr crashed")
            return self.landscape_text
        return self.portrait_text


class FakeVision:
    enabled = True

    def __init__(self, objects=None, document=None):
        self.objects = objects or []
        self.document = document or VisionScore(ok=True, top_label="id_card", top_score=0.9)

    def detect_objects(self, image_bytes):
        return ObjectDetection(available=True, objects=list(self.objects))

    def score_document(self, image_bytes):
        return self.document


LICENSE_TEXT = "REPUBLIQUE\nPERMIS\nCATEGORIES B CE\n09.09.2015 | 08.09.2025\nNE LE 03.04.1990"
