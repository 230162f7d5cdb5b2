import base64
import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from openai import OpenAI

from config import settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class VisionScore:
    ok: bool
    top_label: str = ""
    top_score: float = -1.0
    available: bool = True
    message: Optional[str] = None


@dataclass(frozen=True)
class DetectedObject:
    label: str
    score: float


@dataclass(frozen=True)
class ObjectDetection:
    available: bool
    objects: List[DetectedObject] = field(default_factory=list)
    message: Optional[str] = None


def encode_image(image_bytes: bytes) -> str:
    """Encode image bytes as a base64 data URL"""
    mime = "image/png" if image_bytes.startswith(b"\x89PNG") else "image/jpeg"
    return f"data:{mime};base64,{base64.b64encode(image_bytes).decode('utf-8')}"


def safe_json_parse(text: str) -> Any:
    """Safely parse JSON from LLM response"""
    match = re.search(r"[\[{].*[\]}]", text, re.DOTALL)
    if not match:
        raise ValueError("No JSON found in model output")
    return json.loads(match.group())


def _to_score(val) -> float:
    try:
        v = float(str(val).strip().replace("%", ""))
    except (TypeError, ValueError):
        return 0.0
    # Percentages like 95 become 0.95
    if v > 1:
        v = v / 100.0
    return max(0.0, min(1.0, v))


DOCUMENT_PROMPT = """
You are a document image classifier.

Classify the image. Typical labels: "id_card", "passport", "driver_license",
"letter", "form", "screenshot", "photo", "other".

Return STRICT JSON only.

Expected format:
[{"label": "string", "score": 0.0-1.0}, ...]

Rules:
- Sort by score, highest first
- At most 3 entries
"""

OBJECTS_PROMPT = """
You are an object detection system.

List the main subjects visible in the photo (for example "person", "dog",
"cat", "bird", "goat", "logo", "text").

Return STRICT JSON only.

Expected format:
[{"label": "string", "score": 0.0-1.0}, ...]

Rules:
- Use lowercase single-word labels where possible
- DO NOT guess subjects that are not visible
"""


class VisionClient:
    """
    Optional vision model used to corroborate the heuristics. Missing API key
    or API errors degrade to available=False results; never a rejection.
    """

    def __init__(self, api_key: Optional[str] = None, model: Optional[str] = None,
                 min_score: Optional[float] = None):
        self.api_key = api_key if api_key is not None else settings.OPENAI_API_KEY
        self.model = model or settings.VISION_MODEL
        self.min_score = min_score if min_score is not None else settings.VISION_MIN_SCORE
        self._client = None

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)

    def _client_or_none(self) -> Optional[OpenAI]:
        if not self.enabled:
            return None
        if self._client is None:
            self._client = OpenAI(api_key=self.api_key)
        return self._client

    def _ask(self, prompt: str, image_bytes: bytes) -> List[Dict[str, Any]]:
        client = self._client_or_none()
        response = client.chat.completions.create(
            model=self.model,
            messages=[
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": prompt},
                        {"type": "image_url", "image_url": {"url": encode_image(image_bytes)}},
                    ],
                }
            ],
            max_tokens=300,
            temperature=0,
        )
        parsed = safe_json_parse(response.choices[0].message.content)
        if isinstance(parsed, dict):
            parsed = [parsed]
        return [p for p in parsed if isinstance(p, dict)]

    def score_document(self, image_bytes: bytes) -> VisionScore:
        if not self.enabled:
            return VisionScore(ok=True, available=False, message="vision skipped: missing API key")
        try:
            labels = self._ask(DOCUMENT_PROMPT, image_bytes)
        except Exception as e:
            logger.warning("Vision document scoring failed: %s", e)
            return VisionScore(ok=True, available=False, message=f"vision error: {e}")

        if not labels:
            return VisionScore(ok=True, message="vision returned no label")
        top = max(labels, key=lambda p: _to_score(p.get("score")))
        top_score = _to_score(top.get("score"))
        return VisionScore(
            ok=top_score >= self.min_score,
            top_label=str(top.get("label") or ""),
            top_score=top_score,
        )

    def detect_objects(self, image_bytes: bytes) -> ObjectDetection:
        if not self.enabled:
            return ObjectDetection(available=False, message="vision skipped: missing API key")
        try:
            labels = self._ask(OBJECTS_PROMPT, image_bytes)
        except Exception as e:
            logger.warning("Vision object detection failed: %s", e)
            return ObjectDetection(available=False, message=f"vision error: {e}")
        objects = [
            DetectedObject(label=str(p.get("label") or "").lower(), score=_to_score(p.get("score")))
            for p in labels
        ]
        return ObjectDetection(available=True, objects=objects)
