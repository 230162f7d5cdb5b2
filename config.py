from pydantic_settings import BaseSettings
from typing import Dict, Any, Optional

class Settings(BaseSettings):
    # OpenAI Configuration (optional vision realness scorer)
    OPENAI_API_KEY: Optional[str] = None
    VISION_MODEL: str = "gpt-4.1-mini"
    # Top-label confidence below which a document is reported as not recognised
    VISION_MIN_SCORE: float = 0.6

    # Face detection (OpenCV YuNet)
    FACE_MODEL_DIR: str = "models"
    YUNET_FILE: str = "face_detection_yunet_2023mar.onnx"
    YUNET_URL: Optional[str] = None
    FACE_DETECTION_SCORE_THRESHOLD: float = 0.6

    # OCR (Tesseract)
    TESSERACT_CMD: Optional[str] = None
    OCR_LANG: str = "eng+fra"

    # External capability time box, in seconds
    CAPABILITY_TIMEOUT: float = 20.0
    # Worker threads per capability
    CAPABILITY_MAX_WORKERS: int = 8
    PIPELINE_MAX_WORKERS: int = 6

    # Intake limits
    FILE_MIN_SIZE_BYTES: int = 30 * 1024
    FILE_MAX_SIZE_BYTES: int = 10 * 1024 * 1024
    IMG_MIN_WIDTH: int = 200
    IMG_MIN_HEIGHT: int = 200
    IMG_MAX_WIDTH: int = 8000
    IMG_MAX_HEIGHT: int = 8000

    # Decision Rules
    SCORE_PASS_THRESHOLD: float = 85
    SCORE_REVIEW_THRESHOLD: float = 60
    FACE_UNAVAILABLE_CREDIT: float = 0.7

    # Logging
    LOG_LEVEL: str = "INFO"
    PHOTO_LOG_ENABLED: bool = True

    class Config:
        env_file = ".env"

settings = Settings()

# Photo threshold sets. "tolerant" applies when face detection is unavailable:
# looser noise thresholds, but the photo still goes to manual review.
PHOTO_THRESHOLDS: Dict[str, Dict[str, Any]] = {
    "normal": {
        "bg_std_max": {"profile": 20, "passport": 25, "driver_license": 25},
        "blur_min": 12,
        "contrast_min": 4,
        "white_ratio_min": 0.65,
        "brightness_min": 160,
        "white_edge_min": 0.75,
        "global_score_min": 0.60,
    },
    "tolerant": {
        "bg_std_max": {"profile": 35, "passport": 35, "driver_license": 35},
        "blur_min": 12,
        "contrast_min": 4,
        "white_ratio_min": 0.4,
        "brightness_min": 120,
        "white_edge_min": 0.5,
        "global_score_min": 0.40,
    },
}

PHOTO_RULES: Dict[str, Any] = {
    "rgb_delta_max": {"profile": 35, "passport": 50, "driver_license": 50},
    "passport_min_dimension": 500,
    "profile_min_square": 200,
    "normalized_dimension": 500,
    # 0 disables the declared-DPI check
    "min_dpi": 0,
    "confidence_min": {"passport": 0.85, "profile": 0.90},
    "strict_confidence_min": 0.92,
    "min_face_area_ratio": 0.04,
    "head_height_ratio": (0.70, 0.80),
    "head_area_ratio": (0.18, 0.70),
    "fraud_max": 0.3,
    "invalid_face_fraud_max": 0.5,
    "quality_min": 0.5,
    "invalid_face_quality_min": 0.3,
    "face_dark_max": 100,
    "face_bright_min": 230,
    "animal_min_score": 0.4,
    "person_min_score": 0.5,
}

# Signature override is a tunable false-positive mitigation, not a security rule
SIGNATURE_RULES: Dict[str, Any] = {
    "invisible_brightness": 252,
    "invisible_contrast": 6,
    "blur_min": 8,
    "ink_min": 0.001,
    "uniform_bg_std": 1.2,
    "uniform_ink": 0.01,
    "uniform_contrast": 4.5,
    "white_ratio_min": 0.55,
    "brightness_min": 165,
    "rgb_delta_max": 65,
    "override_enabled": True,
    "override_min_side": 250,
    "override_ink_min": 0.0002,
    "override_contrast_min": 2.8,
}

CARD_SIDE_RULES: Dict[str, Any] = {
    "width_tolerance": 0.2,
    "identical_hash_distance": 10,
    "min_side": 400,
    "hash_size": 32,
}

SCORE_WEIGHTS: Dict[str, float] = {
    "photo": 0.2,
    "face": 0.3,
    "signature": 0.1,
    "front": 0.15,
    "back": 0.15,
    "ocr": 0.1,
}

ALLOWED_MIME_TYPES = {"image/jpeg", "image/jpg", "image/png"}

UPLOAD_FIELDS = ("photo", "signature", "front", "back")

PHOTO_KINDS = ("profile", "passport", "driver_license")

# Driver license category codes, canonical order
LICENSE_CATEGORIES = ["A1", "A", "B1", "B", "C1", "C", "D1", "D", "BE", "CE", "DE"]

LICENSE_CATEGORY_REGEX = r"\b(A1|A|B1|B|C1|C|D1|D|BE|CE|DE)\b"

# dd.mm.yy or dd.mm.yyyy with . / - separators
DATE_REGEX = r"\b(\d{2})[./-](\d{2})[./-](\d{2,4})\b"

PAIRED_DATE_REGEX = r"\b\d{2}[./-]\d{2}[./-]\d{2,4}\b.*\b\d{2}[./-]\d{2}[./-]\d{2,4}\b"

# Passport (TD3, 44 chars) or TD2 (36 chars) two-line machine readable zone
MRZ_REGEX = r"^([A-Z0-9<]{44}\n[A-Z0-9<]{44}|[A-Z0-9<]{36}\n[A-Z0-9<]{36})$"
