import io
import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

from PIL import Image

from config import settings, ALLOWED_MIME_TYPES, PHOTO_KINDS, UPLOAD_FIELDS
from .errors import IntakeError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Upload:
    field: str
    content_type: str
    data: bytes


@dataclass(frozen=True)
class IntakeLimits:
    min_bytes: int
    max_bytes: int
    min_width: int
    min_height: int
    max_width: int
    max_height: int

    @classmethod
    def from_settings(cls, s=None) -> "IntakeLimits":
        s = s or settings
        return cls(
            min_bytes=s.FILE_MIN_SIZE_BYTES,
            max_bytes=s.FILE_MAX_SIZE_BYTES,
            min_width=s.IMG_MIN_WIDTH,
            min_height=s.IMG_MIN_HEIGHT,
            max_width=s.IMG_MAX_WIDTH,
            max_height=s.IMG_MAX_HEIGHT,
        )


@dataclass(frozen=True)
class Submission:
    photo: Optional[bytes] = None
    signature: Optional[bytes] = None
    front: Optional[bytes] = None
    back: Optional[bytes] = None
    photo_type: str = "profile"
    customer_id: Optional[int] = None
    kyc_step: str = "step3"

    def artifacts(self) -> Dict[str, bytes]:
        return {k: getattr(self, k) for k in UPLOAD_FIELDS if getattr(self, k) is not None}


def image_size(data: bytes):
    """(width, height) from the image header, or None when unreadable"""
    try:
        with Image.open(io.BytesIO(data)) as im:
            return im.size
    except (OSError, ValueError):
        return None


def validate_uploads(uploads: Iterable[Upload], limits: Optional[IntakeLimits] = None) -> List[Upload]:
    """
    Reject the submission before analysis: media type first, then missing
    files, size bounds and dimension bounds. Returns the accepted uploads.
    """
    limits = limits or IntakeLimits.from_settings()
    uploads = [u for u in uploads if u.field in UPLOAD_FIELDS]

    invalid_formats = [
        f"{u.field}:{u.content_type or 'unknown'}"
        for u in uploads if (u.content_type or "").lower() not in ALLOWED_MIME_TYPES
    ]
    if invalid_formats:
        raise IntakeError("UNSUPPORTED_MEDIA_TYPE", "Unsupported format, please use JPG or PNG",
                          {"invalid": invalid_formats}, status_code=415)

    if not uploads:
        raise IntakeError("MISSING_FILE", "No files provided")

    size_violations = [
        f"{u.field}:{len(u.data)}B"
        for u in uploads if not limits.min_bytes <= len(u.data) <= limits.max_bytes
    ]
    if size_violations:
        raise IntakeError("INVALID_SIZE", "File size out of bounds", {
            "min_bytes": limits.min_bytes,
            "max_bytes": limits.max_bytes,
            "invalid": size_violations,
        })

    dim_violations = []
    for u in uploads:
        size = image_size(u.data)
        if size is None:
            dim_violations.append(f"{u.field}:unreadable")
            continue
        w, h = size
        if not (limits.min_width <= w <= limits.max_width and limits.min_height <= h <= limits.max_height):
            dim_violations.append(f"{u.field}:{w}x{h}")
    if dim_violations:
        raise IntakeError("INVALID_DIMENSIONS", "Image dimensions out of bounds", {
            "min_width": limits.min_width,
            "min_height": limits.min_height,
            "max_width": limits.max_width,
            "max_height": limits.max_height,
            "invalid": dim_violations,
        })
    return uploads


def build_submission(uploads: Iterable[Upload], photo_type: Optional[str] = None,
                     customer_id=None, kyc_step: Optional[str] = None,
                     limits: Optional[IntakeLimits] = None) -> Submission:
    accepted = validate_uploads(uploads, limits)
    files = {u.field: u.data for u in accepted}

    cid = None
    try:
        cid = int(customer_id) if customer_id not in (None, "") else None
    except (TypeError, ValueError):
        logger.debug("Ignoring non-numeric customer id %r", customer_id)
    if cid is not None and cid <= 0:
        cid = None

    return Submission(
        photo=files.get("photo"),
        signature=files.get("signature"),
        front=files.get("front"),
        back=files.get("back"),
        photo_type=photo_type if photo_type in PHOTO_KINDS else "profile",
        customer_id=cid,
        kyc_step=kyc_step or "step3",
    )
