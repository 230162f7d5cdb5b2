from typing import Any, Dict, Optional


class ValidationServiceError(Exception):
    """Base class for errors raised by the validation package"""


class IntakeError(ValidationServiceError):
    """
    Submission rejected before any analyzer runs.
    code is one of UNSUPPORTED_MEDIA_TYPE, MISSING_FILE, INVALID_SIZE, INVALID_DIMENSIONS
    """

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None,
                 status_code: int = 400):
        super().__init__(message)
        self.code = code
        self.message = message
        self.details = details or {}
        self.status_code = status_code

    def to_dict(self) -> Dict[str, Any]:
        body = {"error": self.message, "code": self.code}
        if self.details:
            body["details"] = self.details
        return body


class InvalidImageError(ValidationServiceError):
    """Image bytes could not be decoded"""


class CapabilityUnavailable(ValidationServiceError):
    """An external capability (face detector, OCR engine, vision scorer) failed or timed out"""

    def __init__(self, capability: str, reason: str):
        super().__init__(f"{capability} unavailable: {reason}")
        self.capability = capability
        self.reason = reason


class ValidationCancelled(ValidationServiceError):
    """The caller aborted the request; partial stage results were discarded"""
