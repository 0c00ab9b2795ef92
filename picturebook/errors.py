"""Error taxonomy for the generation pipeline"""

from typing import Any, Dict, Optional


class PictureBookError(Exception):
    """Base class for pipeline errors"""
    kind = "internal"
    retryable = False

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_payload(self) -> Dict[str, Any]:
        """Structured error payload returned to callers"""
        payload = {
            "error": self.message,
            "kind": self.kind,
            "retryable": self.retryable,
        }
        if self.details:
            payload["details"] = self.details
        return payload


class ConfigurationError(PictureBookError):
    """Missing credentials or invalid configuration"""
    kind = "configuration"


class TransientUpstreamError(PictureBookError):
    """Rate limit or overload reported by an upstream model"""
    kind = "transient_upstream"
    retryable = True

    def __init__(self, message: str, status: Optional[int] = None, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details)
        self.status = status


class MalformedResponseError(PictureBookError):
    """Model output could not be parsed into the expected structure"""
    kind = "malformed_response"


class NoImageGeneratedError(PictureBookError):
    """Image model returned no image data"""
    kind = "no_image"


class NotFoundError(PictureBookError):
    """Story, character or page does not exist"""
    kind = "not_found"


class InvalidInputError(PictureBookError):
    """Caller-supplied settings or arguments failed validation"""
    kind = "invalid_input"


class InvalidTransitionError(PictureBookError):
    """Workflow transition not allowed from the current state"""
    kind = "invalid_transition"


def error_payload(exc: BaseException) -> Dict[str, Any]:
    """Convert any exception into a structured payload"""
    if isinstance(exc, PictureBookError):
        return exc.to_payload()
    return {
        "error": str(exc) or exc.__class__.__name__,
        "kind": "internal",
        "retryable": False,
    }
