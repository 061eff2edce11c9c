"""
Error taxonomy shared by the text client, the translator and the API layer
"""

from typing import Optional


class TranslationServiceError(Exception):
    """Base class for all errors raised by this service"""


class ValidationError(TranslationServiceError):
    """Missing or malformed input - the request is not attempted"""


class AuthorizationError(TranslationServiceError):
    """No authenticated user for the request"""


class UpstreamError(TranslationServiceError):
    """
    The text service or the translator failed

    Args:
        message: Human readable message
        status_code: HTTP status returned by the upstream service, if any
    """

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class PersistenceError(TranslationServiceError):
    """Writing a translation record failed"""


class ProtocolDecodeError(TranslationServiceError):
    """A stream frame could not be decoded"""

    def __init__(self, frame: str, reason: str = ""):
        super().__init__(f"Malformed frame: {reason}" if reason else "Malformed frame")
        self.frame = frame
