"""Error types for PlanIt places.

Only transport failures ever reach UI-facing callers, and then as a flag on
the result object rather than as an exception. Exhausted sources and stale
results are ordinary states, not errors.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class ErrorCode(str, Enum):
    """Error codes used in API error envelopes."""

    VALIDATION_ERROR = "VALIDATION_ERROR"
    TRANSPORT_ERROR = "TRANSPORT_ERROR"
    NO_LOCATION = "NO_LOCATION"
    NOT_FOUND = "NOT_FOUND"
    API_ERROR = "API_ERROR"


class AppError(BaseModel):
    """Error envelope returned by the HTTP surface."""

    code: ErrorCode
    message: str = Field(..., description="Technical message for logs")
    user_message: str = Field(..., description="Message safe to show to users")
    retryable: bool = False


class PlanItError(Exception):
    """Base class for library errors."""


class TransportFailure(PlanItError):
    """A remote call failed: network error, timeout, HTTP or provider status.

    Non-fatal. Existing cache entries stay valid and servable.
    """

    def __init__(self, message: str, status: Optional[str] = None) -> None:
        super().__init__(message)
        self.status = status


class SerializationFailure(PlanItError):
    """A cache snapshot could not be encoded or decoded."""
