"""JSON envelopes shared by every endpoint.

Success bodies are ``{"data": ...}``; failures are
``{"error": {"code", "message", "details"}}`` and are only built by the
exception handlers in main.py.
"""

from typing import Generic, TypeVar

from pydantic import BaseModel

T = TypeVar("T")


class DataResponse(BaseModel, Generic[T]):
    """Success envelope: ``DataResponse(data=IssuanceAccepted(...))``."""

    data: T


class ErrorDetail(BaseModel):
    """Body of the error envelope.

    Attributes:
        code: Stable machine-readable code, e.g. "EXPIRED_CREDENTIAL".
        message: Text safe to show the end user.
        details: Extra context such as field errors or retry_after_seconds.
    """

    code: str
    message: str
    details: list[dict] | None = None


class ErrorResponse(BaseModel):
    error: ErrorDetail
