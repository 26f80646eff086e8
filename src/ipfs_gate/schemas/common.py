"""Common response schemas."""

from pydantic import BaseModel


class ErrorResponse(BaseModel):
    """Body returned for every non-2xx response."""

    error: str
    details: str | None = None
