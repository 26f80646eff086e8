"""Pydantic schemas for request/response validation."""

from .auth import ChallengeRequest, ChallengeResponse, VerifyRequest, VerifyResponse
from .common import ErrorResponse
from .ipfs import UploadResponse

__all__ = [
    "ChallengeRequest",
    "ChallengeResponse",
    "ErrorResponse",
    "UploadResponse",
    "VerifyRequest",
    "VerifyResponse",
]
