"""Business logic services for the upload gate."""

from .crypto import SignatureVerifier, init_signature_verifier
from .membership import MembershipGate, MembershipUnavailableError
from .metrics import GateMetrics
from .nonce import NonceManager, NonceStatus
from .rate_limit import RateLimiter
from .tokens import AuthClaim, TokenIssuer, TokenScope

__all__ = [
    "AuthClaim",
    "GateMetrics",
    "MembershipGate",
    "MembershipUnavailableError",
    "NonceManager",
    "NonceStatus",
    "RateLimiter",
    "SignatureVerifier",
    "TokenIssuer",
    "TokenScope",
    "init_signature_verifier",
]
