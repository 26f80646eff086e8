"""Scoped bearer credentials asserting that an address passed the gate."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from enum import Enum

from jose import JWTError, jwt


class TokenScope(str, Enum):
    """Capabilities a credential can grant."""

    IPFS_WRITE = "ipfs:write"


class InvalidTokenError(ValueError):
    """Raised when a credential fails integrity, expiry or claim checks."""


@dataclass(frozen=True)
class AuthClaim:
    """Claims carried by an issued credential."""

    subject: str
    community_id: str
    scope: str

    @property
    def rate_limit_identity(self) -> str:
        return f"{self.subject}:{self.community_id}"


class TokenIssuer:
    """Mints and verifies HMAC-signed JWTs.

    Verification is stateless: any process holding the same secret can check a
    token without consulting shared storage.
    """

    def __init__(
        self,
        secret: str,
        algorithm: str = "HS256",
        default_ttl: timedelta = timedelta(hours=1),
    ) -> None:
        if not secret:
            raise ValueError("Token signing secret must not be empty")
        self._secret = secret
        self._algorithm = algorithm
        self._default_ttl = default_ttl

    @property
    def default_ttl(self) -> timedelta:
        return self._default_ttl

    def issue(
        self,
        subject: str,
        community_id: str,
        scope: TokenScope | str,
        ttl: timedelta | None = None,
    ) -> tuple[str, datetime]:
        """Create a credential for `subject` in `community_id` with `scope`.

        Returns:
            Tuple of (encoded token, expiry instant)
        """
        now = datetime.now(UTC).replace(microsecond=0)
        expires_at = now + (ttl or self._default_ttl)
        claims: dict[str, object] = {
            "sub": subject,
            "cid": community_id,
            "scope": scope.value if isinstance(scope, TokenScope) else scope,
            "iat": now,
            "exp": expires_at,
        }
        token: str = jwt.encode(claims, self._secret, algorithm=self._algorithm)
        return token, expires_at

    def decode(self, token: str) -> AuthClaim:
        """Verify `token` and return its claims.

        Raises:
            InvalidTokenError: If the signature, expiry or claim shape is invalid.
        """
        try:
            payload = jwt.decode(token, self._secret, algorithms=[self._algorithm])
        except JWTError as err:
            raise InvalidTokenError(str(err)) from err

        subject = payload.get("sub")
        community_id = payload.get("cid")
        scope = payload.get("scope")
        if not all(isinstance(v, str) and v for v in (subject, community_id, scope)):
            raise InvalidTokenError("Token is missing required claims")
        return AuthClaim(subject=subject, community_id=community_id, scope=scope)
