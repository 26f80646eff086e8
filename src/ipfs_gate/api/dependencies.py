"""Shared API dependencies: service lookup, bearer credentials and scopes."""

import logging
from collections.abc import Callable
from typing import Annotated

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from ipfs_gate.services.container import GateServices
from ipfs_gate.services.rate_limit import RateLimitDecision
from ipfs_gate.services.store import StoreError
from ipfs_gate.services.tokens import AuthClaim, InvalidTokenError, TokenScope

logger = logging.getLogger(__name__)

# auto_error is off so a missing header yields 401 rather than 403
bearer_scheme = HTTPBearer(auto_error=False)


def get_services(request: Request) -> GateServices:
    """Return the services owned by the running application."""
    services: GateServices = request.app.state.services
    return services


ServicesDep = Annotated[GateServices, Depends(get_services)]


def get_current_claim(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(bearer_scheme)],
    services: ServicesDep,
) -> AuthClaim:
    """Decode the bearer credential on the request.

    Raises:
        HTTPException: 401 if the credential is absent, tampered with or expired.
    """
    if credentials is None or not credentials.credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
            headers={"WWW-Authenticate": "Bearer"},
        )
    try:
        return services.token_issuer.decode(credentials.credentials)
    except InvalidTokenError as err:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        ) from err


CurrentClaimDep = Annotated[AuthClaim, Depends(get_current_claim)]


def require_scope(scope: TokenScope) -> Callable[[AuthClaim], AuthClaim]:
    """Build a dependency that admits only credentials carrying `scope`."""

    def _check_scope(claim: CurrentClaimDep) -> AuthClaim:
        if claim.scope != scope.value:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient permissions",
            )
        return claim

    return _check_scope


UploadClaimDep = Annotated[AuthClaim, Depends(require_scope(TokenScope.IPFS_WRITE))]


def enforce_upload_rate_limit(claim: UploadClaimDep, services: ServicesDep) -> RateLimitDecision:
    """Count an upload attempt against the caller's window.

    Raises:
        HTTPException: 429 once the caller has used up the window, 503 if the
            shared state cannot be reached.
    """
    services.metrics.record_upload_attempt(claim.community_id)
    try:
        decision = services.rate_limiter.check_and_record(claim.rate_limit_identity)
    except StoreError as err:
        logger.error("State store unavailable: %s", err)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Rate limit state unavailable",
        ) from err
    if not decision.allowed:
        services.metrics.record_rate_limited(claim.community_id)
        logger.warning(
            "Upload rate limit exceeded for %s in %s", claim.subject, claim.community_id
        )
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail={
                "error": "Rate limit exceeded",
                "details": f"Maximum {services.rate_limiter.limit} uploads per day",
            },
        )
    return decision


RateLimitDep = Annotated[RateLimitDecision, Depends(enforce_upload_rate_limit)]
