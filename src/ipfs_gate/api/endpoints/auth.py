"""Challenge-response authentication endpoints."""

from __future__ import annotations

import asyncio
import logging

from fastapi import APIRouter, HTTPException, status

from ipfs_gate.api.dependencies import ServicesDep
from ipfs_gate.schemas.auth import (
    ChallengeRequest,
    ChallengeResponse,
    VerifyRequest,
    VerifyResponse,
)
from ipfs_gate.schemas.common import ErrorResponse
from ipfs_gate.services.container import GateServices
from ipfs_gate.services.membership import MembershipUnavailableError, is_valid_community_id
from ipfs_gate.services.nonce import NonceStatus
from ipfs_gate.services.store import StoreError
from ipfs_gate.services.tokens import TokenScope

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/auth",
    tags=["authentication"],
    responses={
        400: {"model": ErrorResponse},
        401: {"model": ErrorResponse},
        403: {"model": ErrorResponse},
        503: {"model": ErrorResponse},
    },
)


def _validate_identity(
    services: GateServices,
    address: str,
    community_id: str,
    *,
    count_failure: bool = False,
) -> None:
    """Reject malformed addresses and community ids before doing any work."""
    if not services.verifier.is_valid_address_format(address):
        if count_failure:
            services.metrics.record_verify_failure("invalid_address")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid SS58 address",
        )
    if not is_valid_community_id(community_id):
        if count_failure:
            services.metrics.record_verify_failure("invalid_community")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid community ID",
        )


def _store_unavailable(err: StoreError) -> HTTPException:
    logger.error("State store unavailable: %s", err)
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail="Authentication state unavailable",
    )


@router.post(
    "/challenge",
    summary="Issue a signable challenge",
    response_model=ChallengeResponse,
)
async def issue_challenge(payload: ChallengeRequest, services: ServicesDep) -> ChallengeResponse:
    """Issue a nonce bound to the address and community, and the message to sign."""
    _validate_identity(services, payload.address, payload.community_id)

    try:
        nonce, timestamp = await asyncio.to_thread(
            services.nonce_manager.issue,
            payload.address,
            payload.community_id,
        )
    except StoreError as err:
        raise _store_unavailable(err) from err

    services.metrics.record_challenge(payload.community_id)
    logger.info("Challenge issued for %s in %s", payload.address, payload.community_id)
    return ChallengeResponse(
        nonce=nonce,
        timestamp=timestamp,
        message=services.verifier.build_challenge_message(nonce, timestamp, payload.community_id),
    )


@router.post(
    "/verify",
    summary="Exchange a signed challenge for a scoped token",
    response_model=VerifyResponse,
)
async def verify_challenge(payload: VerifyRequest, services: ServicesDep) -> VerifyResponse:
    """Check the signature, consume the nonce, apply the membership gate and issue a token."""
    address, community_id = payload.address, payload.community_id
    _validate_identity(services, address, community_id, count_failure=True)
    metrics = services.metrics
    metrics.record_verify_attempt(community_id)

    message = services.verifier.build_challenge_message(
        payload.nonce,
        payload.timestamp,
        community_id,
    )
    if not services.verifier.verify(message, payload.signature, address):
        metrics.record_verify_failure("invalid_signature")
        logger.warning("Verify failed for %s in %s: invalid signature", address, community_id)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid signature",
        )

    try:
        outcome = await asyncio.to_thread(
            services.nonce_manager.validate_and_consume,
            payload.nonce,
            address,
            community_id,
            payload.timestamp,
        )
    except StoreError as err:
        metrics.record_verify_failure("store_unavailable")
        raise _store_unavailable(err) from err

    if outcome is not NonceStatus.VALID:
        metrics.record_verify_failure("invalid_nonce")
        logger.warning(
            "Verify failed for %s in %s: nonce %s", address, community_id, outcome.value
        )
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=outcome.message,
        )

    try:
        is_member = await services.membership.is_member(address, community_id)
    except MembershipUnavailableError as err:
        metrics.record_verify_failure("ledger_unavailable")
        logger.error("Membership check for %s in %s failed: %s", address, community_id, err)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={
                "error": "Membership could not be determined",
                "details": "Ledger unavailable, retry later",
            },
        ) from err

    metrics.record_account_check(community_id, passed=is_member)
    if not is_member:
        metrics.record_verify_failure("not_cc_holder")
        logger.warning("Verify failed for %s in %s: not a CC holder", address, community_id)
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={
                "error": "Not a CC holder",
                "details": f"Minimum balance of {services.membership.min_balance} CC required",
            },
        )

    token, expires_at = services.token_issuer.issue(address, community_id, TokenScope.IPFS_WRITE)
    metrics.record_verify_success(community_id)
    logger.info("Authentication successful for %s in %s", address, community_id)
    return VerifyResponse(token=token, expires_at=int(expires_at.timestamp() * 1000))
