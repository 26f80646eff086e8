"""Upload proxy: the operation protected by the gate."""

from __future__ import annotations

import logging
import re
from typing import Annotated, Final

from fastapi import APIRouter, File, HTTPException, Path, Response, UploadFile, status

from ipfs_gate.api.dependencies import RateLimitDep, ServicesDep, UploadClaimDep
from ipfs_gate.schemas.common import ErrorResponse
from ipfs_gate.schemas.ipfs import UploadResponse
from ipfs_gate.services.ipfs import IpfsError, IpfsNotFoundError

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/ipfs",
    tags=["ipfs"],
    responses={
        400: {"model": ErrorResponse},
        502: {"model": ErrorResponse},
    },
)

CID_PATTERN: Final = re.compile(r"^Qm[a-zA-Z0-9]{44}$|^bafy[a-zA-Z0-9]{50,}$")
_READ_CHUNK_BYTES: Final[int] = 64 * 1024


async def _read_limited(upload: UploadFile, limit: int) -> bytes:
    """Read the upload, refusing anything larger than `limit` bytes."""
    chunks: list[bytes] = []
    total = 0
    while chunk := await upload.read(_READ_CHUNK_BYTES):
        total += len(chunk)
        if total > limit:
            raise HTTPException(
                status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
                detail={"error": "File too large", "details": f"Maximum size is {limit} bytes"},
            )
        chunks.append(chunk)
    return b"".join(chunks)


@router.post(
    "/add",
    summary="Upload and pin a file",
    response_model=UploadResponse,
)
async def add_file(
    claim: UploadClaimDep,
    rate_limit: RateLimitDep,
    services: ServicesDep,
    file: Annotated[UploadFile, File(...)],
) -> UploadResponse:
    """Forward the uploaded file to the IPFS node on behalf of an authorised member."""
    try:
        content = await _read_limited(file, services.settings.max_upload_bytes)
    except HTTPException:
        services.metrics.record_upload_failure("too_large")
        raise
    if not content:
        services.metrics.record_upload_failure("no_file")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="No file provided",
        )

    try:
        result = await services.ipfs.add(file.filename or "file", content, file.content_type)
    except IpfsError as err:
        services.metrics.record_upload_failure("ipfs_error")
        logger.error("IPFS upload failed for %s: %s", claim.subject, err)
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="IPFS upload failed",
        ) from err

    services.metrics.record_upload_success(claim.community_id, len(content))
    logger.info(
        "File uploaded to IPFS by %s in %s: hash=%s size=%s",
        claim.subject,
        claim.community_id,
        result.hash,
        result.size,
    )
    return UploadResponse(
        hash=result.hash,
        name=result.name,
        size=result.size,
        remaining_uploads=rate_limit.remaining,
    )


@router.get("/cat/{cid}", summary="Retrieve content by CID")
async def cat_file(cid: Annotated[str, Path()], services: ServicesDep) -> Response:
    """Return stored content. Public, no credential required."""
    if not CID_PATTERN.match(cid):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid CID",
        )
    try:
        content = await services.ipfs.cat(cid)
    except IpfsNotFoundError as err:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Content not found",
        ) from err
    except IpfsError as err:
        logger.error("IPFS cat failed for %s: %s", cid, err)
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="IPFS retrieval failed",
        ) from err
    return Response(content=content, media_type="application/octet-stream")
