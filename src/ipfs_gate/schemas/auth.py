"""Challenge/verify handshake schemas."""

from pydantic import BaseModel, ConfigDict, Field


class ChallengeRequest(BaseModel):
    """Request for a challenge bound to an address and community."""

    address: str = Field(..., description="SS58-encoded account address")
    community_id: str = Field(..., alias="communityId", description="Community identifier")

    model_config = ConfigDict(populate_by_name=True)


class ChallengeResponse(BaseModel):
    """Challenge the client must sign."""

    nonce: str = Field(..., description="Hex-encoded single-use nonce")
    timestamp: int = Field(..., description="Issue time in epoch milliseconds")
    message: str = Field(..., description="Exact message to sign")


class VerifyRequest(BaseModel):
    """Signed answer to a previously issued challenge."""

    address: str = Field(..., description="SS58-encoded account address")
    community_id: str = Field(..., alias="communityId", description="Community identifier")
    signature: str = Field(..., description="Hex signature over the challenge message")
    nonce: str = Field(..., description="Nonce returned by /auth/challenge")
    timestamp: int = Field(..., description="Timestamp returned by /auth/challenge")

    model_config = ConfigDict(populate_by_name=True)


class VerifyResponse(BaseModel):
    """Bearer credential issued after a successful verification."""

    token: str = Field(..., description="Signed bearer token")
    expires_at: int = Field(..., description="Token expiry in epoch milliseconds")
