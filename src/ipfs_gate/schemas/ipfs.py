"""Upload proxy schemas."""

from pydantic import BaseModel, ConfigDict, Field


class UploadResponse(BaseModel):
    """Result of a proxied upload, mirroring the IPFS add response."""

    hash: str = Field(..., alias="Hash")
    name: str = Field(..., alias="Name")
    size: str = Field(..., alias="Size")
    remaining_uploads: int

    model_config = ConfigDict(populate_by_name=True)
