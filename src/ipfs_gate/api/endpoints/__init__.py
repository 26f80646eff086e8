"""API endpoint modules."""

from .auth import router as auth_router
from .ipfs import router as ipfs_router

__all__ = ["auth_router", "ipfs_router"]
