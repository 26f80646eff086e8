"""HTTP API for the upload gate."""

from .endpoints import auth_router, ipfs_router

__all__ = ["auth_router", "ipfs_router"]
