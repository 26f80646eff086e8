"""Background task sweeping expired nonces and rate-limit windows."""

from __future__ import annotations

import asyncio
import logging

from ipfs_gate.services.nonce import NonceManager
from ipfs_gate.services.rate_limit import RateLimiter
from ipfs_gate.services.store import StoreError

logger = logging.getLogger(__name__)


class StateReaper:
    """Periodically removes expired state so memory stays bounded.

    Validation already drops expired nonces it touches; this sweep catches the
    ones nobody comes back for.
    """

    def __init__(
        self,
        nonce_manager: NonceManager,
        rate_limiter: RateLimiter | None = None,
        interval_seconds: float = 60.0,
    ) -> None:
        self._nonce_manager = nonce_manager
        self._rate_limiter = rate_limiter
        self._interval = max(0.01, float(interval_seconds))
        self._task: asyncio.Task[None] | None = None
        self._stopping = asyncio.Event()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def run_once(self) -> tuple[int, int]:
        """Sweep once. Returns (nonces removed, rate-limit entries removed)."""
        nonces = self._nonce_manager.reap()
        windows = self._rate_limiter.reap() if self._rate_limiter is not None else 0
        return nonces, windows

    async def start(self) -> None:
        """Start the background sweep loop."""
        if self._task is None or self._task.done():
            self._stopping = asyncio.Event()
            self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        """Stop the loop and wait for it to finish."""
        if self._task is None:
            return
        self._stopping.set()
        await self._task
        self._task = None

    async def _run(self) -> None:
        while not self._stopping.is_set():
            try:
                # Store calls may block on network I/O.
                nonces, windows = await asyncio.to_thread(self.run_once)
                if nonces or windows:
                    logger.debug("Reaper removed %d nonces and %d windows", nonces, windows)
            except StoreError as e:
                logger.warning("Reaper could not reach the state store: %s", e)
            except (ValueError, TypeError, KeyError) as e:
                logger.error("Reaper encountered unreadable state: %s", e, exc_info=True)
            except Exception:
                logger.exception("Reaper sweep failed")

            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=self._interval)
            except asyncio.TimeoutError:
                continue
