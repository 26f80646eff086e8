"""Explicit wiring of the gate's services for one process."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass

from ipfs_gate.core.settings import Settings
from ipfs_gate.services.crypto import SignatureVerifier, init_signature_verifier
from ipfs_gate.services.ipfs import IpfsClient
from ipfs_gate.services.ledger import LedgerClient, SubstrateLedger
from ipfs_gate.services.membership import MembershipGate
from ipfs_gate.services.metrics import GateMetrics
from ipfs_gate.services.nonce import NonceManager
from ipfs_gate.services.rate_limit import RateLimiter
from ipfs_gate.services.reaper import StateReaper
from ipfs_gate.services.store import StateStore, build_state_store
from ipfs_gate.services.tokens import TokenIssuer

logger = logging.getLogger(__name__)


@dataclass
class GateServices:
    """Every collaborator the HTTP layer needs, owned by the application."""

    settings: Settings
    store: StateStore
    nonce_manager: NonceManager
    verifier: SignatureVerifier
    membership: MembershipGate
    token_issuer: TokenIssuer
    rate_limiter: RateLimiter
    reaper: StateReaper
    ledger: LedgerClient
    ipfs: IpfsClient
    metrics: GateMetrics

    async def start(self) -> None:
        await self.reaper.start()

    async def close(self) -> None:
        await self.reaper.stop()
        await self.ledger.close()
        await self.ipfs.close()
        self.store.close()


def build_services(
    settings: Settings,
    *,
    store: StateStore | None = None,
    ledger: LedgerClient | None = None,
    ipfs: IpfsClient | None = None,
    metrics: GateMetrics | None = None,
    clock: Callable[[], float] = time.time,
) -> GateServices:
    """Construct the service graph from `settings`.

    Collaborators can be passed in to replace the defaults built from settings.
    """
    store = store if store is not None else build_state_store(settings.redis_url)
    ledger = ledger if ledger is not None else SubstrateLedger(
        settings.chain_rpc_url,
        timeout_seconds=settings.chain_query_timeout_seconds,
    )
    ipfs = ipfs if ipfs is not None else IpfsClient(
        settings.ipfs_api_url,
        timeout_seconds=settings.ipfs_timeout_seconds,
    )

    nonce_manager = NonceManager(store, ttl_seconds=settings.nonce_ttl_seconds, clock=clock)
    rate_limiter = RateLimiter(
        store,
        limit=settings.rate_limit_uploads_per_day,
        window_seconds=settings.rate_limit_window_seconds,
        clock=clock,
    )
    services = GateServices(
        settings=settings,
        store=store,
        nonce_manager=nonce_manager,
        verifier=init_signature_verifier(settings.signature_scheme, settings.ss58_format),
        membership=MembershipGate(
            ledger,
            min_balance=settings.min_balance_cc,
            timeout_seconds=settings.chain_query_timeout_seconds,
        ),
        token_issuer=TokenIssuer(
            settings.jwt_secret,
            algorithm=settings.jwt_algorithm,
            default_ttl=settings.token_ttl,
        ),
        rate_limiter=rate_limiter,
        reaper=StateReaper(
            nonce_manager,
            rate_limiter,
            interval_seconds=settings.nonce_reap_interval_seconds,
        ),
        ledger=ledger,
        ipfs=ipfs,
        metrics=metrics if metrics is not None else GateMetrics(),
    )
    logger.info(
        "Gate services ready (scheme=%s, min balance=%s, uploads/window=%d)",
        services.verifier.scheme_name,
        settings.min_balance_cc,
        settings.rate_limit_uploads_per_day,
    )
    return services
