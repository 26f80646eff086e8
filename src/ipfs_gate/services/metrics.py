"""Prometheus counters for authentication, membership and upload events."""

from __future__ import annotations

from prometheus_client import CollectorRegistry, Counter, generate_latest


class GateMetrics:
    """Counters for one application instance.

    Each instance owns its registry so several apps (and tests) can coexist in
    one process. Counter names follow the ``ipfs_*_total`` convention.
    """

    def __init__(self, registry: CollectorRegistry | None = None) -> None:
        self.registry = registry if registry is not None else CollectorRegistry()

        self.challenges = Counter(
            "ipfs_auth_challenge",
            "Challenges issued",
            ["community_id"],
            registry=self.registry,
        )
        self.verify_attempts = Counter(
            "ipfs_auth_verify",
            "Verify requests with a well-formed identity",
            ["community_id"],
            registry=self.registry,
        )
        self.verify_successes = Counter(
            "ipfs_auth_verify_success",
            "Tokens issued",
            ["community_id"],
            registry=self.registry,
        )
        self.verify_failures = Counter(
            "ipfs_auth_verify_failure",
            "Rejected verify requests",
            ["reason"],
            registry=self.registry,
        )
        self.account_checks = Counter(
            "ipfs_account_check",
            "Membership checks answered by the ledger",
            ["community_id", "result"],
            registry=self.registry,
        )
        self.uploads = Counter(
            "ipfs_upload",
            "Authorised upload attempts",
            ["community_id"],
            registry=self.registry,
        )
        self.upload_successes = Counter(
            "ipfs_upload_success",
            "Uploads stored by the IPFS node",
            ["community_id"],
            registry=self.registry,
        )
        self.upload_failures = Counter(
            "ipfs_upload_failure",
            "Uploads that were not stored",
            ["reason"],
            registry=self.registry,
        )
        self.upload_bytes = Counter(
            "ipfs_upload_bytes",
            "Bytes stored by successful uploads",
            registry=self.registry,
        )
        self.rate_limited = Counter(
            "ipfs_rate_limit_exceeded",
            "Uploads refused by the rate limiter",
            ["community_id"],
            registry=self.registry,
        )

    def record_challenge(self, community_id: str) -> None:
        self.challenges.labels(community_id=community_id).inc()

    def record_verify_attempt(self, community_id: str) -> None:
        self.verify_attempts.labels(community_id=community_id).inc()

    def record_verify_success(self, community_id: str) -> None:
        self.verify_successes.labels(community_id=community_id).inc()

    def record_verify_failure(self, reason: str) -> None:
        self.verify_failures.labels(reason=reason).inc()

    def record_account_check(self, community_id: str, passed: bool) -> None:
        result = "passed" if passed else "failed"
        self.account_checks.labels(community_id=community_id, result=result).inc()

    def record_upload_attempt(self, community_id: str) -> None:
        self.uploads.labels(community_id=community_id).inc()

    def record_upload_success(self, community_id: str, size_bytes: int) -> None:
        self.upload_successes.labels(community_id=community_id).inc()
        if size_bytes > 0:
            self.upload_bytes.inc(size_bytes)

    def record_upload_failure(self, reason: str) -> None:
        self.upload_failures.labels(reason=reason).inc()

    def record_rate_limited(self, community_id: str) -> None:
        self.rate_limited.labels(community_id=community_id).inc()

    def render(self) -> bytes:
        """Return the registry in the Prometheus text exposition format."""
        return generate_latest(self.registry)
