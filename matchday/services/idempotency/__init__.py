"""Idempotency module for Matchday."""

from matchday.services.idempotency.coordinator import (
    IdempotencyCoordinator,
    compute_request_hash,
    purge_expired_records,
)

__all__ = ["IdempotencyCoordinator", "compute_request_hash", "purge_expired_records"]
