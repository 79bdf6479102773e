# ============================================================================
# CLUSTER DOCUMENT LEASE MODEL
# ============================================================================
# EPOCH: 1 - CLUSTER LIFECYCLE
# STATUS: Core - Lease-based worker coordination
# PURPOSE: Time-bounded exclusive claim on one cluster document
# CREATED: 16 OCT 2026
# ============================================================================
"""
Cluster Document Lease Model

A lease is the (owner, expiry) pair stored on a cluster document while a
worker drives it. There is no separate lock table: the lease is written
with the document's conditional write, so at most one live lease exists
per document.

Key properties:
- Lease expires automatically if not renewed before expiry
- Any worker can reclaim a document whose lease has expired
- Graceful completion releases the lease explicitly
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

from pydantic import BaseModel, Field


class Lease(BaseModel):
    """
    Lease on a cluster document.

    Only one worker holds a live lease on a document at a time. The
    holder renews it while a long pipeline runs. Once expiry < NOW() the
    lease is dead even though the owner field may still be set.
    """

    owner: str = Field(
        max_length=64,
        description="Identity of the worker holding the lease"
    )
    expiry: datetime = Field(
        description="Lease is invalid after this instant (UTC)"
    )

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        """
        Check if the lease has expired.

        Args:
            now: Current time (defaults to now, UTC)

        Returns:
            True if expiry <= now
        """
        if now is None:
            now = datetime.now(timezone.utc)
        return self.expiry <= now

    def remaining(self, now: Optional[datetime] = None) -> timedelta:
        """Time left on the lease (zero when expired)."""
        if now is None:
            now = datetime.now(timezone.utc)
        return max(self.expiry - now, timedelta(0))


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = ['Lease']
