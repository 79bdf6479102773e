# ============================================================================
# IN-MEMORY CLUSTER DOCUMENT REPOSITORY
# ============================================================================
# EPOCH: 1 - CLUSTER LIFECYCLE
# STATUS: Core - In-process document store backend
# PURPOSE: Same conditional-write semantics as PostgreSQL without a database
# CREATED: 16 OCT 2026
# ============================================================================
"""
In-Memory Cluster Document Repository

Backs the lease queue with a dict. Used by the test suite and by local
runs (CP_STORE=memory). Semantics match PostgresClusterRepository:

- Every mutation is compare-and-swap on the concurrency token
- dequeue() reads a candidate, yields to the event loop, then CASes, so
  two workers dequeuing at once really race and exactly one wins
- The clock is injectable so lease expiry can be tested without sleeping

Documents are copied on the way in and out; callers never share state
with the store.
"""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Callable, Dict, Optional

from core.errors import (
    ConflictError,
    LeaseConflictError,
    NotFoundError,
    VersionConflictError,
)
from core.models import ClusterDocument, utcnow
from .cluster_repo import ClusterDocumentStore, new_concurrency_token

logger = logging.getLogger(__name__)


class InMemoryClusterRepository(ClusterDocumentStore):
    """
    Cluster document store held in process memory.

    Not thread-safe: one instance belongs to one event loop. Reads (get,
    the dequeue scan, count_by_state) run without the lock and rely on
    nothing interleaving between awaits. The lock serialises only the
    compare-and-swap writes, which re-check the token under it.
    """

    def __init__(
        self,
        lease_ttl_seconds: float = 60.0,
        write_retry_attempts: int = 5,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        super().__init__(
            lease_ttl_seconds=lease_ttl_seconds,
            write_retry_attempts=write_retry_attempts,
        )
        self._clock = clock or utcnow
        self._documents: Dict[str, ClusterDocument] = {}
        self._lock = asyncio.Lock()

    def now(self) -> datetime:
        return self._clock()

    # =========================================================================
    # COMPARE-AND-SWAP
    # =========================================================================

    def _swap(self, doc: ClusterDocument) -> ClusterDocument:
        """Store `doc` if its token matches. Caller holds the lock."""
        current = self._documents.get(doc.key)
        if current is None:
            raise NotFoundError(doc.key)
        if current.concurrency_token != doc.concurrency_token:
            raise VersionConflictError(doc.key, doc.concurrency_token)

        stored = doc.model_copy(deep=True)
        stored.concurrency_token = new_concurrency_token()
        stored.updated_at = self.now()
        self._documents[stored.key] = stored
        return stored.model_copy(deep=True)

    # =========================================================================
    # PRIMITIVES
    # =========================================================================

    async def create(self, doc: ClusterDocument) -> ClusterDocument:
        async with self._lock:
            if doc.key in self._documents:
                raise ConflictError(doc.key, f"Cluster document already exists: {doc.key}")
            stored = doc.model_copy(deep=True)
            stored.concurrency_token = new_concurrency_token()
            self._documents[stored.key] = stored
        logger.info(f"Created cluster document {stored.key} ({stored.provisioning_state.value})")
        return stored.model_copy(deep=True)

    async def get(self, key: str) -> ClusterDocument:
        doc = self._documents.get(ClusterDocument.normalize_key(key))
        if doc is None:
            raise NotFoundError(ClusterDocument.normalize_key(key))
        return doc.model_copy(deep=True)

    async def write(self, doc: ClusterDocument) -> ClusterDocument:
        async with self._lock:
            return self._swap(doc)

    async def delete(self, doc: ClusterDocument) -> None:
        async with self._lock:
            current = self._documents.get(doc.key)
            if current is None:
                raise NotFoundError(doc.key)
            if current.concurrency_token != doc.concurrency_token:
                raise VersionConflictError(doc.key, doc.concurrency_token)
            del self._documents[doc.key]
        logger.info(f"Deleted cluster document {doc.key}")

    async def dequeue(self, owner: str) -> ClusterDocument:
        now = self.now()
        eligible = sorted(
            (d for d in self._documents.values() if d.is_eligible(now)),
            key=lambda d: d.updated_at,
        )
        if not eligible:
            raise NotFoundError()

        candidate = eligible[0].model_copy(deep=True)

        # Let concurrent dequeuers read the same candidate before anyone writes
        await asyncio.sleep(0)

        candidate.set_lease(owner, self.lease_ttl_seconds, now)
        candidate.dequeues += 1
        candidate.retry_after = None

        async with self._lock:
            try:
                doc = self._swap(candidate)
            except (VersionConflictError, NotFoundError):
                logger.debug(f"Lost dequeue race for {candidate.key}")
                raise LeaseConflictError(candidate.key, owner)

        logger.info(
            f"Dequeued {doc.key} state={doc.provisioning_state.value} "
            f"dequeues={doc.dequeues} (owner={owner})"
        )
        return doc

    async def release(
        self,
        key: str,
        owner: Optional[str] = None,
        retry_after: Optional[datetime] = None,
    ) -> bool:
        key = ClusterDocument.normalize_key(key)
        async with self._lock:
            current = self._documents.get(key)
            if current is None or (owner and current.lease_owner != owner):
                logger.warning(f"Lease on {key} not released: not held by {owner} or document gone")
                return False
            updated = current.model_copy(deep=True)
            updated.clear_lease()
            updated.retry_after = retry_after
            self._swap(updated)
        logger.debug(f"Released lease on {key} (owner={owner})")
        return True

    async def renew_lease(self, key: str, owner: str) -> ClusterDocument:
        key = ClusterDocument.normalize_key(key)
        async with self._lock:
            current = self._documents.get(key)
            if current is None:
                raise NotFoundError(key)
            now = self.now()
            if not current.is_held_by(owner, now):
                raise LeaseConflictError(key, owner)
            updated = current.model_copy(deep=True)
            updated.lease_expiry = now + timedelta(seconds=self.lease_ttl_seconds)
            return self._swap(updated)

    async def count_by_state(self) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        for doc in self._documents.values():
            state = doc.provisioning_state.value
            counts[state] = counts.get(state, 0) + 1
        return counts

    def __len__(self) -> int:
        return len(self._documents)


__all__ = ["InMemoryClusterRepository"]
