# ============================================================================
# CLUSTER DOCUMENT REPOSITORY
# ============================================================================
# EPOCH: 1 - CLUSTER LIFECYCLE
# STATUS: Core - Document store adapter and lease queue
# PURPOSE: Conditional reads/writes and lease-based dequeue of cluster documents
# CREATED: 16 OCT 2026
# ============================================================================
"""
Cluster Document Repository

The document store is both the work queue and the state repository. There
is no lock service: mutual exclusion rides entirely on the conditional
write. Every write names the concurrency token the writer last read and
fails with VersionConflictError if another write landed first.

Lease Queue Protocol:
    1. dequeue() picks one eligible document (non-terminal, lease absent
       or expired, retry_after reached)
    2. It writes lease_owner/lease_expiry conditionally on the token
    3. Losing that race raises LeaseConflictError; the caller retries
    4. The holder renews with renew_lease() while a pipeline runs
    5. release() clears the lease when the holder is done

ClusterDocumentStore is the interface. PostgresClusterRepository is the
production backend; repositories.memory_repo provides an in-process one.
"""

import logging
import uuid
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from psycopg import sql
from psycopg.rows import dict_row
from psycopg.types.json import Json
from psycopg_pool import AsyncConnectionPool

from core.contracts import ProvisioningState
from core.errors import (
    ConflictError,
    LeaseConflictError,
    NotFoundError,
    VersionConflictError,
)
from core.models import ClusterDocument, ClusterProperties, utcnow
from .database import TABLE_CLUSTER_DOCUMENTS

logger = logging.getLogger(__name__)

# Mutator for patch(); returning False means "nothing to change, skip the write"
Mutator = Callable[[ClusterDocument], Optional[bool]]


def new_concurrency_token() -> str:
    """Generate an opaque etag."""
    return uuid.uuid4().hex


# ============================================================================
# STORE INTERFACE
# ============================================================================

class ClusterDocumentStore(ABC):
    """
    Document store adapter and lease queue.

    Subclasses implement the primitive conditional operations; the
    read-modify-write helpers (patch, patch_with_lease) are shared.
    """

    def __init__(
        self,
        lease_ttl_seconds: float = 60.0,
        write_retry_attempts: int = 5,
    ):
        self.lease_ttl_seconds = lease_ttl_seconds
        self.write_retry_attempts = write_retry_attempts

    def now(self) -> datetime:
        """Current time as seen by lease checks made in Python."""
        return utcnow()

    # =========================================================================
    # PRIMITIVES
    # =========================================================================

    @abstractmethod
    async def create(self, doc: ClusterDocument) -> ClusterDocument:
        """
        Insert a new document.

        Raises:
            ConflictError: A document with the same key exists
        """

    @abstractmethod
    async def get(self, key: str) -> ClusterDocument:
        """
        Point read by (normalised) key.

        Raises:
            NotFoundError: No such document
        """

    @abstractmethod
    async def write(self, doc: ClusterDocument) -> ClusterDocument:
        """
        Conditional update on doc.concurrency_token.

        Returns:
            The stored document carrying its new token

        Raises:
            VersionConflictError: The token is stale
            NotFoundError: The document no longer exists
        """

    @abstractmethod
    async def delete(self, doc: ClusterDocument) -> None:
        """
        Conditional delete on doc.concurrency_token.

        Raises:
            VersionConflictError: The token is stale
        """

    @abstractmethod
    async def dequeue(self, owner: str) -> ClusterDocument:
        """
        Claim one eligible document for `owner`.

        Raises:
            NotFoundError: Nothing is eligible
            LeaseConflictError: Another worker won the race
        """

    @abstractmethod
    async def release(
        self,
        key: str,
        owner: Optional[str] = None,
        retry_after: Optional[datetime] = None,
    ) -> bool:
        """
        Clear the lease fields, optionally setting retry_after.

        With `owner` given, only a lease still held by that owner is
        cleared. Returns True if a document was updated.
        """

    @abstractmethod
    async def renew_lease(self, key: str, owner: str) -> ClusterDocument:
        """
        Extend a live lease held by `owner` by the lease TTL.

        Raises:
            LeaseConflictError: The lease is no longer held by `owner`
            NotFoundError: The document no longer exists
        """

    @abstractmethod
    async def count_by_state(self) -> Dict[str, int]:
        """Document counts keyed by provisioning state value."""

    # =========================================================================
    # READ-MODIFY-WRITE
    # =========================================================================

    async def patch(self, key: str, mutate: Mutator) -> ClusterDocument:
        """
        Re-read, mutate and conditionally write until the write lands.

        Args:
            key: Document key
            mutate: Called with a fresh copy on every attempt. Returning
                False skips the write and returns the document unchanged.

        Returns:
            The stored document

        Raises:
            VersionConflictError: Still conflicting after write_retry_attempts
        """
        return await self._patch(key, mutate, owner=None)

    async def patch_with_lease(
        self,
        key: str,
        owner: str,
        mutate: Mutator,
    ) -> ClusterDocument:
        """
        Like patch(), but only while `owner` holds a live lease.

        Raises:
            LeaseConflictError: The lease is not held by `owner` or expired
        """
        return await self._patch(key, mutate, owner=owner)

    async def _patch(
        self,
        key: str,
        mutate: Mutator,
        owner: Optional[str],
    ) -> ClusterDocument:
        last_conflict: Optional[VersionConflictError] = None

        for attempt in range(1, self.write_retry_attempts + 1):
            doc = await self.get(key)

            if owner is not None and not doc.is_held_by(owner, self.now()):
                raise LeaseConflictError(doc.key, owner)

            working = doc.model_copy(deep=True)
            if mutate(working) is False:
                return doc

            try:
                return await self.write(working)
            except VersionConflictError as e:
                last_conflict = e
                logger.debug(
                    f"Version conflict patching {doc.key} "
                    f"(attempt {attempt}/{self.write_retry_attempts})"
                )

        logger.warning(
            f"Giving up patching {key} after {self.write_retry_attempts} conflicts"
        )
        raise last_conflict

    async def delete_with_lease(self, key: str, owner: str) -> None:
        """
        Delete a document while `owner` holds its lease.

        Re-reads on VersionConflictError (a heartbeat may have moved the
        token), bounded by write_retry_attempts.

        Raises:
            LeaseConflictError: The lease is not held by `owner` or expired
        """
        last_conflict: Optional[VersionConflictError] = None

        for _ in range(self.write_retry_attempts):
            doc = await self.get(key)
            if not doc.is_held_by(owner, self.now()):
                raise LeaseConflictError(doc.key, owner)
            try:
                await self.delete(doc)
                return
            except VersionConflictError as e:
                last_conflict = e

        raise last_conflict


# ============================================================================
# POSTGRESQL BACKEND
# ============================================================================

_ACTIVE_STATES = [state.value for state in ProvisioningState.active_states()]

_COLUMNS = sql.SQL(", ").join(
    sql.Identifier(name) for name in (
        "key", "id", "etag", "provisioning_state", "failed_provisioning_state",
        "last_error", "provisioned_by", "lease_owner", "lease_expiry",
        "dequeues", "retry_after", "properties", "created_at", "updated_at",
    )
)


class PostgresClusterRepository(ClusterDocumentStore):
    """
    Cluster document store on PostgreSQL.

    Every mutation is a single UPDATE ... WHERE key = %s AND etag = %s;
    rowcount 0 means another writer got there first. Lease expiry is
    evaluated with the database clock (NOW()).
    """

    def __init__(
        self,
        pool: AsyncConnectionPool,
        lease_ttl_seconds: float = 60.0,
        write_retry_attempts: int = 5,
    ):
        super().__init__(
            lease_ttl_seconds=lease_ttl_seconds,
            write_retry_attempts=write_retry_attempts,
        )
        self.pool = pool

    async def create(self, doc: ClusterDocument) -> ClusterDocument:
        stored = doc.model_copy(deep=True)
        stored.concurrency_token = new_concurrency_token()

        async with self.pool.connection() as conn:
            conn.row_factory = dict_row
            result = await conn.execute(
                sql.SQL("""
                INSERT INTO {} ({})
                VALUES (
                    %(key)s, %(id)s, %(etag)s, %(provisioning_state)s,
                    %(failed_provisioning_state)s, %(last_error)s,
                    %(provisioned_by)s, %(lease_owner)s, %(lease_expiry)s,
                    %(dequeues)s, %(retry_after)s, %(properties)s,
                    %(created_at)s, %(updated_at)s
                )
                ON CONFLICT (key) DO NOTHING
                RETURNING *
                """).format(TABLE_CLUSTER_DOCUMENTS, _COLUMNS),
                self._params(stored),
            )
            row = await result.fetchone()

        if row is None:
            raise ConflictError(stored.key, f"Cluster document already exists: {stored.key}")

        logger.info(f"Created cluster document {stored.key} ({stored.provisioning_state.value})")
        return self._row_to_document(row)

    async def get(self, key: str) -> ClusterDocument:
        key = ClusterDocument.normalize_key(key)
        async with self.pool.connection() as conn:
            conn.row_factory = dict_row
            result = await conn.execute(
                sql.SQL("SELECT * FROM {} WHERE key = %s").format(TABLE_CLUSTER_DOCUMENTS),
                (key,),
            )
            row = await result.fetchone()

        if row is None:
            raise NotFoundError(key)
        return self._row_to_document(row)

    async def write(self, doc: ClusterDocument) -> ClusterDocument:
        params = self._params(doc)
        params["new_etag"] = new_concurrency_token()

        async with self.pool.connection() as conn:
            conn.row_factory = dict_row
            result = await conn.execute(
                sql.SQL("""
                UPDATE {} SET
                    id = %(id)s,
                    etag = %(new_etag)s,
                    provisioning_state = %(provisioning_state)s,
                    failed_provisioning_state = %(failed_provisioning_state)s,
                    last_error = %(last_error)s,
                    provisioned_by = %(provisioned_by)s,
                    lease_owner = %(lease_owner)s,
                    lease_expiry = %(lease_expiry)s,
                    dequeues = %(dequeues)s,
                    retry_after = %(retry_after)s,
                    properties = %(properties)s,
                    updated_at = NOW()
                WHERE key = %(key)s
                  AND etag = %(etag)s
                RETURNING *
                """).format(TABLE_CLUSTER_DOCUMENTS),
                params,
            )
            row = await result.fetchone()

        if row is None:
            await self._raise_conflict_or_missing(doc)

        logger.debug(
            f"Wrote cluster document {doc.key} "
            f"state={doc.provisioning_state.value} etag={row['etag'][:8]}"
        )
        return self._row_to_document(row)

    async def delete(self, doc: ClusterDocument) -> None:
        async with self.pool.connection() as conn:
            result = await conn.execute(
                sql.SQL("DELETE FROM {} WHERE key = %s AND etag = %s").format(
                    TABLE_CLUSTER_DOCUMENTS
                ),
                (doc.key, doc.concurrency_token),
            )
            deleted = result.rowcount

        if deleted == 0:
            await self._raise_conflict_or_missing(doc)

        logger.info(f"Deleted cluster document {doc.key}")

    async def dequeue(self, owner: str) -> ClusterDocument:
        async with self.pool.connection() as conn:
            conn.row_factory = dict_row
            result = await conn.execute(
                sql.SQL("""
                SELECT key, etag FROM {}
                WHERE provisioning_state = ANY(%s)
                  AND (lease_expiry IS NULL OR lease_expiry < NOW())
                  AND (retry_after IS NULL OR retry_after <= NOW())
                ORDER BY updated_at
                LIMIT 1
                """).format(TABLE_CLUSTER_DOCUMENTS),
                (_ACTIVE_STATES,),
            )
            candidate = await result.fetchone()

            if candidate is None:
                raise NotFoundError()

            result = await conn.execute(
                sql.SQL("""
                UPDATE {} SET
                    etag = %s,
                    lease_owner = %s,
                    lease_expiry = NOW() + make_interval(secs => %s),
                    dequeues = dequeues + 1,
                    retry_after = NULL,
                    updated_at = NOW()
                WHERE key = %s
                  AND etag = %s
                RETURNING *
                """).format(TABLE_CLUSTER_DOCUMENTS),
                (
                    new_concurrency_token(),
                    owner,
                    self.lease_ttl_seconds,
                    candidate["key"],
                    candidate["etag"],
                ),
            )
            row = await result.fetchone()

        if row is None:
            logger.debug(f"Lost dequeue race for {candidate['key']}")
            raise LeaseConflictError(candidate["key"], owner)

        doc = self._row_to_document(row)
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
        owner_clause = sql.SQL("AND lease_owner = %(owner)s") if owner else sql.SQL("")

        async with self.pool.connection() as conn:
            result = await conn.execute(
                sql.SQL("""
                UPDATE {} SET
                    etag = %(etag)s,
                    lease_owner = NULL,
                    lease_expiry = NULL,
                    retry_after = %(retry_after)s,
                    updated_at = NOW()
                WHERE key = %(key)s
                {}
                """).format(TABLE_CLUSTER_DOCUMENTS, owner_clause),
                {
                    "etag": new_concurrency_token(),
                    "retry_after": retry_after,
                    "key": key,
                    "owner": owner,
                },
            )
            released = result.rowcount > 0

        if released:
            logger.debug(f"Released lease on {key} (owner={owner})")
        else:
            logger.warning(f"Lease on {key} not released: not held by {owner} or document gone")
        return released

    async def renew_lease(self, key: str, owner: str) -> ClusterDocument:
        key = ClusterDocument.normalize_key(key)
        async with self.pool.connection() as conn:
            conn.row_factory = dict_row
            result = await conn.execute(
                sql.SQL("""
                UPDATE {} SET
                    etag = %s,
                    lease_expiry = NOW() + make_interval(secs => %s)
                WHERE key = %s
                  AND lease_owner = %s
                  AND lease_expiry > NOW()
                RETURNING *
                """).format(TABLE_CLUSTER_DOCUMENTS),
                (new_concurrency_token(), self.lease_ttl_seconds, key, owner),
            )
            row = await result.fetchone()

        if row is None:
            # Distinguish a vanished document from a lost lease
            await self.get(key)
            raise LeaseConflictError(key, owner)

        return self._row_to_document(row)

    async def count_by_state(self) -> Dict[str, int]:
        async with self.pool.connection() as conn:
            conn.row_factory = dict_row
            result = await conn.execute(
                sql.SQL("""
                SELECT provisioning_state, COUNT(*) AS count
                FROM {}
                GROUP BY provisioning_state
                """).format(TABLE_CLUSTER_DOCUMENTS),
            )
            rows = await result.fetchall()
        return {row["provisioning_state"]: row["count"] for row in rows}

    # =========================================================================
    # HELPERS
    # =========================================================================

    async def _raise_conflict_or_missing(self, doc: ClusterDocument) -> None:
        current = await self.get(doc.key)
        logger.warning(
            f"Version conflict on {doc.key} (expected {doc.concurrency_token}, "
            f"found {current.concurrency_token})"
        )
        raise VersionConflictError(doc.key, doc.concurrency_token)

    @staticmethod
    def _params(doc: ClusterDocument) -> Dict[str, Any]:
        return {
            "key": doc.key,
            "id": doc.id,
            "etag": doc.concurrency_token,
            "provisioning_state": doc.provisioning_state.value,
            "failed_provisioning_state": (
                doc.failed_provisioning_state.value
                if doc.failed_provisioning_state else None
            ),
            "last_error": doc.last_error,
            "provisioned_by": doc.provisioned_by,
            "lease_owner": doc.lease_owner,
            "lease_expiry": doc.lease_expiry,
            "dequeues": doc.dequeues,
            "retry_after": doc.retry_after,
            "properties": Json(doc.properties.model_dump(mode="json", by_alias=True)),
            "created_at": doc.created_at,
            "updated_at": doc.updated_at,
        }

    @staticmethod
    def _row_to_document(row: Dict[str, Any]) -> ClusterDocument:
        return ClusterDocument(
            id=row["id"],
            key=row["key"],
            concurrency_token=row["etag"],
            provisioning_state=ProvisioningState(row["provisioning_state"]),
            failed_provisioning_state=(
                ProvisioningState(row["failed_provisioning_state"])
                if row.get("failed_provisioning_state") else None
            ),
            last_error=row.get("last_error"),
            provisioned_by=row.get("provisioned_by"),
            lease_owner=row.get("lease_owner"),
            lease_expiry=row.get("lease_expiry"),
            dequeues=row.get("dequeues", 0),
            retry_after=row.get("retry_after"),
            properties=ClusterProperties.model_validate(row.get("properties") or {}),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = [
    "Mutator",
    "new_concurrency_token",
    "ClusterDocumentStore",
    "PostgresClusterRepository",
]
