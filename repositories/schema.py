# ============================================================================
# CLUSTER DOCUMENT SCHEMA
# ============================================================================
# EPOCH: 1 - CLUSTER LIFECYCLE
# STATUS: Core - DDL for the document store
# PURPOSE: Create the clusterplane schema, table and indexes
# CREATED: 16 OCT 2026
# ============================================================================
"""
Cluster document schema.

One table holds every cluster document. `etag` is the concurrency token;
every conditional write matches on (key, etag) and replaces the etag.
All statements are idempotent (IF NOT EXISTS) so deployment can be re-run.

Usage:
    from repositories.schema import schema_statements, apply_schema

    for statement in schema_statements():
        print(statement)

    with psycopg.connect(conninfo) as conn:
        apply_schema(conn)
"""

import logging
from typing import Dict, List

from core.contracts import ProvisioningState
from core.models import ClusterDocument
from repositories.database import SCHEMA

logger = logging.getLogger(__name__)

TABLE_NAME = ClusterDocument.__sql_table__
QUALIFIED_TABLE = f"{SCHEMA}.{TABLE_NAME}"

_STATES = ", ".join(f"'{state.value}'" for state in ProvisioningState)


def schema_statements() -> List[str]:
    """Ordered DDL statements for the document store."""
    statements = [
        f"CREATE SCHEMA IF NOT EXISTS {SCHEMA}",
        f"""CREATE TABLE IF NOT EXISTS {QUALIFIED_TABLE} (
    key                        VARCHAR(512) PRIMARY KEY,
    id                         VARCHAR(512) NOT NULL,
    etag                       VARCHAR(64)  NOT NULL,
    provisioning_state         VARCHAR(16)  NOT NULL CHECK (provisioning_state IN ({_STATES})),
    failed_provisioning_state  VARCHAR(16)  NULL CHECK (failed_provisioning_state IN ({_STATES})),
    last_error                 VARCHAR(2000) NULL,
    provisioned_by             VARCHAR(64)  NULL,
    lease_owner                VARCHAR(64)  NULL,
    lease_expiry               TIMESTAMPTZ  NULL,
    dequeues                   INTEGER      NOT NULL DEFAULT 0 CHECK (dequeues >= 0),
    retry_after                TIMESTAMPTZ  NULL,
    properties                 JSONB        NOT NULL DEFAULT '{{}}'::jsonb,
    created_at                 TIMESTAMPTZ  NOT NULL DEFAULT NOW(),
    updated_at                 TIMESTAMPTZ  NOT NULL DEFAULT NOW()
)""",
    ]
    for index_name, columns in ClusterDocument.__sql_indexes__:
        statements.append(
            f"CREATE INDEX IF NOT EXISTS {index_name} "
            f"ON {QUALIFIED_TABLE} ({', '.join(columns)})"
        )
    return statements


def apply_schema(conn, dry_run: bool = False) -> List[str]:
    """
    Execute the DDL on a synchronous psycopg connection.

    Args:
        conn: Open psycopg.Connection
        dry_run: Return the statements without executing them

    Returns:
        Statements executed (or that would be executed)
    """
    statements = schema_statements()
    if dry_run:
        return statements

    with conn.cursor() as cur:
        for statement in statements:
            logger.debug(f"Executing: {statement.splitlines()[0]}")
            cur.execute(statement)
    conn.commit()
    logger.info(f"Applied {len(statements)} schema statements to {SCHEMA}")
    return statements


def schema_status(conn) -> Dict[str, int]:
    """Document counts by provisioning state (empty if the table is missing)."""
    with conn.cursor() as cur:
        cur.execute(
            "SELECT to_regclass(%s) IS NOT NULL",
            (QUALIFIED_TABLE,),
        )
        if not cur.fetchone()[0]:
            return {}
        cur.execute(
            f"SELECT provisioning_state, COUNT(*) FROM {QUALIFIED_TABLE} "
            f"GROUP BY provisioning_state"
        )
        return {state: count for state, count in cur.fetchall()}


__all__ = [
    "TABLE_NAME",
    "QUALIFIED_TABLE",
    "schema_statements",
    "apply_schema",
    "schema_status",
]
