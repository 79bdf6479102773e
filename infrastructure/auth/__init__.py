# ============================================================================
# AUTHENTICATION MODULE
# ============================================================================
# EPOCH: 1 - CLUSTER LIFECYCLE
# PURPOSE: Azure authentication for the PostgreSQL document store
# CREATED: 16 OCT 2026
# ============================================================================
"""
Authentication module.

Usage:
    from infrastructure.auth import get_postgres_connection_string

    conn_str = get_postgres_connection_string()
"""

from infrastructure.auth.postgres_auth import (
    get_postgres_connection_string,
    get_postgres_token,
    use_managed_identity,
)

__all__ = [
    'get_postgres_connection_string',
    'get_postgres_token',
    'use_managed_identity',
]
