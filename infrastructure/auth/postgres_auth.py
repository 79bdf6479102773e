# ============================================================================
# POSTGRESQL OAUTH AUTHENTICATION
# ============================================================================
# EPOCH: 1 - CLUSTER LIFECYCLE
# PURPOSE: Managed Identity authentication for the cluster document store
# CREATED: 16 OCT 2026
# ============================================================================
"""
PostgreSQL OAuth authentication for the cluster control plane.

Acquires OAuth tokens for Azure Database for PostgreSQL using Managed
Identity. Tokens are cached and refreshed before expiry.

Authentication Flow:
-------------------
1. Worker starts -> get_postgres_connection_string() called
2. ManagedIdentityCredential acquires token for the PostgreSQL scope
3. Token cached with expiry time
4. Token refreshed when within 5 minutes of expiry
5. Connection string returned with current token as password

Environment Variables:
---------------------
USE_MANAGED_IDENTITY=true (required for MI auth)
AZURE_CLIENT_ID=<guid>               # User-assigned MI client ID
CP_DB_IDENTITY_NAME=<identity-name>  # PostgreSQL role mapped to the MI
CP_DB_HOST=<server>.postgres.database.azure.com
CP_DB_NAME=<database>
CP_DB_PORT=5432

For password auth (local development):
CP_DB_USER=<user>
CP_DB_PASSWORD=<password>
USE_MANAGED_IDENTITY=false
"""

import os
import logging
from datetime import datetime, timezone
from typing import Optional
from dataclasses import dataclass

from azure.core.exceptions import ClientAuthenticationError
from azure.identity import DefaultAzureCredential, ManagedIdentityCredential

logger = logging.getLogger(__name__)

# OAuth scope for Azure Database for PostgreSQL
POSTGRES_SCOPE = "https://ossrdbms-aad.database.windows.net/.default"

# Refresh tokens when less than 5 minutes until expiry
TOKEN_REFRESH_BUFFER_SECS = 300


@dataclass
class TokenCache:
    """In-memory token cache."""
    token: Optional[str] = None
    expires_at: Optional[datetime] = None

    def get_if_valid(self, min_ttl_seconds: int = 0) -> Optional[str]:
        """Get token if it still has more than min_ttl_seconds to live."""
        if not self.token or not self.expires_at:
            return None
        if self.ttl_seconds() <= min_ttl_seconds:
            return None
        return self.token

    def set(self, token: str, expires_at: datetime) -> None:
        self.token = token
        self.expires_at = expires_at

    def invalidate(self) -> None:
        self.token = None
        self.expires_at = None

    def ttl_seconds(self) -> float:
        """Remaining TTL in seconds."""
        if not self.expires_at:
            return 0
        return (self.expires_at - datetime.now(timezone.utc)).total_seconds()


_token_cache = TokenCache()


def use_managed_identity() -> bool:
    """Check if managed identity authentication is enabled."""
    return os.environ.get("USE_MANAGED_IDENTITY", "false").lower() == "true"


def _credential():
    client_id = os.environ.get("AZURE_CLIENT_ID") or os.environ.get("CP_DB_IDENTITY_CLIENT_ID")
    if client_id:
        logger.info(f"Using user-assigned Managed Identity: {client_id[:8]}...")
        return ManagedIdentityCredential(client_id=client_id)
    logger.info("Using DefaultAzureCredential (system MI or az login)")
    return DefaultAzureCredential()


def get_postgres_token() -> Optional[str]:
    """
    Get a PostgreSQL OAuth token using Managed Identity.

    Returns:
        Bearer token, or None when managed identity is disabled.

    Raises:
        ClientAuthenticationError: If the identity cannot obtain a token.
    """
    if not use_managed_identity():
        return None

    cached = _token_cache.get_if_valid(min_ttl_seconds=TOKEN_REFRESH_BUFFER_SECS)
    if cached:
        logger.debug(f"Using cached PostgreSQL token, TTL: {_token_cache.ttl_seconds():.0f}s")
        return cached

    identity_name = os.environ.get("CP_DB_IDENTITY_NAME", "")
    logger.info(
        f"Acquiring PostgreSQL OAuth token "
        f"(host={os.environ.get('CP_DB_HOST', 'localhost')}, identity={identity_name})"
    )

    try:
        token_response = _credential().get_token(POSTGRES_SCOPE)
    except ClientAuthenticationError as e:
        logger.error(
            f"Failed to get PostgreSQL OAuth token: {e}. "
            f"Verify the managed identity is assigned and the database role "
            f"'{identity_name}' exists (SELECT * FROM pgaadauth_list_principals();)"
        )
        raise

    expires_at = datetime.fromtimestamp(token_response.expires_on, tz=timezone.utc)
    _token_cache.set(token_response.token, expires_at)
    logger.info(f"PostgreSQL token acquired, expires: {expires_at.isoformat()}")
    return token_response.token


def get_postgres_connection_string() -> str:
    """
    Build a PostgreSQL connection string with an OAuth token or password.

    Raises:
        ValueError: If no authentication method is configured.
    """
    host = os.environ.get("CP_DB_HOST", "localhost")
    port = os.environ.get("CP_DB_PORT", "5432")
    database = os.environ.get("CP_DB_NAME", "postgres")

    if not use_managed_identity():
        password = os.environ.get("CP_DB_PASSWORD", "")
        if not password:
            raise ValueError(
                "No PostgreSQL authentication configured. "
                "Set USE_MANAGED_IDENTITY=true or provide CP_DB_PASSWORD"
            )
        user = os.environ.get("CP_DB_USER", "postgres")
    else:
        password = get_postgres_token()
        if not password:
            raise ValueError("Failed to acquire PostgreSQL OAuth token")
        user = os.environ.get("CP_DB_IDENTITY_NAME", "")

    return (
        f"host={host} "
        f"port={port} "
        f"dbname={database} "
        f"user={user} "
        f"password={password} "
        f"sslmode=require"
    )


__all__ = [
    "POSTGRES_SCOPE",
    "TokenCache",
    "use_managed_identity",
    "get_postgres_token",
    "get_postgres_connection_string",
]
