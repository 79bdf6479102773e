#!/usr/bin/env python
# ============================================================================
# SCHEMA DEPLOYMENT SCRIPT
# ============================================================================
# EPOCH: 1 - CLUSTER LIFECYCLE
# PURPOSE: Deploy the clusterplane document store schema to PostgreSQL
# USAGE:
#   python scripts/deploy_schema.py --dry-run    # Preview SQL
#   python scripts/deploy_schema.py              # Execute deployment
#   python scripts/deploy_schema.py --status     # Document counts by state
# ============================================================================

import sys
import os
import argparse
import logging

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import psycopg

from repositories.database import SCHEMA, get_connection_string, mask_conninfo
from repositories.schema import QUALIFIED_TABLE, apply_schema, schema_statements, schema_status


def main():
    parser = argparse.ArgumentParser(
        description="Deploy clusterplane schema to PostgreSQL",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python scripts/deploy_schema.py --dry-run     # Preview DDL without executing
  python scripts/deploy_schema.py               # Deploy schema
  python scripts/deploy_schema.py --status      # Check current installation

Environment Variables:
  DATABASE_URL          Full PostgreSQL connection string
  POSTGRES_HOST         Database host (default: localhost)
  POSTGRES_DB           Database name (default: postgres)
  POSTGRES_USER         Database user (default: postgres)
  POSTGRES_PASSWORD     Database password
  POSTGRES_PORT         Database port (default: 5432)
  POSTGRES_SSLMODE      SSL mode (default: require)
  USE_MANAGED_IDENTITY  Use Azure AD token auth (see infrastructure.auth)
        """
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Print DDL without executing"
    )
    parser.add_argument(
        "--status",
        action="store_true",
        help="Show document counts by provisioning state"
    )
    parser.add_argument(
        "--connection",
        type=str,
        help="PostgreSQL connection string (overrides environment)"
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose logging"
    )
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

    print("=" * 70)
    print("CLUSTER CONTROL PLANE - Schema Deployment")
    print("=" * 70)
    print(f"Schema: {SCHEMA}")
    print(f"Table: {QUALIFIED_TABLE}")

    if args.dry_run:
        print("Mode: DRY RUN")
        print("=" * 70)
        for statement in schema_statements():
            print(f"\n{statement};")
        print("\n" + "=" * 70)
        return

    conninfo = args.connection or get_connection_string()
    print(f"Target: {mask_conninfo(conninfo)}")
    print("=" * 70)

    try:
        with psycopg.connect(conninfo) as conn:
            if args.status:
                print("\n[STATUS CHECK]\n")
                counts = schema_status(conn)
                if not counts:
                    print(f"{QUALIFIED_TABLE} missing or empty")
                for state, count in sorted(counts.items()):
                    print(f"  - {state}: {count}")
                print("\n" + "=" * 70)
                return

            print("\nMode: EXECUTE\n")
            executed = apply_schema(conn)
            for statement in executed:
                print(f"[OK] {statement.splitlines()[0]}")
    except psycopg.Error as e:
        print(f"\n[FAILED] {e}")
        print("=" * 70)
        sys.exit(1)

    print("\n" + "=" * 70)
    print(f"Deployment completed ({len(executed)} statements)")
    print("=" * 70)


if __name__ == "__main__":
    main()
