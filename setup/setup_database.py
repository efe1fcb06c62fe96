#!/usr/bin/env python3
"""
Database setup script for the PR monitor's Supabase state backend.

Creates the `poller_state` key/value table programmatically using a direct
PostgreSQL connection. Only needed when SUPABASE_URL/SUPABASE_KEY are set;
otherwise state lives in a local JSON file.

Usage:
    python setup/setup_database.py           # Create schema
    python setup/setup_database.py --verify  # Verify existing schema
    python setup/setup_database.py --drop    # Drop and recreate (DANGEROUS)
"""

import argparse
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from utils.config_loader import load_config
from utils.logger import setup_logger

import psycopg2

logger = setup_logger(__name__)

TABLE_NAME = "poller_state"

CREATE_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS poller_state (
    -- Blob key: prs, lastUpdated, error, seenPRIds, prState, highlightedPRs, prFilter
    key TEXT PRIMARY KEY,

    -- JSON value of the blob
    value JSONB,

    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);
"""

DROP_TABLE_SQL = "DROP TABLE IF EXISTS poller_state;"


def get_database_url(config) -> str:
    """
    Get PostgreSQL database URL.

    Uses DATABASE_URL from .env; exits with instructions if it is missing.
    """
    if config.credentials.database_url:
        return config.credentials.database_url

    logger.error("DATABASE_URL not found in .env file")
    logger.error("\nTo get your DATABASE_URL:")
    logger.error("1. Go to Supabase Dashboard → Project Settings → Database")
    logger.error("2. Find 'Connection string' under 'Connection pooling'")
    logger.error("3. Copy the 'URI' connection string")
    logger.error("4. Add to .env file: DATABASE_URL=postgresql://...")
    sys.exit(1)


def create_connection(database_url: str):
    """Create a PostgreSQL database connection."""
    try:
        conn = psycopg2.connect(database_url)
        logger.info("✓ Connected to PostgreSQL database")
        return conn
    except psycopg2.Error as e:
        logger.error(f"✗ Failed to connect to database: {e}")
        logger.error("\nMake sure DATABASE_URL is correct and your IP is allowed in Supabase")
        sys.exit(1)


def execute_sql(conn, sql_statement: str, description: str) -> bool:
    """Execute a SQL statement in its own transaction."""
    try:
        with conn.cursor() as cursor:
            cursor.execute(sql_statement)
        conn.commit()
        logger.info(f"✓ {description}")
        return True
    except psycopg2.Error as e:
        logger.error(f"✗ {description} failed: {e}")
        conn.rollback()
        return False


def verify_schema(conn) -> bool:
    """Verify that the state table exists and list the stored keys."""
    try:
        with conn.cursor() as cursor:
            cursor.execute("""
                SELECT EXISTS (
                    SELECT FROM information_schema.tables
                    WHERE table_name = %s
                );
            """, (TABLE_NAME,))
            if not cursor.fetchone()[0]:
                logger.error(f"✗ Table '{TABLE_NAME}' does not exist")
                return False

            logger.info(f"✓ Table '{TABLE_NAME}' exists")

            cursor.execute(f"SELECT key, updated_at FROM {TABLE_NAME} ORDER BY key;")
            rows = cursor.fetchall()

        if rows:
            for key, updated_at in rows:
                logger.info(f"  • {key} (updated {updated_at})")
        else:
            logger.info("  (no state stored yet)")
        return True

    except psycopg2.Error as e:
        logger.error(f"✗ Schema verification failed: {e}")
        return False


def drop_schema(conn) -> bool:
    """Drop the state table (DANGEROUS)."""
    logger.warning("\n" + "=" * 80)
    logger.warning("⚠️  WARNING: DROPPING EXISTING SCHEMA")
    logger.warning("=" * 80)
    logger.warning("This deletes the stored snapshot; the next poll starts from scratch!")

    response = input("\nType 'yes' to confirm: ")
    if response.lower() != 'yes':
        logger.info("Aborted.")
        return False

    return execute_sql(conn, DROP_TABLE_SQL, f"Dropped table '{TABLE_NAME}'")


def main():
    parser = argparse.ArgumentParser(
        description="Set up the Supabase state table for the PR monitor"
    )
    parser.add_argument(
        "--verify",
        action="store_true",
        help="Verify existing schema without creating"
    )
    parser.add_argument(
        "--drop",
        action="store_true",
        help="Drop and recreate the table (DANGEROUS - deletes stored state)"
    )

    args = parser.parse_args()

    config = load_config()
    logger.info("✓ Configuration loaded")

    database_url = get_database_url(config)
    conn = create_connection(database_url)

    try:
        if args.verify:
            ok = verify_schema(conn)
            logger.info("\n✓ Schema verification successful" if ok else "\n✗ Schema verification failed")
            sys.exit(0 if ok else 1)

        if args.drop and not drop_schema(conn):
            sys.exit(1)

        if execute_sql(conn, CREATE_TABLE_SQL, f"Created table '{TABLE_NAME}'"):
            logger.info("\nNext steps:")
            logger.info("  1. Verify the schema: python setup/setup_database.py --verify")
            logger.info("  2. Run a poll: python main.py poll")
            sys.exit(0)

        logger.error("\n✗ Schema creation failed")
        sys.exit(1)

    finally:
        conn.close()
        logger.info("\n✓ Database connection closed")


if __name__ == "__main__":
    main()
