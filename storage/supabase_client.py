"""
Supabase storage backend for poller state.

Each blob is a row in the `poller_state` table:

    key        TEXT PRIMARY KEY
    value      JSONB
    updated_at TIMESTAMPTZ

A multi-key write is a single upsert request, which PostgREST executes as
one statement, so a cycle's snapshot is committed all-or-nothing.
Create the table with `python setup/setup_database.py`.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Iterable
from supabase import Client, create_client

from storage.state_store import StateStore

logger = logging.getLogger(__name__)


class SupabaseStateStore(StateStore):
    """Keyed-blob store backed by a Supabase table."""

    def __init__(self, supabase_url: str, supabase_key: str, table_name: str = "poller_state"):
        """
        Initialize Supabase client.

        Args:
            supabase_url: Supabase project URL
            supabase_key: Supabase API key (anon/public key)
            table_name: Table holding the state rows
        """
        self.client: Client = create_client(supabase_url, supabase_key)
        self.table_name = table_name
        logger.info(f"Initialized SupabaseStateStore for {supabase_url}")

    def get(self, keys: Iterable[str]) -> dict[str, Any]:
        """
        Fetch the given keys.

        Returns:
            Dict of key -> decoded value for the keys that exist

        Raises:
            Exception if the query fails
        """
        keys = list(keys)
        if not keys:
            return {}

        try:
            result = self.client.table(self.table_name).select("key, value").in_("key", keys).execute()
        except Exception as e:
            logger.error(f"Failed to read state keys {keys}: {e}")
            raise

        return {row["key"]: row["value"] for row in (result.data or [])}

    def set(self, values: dict[str, Any]) -> None:
        """
        Upsert all values in one request.

        Raises:
            Exception if the upsert fails
        """
        if not values:
            return

        now = datetime.now(timezone.utc).isoformat()
        records = [
            {"key": key, "value": value, "updated_at": now}
            for key, value in values.items()
        ]

        try:
            self.client.table(self.table_name).upsert(records, on_conflict="key").execute()
            logger.debug(f"Persisted {len(records)} state keys")
        except Exception as e:
            logger.error(f"Failed to persist state keys {sorted(values)}: {e}")
            raise

    def remove(self, keys: Iterable[str]) -> None:
        keys = list(keys)
        if not keys:
            return

        try:
            self.client.table(self.table_name).delete().in_("key", keys).execute()
        except Exception as e:
            logger.error(f"Failed to remove state keys {keys}: {e}")
            raise
