"""
Supabase client for the persistent state store.

State is kept in a single key/value table:

    create table kv_store (
        key text primary key,
        value jsonb,
        updated_at timestamptz
    );

Keys: CACHE_DATA (analysis + raw matches), META (grand total + poll states)
and logs (bounded run log, newest first).
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from supabase import create_client, Client

from config import Config
from refresh.state import PersistedState, merge_logs

logger = logging.getLogger(__name__)

CACHE_KEY = "CACHE_DATA"
META_KEY = "META"
LOGS_KEY = "logs"


class SupabaseClient:
    """Client for interacting with the Supabase state store."""

    def __init__(self, config: Config):
        self.config = config
        self.table_name = config.kv_table
        self.client: Optional[Client] = None
        self._initialize_client()

    def _initialize_client(self):
        """Initialize Supabase client."""
        if not self.config.supabase_url or not self.config.supabase_key:
            raise ValueError("Supabase URL and key are required")

        # Use service key if available for admin operations, otherwise use anon key
        key = self.config.supabase_service_key or self.config.supabase_key

        self.client = create_client(
            self.config.supabase_url,
            key
        )

        logger.info("Initialized Supabase client", extra={
            "url": self.config.supabase_url,
            "using_service_key": bool(self.config.supabase_service_key)
        })

    # Key/value access

    def get_value(self, key: str) -> Optional[Any]:
        """Get the JSON value stored under key, or None."""
        result = (
            self.client.table(self.table_name)
            .select("value")
            .eq("key", key)
            .maybe_single()
            .execute()
        )
        # maybe_single() returns None (not an empty response) when no row matches
        if result is None or not result.data:
            return None
        return result.data.get("value")

    def put_value(self, key: str, value: Any):
        """Upsert the JSON value stored under key."""
        result = self.client.table(self.table_name).upsert(
            {
                "key": key,
                "value": value,
                "updated_at": datetime.now(timezone.utc).isoformat(),
            },
            on_conflict="key"
        ).execute()
        return result.data

    # Run state

    def load_state(self) -> PersistedState:
        """Load the previous run's state (empty state on first run)."""
        state = PersistedState.from_store(self.get_value(CACHE_KEY), self.get_value(META_KEY))
        logger.debug("Loaded persisted state", extra={
            "tournaments_with_raw": len(state.raw_matches),
            "grand_total": state.grand_total,
        })
        return state

    def save_state(self, state: PersistedState, runtime_config: Optional[Dict[str, Any]] = None):
        """Persist a committed run: cache first, then meta."""
        self.put_value(CACHE_KEY, {
            "analysis": state.analysis,
            "raw_matches": state.raw_matches,
            "update_time": state.update_time,
            "runtime_config": runtime_config,
        })
        self.put_value(META_KEY, state.meta_payload())
        logger.info("Saved state", extra={"grand_total": state.grand_total})

    def get_cache(self) -> Optional[Dict[str, Any]]:
        return self.get_value(CACHE_KEY)

    # Run log

    def get_logs(self) -> List[Dict[str, str]]:
        return self.get_value(LOGS_KEY) or []

    def append_logs(self, entries: List[Dict[str, str]]):
        """Prepend a run's log entries, keeping at most max_log_entries."""
        if not entries:
            return
        combined = merge_logs(entries, self.get_logs(), self.config.max_log_entries)
        self.put_value(LOGS_KEY, combined)
