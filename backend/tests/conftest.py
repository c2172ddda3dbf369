"""Shared fixtures: a zero-delay Config, an in-memory state store and row builders."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import pytest

from config import Config
from refresh.models import RuntimeConfig
from refresh.state import PersistedState, merge_logs

MINUTE_MS = 60 * 1000

# 2025-04-01 12:00 UTC == 2025-04-01 20:00 CST (a Tuesday)
NOW = int(datetime(2025, 4, 1, 12, 0, tzinfo=timezone.utc).timestamp() * 1000)


def make_config(**overrides: Any) -> Config:
    values: Dict[str, Any] = dict(
        environment="test",
        supabase_url="http://supabase.test",
        supabase_key="test-key",
        supabase_service_key=None,
        leaguepedia_api_url="https://lol.fandom.test/api.php",
        fandom_user="",
        fandom_pass="",
        github_user="",
        github_repo="",
        github_token="",
        config_dir="",
        max_requests_per_minute=10_000,
        min_request_interval=0.0,
        max_retries=3,
        retry_backoff_base=0.0,
        retry_jitter=0.0,
        max_retry_delay=0.0,
        page_limit=50,
        page_delay_seconds=0.0,
        tournament_delay_seconds=0.0,
        fast_threshold_minutes=8,
        slow_threshold_minutes=60,
        update_rounds=2,
        schedule_days=4,
        rollback_ratio=0.9,
        max_log_entries=100,
    )
    values.update(overrides)
    return Config(**values)


def make_row(
    team1: Optional[str],
    team2: Optional[str],
    score1: Any = None,
    score2: Any = None,
    when: Optional[str] = None,
    best_of: Any = "3",
    tab: str = "",
    round_name: str = "",
) -> Dict[str, Any]:
    """One raw MatchSchedule row, spelled the way cargoquery returns it."""
    return {
        "Team1": team1,
        "Team2": team2,
        "Team1Score": "" if score1 is None else str(score1),
        "Team2Score": "" if score2 is None else str(score2),
        "DateTime UTC": when,
        "BestOf": best_of,
        "Tab": tab,
        "Round": round_name,
    }


def make_runtime_config(*tournaments: Dict[str, Any], teams: Optional[Dict[str, str]] = None) -> RuntimeConfig:
    return RuntimeConfig.from_json(list(tournaments), teams or {})


class FakeStore:
    """In-memory stand-in for SupabaseClient with the same state semantics."""

    def __init__(self, config: Config, cache: Optional[Dict] = None, meta: Optional[Dict] = None):
        self.config = config
        self.cache = cache
        self.meta = meta
        self.logs: List[Dict[str, str]] = []
        self.saves = 0

    def load_state(self) -> PersistedState:
        return PersistedState.from_store(self.cache, self.meta)

    def save_state(self, state: PersistedState, runtime_config: Optional[Dict] = None):
        self.saves += 1
        self.cache = {
            "analysis": state.analysis,
            "raw_matches": state.raw_matches,
            "update_time": state.update_time,
            "runtime_config": runtime_config,
        }
        self.meta = state.meta_payload()

    def get_cache(self):
        return self.cache

    def get_logs(self):
        return list(self.logs)

    def append_logs(self, entries):
        if entries:
            self.logs = merge_logs(entries, self.logs, self.config.max_log_entries)


@pytest.fixture
def config() -> Config:
    return make_config()


@pytest.fixture
def store(config: Config) -> FakeStore:
    return FakeStore(config)
