"""Tests for the run coordinator: selection, fetch isolation, rollback guard and persistence."""

from __future__ import annotations

import asyncio
from typing import Dict, List, Optional

import httpx
import pytest

from conftest import MINUTE_MS, NOW, FakeStore, make_config, make_row, make_runtime_config
from database.github_config import ConfigUnavailable
from leaguepedia_api.auth import AuthFailed, AuthSession
from leaguepedia_api.client import FailureKind, FetchFailed, LeaguepediaAPIError, LeaguepediaClient
from refresh.coordinator import DataAnomaly, RunCoordinator, RunStatus, check_rollback
from refresh.models import PollMode, PollState
from refresh.state import LEVEL_ERROR

LCK = {"slug": "lck", "title": "LCK", "region": "LCK", "overview_page": "LCK/2025 Season/Rounds 1-2"}
LPL = {"slug": "lpl", "title": "LPL", "region": "LPL", "overview_page": "LPL/2025 Season/Split 2"}
LEC = {"slug": "lec", "title": "LEC", "region": "LEC", "overview_page": "LEC/2025 Season/Spring Season"}
SESSION = AuthSession(cookie="lol_session=x", user_agent="LoL-Stats-Worker/1.0 (bot)")


def finished_rows(n: int) -> List[Dict]:
    return [make_row(f"Team {i}", f"Team {i + 1}", 2, 0, "2025-03-01 09:00:00") for i in range(n)]


class FakeConfigSource:
    def __init__(self, runtime_config=None, error: Optional[Exception] = None):
        self.runtime_config = runtime_config
        self.error = error

    async def load(self):
        if self.error:
            raise self.error
        return self.runtime_config


class FakeLeaguepedia:
    """Returns canned rows per slug, or raises FetchFailed for slugs in `failing`."""

    def __init__(self, rows: Dict[str, List[Dict]], failing=()):
        self.rows = rows
        self.failing = set(failing)
        self.calls: List[tuple] = []
        self.closed = False

    async def fetch_tournament_matches(self, source, auth=None):
        self.calls.append((source.slug, auth))
        if source.slug in self.failing:
            cause = LeaguepediaAPIError(FailureKind.HTTP, "HTTP 500: boom", status_code=500)
            raise FetchFailed(source.slug, source.overview_pages[0], 0, cause)
        return list(self.rows.get(source.slug, []))

    async def close(self):
        self.closed = True


def make_coordinator(
    store: FakeStore,
    api: FakeLeaguepedia,
    runtime_config=None,
    config_error: Optional[Exception] = None,
    auth_error: Optional[Exception] = None,
    **config_overrides,
) -> RunCoordinator:
    async def auth_provider():
        if auth_error:
            raise auth_error
        return SESSION

    return RunCoordinator(
        store.config if not config_overrides else make_config(**config_overrides),
        store=store,
        api_client=api,
        config_source=FakeConfigSource(runtime_config or make_runtime_config(LPL), config_error),
        auth_provider=auth_provider,
        clock=lambda: NOW,
    )


def seeded_store(config, total: int, rows: Dict[str, List[Dict]], states: Optional[Dict] = None) -> FakeStore:
    return FakeStore(
        config,
        cache={"raw_matches": rows, "analysis": {"grand_total": total}, "update_time": "before"},
        meta={"total": total, "poll_states": states or {}},
    )


class TestCheckRollback:
    def test_large_drop_trips(self) -> None:
        with pytest.raises(DataAnomaly):
            check_rollback(100, 85, force=False)

    def test_small_drop_passes(self) -> None:
        check_rollback(100, 95, force=False)
        check_rollback(100, 90, force=False)

    def test_force_bypasses(self) -> None:
        check_rollback(100, 0, force=True)

    def test_first_run_never_trips(self) -> None:
        check_rollback(0, 0, force=False)


class TestRollbackGuard:
    def test_regression_leaves_store_untouched(self, config) -> None:
        store = seeded_store(config, 100, {"lpl": finished_rows(100)})
        api = FakeLeaguepedia({"lpl": finished_rows(85)})
        outcome = asyncio.run(make_coordinator(store, api).run())

        assert outcome.status is RunStatus.ROLLED_BACK
        assert store.saves == 0
        assert len(store.cache["raw_matches"]["lpl"]) == 100
        assert store.meta["total"] == 100
        assert any(e["level"] == LEVEL_ERROR and "Rollback" in e["message"] for e in outcome.log.export())

    def test_small_regression_commits(self, config) -> None:
        store = seeded_store(config, 100, {"lpl": finished_rows(100)})
        api = FakeLeaguepedia({"lpl": finished_rows(95)})
        outcome = asyncio.run(make_coordinator(store, api).run())

        assert outcome.status is RunStatus.COMMITTED
        assert store.meta["total"] == 95
        assert len(store.cache["raw_matches"]["lpl"]) == 95

    def test_forced_run_bypasses_guard(self, config) -> None:
        store = seeded_store(config, 100, {"lpl": finished_rows(100)})
        api = FakeLeaguepedia({"lpl": finished_rows(85)})
        outcome = asyncio.run(make_coordinator(store, api).run(force=True))

        assert outcome.status is RunStatus.COMMITTED
        assert store.meta["total"] == 85


class TestRun:
    def test_config_unavailable_aborts(self, store) -> None:
        api = FakeLeaguepedia({})
        coordinator = make_coordinator(store, api, config_error=ConfigUnavailable("teams.json: HTTP 404"))
        outcome = asyncio.run(coordinator.run())

        assert outcome.status is RunStatus.ABORTED
        assert api.calls == []
        assert store.saves == 0
        assert "Config load failed" in outcome.log.export()[0]["message"]

    def test_skip_when_nothing_due(self, config) -> None:
        fresh = PollState(NOW - MINUTE_MS, PollMode.FAST, 0).to_dict()
        store = seeded_store(config, 0, {}, states={"lpl": fresh})
        api = FakeLeaguepedia({"lpl": finished_rows(3)})
        outcome = asyncio.run(make_coordinator(store, api).run())

        assert outcome.status is RunStatus.SKIPPED
        assert api.calls == []
        assert store.saves == 0

    def test_first_run_commits(self, store) -> None:
        api = FakeLeaguepedia({"lpl": finished_rows(3)})
        outcome = asyncio.run(make_coordinator(store, api).run())

        assert outcome.status is RunStatus.COMMITTED
        assert outcome.refreshed == ["lpl"]
        assert store.meta["total"] == 3
        assert store.meta["poll_states"]["lpl"] == {"last_success_ts": NOW, "mode": "fast", "streak": 1}
        assert store.cache["analysis"]["grand_total"] == 3
        assert store.cache["runtime_config"]["tournaments"][0]["slug"] == "lpl"
        assert api.calls == [("lpl", SESSION)]

    def test_failed_tournament_is_isolated(self, config) -> None:
        previous_lck = finished_rows(4)
        store = seeded_store(config, 4, {"lck": previous_lck})
        api = FakeLeaguepedia({"lpl": finished_rows(3)}, failing={"lck"})
        runtime_config = make_runtime_config(LCK, LPL)
        coordinator = make_coordinator(store, api, runtime_config=runtime_config, update_rounds=1)
        outcome = asyncio.run(coordinator.run())

        assert outcome.status is RunStatus.COMMITTED
        assert set(outcome.failures) == {"lck"}
        assert outcome.refreshed == ["lpl"]
        # lck keeps its previous rows and poll state, lpl is replaced
        assert store.cache["raw_matches"]["lck"] == previous_lck
        assert len(store.cache["raw_matches"]["lpl"]) == 3
        assert store.meta["total"] == 7
        assert store.meta["poll_states"]["lck"]["last_success_ts"] == 0
        assert store.meta["poll_states"]["lpl"]["last_success_ts"] == NOW

    def test_batches_are_bounded(self, store) -> None:
        api = FakeLeaguepedia({})
        runtime_config = make_runtime_config(LCK, LPL)
        outcome = asyncio.run(make_coordinator(store, api, runtime_config=runtime_config).run())

        assert outcome.batch == ["lck"]
        assert outcome.queue == ["lpl"]
        assert [slug for slug, _ in api.calls] == ["lck"]

    def test_auth_failure_proceeds_anonymously(self, store) -> None:
        api = FakeLeaguepedia({"lpl": finished_rows(1)})
        coordinator = make_coordinator(store, api, auth_error=AuthFailed("Login Failed: WrongPass"))
        outcome = asyncio.run(coordinator.run())

        assert outcome.status is RunStatus.COMMITTED
        assert api.calls == [("lpl", None)]
        messages = [e["message"] for e in outcome.log.export()]
        assert any("Auth Error" in m for m in messages)

    def test_removed_tournament_rows_are_dropped(self, config) -> None:
        store = seeded_store(config, 2, {"old": finished_rows(2)})
        api = FakeLeaguepedia({"lpl": finished_rows(2)})
        asyncio.run(make_coordinator(store, api).run(force=True))

        assert set(store.cache["raw_matches"]) == {"lpl"}


class TestRunAndRecord:
    def test_entries_stored_newest_first(self, store) -> None:
        api = FakeLeaguepedia({"lpl": finished_rows(1)})
        outcome = asyncio.run(make_coordinator(store, api).run_and_record())

        assert store.logs == outcome.log.export()
        assert "Sync Complete" in store.logs[0]["message"]

    def test_log_is_capped(self) -> None:
        config = make_config(max_log_entries=5)
        store = FakeStore(config)
        api = FakeLeaguepedia({"lpl": finished_rows(1)})
        coordinator = make_coordinator(store, api)
        asyncio.run(coordinator.run_and_record(force=True))
        asyncio.run(coordinator.run_and_record(force=True))

        assert len(store.logs) == 5

    def test_skipped_run_is_logged(self, config) -> None:
        fresh = PollState(NOW - MINUTE_MS, PollMode.FAST, 0).to_dict()
        store = seeded_store(config, 0, {}, states={"lpl": fresh})
        outcome = asyncio.run(make_coordinator(store, FakeLeaguepedia({})).run_and_record())

        assert outcome.status is RunStatus.SKIPPED
        assert any("Cooldown" in e["message"] for e in store.logs)

    def test_shutdown_closes_client(self, store) -> None:
        api = FakeLeaguepedia({})
        asyncio.run(make_coordinator(store, api).shutdown())
        assert api.closed is True


class TestRealClient:
    def test_decoding_failure_is_isolated(self, config) -> None:
        lpl_rows = finished_rows(3)

        def handler(request: httpx.Request) -> httpx.Response:
            if "LCK" in request.url.params["where"]:
                raise httpx.DecodingError("bad gzip", request=request)
            return httpx.Response(200, json={"cargoquery": [{"title": row} for row in lpl_rows]})

        api = LeaguepediaClient(make_config(), http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))
        store = FakeStore(config)
        runtime_config = make_runtime_config(LCK, LPL)
        coordinator = make_coordinator(store, api, runtime_config=runtime_config, update_rounds=1)
        outcome = asyncio.run(coordinator.run())

        assert outcome.status is RunStatus.COMMITTED
        assert set(outcome.failures) == {"lck"}
        assert "DecodingError" in outcome.failures["lck"]
        assert outcome.refreshed == ["lpl"]
        assert store.saves == 1
        assert store.cache["raw_matches"]["lpl"] == lpl_rows
        assert store.meta["total"] == 3


class TestPacing:
    @pytest.fixture
    def sleeps(self, monkeypatch) -> List[float]:
        recorded: List[float] = []
        real_sleep = asyncio.sleep

        async def fake_sleep(delay, *args, **kwargs):
            recorded.append(delay)
            await real_sleep(0)

        monkeypatch.setattr(asyncio, "sleep", fake_sleep)
        return recorded

    def test_delay_between_tournaments_only(self, store, sleeps: List[float]) -> None:
        api = FakeLeaguepedia({"lck": finished_rows(1), "lpl": finished_rows(1), "lec": finished_rows(1)})
        runtime_config = make_runtime_config(LCK, LPL, LEC)
        coordinator = make_coordinator(
            store, api, runtime_config=runtime_config, update_rounds=1, tournament_delay_seconds=2.0
        )
        asyncio.run(coordinator.run())

        assert [slug for slug, _ in api.calls] == ["lck", "lpl", "lec"]
        assert sleeps == [2.0, 2.0]

    def test_single_tournament_does_not_wait(self, store, sleeps: List[float]) -> None:
        api = FakeLeaguepedia({"lpl": finished_rows(1)})
        asyncio.run(make_coordinator(store, api, tournament_delay_seconds=2.0).run())

        assert api.calls == [("lpl", SESSION)]
        assert sleeps == []
