"""Tests for runtime configuration loading."""

from __future__ import annotations

import asyncio
import base64
import json
from pathlib import Path

import httpx
import pytest

from conftest import make_config
from database.github_config import ConfigUnavailable, GitHubConfigSource

TOURNAMENTS = [
    {"slug": "lck", "title": "LCK 2025", "region": "LCK", "overview_page": "LCK/2025 Season/Rounds 1-2", "time_slots": [18, 16]},
    {"slug": "lpl", "title": "LPL 2025", "region": "LPL", "overview_pages": ["LPL/2025 Season/Split 2", "LPL/2025 Season/Split 2 Playoffs"]},
]
TEAMS = {"Bilibili Gaming": "BLG", "Gen.G": "GEN"}


def write_config_dir(path: Path, tournaments=TOURNAMENTS, teams=TEAMS) -> Path:
    (path / "tournaments.json").write_text(json.dumps(tournaments), encoding="utf-8")
    (path / "teams.json").write_text(json.dumps(teams), encoding="utf-8")
    return path


def load(config, http_client=None):
    return asyncio.run(GitHubConfigSource(config, http_client=http_client).load())


class TestLocalDirectory:
    def test_loads_roster_in_order(self, tmp_path: Path) -> None:
        runtime = load(make_config(config_dir=str(write_config_dir(tmp_path))))
        assert [t.slug for t in runtime.tournaments] == ["lck", "lpl"]
        assert [t.index for t in runtime.tournaments] == [0, 1]
        assert runtime.tournaments[0].overview_pages == ["LCK/2025 Season/Rounds 1-2"]
        assert runtime.tournaments[0].time_slots == [16, 18]
        assert len(runtime.tournaments[1].overview_pages) == 2
        assert runtime.team_map == TEAMS

    def test_missing_file(self, tmp_path: Path) -> None:
        (tmp_path / "tournaments.json").write_text(json.dumps(TOURNAMENTS), encoding="utf-8")
        with pytest.raises(ConfigUnavailable, match="teams.json"):
            load(make_config(config_dir=str(tmp_path)))

    def test_empty_roster(self, tmp_path: Path) -> None:
        write_config_dir(tmp_path, tournaments=[])
        with pytest.raises(ConfigUnavailable, match="non-empty"):
            load(make_config(config_dir=str(tmp_path)))

    def test_entry_without_slug(self, tmp_path: Path) -> None:
        write_config_dir(tmp_path, tournaments=[{"title": "No slug"}])
        with pytest.raises(ConfigUnavailable, match="Malformed"):
            load(make_config(config_dir=str(tmp_path)))

    def test_no_source_configured(self) -> None:
        with pytest.raises(ConfigUnavailable):
            load(make_config())


class TestGitHub:
    @staticmethod
    def contents(payload) -> httpx.Response:
        encoded = base64.b64encode(json.dumps(payload).encode("utf-8")).decode("ascii")
        return httpx.Response(200, json={"content": encoded, "encoding": "base64"})

    def _load(self, handler, **overrides):
        config = make_config(github_user="someone", github_repo="lol-config", **overrides)

        async def go():
            async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
                return await GitHubConfigSource(config, http_client=http).load()

        return asyncio.run(go())

    def test_decodes_contents_api(self) -> None:
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            if request.url.path.endswith("tournaments.json"):
                return self.contents(TOURNAMENTS)
            return self.contents(TEAMS)

        runtime = self._load(handler, github_token="ghp_test")
        assert len(runtime.tournaments) == 2
        assert seen[0].url.path == "/repos/someone/lol-config/contents/tournaments.json"
        assert seen[0].headers["authorization"] == "Bearer ghp_test"

    def test_http_error(self) -> None:
        with pytest.raises(ConfigUnavailable, match="HTTP 404"):
            self._load(lambda r: httpx.Response(404, json={"message": "Not Found"}))

    def test_transport_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("unreachable", request=request)

        with pytest.raises(ConfigUnavailable, match="GitHub request failed"):
            self._load(handler)
