"""
Runtime configuration source.

tournaments.json and teams.json live in a GitHub repository so the roster can
change without a deploy. For local runs the same two files can be read from
CONFIG_DIR instead.
"""

import base64
import json
import logging
from pathlib import Path
from typing import Any, Optional

import httpx

from config import Config
from refresh.models import RuntimeConfig

logger = logging.getLogger(__name__)

TOURNAMENTS_FILE = "tournaments.json"
TEAMS_FILE = "teams.json"


class ConfigUnavailable(Exception):
    """The roster or the team map could not be loaded; the run must stop."""
    pass


class GitHubConfigSource:
    """Loads the runtime configuration from the GitHub contents API or a directory."""

    def __init__(self, config: Config, http_client: Optional[httpx.AsyncClient] = None):
        self.config = config
        self.http_client = http_client

    def _contents_url(self, path: str) -> str:
        return (
            f"https://api.github.com/repos/{self.config.github_user}/"
            f"{self.config.github_repo}/contents/{path}"
        )

    async def _fetch_github_json(self, client: httpx.AsyncClient, path: str) -> Any:
        headers = {
            "User-Agent": "lol-stats-refresh",
            "Accept": "application/vnd.github.v3+json",
        }
        if self.config.github_token:
            headers["Authorization"] = f"Bearer {self.config.github_token}"

        response = await client.get(self._contents_url(path), headers=headers)
        if not response.is_success:
            raise ConfigUnavailable(f"{path}: HTTP {response.status_code}")
        try:
            content = base64.b64decode(response.json()["content"])
            return json.loads(content.decode("utf-8"))
        except (KeyError, ValueError) as e:
            raise ConfigUnavailable(f"{path}: unreadable content ({e})") from e

    def _read_local_json(self, path: str) -> Any:
        file_path = Path(self.config.config_dir) / path
        try:
            return json.loads(file_path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            raise ConfigUnavailable(f"{file_path}: {e}") from e

    async def load(self) -> RuntimeConfig:
        """
        Load the tournament roster and team alias map.

        Raises:
            ConfigUnavailable: Either file is missing, unreadable or malformed
        """
        if self.config.config_dir:
            tournaments = self._read_local_json(TOURNAMENTS_FILE)
            teams = self._read_local_json(TEAMS_FILE)
        elif self.config.github_user and self.config.github_repo:
            client = self.http_client or httpx.AsyncClient(timeout=30.0)
            try:
                tournaments = await self._fetch_github_json(client, TOURNAMENTS_FILE)
                teams = await self._fetch_github_json(client, TEAMS_FILE)
            except httpx.HTTPError as e:
                raise ConfigUnavailable(f"GitHub request failed: {e}") from e
            finally:
                if self.http_client is None:
                    await client.aclose()
        else:
            raise ConfigUnavailable("Neither CONFIG_DIR nor GITHUB_USER/GITHUB_REPO is set")

        if not isinstance(tournaments, list) or not tournaments:
            raise ConfigUnavailable(f"{TOURNAMENTS_FILE} must be a non-empty list")
        if not isinstance(teams, dict):
            raise ConfigUnavailable(f"{TEAMS_FILE} must be an object")

        try:
            runtime_config = RuntimeConfig.from_json(tournaments, teams)
        except (KeyError, TypeError, ValueError) as e:
            raise ConfigUnavailable(f"Malformed tournament entry: {e}") from e

        logger.info("Runtime configuration loaded", extra={
            "tournaments_count": len(runtime_config.tournaments),
            "team_aliases_count": len(runtime_config.team_map),
        })
        return runtime_config
