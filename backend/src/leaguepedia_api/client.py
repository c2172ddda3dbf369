"""
Leaguepedia Cargo API client with rate limiting, retry logic, and error handling.

Handles all match-schedule queries against lol.fandom.com.
"""

import asyncio
import json
import logging
import random
import time
from enum import Enum
from typing import Any, Dict, List, Optional

import httpx
from asyncio_throttle import Throttler

from config import Config
from leaguepedia_api.auth import AuthSession
from refresh.models import TournamentSource

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/145.0.0.0 Safari/537.36"
)

MATCH_FIELDS = (
    "Team1,Team2,Team1Score,Team2Score,DateTime_UTC,OverviewPage,"
    "BestOf,N_MatchInPage,Tab,Round"
)

# Longest body excerpt carried in an error message
BODY_PREVIEW = 150


class FailureKind(Enum):
    """Which layer a page request failed in."""
    TRANSPORT = "transport"
    HTTP = "http"
    RATE_LIMITED = "rate_limited"
    PARSE = "parse"
    UPSTREAM = "upstream"
    STRUCTURE = "structure"


class LeaguepediaAPIError(Exception):
    """A single page request failed."""

    def __init__(
        self,
        kind: FailureKind,
        message: str,
        status_code: Optional[int] = None,
        retry_after: Optional[float] = None,
    ):
        super().__init__(message)
        self.kind = kind
        self.status_code = status_code
        self.retry_after = retry_after


class FetchFailed(Exception):
    """A tournament's fetch gave up after exhausting retries on one page."""

    def __init__(self, slug: str, page: str, offset: int, cause: LeaguepediaAPIError):
        super().__init__(f"Batch Fail at offset {offset} ({page}): [{cause.kind.value}] {cause}")
        self.slug = slug
        self.page = page
        self.offset = offset
        self.cause = cause

    @property
    def kind(self) -> FailureKind:
        return self.cause.kind


def _like_prefix(value: str) -> str:
    """Escape a literal for a LIKE prefix pattern inside single quotes."""
    escaped = value.replace("\\", "\\\\").replace("'", "\\'")
    return escaped.replace("%", "\\%").replace("_", "\\_")


def row_key(row: Dict[str, Any]) -> tuple:
    """
    Identity of a MatchSchedule row.

    (OverviewPage, N_MatchInPage) when both are present, otherwise the whole row.
    """
    page = row.get("OverviewPage")
    n = row.get("N MatchInPage", row.get("N_MatchInPage"))
    if page not in (None, "") and n not in (None, ""):
        return ("match", page, str(n))
    return ("row", json.dumps(row, sort_keys=True, default=str))


def build_query_params(overview_page: str, limit: int, offset: int) -> Dict[str, str]:
    """Cargo query parameters for one page of a tournament's MatchSchedule rows."""
    return {
        "action": "cargoquery",
        "format": "json",
        "tables": "MatchSchedule",
        "fields": MATCH_FIELDS,
        "where": f"OverviewPage LIKE '{_like_prefix(overview_page)}%'",
        "limit": str(limit),
        "offset": str(offset),
        "order_by": "DateTime_UTC ASC",
        "origin": "*",
    }


def parse_cargo_response(response: httpx.Response) -> List[Dict[str, Any]]:
    """
    Classify a raw response and unwrap its rows.

    Raises:
        LeaguepediaAPIError: with the FailureKind of the layer that failed
    """
    raw_body = response.text
    status_code = response.status_code

    if status_code == 429:
        retry_after = None
        header = response.headers.get("Retry-After")
        if header:
            try:
                retry_after = float(header)
            except ValueError:
                retry_after = None
        raise LeaguepediaAPIError(
            FailureKind.RATE_LIMITED,
            "HTTP 429: rate limited",
            status_code=status_code,
            retry_after=retry_after,
        )

    if not response.is_success:
        raise LeaguepediaAPIError(
            FailureKind.HTTP,
            f"HTTP {status_code}: {raw_body[:BODY_PREVIEW]}...",
            status_code=status_code,
        )

    try:
        data = json.loads(raw_body)
    except ValueError as e:
        raise LeaguepediaAPIError(
            FailureKind.PARSE,
            f"JSON Parse Fail. Content: {raw_body[:BODY_PREVIEW]}...",
            status_code=status_code,
        ) from e

    if isinstance(data, dict) and data.get("error"):
        error = data["error"]
        code = error.get("code") if isinstance(error, dict) else None
        info = error.get("info") if isinstance(error, dict) else error
        raise LeaguepediaAPIError(FailureKind.UPSTREAM, f"API Error [{code}]: {info}", status_code=status_code)

    if not isinstance(data, dict) or not isinstance(data.get("cargoquery"), list):
        raise LeaguepediaAPIError(
            FailureKind.STRUCTURE,
            f"Structure Error: {raw_body[:BODY_PREVIEW]}",
            status_code=status_code,
        )

    return [item.get("title", item) if isinstance(item, dict) else item for item in data["cargoquery"]]


class LeaguepediaClient:
    """Client for the Leaguepedia Cargo query API."""

    def __init__(self, config: Config, http_client: Optional[httpx.AsyncClient] = None):
        self.config = config
        self.api_url = config.leaguepedia_api_url
        self.max_retries = config.max_retries
        self.retry_backoff_base = config.retry_backoff_base
        self.retry_jitter = config.retry_jitter
        self.max_retry_delay = config.max_retry_delay
        self.page_limit = config.page_limit
        self.page_delay = config.page_delay_seconds

        # One throttler for every tournament: the upstream limit is shared
        self.throttler = Throttler(
            rate_limit=config.max_requests_per_minute,
            period=60.0
        )
        self.min_interval = config.min_request_interval
        self.last_request_time = 0.0

        self.client = http_client or httpx.AsyncClient(
            timeout=30.0,
            follow_redirects=True,
            headers={"Accept": "application/json"},
        )

    async def _wait_for_rate_limit(self):
        """Wait to respect rate limiting."""
        await self.throttler.acquire()

        # Also enforce minimum interval between requests
        current_time = time.time()
        time_since_last = current_time - self.last_request_time
        if time_since_last < self.min_interval:
            await asyncio.sleep(self.min_interval - time_since_last)

        self.last_request_time = time.time()

    def _backoff(self, attempt: int, error: LeaguepediaAPIError) -> float:
        """Seconds to wait before the next attempt (attempt is 1-based)."""
        backoff = min(self.retry_backoff_base * (2 ** (attempt - 1)), self.max_retry_delay)
        wait_time = backoff + random.uniform(0, self.retry_jitter)
        if error.retry_after is not None:
            wait_time = max(wait_time, error.retry_after)
        return wait_time

    def _headers(self, auth: Optional[AuthSession]) -> Dict[str, str]:
        headers = {"User-Agent": auth.user_agent if auth else DEFAULT_USER_AGENT}
        if auth and auth.cookie:
            headers["Cookie"] = auth.cookie
        return headers

    async def fetch_page(
        self,
        params: Dict[str, str],
        auth: Optional[AuthSession] = None,
    ) -> List[Dict[str, Any]]:
        """
        Fetch one page of rows, retrying every failure class.

        Args:
            params: Cargo query parameters
            auth: Optional logged-in session

        Returns:
            The page's rows

        Raises:
            LeaguepediaAPIError: The last failure once attempts are exhausted
        """
        headers = self._headers(auth)

        for attempt in range(1, self.max_retries + 1):
            try:
                await self._wait_for_rate_limit()
                response = await self.client.get(self.api_url, params=params, headers=headers)
                return parse_cargo_response(response)
            except httpx.RequestError as e:
                # Transport, decoding and redirect failures alike
                error = LeaguepediaAPIError(FailureKind.TRANSPORT, f"{type(e).__name__}: {e}")
            except LeaguepediaAPIError as e:
                error = e

            if attempt == self.max_retries:
                raise error

            wait_time = self._backoff(attempt, error)
            logger.warning(
                "Page fetch failed, retrying",
                extra={
                    "offset": params.get("offset"),
                    "kind": error.kind.value,
                    "status_code": error.status_code,
                    "attempt": attempt,
                    "wait_time": round(wait_time, 1),
                    "error": str(error),
                }
            )
            await asyncio.sleep(wait_time)

        # max_retries >= 1 is enforced by Config.validate
        raise LeaguepediaAPIError(FailureKind.TRANSPORT, "Request failed")

    async def fetch_tournament_matches(
        self,
        source: TournamentSource,
        auth: Optional[AuthSession] = None,
    ) -> List[Dict[str, Any]]:
        """
        Fetch every MatchSchedule row for a tournament, across all its pages.

        Args:
            source: Tournament to fetch
            auth: Optional logged-in session

        Returns:
            Rows in upstream order, page identifiers concatenated in config order.
            A row matched by several prefix pages is kept once, at its first sighting.

        Raises:
            FetchFailed: A page exhausted its retries
        """
        rows: List[Dict[str, Any]] = []
        seen = set()
        duplicates = 0
        first_request = True

        for page in source.overview_pages:
            offset = 0
            while True:
                if not first_request:
                    await asyncio.sleep(self.page_delay)
                first_request = False

                params = build_query_params(page, self.page_limit, offset)
                try:
                    batch = await self.fetch_page(params, auth)
                except LeaguepediaAPIError as e:
                    raise FetchFailed(source.slug, page, offset, e) from e

                if not batch:
                    break
                for row in batch:
                    key = row_key(row)
                    if key in seen:
                        duplicates += 1
                        continue
                    seen.add(key)
                    rows.append(row)
                # Offsets count upstream rows, duplicates included
                offset += len(batch)
                if len(batch) < self.page_limit:
                    break

        logger.info("Fetched tournament matches", extra={
            "slug": source.slug,
            "pages": len(source.overview_pages),
            "matches_count": len(rows),
            "duplicates_dropped": duplicates,
        })
        return rows

    async def close(self):
        """Close the HTTP client."""
        await self.client.aclose()

    async def __aenter__(self):
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.close()
