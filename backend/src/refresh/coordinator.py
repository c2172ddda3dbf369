"""
Run Coordinator - drives one end-to-end refresh cycle.

config -> scheduler -> auth -> fetch (sequential) -> merge -> analysis ->
rollback guard -> state store.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, Dict, List, Optional

from config import Config
from database.github_config import ConfigUnavailable, GitHubConfigSource
from database.supabase_client import SupabaseClient
from leaguepedia_api.auth import AuthFailed, AuthSession, login
from leaguepedia_api.client import FetchFailed, LeaguepediaClient
from refresh.analysis import run_full_analysis
from refresh.models import AnalysisResult
from refresh.scheduler import PollScheduler, Selection
from refresh.state import PersistedState, RunLog
from utils.timeutil import cst_date_of, ms_to_cst, now_ms

logger = logging.getLogger(__name__)


class RunStatus(Enum):
    """How a run ended."""
    SKIPPED = "skipped"  # nothing due
    COMMITTED = "committed"  # new state persisted
    ROLLED_BACK = "rolled_back"  # rollback guard tripped
    ABORTED = "aborted"  # configuration unavailable


class DataAnomaly(Exception):
    """The new grand total regressed too far against the previous run."""

    def __init__(self, previous_total: int, new_total: int, ratio: float):
        super().__init__(
            f"Finished matches dropped from {previous_total} to {new_total} "
            f"(below {int(ratio * 100)}%)"
        )
        self.previous_total = previous_total
        self.new_total = new_total


@dataclass
class RunOutcome:
    status: RunStatus
    log: RunLog
    batch: List[str] = field(default_factory=list)
    queue: List[str] = field(default_factory=list)
    refreshed: List[str] = field(default_factory=list)
    failures: Dict[str, str] = field(default_factory=dict)
    analysis: Optional[AnalysisResult] = None

    def to_dict(self) -> Dict:
        return {
            "status": self.status.value,
            "batch": self.batch,
            "queue": self.queue,
            "refreshed": self.refreshed,
            "failures": self.failures,
            "grand_total": self.analysis.grand_total if self.analysis else None,
            "logs": self.log.export(),
        }


def check_rollback(previous_total: int, new_total: int, force: bool, ratio: float = 0.9):
    """
    Raise DataAnomaly when a non-forced run lost too many finished matches.

    A previous total of zero (first run) never trips the guard.
    """
    if force or previous_total <= 0:
        return
    if new_total < previous_total * ratio:
        raise DataAnomaly(previous_total, new_total, ratio)


class RunCoordinator:
    """Orchestrates one refresh run."""

    def __init__(
        self,
        config: Config,
        store: Optional[SupabaseClient] = None,
        api_client: Optional[LeaguepediaClient] = None,
        config_source: Optional[GitHubConfigSource] = None,
        auth_provider: Optional[Callable[[], Awaitable[AuthSession]]] = None,
        clock: Callable[[], int] = now_ms,
    ):
        self.config = config
        self.store = store
        self.api_client = api_client
        self.config_source = config_source
        self.auth_provider = auth_provider
        self.clock = clock
        self.scheduler = PollScheduler.from_config(config)

    async def initialize(self):
        """Create any collaborator that was not injected."""
        logger.info("Coordinator starting")

        if self.store is None:
            self.store = SupabaseClient(self.config)
        if self.api_client is None:
            self.api_client = LeaguepediaClient(self.config)
        if self.config_source is None:
            self.config_source = GitHubConfigSource(self.config)
        if self.auth_provider is None:
            self.auth_provider = lambda: login(self.config)

        logger.info("Coordinator ready")

    async def shutdown(self):
        """Release the HTTP client."""
        logger.info("Coordinator shutting down")
        if self.api_client:
            await self.api_client.close()
        logger.info("Coordinator stopped")

    async def _authenticate(self, log: RunLog) -> Optional[AuthSession]:
        try:
            session = await self.auth_provider()
        except AuthFailed as e:
            log.error(f"Auth Error: {e}")
            log.info("Authentication skipped/failed. Proceeding anonymously.")
            return None
        log.success("Authenticated. Ready to fetch.")
        return session

    def _log_selection(self, log: RunLog, selection: Selection):
        log.info(f"Scan: {len(selection.due)} Candidates, {len(selection.cooling)} Cooldown.")
        if selection.cooling:
            log.info(f"Cooldown: [ {', '.join(c.label for c in selection.cooling)} ]")
        if selection.batch:
            log.info(
                f"Batch ({len(selection.batch)}): [ {', '.join(c.label for c in selection.batch)} ] -> GO!"
            )
        if selection.queue:
            log.info(
                f"Queue ({len(selection.queue)}): [ {', '.join(c.label for c in selection.queue)} ] -> Wait next run."
            )

    async def run(self, force: bool = False) -> RunOutcome:
        """
        Run one refresh cycle.

        Args:
            force: Refresh every tournament (still batched) and bypass the rollback guard

        Returns:
            RunOutcome describing what happened; failures are reported, not raised
        """
        log = RunLog(clock=self.clock)
        now = self.clock()

        try:
            runtime_config = await self.config_source.load()
        except ConfigUnavailable as e:
            log.error(f"CRITICAL: Config load failed. {e}")
            return RunOutcome(status=RunStatus.ABORTED, log=log)

        previous = self.store.load_state()
        selection = self.scheduler.select(
            runtime_config.tournaments, previous.poll_states, now, force=force
        )
        self._log_selection(log, selection)

        outcome = RunOutcome(
            status=RunStatus.SKIPPED,
            log=log,
            batch=[c.source.slug for c in selection.batch],
            queue=[c.source.slug for c in selection.queue],
        )
        if selection.skip:
            return outcome

        auth = await self._authenticate(log)

        # Merge into a copy; the previous state stays untouched until commit
        configured = {t.slug for t in runtime_config.tournaments}
        raw_matches = {slug: rows for slug, rows in previous.raw_matches.items() if slug in configured}
        refreshed: Dict[str, int] = {}

        for i, candidate in enumerate(selection.batch):
            source = candidate.source
            if i > 0:
                await asyncio.sleep(self.config.tournament_delay_seconds)
            log.info(f"Fetching: {source.slug} ({candidate.reason})...")
            try:
                rows = await self.api_client.fetch_tournament_matches(source, auth)
            except FetchFailed as e:
                outcome.failures[source.slug] = str(e)
                log.error(f"Failed {source.slug}: {e}", slug=source.slug, kind=e.kind.value)
                continue
            raw_matches[source.slug] = rows
            refreshed[source.slug] = now
            log.success(f"Received: {source.slug} - Got {len(rows)} matches.")

        outcome.refreshed = list(refreshed)

        analysis = run_full_analysis(
            raw_matches,
            runtime_config,
            previous.poll_states,
            today=cst_date_of(now),
            refreshed=refreshed,
            schedule_days=self.config.schedule_days,
        )
        outcome.analysis = analysis

        try:
            check_rollback(previous.grand_total, analysis.grand_total, force, self.config.rollback_ratio)
        except DataAnomaly as e:
            log.error(f"Rollback detected. Aborting save. {e}")
            outcome.status = RunStatus.ROLLED_BACK
            return outcome

        new_state = PersistedState(
            raw_matches=raw_matches,
            poll_states=analysis.poll_states,
            grand_total=analysis.grand_total,
            analysis=analysis.to_dict(),
            update_time=ms_to_cst(now).isoformat(),
        )
        self.store.save_state(new_state, runtime_config.to_dict())

        outcome.status = RunStatus.COMMITTED
        log.success(
            f"Sync Complete. Updated: {len(refreshed)}, Batched: {len(selection.batch)}, "
            f"Total Parsed: {analysis.grand_total}"
        )
        return outcome

    async def run_and_record(self, force: bool = False) -> RunOutcome:
        """Run a cycle and append its log entries to the stored run log."""
        outcome = await self.run(force=force)
        self.store.append_logs(outcome.log.export())
        return outcome
