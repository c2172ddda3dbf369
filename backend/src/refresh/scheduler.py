"""
Poll scheduler.

Decides which tournaments are due for a refresh on this invocation and how
many of them a single run may touch.
"""

import logging
import math
from dataclasses import dataclass, field
from typing import Dict, List

from config import Config
from refresh.models import PollMode, PollState, TournamentSource
from utils.timeutil import cst_date_of

logger = logging.getLogger(__name__)

MINUTE_MS = 60 * 1000


@dataclass
class Candidate:
    """A tournament that is due, with how long it has been waiting."""

    source: TournamentSource
    elapsed_ms: int
    reason: str
    never_fetched: bool = False

    @property
    def label(self) -> str:
        if self.never_fetched:
            return f"{self.source.slug}(never)"
        return f"{self.source.slug}({self.elapsed_ms // MINUTE_MS}m ago)"


@dataclass
class Cooling:
    source: TournamentSource
    wait_ms: int

    @property
    def label(self) -> str:
        return f"{self.source.slug}(-{math.ceil(self.wait_ms / MINUTE_MS)}m)"


@dataclass
class Selection:
    """Scheduler output for one invocation."""

    batch: List[Candidate] = field(default_factory=list)
    queue: List[Candidate] = field(default_factory=list)
    cooling: List[Cooling] = field(default_factory=list)

    @property
    def due(self) -> List[Candidate]:
        return self.batch + self.queue

    @property
    def skip(self) -> bool:
        return not self.batch


class PollScheduler:
    """Partitions tournaments into due / cooling and batches the due ones."""

    def __init__(self, fast_threshold_ms: int, slow_threshold_ms: int, rounds: int):
        if rounds < 1:
            raise ValueError("rounds must be >= 1")
        self.fast_threshold_ms = fast_threshold_ms
        self.slow_threshold_ms = slow_threshold_ms
        self.rounds = rounds

    @classmethod
    def from_config(cls, config: Config) -> "PollScheduler":
        return cls(
            fast_threshold_ms=config.fast_threshold_minutes * MINUTE_MS,
            slow_threshold_ms=config.slow_threshold_minutes * MINUTE_MS,
            rounds=config.update_rounds,
        )

    def threshold_for(self, state: PollState) -> int:
        return self.slow_threshold_ms if state.mode is PollMode.SLOW else self.fast_threshold_ms

    def batch_size(self, total_tournaments: int) -> int:
        return math.ceil(total_tournaments / self.rounds)

    def _due_reason(self, state: PollState, now_ms: int, force: bool) -> str:
        """Return why a tournament is due, or an empty string if it is not."""
        if force:
            return "forced"
        if state.last_success_ts <= 0:
            return "never fetched"
        if now_ms - state.last_success_ts >= self.threshold_for(state):
            return f"{state.mode.value} threshold"
        # Full local dates, not day-of-month: a month-old success is not "today"
        if cst_date_of(now_ms) != cst_date_of(state.last_success_ts):
            return "day rollover"
        return ""

    def select(
        self,
        sources: List[TournamentSource],
        poll_states: Dict[str, PollState],
        now_ms: int,
        force: bool = False,
    ) -> Selection:
        """
        Partition tournaments for this invocation.

        Args:
            sources: Configured tournaments in config order
            poll_states: Previous PollState by slug (missing = never fetched)
            now_ms: Current wall clock, epoch ms
            force: Treat every tournament as due

        Returns:
            Selection with the run's batch, the deferred queue and cooling entries
        """
        candidates: List[Candidate] = []
        cooling: List[Cooling] = []

        for source in sources:
            state = poll_states.get(source.slug) or PollState()
            elapsed = now_ms - state.last_success_ts
            reason = self._due_reason(state, now_ms, force)
            if reason:
                candidates.append(Candidate(
                    source=source,
                    elapsed_ms=elapsed,
                    reason=reason,
                    never_fetched=state.last_success_ts <= 0,
                ))
            else:
                cooling.append(Cooling(source=source, wait_ms=self.threshold_for(state) - elapsed))

        # Most-starved first; sorted() is stable so ties keep config order
        candidates = sorted(candidates, key=lambda c: c.elapsed_ms, reverse=True)
        size = self.batch_size(len(sources))

        selection = Selection(batch=candidates[:size], queue=candidates[size:], cooling=cooling)

        logger.debug("Scheduler selection", extra={
            "batch": [c.source.slug for c in selection.batch],
            "queue": [c.source.slug for c in selection.queue],
            "cooling": [c.source.slug for c in selection.cooling],
            "force": force,
        })
        return selection
