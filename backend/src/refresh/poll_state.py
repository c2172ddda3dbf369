"""
Poll state machine.

Three phases drive how often a tournament is re-polled:

- ONGOING: something is happening today, poll on the fast interval.
- VERIFYING: the last refresh saw nothing pending; poll fast once more to
  confirm before trusting it.
- DORMANT: two quiet refreshes in a row; poll on the slow interval.

The functions here are pure so the transitions can be tested on their own.
"""

from enum import Enum
from typing import Optional

from refresh.models import PollMode, PollState


class PollPhase(Enum):
    ONGOING = 0
    VERIFYING = 1
    DORMANT = 2


MAX_STREAK = PollPhase.DORMANT.value


def phase_of(state: PollState) -> PollPhase:
    return PollPhase(min(state.streak, MAX_STREAK))


def state_for(phase: PollPhase, last_success_ts: int) -> PollState:
    mode = PollMode.SLOW if phase is PollPhase.DORMANT else PollMode.FAST
    return PollState(last_success_ts=last_success_ts, mode=mode, streak=phase.value)


def on_pending_today(state: PollState, refreshed_at: Optional[int] = None) -> PollState:
    """An unfinished match is scheduled today: back to ONGOING."""
    ts = refreshed_at if refreshed_at is not None else state.last_success_ts
    return state_for(PollPhase.ONGOING, ts)


def on_quiet(state: PollState, refreshed_at: int) -> PollState:
    """A refresh found nothing pending today: advance one phase, capped at DORMANT."""
    nxt = PollPhase(min(phase_of(state).value + 1, MAX_STREAK))
    return state_for(nxt, refreshed_at)


def next_poll_state(
    previous: PollState,
    pending_today: bool,
    refreshed_at: Optional[int] = None,
) -> PollState:
    """
    Compute the next PollState for one tournament.

    Args:
        previous: State from the previous run
        pending_today: True if any match dated today is still unfinished
        refreshed_at: Epoch ms of this run's successful fetch, or None if the
            tournament was not refreshed this run

    Returns:
        The next PollState
    """
    if pending_today:
        return on_pending_today(previous, refreshed_at)
    if refreshed_at is None:
        # No new data: nothing has been confirmed
        return previous
    return on_quiet(previous, refreshed_at)
