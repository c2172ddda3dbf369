"""
Data model shared by the scheduler, the aggregation engine and the coordinator.

Everything here serialises to plain dicts so the state store and the API can
hand it around without a framing format.
"""

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class PollMode(Enum):
    """Polling urgency tier."""
    FAST = "fast"
    SLOW = "slow"


@dataclass(frozen=True)
class TournamentSource:
    """One tracked tournament, as configured in tournaments.json."""

    slug: str
    title: str
    region: str
    overview_pages: List[str]
    index: int = 0
    # Ascending local hours; a match hour is snapped to the first slot >= it
    time_slots: Optional[List[int]] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any], index: int) -> "TournamentSource":
        pages = data.get("overview_pages") or data.get("overview_page") or []
        if isinstance(pages, str):
            pages = [pages]
        slots = data.get("time_slots")
        return cls(
            slug=data["slug"],
            title=data.get("title") or data["slug"],
            region=data.get("region") or "",
            overview_pages=list(pages),
            index=index,
            time_slots=sorted(int(h) for h in slots) if slots else None,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "slug": self.slug,
            "title": self.title,
            "region": self.region,
            "overview_pages": list(self.overview_pages),
            "time_slots": list(self.time_slots) if self.time_slots else None,
        }


@dataclass(frozen=True)
class RuntimeConfig:
    """Tournament roster and team alias map for one run."""

    tournaments: List[TournamentSource]
    team_map: Dict[str, str]

    @classmethod
    def from_json(cls, tournaments: List[Dict[str, Any]], teams: Dict[str, str]) -> "RuntimeConfig":
        return cls(
            tournaments=[TournamentSource.from_dict(t, i) for i, t in enumerate(tournaments)],
            team_map=dict(teams),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tournaments": [t.to_dict() for t in self.tournaments],
            "team_map": dict(self.team_map),
        }


@dataclass(frozen=True)
class PollState:
    """Per-tournament poll bookkeeping persisted across runs."""

    last_success_ts: int = 0
    mode: PollMode = PollMode.FAST
    streak: int = 0

    def __post_init__(self):
        if not 0 <= self.streak <= 2:
            raise ValueError(f"streak must be 0..2, got {self.streak}")
        # mode = slow iff streak >= 2
        expected = PollMode.SLOW if self.streak >= 2 else PollMode.FAST
        if self.mode is not expected:
            raise ValueError(f"mode {self.mode.value} does not match streak {self.streak}")

    def to_dict(self) -> Dict[str, Any]:
        return {"last_success_ts": self.last_success_ts, "mode": self.mode.value, "streak": self.streak}

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "PollState":
        if not data:
            return cls()
        streak = max(0, min(2, int(data.get("streak") or 0)))
        # mode is derived from streak; a stored mode that disagrees is ignored
        return cls(
            last_success_ts=int(data.get("last_success_ts") or 0),
            mode=PollMode.SLOW if streak >= 2 else PollMode.FAST,
            streak=streak,
        )


@dataclass
class HistoryEntry:
    date: str
    opponent: str
    score: str
    result: str  # W, L, LIVE, PENDING
    best_of: int
    full: bool
    ts: int


@dataclass
class TeamStats:
    """Derived per-team counters within one tournament."""

    name: str
    bo3_full: int = 0
    bo3_total: int = 0
    bo5_full: int = 0
    bo5_total: int = 0
    series_won: int = 0
    series_total: int = 0
    games_won: int = 0
    games_total: int = 0
    win_streak: int = 0
    loss_streak: int = 0
    last_match_ts: int = 0
    history: List[HistoryEntry] = field(default_factory=list)

    def record_win(self):
        if self.loss_streak > 0:
            self.loss_streak = 0
            self.win_streak = 1
        else:
            self.win_streak += 1

    def record_loss(self):
        if self.win_streak > 0:
            self.win_streak = 0
            self.loss_streak = 1
        else:
            self.loss_streak += 1


@dataclass
class GridCell:
    total: int = 0
    full: int = 0
    matches: List[Dict[str, Any]] = field(default_factory=list)

    def add(self, match: Dict[str, Any], is_full: bool):
        self.total += 1
        if is_full:
            self.full += 1
        self.matches.append(match)


# Weekday 0-6 (Monday = 0) plus 7 for the row total
GRID_WEEKDAYS = 8
TOTAL_BUCKET = "Total"
ALL_REGION = "ALL"


@dataclass
class ScheduleEntry:
    time: str
    team1: str
    team2: str
    score1: int
    score2: int
    best_of: int
    is_finished: bool
    is_live: bool
    region: str
    tournament_slug: str
    tournament_index: int
    block_name: str


@dataclass
class TournamentDebug:
    raw: int = 0
    processed: int = 0
    skipped: int = 0
    pending: int = 0


@dataclass
class AnalysisResult:
    """Complete output of one aggregation pass."""

    team_stats: Dict[str, Dict[str, TeamStats]]
    # region -> bucket -> weekday -> cell; ALL -> weekday -> cell
    time_grid: Dict[str, Any]
    debug_info: Dict[str, TournamentDebug]
    max_date_ts: int
    grand_total: int
    status_text: str
    schedule: Dict[str, List[ScheduleEntry]]
    poll_states: Dict[str, PollState]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "team_stats": {
                slug: {name: asdict(stats) for name, stats in teams.items()}
                for slug, teams in self.team_stats.items()
            },
            "time_grid": _grid_to_dict(self.time_grid),
            "debug_info": {slug: asdict(d) for slug, d in self.debug_info.items()},
            "max_date_ts": self.max_date_ts,
            "grand_total": self.grand_total,
            "status_text": self.status_text,
            "schedule": {
                day: [asdict(e) for e in entries] for day, entries in self.schedule.items()
            },
            "poll_states": {slug: s.to_dict() for slug, s in self.poll_states.items()},
        }


def _grid_to_dict(node: Any) -> Any:
    if isinstance(node, GridCell):
        return asdict(node)
    if isinstance(node, dict):
        # JSON object keys are strings; keep int buckets readable after a round trip
        return {str(k): _grid_to_dict(v) for k, v in node.items()}
    return node
