"""
Aggregation engine.

Folds the raw MatchSchedule rows of every tournament into team statistics,
the time-slot distribution grid, the upcoming schedule and the next poll
state. Everything is recomputed from scratch on each call; nothing is patched
incrementally, so derived counters can never drift from the raw rows.
"""

import logging
import math
import re
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Dict, List, Mapping, Optional

from refresh.models import (
    ALL_REGION,
    GRID_WEEKDAYS,
    TOTAL_BUCKET,
    AnalysisResult,
    GridCell,
    HistoryEntry,
    PollState,
    RuntimeConfig,
    ScheduleEntry,
    TeamStats,
    TournamentDebug,
    TournamentSource,
)
from refresh.poll_state import PollPhase, next_poll_state, phase_of
from utils.timeutil import CST, parse_match_datetime

logger = logging.getLogger(__name__)

TBD = "TBD"
PLACEHOLDER_TOKENS = ("TBD", "TBA", "TO BE DETERMINED")
NOISE_WORDS = re.compile(r"(Esports|Gaming|Academy|Team|Club)", re.IGNORECASE)

# Tab labels too generic to name a schedule block on their own
GENERIC_TABS = ("Bracket", "Knockout Stage")
# Upstream spells some fields with a space, some with an underscore
FIELD_ALIASES = {
    "team1": ("Team1", "Team 1"),
    "team2": ("Team2", "Team 2"),
    "score1": ("Team1Score", "Team1 Score"),
    "score2": ("Team2Score", "Team2 Score"),
    "best_of": ("BestOf", "Best Of"),
    "datetime": ("DateTime UTC", "DateTime_UTC"),
    "tab": ("Tab",),
    "round": ("Round",),
}

STATUS_NO_MATCHES = "NO MATCHES"
STATUS_ONGOING = "ONGOING"
STATUS_VERIFYING = "VERIFYING"
STATUS_FINISHED = "FINISHED"


def _field(row: Mapping[str, Any], name: str) -> Any:
    for key in FIELD_ALIASES[name]:
        value = row.get(key)
        if value is not None:
            return value
    return None


def normalize_team_name(raw: Any, team_map: Mapping[str, str]) -> Optional[str]:
    """
    Map an upstream team name to its short display name.

    Placeholders collapse to "TBD"; otherwise the first alias key found as a
    case-insensitive substring wins, and unknown names lose their generic
    words ("Esports", "Gaming", ...). Blank names return None.
    """
    if raw is None:
        return None
    name = str(raw).strip()
    if not name:
        return None
    upper = name.upper()
    if any(token in upper for token in PLACEHOLDER_TOKENS):
        return TBD
    for alias, short in team_map.items():
        if alias.upper() in upper:
            return short
    cleaned = re.sub(r"\s+", " ", NOISE_WORDS.sub("", name)).strip()
    return cleaned or name


def parse_score(value: Any) -> int:
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        return 0


def parse_best_of(value: Any) -> int:
    try:
        bo = int(str(value).strip())
    except (TypeError, ValueError):
        return 3
    return bo if bo > 0 else 3


def is_full_length(best_of: int, score1: int, score2: int) -> bool:
    """True when a decided series went the maximum number of games."""
    loser = min(score1, score2)
    if best_of == 3:
        return loser == (best_of - 1) // 2
    if best_of == 5:
        return loser == 2
    return False


@dataclass(frozen=True)
class MatchOutcome:
    """Classification of one raw row."""

    score1: int
    score2: int
    best_of: int
    is_finished: bool
    is_live: bool
    is_full: bool


def classify_match(row: Mapping[str, Any]) -> MatchOutcome:
    raw1 = _field(row, "score1")
    raw2 = _field(row, "score2")
    s1, s2 = parse_score(raw1), parse_score(raw2)
    bo = parse_best_of(_field(row, "best_of"))

    finished = max(s1, s2) >= math.ceil(bo / 2)
    score_present = raw1 not in (None, "") or raw2 not in (None, "")
    live = not finished and (s1 > 0 or s2 > 0 or score_present)
    return MatchOutcome(
        score1=s1,
        score2=s2,
        best_of=bo,
        is_finished=finished,
        is_live=live,
        is_full=finished and is_full_length(bo, s1, s2),
    )


def block_name_for(row: Mapping[str, Any]) -> str:
    """Display group for the schedule: Tab, falling back to Round for bracket tabs."""
    block = (_field(row, "tab") or "").strip()
    if not block or block in GENERIC_TABS:
        round_name = (_field(row, "round") or "").strip()
        if round_name:
            block = round_name
    return block


def snap_hour(hour: int, slots: Optional[List[int]]) -> int:
    if not slots:
        return hour
    for slot in slots:
        if hour <= slot:
            return slot
    return slots[-1]


def _new_region_grid(source: TournamentSource) -> Dict[Any, Dict[int, GridCell]]:
    buckets: List[Any] = list(source.time_slots or []) + [TOTAL_BUCKET]
    return {b: _new_row() for b in buckets}


def _new_row() -> Dict[int, GridCell]:
    return {d: GridCell() for d in range(GRID_WEEKDAYS)}


def _ms(dt: datetime) -> int:
    return int(dt.timestamp() * 1000)


class _TournamentPass:
    """Accumulates one tournament's rows; helper for run_full_analysis."""

    def __init__(self, source: TournamentSource, team_map: Mapping[str, str], today: date):
        self.source = source
        self.team_map = team_map
        self.today = today
        self.stats: Dict[str, TeamStats] = {}
        self.debug = TournamentDebug()
        self.matches_today = 0
        self.pending_today = 0
        self.max_ts = 0
        self.grid_rows: List[tuple] = []  # (hour bucket, weekday, match dict, is_full)
        self.future: Dict[str, List[ScheduleEntry]] = {}

    def _team(self, name: str) -> TeamStats:
        if name not in self.stats:
            self.stats[name] = TeamStats(name=name)
        return self.stats[name]

    def add(self, row: Mapping[str, Any]):
        t1 = normalize_team_name(_field(row, "team1"), self.team_map)
        t2 = normalize_team_name(_field(row, "team2"), self.team_map)
        if not t1 or not t2:
            self.debug.skipped += 1
            return

        team1, team2 = self._team(t1), self._team(t2)
        outcome = classify_match(row)
        s1, s2 = outcome.score1, outcome.score2

        dt = parse_match_datetime(_field(row, "datetime"))
        ts = 0
        date_display = "-"
        local: Optional[datetime] = None
        if dt is not None:
            ts = _ms(dt)
            local = dt.astimezone(CST)
            date_display = local.strftime("%m-%d %H:%M")
            self._schedule(row, local, t1, t2, outcome)

        if outcome.is_live:
            res1 = res2 = "LIVE"
        elif outcome.is_finished:
            res1 = "W" if s1 > s2 else "L"
            res2 = "W" if s2 > s1 else "L"
        else:
            res1 = res2 = "PENDING"

        team1.history.append(HistoryEntry(
            date=date_display, opponent=t2, score=f"{s1}-{s2}", result=res1,
            best_of=outcome.best_of, full=outcome.is_full, ts=ts,
        ))
        team2.history.append(HistoryEntry(
            date=date_display, opponent=t1, score=f"{s2}-{s1}", result=res2,
            best_of=outcome.best_of, full=outcome.is_full, ts=ts,
        ))

        if not outcome.is_finished:
            self.debug.pending += 1
            return

        self.debug.processed += 1
        self._count(team1, team2, outcome)

        if local is not None:
            for team in (team1, team2):
                team.last_match_ts = max(team.last_match_ts, ts)
            self.max_ts = max(self.max_ts, ts)
            match = {
                "date": local.strftime("%m-%d"),
                "team1": t1,
                "team2": t2,
                "score": f"{s1}-{s2}",
                "full": outcome.is_full,
            }
            bucket = snap_hour(local.hour, self.source.time_slots)
            self.grid_rows.append((bucket, local.weekday(), match, outcome.is_full))

    def _count(self, team1: TeamStats, team2: TeamStats, outcome: MatchOutcome):
        s1, s2, bo = outcome.score1, outcome.score2, outcome.best_of
        winner, loser = (team1, team2) if s1 > s2 else (team2, team1)

        for team in (team1, team2):
            team.series_total += 1
            team.games_total += s1 + s2
        winner.series_won += 1
        team1.games_won += s1
        team2.games_won += s2

        for team in (team1, team2):
            if bo == 3:
                team.bo3_total += 1
                if outcome.is_full:
                    team.bo3_full += 1
            elif bo == 5:
                team.bo5_total += 1
                if outcome.is_full:
                    team.bo5_full += 1

        winner.record_win()
        loser.record_loss()

    def _schedule(self, row, local: datetime, t1: str, t2: str, outcome: MatchOutcome):
        match_day = local.date()
        if match_day < self.today:
            return
        if match_day == self.today:
            self.matches_today += 1
            if not outcome.is_finished:
                self.pending_today += 1
        self.future.setdefault(match_day.isoformat(), []).append(ScheduleEntry(
            time=local.strftime("%H:%M"),
            team1=t1,
            team2=t2,
            score1=outcome.score1,
            score2=outcome.score2,
            best_of=outcome.best_of,
            is_finished=outcome.is_finished,
            is_live=outcome.is_live,
            region=self.source.region,
            tournament_slug=self.source.slug,
            tournament_index=self.source.index,
            block_name=block_name_for(row),
        ))


def _build_grid(passes: List[_TournamentPass]) -> Dict[str, Any]:
    grid: Dict[str, Any] = {}
    for tp in passes:
        region = tp.source.region or tp.source.slug
        region_grid = grid.setdefault(region, _new_region_grid(tp.source))
        for bucket, weekday, match, is_full in tp.grid_rows:
            row = region_grid.setdefault(bucket, _new_row())
            for cell_row in (row, region_grid[TOTAL_BUCKET]):
                cell_row[weekday].add(match, is_full)
                cell_row[GRID_WEEKDAYS - 1].add(match, is_full)
    grid[ALL_REGION] = _new_row()
    for tp in passes:
        for _, weekday, match, is_full in tp.grid_rows:
            grid[ALL_REGION][weekday].add(match, is_full)
            grid[ALL_REGION][GRID_WEEKDAYS - 1].add(match, is_full)
    # Stable bucket order: hours ascending, Total last
    for region, rows in grid.items():
        if region == ALL_REGION:
            continue
        hours = sorted(b for b in rows if b != TOTAL_BUCKET)
        grid[region] = {**{h: rows[h] for h in hours}, TOTAL_BUCKET: rows[TOTAL_BUCKET]}
    return grid


def _status_text(passes: List[_TournamentPass], next_states: Dict[str, PollState]) -> str:
    with_matches = [tp for tp in passes if tp.matches_today > 0]
    if not with_matches:
        return STATUS_NO_MATCHES
    if any(tp.pending_today > 0 for tp in with_matches):
        return STATUS_ONGOING
    if all(phase_of(next_states[tp.source.slug]) is PollPhase.DORMANT for tp in with_matches):
        return STATUS_FINISHED
    return STATUS_VERIFYING


def run_full_analysis(
    raw_matches: Mapping[str, List[Mapping[str, Any]]],
    runtime_config: RuntimeConfig,
    previous_states: Mapping[str, PollState],
    today: date,
    refreshed: Optional[Mapping[str, int]] = None,
    schedule_days: int = 4,
) -> AnalysisResult:
    """
    Recompute every derived statistic from the raw rows.

    Args:
        raw_matches: Raw MatchSchedule rows by tournament slug
        runtime_config: Tournament roster and team alias map
        previous_states: PollState by slug from the previous run
        today: Local (UTC+8) reference date for "today" and future matches
        refreshed: Epoch ms of this run's successful fetch, by slug
        schedule_days: Number of upcoming dates kept in the schedule

    Returns:
        AnalysisResult; identical inputs give an identical result
    """
    refreshed = refreshed or {}
    passes: List[_TournamentPass] = []

    for source in runtime_config.tournaments:
        tp = _TournamentPass(source, runtime_config.team_map, today)
        rows = raw_matches.get(source.slug) or []
        tp.debug.raw = len(rows)
        for row in rows:
            tp.add(row)
        for team in tp.stats.values():
            # Stable sort keeps upstream order for equal timestamps
            team.history.sort(key=lambda h: h.ts, reverse=True)
        passes.append(tp)

    next_states: Dict[str, PollState] = {}
    for tp in passes:
        slug = tp.source.slug
        next_states[slug] = next_poll_state(
            previous_states.get(slug) or PollState(),
            pending_today=tp.pending_today > 0,
            refreshed_at=refreshed.get(slug),
        )

    future: Dict[str, List[ScheduleEntry]] = {}
    for tp in passes:
        for day, entries in tp.future.items():
            future.setdefault(day, []).extend(entries)
    schedule = {
        day: sorted(future[day], key=lambda e: (e.tournament_index, e.time))
        for day in sorted(future)[:schedule_days]
    }

    result = AnalysisResult(
        team_stats={tp.source.slug: tp.stats for tp in passes},
        time_grid=_build_grid(passes),
        debug_info={tp.source.slug: tp.debug for tp in passes},
        max_date_ts=max((tp.max_ts for tp in passes), default=0),
        grand_total=sum(tp.debug.processed for tp in passes),
        status_text=_status_text(passes, next_states),
        schedule=schedule,
        poll_states=next_states,
    )

    logger.debug("Analysis complete", extra={
        "grand_total": result.grand_total,
        "tournaments": len(passes),
        "schedule_days": len(schedule),
        "status": result.status_text,
    })
    return result
