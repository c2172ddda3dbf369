"""
Run-scoped state objects.

RunLog collects the operator-facing events of one run; PersistedState is what
the coordinator reads from and hands back to the state store. Both are passed
around explicitly instead of living in module globals.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from refresh.models import PollState
from utils.timeutil import format_cst_short, now_ms

logger = logging.getLogger(__name__)

LEVEL_INFO = "INFO"
LEVEL_SUCCESS = "SUCCESS"
LEVEL_ERROR = "ERROR"


@dataclass
class LogEntry:
    time: str
    level: str
    message: str

    def to_dict(self) -> Dict[str, str]:
        return {"time": self.time, "level": self.level, "message": self.message}


class RunLog:
    """Structured events of one run, mirrored to the Python logger."""

    def __init__(self, clock=now_ms):
        self._clock = clock
        self.entries: List[LogEntry] = []

    def _add(self, level: str, message: str, py_level: int, extra: Optional[Dict[str, Any]]):
        self.entries.append(LogEntry(time=format_cst_short(self._clock()), level=level, message=message))
        logger.log(py_level, message, extra=extra or {})

    def info(self, message: str, **extra):
        self._add(LEVEL_INFO, message, logging.INFO, extra)

    def success(self, message: str, **extra):
        self._add(LEVEL_SUCCESS, message, logging.INFO, extra)

    def error(self, message: str, **extra):
        self._add(LEVEL_ERROR, message, logging.ERROR, extra)

    def export(self) -> List[Dict[str, str]]:
        """Entries newest first, the order the store keeps them in."""
        return [e.to_dict() for e in reversed(self.entries)]

    def __len__(self) -> int:
        return len(self.entries)


def merge_logs(new: List[Dict[str, str]], old: List[Dict[str, str]], cap: int) -> List[Dict[str, str]]:
    """Prepend a run's entries to the stored ones, dropping the oldest beyond cap."""
    return (list(new) + list(old or []))[:cap]


@dataclass
class PersistedState:
    """Everything a run needs from the previous one."""

    raw_matches: Dict[str, List[Dict[str, Any]]] = field(default_factory=dict)
    poll_states: Dict[str, PollState] = field(default_factory=dict)
    grand_total: int = 0
    analysis: Optional[Dict[str, Any]] = None
    update_time: Optional[str] = None

    @classmethod
    def from_store(cls, cache: Optional[Dict[str, Any]], meta: Optional[Dict[str, Any]]) -> "PersistedState":
        cache = cache or {}
        meta = meta or {}
        states = {
            slug: PollState.from_dict(data)
            for slug, data in (meta.get("poll_states") or {}).items()
        }
        return cls(
            raw_matches=dict(cache.get("raw_matches") or {}),
            poll_states=states,
            grand_total=int(meta.get("total") or 0),
            analysis=cache.get("analysis"),
            update_time=cache.get("update_time"),
        )

    def meta_payload(self) -> Dict[str, Any]:
        return {
            "total": self.grand_total,
            "poll_states": {slug: s.to_dict() for slug, s in self.poll_states.items()},
        }
