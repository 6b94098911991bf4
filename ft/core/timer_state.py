"""Canonical focus timer and stats shapes, plus the normalizers every inbound value goes through.

Normalization is total: server payloads, cache entries and locally proposed states are all coerced into a valid
shape instead of raising. Applying it twice gives the same result as applying it once.
"""

from collections.abc import Mapping
from dataclasses import dataclass, replace
from datetime import datetime

from ft.util import clamp, parse_timestamp, round_half_up, to_number

COUNTDOWN = "countdown"
COUNTUP = "countup"

MIN_SECONDS = 60
MAX_SECONDS = 2 * 60 * 60
MAX_CURRENT_SECONDS = 24 * 60 * 60
DEFAULT_SECONDS = 25 * 60


@dataclass(frozen=True)
class TimerState:
    """One user's persisted timer.

    ``current_seconds`` is the checkpoint value at ``started_at``; while active the displayed time must always be
    recomputed from it (see ``ft.core.projector.project``).
    """
    mode: str = COUNTDOWN
    initial_seconds: int = DEFAULT_SECONDS
    current_seconds: int = DEFAULT_SECONDS
    is_active: bool = False
    started_at: datetime | None = None
    updated_at: str | None = None

    def to_payload(self) -> dict:
        return {
            "mode": self.mode,
            "initialSeconds": self.initial_seconds,
            "currentSeconds": self.current_seconds,
            "isActive": self.is_active,
            "startedAt": self.started_at.isoformat() if self.started_at else None,
            "updatedAt": self.updated_at,
        }

    def evolve(self, **changes) -> "TimerState":
        return replace(self, **changes)


@dataclass(frozen=True)
class Stats:
    today_focus_time: int = 0   # minutes
    today_sessions: int = 0
    streak: int = 0
    total_sessions: int = 0

    def to_payload(self) -> dict:
        return {
            "todayFocusTime": self.today_focus_time,
            "todaySessions": self.today_sessions,
            "streak": self.streak,
            "totalSessions": self.total_sessions,
        }


def default_timer_state() -> TimerState:
    return TimerState()

def empty_stats() -> Stats:
    return Stats()


# Reads a field by its wire (camelCase) name, falling back to the python attribute name.
def _pick(raw, wire_key, attr_key):
    if raw is None:
        return None
    if isinstance(raw, Mapping):
        if wire_key in raw:
            return raw[wire_key]
        return raw.get(attr_key)
    return getattr(raw, attr_key, None)


def normalize_timer_state(raw=None) -> TimerState:
    """Coerce ``raw`` (None, a wire dict, or a TimerState) into a fully valid TimerState."""
    mode = COUNTUP if _pick(raw, "mode", "mode") == COUNTUP else COUNTDOWN

    initial_raw = to_number(_pick(raw, "initialSeconds", "initial_seconds"))
    if initial_raw is not None and initial_raw > 0:
        initial_seconds = clamp(round_half_up(initial_raw), MIN_SECONDS, MAX_SECONDS)
    else:
        initial_seconds = DEFAULT_SECONDS

    current_raw = to_number(_pick(raw, "currentSeconds", "current_seconds"))
    if current_raw is not None and current_raw >= 0:
        current_seconds = clamp(round_half_up(current_raw), 0, MAX_CURRENT_SECONDS)
    else:
        current_seconds = initial_seconds if mode == COUNTDOWN else 0
    if mode == COUNTDOWN:
        current_seconds = min(current_seconds, initial_seconds)

    is_active = _pick(raw, "isActive", "is_active") is True
    started_at = parse_timestamp(_pick(raw, "startedAt", "started_at")) if is_active else None
    # An active timer with no usable baseline can't be projected, so it's treated as paused at its checkpoint.
    if started_at is None:
        is_active = False

    updated_at = _pick(raw, "updatedAt", "updated_at")

    return TimerState(
        mode=mode,
        initial_seconds=initial_seconds,
        current_seconds=current_seconds,
        is_active=is_active,
        started_at=started_at,
        updated_at=str(updated_at) if updated_at else None,
    )


def _counter(value):
    number = to_number(value)
    if number is None or number < 0:
        return 0
    return round_half_up(number)

def normalize_stats(raw=None) -> Stats:
    """Coerce a stats payload; anything negative, non-finite or missing becomes 0."""
    return Stats(
        today_focus_time=_counter(_pick(raw, "todayFocusTime", "today_focus_time")),
        today_sessions=_counter(_pick(raw, "todaySessions", "today_sessions")),
        streak=_counter(_pick(raw, "streak", "streak")),
        total_sessions=_counter(_pick(raw, "totalSessions", "total_sessions")),
    )
