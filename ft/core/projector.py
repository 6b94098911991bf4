from datetime import datetime, timedelta

from ft.core.timer_state import COUNTDOWN, MAX_CURRENT_SECONDS, TimerState
from ft.util import clamp

_ONE_SECOND = timedelta(seconds=1)


# Turns a stored state plus "now" into the seconds that should be on screen. Pure: the same (state, now) always
# gives the same answer, so the UI can simply call this again every tick.
def project(state: TimerState, now: datetime) -> int:
    base = clamp(state.current_seconds, 0, MAX_CURRENT_SECONDS)
    if not state.is_active or state.started_at is None:
        return min(base, state.initial_seconds) if state.mode == COUNTDOWN else base

    elapsed = max(0, (now - state.started_at) // _ONE_SECOND)
    if state.mode == COUNTDOWN:
        return clamp(base - elapsed, 0, state.initial_seconds)
    return clamp(base + elapsed, 0, MAX_CURRENT_SECONDS)


# Format displayed seconds as MM:SS, switching to HH:MM:SS once past an hour. Negative values clamp to zero.
def format_clock(seconds):
    seconds = max(0, int(seconds))
    h, rem = divmod(seconds, 3600)
    m, s = divmod(rem, 60)
    if h:
        return f"{h:02d}:{m:02d}:{s:02d}"
    return f"{m:02d}:{s:02d}"


# Fraction of the progress ring to fill, in [0, 1].
def progress(state: TimerState, seconds: int) -> float:
    if state.initial_seconds <= 0:
        return 0.0
    if state.mode == COUNTDOWN:
        done = (state.initial_seconds - seconds) / state.initial_seconds
    else:
        done = seconds / state.initial_seconds
    return clamp(done, 0.0, 1.0)
