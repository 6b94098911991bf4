"""Cloud-synced focus timer controller.

Owns the authoritative in-memory TimerState. Every user intent goes through the same protocol: apply the normalized
next state locally (and to the cache) right away, PATCH it to the server tagged with a local version number, then
adopt the server's copy only if no newer intent was issued in the meantime. Replies that lose that race are dropped
on arrival; nothing is ever cancelled.

Completion is detected client side. While a countdown runs, a 1 Hz QTimer re-projects the display and checks for
zero; a single in-flight flag makes the finalizer (stop, stats increment, celebration) run once per session.
"""

from PySide6.QtCore import QObject, QTimer, Signal
from ft.common.logger import log
from ft.core.errors import STATS_SIGN_IN, TIMER_SIGN_IN, network_error
from ft.core.projector import project
from ft.core.timer_state import (
    COUNTDOWN,
    COUNTUP,
    MAX_SECONDS,
    MIN_SECONDS,
    TimerState,
    default_timer_state,
    empty_stats,
    normalize_stats,
    normalize_timer_state,
)
from ft.net.focus_api import COMPLETE_SESSION_PATH, STATS_PATH, TIMER_STATE_PATH
from ft.util import clamp, now_utc, round_half_up, to_number

TICK_INTERVAL_MS = 1000

IDLE = "idle"
RUNNING = "running"
FINALIZING = "finalizing"


class FocusTimerController(QObject):
    state_changed = Signal(object)        # TimerState
    display_changed = Signal(int)         # projected seconds
    stats_changed = Signal(object)        # Stats
    timer_error_changed = Signal(object)  # SyncError | None
    stats_error_changed = Signal(object)  # SyncError | None
    session_completed = Signal(int)       # minutes credited

    def __init__(self, api, timer_cache, stats_cache, user_provider, now_fn=now_utc,
                 tick_interval_ms=TICK_INTERVAL_MS, parent=None):
        super().__init__(parent)
        self.api = api
        self.timer_cache = timer_cache
        self.stats_cache = stats_cache
        self.user_provider = user_provider
        self.now_fn = now_fn

        self._state = default_timer_state()
        self._stats = empty_stats()
        self.timer_error = None
        self.stats_error = None

        # Bumped before every write; a reply is only adopted if it still matches.
        self._version = 0
        self._stats_version = 0
        # Held from the zero-crossing until the finalizer has fully run.
        self._finalizing = False
        # Bumped on sign-out. A finalizer started under an older generation must not finish.
        self._finalize_generation = 0

        self._ticker = QTimer(self)
        self._ticker.setInterval(tick_interval_ms)
        self._ticker.timeout.connect(self.tick)

    # ------------------------------------------------------------------ #
    #  Read side                                                           #
    # ------------------------------------------------------------------ #

    @property
    def state(self) -> TimerState:
        return self._state

    @property
    def stats(self):
        return self._stats

    @property
    def phase(self):
        if self._finalizing:
            return FINALIZING
        return RUNNING if self._state.is_active else IDLE

    @property
    def ticking(self):
        return self._ticker.isActive()

    def display_seconds(self, now=None):
        return project(self._state, now or self.now_fn())

    # ------------------------------------------------------------------ #
    #  Intents                                                             #
    # ------------------------------------------------------------------ #

    def start(self):
        state = self._state
        if state.is_active:
            return state
        current = state.current_seconds
        if state.mode == COUNTDOWN and current <= 0:
            current = state.initial_seconds
        return self._persist(state.evolve(current_seconds=current, is_active=True, started_at=self.now_fn()))

    def pause(self):
        state = self._state
        if not state.is_active:
            return state
        # Freeze the elapsed time into the checkpoint
        frozen = project(state, self.now_fn())
        return self._persist(state.evolve(current_seconds=frozen, is_active=False, started_at=None))

    def toggle(self):
        return self.pause() if self._state.is_active else self.start()

    def reset(self):
        state = self._state
        current = state.initial_seconds if state.mode == COUNTDOWN else 0
        return self._persist(state.evolve(current_seconds=current, is_active=False, started_at=None))

    def set_duration(self, minutes):
        state = self._state
        if state.is_active:
            log.debug("Ignoring duration change while the timer is running")
            return state
        minutes = to_number(minutes)
        if minutes is None:
            return state
        # Bound the minutes first, a huge finite value would overflow to inf once scaled
        minutes = clamp(minutes, MIN_SECONDS / 60, MAX_SECONDS / 60)
        seconds = clamp(round_half_up(minutes * 60), MIN_SECONDS, MAX_SECONDS)
        current = seconds if state.mode == COUNTDOWN else min(state.current_seconds, seconds)
        return self._persist(state.evolve(initial_seconds=seconds, current_seconds=current,
                                          is_active=False, started_at=None))

    # Nudges the configured duration by whole minutes, kept within 1..120.
    def adjust_duration(self, delta_minutes):
        current_minutes = round_half_up(self._state.initial_seconds / 60)
        return self.set_duration(clamp(current_minutes + int(delta_minutes), 1, 120))

    # Switching modes always stops the timer.
    def switch_mode(self, mode):
        state = self._state
        mode = COUNTUP if mode == COUNTUP else COUNTDOWN
        initial = clamp(state.initial_seconds, MIN_SECONDS, MAX_SECONDS)
        return self._persist(TimerState(
            mode=mode,
            initial_seconds=initial,
            current_seconds=initial if mode == COUNTDOWN else 0,
            is_active=False,
            started_at=None,
            updated_at=state.updated_at,
        ))

    # ------------------------------------------------------------------ #
    #  Persistence protocol                                                #
    # ------------------------------------------------------------------ #

    def _persist(self, next_state, silent=False, on_done=None):
        normalized = normalize_timer_state(next_state)
        self._apply(normalized)

        user_id = self.user_provider()
        if not user_id:
            if not silent:
                self._set_timer_error(TIMER_SIGN_IN)
            if on_done:
                on_done(normalized)
            return normalized

        self.timer_cache.store(user_id, normalized)
        self._version += 1
        version = self._version

        def on_success(raw):
            saved = normalize_timer_state(raw if raw is not None else normalized)
            if version != self._version:
                log.debug(f"Discarding timer-state reply v{version}, superseded by v{self._version}")
            else:
                self._apply(saved)
                self.timer_cache.store(user_id, saved)
                self._set_timer_error(None)
            if on_done:
                on_done(saved)

        def on_error(error):
            if version != self._version:
                log.debug(f"Discarding timer-state failure v{version}, superseded by v{self._version}")
            else:
                # Keep the optimistic state on screen; the next sync reconciles it
                log.error(f"Failed to sync focus timer state (v{version}): {error}")
                if not silent:
                    self._set_timer_error(network_error(error, "Failed to sync the focus timer.", TIMER_STATE_PATH))
            if on_done:
                on_done(normalized)

        self.api.patch_timer_state(normalized.to_payload(), on_success, on_error)
        return normalized

    def _apply(self, state):
        self._state = state
        self.state_changed.emit(state)
        if state.is_active and not self._ticker.isActive():
            self._ticker.start()
        elif not state.is_active and self._ticker.isActive():
            self._ticker.stop()
        self.display_changed.emit(project(state, self.now_fn()))

    def _set_timer_error(self, error):
        if error != self.timer_error:
            self.timer_error = error
            self.timer_error_changed.emit(error)

    def _set_stats(self, stats):
        self._stats = stats
        self.stats_changed.emit(stats)

    def _set_stats_error(self, error):
        if error != self.stats_error:
            self.stats_error = error
            self.stats_error_changed.emit(error)

    # ------------------------------------------------------------------ #
    #  Tick and completion                                                 #
    # ------------------------------------------------------------------ #

    def tick(self, now=None):
        now = now or self.now_fn()
        self.display_changed.emit(project(self._state, now))
        self.check_completion(now)

    # Level-triggered: safe to call on every tick. Returns True only on the call that starts finalizing.
    def check_completion(self, now=None):
        state = self._state
        if self._finalizing or not self.user_provider():
            return False
        if state.mode != COUNTDOWN or not state.is_active:
            return False
        if project(state, now or self.now_fn()) > 0:
            return False
        self._finalizing = True
        self._finalize(state)
        return True

    def _finalize(self, snapshot):
        user_id = self.user_provider()
        # Credit the session's configured length, the live value is already 0
        minutes = max(1, round_half_up(snapshot.initial_seconds / 60))
        log.info(f"Focus session completed for user '{user_id}', crediting {minutes} minute(s)")
        self._stats_version += 1
        generation = self._finalize_generation

        def on_stats(raw):
            if self.user_provider() == user_id:
                stats = normalize_stats(raw)
                self._set_stats(stats)
                self.stats_cache.store(user_id, stats)
                self._set_stats_error(None)
            self._complete(minutes, generation)

        def on_stats_error(error):
            log.error(f"Failed to record completed focus session: {error}")
            if self.user_provider() == user_id:
                self._set_stats_error(network_error(error, "Failed to sync focus stats.", COMPLETE_SESSION_PATH))
            self._complete(minutes, generation)

        # Stats only go out once the stop has round-tripped, whatever its outcome
        def after_stop(_saved):
            if generation != self._finalize_generation:
                log.info(f"Signed out mid-finalize, not crediting the session for user '{user_id}'")
                return
            self.api.complete_session(minutes, on_stats, on_stats_error)

        self._persist(snapshot.evolve(current_seconds=0, is_active=False, started_at=None),
                      silent=True, on_done=after_stop)

    def _complete(self, minutes, generation):
        # The flag now belongs to whoever signed in since; leave it alone
        if generation != self._finalize_generation:
            return
        self.session_completed.emit(minutes)
        self._finalizing = False

    # ------------------------------------------------------------------ #
    #  Loading and sign-out                                                #
    # ------------------------------------------------------------------ #

    # Mount: show whatever is cached immediately, then refresh both timer and stats from the server.
    def load(self):
        user_id = self.user_provider()
        if not user_id:
            self._apply(default_timer_state())
            self._set_stats(empty_stats())
            self._set_timer_error(TIMER_SIGN_IN)
            self._set_stats_error(STATS_SIGN_IN)
            return
        self._load_timer(user_id)
        self._load_stats(user_id)

    def _load_timer(self, user_id):
        cached = self.timer_cache.get_cached(user_id)
        if cached is not None:
            self._apply(normalize_timer_state(cached))
        self._set_timer_error(None)
        version = self._version

        def on_success(value):
            if self.user_provider() != user_id or version != self._version:
                log.debug("Discarding timer-state load, a newer local change won")
                return
            self._apply(normalize_timer_state(value))
            log.info(f"Loaded focus timer state for user '{user_id}'")

        def on_error(error):
            if self.user_provider() != user_id or version != self._version:
                return
            log.error(f"Failed to load focus timer state: {error}")
            if cached is None:
                self._set_timer_error(network_error(error, "Failed to load the focus timer.", TIMER_STATE_PATH))
                self._apply(default_timer_state())

        self.timer_cache.fetch(user_id, on_success, on_error, force=cached is not None)

    def _load_stats(self, user_id):
        cached = self.stats_cache.get_cached(user_id)
        if cached is not None:
            self._set_stats(normalize_stats(cached))
        self._set_stats_error(None)
        version = self._stats_version

        def on_success(value):
            if self.user_provider() != user_id or version != self._stats_version:
                return
            self._set_stats(normalize_stats(value))

        def on_error(error):
            if self.user_provider() != user_id or version != self._stats_version:
                return
            log.error(f"Failed to load focus stats: {error}")
            if cached is None:
                self._set_stats_error(network_error(error, "Failed to load focus stats.", STATS_PATH))
                self._set_stats(empty_stats())

        self.stats_cache.fetch(user_id, on_success, on_error, force=cached is not None)

    def sign_out(self):
        # Anything still in flight belongs to the previous user
        self._version += 1
        self._stats_version += 1
        self._finalize_generation += 1
        self._finalizing = False
        self.timer_cache.clear()
        self.stats_cache.clear()
        self._set_timer_error(None)
        self._set_stats_error(None)
        self._set_stats(empty_stats())
        self._apply(default_timer_state())
        log.info("Signed out, focus timer state and caches cleared")
