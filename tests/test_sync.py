"""Tests for ft.core.sync: intents, the versioned persistence protocol, loading, sign-out and completion.

Requests are resolved by hand through QueuedTransport, so replies can be delivered late and out of order.
"""

from fakes import FakeClock, QueuedTransport, ensure_qt_app
import unittest
from datetime import timedelta

from ft.core.cache import make_stats_cache, make_timer_cache
from ft.core.errors import ErrorKind
from ft.core.sync import FINALIZING, IDLE, RUNNING, FocusTimerController
from ft.core.timer_state import COUNTDOWN, COUNTUP, Stats, default_timer_state
from ft.net.client import ApiError
from ft.net.focus_api import COMPLETE_SESSION_PATH, STATS_PATH, TIMER_STATE_PATH, FocusApi


def setUpModule():
    ensure_qt_app()


class ControllerTestCase(unittest.TestCase):

    def setUp(self):
        self.clock = FakeClock()
        self.transport = QueuedTransport()
        self.api = FocusApi(self.transport)
        self.timer_cache = make_timer_cache(self.api, clock=self.clock.monotonic)
        self.stats_cache = make_stats_cache(self.api, clock=self.clock.monotonic)
        self.user = "u1"
        self.controller = FocusTimerController(self.api, self.timer_cache, self.stats_cache,
                                               user_provider=lambda: self.user, now_fn=self.clock.now)
        self.completed = []
        self.controller.session_completed.connect(self.completed.append)

    def tearDown(self):
        self.controller.sign_out()

    def patches(self):
        return self.transport.matching("PATCH", TIMER_STATE_PATH)

    def take_patch(self):
        return self.transport.take("PATCH", TIMER_STATE_PATH)


# ──────────────────────────────────────────────────────────────────────────
# Intents
# ──────────────────────────────────────────────────────────────────────────

class TestIntents(ControllerTestCase):

    def test_start_applies_optimistically(self):
        state = self.controller.start()
        self.assertTrue(state.is_active)
        self.assertEqual(state.started_at, self.clock.now())
        self.assertEqual(self.controller.state, state)
        self.assertEqual(self.timer_cache.get_cached("u1"), state)
        request = self.take_patch()
        self.assertIs(request.body["isActive"], True)
        self.assertEqual(request.body["startedAt"], self.clock.now().isoformat())

    def test_start_when_active_is_noop(self):
        self.controller.start()
        self.controller.start()
        self.assertEqual(len(self.patches()), 1)

    def test_start_rearms_finished_countdown(self):
        self.controller.load()
        self.transport.take("GET", TIMER_STATE_PATH).succeed(
            {"timerState": {"initialSeconds": 600, "currentSeconds": 0}})
        state = self.controller.start()
        self.assertEqual(state.current_seconds, 600)

    def test_pause_freezes_elapsed(self):
        self.controller.start()
        self.clock.advance(90, milliseconds=700)
        state = self.controller.pause()
        self.assertFalse(state.is_active)
        self.assertIsNone(state.started_at)
        self.assertEqual(state.current_seconds, 1410)

    def test_pause_when_idle_is_noop(self):
        self.controller.pause()
        self.assertEqual(self.patches(), [])

    def test_toggle(self):
        self.assertTrue(self.controller.toggle().is_active)
        self.assertFalse(self.controller.toggle().is_active)

    def test_reset_countdown_and_countup(self):
        self.controller.start()
        self.clock.advance(100)
        state = self.controller.reset()
        self.assertEqual((state.current_seconds, state.is_active), (1500, False))

        self.controller.switch_mode(COUNTUP)
        self.controller.start()
        self.clock.advance(100)
        self.controller.pause()
        self.assertEqual(self.controller.state.current_seconds, 100)
        self.assertEqual(self.controller.reset().current_seconds, 0)

    def test_set_duration(self):
        state = self.controller.set_duration(45)
        self.assertEqual((state.initial_seconds, state.current_seconds), (2700, 2700))
        self.assertEqual(self.controller.set_duration(0.5).initial_seconds, 60)
        self.assertEqual(self.controller.set_duration(500).initial_seconds, 7200)

    def test_set_duration_huge_values_clamp(self):
        self.assertEqual(self.controller.set_duration(1e307).initial_seconds, 7200)
        self.assertEqual(self.controller.set_duration(-1e307).initial_seconds, 60)
        self.assertEqual(len(self.patches()), 2)

    def test_set_duration_rejected_while_active(self):
        self.controller.start()
        state = self.controller.set_duration(45)
        self.assertTrue(state.is_active)
        self.assertEqual(state.initial_seconds, 1500)
        self.assertEqual(len(self.patches()), 1)

    def test_set_duration_countup_keeps_smaller_current(self):
        self.controller.switch_mode(COUNTUP)
        self.controller.start()
        self.clock.advance(300)
        self.controller.pause()
        self.assertEqual(self.controller.set_duration(10).current_seconds, 300)
        self.assertEqual(self.controller.set_duration(2).current_seconds, 120)

    def test_adjust_duration(self):
        self.assertEqual(self.controller.adjust_duration(1).initial_seconds, 26 * 60)
        self.controller.set_duration(120)
        self.assertEqual(self.controller.adjust_duration(5).initial_seconds, 7200)
        self.controller.set_duration(1)
        self.assertEqual(self.controller.adjust_duration(-3).initial_seconds, 60)

    def test_switch_mode_forces_stop(self):
        self.controller.start()
        state = self.controller.switch_mode(COUNTUP)
        self.assertEqual(state.mode, COUNTUP)
        self.assertFalse(state.is_active)
        self.assertEqual(state.current_seconds, 0)
        state = self.controller.switch_mode("anything else")
        self.assertEqual(state.mode, COUNTDOWN)
        self.assertEqual(state.current_seconds, state.initial_seconds)

    def test_ticker_runs_only_while_active(self):
        self.assertFalse(self.controller.ticking)
        self.controller.start()
        self.assertTrue(self.controller.ticking)
        self.assertEqual(self.controller.phase, RUNNING)
        self.controller.pause()
        self.assertFalse(self.controller.ticking)
        self.assertEqual(self.controller.phase, IDLE)

    def test_tick_emits_projected_display(self):
        shown = []
        self.controller.display_changed.connect(shown.append)
        self.controller.start()
        self.clock.advance(10)
        self.controller.tick()
        self.assertEqual(shown[-1], 1490)
        self.assertEqual(self.controller.display_seconds(), 1490)


# ──────────────────────────────────────────────────────────────────────────
# Persistence protocol
# ──────────────────────────────────────────────────────────────────────────

class TestPersistence(ControllerTestCase):

    def test_server_reply_is_adopted(self):
        self.controller.start()
        self.take_patch().echo_timer_state(updated_at="2026-03-01T09:00:05Z")
        self.assertEqual(self.controller.state.updated_at, "2026-03-01T09:00:05Z")
        self.assertEqual(self.timer_cache.get_cached("u1").updated_at, "2026-03-01T09:00:05Z")

    def test_stale_start_reply_cannot_resurrect_paused_timer(self):
        self.controller.start()
        self.clock.advance(5)
        self.controller.pause()
        start_request, pause_request = self.patches()

        start_request.echo_timer_state()
        self.assertFalse(self.controller.state.is_active)
        pause_request.echo_timer_state()
        self.assertFalse(self.controller.state.is_active)
        self.assertEqual(self.controller.state.current_seconds, 1495)
        self.assertFalse(self.timer_cache.get_cached("u1").is_active)

    def test_replies_arriving_in_reverse_order(self):
        self.controller.start()
        self.controller.pause()
        start_request, pause_request = self.patches()
        pause_request.echo_timer_state()
        start_request.echo_timer_state()
        self.assertFalse(self.controller.state.is_active)

    def test_failure_keeps_optimistic_state_and_reports(self):
        errors = []
        self.controller.timer_error_changed.connect(errors.append)
        self.controller.start()
        self.take_patch().fail(ApiError("Network connection failed", 503))
        self.assertTrue(self.controller.state.is_active)
        self.assertEqual(self.controller.timer_error.kind, ErrorKind.NETWORK)
        self.assertEqual(errors[-1].message, "Network connection failed")

    def test_superseded_failure_is_silent(self):
        self.controller.start()
        self.controller.pause()
        start_request, pause_request = self.patches()
        start_request.fail(ApiError("boom", 500))
        self.assertIsNone(self.controller.timer_error)
        pause_request.echo_timer_state()
        self.assertIsNone(self.controller.timer_error)

    def test_successful_write_clears_previous_error(self):
        self.controller.start()
        self.take_patch().fail(ApiError("boom", 500))
        self.controller.pause()
        self.take_patch().echo_timer_state()
        self.assertIsNone(self.controller.timer_error)

    def test_empty_reply_falls_back_to_sent_state(self):
        sent = self.controller.set_duration(30)
        self.take_patch().succeed({})
        self.assertEqual(self.controller.state, sent)

    def test_missing_route_error_gets_hint(self):
        self.controller.start()
        self.take_patch().fail(ApiError("Route not found: PATCH /api/focus/timer-state", 404))
        self.assertIn("missing the focus endpoints", self.controller.timer_error.message)

    def test_signed_out_user_gets_sign_in_state(self):
        self.user = None
        state = self.controller.start()
        self.assertTrue(state.is_active)
        self.assertEqual(self.transport.requests, [])
        self.assertEqual(self.controller.timer_error.kind, ErrorKind.AUTH_REQUIRED)
        self.assertFalse(self.controller.timer_error.retryable)


# ──────────────────────────────────────────────────────────────────────────
# Loading and sign-out
# ──────────────────────────────────────────────────────────────────────────

class TestLoading(ControllerTestCase):

    def test_load_without_user(self):
        self.user = None
        self.controller.load()
        self.assertEqual(self.controller.state, default_timer_state())
        self.assertEqual(self.controller.timer_error.kind, ErrorKind.AUTH_REQUIRED)
        self.assertEqual(self.controller.stats_error.kind, ErrorKind.AUTH_REQUIRED)
        self.assertEqual(self.transport.requests, [])

    def test_load_fetches_timer_and_stats(self):
        self.controller.load()
        self.transport.take("GET", TIMER_STATE_PATH).succeed(
            {"timerState": {"mode": "countup", "currentSeconds": 30}})
        self.transport.take("GET", STATS_PATH).succeed({"stats": {"todaySessions": 3}})
        self.assertEqual(self.controller.state.mode, COUNTUP)
        self.assertEqual(self.controller.stats.today_sessions, 3)

    def test_load_renders_cache_then_refreshes(self):
        self.timer_cache.store("u1", {"initialSeconds": 900})
        self.controller.load()
        self.assertEqual(self.controller.state.initial_seconds, 900)
        # cached value still forces a refresh
        self.transport.take("GET", TIMER_STATE_PATH).succeed({"timerState": {"initialSeconds": 1200}})
        self.assertEqual(self.controller.state.initial_seconds, 1200)

    def test_load_failure_without_cache_shows_error_and_defaults(self):
        self.controller.load()
        self.transport.take("GET", TIMER_STATE_PATH).fail(ApiError("down", 503))
        self.transport.take("GET", STATS_PATH).fail(ApiError("down", 503))
        self.assertEqual(self.controller.state, default_timer_state())
        self.assertEqual(self.controller.timer_error.kind, ErrorKind.NETWORK)
        self.assertEqual(self.controller.stats_error.kind, ErrorKind.NETWORK)

    def test_load_failure_with_cache_keeps_cached(self):
        self.timer_cache.store("u1", {"initialSeconds": 900})
        self.controller.load()
        self.transport.take("GET", TIMER_STATE_PATH).fail(ApiError("down", 503))
        self.assertEqual(self.controller.state.initial_seconds, 900)
        self.assertIsNone(self.controller.timer_error)

    def test_load_reply_after_local_intent_is_discarded(self):
        self.controller.load()
        self.controller.start()
        self.transport.take("GET", TIMER_STATE_PATH).succeed({"timerState": None})
        self.assertTrue(self.controller.state.is_active)

    def test_sign_out_clears_everything(self):
        self.controller.start()
        self.stats_cache.store("u1", {"totalSessions": 9})
        self.controller.sign_out()
        self.assertIsNone(self.timer_cache.get_cached("u1"))
        self.assertIsNone(self.stats_cache.get_cached("u1"))
        self.assertEqual(self.controller.state, default_timer_state())
        self.assertEqual(self.controller.stats, Stats())
        self.assertFalse(self.controller.ticking)

        # The start PATCH resolving afterwards must not bring the old session back
        self.take_patch().echo_timer_state()
        self.assertEqual(self.controller.state, default_timer_state())


# ──────────────────────────────────────────────────────────────────────────
# Completion
# ──────────────────────────────────────────────────────────────────────────

class TestCompletion(ControllerTestCase):

    def _run_to_zero(self, minutes=None):
        if minutes is not None:
            self.controller.set_duration(minutes)
        self.controller.start()
        self.clock.advance(self.controller.state.initial_seconds)

    def test_completion_fires_once_for_repeated_zero_ticks(self):
        self._run_to_zero()
        for _ in range(3):
            self.controller.tick()
        self.assertEqual(self.controller.phase, FINALIZING)

        # stop write first; stats only go out once it has round-tripped
        self.assertEqual(self.transport.matching("PATCH", COMPLETE_SESSION_PATH), [])
        for request in self.transport.pending("PATCH", TIMER_STATE_PATH):
            request.echo_timer_state()
        self.controller.tick()
        self.assertEqual(len(self.transport.matching("PATCH", COMPLETE_SESSION_PATH)), 1)

    def test_flag_blocks_reentry_while_finalizing(self):
        self._run_to_zero()
        active_at_zero = self.controller.state
        self.assertTrue(self.controller.check_completion())
        # even if an active zero state showed up again mid-finalize, it must not fire twice
        self.controller._apply(active_at_zero)
        self.assertFalse(self.controller.check_completion())
        self.assertEqual(self.controller.phase, FINALIZING)

    def test_stop_state_is_persisted(self):
        self._run_to_zero()
        self.controller.tick()
        stop = self.patches()[-1]
        self.assertEqual(stop.body["currentSeconds"], 0)
        self.assertIs(stop.body["isActive"], False)
        self.assertIsNone(stop.body["startedAt"])
        self.assertFalse(self.controller.state.is_active)
        self.assertFalse(self.controller.ticking)

    def test_stop_failure_is_silent_and_stats_still_sent(self):
        self._run_to_zero()
        self.controller.tick()
        for request in self.transport.pending("PATCH", TIMER_STATE_PATH):
            request.fail(ApiError("boom", 500))
        self.assertIsNone(self.controller.timer_error)
        self.assertEqual(len(self.transport.pending("PATCH", COMPLETE_SESSION_PATH)), 1)

    def test_stats_failure_is_reported_and_flag_released(self):
        self._run_to_zero()
        self.controller.tick()
        for request in self.transport.pending("PATCH", TIMER_STATE_PATH):
            request.echo_timer_state()
        self.transport.take("PATCH", COMPLETE_SESSION_PATH).fail(ApiError("down", 503))
        self.assertEqual(self.controller.stats_error.kind, ErrorKind.NETWORK)
        self.assertEqual(self.controller.phase, IDLE)
        self.assertEqual(self.completed, [25])
        # no automatic retry
        self.assertEqual(len(self.transport.matching("PATCH", COMPLETE_SESSION_PATH)), 1)

    def test_credits_session_duration_rounded(self):
        self._run_to_zero(minutes=1.4)
        self.controller.tick()
        for request in self.transport.pending("PATCH", TIMER_STATE_PATH):
            request.echo_timer_state()
        self.assertEqual(self.transport.take("PATCH", COMPLETE_SESSION_PATH).body, {"focusMinutes": 1})

    def test_countup_never_completes(self):
        self.controller.switch_mode(COUNTUP)
        self.controller.start()
        self.clock.advance(86400)
        self.controller.tick()
        self.assertEqual(self.transport.matching("PATCH", COMPLETE_SESSION_PATH), [])

    def test_not_finalized_without_user(self):
        self.user = None
        self._run_to_zero()
        self.assertFalse(self.controller.check_completion())

    def test_sign_out_mid_finalize_drops_the_session(self):
        self._run_to_zero()
        self.controller.tick()
        self.controller.sign_out()
        for request in self.transport.pending("PATCH", TIMER_STATE_PATH):
            request.echo_timer_state()
        self.assertEqual(self.transport.matching("PATCH", COMPLETE_SESSION_PATH), [])
        self.assertEqual(self.completed, [])
        self.assertEqual(self.controller.phase, IDLE)

    def test_previous_user_stats_reply_keeps_new_finalizer_running(self):
        self._run_to_zero()
        self.controller.tick()
        for request in self.transport.pending("PATCH", TIMER_STATE_PATH):
            request.echo_timer_state()
        stale_complete = self.transport.take("PATCH", COMPLETE_SESSION_PATH)

        self.controller.sign_out()
        self.user = "u2"
        self._run_to_zero()
        self.controller.tick()
        self.assertEqual(self.controller.phase, FINALIZING)

        stale_complete.succeed({"stats": {"todaySessions": 1}})
        self.assertEqual(self.controller.phase, FINALIZING)
        self.assertEqual(self.completed, [])
        self.assertEqual(self.controller.stats.today_sessions, 0)

    def test_can_run_again_after_completion(self):
        self._run_to_zero()
        self.controller.tick()
        for request in self.transport.pending("PATCH", TIMER_STATE_PATH):
            request.echo_timer_state()
        self.transport.take("PATCH", COMPLETE_SESSION_PATH).succeed({"stats": {"todaySessions": 1}})

        state = self.controller.start()
        self.assertEqual(state.current_seconds, 1500)
        self.assertEqual(self.controller.phase, RUNNING)

    def test_fresh_user_end_to_end(self):
        """No prior state -> default 25 min -> run it out -> stats credited with 25 minutes."""
        stats_seen = []
        self.controller.stats_changed.connect(stats_seen.append)
        self.controller.load()
        self.transport.take("GET", TIMER_STATE_PATH).succeed({"timerState": None})
        self.transport.take("GET", STATS_PATH).succeed({"stats": None})
        self.assertEqual(self.controller.state.initial_seconds, 1500)

        self.controller.start()
        self.take_patch().echo_timer_state()
        for _ in range(3):
            self.clock.advance(500)
            self.controller.tick()

        self.take_patch().echo_timer_state()
        complete = self.transport.take("PATCH", COMPLETE_SESSION_PATH)
        self.assertEqual(complete.body, {"focusMinutes": 25})
        complete.succeed({"ok": True, "stats": {"todayFocusTime": 25, "todaySessions": 1, "streak": 1,
                                                "totalSessions": 1}})

        self.assertEqual(self.completed, [25])
        self.assertEqual(self.controller.stats, Stats(25, 1, 1, 1))
        self.assertEqual(stats_seen[-1], Stats(25, 1, 1, 1))
        self.assertEqual(self.stats_cache.get_cached("u1"), Stats(25, 1, 1, 1))
        self.assertEqual(self.controller.state.current_seconds, 0)
        self.assertFalse(self.controller.state.is_active)
        self.assertEqual(self.controller.phase, IDLE)

    def test_late_completion_is_caught_on_next_tick(self):
        """A session that ran out while nobody was ticking is finalized on the next evaluation."""
        self.controller.start()
        self.clock.advance(timedelta(hours=3).total_seconds())
        self.controller.tick()
        self.assertEqual(self.controller.phase, FINALIZING)


if __name__ == "__main__":
    unittest.main()
