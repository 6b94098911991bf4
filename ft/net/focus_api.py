TIMER_STATE_PATH = "/focus/timer-state"
STATS_PATH = "/focus/stats"
COMPLETE_SESSION_PATH = "/focus/stats/complete-session"


# Thin wrapper over a JSON transport (anything with callback-style get/patch) that knows the focus endpoints and
# strips their response envelopes. Payload validation is left to the normalizers.
class FocusApi:

    def __init__(self, transport):
        self.transport = transport

    # GET timer-state -> { timerState: TimerState | null }. A null state reaches on_success as None.
    def get_timer_state(self, on_success, on_error):
        self.transport.get(TIMER_STATE_PATH, lambda payload: on_success(_field(payload, "timerState")), on_error)

    # PATCH timer-state -> { timerState }, the server's normalized copy of what we wrote.
    def patch_timer_state(self, payload, on_success, on_error):
        self.transport.patch(TIMER_STATE_PATH, payload,
                             lambda result: on_success(_field(result, "timerState")), on_error)

    def get_stats(self, on_success, on_error):
        self.transport.get(STATS_PATH, lambda payload: on_success(_field(payload, "stats")), on_error)

    # Increments today's sessions/minutes and the streak server side, returning the new aggregate.
    def complete_session(self, focus_minutes, on_success, on_error):
        self.transport.patch(COMPLETE_SESSION_PATH, {"focusMinutes": int(focus_minutes)},
                             lambda result: on_success(_field(result, "stats")), on_error)


def _field(payload, key):
    if isinstance(payload, dict):
        return payload.get(key)
    return None
