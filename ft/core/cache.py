"""Per-user single-slot caches for the timer state and the focus stats.

One ``SlotCache`` instance lives for the whole client process and is shared by every caller, but only ever holds
one user's value. A different user id misses by key, and ``clear()`` must be called on sign-out so the previous
user's data can't leak into the next session.
"""

import time
from ft.common.logger import log
from ft.core.timer_state import default_timer_state, empty_stats, normalize_stats, normalize_timer_state

CACHE_TTL_SECONDS = 20.0


class _InFlight:
    """One outstanding load, plus everyone waiting on its result."""

    def __init__(self, user_id, revision):
        self.user_id = user_id
        self.revision = revision
        self.waiters = []

    def add(self, on_success, on_error):
        self.waiters.append((on_success, on_error))


class SlotCache:

    def __init__(self, name, loader, normalizer, default_factory, ttl=CACHE_TTL_SECONDS, clock=time.monotonic):
        # loader(on_success, on_error) issues the network read for the signed-in user
        self.name = name
        self.loader = loader
        self.normalizer = normalizer
        self.default_factory = default_factory
        self.ttl = ttl
        self.clock = clock

        self._user_id = None
        self._value = None
        self._cached_at = 0.0
        self._in_flight = None
        # Bumped by store() and clear(). A load dispatched before either must not write back over it.
        self._revision = 0

    # Whatever we last saw for this user, however old. Used for the instant render on mount.
    def get_cached(self, user_id):
        if not user_id or user_id != self._user_id:
            return None
        return self._value

    def has_fresh(self, user_id):
        return (bool(user_id) and user_id == self._user_id and self._value is not None
                and self.clock() - self._cached_at < self.ttl)

    def is_loading(self, user_id):
        return self._in_flight is not None and self._in_flight.user_id == user_id

    def store(self, user_id, value):
        if not user_id or value is None:
            return
        self._user_id = user_id
        self._value = self.normalizer(value)
        self._cached_at = self.clock()
        self._revision += 1

    def fetch(self, user_id, on_success, on_error, force=False):
        if not user_id:
            on_success(self.default_factory())
            return
        if not force and self.has_fresh(user_id):
            on_success(self._value)
            return
        if self.is_loading(user_id):
            log.debug(f"[{self.name}] joining in-flight load for user '{user_id}'")
            self._in_flight.add(on_success, on_error)
            return

        request = _InFlight(user_id, self._revision)
        request.add(on_success, on_error)
        self._in_flight = request
        log.debug(f"[{self.name}] loading for user '{user_id}' (force={force})")
        self.loader(lambda raw: self._on_loaded(request, raw), lambda error: self._on_failed(request, error))

    def prefetch(self, user_id):
        if not user_id:
            return
        self.fetch(user_id, lambda _value: None,
                   lambda error: log.warning(f"[{self.name}] prefetch failed for user '{user_id}': {error}"))

    def clear(self):
        self._user_id = None
        self._value = None
        self._cached_at = 0.0
        self._in_flight = None
        self._revision += 1
        log.debug(f"[{self.name}] cleared")

    def _finish(self, request):
        if self._in_flight is request:
            self._in_flight = None

    def _on_loaded(self, request, raw):
        value = self.normalizer(raw if raw is not None else self.default_factory())
        # A load for someone who is no longer the current user must not take over the slot either.
        if request.revision == self._revision and (
                self._in_flight is request or self._user_id in (None, request.user_id)):
            self._user_id = request.user_id
            self._value = value
            self._cached_at = self.clock()
        self._finish(request)
        for on_success, _on_error in request.waiters:
            on_success(value)

    def _on_failed(self, request, error):
        self._finish(request)
        stale = self.get_cached(request.user_id)
        if stale is not None:
            log.warning(f"[{self.name}] load failed for user '{request.user_id}', serving stale value: {error}")
            for on_success, _on_error in request.waiters:
                on_success(stale)
            return
        for _on_success, on_error in request.waiters:
            on_error(error)


def make_timer_cache(api, ttl=CACHE_TTL_SECONDS, clock=time.monotonic):
    return SlotCache("timer-state", api.get_timer_state, normalize_timer_state, default_timer_state, ttl, clock)

def make_stats_cache(api, ttl=CACHE_TTL_SECONDS, clock=time.monotonic):
    return SlotCache("focus-stats", api.get_stats, normalize_stats, empty_stats, ttl, clock)
