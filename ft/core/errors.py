from dataclasses import dataclass
from enum import Enum


# Only two kinds ever reach the user. Stale responses are dropped silently and malformed payloads are fixed up by
# normalization, so neither has a kind here.
class ErrorKind(Enum):
    NETWORK = "network"
    AUTH_REQUIRED = "auth_required"


@dataclass(frozen=True)
class SyncError:
    kind: ErrorKind
    message: str

    @property
    def retryable(self):
        return self.kind is ErrorKind.NETWORK


TIMER_SIGN_IN = SyncError(ErrorKind.AUTH_REQUIRED, "Sign in to sync your focus timer across devices.")
STATS_SIGN_IN = SyncError(ErrorKind.AUTH_REQUIRED, "Sign in to keep cloud focus statistics.")


# Turns whatever the transport raised into something fit for the status line. A 404 naming our own route means the
# backend predates the focus endpoints, which deserves a clearer hint than the raw text.
def describe_error(error, fallback, route=None):
    message = str(error or "").strip()
    if not message:
        return fallback
    if route and "Route not found" in message and route in message:
        return "The backend is missing the focus endpoints. Restart it with the latest deployment."
    return message


def network_error(error, fallback, route=None):
    return SyncError(ErrorKind.NETWORK, describe_error(error, fallback, route))
