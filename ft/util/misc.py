import math
from datetime import datetime, timezone


# Current instant as an aware UTC datetime. Everything that touches startedAt works in UTC.
def now_utc():
    return datetime.now(timezone.utc)

# Simply returns the current local time as an ISO8601 string with timezone offset.
def now_iso():
    return datetime.now().astimezone().isoformat()

# Parses an ISO8601 timestamp (the server sends a trailing "Z") into an aware datetime. Naive values are taken as
# UTC. Returns None for anything unparseable instead of raising.
def parse_timestamp(value):
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value.strip():
        text = value.strip()
        if text[-1] in ("Z", "z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed

# Coerces a loosely-typed JSON value into a finite float, or None. Numeric strings count, booleans don't.
def to_number(value):
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    return number if math.isfinite(number) else None

# Rounds halves upward like the web client did (python's round() is banker's rounding).
def round_half_up(value):
    return int(math.floor(value + 0.5))

def clamp(value, low, high):
    return max(low, min(high, value))
