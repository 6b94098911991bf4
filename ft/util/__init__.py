from ft.util.misc import clamp, now_iso, now_utc, parse_timestamp, round_half_up, to_number
