import json
import os
from ft.common.logger import log
from ft.common.setup import PATHS
from ft.util import now_iso

#region === Helpers and Paths ===

SETTINGS_PATH = PATHS.data / "settings.json"

# Default values for every setting. Auth is owned by whatever signs the user in; user_id / auth_token are only the
# hand-off point.
_SETTINGS_DEFAULTS = {
    "api_base_url": "http://127.0.0.1:8787/api",
    "request_timeout_ms": 60_000,
    "write_timeout_ms": 45_000,
    "retry_times": 1,
    "cache_ttl_seconds": 20,
    "tick_interval_ms": 1000,
    "celebrate_ms": 2600,
    "user_id": None,
    "auth_token": None,
}

# Environment variables that win over whatever is on disk.
_ENV_OVERRIDES = {
    "FOCUSTIMER_API_BASE_URL": "api_base_url",
    "FOCUSTIMER_USER_ID": "user_id",
    "FOCUSTIMER_TOKEN": "auth_token",
}

# Helper to return a truly fresh, default settings dict.
def build_default_settings():
    return dict(_SETTINGS_DEFAULTS)

def _apply_env_overrides(settings):
    for env_name, key in _ENV_OVERRIDES.items():
        value = os.getenv(env_name)
        if value:
            settings[key] = value
    return settings

#endregion === Helpers and Paths ===

#region === Saving and Loading Settings ===

# Loads settings.json, filling any missing or mistyped keys with defaults. A missing file is normal on first run; a
# corrupt one falls back to defaults with a warning.
def load_settings():
    try:
        if not SETTINGS_PATH.exists():
            log.info(f"No settings.json found at '{SETTINGS_PATH}', using defaults.")
            return _apply_env_overrides(build_default_settings())

        with open(SETTINGS_PATH, "r", encoding="utf-8") as f:
            settings = json.load(f)
        if not isinstance(settings, dict):
            raise TypeError(f"settings.json must hold an object, got {type(settings).__name__}")

        defaulted_values = set()
        for key, default in _SETTINGS_DEFAULTS.items():
            if key not in settings:
                defaulted_values.add(key)
                settings[key] = default
            # Numeric settings must stay numeric and positive
            elif isinstance(default, int) and (isinstance(settings[key], bool)
                                               or not isinstance(settings[key], (int, float))
                                               or settings[key] < 0):
                defaulted_values.add(key)
                settings[key] = default

        if defaulted_values:
            log.warning(f"Loaded settings from '{SETTINGS_PATH}', but with missing values that were defaulted: {', '.join(sorted(defaulted_values))}")
        else:
            log.info(f"Successfully loaded settings from '{SETTINGS_PATH}'.")
        return _apply_env_overrides(settings)
    except (json.JSONDecodeError, OSError, TypeError):
        log.warning("Ran into an error while trying to load settings.json, falling back to defaults.", exc_info=True)
        return _apply_env_overrides(build_default_settings())

# Write the given settings to disk under PATHS.data / settings.json
def save_settings(settings):
    to_write = dict(settings)
    to_write["saved_at"] = now_iso()
    with open(SETTINGS_PATH, "w", encoding="utf-8") as f:
        json.dump(to_write, f, indent=2)
    log.info(f"Successfully saved settings to '{SETTINGS_PATH}'")

#endregion === Saving and Loading Settings ===
