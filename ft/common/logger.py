"""Shared ``log`` for the focus timer.

Every record goes to up to four sinks, each tagged with a handler name so calling ``get_logger`` again never
stacks duplicates:

* ``<name>.log``, rotated by size and kept across runs
* ``latest.log``, truncated at startup so it only ever holds the current run
* ``debug/<name>_<timestamp>.log``, one DEBUG-level file per run, pruned to the newest N
* stderr, only when asked for (``FOCUSTIMER_LOG_CONSOLE=1``)
"""

import logging
import os
from datetime import datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path
from ft.common.setup import PATHS

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s:%(filename)s:%(lineno)d] %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
LOG_ROTATE_BYTES = 5 * 1024 * 1024
LOG_ROTATE_BACKUPS = 5
DEBUG_RUNS_KEPT = 10


def _has_handler(logger, handler_name):
    return any(h.get_name() == handler_name for h in logger.handlers)

def _attach(logger, handler_name, make_handler, level, formatter):
    """Adds the handler built by ``make_handler`` unless one with this name is already attached."""
    if _has_handler(logger, handler_name):
        return None
    handler = make_handler()
    handler.setLevel(level)
    handler.setFormatter(formatter)
    handler.set_name(handler_name)
    logger.addHandler(handler)
    return handler

# Drops all but the newest `keep` per-run debug files.
def prune_debug_runs(debug_dir: Path, name, keep):
    runs = sorted(debug_dir.glob(f"{name}_*.log"), key=lambda p: p.stat().st_mtime, reverse=True)
    for stale in runs[keep:]:
        try:
            stale.unlink()
        except OSError as e:
            # Usually still open by another instance on Windows
            logging.getLogger(name).debug(f"Could not prune old debug log '{stale.name}': {e}")


def get_logger(
        name="focustimer",
        level=logging.INFO,
        log_dir: Path | None = None,
        rotate_bytes=LOG_ROTATE_BYTES,
        rotate_backups=LOG_ROTATE_BACKUPS,
        persistent=True,
        console=False,
        debug_runs: int = DEBUG_RUNS_KEPT
) -> logging.Logger:
    logger = logging.getLogger(name)
    logger.propagate = False
    logger.setLevel(min(level, logging.DEBUG) if debug_runs > 0 else level)

    log_dir = log_dir or PATHS.logs
    log_dir.mkdir(parents=True, exist_ok=True)
    formatter = logging.Formatter(LOG_FORMAT, LOG_DATE_FORMAT)

    if persistent:
        _attach(logger, f"{name}:persistent",
                lambda: RotatingFileHandler(log_dir / f"{name}.log", maxBytes=rotate_bytes,
                                            backupCount=rotate_backups, encoding="utf-8"),
                level, formatter)

    _attach(logger, f"{name}:latest",
            lambda: logging.FileHandler(log_dir / "latest.log", mode="w", encoding="utf-8"),
            level, formatter)

    if debug_runs > 0 and not _has_handler(logger, f"{name}:debug_run"):
        debug_dir = log_dir / "debug"
        debug_dir.mkdir(parents=True, exist_ok=True)
        run_file = debug_dir / f"{name}_{datetime.now():%Y-%m-%d_%H-%M-%S}.log"
        _attach(logger, f"{name}:debug_run", lambda: logging.FileHandler(run_file, encoding="utf-8"),
                logging.DEBUG, formatter)
        prune_debug_runs(debug_dir, name, debug_runs)

    if console:
        _attach(logger, f"{name}:console", logging.StreamHandler, level, formatter)

    return logger


def _env_flag(key):
    return os.getenv(key, "").strip().lower() in ("1", "true", "yes", "on")

def _env_level(key, default):
    value = os.getenv(key, "").strip().upper()
    resolved = logging.getLevelName(value) if value else default
    return resolved if isinstance(resolved, int) else default


# FOCUSTIMER_LOG_LEVEL (e.g. INFO) quiets the main logs; the per-run debug file always records everything.
log = get_logger(level=_env_level("FOCUSTIMER_LOG_LEVEL", logging.DEBUG),
                 console=_env_flag("FOCUSTIMER_LOG_CONSOLE"))
log.info("=== INITIALIZED NEW SESSION ===")
