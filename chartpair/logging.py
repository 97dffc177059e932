"""Terminal and state-folder logging for chartpair.

``-v`` raises the stderr handler from WARNING to DEBUG.  When a state dir is
given, a rotating ``<state_dir>/.chartpair/chartpair.log`` also records
everything at ``CHARTPAIR_LOG_LEVEL`` (default INFO), each line tagged with
the deployment mode so probe-mode and static-mode runs can be told apart.

Per-request probe records (``chartpair.oracle.probe``) are only let through
with ``-v``; a single resolve can issue hundreds of them.
"""

from __future__ import annotations

import logging
import os
from logging.handlers import RotatingFileHandler
from pathlib import Path

LOG_PATH = Path(".chartpair") / "chartpair.log"

_ROTATE_BYTES = 5 * 1024 * 1024
_ROTATE_KEEP = 2

_PROBE_LOGGER = "chartpair.oracle.probe"
_HTTP_LOGGERS = ("httpx", "httpcore")


def _parse_log_level(level_str: str) -> int:
    """Parse a log level name case-insensitively.  Falls back to INFO."""
    numeric = getattr(logging, level_str.upper(), None)
    if isinstance(numeric, int):
        return numeric
    return logging.INFO


def _terminal_handler(verbose: bool) -> logging.Handler:
    handler = logging.StreamHandler()
    handler.setLevel(logging.DEBUG if verbose else logging.WARNING)
    handler.setFormatter(logging.Formatter("%(levelname)s | %(name)s | %(message)s"))
    return handler


def _file_handler(state_dir: Path, mode: str) -> logging.Handler:
    path = state_dir / LOG_PATH
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = RotatingFileHandler(
        path, maxBytes=_ROTATE_BYTES, backupCount=_ROTATE_KEEP, encoding="utf-8"
    )
    handler.setLevel(_parse_log_level(os.environ.get("CHARTPAIR_LOG_LEVEL", "INFO")))
    handler.setFormatter(
        logging.Formatter(
            f"%(asctime)s | %(levelname)-7s | {mode} | %(name)s | %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    )
    return handler


def setup_logging(
    *,
    state_dir: Path | None = None,
    verbose: bool = False,
    mode: str = "auto",
) -> None:
    """Replace the root handlers with the terminal (and, with *state_dir*, file) handler.

    Safe to call more than once; earlier handlers are closed first.
    """
    root = logging.getLogger()
    for handler in root.handlers[:]:
        root.removeHandler(handler)
        handler.close()
    root.setLevel(logging.DEBUG)

    root.addHandler(_terminal_handler(verbose))
    if state_dir is not None:
        root.addHandler(_file_handler(state_dir, mode))

    logging.getLogger(_PROBE_LOGGER).setLevel(logging.DEBUG if verbose else logging.INFO)
    for name in _HTTP_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
