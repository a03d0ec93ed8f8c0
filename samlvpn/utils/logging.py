"""Logging utilities."""

from __future__ import annotations

import logging
import logging.handlers
import os
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler

ROOT_LOGGER = "samlvpn"
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def default_log_dir() -> Path:
    state_home = os.environ.get("XDG_STATE_HOME") or str(Path.home() / ".local" / "state")
    return Path(state_home) / "samlvpn"


def get_logger(name: str) -> logging.Logger:
    """Return a logger below the ``samlvpn`` namespace."""
    return logging.getLogger(f"{ROOT_LOGGER}.{name}")


def setup_file_logging(log_dir: Path | None = None) -> Path | None:
    """Attach the rotating log file handler to the package logger.

    Returns the log file path, or ``None`` when the directory is not writable.
    """

    root = logging.getLogger(ROOT_LOGGER)
    root.setLevel(logging.DEBUG)
    existing = [h for h in root.handlers if isinstance(h, logging.handlers.RotatingFileHandler)]
    if existing:
        return Path(existing[0].baseFilename)
    log_dir = log_dir or default_log_dir()
    try:
        log_dir.mkdir(parents=True, exist_ok=True)
    except OSError:
        return None
    log_file = log_dir / "samlvpn.log"
    handler = logging.handlers.RotatingFileHandler(log_file, maxBytes=10 * 1024 * 1024, backupCount=5)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    handler.setLevel(logging.DEBUG)
    root.addHandler(handler)
    return log_file


def setup_console_logging(debug: bool = False, console: Console | None = None) -> None:
    root = logging.getLogger(ROOT_LOGGER)
    root.setLevel(logging.DEBUG)
    for handler in list(root.handlers):
        if isinstance(handler, RichHandler):
            root.removeHandler(handler)
    handler = RichHandler(
        console=console or Console(stderr=True),
        show_path=False,
        rich_tracebacks=debug,
    )
    handler.setLevel(logging.DEBUG if debug else logging.INFO)
    root.addHandler(handler)
