from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import Tuple

DEFAULT_LOG_PATH = "/var/log/labhost-installer.log"
FALLBACK_LOG_NAME = "labhost-installer.log"

_FORMAT = logging.Formatter(
    fmt="[%(asctime)s] %(levelname)s %(name)s: %(message)s",
    datefmt="%H:%M:%S",
)


def _open_log_file(log_path: str) -> Tuple[logging.Handler, str]:
    """FileHandler for `log_path`, or for the working directory when that is not writable."""

    try:
        Path(log_path).parent.mkdir(parents=True, exist_ok=True)
        return logging.FileHandler(log_path), log_path
    except OSError:
        fallback = str(Path.cwd() / FALLBACK_LOG_NAME)
        return logging.FileHandler(fallback), fallback


def configure_logging(
    log_path: str = DEFAULT_LOG_PATH,
    level: int = logging.INFO,
    console_level: int | None = None,
) -> str:
    """Send every stage decision and command to the installer log.

    The root logger gets a timestamped file handler and a console handler on
    stderr (`console_level` defaults to `level`). A dry run as an unprivileged
    user cannot write to /var/log, so the file falls back to the working
    directory. Safe to call more than once; only the first call installs
    handlers.

    Returns the log file actually in use.
    """

    root = logging.getLogger()
    root.setLevel(level)
    if getattr(root, "_labhost_configured", False):
        return getattr(root, "_labhost_log_path", log_path)

    file_handler, chosen_path = _open_log_file(log_path)
    console = logging.StreamHandler(sys.stderr)
    console.setLevel(level if console_level is None else console_level)

    for h in (file_handler, console):
        h.setFormatter(_FORMAT)
        root.addHandler(h)

    root._labhost_configured = True  # type: ignore[attr-defined]
    root._labhost_log_path = chosen_path  # type: ignore[attr-defined]

    if chosen_path != log_path:
        logging.getLogger(__name__).warning("Cannot write %s, logging to %s instead", log_path, chosen_path)
    logging.getLogger(__name__).info("Logging to %s", chosen_path)
    return chosen_path
