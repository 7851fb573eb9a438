from __future__ import annotations

import logging
import shutil
from pathlib import Path

from .edits import host_path

logger = logging.getLogger(__name__)


def copy_optional(root: Path, src: str, dst: str, *, what: str, dry_run: bool = False) -> bool:
    """Best-effort copy of a companion file. Failures are logged, never raised."""

    s = host_path(root, src)
    d = host_path(root, dst)
    if dry_run:
        logger.info("Would copy %s -> %s", src, dst)
        return True
    try:
        if d.is_dir():
            d = d / s.name
        d.parent.mkdir(parents=True, exist_ok=True)
        shutil.copy2(s, d)
    except OSError as e:
        logger.warning("Unable to find %s (%s): %s", what, src, e)
        return False
    return True
