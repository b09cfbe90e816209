"""
Dump directory and log file naming.

pg_dump -Fd refuses to write into an existing directory, so the dump
directory is chosen here but created by pg_dump itself.
"""

import logging
import shutil
from datetime import datetime
from pathlib import Path
from typing import NamedTuple, Optional

from .errors import ConfigError

logger = logging.getLogger(__name__)

LOG_DIR_NAME = '_logs'


class LogPaths(NamedTuple):
    dump_log: Path
    restore_log: Path


def _is_protected(dump_dir: Path) -> bool:
    """True when removing dump_dir would remove the working directory"""
    resolved = dump_dir.resolve()
    cwd = Path.cwd().resolve()
    return dump_dir.name in ('', '.', '..') or resolved == cwd or resolved in cwd.parents


def resolve_dump_dir(dump_dir, overwrite: bool = False) -> Path:
    """Return a path that does not exist yet, so pg_dump can create it

    With overwrite, an existing directory is removed first. Otherwise the
    lowest free ``<dump_dir>_N`` suffix is used and nothing is touched.
    The working directory and its parents are never removed.
    """
    dump_dir = Path(dump_dir)
    dump_dir.parent.mkdir(parents=True, exist_ok=True)

    if not dump_dir.exists():
        return dump_dir

    if overwrite:
        if _is_protected(dump_dir):
            raise ConfigError(f"Refusing to remove dump directory {dump_dir}: "
                              f"it contains the working directory")
        logger.warning(f"Removing existing dump directory: {dump_dir}")
        if dump_dir.is_dir() and not dump_dir.is_symlink():
            shutil.rmtree(dump_dir)
        else:
            dump_dir.unlink()
        return dump_dir

    # "." becomes "._1", as a shell "${dir}_1" would
    i = 1
    candidate = Path(f"{dump_dir}_{i}")
    while candidate.exists():
        i += 1
        candidate = Path(f"{dump_dir}_{i}")

    logger.info(f"Dump directory exists; using new directory: {candidate}")
    return candidate


def log_paths(dump_dir, now: Optional[datetime] = None) -> LogPaths:
    """Timestamped pg_dump/pg_restore logs in a _logs directory beside the dump"""
    dump_dir = Path(dump_dir)
    now = now or datetime.now()
    time_tag = now.strftime('%Y-%m-%d_%H%M%S')

    log_dir = dump_dir.parent / LOG_DIR_NAME
    log_dir.mkdir(parents=True, exist_ok=True)

    prefix = f"{dump_dir.name}_{time_tag}"
    return LogPaths(
        dump_log=log_dir / f"{prefix}_pg_dump.log",
        restore_log=log_dir / f"{prefix}_pg_restore.log",
    )
