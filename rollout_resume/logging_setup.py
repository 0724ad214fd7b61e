"""
Logging configuration for rollout-resume.

The picker owns the terminal while it runs, so everything goes to a rotating
file under <home>/log/ and stderr only carries warnings for the plain CLI
subcommands.
"""

import gzip
import logging
import os
import shutil
from logging.handlers import RotatingFileHandler
from pathlib import Path

from .config import get_int_env

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(home: Path, *, stderr: bool = True) -> Path:
    """
    Configure logging with on-disk rotation.

    Returns:
        Path to the primary log file.
    """
    log_dir = home / "log"
    log_dir.mkdir(parents=True, exist_ok=True)
    log_path = log_dir / "rollout-resume.log"

    max_mb = get_int_env("ROLLOUT_RESUME_LOG_MAX_SIZE_MB", default=10)
    backups = get_int_env("ROLLOUT_RESUME_LOG_BACKUP_COUNT", default=3)

    file_handler = RotatingFileHandler(
        log_path,
        maxBytes=max_mb * 1024 * 1024,
        backupCount=backups,
        encoding="utf-8",
    )
    file_handler.namer = _namer
    file_handler.rotator = _rotator

    fmt = logging.Formatter(LOG_FORMAT)
    file_handler.setFormatter(fmt)

    root = logging.getLogger()
    level_name = os.getenv("ROLLOUT_RESUME_LOG_LEVEL", "INFO").upper()
    root.setLevel(getattr(logging, level_name, logging.INFO))

    # Replace existing handlers so repeated calls don't duplicate output.
    for handler in list(root.handlers):
        root.removeHandler(handler)
    root.addHandler(file_handler)

    if stderr:
        stderr_level_name = os.getenv("ROLLOUT_RESUME_STDERR_LOG_LEVEL", "WARNING").upper()
        stderr_handler = logging.StreamHandler()
        stderr_handler.setLevel(getattr(logging, stderr_level_name, logging.WARNING))
        stderr_handler.setFormatter(fmt)
        root.addHandler(stderr_handler)

    return log_path


def _namer(name: str) -> str:
    return f"{name}.gz"


def _rotator(source: str, dest: str) -> None:
    with open(source, "rb") as src, gzip.open(dest, "wb") as dst:
        shutil.copyfileobj(src, dst)
    try:
        os.remove(source)
    except FileNotFoundError:
        pass
