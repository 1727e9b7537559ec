"""POS transaction engine: sales, returns and rentals over flat-file ledgers.

Importing the package configures the ``pos_system`` logger shared by every
module as ``from . import log``. Records go to a rotating file under
``.logs/`` at the project root, or under ``POS_SYSTEM_LOG_DIR`` when that
environment variable is set. Warnings and errors are echoed to stderr so the
CLI output on stdout stays readable.
"""

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path


PROJECT_ROOT = Path(__file__).resolve().parents[2]
LOG_DIR_ENV = "POS_SYSTEM_LOG_DIR"
LOG_FILE_NAME = "pos_system.log"


def log_directory() -> Path:
    override = os.environ.get(LOG_DIR_ENV, "").strip()
    return Path(override).expanduser() if override else PROJECT_ROOT / ".logs"


def _configure_logging() -> logging.Logger:
    """Attach the rotating file and stderr handlers to the package logger."""

    logger = logging.getLogger(__name__)
    if logger.handlers:
        return logger

    logger.setLevel(logging.INFO)
    formatter = logging.Formatter(
        fmt="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    log_file = log_directory() / LOG_FILE_NAME
    try:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_file,
            maxBytes=1_000_000,
            backupCount=5,
            encoding="utf-8",
        )
        file_handler.setLevel(logging.INFO)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)
    except OSError as exc:
        print(
            f"Warning: unable to initialize POS log file at '{log_file}': {exc}",
            file=sys.stderr,
        )

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(logging.WARNING)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    return logger


log = _configure_logging()
log.info("POS system logging ready (file log in '%s')", log_directory())
