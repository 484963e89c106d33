"""ZaveOrah multi-tenant business core.

Importing the package configures the shared ``log`` used by every module: a
rotating file under ``.logs/`` next to the project (or under the directory
named by ``ZAVEORAH_LOG_DIR``) plus a stderr handler. The level defaults to
INFO and can be lowered with ``ZAVEORAH_LOG_LEVEL=DEBUG``. Passwords, PINs and
payment receipts are never passed to the logger.
"""

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path


PROJECT_ROOT = Path(__file__).resolve().parents[2]
LOG_DIR = Path(os.environ.get("ZAVEORAH_LOG_DIR", PROJECT_ROOT / ".logs"))
LOG_FILE = LOG_DIR / "zaveorah.log"
LOG_LEVEL = logging.getLevelName(os.environ.get("ZAVEORAH_LOG_LEVEL", "INFO").upper())
LOG_FORMAT = "%(asctime)s | %(name)s | %(levelname)s | %(message)s"
LOG_MAX_BYTES = 1_000_000
LOG_BACKUPS = 5


def _configure_logging() -> logging.Logger:
    """Attach the file and console handlers once per process."""

    logger = logging.getLogger(__name__)
    if logger.handlers:
        return logger

    level = LOG_LEVEL if isinstance(LOG_LEVEL, int) else logging.INFO
    logger.setLevel(level)
    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    try:
        LOG_DIR.mkdir(parents=True, exist_ok=True)
        handlers.append(
            RotatingFileHandler(LOG_FILE, maxBytes=LOG_MAX_BYTES, backupCount=LOG_BACKUPS, encoding="utf-8")
        )
    except OSError as exc:
        print(f"Warning: unable to initialize log file at '{LOG_FILE}': {exc}", file=sys.stderr)

    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
        logger.addHandler(handler)
    return logger


log = _configure_logging()
log.debug("Logging ready at level %s (file: %s)", logging.getLevelName(log.level), LOG_FILE)
