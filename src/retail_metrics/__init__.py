import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional


PROJECT_ROOT = Path(__file__).resolve().parents[2]
LOG_DIR_ENV = "RETAIL_METRICS_LOG_DIR"
LOG_FILE_NAME = "retail_metrics.log"


def resolve_log_dir() -> Path:
    """Return the log directory, honouring ``RETAIL_METRICS_LOG_DIR``."""

    override = os.environ.get(LOG_DIR_ENV)
    if override:
        return Path(override).expanduser()
    return PROJECT_ROOT / ".logs"


def configure_logging(name: str = __name__, log_dir: Optional[Path] = None) -> logging.Logger:
    """Attach a rotating file handler and a stderr handler to ``name``.

    Calling it again for an already configured logger is a no-op. Report
    output owns stdout, so the console handler writes warnings and errors to
    stderr only.
    """

    logger = logging.getLogger(name)
    if logger.handlers:
        return logger

    logger.setLevel(logging.INFO)
    formatter = logging.Formatter(
        fmt="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    target_dir = log_dir if log_dir is not None else resolve_log_dir()
    log_file = target_dir / LOG_FILE_NAME
    try:
        target_dir.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(log_file, maxBytes=1_000_000, backupCount=5, encoding="utf-8")
    except OSError as exc:
        print(f"Warning: unable to initialize log file at '{log_file}': {exc}", file=sys.stderr)
    else:
        file_handler.setLevel(logging.INFO)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(logging.WARNING)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    return logger


log = configure_logging()
log.info("Logger initialized for the 'retail_metrics' package.")
