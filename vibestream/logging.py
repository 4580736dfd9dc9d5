from __future__ import annotations

import logging
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler

LOG_FILE_NAME = "vibestream.log"
FILE_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"

# Third-party loggers that are too chatty at INFO.
QUIET_LOGGERS = {
    "googleapiclient.discovery_cache": logging.ERROR,
    "httplib2": logging.WARNING,
}

# Marks handlers installed here so a second call replaces only those.
_OWNED = "_vibestream_handler"


def log_dir(settings) -> Path:
    """VS_API_LOG_DIR, relative paths anchored at the project root."""
    p = Path(settings.VS_API_LOG_DIR)
    if p.is_absolute():
        return p
    return Path(__file__).resolve().parents[1] / p


def log_level(settings) -> int:
    name = str(settings.VS_API_LOG_LEVEL or "INFO").strip().upper()
    level = logging.getLevelName(name)
    return level if isinstance(level, int) else logging.INFO


def _own(handler: logging.Handler) -> logging.Handler:
    setattr(handler, _OWNED, True)
    return handler


def setup_logging(settings, *, to_file: bool = True, serve: bool = False) -> Path | None:
    """Route vibestream logs to the console and, optionally, a daily log file.

    CLI one-shot commands log to stderr only. The API server also writes
    `vibestream.log` (rotated at midnight, VS_API_LOG_BACKUP_COUNT kept) and,
    with `serve=True`, sends uvicorn's own loggers through the same handlers.
    Request lines come from the app middleware, so `uvicorn.access` is muted.

    Returns the log file path, or None when no file is written.
    """

    level = log_level(settings)
    root = logging.getLogger()
    for h in [h for h in root.handlers if getattr(h, _OWNED, False)]:
        root.removeHandler(h)
        h.close()

    root.addHandler(
        _own(
            RichHandler(
                console=Console(stderr=True),
                level=level,
                show_path=False,
                rich_tracebacks=True,
                markup=False,
            )
        )
    )

    log_file = None
    if to_file:
        directory = log_dir(settings)
        directory.mkdir(parents=True, exist_ok=True)
        log_file = directory / LOG_FILE_NAME
        fh = TimedRotatingFileHandler(
            log_file,
            when="midnight",
            backupCount=max(0, int(settings.VS_API_LOG_BACKUP_COUNT)),
            encoding="utf-8",
        )
        fh.setLevel(level)
        fh.setFormatter(logging.Formatter(FILE_FORMAT))
        root.addHandler(_own(fh))

    root.setLevel(level)

    if serve:
        for name in ("uvicorn", "uvicorn.error"):
            lg = logging.getLogger(name)
            lg.handlers.clear()
            lg.propagate = True
        logging.getLogger("uvicorn.access").disabled = True

    for name, quiet in QUIET_LOGGERS.items():
        logging.getLogger(name).setLevel(quiet)

    logging.getLogger("vibestream").debug(
        "logging configured (level=%s, file=%s)", logging.getLevelName(level), log_file
    )
    return log_file
