from __future__ import annotations

import logging
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path
from typing import Optional

from rawdirt.config.models import LoggingSettings

LOG_FORMAT = "[%(asctime)s][%(levelname)s][%(name)s] %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# AWS SDK debug output drowns the application log.
_QUIET_LOGGERS = ("botocore", "boto3", "urllib3", "s3transfer")


def _resolve_level(name: str) -> int:
    level = logging.getLevelNamesMapping().get(name.strip().upper())
    if level is None:
        raise ValueError(f"Invalid logging level: {name}")
    return level


def _rotating_file_handler(settings: LoggingSettings) -> Optional[logging.Handler]:
    raw_path = settings.file.path.strip()
    if not raw_path:
        return None
    path = Path(raw_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = TimedRotatingFileHandler(
        filename=str(path),
        when="midnight",
        backupCount=settings.file.rotation.backup_count,
        encoding="utf-8",
    )
    handler.suffix = "%Y-%m-%d"
    return handler


def init_logging(settings: LoggingSettings) -> None:
    """
    Replace the root logger's handlers with a console handler and, when a file path is
    configured, a daily rotating file handler.
    """

    level = _resolve_level(settings.level)
    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT)

    root = logging.getLogger()
    root.setLevel(level)
    for existing in list(root.handlers):
        root.removeHandler(existing)

    def _attach(handler: logging.Handler) -> None:
        handler.setLevel(level)
        handler.setFormatter(formatter)
        root.addHandler(handler)

    _attach(logging.StreamHandler())
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    try:
        file_handler = _rotating_file_handler(settings)
    except OSError:
        root.error("File logging handler failed to initialize. path=%s", settings.file.path, exc_info=True)
        return
    if file_handler is not None:
        _attach(file_handler)


__all__ = ["init_logging"]
