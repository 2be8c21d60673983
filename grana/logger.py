"""
Session Logging.

Every component of the client logs through a ``StructuredLogger`` handed
to it at construction time.  Records are rendered as one JSON object per
line; session milestones (``LOGIN``, ``LOGOUT``, ``TOKEN_REFRESHED``,
``PERSISTENCE_WARNING`` ...) travel in the ``event`` field of ``extra``
so a log shipper can filter on them.

Callers log user ids and e-mail addresses only.  Tokens and passwords
never reach a log line.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional, TextIO, Union

_RECORD_FIELDS: frozenset[str] = frozenset(
    logging.LogRecord(
        name="", level=0, pathname="", lineno=0, msg="", args=(), exc_info=None
    ).__dict__.keys()
) | {"message", "asctime"}


class JSONFormatter(logging.Formatter):
    """One JSON object per record.

    Keys: ``timestamp`` (UTC), ``level``, ``logger_name``, ``message``,
    plus ``extra`` for caller-supplied fields and ``exception`` when a
    traceback is attached.
    """

    def format(self, record: logging.LogRecord) -> str:
        created = datetime.fromtimestamp(record.created, tz=timezone.utc)
        entry: dict[str, Union[str, dict[str, str]]] = {
            "timestamp": created.isoformat(),
            "level": record.levelname,
            "logger_name": record.name,
            "message": record.getMessage(),
        }

        extra = {
            key: str(value)
            for key, value in record.__dict__.items()
            if key not in _RECORD_FIELDS
        }
        if extra:
            entry["extra"] = extra

        if record.exc_info and not record.exc_text:
            record.exc_text = self.formatException(record.exc_info)
        if record.exc_text:
            entry["exception"] = record.exc_text

        return json.dumps(entry, ensure_ascii=False)


class StructuredLogger:
    """Named logger shared by the session components.

    Level, log file and rotation default to ``AppConfig``; tests pass a
    *stream* to capture output.  Handlers are attached once per logger
    name, so building several ``StructuredLogger`` objects for the same
    name does not duplicate lines.

    Usage::

        log = StructuredLogger(name="grana.session")
        log.info("Session restored.", extra={"event": "HYDRATE"})
    """

    def __init__(
        self,
        name: str = "grana",
        level: Optional[int] = None,
        stream: Union[TextIO, None] = None,
        log_file: Optional[str] = None,
        max_bytes: Optional[int] = None,
        backup_count: Optional[int] = None,
    ) -> None:
        # Importing this module must not read the environment.
        from grana.config import get_config
        cfg = get_config()

        resolved_level: int = level if level is not None else cfg.log_level
        self._logger: logging.Logger = logging.getLogger(name)
        self._logger.setLevel(resolved_level)

        if self._logger.handlers:
            return

        formatter = JSONFormatter()
        console = logging.StreamHandler(stream or sys.stdout)
        console.setLevel(resolved_level)
        console.setFormatter(formatter)
        self._logger.addHandler(console)

        target: str = log_file if log_file is not None else cfg.LOG_FILE
        if not target:
            return
        try:
            path = Path(target)
            path.parent.mkdir(parents=True, exist_ok=True)
            rotating = RotatingFileHandler(
                filename=str(path),
                maxBytes=max_bytes if max_bytes is not None else cfg.LOG_MAX_BYTES,
                backupCount=backup_count if backup_count is not None else cfg.LOG_BACKUP_COUNT,
                encoding="utf-8",
            )
        except OSError as exc:
            self._logger.warning(
                "Log file %s is not writable (%s); logging to the console only.",
                target,
                exc,
            )
            return
        rotating.setLevel(resolved_level)
        rotating.setFormatter(formatter)
        self._logger.addHandler(rotating)

    def debug(self, msg: str, *args: object, **kwargs: object) -> None:
        self._logger.debug(msg, *args, **kwargs)

    def info(self, msg: str, *args: object, **kwargs: object) -> None:
        self._logger.info(msg, *args, **kwargs)

    def warning(self, msg: str, *args: object, **kwargs: object) -> None:
        self._logger.warning(msg, *args, **kwargs)

    def error(self, msg: str, *args: object, **kwargs: object) -> None:
        self._logger.error(msg, *args, **kwargs)


def get_logger(name: str = "grana") -> StructuredLogger:
    """Logger for the command-line entry point, configured from ``AppConfig``."""
    return StructuredLogger(name=name)
