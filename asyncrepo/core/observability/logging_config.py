"""Central logging configuration.

Keep it lightweight: stdlib logging only.
"""

from __future__ import annotations

import json
import logging
import os
import sys
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path

from asyncrepo.config import LOG_FILE_NAME
from asyncrepo.core.paths import get_app_cache_dir

_PLAIN_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


class _JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:  # noqa: D401
        payload: dict[str, object] = {
            "ts": datetime.now(timezone.utc).isoformat(timespec="milliseconds"),  # noqa: UP017
            "level": record.levelname,
            "logger": record.name,
            "thread": record.threadName,
            "msg": record.getMessage(),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        # Include selected extras if present
        for key in ("event", "kind", "generation", "op_id", "phase"):
            if hasattr(record, key):
                payload[key] = str(getattr(record, key))
        return json.dumps(payload, ensure_ascii=False)


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in {"1", "true", "yes"}


def setup_logging(
    *,
    level: str | int | None = None,
    json_logs: bool | None = None,
    log_to_file: bool | None = None,
    log_file: Path | None = None,
    stream: bool = True,
) -> Path | None:
    """Configure root logging.

    - level: "INFO"/"DEBUG" or logging level int. Defaults to env LOG_LEVEL or INFO.
    - json_logs: bool. Defaults to env LOG_JSON ("1"/"true").
    - log_file: explicit log path; implies ``log_to_file``.

    Returns the path of the file handler, if one was installed.
    """

    env_level = os.getenv("LOG_LEVEL", "INFO")
    lvl = level if level is not None else env_level
    if isinstance(lvl, str):
        lvl = getattr(logging, lvl.upper(), logging.INFO)

    if json_logs is None:
        json_logs = _env_flag("LOG_JSON", "0")

    root = logging.getLogger()
    root.handlers.clear()

    if stream:
        stream_handler = logging.StreamHandler(stream=sys.stdout)
        if json_logs:
            stream_handler.setFormatter(_JsonFormatter())
        else:
            stream_handler.setFormatter(logging.Formatter(fmt=_PLAIN_FORMAT, datefmt="%H:%M:%S"))
        root.addHandler(stream_handler)

    if log_file is not None:
        log_to_file = True
    elif log_to_file is None:
        log_to_file = _env_flag("LOG_FILE", "0")

    log_path: Path | None = None
    if log_to_file:
        try:
            log_path = log_file or (get_app_cache_dir() / LOG_FILE_NAME)
            log_path.parent.mkdir(parents=True, exist_ok=True)
            file_handler = RotatingFileHandler(
                log_path,
                maxBytes=2 * 1024 * 1024,
                backupCount=3,
                encoding="utf-8",
            )
            # File logs should be plain text for easier sharing.
            file_handler.setFormatter(
                logging.Formatter(fmt=_PLAIN_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")
            )
            root.addHandler(file_handler)
        except OSError:
            logging.getLogger(__name__).warning("Log file unavailable: %s", log_path, exc_info=True)
            log_path = None

    root.setLevel(int(lvl))

    # Reduce noise from verbose libs.
    logging.getLogger("git").setLevel(logging.WARNING)
    return log_path
