"""Logging setup for the engine.

Engine code logs a snake_case event name as the message and puts the
details in ``extra`` (``run_id``, ``job``, ``recipient_id``...).
``KeyValueFormatter`` appends those fields as ``key=value`` pairs so the
stdout stream stays greppable per run or per recipient.
"""

import logging
import sys

from certengine.core.config import settings

# Attributes every LogRecord has; anything else came in through ``extra``.
_RESERVED = set(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {"message", "asctime"}

_QUIET_LOGGERS = ("httpx", "httpcore", "hpack", "apscheduler", "uvicorn.access")


class KeyValueFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        fields = {k: v for k, v in vars(record).items() if k not in _RESERVED}
        fields.pop("event", None)  # duplicates the message
        if not fields:
            return line
        return line + " | " + " ".join(f"{k}={v}" for k, v in sorted(fields.items()))


def setup_logging(level: str | None = None) -> None:
    """Install a single stdout handler on the root logger.

    ``level`` overrides ``settings.LOG_LEVEL``.  Calling it again replaces
    the handler instead of stacking a second one.
    """
    log_level = getattr(logging, (level or settings.LOG_LEVEL).upper(), logging.INFO)

    handler = logging.StreamHandler(stream=sys.stdout)
    handler.setFormatter(
        KeyValueFormatter(
            fmt="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
            datefmt="%Y-%m-%dT%H:%M:%S%z",
        )
    )

    root = logging.getLogger()
    root.setLevel(log_level)
    root.handlers.clear()
    root.addHandler(handler)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
