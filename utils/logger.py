from __future__ import annotations

import logging
import time
from datetime import datetime
from enum import Enum
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Callable, Dict, Mapping

ROOT_LOGGER = "market_intel"

LogSink = Callable[[int, str, Dict[str, Any]], None]


def _render(value: Any) -> str:
    if isinstance(value, Enum):
        return str(value.value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, float):
        return repr(round(value, 4))
    return str(value)


def format_context(context: Mapping[str, Any]) -> str:
    """Render keyword context as sorted ``key=value`` pairs."""
    return " ".join(f"{key}={_render(value)}" for key, value in sorted(context.items()))


def qualified_name(name: str) -> str:
    if name == ROOT_LOGGER or name.startswith(f"{ROOT_LOGGER}."):
        return name
    return f"{ROOT_LOGGER}.{name}"


class _ContextFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "context"):
            record.context = ""
        return True


def _attach(logger: logging.Logger, handler: logging.Handler) -> None:
    handler.setFormatter(
        logging.Formatter("%(asctime)s | %(levelname)s | %(name)s | %(message)s | %(context)s")
    )
    handler.addFilter(_ContextFilter())
    logger.addHandler(handler)


def _configure_root(level: int | None, log_file: Path | None) -> logging.Logger:
    root = logging.getLogger(ROOT_LOGGER)
    if level is not None:
        root.setLevel(level)
    elif root.level == logging.NOTSET:
        root.setLevel(logging.INFO)
    if log_file and not any(isinstance(h, RotatingFileHandler) for h in root.handlers):
        log_file.parent.mkdir(parents=True, exist_ok=True)
        _attach(root, RotatingFileHandler(log_file, maxBytes=5_000_000, backupCount=5))
    if not root.handlers:
        _attach(root, logging.StreamHandler())
    return root


class BotLogger:
    """Structured logger with keyword context and an optional alert sink.

    Every instance lives under the ``market_intel`` hierarchy, so the level and
    file configured on the root instance apply to component loggers created
    with ``BotLogger(__name__)``.
    """

    def __init__(
        self,
        name: str = ROOT_LOGGER,
        level: int | None = None,
        log_file: Path | None = None,
    ):
        self.name = qualified_name(name)
        is_root = self.name == ROOT_LOGGER
        _configure_root(level if is_root else None, log_file if is_root else None)
        self._logger = logging.getLogger(self.name)
        if level is not None and not is_root:
            self._logger.setLevel(level)
        self._sink: LogSink | None = None
        self._sink_min_interval = 60.0
        self._sink_last: Dict[str, float] = {}

    def _log(self, level: int, msg: str, exc_info: bool = False, **context: Any) -> None:
        self._logger.log(level, msg, exc_info=exc_info, extra={"context": format_context(context)})
        if self._sink and level >= logging.WARNING:
            now = time.monotonic()
            last = self._sink_last.get(msg)
            if last is not None and now - last < self._sink_min_interval:
                return
            self._sink_last[msg] = now
            try:
                self._sink(level, msg, context)
            except Exception as exc:  # pragma: no cover
                self._logger.debug("log sink failed: %s", exc)

    def debug(self, msg: str, **context: Any) -> None:
        self._log(logging.DEBUG, msg, **context)

    def info(self, msg: str, **context: Any) -> None:
        self._log(logging.INFO, msg, **context)

    def warn(self, msg: str, **context: Any) -> None:
        self._log(logging.WARNING, msg, **context)

    def error(self, msg: str, **context: Any) -> None:
        self._log(logging.ERROR, msg, **context)

    def exception(self, msg: str, **context: Any) -> None:
        self._log(logging.ERROR, msg, exc_info=True, **context)

    def bind_sink(self, sink: LogSink, min_interval: float = 60.0) -> None:
        """Forward warnings and errors to ``sink``, at most once per message per interval."""
        self._sink = sink
        self._sink_min_interval = max(1.0, min_interval)
        self._sink_last = {}

    def set_level(self, level: int) -> None:
        self._logger.setLevel(level)


__all__ = ["BotLogger", "LogSink", "ROOT_LOGGER", "format_context", "qualified_name"]
