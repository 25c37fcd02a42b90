"""Logging for the Loxone controller.

Every logger writes human-readable lines and/or JSON lines, tags each record
with the active correlation ID and supports a TRACE level below DEBUG for the
per-event chatter of the queue and dispatcher.
"""

from __future__ import annotations

import json
import logging
import sys
from collections.abc import Mapping
from datetime import UTC, datetime
from pathlib import Path
from typing import cast

from typing_extensions import override

__all__ = [
    "TRACE",
    "HumanReadableFormatter",
    "JSONFormatter",
    "LoxoneLogger",
    "get_logger",
    "set_package_level",
]

TRACE = 5
logging.addLevelName(TRACE, "TRACE")


def _context_of(record: logging.LogRecord) -> Mapping[str, object] | None:
    extra_data = getattr(record, "extra_data", None)
    if isinstance(extra_data, Mapping) and extra_data:
        return cast("Mapping[str, object]", extra_data)
    return None


class JSONFormatter(logging.Formatter):
    """One JSON object per record."""

    @override
    def format(self, record: logging.LogRecord) -> str:
        # Import here to avoid circular dependency
        from loxone_controller.correlation import get_correlation_id

        log_data: dict[str, object] = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "function": record.funcName,
            "line": record.lineno,
            "message": record.getMessage(),
            "correlation_id": get_correlation_id(),
        }
        context = _context_of(record)
        if context:
            log_data["context"] = dict(context)
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


class HumanReadableFormatter(logging.Formatter):
    """``time level [module:line] [corr] > message | key=value``"""

    def __init__(self) -> None:
        super().__init__(
            fmt="%(asctime)s.%(msecs)03d %(levelname)s [%(module)s:%(lineno)d] %(correlation_id)s > %(message)s",
            datefmt="%m/%d/%y %H:%M:%S",
        )

    @override
    def format(self, record: logging.LogRecord) -> str:
        from loxone_controller.correlation import get_correlation_id

        correlation_id = get_correlation_id()
        record.correlation_id = f"[{correlation_id[:16]}]" if correlation_id else "[----------------]"

        formatted = super().format(record)
        context = _context_of(record)
        if context:
            formatted = f"{formatted} | " + " | ".join(f"{k}={v}" for k, v in context.items())
        return formatted


class LoxoneLogger:
    """Thin wrapper over :class:`logging.Logger` with structured context.

    ``extra`` mappings are carried on the record as ``extra_data`` and
    rendered by both formatters.
    """

    def __init__(
        self,
        name: str,
        log_format: str = "human",
        json_file: str | Path | None = None,
        human_output: str | None = "stdout",
    ) -> None:
        self.name: str = name
        self.logger: logging.Logger = logging.getLogger(name)
        self.log_format: str = log_format

        from loxone_controller.const import LOXONE_DEBUG

        self.logger.setLevel(logging.DEBUG if LOXONE_DEBUG else logging.INFO)

        if not self.logger.handlers:
            self._configure_handlers(json_file, human_output)

    def _configure_handlers(self, json_file: str | Path | None, human_output: str | None) -> None:
        handler_level = self.logger.level

        if self.log_format in ("json", "both") and json_file:
            try:
                json_path = Path(json_file)
                json_path.parent.mkdir(parents=True, exist_ok=True)
                json_handler = logging.FileHandler(json_path, mode="a")
            except OSError as e:
                print(f"Warning: Failed to create JSON log file {json_file}: {e}", file=sys.stderr)
            else:
                json_handler.setFormatter(JSONFormatter())
                json_handler.setLevel(handler_level)
                self.logger.addHandler(json_handler)

        if self.log_format in ("human", "both"):
            target = human_output or "stdout"
            if target == "stdout":
                human_handler: logging.Handler = logging.StreamHandler(sys.stdout)
            elif target == "stderr":
                human_handler = logging.StreamHandler(sys.stderr)
            else:
                try:
                    human_path = Path(target)
                    human_path.parent.mkdir(parents=True, exist_ok=True)
                    human_handler = logging.FileHandler(human_path, mode="a")
                except OSError as e:
                    print(f"Warning: Failed to create human log file {target}: {e}", file=sys.stderr)
                    human_handler = logging.StreamHandler(sys.stdout)

            human_handler.setFormatter(HumanReadableFormatter())
            human_handler.setLevel(handler_level)
            self.logger.addHandler(human_handler)

    def _log(self, level: int, msg: str, *args: object, extra: Mapping[str, object] | None = None) -> None:
        payload = {"extra_data": dict(extra)} if extra else None
        self.logger.log(level, msg, *args, extra=payload)

    def trace(self, msg: str, *args: object, extra: Mapping[str, object] | None = None) -> None:
        """Log below DEBUG; used for per-event queue and dispatch chatter."""
        if self.logger.isEnabledFor(TRACE):
            self._log(TRACE, msg, *args, extra=extra)

    def debug(self, msg: str, *args: object, extra: Mapping[str, object] | None = None) -> None:
        self._log(logging.DEBUG, msg, *args, extra=extra)

    def info(self, msg: str, *args: object, extra: Mapping[str, object] | None = None) -> None:
        self._log(logging.INFO, msg, *args, extra=extra)

    def warning(self, msg: str, *args: object, extra: Mapping[str, object] | None = None) -> None:
        self._log(logging.WARNING, msg, *args, extra=extra)

    def error(self, msg: str, *args: object, extra: Mapping[str, object] | None = None) -> None:
        self._log(logging.ERROR, msg, *args, extra=extra)

    def exception(self, msg: str, *args: object, extra: Mapping[str, object] | None = None) -> None:
        """Log at ERROR with the active traceback."""
        payload = {"extra_data": dict(extra)} if extra else None
        self.logger.exception(msg, *args, extra=payload)

    def set_level(self, level: int) -> None:
        """Set the level of the logger and all of its handlers."""
        self.logger.setLevel(level)
        for handler in self.logger.handlers:
            handler.setLevel(level)

    @property
    def handlers(self) -> list[logging.Handler]:
        return self.logger.handlers


def get_logger(
    name: str,
    log_format: str | None = None,
    json_file: str | Path | None = None,
    human_output: str | None = None,
) -> LoxoneLogger:
    """Get a :class:`LoxoneLogger`, defaulting to the LOXONE_LOG_* settings."""
    from loxone_controller.const import (
        LOXONE_LOG_FORMAT,
        LOXONE_LOG_HUMAN_OUTPUT,
        LOXONE_LOG_JSON_FILE,
    )

    return LoxoneLogger(
        name=name,
        log_format=log_format or LOXONE_LOG_FORMAT,
        json_file=json_file or LOXONE_LOG_JSON_FILE,
        human_output=human_output or LOXONE_LOG_HUMAN_OUTPUT,
    )


def set_package_level(level: int, prefix: str = "loxone_controller") -> None:
    """Apply ``level`` to every logger (and its handlers) under ``prefix``."""
    for name, candidate in logging.Logger.manager.loggerDict.items():
        if isinstance(candidate, logging.Logger) and (name == prefix or name.startswith(f"{prefix}.")):
            candidate.setLevel(level)
            for handler in candidate.handlers:
                handler.setLevel(level)
