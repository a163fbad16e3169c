"""
logging.py - Process logging for the server and CLI

Foundation Layer

structlog events rendered as one line each on stderr. stdout carries the
MCP stdio transport and is never written to from here.

    2025-01-21 10:30:46 [WARNING ] sfmcp.permissions: Access denied target_org=prod

Usage:
    from sfmcp.foundation.config.logging import configure_logging, get_logger
    configure_logging(level="INFO")
    logger = get_logger("sfmcp.module")
    logger.info("Starting...", target_org="dev")
"""

from __future__ import annotations

import logging
import sys
from datetime import datetime
from typing import Any

import structlog

_RESET = "\033[0m"

# level name -> ANSI style for the "[LEVEL   ]" tag
_LEVEL_STYLES = {
    "DEBUG": "\033[90;2m",
    "INFO": "\033[32m",
    "WARNING": "\033[33m",
    "ERROR": "\033[31;1m",
    "CRITICAL": "\033[31;1;7m",
}
_TIME_STYLE = "\033[90m"
_LOGGER_STYLE = "\033[36m"
_KEY_STYLE = "\033[35m"
_VALUE_STYLE = "\033[32m"

_NOT_FIELDS = frozenset({"event", "level", "logger", "logger_name", "timestamp", "_colors"})

# third-party logger -> level used when running at DEBUG; WARNING otherwise
_THIRD_PARTY_DEBUG_LEVELS = {
    "httpx": logging.INFO,
    "httpcore": logging.INFO,
    "mcp.server.lowlevel.server": logging.DEBUG,
}

_state: dict[str, Any] = {"configured": False, "colors": False}


def _paint(text: str, style: str, colors: bool) -> str:
    return f"{style}{text}{_RESET}" if colors else text


def format_log(_logger: Any, method_name: str, event_dict: dict[str, Any]) -> str:
    """structlog renderer: timestamp, level tag, logger name, event, key=value fields.

    `event_dict["_colors"]` overrides the configured color setting for one line.
    """
    colors = event_dict.pop("_colors", None)
    if colors is None:
        colors = _state["colors"]

    level = method_name.upper()
    segments = [
        _paint(datetime.now().strftime("%Y-%m-%d %H:%M:%S"), _TIME_STYLE, colors),
        _paint(f"[{level:<8}]", _LEVEL_STYLES.get(level, ""), colors),
    ]
    name = event_dict.get("logger") or event_dict.get("logger_name")
    if name:
        segments.append(_paint(f"{name}:", _LOGGER_STYLE, colors))
    segments.append(str(event_dict.get("event", "")))
    segments.extend(
        _paint(f"{key}=", _KEY_STYLE, colors) + _paint(str(value), _VALUE_STYLE, colors)
        for key, value in event_dict.items()
        if key not in _NOT_FIELDS
    )
    return " ".join(segments)


class _StderrHandler(logging.StreamHandler):
    """Drops records once stderr is closed (stdio shutdown can close it first)."""

    def __init__(self) -> None:
        super().__init__(sys.stderr)

    def emit(self, record: logging.LogRecord) -> None:
        if getattr(self.stream, "closed", False):
            return
        super().emit(record)


def configure_logging(
    level: str = "INFO",
    colors: bool | None = None,
    verbose: bool = False,
    force: bool = False,
) -> None:
    """Install the stderr handler and the structlog pipeline.

    Args:
        level: Root log level name.
        colors: ANSI colors; None means "only when stderr is a TTY".
        verbose: Shorthand for level="DEBUG".
        force: Reconfigure even when already configured.
    """
    if _state["configured"] and not force:
        return

    log_level = logging.DEBUG if verbose else getattr(logging, level.upper(), logging.INFO)
    _state["colors"] = sys.stderr.isatty() if colors is None else colors

    handler = _StderrHandler()
    handler.setFormatter(logging.Formatter("%(message)s"))
    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(log_level)

    for name, debug_level in _THIRD_PARTY_DEBUG_LEVELS.items():
        logging.getLogger(name).setLevel(debug_level if log_level <= logging.DEBUG else logging.WARNING)

    structlog.configure(
        processors=[
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            format_log,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
    _state["configured"] = True


def get_logger(name: str = "sfmcp") -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


__all__ = ["configure_logging", "format_log", "get_logger"]
