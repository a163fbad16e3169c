"""
notifications.py - Progress and log side channels

Both channels are fire-and-forget: an emit call schedules delivery on the
running loop and returns the asyncio.Task, which callers discard explicitly
(``_ = reporter("...")``). Delivery failures are logged at debug level and
never reach the operation. Emissions from one emitter are delivered strictly
in call order.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any

from sfmcp.foundation.config.logging import get_logger

logger = get_logger("sfmcp.notifications")

LOG_LEVELS = ("debug", "info", "notice", "warning", "error", "critical", "alert", "emergency")
_SEVERITY = {level: i for i, level in enumerate(LOG_LEVELS)}

# structlog has no notice/alert/emergency
_LOCAL_METHOD = {
    "notice": "info",
    "alert": "critical",
    "emergency": "critical",
}


class _OrderedEmitter:
    """Schedules deliveries so that each waits for the one before it."""

    def __init__(self) -> None:
        self._tail: asyncio.Task | None = None
        self._pending: set[asyncio.Task] = set()

    def _spawn(self, send: Callable[[], Awaitable[Any]], description: str) -> asyncio.Task:
        previous = self._tail
        task = asyncio.get_running_loop().create_task(self._deliver(previous, send, description))
        self._tail = task
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def _deliver(
        self,
        previous: asyncio.Task | None,
        send: Callable[[], Awaitable[Any]],
        description: str,
    ) -> None:
        if previous is not None and not previous.done():
            await asyncio.wait([previous])
        try:
            await send()
        except Exception as e:
            logger.debug("Notification delivery failed", kind=description, error=str(e))

    async def drain(self) -> None:
        """Wait until every scheduled delivery has finished."""
        while self._pending:
            await asyncio.wait(list(self._pending))


class ProgressReporter(_OrderedEmitter):
    """
    Per-request progress reporter.

    Each call advances the counter (1, 2, 3, ...) and sends
    ``notifications/progress {progress, total, message}`` tagged with the
    caller's progress token. Without a token every call is a no-op.
    """

    def __init__(self, session: Any, progress_token: str | int | None, total: int):
        super().__init__()
        self._session = session
        self.progress_token = progress_token
        self.total = total
        self.current = 0

    @property
    def enabled(self) -> bool:
        return self.progress_token is not None and self._session is not None

    def __call__(self, message: str) -> asyncio.Task | None:
        if not self.enabled:
            return None
        self.current += 1
        session, token, progress, total = self._session, self.progress_token, float(self.current), float(self.total)
        return self._spawn(
            lambda: session.send_progress_notification(
                progress_token=token,
                progress=progress,
                total=total,
                message=message,
            ),
            "progress",
        )


class ClientLogger(_OrderedEmitter):
    """Leveled messages to the client's log sink, mirrored to structlog.

    Messages below `min_level` (as set by the client via logging/setLevel)
    are not sent. Without a session nothing is sent.
    """

    def __init__(self, session: Any = None, min_level: str = "debug", request_id: Any = None):
        super().__init__()
        self._session = session
        self.min_level = min_level
        self._request_id = request_id

    def log(self, level: str, channel: str, message: Any) -> asyncio.Task | None:
        local = getattr(logger, _LOCAL_METHOD.get(level, level), logger.info)
        local(str(message), channel=channel, client=True)

        if self._session is None:
            return None
        if _SEVERITY.get(level, 0) < _SEVERITY.get(self.min_level, 0):
            return None

        session, request_id = self._session, self._request_id
        return self._spawn(
            lambda: session.send_log_message(
                level=level,
                data=message,
                logger=channel,
                related_request_id=request_id,
            ),
            "log",
        )

    def debug(self, channel: str, message: Any) -> asyncio.Task | None:
        return self.log("debug", channel, message)

    def info(self, channel: str, message: Any) -> asyncio.Task | None:
        return self.log("info", channel, message)

    def warning(self, channel: str, message: Any) -> asyncio.Task | None:
        return self.log("warning", channel, message)

    def error(self, channel: str, message: Any) -> asyncio.Task | None:
        return self.log("error", channel, message)

    def critical(self, channel: str, message: Any) -> asyncio.Task | None:
        return self.log("critical", channel, message)


__all__ = ["LOG_LEVELS", "ClientLogger", "ProgressReporter"]
