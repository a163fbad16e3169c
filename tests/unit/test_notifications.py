"""Tests for sfmcp.mcp.notifications - progress and client log emitters."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from sfmcp.mcp.notifications import ClientLogger, ProgressReporter


class TestProgressReporter:
    @pytest.mark.asyncio
    async def test_progress_is_monotonic_and_ordered(self, session):
        reporter = ProgressReporter(session, "tok", total=3)

        for message in ("one", "two", "three"):
            _ = reporter(message)
        await reporter.drain()

        calls = session.send_progress_notification.call_args_list
        assert [c.kwargs["progress"] for c in calls] == [1.0, 2.0, 3.0]
        assert [c.kwargs["message"] for c in calls] == ["one", "two", "three"]
        assert all(c.kwargs["total"] == 3.0 for c in calls)
        assert all(c.kwargs["progress_token"] == "tok" for c in calls)

    @pytest.mark.asyncio
    async def test_slow_delivery_does_not_reorder(self):
        delivered = []

        async def send(**kwargs):
            # the first notification is the slowest
            await asyncio.sleep(0.02 if kwargs["progress"] == 1.0 else 0)
            delivered.append(kwargs["progress"])

        session = MagicMock()
        session.send_progress_notification = AsyncMock(side_effect=send)
        reporter = ProgressReporter(session, "tok", total=3)

        _ = reporter("a")
        _ = reporter("b")
        _ = reporter("c")
        await reporter.drain()

        assert delivered == [1.0, 2.0, 3.0]

    @pytest.mark.asyncio
    async def test_no_token_is_a_no_op(self, session):
        reporter = ProgressReporter(session, None, total=2)

        assert reporter("ignored") is None
        assert reporter.current == 0
        session.send_progress_notification.assert_not_called()

    @pytest.mark.asyncio
    async def test_zero_is_a_valid_token(self, session):
        reporter = ProgressReporter(session, 0, total=1)
        _ = reporter("go")
        await reporter.drain()
        session.send_progress_notification.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_delivery_failure_is_swallowed(self):
        session = MagicMock()
        session.send_progress_notification = AsyncMock(side_effect=[ConnectionError("gone"), None])
        reporter = ProgressReporter(session, "tok", total=2)

        first = reporter("first")
        second = reporter("second")
        await reporter.drain()

        assert first.exception() is None
        assert second.exception() is None
        assert session.send_progress_notification.await_count == 2

    @pytest.mark.asyncio
    async def test_emit_returns_without_waiting(self):
        gate = asyncio.Event()

        async def send(**kwargs):
            await gate.wait()

        session = MagicMock()
        session.send_progress_notification = AsyncMock(side_effect=send)
        reporter = ProgressReporter(session, "tok", total=1)

        task = reporter("pending")
        assert not task.done()
        gate.set()
        await reporter.drain()
        assert task.done()


class TestClientLogger:
    @pytest.mark.asyncio
    async def test_sends_with_channel_and_request_id(self, session):
        client_log = ClientLogger(session, "debug", request_id=42)

        _ = client_log.warning("permissions", "Access denied for org 'prod'")
        await client_log.drain()

        session.send_log_message.assert_awaited_once_with(
            level="warning",
            data="Access denied for org 'prod'",
            logger="permissions",
            related_request_id=42,
        )

    @pytest.mark.asyncio
    async def test_below_min_level_is_dropped(self, session):
        client_log = ClientLogger(session, "warning")

        assert client_log.info("deploy", "starting") is None
        assert client_log.debug("deploy", "details") is None
        _ = client_log.error("deploy", "failed")
        await client_log.drain()

        assert session.send_log_message.await_count == 1
        assert session.send_log_message.call_args.kwargs["level"] == "error"

    @pytest.mark.asyncio
    async def test_without_session_only_logs_locally(self):
        client_log = ClientLogger(None)
        assert client_log.log("notice", "orgs", "hello") is None

    @pytest.mark.asyncio
    async def test_messages_keep_call_order(self, session):
        client_log = ClientLogger(session)

        for i in range(5):
            _ = client_log.info("seq", f"m{i}")
        await client_log.drain()

        assert [c.kwargs["data"] for c in session.send_log_message.call_args_list] == [f"m{i}" for i in range(5)]

    @pytest.mark.asyncio
    async def test_failure_is_swallowed(self):
        session = MagicMock()
        session.send_log_message = AsyncMock(side_effect=RuntimeError("closed"))
        client_log = ClientLogger(session)

        task = client_log.critical("x", "boom")
        await client_log.drain()

        assert task.exception() is None
