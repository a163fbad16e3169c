"""Tests for sfmcp.mcp.confirmation - elicitation-backed confirmation."""

from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from sfmcp.mcp.confirmation import (
    CANCELLED_REASON,
    DECLINED_REASON,
    ClientCapabilities,
    ConfirmationGate,
    confirmation_schema,
)


def _answer(action, content=None):
    return SimpleNamespace(action=action, content=content)


class TestClientCapabilities:
    def test_elicitation_declared(self, session):
        assert ClientCapabilities.from_session(session).supports_confirmation

    def test_elicitation_absent(self, session):
        session.client_params.capabilities.elicitation = None
        assert not ClientCapabilities.from_session(session).supports_confirmation

    def test_no_session(self):
        assert not ClientCapabilities.from_session(None).supports_confirmation

    def test_session_before_initialize(self):
        session = SimpleNamespace(client_params=None)
        assert not ClientCapabilities.from_session(session).supports_confirmation


class TestConfirmationGate:
    @pytest.mark.asyncio
    async def test_accept_with_confirm(self, session):
        session.elicit.return_value = _answer("accept", {"confirm": True})
        gate = ConfirmationGate(session, ClientCapabilities(supports_confirmation=True))

        result = await gate.request("Deploy to prod?")

        assert result.confirmed
        kwargs = session.elicit.call_args.kwargs
        assert kwargs["message"] == "Deploy to prod?"
        assert kwargs["requestedSchema"] == confirmation_schema("Deploy to prod?")

    @pytest.mark.asyncio
    async def test_accept_without_confirm_is_cancelled(self, session):
        session.elicit.return_value = _answer("accept", {"confirm": False})
        gate = ConfirmationGate(session, ClientCapabilities(supports_confirmation=True))

        result = await gate.request("Deploy?")

        assert not result.confirmed
        assert result.reason == CANCELLED_REASON
        assert not result.declined

    @pytest.mark.asyncio
    async def test_decline(self, session):
        session.elicit.return_value = _answer("decline")
        gate = ConfirmationGate(session, ClientCapabilities(supports_confirmation=True))

        result = await gate.request("Deploy?")

        assert not result.confirmed
        assert result.reason == DECLINED_REASON
        assert result.declined

    @pytest.mark.asyncio
    async def test_cancel(self, session):
        session.elicit.return_value = _answer("cancel")
        gate = ConfirmationGate(session, ClientCapabilities(supports_confirmation=True))

        result = await gate.request("Deploy?")

        assert not result.confirmed
        assert result.reason == CANCELLED_REASON

    @pytest.mark.asyncio
    async def test_no_capability_skips_round_trip(self, session):
        gate = ConfirmationGate(session, ClientCapabilities(supports_confirmation=False))

        result = await gate.request("Deploy?")

        assert result.confirmed
        session.elicit.assert_not_called()

    @pytest.mark.asyncio
    async def test_transport_failure_proceeds(self):
        session = MagicMock()
        session.elicit = AsyncMock(side_effect=RuntimeError("connection reset"))
        gate = ConfirmationGate(session, ClientCapabilities(supports_confirmation=True))

        result = await gate.request("Deploy?")

        assert result.confirmed


def test_schema_is_a_single_required_boolean():
    schema = confirmation_schema("Sure?")
    assert schema["required"] == ["confirm"]
    assert schema["properties"]["confirm"]["type"] == "boolean"
    assert schema["properties"]["confirm"]["default"] is False
