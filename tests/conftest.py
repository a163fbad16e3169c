"""
conftest.py - Shared fixtures for sfmcp tests

Provides a scripted sf runner, a fake MCP session and a ready-wired
dispatcher so that no test needs the real `sf` binary or a client.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from sfmcp.core.dispatcher import Dispatcher, RequestScope, ToolContext
from sfmcp.core.errors import ExternalRunnerFailure
from sfmcp.core.permissions import AccessPolicy, AccessPolicyGate
from sfmcp.core.target import DefaultTargetCache, TargetResolver
from sfmcp.foundation.config.settings import ENV_OVERRIDES, CONFIG_ENV_VAR, Settings
from sfmcp.mcp.confirmation import ClientCapabilities, ConfirmationGate
from sfmcp.mcp.notifications import ClientLogger, ProgressReporter
from sfmcp.runner.connection import CredentialStore
from sfmcp.tools import build_registry


class FakeRunner:
    """
    Stand-in for SfCommandRunner.

    Responses are scripted by argv prefix; the longest matching prefix wins.
    A scripted value that is an exception is raised instead of returned.
    Every call is recorded in `calls` as (mode, argv).

    Usage:
        runner = FakeRunner()
        runner.script(["config", "get", "target-org"], {"status": 0, "result": [{"value": "dev"}]})
        await runner.run(["config", "get", "target-org"])
    """

    def __init__(self) -> None:
        self._json: dict[tuple[str, ...], Any] = {}
        self._raw: dict[tuple[str, ...], Any] = {}
        self.calls: list[tuple[str, list[str]]] = []

    def script(self, prefix: list[str], response: Any) -> None:
        self._json[tuple(prefix)] = response

    def script_raw(self, prefix: list[str], output: Any) -> None:
        self._raw[tuple(prefix)] = output

    def _lookup(self, table: dict[tuple[str, ...], Any], argv: list[str]) -> Any:
        best: tuple[str, ...] | None = None
        for prefix in table:
            if tuple(argv[: len(prefix)]) == prefix and (best is None or len(prefix) > len(best)):
                best = prefix
        if best is None:
            raise ExternalRunnerFailure(f"unscripted sf call: {' '.join(argv)}", name="Unscripted")
        response = table[best]
        if isinstance(response, BaseException):
            raise response
        return response

    async def run(self, args: list[str], cwd: str | None = None) -> dict[str, Any]:
        self.calls.append(("json", list(args)))
        return self._lookup(self._json, args)

    async def run_raw(self, args: list[str], tolerate_nonzero: bool = False, cwd: str | None = None) -> str:
        self.calls.append(("raw", list(args)))
        return self._lookup(self._raw, args)

    def argv_for(self, command: list[str]) -> list[str]:
        """Argv of the most recent call that starts with `command`."""
        for _, argv in reversed(self.calls):
            if argv[: len(command)] == command:
                return argv
        raise AssertionError(f"no call starting with {command}: {self.calls}")

    def count(self, command: list[str]) -> int:
        return sum(1 for _, argv in self.calls if argv[: len(command)] == command)


def default_org_response(value: str | None) -> dict[str, Any]:
    """`sf config get target-org --json` body."""
    if value is None:
        return {"status": 0, "result": [{"name": "target-org", "success": True}]}
    return {"status": 0, "result": [{"name": "target-org", "value": value, "success": True}]}


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture(autouse=True)
def clean_settings(monkeypatch):
    """Isolate every test from the developer's environment and config file."""
    for env_name in (*ENV_OVERRIDES, CONFIG_ENV_VAR):
        monkeypatch.delenv(env_name, raising=False)
    Settings.set_config_file(None)
    Settings().reload()
    yield
    Settings.set_config_file(None)
    Settings._loaded = False


@pytest.fixture
def runner():
    return FakeRunner()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def resolver(runner, clock):
    return TargetResolver(runner, cache=DefaultTargetCache(ttl=30.0, clock=clock))


@pytest.fixture
def policy():
    """Default policy: writable, every org allowed. Override per test."""
    return AccessPolicy()


@pytest.fixture
def gate(policy):
    return AccessPolicyGate(policy)


@pytest.fixture
def rest():
    mock = MagicMock()
    mock.execute_anonymous = AsyncMock()
    mock.query = AsyncMock()
    mock.close = AsyncMock()
    return mock


@pytest.fixture
def context(runner, resolver, gate, rest):
    return ToolContext(
        runner=runner,
        resolver=resolver,
        gate=gate,
        credentials=CredentialStore(runner),
        rest=rest,
    )


@pytest.fixture
def registry():
    return build_registry()


@pytest.fixture
def dispatcher(registry, context):
    return Dispatcher(registry, context)


@pytest.fixture
def session():
    """
    Fake MCP ServerSession.

    Elicitation is declared by default; set
    `session.client_params.capabilities.elicitation = None` to drop it.
    `session.elicit.return_value` controls the user's answer.
    """
    mock = MagicMock()
    mock.send_progress_notification = AsyncMock()
    mock.send_log_message = AsyncMock()
    mock.elicit = AsyncMock(return_value=MagicMock(action="accept", content={"confirm": True}))
    mock.client_params.capabilities.elicitation = MagicMock()
    return mock


@dataclass
class RecordingScope(RequestScope):
    """RequestScope that remembers its progress reporters so tests can drain them."""

    reporters: list[ProgressReporter] = field(default_factory=list)

    async def drain(self) -> None:
        for reporter in self.reporters:
            await reporter.drain()
        if self.client_log is not None:
            await self.client_log.drain()


@pytest.fixture
def make_scope(session):
    """Build a RequestScope over the fake session, as the server does per request."""

    def _make(progress_token: Any = "tok-1", min_level: str = "debug") -> RecordingScope:
        scope = RecordingScope(
            confirmation=ConfirmationGate(session, ClientCapabilities.from_session(session)),
            client_log=ClientLogger(session, min_level, request_id=7),
        )

        def progress_factory(total: int) -> ProgressReporter:
            reporter = ProgressReporter(session, progress_token, total)
            scope.reporters.append(reporter)
            return reporter

        scope.progress_factory = progress_factory
        return scope

    return _make
