"""
target.py - Target org resolution

Operations name the org they act on with `targetOrg`. When the caller omits
it, the CLI's configured default (`sf config get target-org`) is used. That
lookup spawns a process, so its answer is held in a DefaultTargetCache for a
short TTL.

The cache is the only shared mutable state in the server. It has no lock:
concurrent misses may each fetch, and the last write wins.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from typing import TYPE_CHECKING

from sfmcp.foundation.config.logging import get_logger
from sfmcp.foundation.config.settings import get_setting

from .errors import ExternalRunnerFailure, NoTargetConfigured

if TYPE_CHECKING:
    from sfmcp.runner.sf_command import SfCommandRunner

logger = get_logger("sfmcp.target")

DEFAULT_TTL_SECONDS = 30.0


class DefaultTargetCache:
    """Single cached default target with a TTL.

    `get`, `set` and `invalidate` are the only ways to touch the entry.
    """

    def __init__(self, ttl: float = DEFAULT_TTL_SECONDS, clock: Callable[[], float] = time.monotonic):
        self.ttl = ttl
        self._clock = clock
        self._value: str | None = None
        self._fetched_at: float | None = None

    def get(self) -> str | None:
        """Cached value if one was stored less than `ttl` seconds ago."""
        if self._value is None or self._fetched_at is None:
            return None
        if self._clock() - self._fetched_at >= self.ttl:
            return None
        return self._value

    def set(self, value: str) -> None:
        self._value = value
        self._fetched_at = self._clock()

    def invalidate(self) -> None:
        self._value = None
        self._fetched_at = None


class TargetResolver:
    """Resolves the effective target org for an operation."""

    def __init__(self, runner: SfCommandRunner, cache: DefaultTargetCache | None = None):
        self._runner = runner
        if cache is None:
            cache = DefaultTargetCache(ttl=float(get_setting("target.cache_ttl_seconds", DEFAULT_TTL_SECONDS)))
        self.cache = cache

    async def _fetch_default(self) -> str | None:
        payload = await self._runner.run(["config", "get", "target-org"])
        results = payload.get("result") or []
        if not results or not isinstance(results[0], dict):
            return None
        value = results[0].get("value")
        if not isinstance(value, str):
            return None
        return value.strip() or None

    async def resolve(self, explicit: str | None = None) -> str:
        """Return `explicit` if given, else the (cached) configured default.

        Raises:
            NoTargetConfigured: no explicit target and no default could be found.
        """
        if explicit is not None and explicit.strip():
            return explicit

        cached = self.cache.get()
        if cached is not None:
            return cached

        try:
            value = await self._fetch_default()
        except ExternalRunnerFailure as e:
            logger.debug("Default target lookup failed", error=e.message)
            raise NoTargetConfigured(cause=e.message) from e
        except (OSError, ValueError) as e:
            logger.debug("Default target lookup failed", error=str(e))
            raise NoTargetConfigured(cause=str(e)) from e

        if not value:
            raise NoTargetConfigured()

        self.cache.set(value)
        return value

    async def get_default(self) -> str | None:
        """Like `resolve()` without an explicit target, but returns None instead of raising."""
        try:
            return await self.resolve(None)
        except NoTargetConfigured:
            return None

    def invalidate(self) -> None:
        self.cache.invalidate()

    async def set_default(self, target: str) -> dict:
        try:
            return await self._runner.run(["config", "set", f"target-org={target}"])
        finally:
            self.invalidate()

    async def unset_default(self) -> dict:
        try:
            return await self._runner.run(["config", "unset", "target-org"])
        finally:
            self.invalidate()


__all__ = ["DEFAULT_TTL_SECONDS", "DefaultTargetCache", "TargetResolver"]
