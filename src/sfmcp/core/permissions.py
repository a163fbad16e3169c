"""
permissions.py - Access Policy Gate

The policy is read once at startup from settings (READ_ONLY, ALLOWED_ORGS)
and never changes afterwards. This gate, not the confirmation prompt, is the
security boundary: every operation checks it before touching the platform.

    Mutating operation: read-only check, then allow-list check.
    Read operation:     allow-list check only.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

from sfmcp.foundation.config.logging import get_logger
from sfmcp.foundation.config.settings import get_setting

from .errors import ConfigurationError

logger = get_logger("sfmcp.permissions")

ALLOW_ALL = "ALL"

_TRUE_VALUES = frozenset({"true", "1", "yes", "on"})
_FALSE_VALUES = frozenset({"false", "0", "no", "off", ""})


@dataclass(frozen=True)
class AccessPolicy:
    """Immutable policy. `allowed_targets=None` means every target is allowed."""

    read_only: bool = False
    allowed_targets: frozenset[str] | None = None

    @property
    def allows_all(self) -> bool:
        return self.allowed_targets is None


def parse_read_only(raw: Any) -> bool:
    if isinstance(raw, bool):
        return raw
    if raw is None:
        return False
    text = str(raw).strip().lower()
    if text in _TRUE_VALUES:
        return True
    if text in _FALSE_VALUES:
        return False
    raise ConfigurationError(
        f"READ_ONLY must be a boolean (true/false), got {raw!r}",
        setting="policy.read_only",
        value=raw,
    )


def parse_allowed_targets(raw: Any) -> frozenset[str] | None:
    """Parse ALLOWED_ORGS: "ALL", a comma-separated string, or a YAML list.

    An unset or blank value allows every org.
    """
    if raw is None:
        return None
    if isinstance(raw, str):
        if not raw.strip() or raw.strip().upper() == ALLOW_ALL:
            return None
        entries = [part.strip() for part in raw.split(",")]
    elif isinstance(raw, (list, tuple, set, frozenset)):
        entries = [str(part).strip() for part in raw]
    else:
        raise ConfigurationError(
            f"ALLOWED_ORGS must be 'ALL' or a comma-separated list, got {raw!r}",
            setting="policy.allowed_orgs",
            value=raw,
        )

    entries = [e for e in entries if e]
    if not entries:
        raise ConfigurationError(
            "ALLOWED_ORGS is empty; use 'ALL' to allow every org",
            setting="policy.allowed_orgs",
            value=raw,
        )
    if any(e.upper() == ALLOW_ALL for e in entries):
        if len(entries) == 1:
            return None
        raise ConfigurationError(
            "ALLOWED_ORGS cannot mix 'ALL' with org names",
            setting="policy.allowed_orgs",
            value=raw,
        )
    return frozenset(entries)


def load_access_policy() -> AccessPolicy:
    """Build the policy from settings.

    Raises:
        ConfigurationError: a malformed READ_ONLY or ALLOWED_ORGS value.
    """
    return AccessPolicy(
        read_only=parse_read_only(get_setting("policy.read_only", False)),
        allowed_targets=parse_allowed_targets(get_setting("policy.allowed_orgs", ALLOW_ALL)),
    )


class AccessPolicyGate:
    """Answers policy questions; never raises."""

    def __init__(self, policy: AccessPolicy):
        self.policy = policy

    def _permits(self, target: str) -> bool:
        return self.policy.allowed_targets is None or target in self.policy.allowed_targets

    def is_allowed(self, target: str) -> bool:
        """Exact match against the allow-list. Aliases are not expanded."""
        allowed = self._permits(target)
        if not allowed:
            logger.warning("Access denied", target_org=target)
        return allowed

    def is_read_only(self) -> bool:
        return self.policy.read_only

    def is_any_allowed(self, identifiers: Iterable[str]) -> bool:
        """True if any of an org's identifiers (username or alias) is allowed."""
        return any(self._permits(i) for i in identifiers if i)

    def allowed_targets(self) -> list[str] | str:
        """Sorted allow-list, or "ALL"."""
        if self.policy.allowed_targets is None:
            return ALLOW_ALL
        return sorted(self.policy.allowed_targets)


__all__ = [
    "ALLOW_ALL",
    "AccessPolicy",
    "AccessPolicyGate",
    "load_access_policy",
    "parse_allowed_targets",
    "parse_read_only",
]
