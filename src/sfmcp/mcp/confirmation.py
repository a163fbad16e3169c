"""
confirmation.py - Confirmation Gate

Asks the client to confirm a destructive operation through MCP elicitation.

Confirmation is a courtesy to the user, not a security check (that is the
AccessPolicyGate's job). So a client that cannot elicit, or an elicitation
that fails in transport, lets the operation proceed; only an explicit decline
or cancel stops it.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from sfmcp.foundation.config.logging import get_logger

logger = get_logger("sfmcp.confirmation")

DECLINED_REASON = "declined by user"
CANCELLED_REASON = "cancelled"


@dataclass(frozen=True)
class ClientCapabilities:
    """What the connected client declared during initialization."""

    supports_confirmation: bool = False

    @classmethod
    def from_session(cls, session: Any) -> ClientCapabilities:
        params = getattr(session, "client_params", None) if session is not None else None
        capabilities = getattr(params, "capabilities", None)
        return cls(supports_confirmation=getattr(capabilities, "elicitation", None) is not None)


@dataclass(frozen=True)
class ConfirmationResult:
    confirmed: bool
    reason: str | None = None

    @property
    def declined(self) -> bool:
        return self.reason == DECLINED_REASON


def confirmation_schema(message: str) -> dict[str, Any]:
    return {
        "type": "object",
        "properties": {
            "confirm": {
                "type": "boolean",
                "title": "Confirm",
                "description": message,
                "default": False,
            },
        },
        "required": ["confirm"],
    }


class ConfirmationGate:
    """
    Yes/no round trip to the client.

    Outcomes:
        no elicitation capability    -> confirmed, no round trip
        accept with confirm=true     -> confirmed
        decline                      -> not confirmed, "declined by user"
        cancel / anything else       -> not confirmed, "cancelled"
        exception while requesting   -> confirmed
    """

    def __init__(self, session: Any, capabilities: ClientCapabilities):
        self._session = session
        self.capabilities = capabilities

    async def request(self, message: str) -> ConfirmationResult:
        if not self.capabilities.supports_confirmation or self._session is None:
            return ConfirmationResult(confirmed=True)

        try:
            result = await self._session.elicit(
                message=message,
                requestedSchema=confirmation_schema(message),
            )
        except Exception as e:
            logger.warning("Confirmation request failed; proceeding", error=str(e))
            return ConfirmationResult(confirmed=True)

        action = getattr(result, "action", None)
        content = getattr(result, "content", None) or {}
        if action == "accept" and content.get("confirm") is True:
            return ConfirmationResult(confirmed=True)
        if action == "decline":
            return ConfirmationResult(confirmed=False, reason=DECLINED_REASON)
        return ConfirmationResult(confirmed=False, reason=CANCELLED_REASON)


__all__ = [
    "CANCELLED_REASON",
    "DECLINED_REASON",
    "ClientCapabilities",
    "ConfirmationGate",
    "ConfirmationResult",
    "confirmation_schema",
]
