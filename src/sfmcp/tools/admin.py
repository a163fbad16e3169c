"""
admin.py - Server status operations.
"""

from __future__ import annotations

from typing import Any

from sfmcp.core.dispatcher import OperationCall, OperationDescriptor, ToolContext
from sfmcp.core.permissions import ALLOW_ALL

from .base import NoInput


async def permissions_snapshot(context: ToolContext) -> dict[str, Any]:
    """Effective policy plus the (cached) default org."""
    gate = context.gate
    allowed = gate.allowed_targets()
    if allowed == ALLOW_ALL:
        message = "All orgs are allowed"
    else:
        message = f"Access restricted to: {', '.join(allowed)}"
    return {
        "readOnly": gate.is_read_only(),
        "allowedOrgs": allowed,
        "defaultOrg": await context.resolver.get_default(),
        "message": message,
    }


async def _get_server_permissions(call: OperationCall) -> dict[str, Any]:
    return await permissions_snapshot(call.context)


OPERATIONS = (
    OperationDescriptor(
        name="get_server_permissions",
        title="Server Permissions",
        description=(
            "Get current server permission settings: whether the server runs in read-only "
            "mode, which orgs it may access, and the current default org."
        ),
        input_model=NoInput,
        handler=_get_server_permissions,
        target="none",
        idempotent=True,
        open_world=False,
    ),
)
