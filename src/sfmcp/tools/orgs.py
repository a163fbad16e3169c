"""
orgs.py - Org management operations.

Listing and default-org operations have dedicated handlers; the rest are
plain `sf org ...` invocations built with cli_operation.
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import Field

from sfmcp.core.dispatcher import OperationCall, OperationDescriptor, cli_operation
from sfmcp.core.errors import AccessDenied, ExternalRunnerFailure, MalformedInput
from sfmcp.core.permissions import ALLOW_ALL, AccessPolicyGate
from sfmcp.foundation.api.types import Envelope

from .base import NoInput, OperationInput, TargetedInput

NO_DEFAULT_MESSAGE = "No default target org is configured. Set one with: sf config set target-org <alias>"


# =============================================================================
# Inputs
# =============================================================================


class SetDefaultOrgInput(OperationInput):
    target_org: str = Field(
        ...,
        alias="targetOrg",
        min_length=1,
        description="Username or alias of the org to use as the sf CLI default",
    )


class ListMetadataTypesInput(TargetedInput):
    api_version: str | None = Field(None, alias="apiVersion", description="API version to use")
    output_file: str | None = Field(None, alias="outputFile", description="Path to write the results to")


class ListMetadataInput(TargetedInput):
    metadata_type: str = Field(
        ...,
        alias="metadataType",
        description="Metadata type to list, e.g. CustomObject, ApexClass, Report",
    )
    folder: str | None = Field(None, description="Folder for folder-based types (Report, Dashboard, ...)")
    api_version: str | None = Field(None, alias="apiVersion", description="API version to use")
    output_file: str | None = Field(None, alias="outputFile", description="Path to write the results to")


class OpenOrgInput(TargetedInput):
    path: str | None = Field(
        None,
        description="URL path after the instance host, e.g. 'lightning' or '/apex/YourPage'",
    )
    browser: Literal["chrome", "edge", "firefox"] | None = Field(None, description="Browser to open the org in")
    private_mode: bool = Field(False, alias="privateMode", description="Open in a private (incognito) window")
    source_file: str | None = Field(
        None,
        alias="sourceFile",
        description="ApexPage, FlexiPage, Flow or Agent metadata file to open in its Builder",
    )
    url_only: bool = Field(
        False,
        alias="urlOnly",
        description="Return the login URL without launching a browser",
    )


class LogoutInput(OperationInput):
    target_org: str | None = Field(
        None,
        alias="targetOrg",
        description="Username or alias of the org to log out of. Never defaults to the configured org.",
    )
    all_orgs: bool = Field(
        False,
        alias="all",
        description="Log out of every authenticated org. Only permitted when ALLOWED_ORGS is ALL.",
    )


class AssignPermissionInput(TargetedInput):
    names: list[str] = Field(..., min_length=1, description="Names to assign")
    on_behalf_of: list[str] | None = Field(
        None,
        alias="onBehalfOf",
        description="Usernames or aliases to assign to; defaults to the org's admin user",
    )


# =============================================================================
# Handlers
# =============================================================================


def _group_orgs(orgs: list[Any]) -> dict[str, list[dict[str, Any]]]:
    groups: dict[str, list[dict[str, Any]]] = {
        "devHubOrgs": [],
        "production": [],
        "sandboxes": [],
        "scratchOrgs": [],
        "other": [],
    }
    keys = {
        "devhub": "devHubOrgs",
        "production": "production",
        "sandbox": "sandboxes",
        "scratch": "scratchOrgs",
        "other": "other",
    }
    for org in orgs:
        groups[keys[org.category]].append(org.model_dump(mode="json", by_alias=True, exclude_none=True))
    return groups


async def _list_connected_orgs(call: OperationCall) -> dict[str, Any]:
    credentials = call.context.credentials
    if credentials is None:
        raise ExternalRunnerFailure("Credential lookup is not available", name="NoCredentialStore")

    gate = call.context.gate
    orgs = [org for org in await credentials.list_authorized_targets() if gate.is_any_allowed(org.identifiers())]

    result: dict[str, Any] = {**_group_orgs(orgs), "totalOrgs": len(orgs)}
    if not gate.policy.allows_all:
        result["permissionMessage"] = f"Showing only allowed orgs: {', '.join(gate.allowed_targets())}"
    return result


async def _get_default_org(call: OperationCall) -> Envelope:
    default = await call.context.resolver.get_default()
    if default is None:
        return Envelope.ok({"defaultOrg": None}, message=NO_DEFAULT_MESSAGE)
    return Envelope.ok({"defaultOrg": default}, message=f"Default target org is '{default}'")


async def _set_default_org(call: OperationCall) -> Envelope:
    target = call.target_org
    result = await call.context.resolver.set_default(target)
    return Envelope.ok(
        {"defaultOrg": target, "result": result.get("result")},
        target_org=target,
        message=f"Default target org set to '{target}'",
    )


async def _unset_default_org(call: OperationCall) -> Envelope:
    result = await call.context.resolver.unset_default()
    return Envelope.ok({"result": result.get("result")}, message="Default target org unset")


def _check_logout_scope(args: LogoutInput, gate: AccessPolicyGate) -> None:
    has_target = bool(args.target_org and args.target_org.strip())
    if has_target and args.all_orgs:
        raise MalformedInput("logout", [{"loc": "all", "msg": "Cannot specify both targetOrg and all"}])
    if not has_target and not args.all_orgs:
        raise MalformedInput("logout", [{"loc": "targetOrg", "msg": "Either targetOrg or all must be specified"}])
    if args.all_orgs and not gate.policy.allows_all:
        raise AccessDenied(ALLOW_ALL, message="Cannot log out of all orgs when ALLOWED_ORGS is restricted")


def _logout_message(args: LogoutInput, target_org: str | None) -> str:
    if args.all_orgs:
        return "Log out of ALL authenticated orgs? Stored credentials for every org will be removed."
    return f"Log out of org '{target_org}'? Stored credentials for this org will be removed."


def _after_logout(result: Any, call: OperationCall) -> Any:
    # The logged-out org may have been the default.
    call.context.resolver.invalidate()
    return result


# =============================================================================
# Catalog
# =============================================================================

OPERATIONS = (
    OperationDescriptor(
        name="list_connected_salesforce_orgs",
        title="List Connected Orgs",
        description=(
            "List all Salesforce orgs authenticated with the sf CLI, grouped into Dev Hubs, "
            "production orgs, sandboxes and scratch orgs. Only orgs permitted by ALLOWED_ORGS "
            "are shown; an org is shown when its username or any of its aliases is allowed."
        ),
        input_model=NoInput,
        handler=_list_connected_orgs,
        target="none",
        idempotent=True,
    ),
    OperationDescriptor(
        name="get_default_org",
        title="Get Default Org",
        description=(
            "Get the current default target org configured in the Salesforce CLI. This org "
            "is used whenever targetOrg is omitted from other tool calls."
        ),
        input_model=NoInput,
        handler=_get_default_org,
        target="none",
        idempotent=True,
    ),
    OperationDescriptor(
        name="set_default_org",
        title="Set Default Org",
        description=(
            "Set the default target org for the Salesforce CLI. Once set, all tools use this "
            "org when no targetOrg is specified. The value persists across sessions."
        ),
        input_model=SetDefaultOrgInput,
        handler=_set_default_org,
        target="explicit",
        read_only=False,
        idempotent=True,
    ),
    OperationDescriptor(
        name="unset_default_org",
        title="Unset Default Org",
        description="Remove the default target org from the Salesforce CLI configuration.",
        input_model=NoInput,
        handler=_unset_default_org,
        target="none",
        read_only=False,
        idempotent=True,
    ),
    OperationDescriptor(
        name="display_user",
        title="Display User",
        description="Display information about the default user of a Salesforce org.",
        input_model=TargetedInput,
        handler=cli_operation(["org", "display", "user"]),
        idempotent=True,
    ),
    OperationDescriptor(
        name="list_metadata_types",
        title="List Metadata Types",
        description="List the metadata types that are enabled for a Salesforce org.",
        input_model=ListMetadataTypesInput,
        handler=cli_operation(
            ["org", "list", "metadata-types"],
            {"api_version": "--api-version", "output_file": "--output-file"},
        ),
        idempotent=True,
    ),
    OperationDescriptor(
        name="list_metadata",
        title="List Metadata",
        description="List the metadata components and properties of a specified type in a Salesforce org.",
        input_model=ListMetadataInput,
        handler=cli_operation(
            ["org", "list", "metadata"],
            {
                "metadata_type": "--metadata-type",
                "folder": "--folder",
                "api_version": "--api-version",
                "output_file": "--output-file",
            },
        ),
        idempotent=True,
    ),
    OperationDescriptor(
        name="assign_permission_set",
        title="Assign Permission Set",
        description=(
            "Assign one or more permission sets to users of a Salesforce org. Without "
            "onBehalfOf the sets are assigned to the org's default user."
        ),
        input_model=AssignPermissionInput,
        handler=cli_operation(
            ["org", "assign", "permset"],
            {"names": "--name", "on_behalf_of": "--on-behalf-of"},
        ),
        read_only=False,
        idempotent=True,
    ),
    OperationDescriptor(
        name="assign_permission_set_license",
        title="Assign Permission Set License",
        description="Assign one or more permission set licenses to users of a Salesforce org.",
        input_model=AssignPermissionInput,
        handler=cli_operation(
            ["org", "assign", "permsetlicense"],
            {"names": "--name", "on_behalf_of": "--on-behalf-of"},
        ),
        read_only=False,
        idempotent=True,
    ),
    OperationDescriptor(
        name="open",
        title="Open Org",
        description=(
            "Open a Salesforce org in a browser. Use path for a specific page (the part of the "
            "URL after the instance host), sourceFile to open local metadata in its Builder, "
            "or urlOnly to get the URL without launching a browser."
        ),
        input_model=OpenOrgInput,
        handler=cli_operation(
            ["org", "open"],
            {
                "path": "--path",
                "browser": "--browser",
                "private_mode": "--private",
                "source_file": "--source-file",
                "url_only": "--url-only",
            },
        ),
    ),
    OperationDescriptor(
        name="logout",
        title="Log Out of Org",
        description=(
            "Log out of a Salesforce org. Be careful: logging out of a scratch org without "
            "access to its password means you cannot access that scratch org again. Name the "
            "org with targetOrg, or pass all=true to log out of every org; the default org is "
            "never assumed."
        ),
        input_model=LogoutInput,
        handler=cli_operation(
            ["org", "logout"],
            {"all_orgs": "--all"},
            extra=["--no-prompt"],
            transform=_after_logout,
        ),
        target="optional",
        read_only=False,
        destructive=True,
        confirmation=_logout_message,
        guard=_check_logout_scope,
    ),
)
