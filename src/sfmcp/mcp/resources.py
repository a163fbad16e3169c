"""
resources.py - Browsable MCP resources

    salesforce://permissions                 effective policy + default org
    salesforce://org/{alias}/metadata        org identity + enabled metadata types
    salesforce://org/{alias}/objects         standard and custom objects
    salesforce://org/{alias}/object/{name}   trimmed SObject describe
    salesforce://org/{alias}/limits          API limits

Org resources check the allow-list first. Failures are returned as
``{"error": message}`` content, never as protocol errors.
The {alias} variable completes to the orgs the policy permits.
"""

from __future__ import annotations

import re
from typing import Any

import orjson
from mcp.types import Resource, ResourceTemplate
from pydantic import AnyUrl

from sfmcp.core.dispatcher import ToolContext
from sfmcp.core.errors import AccessDenied, SalesforceMCPError
from sfmcp.foundation.config.logging import get_logger
from sfmcp.tools.admin import permissions_snapshot

logger = get_logger("sfmcp.resources")

PERMISSIONS_URI = "salesforce://permissions"
MIME_JSON = "application/json"

_ORG_URI = re.compile(r"^salesforce://org/(?P<alias>[^/]+)/(?P<kind>metadata|objects|limits|object/(?P<name>[^/]+))$")


def _dumps(payload: Any) -> str:
    return orjson.dumps(payload, option=orjson.OPT_INDENT_2).decode()


def _summarize_describe(describe: dict[str, Any]) -> dict[str, Any]:
    return {
        "name": describe.get("name"),
        "label": describe.get("label"),
        "custom": describe.get("custom"),
        "keyPrefix": describe.get("keyPrefix"),
        "fields": [
            {
                "name": f.get("name"),
                "label": f.get("label"),
                "type": f.get("type"),
                "length": f.get("length"),
                "nillable": f.get("nillable"),
                "referenceTo": f.get("referenceTo") or None,
            }
            for f in describe.get("fields") or []
        ],
        "childRelationships": [
            {
                "relationshipName": r.get("relationshipName"),
                "childSObject": r.get("childSObject"),
                "field": r.get("field"),
            }
            for r in describe.get("childRelationships") or []
            if r.get("relationshipName")
        ],
        "recordTypeInfos": [
            {"name": rt.get("name"), "developerName": rt.get("developerName"), "active": rt.get("active")}
            for rt in describe.get("recordTypeInfos") or []
        ],
    }


class ResourceCatalog:
    """Lists and reads the server's resources."""

    def __init__(self, context: ToolContext):
        self._context = context

    def list_resources(self) -> list[Resource]:
        return [
            Resource(
                uri=AnyUrl(PERMISSIONS_URI),
                name="server_permissions",
                title="Server Permissions",
                description="Read-only mode, allowed orgs and the current default org",
                mimeType=MIME_JSON,
            ),
        ]

    def list_templates(self) -> list[ResourceTemplate]:
        return [
            ResourceTemplate(
                uriTemplate="salesforce://org/{alias}/metadata",
                name="org_metadata",
                description="Org ID, username, instance URL, API version and enabled metadata types",
                mimeType=MIME_JSON,
            ),
            ResourceTemplate(
                uriTemplate="salesforce://org/{alias}/objects",
                name="org_objects",
                description="Standard and custom objects of an org",
                mimeType=MIME_JSON,
            ),
            ResourceTemplate(
                uriTemplate="salesforce://org/{alias}/object/{name}",
                name="org_object_schema",
                description="Fields, relationships and record types of one SObject",
                mimeType=MIME_JSON,
            ),
            ResourceTemplate(
                uriTemplate="salesforce://org/{alias}/limits",
                name="org_limits",
                description="API limits and current usage of an org",
                mimeType=MIME_JSON,
            ),
        ]

    async def read(self, uri: str) -> str:
        """Read a resource as JSON text.

        Raises:
            ValueError: the URI names no known resource.
        """
        if uri == PERMISSIONS_URI:
            return _dumps(await permissions_snapshot(self._context))

        match = _ORG_URI.match(uri)
        if match is None:
            raise ValueError(f"Resource not found: {uri}")

        alias = match.group("alias")
        try:
            if not self._context.gate.is_allowed(alias):
                raise AccessDenied(alias)
            payload = await self._read_org(alias, match.group("kind"), match.group("name"))
        except SalesforceMCPError as e:
            logger.info("Resource read failed", uri=uri, error=e.message)
            return _dumps({"error": e.message})
        return _dumps(payload)

    async def complete_alias(self, prefix: str) -> list[str]:
        """Permitted org identifiers starting with `prefix` (case-insensitive).

        Each org is offered once, by its first permitted alias or else its
        username.
        """
        credentials = self._context.credentials
        if credentials is None:
            return []
        gate = self._context.gate
        try:
            orgs = await credentials.list_authorized_targets()
        except SalesforceMCPError as e:
            logger.info("Alias completion failed", error=e.message)
            return []

        needle = prefix.lower()
        values: list[str] = []
        for org in orgs:
            permitted = [i for i in (*org.aliases, org.username) if gate.is_any_allowed([i])]
            if permitted and permitted[0].lower().startswith(needle):
                values.append(permitted[0])
        return values

    async def _org_info(self, alias: str) -> dict[str, Any]:
        credentials = self._context.credentials
        if credentials is None:
            return {}
        return await credentials.get_target_metadata(alias)

    async def _read_org(self, alias: str, kind: str, name: str | None) -> Any:
        runner = self._context.runner
        if kind == "metadata":
            info = await self._org_info(alias)
            document = await runner.run(["org", "list", "metadata-types", "--target-org", alias])
            result = document.get("result") or {}
            return {
                "orgId": info.get("id"),
                "username": info.get("username"),
                "instanceUrl": info.get("instanceUrl"),
                "apiVersion": info.get("apiVersion"),
                "organizationNamespace": result.get("organizationNamespace"),
                "metadataObjects": [
                    {
                        "xmlName": m.get("xmlName"),
                        "directoryName": m.get("directoryName"),
                        "suffix": m.get("suffix"),
                        "inFolder": m.get("inFolder"),
                    }
                    for m in result.get("metadataObjects") or []
                ],
            }
        if kind == "objects":
            document = await runner.run(["sobject", "list", "--sobject", "all", "--target-org", alias])
            return {"objects": document.get("result") or []}
        if kind == "limits":
            document = await runner.run(["limits", "api", "display", "--target-org", alias])
            return {"limits": document.get("result") or []}

        document = await runner.run(["sobject", "describe", "--sobject", name, "--target-org", alias])
        return _summarize_describe(document.get("result") or {})


__all__ = ["PERMISSIONS_URI", "ResourceCatalog"]
