"""
connection.py - Credential / identity lookup

Reads the authorizations the `sf` CLI has stored locally. No credentials are
created or refreshed here; `sf org login` is the only way in.
"""

from __future__ import annotations

from typing import Any

from pydantic import ConfigDict, Field, field_validator

from sfmcp.core.errors import ExternalRunnerFailure
from sfmcp.foundation.api.types import OrjsonModel
from sfmcp.foundation.config.logging import get_logger

from .sf_command import SfCommandRunner

logger = get_logger("sfmcp.connection")


class OrgAuthorization(OrjsonModel):
    """One locally stored org authorization."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    username: str
    aliases: list[str] = Field(default_factory=list)
    org_id: str | None = Field(None, alias="orgId")
    instance_url: str | None = Field(None, alias="instanceUrl")
    is_dev_hub: bool = Field(False, alias="isDevHub")
    is_scratch_org: bool = Field(False, alias="isScratchOrg")
    is_sandbox: bool = Field(False, alias="isSandbox")
    api_version: str | None = Field(None, alias="apiVersion")

    @field_validator("aliases", mode="before")
    @classmethod
    def _split_aliases(cls, value: Any) -> list[str]:
        # `sf org list auth` reports aliases as one comma-separated string.
        if value is None:
            return []
        if isinstance(value, str):
            return [a.strip() for a in value.split(",") if a.strip()]
        return list(value)

    def identifiers(self) -> list[str]:
        """Canonical username followed by every alias."""
        return [self.username, *self.aliases]

    @property
    def category(self) -> str:
        """devhub | scratch | sandbox | production | other."""
        if self.is_dev_hub:
            return "devhub"
        if self.is_scratch_org:
            return "scratch"
        url = self.instance_url or ""
        if self.is_sandbox or ".sandbox." in url:
            return "sandbox"
        if ".salesforce.com" in url:
            return "production"
        return "other"


class CredentialStore:
    """Lookup over `sf org list auth` and `sf org display`."""

    def __init__(self, runner: SfCommandRunner):
        self._runner = runner

    async def list_authorized_targets(self) -> list[OrgAuthorization]:
        try:
            payload = await self._runner.run(["org", "list", "auth"])
        except ExternalRunnerFailure as e:
            if e.name in ("NoAuthInfoFound", "NoAuthorizationsFound"):
                logger.warning("No authenticated orgs found")
                return []
            raise

        rows = payload.get("result") or []
        orgs: list[OrgAuthorization] = []
        for row in rows:
            if not isinstance(row, dict) or not row.get("username"):
                continue
            if "aliases" not in row and "alias" in row:
                row = {**row, "aliases": row["alias"]}
            orgs.append(OrgAuthorization.model_validate(row))
        return orgs

    async def get_target_metadata(self, target: str) -> dict[str, Any]:
        """`sf org display` result: id, apiVersion, instanceUrl, username, alias, ..."""
        payload = await self._runner.run(["org", "display", "--target-org", target])
        return payload.get("result") or {}

    async def get_access_token(self, target: str) -> tuple[str, str, str]:
        """Return (instance_url, access_token, api_version) for `target`."""
        meta = await self.get_target_metadata(target)
        token = meta.get("accessToken")
        instance_url = meta.get("instanceUrl")
        if not token or not instance_url:
            raise ExternalRunnerFailure(
                f"No authenticated org found for '{target}'. "
                "Please run 'sf org login' or 'sf org create' first.",
                name="NoAuthInfoFound",
            )
        return instance_url.rstrip("/"), token, str(meta.get("apiVersion") or "")


__all__ = ["CredentialStore", "OrgAuthorization"]
