"""
base.py - Shared input models for the operation catalog.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

TARGET_ORG_DESCRIPTION = (
    "Target Salesforce org username or alias. "
    "If not provided, uses the default org from the sf CLI configuration."
)


class OperationInput(BaseModel):
    """Base for every operation's arguments. Unknown keys are ignored."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class TargetedInput(OperationInput):
    target_org: str | None = Field(None, alias="targetOrg", description=TARGET_ORG_DESCRIPTION)


class NoInput(OperationInput):
    pass


__all__ = ["NoInput", "OperationInput", "TARGET_ORG_DESCRIPTION", "TargetedInput"]
