"""
sobjects.py - SObject schema operations.
"""

from __future__ import annotations

from typing import Literal

from pydantic import Field

from sfmcp.core.dispatcher import OperationDescriptor, cli_operation

from .base import TargetedInput


class SObjectListInput(TargetedInput):
    category: Literal["all", "custom", "standard"] = Field(
        "all",
        description="Which objects to list",
    )


class SObjectDescribeInput(TargetedInput):
    sobject_name: str = Field(
        ...,
        alias="sObjectName",
        min_length=1,
        description="API name of the SObject to describe, e.g. Account or Invoice__c",
    )
    use_tooling_api: bool = Field(
        False,
        alias="useToolingApi",
        description="Describe a Tooling API object instead of a standard/custom object",
    )


OPERATIONS = (
    OperationDescriptor(
        name="sobject_list",
        title="List SObjects",
        description=(
            "List the standard and custom objects of a Salesforce org. Run this before writing "
            "Apex or SOQL when the API names of the objects involved are not known."
        ),
        input_model=SObjectListInput,
        handler=cli_operation(["sobject", "list"], {"category": "--sobject"}),
        idempotent=True,
    ),
    OperationDescriptor(
        name="sobject_describe",
        title="Describe SObject",
        description=(
            "Describe a Salesforce SObject: its fields, relationships and other metadata. Run "
            "this before querying or changing records to get exact field names and types."
        ),
        input_model=SObjectDescribeInput,
        handler=cli_operation(
            ["sobject", "describe"],
            {"sobject_name": "--sobject", "use_tooling_api": "--use-tooling-api"},
        ),
        idempotent=True,
    ),
)
