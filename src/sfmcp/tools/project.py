"""
project.py - Metadata deployment.
"""

from __future__ import annotations

from typing import Literal

from pydantic import Field

from sfmcp.core.dispatcher import OperationDescriptor, cli_operation

from .base import TargetedInput


class DeployStartInput(TargetedInput):
    dry_run: bool = Field(..., alias="dryRun", description="Validate only, don't save changes")
    manifest: str | None = Field(
        None,
        description="package.xml manifest path. Excludes metadata and sourceDirectory.",
    )
    metadata: list[str] | None = Field(
        None,
        description="Component names to deploy, e.g. ApexClass:MyClass. Wildcards are supported.",
    )
    metadata_directory: str | None = Field(
        None,
        alias="metadataDirectory",
        description="Metadata directory or zip file to deploy",
    )
    single_package: bool = Field(
        False,
        alias="singlePackage",
        description="The metadata zip contains a single package structure",
    )
    source_directory: list[str] | None = Field(
        None,
        alias="sourceDirectory",
        description=(
            "Local source paths to deploy, directories or single files "
            "(e.g. force-app/main/default/classes/MyClass.cls). Excludes metadata and manifest."
        ),
    )
    tests: list[str] | None = Field(None, description="Tests to run with RunSpecifiedTests")
    test_level: Literal["NoTestRun", "RunSpecifiedTests", "RunLocalTests", "RunAllTestsInOrg"] | None = Field(
        None,
        alias="testLevel",
        description=(
            "NoTestRun (non-production only), RunSpecifiedTests, RunLocalTests (production "
            "default) or RunAllTestsInOrg"
        ),
    )
    wait: int | None = Field(None, gt=0, description="Minutes to wait for the deployment to finish")


OPERATIONS = (
    OperationDescriptor(
        name="deploy_start",
        title="Deploy Metadata",
        description=(
            "Deploy metadata to a Salesforce org with test execution options. Set dryRun to "
            "validate the deployment without saving changes."
        ),
        input_model=DeployStartInput,
        handler=cli_operation(
            ["project", "deploy", "start"],
            {
                "dry_run": "--dry-run",
                "manifest": "--manifest",
                "metadata": "--metadata",
                "metadata_directory": "--metadata-dir",
                "single_package": "--single-package",
                "source_directory": "--source-dir",
                "tests": "--tests",
                "test_level": "--test-level",
                "wait": "--wait",
            },
        ),
        read_only=False,
        destructive=True,
        dry_run_field="dry_run",
        phases={
            "resolve": "Resolving target org...",
            "validate": "Validating permissions...",
            "execute": "Deploying metadata...",
        },
        confirmation="Deploy metadata to org '{target_org}'? Changes will be saved to the org.",
    ),
)
