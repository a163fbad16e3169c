"""
generate.py - Local source generators (Apex classes, triggers, components).

These write files into the local project and never touch an org, so they
are unbound. They still count as mutating and are refused in read-only mode.
"""

from __future__ import annotations

from typing import Literal

from pydantic import Field

from sfmcp.core.dispatcher import OperationDescriptor, cli_operation

from .base import OperationInput

_NAME_PATTERN = r"^[A-Za-z][A-Za-z0-9_]*$"

OUTPUT_DIR_DESCRIPTION = (
    "Directory for the created files, absolute or relative to the server's working directory. "
    "Defaults to the current directory."
)


class GenerateClassInput(OperationInput):
    name: str = Field(
        ...,
        max_length=40,
        pattern=_NAME_PATTERN,
        description="Name of the Apex class: up to 40 characters, starting with a letter",
    )
    output_dir: str | None = Field(None, alias="outputDir", description=OUTPUT_DIR_DESCRIPTION)


class GenerateTriggerInput(OperationInput):
    name: str = Field(
        ...,
        max_length=40,
        pattern=_NAME_PATTERN,
        description="Name of the Apex trigger: up to 40 characters, starting with a letter",
    )
    sobject: str | None = Field(
        None,
        alias="sObjectName",
        description="SObject the trigger fires on; omitted leaves the SOBJECT placeholder",
    )
    event: list[str] | None = Field(
        None,
        description="Trigger events, e.g. 'before insert', 'after update'. Default: before insert",
    )
    output_dir: str | None = Field(None, alias="outputDir", description=OUTPUT_DIR_DESCRIPTION)


class GenerateComponentInput(OperationInput):
    name: str = Field(
        ...,
        max_length=40,
        pattern=_NAME_PATTERN,
        description="Name of the component: up to 40 characters, starting with a letter",
    )
    type: Literal["aura", "lwc"] = Field("lwc", description="Component bundle type")
    template: Literal["default", "analyticsDashboard", "analyticsDashboardWithStep"] | None = Field(
        None,
        description="Template to fill in; analytics templates apply to lwc only",
    )
    output_dir: str | None = Field(None, alias="outputDir", description=OUTPUT_DIR_DESCRIPTION)


OPERATIONS = (
    OperationDescriptor(
        name="generate_class",
        title="Generate Apex Class",
        description=(
            "Generate an Apex .cls file and its metadata file. The files belong in a 'classes' "
            "directory of a package directory; point outputDir at one."
        ),
        input_model=GenerateClassInput,
        handler=cli_operation(
            ["apex", "generate", "class"],
            {"name": "--name", "output_dir": "--output-dir"},
            target_flag=None,
        ),
        target="none",
        read_only=False,
        open_world=False,
    ),
    OperationDescriptor(
        name="generate_trigger",
        title="Generate Apex Trigger",
        description=(
            "Generate an Apex .trigger file and its metadata file. The files belong in a "
            "'triggers' directory of a package directory; point outputDir at one."
        ),
        input_model=GenerateTriggerInput,
        handler=cli_operation(
            ["apex", "generate", "trigger"],
            {"name": "--name", "sobject": "--sobject", "event": "--event", "output_dir": "--output-dir"},
            target_flag=None,
        ),
        target="none",
        read_only=False,
        open_world=False,
    ),
    OperationDescriptor(
        name="generate_component",
        title="Generate Lightning Component",
        description="Generate a Lightning Web Component or Aura component bundle from a template.",
        input_model=GenerateComponentInput,
        handler=cli_operation(
            ["lightning", "generate", "component"],
            {"name": "--name", "type": "--type", "template": "--template", "output_dir": "--output-dir"},
            target_flag=None,
        ),
        target="none",
        read_only=False,
        open_world=False,
    ),
)
