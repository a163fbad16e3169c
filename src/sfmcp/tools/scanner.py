"""
scanner.py - Static code analysis: the sf code scanner plugin and Code Analyzer.

Both exit non-zero when they find violations, so they run through the raw
runner with that exit status tolerated.
"""

from __future__ import annotations

from typing import Any, Literal

import orjson
from pydantic import Field

from sfmcp.core.dispatcher import OperationCall, OperationDescriptor, cli_operation, render_flags

from .base import OperationInput

Engine = Literal["eslint", "eslint-lwc", "eslint-typescript", "pmd", "pmd-appexchange", "retire-js", "sfge", "cpd"]


class ScannerRunInput(OperationInput):
    target: list[str] = Field(
        ...,
        min_length=1,
        description="Source files, folders or glob patterns to scan",
    )
    category: list[str] | None = Field(None, description="Rule categories to run")
    engine: list[Engine] | None = Field(None, description="Engines to run")
    eslint_config: str | None = Field(None, alias="eslintConfig", description="ESLint config file")
    pmd_config: str | None = Field(None, alias="pmdConfig", description="PMD rule XML file")
    ts_config: str | None = Field(None, alias="tsConfig", description="tsconfig.json for TypeScript files")
    format: Literal["csv", "html", "json", "junit", "sarif", "table", "xml"] = Field(
        "json",
        description="Output format",
    )
    outfile: str | None = Field(None, description="File to write output to")
    severity_threshold: int | None = Field(
        None,
        alias="severityThreshold",
        ge=1,
        le=3,
        description="Fail when a violation at or above this severity is found (1 = high)",
    )
    normalize_severity: bool = Field(
        False,
        alias="normalizeSeverity",
        description="Report normalized severities across engines",
    )
    project_dir: list[str] | None = Field(None, alias="projectDir", description="Project root directories")
    verbose: bool = Field(False, description="Enable verbose output")
    verbose_violations: bool = Field(
        False,
        alias="verboseViolations",
        description="Include rule descriptions in violation messages",
    )


_SCALAR_FLAGS = {
    "eslint_config": "--eslintconfig",
    "pmd_config": "--pmdconfig",
    "ts_config": "--tsconfig",
    "format": "--format",
    "outfile": "--outfile",
    "severity_threshold": "--severity-threshold",
    "normalize_severity": "--normalize-severity",
    "verbose": "--verbose",
    "verbose_violations": "--verbose-violations",
}

# The scanner takes these as one comma-separated value.
_JOINED_FLAGS = {
    "target": "--target",
    "category": "--category",
    "engine": "--engine",
    "project_dir": "--projectdir",
}


def scanner_argv(args: ScannerRunInput) -> list[str]:
    argv = ["scanner", "run"]
    for field_name, flag in _JOINED_FLAGS.items():
        values = getattr(args, field_name)
        if values:
            argv += [flag, ",".join(values)]
    argv += render_flags(args, _SCALAR_FLAGS)
    return argv


async def _scanner_run(call: OperationCall) -> Any:
    args: ScannerRunInput = call.arguments
    output = await call.runner.run_raw(scanner_argv(args), tolerate_nonzero=True)

    if args.format == "json" and not args.outfile:
        try:
            return {"violations": orjson.loads(output) if output.strip() else []}
        except orjson.JSONDecodeError:
            return {"output": output}
    return {"output": output}


# =============================================================================
# Code Analyzer (the scanner's successor plugin)
# =============================================================================


class CodeAnalyzerRunInput(OperationInput):
    rule_selector: list[str] = Field(
        ...,
        alias="ruleSelector",
        min_length=1,
        description=(
            "Rules by engine, severity, name or tag; combine with colons (e.g. 'eslint:Security:3'). "
            "Several selectors form a union. Use list_code_analyzer_rules to find values."
        ),
    )
    workspace: list[str] | None = Field(None, description="Files or folders to analyze (globs allowed)")
    target: list[str] | None = Field(None, description="Subset of the workspace to analyze (globs allowed)")
    output_file: str | None = Field(
        None,
        alias="outputFile",
        description="Write results to this file; the format follows its extension",
    )
    severity: Literal["High", "Medium", "Low"] | None = Field(
        None,
        description="Exit with an error on violations at or above this severity",
    )
    config_file: str | None = Field(None, alias="configFile", description="code-analyzer.yml to customize rules")


class CodeAnalyzerRulesInput(OperationInput):
    rule_selector: list[str] | None = Field(
        None,
        alias="ruleSelector",
        description="Filter rules by name, tag, category or engine",
    )
    workspace: list[str] | None = Field(None, description="Files or folders used for rule discovery")
    target: list[str] | None = Field(None, description="Subset of the workspace (globs allowed)")
    config_file: str | None = Field(None, alias="configFile", description="Config file for rule discovery")
    view: Literal["detail", "table"] | None = Field(None, description="'table' (concise) or 'detail'")


_ANALYZER_FLAGS = {
    "workspace": "--workspace",
    "target": "--target",
    "rule_selector": "--rule-selector",
    "config_file": "--config-file",
}


def _as_output(output: str, call: OperationCall) -> dict[str, Any]:
    return {"output": output}


OPERATIONS = (
    OperationDescriptor(
        name="scanner_run",
        title="Run Code Scanner",
        description=(
            "Scan local source code with the Salesforce Code Scanner (PMD, ESLint, RetireJS, "
            "CPD, Graph Engine) and report rule violations."
        ),
        input_model=ScannerRunInput,
        handler=_scanner_run,
        target="none",
        read_only=False,
        open_world=False,
        phases={
            "validate": "Validating permissions...",
            "execute": "Running scan...",
        },
    ),
    OperationDescriptor(
        name="run_code_analyzer",
        title="Run Code Analyzer",
        description=(
            "Analyze local code for quality and security issues with Salesforce Code Analyzer. "
            "Run list_code_analyzer_rules first to choose ruleSelector values."
        ),
        input_model=CodeAnalyzerRunInput,
        handler=cli_operation(
            ["code-analyzer", "run"],
            {**_ANALYZER_FLAGS, "output_file": "--output-file", "severity": "--severity-threshold"},
            target_flag=None,
            raw=True,
            tolerate_nonzero=True,
            transform=_as_output,
        ),
        target="none",
        read_only=False,
        open_world=False,
        phases={
            "validate": "Validating permissions...",
            "execute": "Running code analysis...",
        },
    ),
    OperationDescriptor(
        name="list_code_analyzer_rules",
        title="List Code Analyzer Rules",
        description="List the rules Salesforce Code Analyzer can run, to pick selectors for run_code_analyzer.",
        input_model=CodeAnalyzerRulesInput,
        handler=cli_operation(
            ["code-analyzer", "rules"],
            {**_ANALYZER_FLAGS, "view": "--view"},
            target_flag=None,
            raw=True,
            transform=_as_output,
        ),
        target="none",
        idempotent=True,
        open_world=False,
    ),
)
