"""
apex.py - Apex execution, tests, coverage and debug logs.
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import Field

from sfmcp.core.dispatcher import OperationCall, OperationDescriptor, cli_operation
from sfmcp.core.errors import ExternalRunnerFailure
from sfmcp.foundation.api.types import Envelope

from .base import TargetedInput

ORG_WIDE_COVERAGE_SOQL = "SELECT PercentCovered FROM ApexOrgWideCoverage"


class AnonymousApexInput(TargetedInput):
    code: str = Field(..., min_length=1, description="Apex code to execute")


class RunTestsInput(TargetedInput):
    test_level: Literal["RunLocalTests", "RunAllTestsInOrg", "RunSpecifiedTests"] = Field(
        "RunLocalTests",
        alias="testLevel",
        description=(
            "RunLocalTests (all except managed packages), RunAllTestsInOrg (all tests) or "
            "RunSpecifiedTests (only the given classes, suites or tests)"
        ),
    )
    class_names: list[str] | None = Field(
        None,
        alias="classNames",
        description="Apex test class names to run. Excludes suiteNames and tests.",
    )
    suite_names: list[str] | None = Field(
        None,
        alias="suiteNames",
        description="Apex test suite names to run. Excludes classNames and tests.",
    )
    tests: list[str] | None = Field(
        None,
        description="Test classes or Class.method names to run. Excludes classNames and suiteNames.",
    )
    code_coverage: bool = Field(True, alias="codeCoverage", description="Collect code coverage")
    synchronous: bool = Field(False, description="Wait for the run to finish before returning")


class TestResultsInput(TargetedInput):
    test_run_id: str = Field(..., alias="testRunId", min_length=1, description="ID of the test run")
    code_coverage: bool = Field(False, alias="codeCoverage", description="Include code coverage")
    detailed_coverage: bool = Field(
        False,
        alias="detailedCoverage",
        description="Include per-test coverage (requires codeCoverage)",
    )


class CodeCoverageInput(TargetedInput):
    test_run_id: str | None = Field(
        None,
        alias="testRunId",
        description="Report coverage from this test run; omit for org-wide coverage",
    )


class LogListInput(TargetedInput):
    pass


class GetLogInput(TargetedInput):
    log_id: str | None = Field(None, alias="logId", description="ID of the debug log to fetch")
    number: int | None = Field(
        None,
        alias="recentLogsNumber",
        gt=0,
        description="Fetch this many of the most recent logs instead of a single log",
    )


async def _execute_anonymous(call: OperationCall) -> Envelope:
    rest = call.context.rest
    if rest is None:
        raise ExternalRunnerFailure("REST client is not available", name="NoRestClient")

    result = await rest.execute_anonymous(call.target_org, call.arguments.code)
    if result.get("compiled") and result.get("success"):
        return Envelope.ok(result, target_org=call.target_org)

    message = result.get("compileProblem") or result.get("exceptionMessage") or "Anonymous Apex failed"
    return Envelope(success=False, message=message, target_org=call.target_org, data=result)


def _coverage_from_test_run(result: Any, call: OperationCall) -> dict[str, Any]:
    summary = (result or {}).get("summary") or {}
    coverage = (result or {}).get("coverage") or {}
    return {
        "testRunId": call.arguments.test_run_id,
        "testRunCoverage": summary.get("testRunCoverage"),
        "orgWideCoverage": summary.get("orgWideCoverage"),
        "coverage": coverage.get("coverage", []),
    }


async def _code_coverage(call: OperationCall) -> dict[str, Any]:
    if call.arguments.test_run_id:
        document = await call.runner.run(
            [
                "apex",
                "get",
                "test",
                "--target-org",
                call.target_org,
                "--test-run-id",
                call.arguments.test_run_id,
                "--code-coverage",
            ]
        )
        return _coverage_from_test_run(document.get("result"), call)

    rest = call.context.rest
    if rest is None:
        raise ExternalRunnerFailure("REST client is not available", name="NoRestClient")
    result = await rest.query(call.target_org, ORG_WIDE_COVERAGE_SOQL, tooling=True)
    records = result.get("records") or []
    percent = records[0].get("PercentCovered") if records else None
    return {"orgWideCoverage": f"{percent}%" if percent is not None else None}


OPERATIONS = (
    OperationDescriptor(
        name="execute_anonymous_apex",
        title="Execute Anonymous Apex",
        description=(
            "Execute Apex code in a Salesforce org through the Tooling API. Use this to try "
            "snippets, start batch jobs or run one-off data fixes. Check the debug logs "
            "afterwards for the output of System.debug statements."
        ),
        input_model=AnonymousApexInput,
        handler=_execute_anonymous,
        read_only=False,
        destructive=True,
        confirmation="Execute anonymous Apex on org '{target_org}'?\n\n{code}",
    ),
    OperationDescriptor(
        name="run_apex_tests",
        title="Run Apex Tests",
        description=(
            "Run Apex tests in a Salesforce org by test level, class, suite or individual test, "
            "optionally collecting code coverage. Asynchronous runs return a testRunId for "
            "get_apex_test_results."
        ),
        input_model=RunTestsInput,
        handler=cli_operation(
            ["apex", "run", "test"],
            {
                "test_level": "--test-level",
                "class_names": "--class-names",
                "suite_names": "--suite-names",
                "tests": "--tests",
                "code_coverage": "--code-coverage",
                "synchronous": "--synchronous",
            },
        ),
        read_only=False,
    ),
    OperationDescriptor(
        name="get_apex_test_results",
        title="Get Apex Test Results",
        description=(
            "Get the results of a previous Apex test run: pass/fail status, messages, stack "
            "traces and optionally code coverage."
        ),
        input_model=TestResultsInput,
        handler=cli_operation(
            ["apex", "get", "test"],
            {
                "test_run_id": "--test-run-id",
                "code_coverage": "--code-coverage",
                "detailed_coverage": "--detailed-coverage",
            },
        ),
        idempotent=True,
    ),
    OperationDescriptor(
        name="get_apex_code_coverage",
        title="Get Apex Code Coverage",
        description=(
            "Get Apex code coverage, either org-wide or for the classes touched by a given "
            "test run."
        ),
        input_model=CodeCoverageInput,
        handler=_code_coverage,
        idempotent=True,
    ),
    OperationDescriptor(
        name="apex_log_list",
        title="List Debug Logs",
        description="List the Apex debug logs stored in a Salesforce org.",
        input_model=LogListInput,
        handler=cli_operation(["apex", "list", "log"]),
        idempotent=True,
    ),
    OperationDescriptor(
        name="apex_get_log",
        title="Get Debug Log",
        description="Fetch one Apex debug log by ID, or the N most recent logs.",
        input_model=GetLogInput,
        handler=cli_operation(["apex", "get", "log"], {"log_id": "--log-id", "number": "--number"}),
        idempotent=True,
    ),
)
