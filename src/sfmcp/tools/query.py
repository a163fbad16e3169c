"""
query.py - SOQL and SOSL operations.

Queries are assembled from clauses and handed to the CLI unchanged; the
server does not parse or validate query syntax.
"""

from __future__ import annotations

from typing import Any, Literal

import orjson
from pydantic import Field

from sfmcp.core.dispatcher import OperationCall, OperationDescriptor
from sfmcp.core.errors import MalformedInput

from .base import TargetedInput


class QueryInput(TargetedInput):
    sobject: str = Field(..., alias="sObject", min_length=1, description="SObject to query from")
    select_fields: str = Field(
        ...,
        alias="fields",
        min_length=1,
        description="Comma-separated field list for the SELECT clause, e.g. 'Id, Name'",
    )
    where: str | None = Field(None, description="Optional WHERE clause, without the WHERE keyword")
    order_by: str | None = Field(None, alias="orderBy", description="Optional ORDER BY clause")
    limit: int | None = Field(None, gt=0, description="Maximum number of records to return")
    use_tooling_api: bool = Field(False, alias="useToolingApi", description="Query the Tooling API")


class QueryToFileInput(TargetedInput):
    sobject: str = Field(..., alias="sObject", min_length=1, description="SObject to export from")
    select_fields: str = Field(..., alias="fields", min_length=1, description="Comma-separated field list")
    where: str | None = Field(None, description="Optional WHERE clause, without the WHERE keyword")
    order_by: str | None = Field(None, alias="orderBy", description="Optional ORDER BY clause")
    output_file: str = Field("output", alias="outputFileName", description="File to write the results to")
    output_format: Literal["csv", "json"] = Field("csv", alias="outputFileFormat", description="File format")
    wait_minutes: int = Field(30, alias="wait", gt=0, description="Minutes to wait for the bulk job")


class SearchInput(TargetedInput):
    query: str | None = Field(None, description="SOSL search string")
    file: str | None = Field(None, description="Path to a file containing the SOSL query")
    result_format: Literal["human", "csv", "json"] = Field(
        "json",
        alias="resultFormat",
        description="Format of the results",
    )


def build_soql(
    sobject: str,
    fields: str,
    where: str | None = None,
    order_by: str | None = None,
    limit: int | None = None,
) -> str:
    soql = f"SELECT {fields} FROM {sobject}"
    if where:
        soql += f" WHERE {where}"
    if order_by:
        soql += f" ORDER BY {order_by}"
    if limit:
        soql += f" LIMIT {limit}"
    return soql


async def _query_records(call: OperationCall) -> dict[str, Any]:
    args: QueryInput = call.arguments
    soql = build_soql(args.sobject, args.select_fields, args.where, args.order_by, args.limit)
    argv = ["data", "query", "--target-org", call.target_org, "--query", soql]
    if args.use_tooling_api:
        argv.append("--use-tooling-api")

    document = await call.runner.run(argv)
    result = document.get("result") or {}
    records = result.get("records") or []
    return {
        "query": soql,
        "totalSize": result.get("totalSize", len(records)),
        "done": result.get("done", True),
        "records": records,
    }


async def _query_records_to_file(call: OperationCall) -> Any:
    args: QueryToFileInput = call.arguments
    soql = build_soql(args.sobject, args.select_fields, args.where, args.order_by)
    document = await call.runner.run(
        [
            "data",
            "export",
            "bulk",
            "--query",
            soql,
            "--target-org",
            call.target_org,
            "--output-file",
            args.output_file,
            "--result-format",
            args.output_format,
            "--wait",
            str(args.wait_minutes),
        ]
    )
    return document.get("result", document)


async def _search_records(call: OperationCall) -> Any:
    args: SearchInput = call.arguments
    if bool(args.query) == bool(args.file):
        raise MalformedInput(
            call.descriptor.name,
            [{"loc": "query", "msg": "Provide exactly one of 'query' or 'file'"}],
        )

    argv = ["data", "search", "--target-org", call.target_org]
    argv += ["--query", args.query] if args.query else ["--file", args.file]
    argv += ["--result-format", args.result_format]
    output = await call.runner.run_raw(argv)

    if args.result_format == "json":
        try:
            return orjson.loads(output)
        except orjson.JSONDecodeError:
            return {"searchRecords": [], "rawOutput": output}
    if args.result_format == "csv":
        return {"message": "Results written to CSV files", "output": output}
    return {"output": output}


OPERATIONS = (
    OperationDescriptor(
        name="query_records",
        title="Query Records",
        description=(
            "Run a SOQL query against a Salesforce org. The query is assembled as "
            "SELECT <fields> FROM <sObject> [WHERE ...] [ORDER BY ...] [LIMIT ...]."
        ),
        input_model=QueryInput,
        handler=_query_records,
        idempotent=True,
    ),
    OperationDescriptor(
        name="query_records_to_file",
        title="Export Records to File",
        description=(
            "Export the results of a SOQL query to a local CSV or JSON file using Bulk API 2.0. "
            "Use this for result sets too large to return inline."
        ),
        input_model=QueryToFileInput,
        handler=_query_records_to_file,
    ),
    OperationDescriptor(
        name="search_records",
        title="Search Records",
        description="Run a SOSL text search across multiple objects of a Salesforce org.",
        input_model=SearchInput,
        handler=_search_records,
        idempotent=True,
    ),
)
