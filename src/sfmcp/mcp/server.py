"""
sfmcp.mcp.server - Salesforce MCP Server (stdio)

Wires the operation catalog into a low-level `mcp.server.Server`:
- tools/list:  one Tool per OperationDescriptor (input schema from the
  pydantic model, envelope output schema, safety annotations)
- tools/call:  input validation, then Dispatcher.dispatch()
- resources:   salesforce://permissions and the org templates
- completion:  {alias} values for the org templates
- logging/setLevel: minimum level for client log messages

Usage:
    sf-mcp serve
    python -m sfmcp serve --verbose
"""

from __future__ import annotations

import asyncio
from typing import Any

from mcp.server import Server
from mcp.server.lowlevel.helper_types import ReadResourceContents
from mcp.server.stdio import stdio_server
from mcp.types import (
    Completion,
    CompletionArgument,
    CompletionContext,
    LoggingLevel,
    PromptReference,
    Resource,
    ResourceTemplate,
    ResourceTemplateReference,
    TextContent,
    Tool,
    ToolAnnotations,
)
from pydantic import AnyUrl

from sfmcp import __version__
from sfmcp.core.dispatcher import (
    Dispatcher,
    OperationDescriptor,
    OperationRegistry,
    RequestScope,
    ToolContext,
)
from sfmcp.core.permissions import ALLOW_ALL, AccessPolicy, AccessPolicyGate, load_access_policy
from sfmcp.core.target import TargetResolver
from sfmcp.foundation.api.types import ENVELOPE_OUTPUT_SCHEMA
from sfmcp.foundation.config.logging import get_logger
from sfmcp.runner.connection import CredentialStore
from sfmcp.runner.rest import RestClient
from sfmcp.runner.sf_command import SfCommandRunner
from sfmcp.tools import build_registry

from .confirmation import ClientCapabilities, ConfirmationGate
from .notifications import ClientLogger, ProgressReporter
from .resources import MIME_JSON, ResourceCatalog

logger = get_logger("sfmcp.server")

SERVER_NAME = "salesforce-mcp-server"
MAX_COMPLETIONS = 100


def build_context(policy: AccessPolicy | None = None) -> ToolContext:
    """Create the long-lived services from settings.

    Raises:
        ConfigurationError: malformed policy settings.
    """
    runner = SfCommandRunner()
    credentials = CredentialStore(runner)
    return ToolContext(
        runner=runner,
        resolver=TargetResolver(runner),
        gate=AccessPolicyGate(policy if policy is not None else load_access_policy()),
        credentials=credentials,
        rest=RestClient(credentials),
    )


def build_instructions(gate: AccessPolicyGate, registry: OperationRegistry) -> str:
    """Server description sent to clients at initialization."""
    lines = [
        f"Salesforce MCP Server v{__version__} - Salesforce automation via the sf CLI and REST API",
        "Capabilities: Apex execution, SOQL/SOSL queries, org management, tests & coverage, deployment",
    ]
    security = []
    if gate.is_read_only():
        security.append("READ-ONLY mode (operations that change org state are blocked)")
    allowed = gate.allowed_targets()
    if allowed != ALLOW_ALL:
        security.append(f"Access restricted to: {', '.join(allowed)}")
    if security:
        lines.append(f"Security: {' | '.join(security)}")
    else:
        lines.append("Security: Full access enabled for all authenticated orgs")
    lines.append(f"Tools: {len(registry)} available")
    lines.append("When targetOrg is omitted, the sf CLI default org is used (see get_default_org).")
    return "\n".join(lines)


def descriptor_to_tool(descriptor: OperationDescriptor) -> Tool:
    return Tool(
        name=descriptor.name,
        title=descriptor.title,
        description=descriptor.description,
        inputSchema=descriptor.input_schema(),
        outputSchema=ENVELOPE_OUTPUT_SCHEMA,
        annotations=ToolAnnotations(
            title=descriptor.title,
            readOnlyHint=descriptor.read_only,
            destructiveHint=descriptor.destructive,
            idempotentHint=descriptor.idempotent,
            openWorldHint=descriptor.open_world,
        ),
    )


class SalesforceMCPServer:
    """
    MCP server exposing the operation catalog.

    Policy and services are built once here; per-request side channels
    (confirmation, progress, client logging) are built from the SDK's
    request context on every tools/call.
    """

    def __init__(
        self,
        context: ToolContext | None = None,
        registry: OperationRegistry | None = None,
    ):
        self.context = context or build_context()
        self.registry = registry or build_registry()
        self.dispatcher = Dispatcher(self.registry, self.context)
        self.resources = ResourceCatalog(self.context)
        self.client_log_level: LoggingLevel = "debug"

        self._app = Server(
            SERVER_NAME,
            version=__version__,
            instructions=build_instructions(self.context.gate, self.registry),
        )
        self._register_handlers()

    @property
    def app(self) -> Server:
        return self._app

    def _request_scope(self) -> RequestScope:
        """Side channels bound to the current request, if there is one."""
        try:
            ctx = self._app.request_context
        except LookupError:
            return RequestScope()

        session = ctx.session
        token = ctx.meta.progressToken if ctx.meta is not None else None
        capabilities = ClientCapabilities.from_session(session)
        return RequestScope(
            confirmation=ConfirmationGate(session, capabilities),
            client_log=ClientLogger(session, self.client_log_level, ctx.request_id),
            progress_factory=lambda total: ProgressReporter(session, token, total),
        )

    def _register_handlers(self) -> None:
        """Register MCP protocol handlers."""

        @self._app.list_tools()
        async def list_tools() -> list[Tool]:
            return [descriptor_to_tool(d) for d in self.registry]

        @self._app.call_tool(validate_input=False)
        async def call_tool(name: str, arguments: dict[str, Any]) -> tuple[list[TextContent], dict[str, Any]]:
            # Unknown names and malformed input are protocol-level errors.
            validated = self.registry.validate(name, arguments)
            envelope = await self.dispatcher.dispatch(name, validated, self._request_scope())
            return [TextContent(type="text", text=envelope.to_json())], envelope.to_payload()

        @self._app.list_resources()
        async def list_resources() -> list[Resource]:
            return self.resources.list_resources()

        @self._app.list_resource_templates()
        async def list_resource_templates() -> list[ResourceTemplate]:
            return self.resources.list_templates()

        @self._app.read_resource()
        async def read_resource(uri: AnyUrl) -> list[ReadResourceContents]:
            text = await self.resources.read(str(uri))
            return [ReadResourceContents(content=text, mime_type=MIME_JSON)]

        @self._app.completion()
        async def complete(
            ref: PromptReference | ResourceTemplateReference,
            argument: CompletionArgument,
            context: CompletionContext | None,
        ) -> Completion | None:
            if not isinstance(ref, ResourceTemplateReference) or argument.name != "alias":
                return None
            values = await self.resources.complete_alias(argument.value)
            return Completion(
                values=values[:MAX_COMPLETIONS],
                total=len(values),
                hasMore=len(values) > MAX_COMPLETIONS,
            )

        @self._app.set_logging_level()
        async def set_logging_level(level: LoggingLevel) -> None:
            self.client_log_level = level
            logger.debug("Client log level set", level=level)

    async def aclose(self) -> None:
        if self.context.rest is not None:
            await self.context.rest.close()

    async def run_stdio(self) -> None:
        """Run the MCP server over stdio until the client disconnects."""
        logger.info(
            "Starting Salesforce MCP Server (STDIO)",
            tools=len(self.registry),
            read_only=self.context.gate.is_read_only(),
            allowed_orgs=self.context.gate.allowed_targets(),
        )
        try:
            async with stdio_server() as (read_stream, write_stream):
                await self._app.run(
                    read_stream,
                    write_stream,
                    self._app.create_initialization_options(),
                )
        except asyncio.CancelledError:
            logger.info("STDIO server cancelled")
        finally:
            await self.aclose()
            logger.info("Salesforce MCP Server stopped")


async def run_stdio_server(policy: AccessPolicy | None = None) -> None:
    """Build the server from settings and serve over stdio."""
    server = SalesforceMCPServer(context=build_context(policy))
    await server.run_stdio()


__all__ = [
    "SERVER_NAME",
    "SalesforceMCPServer",
    "build_context",
    "build_instructions",
    "descriptor_to_tool",
    "run_stdio_server",
]
