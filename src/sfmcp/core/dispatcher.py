"""
dispatcher.py - Descriptor-driven operation dispatch

Every tool is an OperationDescriptor: data describing its input model, its
safety flags and how to call the platform. One Dispatcher interprets all of
them with the same state machine:

    1. resolve target        -> NoTargetConfigured envelope
    2. policy check          -> ReadOnlyBlocked / AccessDenied envelope
    3. confirmation          -> ConfirmationDeclined / ConfirmationCancelled envelope
       (destructive operations only, skipped for dry runs)
    4. progress phases
    5. handler -> runner
    6. map result or failure into an Envelope carrying the target

Each step is terminal on failure. `dispatch()` never raises.
"""

from __future__ import annotations

import string
from collections.abc import Awaitable, Callable, Iterable, Iterator, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Literal

from pydantic import BaseModel, ValidationError

from sfmcp.foundation.api.types import Envelope
from sfmcp.foundation.config.logging import get_logger

from .errors import (
    AccessDenied,
    ConfirmationCancelled,
    ConfirmationDeclined,
    InternalError,
    MalformedInput,
    OperationNotFound,
    ReadOnlyBlocked,
    SalesforceMCPError,
)

if TYPE_CHECKING:
    from sfmcp.mcp.confirmation import ConfirmationGate
    from sfmcp.mcp.notifications import ClientLogger, ProgressReporter
    from sfmcp.runner.connection import CredentialStore
    from sfmcp.runner.rest import RestClient
    from sfmcp.runner.sf_command import SfCommandRunner

    from .permissions import AccessPolicyGate
    from .target import TargetResolver

logger = get_logger("sfmcp.dispatcher")

TargetMode = Literal["resolve", "explicit", "optional", "none"]
PHASES = ("resolve", "validate", "execute")

Handler = Callable[["OperationCall"], Awaitable[Any]]
Guard = Callable[[Any, "AccessPolicyGate"], None]
ConfirmationText = str | Callable[[Any, str | None], str]


# =============================================================================
# Descriptors
# =============================================================================


@dataclass(frozen=True)
class OperationDescriptor:
    """Static description of one operation, fixed at registration.

    Attributes:
        target: "resolve" uses the caller's targetOrg or the configured
            default; "explicit" requires targetOrg and never falls back;
            "optional" uses targetOrg when given and otherwise runs unbound;
            "none" means the operation is not bound to an org.
        read_only: False for anything that changes platform state.
        destructive: irreversible; asks for confirmation unless dry-run.
        dry_run_field: input field that turns the call into a dry run.
        phases: progress messages keyed by "resolve", "validate", "execute".
        confirmation: str.format template; fields are the input fields
            (by python name) plus `target_org` and `operation`. A callable
            receives (arguments, target_org) and returns the message.
        guard: extra argument checks run after the policy gate and before
            confirmation; raises to refuse the call.
    """

    name: str
    description: str
    input_model: type[BaseModel]
    handler: Handler
    title: str | None = None
    target: TargetMode = "resolve"
    read_only: bool = True
    destructive: bool = False
    idempotent: bool = False
    open_world: bool = True
    dry_run_field: str | None = None
    phases: Mapping[str, str] = field(default_factory=dict)
    confirmation: ConfirmationText | None = None
    guard: Guard | None = None

    def __post_init__(self) -> None:
        if self.destructive and self.read_only:
            raise ValueError(f"{self.name}: a destructive operation cannot be read-only")
        unknown = set(self.phases) - set(PHASES)
        if unknown:
            raise ValueError(f"{self.name}: unknown progress phases {sorted(unknown)}")
        object.__setattr__(self, "phases", MappingProxyType(dict(self.phases)))

    @property
    def mutating(self) -> bool:
        return not self.read_only

    def input_schema(self) -> dict[str, Any]:
        return self.input_model.model_json_schema(by_alias=True)

    def is_dry_run(self, arguments: BaseModel) -> bool:
        return bool(self.dry_run_field and getattr(arguments, self.dry_run_field, False))

    def confirmation_message(self, arguments: BaseModel, target_org: str | None) -> str:
        if not self.confirmation:
            where = f" on org '{target_org}'" if target_org else ""
            return f"Run '{self.name}'{where}? This action cannot be undone."
        if callable(self.confirmation):
            return self.confirmation(arguments, target_org)
        values = _FormatValues(arguments.model_dump())
        values.update(target_org=target_org or "", operation=self.name)
        return string.Formatter().vformat(self.confirmation, (), values)


class _FormatValues(dict):
    def __missing__(self, key: str) -> str:
        return "{" + key + "}"


# =============================================================================
# Registry
# =============================================================================


class OperationRegistry:
    """Name -> OperationDescriptor, in registration order."""

    def __init__(self, descriptors: Iterable[OperationDescriptor] = ()):
        self._operations: dict[str, OperationDescriptor] = {}
        self.extend(descriptors)

    def register(self, descriptor: OperationDescriptor) -> None:
        if descriptor.name in self._operations:
            raise ValueError(f"Duplicate operation: {descriptor.name}")
        self._operations[descriptor.name] = descriptor

    def extend(self, descriptors: Iterable[OperationDescriptor]) -> None:
        for descriptor in descriptors:
            self.register(descriptor)

    def get(self, name: str) -> OperationDescriptor:
        try:
            return self._operations[name]
        except KeyError:
            raise OperationNotFound(name, available=self.names()) from None

    def names(self) -> list[str]:
        return list(self._operations)

    def validate(self, name: str, arguments: Mapping[str, Any] | None) -> BaseModel:
        """Validate raw arguments against the operation's input model.

        Raises:
            OperationNotFound: unknown name.
            MalformedInput: arguments do not satisfy the input model.
        """
        descriptor = self.get(name)
        try:
            return descriptor.input_model.model_validate(dict(arguments or {}))
        except ValidationError as e:
            errors = [
                {"loc": ".".join(str(p) for p in err["loc"]), "msg": err["msg"], "type": err["type"]}
                for err in e.errors()
            ]
            raise MalformedInput(name, errors) from e

    def __iter__(self) -> Iterator[OperationDescriptor]:
        return iter(self._operations.values())

    def __len__(self) -> int:
        return len(self._operations)

    def __contains__(self, name: object) -> bool:
        return name in self._operations


# =============================================================================
# Call context
# =============================================================================


@dataclass
class ToolContext:
    """Long-lived services shared by every operation."""

    runner: SfCommandRunner
    resolver: TargetResolver
    gate: AccessPolicyGate
    credentials: CredentialStore | None = None
    rest: RestClient | None = None


@dataclass
class RequestScope:
    """Per-request side channels, built by the MCP layer from the request."""

    confirmation: ConfirmationGate | None = None
    client_log: ClientLogger | None = None
    progress_factory: Callable[[int], ProgressReporter] | None = None


@dataclass
class OperationCall:
    """What a handler receives."""

    descriptor: OperationDescriptor
    arguments: Any
    target_org: str | None
    context: ToolContext
    scope: RequestScope

    @property
    def runner(self) -> SfCommandRunner:
        return self.context.runner

    def log(self, level: str, message: str) -> None:
        if self.scope.client_log is not None:
            _ = self.scope.client_log.log(level, self.descriptor.name, message)


# =============================================================================
# Dispatcher
# =============================================================================


class Dispatcher:
    """Runs operations through resolve -> policy -> confirm -> execute."""

    def __init__(self, registry: OperationRegistry, context: ToolContext):
        self.registry = registry
        self.context = context

    def _client_warning(self, scope: RequestScope, channel: str, message: str) -> None:
        if scope.client_log is not None:
            _ = scope.client_log.warning(channel, message)

    async def dispatch(
        self,
        name: str,
        arguments: BaseModel | Mapping[str, Any] | None,
        scope: RequestScope | None = None,
    ) -> Envelope:
        scope = scope or RequestScope()
        target_org: str | None = None
        try:
            descriptor = self.registry.get(name)
            if not isinstance(arguments, BaseModel):
                arguments = self.registry.validate(name, arguments)

            reporter = None
            if descriptor.phases and scope.progress_factory is not None:
                reporter = scope.progress_factory(len(descriptor.phases))

            def phase(key: str) -> None:
                if reporter is not None and key in descriptor.phases:
                    _ = reporter(descriptor.phases[key])

            # 1. resolve target
            phase("resolve")
            explicit = getattr(arguments, "target_org", None)
            if descriptor.target == "resolve":
                target_org = await self.context.resolver.resolve(explicit)
            elif descriptor.target == "explicit":
                if not explicit or not explicit.strip():
                    raise MalformedInput(name, [{"loc": "targetOrg", "msg": "targetOrg is required"}])
                target_org = explicit
            elif descriptor.target == "optional":
                target_org = explicit if explicit and explicit.strip() else None

            # 2. policy
            phase("validate")
            gate = self.context.gate
            if descriptor.mutating and gate.is_read_only():
                self._client_warning(scope, "permissions", f"Operation '{name}' blocked by read-only mode")
                raise ReadOnlyBlocked(name)
            if target_org is not None and not gate.is_allowed(target_org):
                self._client_warning(scope, "permissions", f"Access denied for org '{target_org}'")
                raise AccessDenied(target_org)
            if descriptor.guard is not None:
                descriptor.guard(arguments, gate)

            # 3. confirmation
            if descriptor.destructive and not descriptor.is_dry_run(arguments) and scope.confirmation is not None:
                result = await scope.confirmation.request(descriptor.confirmation_message(arguments, target_org))
                if not result.confirmed:
                    if result.declined:
                        raise ConfirmationDeclined(result.reason or "declined by user")
                    raise ConfirmationCancelled(result.reason or "cancelled")

            # 4-5. execute
            phase("execute")
            call = OperationCall(descriptor, arguments, target_org, self.context, scope)
            payload = await descriptor.handler(call)

        except SalesforceMCPError as e:
            logger.info("Operation failed", operation=name, kind=e.kind, target_org=target_org)
            return Envelope.fail(e.message, target_org=target_org, error=e.to_dict())
        except Exception as e:
            logger.exception("Unexpected error in operation", operation=name, target_org=target_org)
            failure = InternalError(e)
            return Envelope.fail(failure.message, target_org=target_org, error=failure.to_dict())

        # 6. map
        if isinstance(payload, Envelope):
            if payload.target_org is None and target_org is not None:
                payload = payload.model_copy(update={"target_org": target_org})
            return payload
        return Envelope.ok(payload, target_org=target_org)


# =============================================================================
# Generic CLI handler
# =============================================================================


def render_flags(arguments: BaseModel, flags: Mapping[str, str]) -> list[str]:
    """Turn input fields into CLI flags.

    True -> bare flag; False/None/empty -> omitted; list -> repeated flag;
    anything else -> flag + str(value).
    """
    argv: list[str] = []
    for field_name, flag in flags.items():
        value = getattr(arguments, field_name, None)
        if value is None or value is False or value == "" or value == []:
            continue
        if value is True:
            argv.append(flag)
        elif isinstance(value, (list, tuple)):
            for item in value:
                argv += [flag, str(item)]
        else:
            argv += [flag, str(getattr(value, "value", value))]
    return argv


def cli_operation(
    command: Iterable[str],
    flags: Mapping[str, str] | None = None,
    *,
    target_flag: str | None = "--target-org",
    extra: Iterable[str] = (),
    raw: bool = False,
    tolerate_nonzero: bool = False,
    transform: Callable[[Any, OperationCall], Any] | None = None,
) -> Handler:
    """Build a handler that runs `sf <command> [--target-org T] <flags>`.

    JSON mode returns the `result` member of the CLI's JSON document; raw
    mode returns stdout as text. `transform` post-processes either.
    """
    command = tuple(command)
    flags = dict(flags or {})
    extra = tuple(extra)

    async def handler(call: OperationCall) -> Any:
        argv = list(command)
        if target_flag and call.target_org:
            argv += [target_flag, call.target_org]
        argv += render_flags(call.arguments, flags)
        argv += extra

        if raw:
            result: Any = await call.runner.run_raw(argv, tolerate_nonzero=tolerate_nonzero)
        else:
            document = await call.runner.run(argv)
            result = document.get("result", document)
        if transform is not None:
            result = transform(result, call)
        return result

    handler.__qualname__ = f"cli_operation[{' '.join(command)}]"
    return handler


__all__ = [
    "PHASES",
    "Dispatcher",
    "OperationCall",
    "OperationDescriptor",
    "OperationRegistry",
    "RequestScope",
    "ToolContext",
    "cli_operation",
    "render_flags",
]
