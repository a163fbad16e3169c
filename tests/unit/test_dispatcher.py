"""
test_dispatcher.py - Dispatcher state machine

Covers target resolution, policy checks, confirmation, progress phases and
failure mapping, using small synthetic operations plus a few catalog
entries.
"""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest
from pydantic import Field

from conftest import default_org_response
from sfmcp.core.dispatcher import (
    Dispatcher,
    OperationDescriptor,
    OperationRegistry,
    RequestScope,
    cli_operation,
    render_flags,
)
from sfmcp.core.errors import ExternalRunnerFailure, MalformedInput, OperationNotFound
from sfmcp.core.permissions import AccessPolicy, AccessPolicyGate
from sfmcp.foundation.api.types import Envelope
from sfmcp.tools.base import NoInput, TargetedInput

CONFIG_GET = ["config", "get", "target-org"]


class WipeInput(TargetedInput):
    dry_run: bool = Field(False, alias="dryRun")
    label: str = "things"


def _ops():
    return OperationRegistry(
        [
            OperationDescriptor(
                name="read_op",
                description="reads",
                input_model=TargetedInput,
                handler=cli_operation(["thing", "show"]),
            ),
            OperationDescriptor(
                name="mutating_op",
                description="writes",
                input_model=TargetedInput,
                handler=cli_operation(["thing", "update"]),
                read_only=False,
            ),
            OperationDescriptor(
                name="wipe",
                description="destroys",
                input_model=WipeInput,
                handler=cli_operation(["thing", "delete"], {"dry_run": "--dry-run"}),
                read_only=False,
                destructive=True,
                dry_run_field="dry_run",
                confirmation="Wipe {label} on '{target_org}'?",
                phases={"resolve": "Resolving...", "validate": "Checking...", "execute": "Wiping..."},
            ),
            OperationDescriptor(
                name="untargeted",
                description="no org",
                input_model=NoInput,
                handler=AsyncMock(return_value={"ok": True}),
                target="none",
            ),
        ]
    )


@pytest.fixture
def ops_dispatcher(context, runner):
    runner.script(["thing"], {"status": 0, "result": {"done": True}})
    return Dispatcher(_ops(), context)


def _restrict(context, read_only=False, allowed=None):
    context.gate = AccessPolicyGate(
        AccessPolicy(read_only=read_only, allowed_targets=frozenset(allowed) if allowed is not None else None)
    )


class TestScenarios:
    @pytest.mark.asyncio
    async def test_denied_target_never_reaches_runner(self, ops_dispatcher, context, runner):
        _restrict(context, allowed={"prod"})

        envelope = await ops_dispatcher.dispatch("mutating_op", {"targetOrg": "dev"})

        assert not envelope.success
        assert envelope.error.kind == "AccessDenied"
        assert envelope.target_org == "dev"
        assert runner.calls == []

    @pytest.mark.asyncio
    async def test_read_only_blocks_after_resolving_default(self, ops_dispatcher, context, runner):
        _restrict(context, read_only=True)
        runner.script(CONFIG_GET, default_org_response("sandbox1"))

        envelope = await ops_dispatcher.dispatch("mutating_op", {})

        assert not envelope.success
        assert envelope.error.kind == "ReadOnlyBlocked"
        assert envelope.to_payload()["targetOrg"] == "sandbox1"
        assert runner.count(["thing"]) == 0

    @pytest.mark.asyncio
    async def test_destructive_without_capability_skips_confirmation(
        self, ops_dispatcher, session, make_scope, runner
    ):
        session.client_params.capabilities.elicitation = None
        scope = make_scope()

        envelope = await ops_dispatcher.dispatch("wipe", {"targetOrg": "dev"}, scope)

        assert envelope.success
        session.elicit.assert_not_called()
        assert runner.argv_for(["thing", "delete"]) == ["thing", "delete", "--target-org", "dev"]

    @pytest.mark.asyncio
    async def test_get_default_swallows_fetch_failure(self, resolver, runner):
        runner.script(CONFIG_GET, ExternalRunnerFailure("boom"))
        assert await resolver.get_default() is None


class TestTargetResolution:
    @pytest.mark.asyncio
    async def test_read_op_passes_through_allow_list(self, ops_dispatcher, context, runner):
        _restrict(context, read_only=True, allowed={"dev"})

        envelope = await ops_dispatcher.dispatch("read_op", {"targetOrg": "dev"})

        assert envelope.success
        assert envelope.target_org == "dev"
        assert envelope.data == {"done": True}

    @pytest.mark.asyncio
    async def test_read_op_still_checks_allow_list(self, ops_dispatcher, context, runner):
        _restrict(context, read_only=True, allowed={"dev"})

        envelope = await ops_dispatcher.dispatch("read_op", {"targetOrg": "prod"})

        assert envelope.error.kind == "AccessDenied"
        assert runner.calls == []

    @pytest.mark.asyncio
    async def test_default_target_is_used_and_reported(self, ops_dispatcher, runner):
        runner.script(CONFIG_GET, default_org_response("dev"))

        envelope = await ops_dispatcher.dispatch("read_op", {})

        assert envelope.success
        assert envelope.target_org == "dev"
        assert runner.argv_for(["thing", "show"]) == ["thing", "show", "--target-org", "dev"]

    @pytest.mark.asyncio
    async def test_denied_default_target(self, ops_dispatcher, context, runner):
        _restrict(context, allowed={"prod"})
        runner.script(CONFIG_GET, default_org_response("dev"))

        envelope = await ops_dispatcher.dispatch("read_op", {})

        assert envelope.error.kind == "AccessDenied"
        assert envelope.target_org == "dev"

    @pytest.mark.asyncio
    async def test_no_target_configured(self, ops_dispatcher, runner):
        runner.script(CONFIG_GET, default_org_response(None))

        envelope = await ops_dispatcher.dispatch("read_op", {})

        assert not envelope.success
        assert envelope.error.kind == "NoTargetConfigured"
        assert "targetOrg" in envelope.message
        assert envelope.target_org is None
        assert runner.count(["thing"]) == 0

    @pytest.mark.asyncio
    async def test_untargeted_operation_skips_resolution(self, ops_dispatcher, context, runner):
        _restrict(context, allowed={"prod"})

        envelope = await ops_dispatcher.dispatch("untargeted", {})

        assert envelope.success
        assert envelope.target_org is None
        assert runner.calls == []

    @pytest.mark.asyncio
    async def test_explicit_mode_requires_target(self, dispatcher, runner):
        envelope = await dispatcher.dispatch("set_default_org", {"targetOrg": "   "})

        assert envelope.error.kind == "MalformedInput"
        assert runner.calls == []

    @pytest.mark.asyncio
    async def test_explicit_and_resolved_targets_are_not_trimmed(self, dispatcher, context, runner):
        _restrict(context, allowed={"dev"})

        explicit = await dispatcher.dispatch("set_default_org", {"targetOrg": " dev "})
        resolved = await dispatcher.dispatch("display_user", {"targetOrg": " dev "})

        assert explicit.error.kind == resolved.error.kind == "AccessDenied"
        assert explicit.target_org == resolved.target_org == " dev "
        assert runner.calls == []


class TestPolicyOrder:
    @pytest.mark.asyncio
    async def test_read_only_is_checked_before_allow_list(self, ops_dispatcher, context):
        _restrict(context, read_only=True, allowed={"prod"})

        envelope = await ops_dispatcher.dispatch("mutating_op", {"targetOrg": "dev"})

        assert envelope.error.kind == "ReadOnlyBlocked"

    @pytest.mark.asyncio
    async def test_policy_failure_warns_client(self, ops_dispatcher, context, session, make_scope):
        _restrict(context, allowed={"prod"})
        scope = make_scope()

        await ops_dispatcher.dispatch("mutating_op", {"targetOrg": "dev"}, scope)
        await scope.drain()

        kwargs = session.send_log_message.call_args.kwargs
        assert kwargs["level"] == "warning"
        assert kwargs["logger"] == "permissions"
        assert "dev" in kwargs["data"]

    @pytest.mark.asyncio
    async def test_policy_failure_precedes_confirmation(self, ops_dispatcher, context, session, make_scope):
        _restrict(context, read_only=True)

        envelope = await ops_dispatcher.dispatch("wipe", {"targetOrg": "dev"}, make_scope())

        assert envelope.error.kind == "ReadOnlyBlocked"
        session.elicit.assert_not_called()


class TestConfirmation:
    @pytest.mark.asyncio
    async def test_confirmed_runs(self, ops_dispatcher, session, make_scope, runner):
        envelope = await ops_dispatcher.dispatch("wipe", {"targetOrg": "dev", "label": "widgets"}, make_scope())

        assert envelope.success
        assert session.elicit.call_args.kwargs["message"] == "Wipe widgets on 'dev'?"
        assert runner.count(["thing", "delete"]) == 1

    @pytest.mark.asyncio
    async def test_declined(self, ops_dispatcher, session, make_scope, runner):
        session.elicit.return_value.action = "decline"

        envelope = await ops_dispatcher.dispatch("wipe", {"targetOrg": "dev"}, make_scope())

        assert envelope.error.kind == "ConfirmationDeclined"
        assert envelope.target_org == "dev"
        assert runner.calls == []

    @pytest.mark.asyncio
    async def test_cancelled(self, ops_dispatcher, session, make_scope, runner):
        session.elicit.return_value.action = "cancel"

        envelope = await ops_dispatcher.dispatch("wipe", {"targetOrg": "dev"}, make_scope())

        assert envelope.error.kind == "ConfirmationCancelled"
        assert runner.calls == []

    @pytest.mark.asyncio
    async def test_dry_run_skips_confirmation(self, ops_dispatcher, session, make_scope, runner):
        session.elicit.return_value.action = "decline"

        envelope = await ops_dispatcher.dispatch("wipe", {"targetOrg": "dev", "dryRun": True}, make_scope())

        assert envelope.success
        session.elicit.assert_not_called()
        assert "--dry-run" in runner.argv_for(["thing", "delete"])

    @pytest.mark.asyncio
    async def test_non_destructive_never_asks(self, ops_dispatcher, session, make_scope):
        await ops_dispatcher.dispatch("mutating_op", {"targetOrg": "dev"}, make_scope())
        session.elicit.assert_not_called()

    @pytest.mark.asyncio
    async def test_transport_failure_proceeds(self, ops_dispatcher, session, make_scope, runner):
        session.elicit.side_effect = RuntimeError("client went away")

        envelope = await ops_dispatcher.dispatch("wipe", {"targetOrg": "dev"}, make_scope())

        assert envelope.success
        assert runner.count(["thing", "delete"]) == 1


class TestProgress:
    @pytest.mark.asyncio
    async def test_phases_reported_in_order(self, ops_dispatcher, session, make_scope):
        scope = make_scope()

        await ops_dispatcher.dispatch("wipe", {"targetOrg": "dev"}, scope)
        await scope.drain()

        calls = session.send_progress_notification.call_args_list
        assert [c.kwargs["message"] for c in calls] == ["Resolving...", "Checking...", "Wiping..."]
        assert [c.kwargs["progress"] for c in calls] == [1.0, 2.0, 3.0]
        assert all(c.kwargs["total"] == 3.0 for c in calls)

    @pytest.mark.asyncio
    async def test_failure_stops_phases(self, ops_dispatcher, context, session, make_scope):
        _restrict(context, read_only=True)
        scope = make_scope()

        await ops_dispatcher.dispatch("wipe", {"targetOrg": "dev"}, scope)
        await scope.drain()

        messages = [c.kwargs["message"] for c in session.send_progress_notification.call_args_list]
        assert messages == ["Resolving...", "Checking..."]

    @pytest.mark.asyncio
    async def test_no_token_no_progress(self, ops_dispatcher, session, make_scope):
        scope = make_scope(progress_token=None)

        envelope = await ops_dispatcher.dispatch("wipe", {"targetOrg": "dev"}, scope)
        await scope.drain()

        assert envelope.success
        session.send_progress_notification.assert_not_called()

    @pytest.mark.asyncio
    async def test_progress_failure_does_not_fail_operation(self, ops_dispatcher, session, make_scope):
        session.send_progress_notification.side_effect = ConnectionError("closed")
        scope = make_scope()

        envelope = await ops_dispatcher.dispatch("wipe", {"targetOrg": "dev"}, scope)
        await scope.drain()

        assert envelope.success


class TestFailureMapping:
    @pytest.mark.asyncio
    async def test_runner_failure_detail_is_preserved(self, ops_dispatcher, runner):
        runner.script(
            ["thing", "show"],
            ExternalRunnerFailure(
                "No authorization information found for dev.",
                name="NoOrgFound",
                exit_code=1,
                context={"actions": ["Run sf org login web"]},
            ),
        )

        envelope = await ops_dispatcher.dispatch("read_op", {"targetOrg": "dev"})
        payload = envelope.to_payload()

        assert payload["success"] is False
        assert payload["targetOrg"] == "dev"
        assert payload["message"] == "No authorization information found for dev."
        assert payload["error"]["name"] == "NoOrgFound"
        assert payload["error"]["exitCode"] == 1
        assert payload["error"]["context"] == {"actions": ["Run sf org login web"]}

    @pytest.mark.asyncio
    async def test_unexpected_exception_becomes_internal_error(self, context):
        async def broken(call):
            raise KeyError("records")

        registry = OperationRegistry(
            [OperationDescriptor(name="broken", description="", input_model=TargetedInput, handler=broken)]
        )
        envelope = await Dispatcher(registry, context).dispatch("broken", {"targetOrg": "dev"})

        assert not envelope.success
        assert envelope.error.kind == "InternalError"
        assert envelope.error.name == "KeyError"
        assert envelope.target_org == "dev"

    @pytest.mark.asyncio
    async def test_unknown_operation(self, ops_dispatcher):
        envelope = await ops_dispatcher.dispatch("nope", {})
        assert envelope.error.kind == "OperationNotFound"

    @pytest.mark.asyncio
    async def test_malformed_input(self, dispatcher):
        envelope = await dispatcher.dispatch("query_records", {"targetOrg": "dev"})
        assert envelope.error.kind == "MalformedInput"
        assert envelope.error.context["errors"]

    @pytest.mark.asyncio
    async def test_handler_envelope_gets_target(self, context):
        async def handler(call):
            return Envelope(success=False, message="compile error", data={"line": 1})

        registry = OperationRegistry(
            [OperationDescriptor(name="op", description="", input_model=TargetedInput, handler=handler)]
        )
        envelope = await Dispatcher(registry, context).dispatch("op", {"targetOrg": "dev"})

        assert envelope.message == "compile error"
        assert envelope.target_org == "dev"

    @pytest.mark.asyncio
    async def test_dispatch_accepts_validated_model(self, ops_dispatcher, runner):
        envelope = await ops_dispatcher.dispatch("read_op", TargetedInput(targetOrg="dev"), RequestScope())
        assert envelope.success


class TestDescriptor:
    def test_destructive_cannot_be_read_only(self):
        with pytest.raises(ValueError):
            OperationDescriptor(
                name="bad", description="", input_model=NoInput, handler=AsyncMock(), destructive=True
            )

    def test_unknown_phase_rejected(self):
        with pytest.raises(ValueError):
            OperationDescriptor(
                name="bad", description="", input_model=NoInput, handler=AsyncMock(), phases={"cleanup": "x"}
            )

    def test_default_confirmation_message(self):
        descriptor = OperationDescriptor(
            name="drop", description="", input_model=NoInput, handler=AsyncMock(), read_only=False, destructive=True
        )
        assert descriptor.confirmation_message(NoInput(), "dev") == "Run 'drop' on org 'dev'? This action cannot be undone."

    def test_template_tolerates_unknown_fields(self):
        descriptor = OperationDescriptor(
            name="drop",
            description="",
            input_model=NoInput,
            handler=AsyncMock(),
            read_only=False,
            destructive=True,
            confirmation="{operation} {missing} on {target_org}",
        )
        assert descriptor.confirmation_message(NoInput(), None) == "drop {missing} on "


class TestRegistry:
    def test_duplicate_names_rejected(self):
        descriptor = OperationDescriptor(name="x", description="", input_model=NoInput, handler=AsyncMock())
        registry = OperationRegistry([descriptor])
        with pytest.raises(ValueError):
            registry.register(descriptor)

    def test_get_unknown(self):
        with pytest.raises(OperationNotFound):
            OperationRegistry().get("missing")

    def test_validate_reports_errors(self, registry):
        with pytest.raises(MalformedInput) as exc_info:
            registry.validate("query_records", {"sObject": "Account"})
        locs = [e["loc"] for e in exc_info.value.details["errors"]]
        assert "fields" in locs


class TestRenderFlags:
    def test_rendering_rules(self):
        class Args(TargetedInput):
            on: bool = True
            off: bool = False
            missing: str | None = None
            empty: list[str] = []
            many: list[str] = ["a", "b"]
            count: int = 3

        argv = render_flags(
            Args(),
            {"on": "--on", "off": "--off", "missing": "--missing", "empty": "--e", "many": "--m", "count": "--n"},
        )
        assert argv == ["--on", "--m", "a", "--m", "b", "--n", "3"]
