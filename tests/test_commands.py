import asyncio

import pytest

from services.arg_schema import REQUIRED, OPTIONAL, choice, optional, required, schema
from services.commands import (
    COMMAND_FAILED,
    MISSING_QUOTE,
    NOT_ALLOWED,
    UNKNOWN_COMMAND,
    CommandContext,
    Invocation,
    ScopeError,
    collect_fragments,
    dispatch_message,
    format_reply,
    run_command,
    validation_messages,
)
from services.arg_schema import FailedArgValidation, NotEnoughArgs, OtherError, Valid
from services.commands_registry import CommandRegistry, CommandSpec
from services.metrics import metrics


def _run(coro):
    return asyncio.run(coro)


@pytest.fixture(autouse=True)
def reset_metrics():
    metrics.reset()
    yield
    metrics.reset()


def _registry(calls):
    def _ping(ctx: CommandContext):
        calls.append(("ping", list(ctx.argv)))
        ctx.report("pong")

    async def _slow(ctx: CommandContext):
        await asyncio.sleep(0.01)
        calls.append(("slow", list(ctx.argv)))
        ctx.report("first")
        ctx.report("second")

    def _boom(ctx: CommandContext):
        ctx.report("about to fail")
        raise RuntimeError("kaboom")

    async def _later(value):
        await asyncio.sleep(0)
        return value

    async def _failing():
        raise RuntimeError("directory service unavailable")

    def _pending(ctx: CommandContext):
        ctx.report(_later("applied role 1"))
        ctx.report("sync in between")
        ctx.report(_failing())
        ctx.report(_later("applied role 2"))

    def _where(ctx: CommandContext):
        ctx.report(f"scope={ctx.scope} admin={ctx.is_admin} user={ctx.invocation.user_id}")

    return CommandRegistry(
        [
            CommandSpec("ping", schema(), _ping),
            CommandSpec(
                "role",
                schema(choice("action", REQUIRED, ["add", "remove"]), required("roleIds...")),
                _ping,
            ),
            CommandSpec("slow", schema(optional("x")), _slow),
            CommandSpec("boom", schema(), _boom),
            CommandSpec("pending", schema(), _pending),
            CommandSpec("where", schema(), _where),
            CommandSpec("guilds", schema(), _ping, admin_only=True),
            CommandSpec("time", schema(choice("format", OPTIONAL, ["default", "am/pm"])), _ping),
        ]
    )


def _collect(registry, text, **kwargs):
    out = []
    invoked = _run(run_command(registry, text, report=out.append, **kwargs))
    return invoked, out


def test_runs_handler_with_args_after_name():
    calls = []
    invoked, out = _collect(_registry(calls), "role add 1 2 3")
    assert invoked is True
    assert out == ["pong"]
    assert calls == [("ping", ["add", "1", "2", "3"])]


def test_leading_prefix_is_stripped_before_tokenizing():
    calls = []
    invoked, out = _collect(_registry(calls), ".ping")
    assert invoked is True
    assert calls == [("ping", [])]


def test_unknown_command_reported():
    calls = []
    invoked, out = _collect(_registry(calls), "nope 1")
    assert invoked is False
    assert out == [UNKNOWN_COMMAND]
    assert calls == []


def test_command_names_are_case_sensitive():
    invoked, out = _collect(_registry([]), "Ping")
    assert out == [UNKNOWN_COMMAND]


def test_admin_gate():
    calls = []
    registry = _registry(calls)
    invoked, out = _collect(registry, "guilds")
    assert invoked is False
    assert out == [NOT_ALLOWED]
    invoked, out = _collect(registry, "guilds", is_admin=True)
    assert invoked is True
    assert out == ["pong"]


def test_admin_gate_checked_before_validation():
    registry = CommandRegistry(
        [CommandSpec("map-role", schema(required("from"), required("to")), lambda ctx: None, admin_only=True)]
    )
    _, out = _collect(registry, "map-role")
    assert out == [NOT_ALLOWED]


def test_not_enough_args_message():
    calls = []
    invoked, out = _collect(_registry(calls), "role add")
    assert invoked is False
    assert out == [
        "Not enough arguments, expected 2",
        'Usage: `.role <action: "add|remove"> <roleIds...>`',
    ]
    assert calls == []


def test_failed_validation_references_descriptor():
    _, out = _collect(_registry([]), "role bogus 1")
    assert out[0] == 'Invalid value for argument `<action: "add|remove">`'


def test_optional_choice_validated_when_given():
    _, out = _collect(_registry([]), "time 24h")
    assert out[0] == 'Invalid value for argument `[format: "default|am/pm"]`'
    _, out = _collect(_registry([]), "time am/pm")
    assert out == ["pong"]


def test_unterminated_quote_is_reported():
    calls = []
    invoked, out = _collect(_registry(calls), "role add 'oops")
    assert invoked is False
    assert out == [MISSING_QUOTE]
    assert calls == []


def test_scope_resolution_error_stops_before_handler():
    calls = []

    def _resolve(invocation):
        raise ScopeError("The bot is not part of 42.")

    invoked, out = _collect(_registry(calls), "ping", resolve_scope=_resolve)
    assert invoked is False
    assert out == ["Error: The bot is not part of 42."]
    assert calls == []


def test_scope_resolved_only_after_validation():
    resolved = []

    def _resolve(invocation):
        resolved.append(invocation)
        return "scope"

    _collect(_registry([]), "role add", resolve_scope=_resolve)
    assert resolved == []


def test_context_carries_scope_privilege_and_caller():
    invocation = Invocation(user_id=7, chat_id=-100, chat_type="group", display_name="Sam")
    _, out = _collect(
        _registry([]),
        "where",
        is_admin=True,
        invocation=invocation,
        resolve_scope=lambda inv: inv.chat_id,
    )
    assert out == ["scope=-100 admin=True user=7"]


def test_validation_messages_cover_every_outcome():
    desc = choice("a", REQUIRED, ["x"])
    assert validation_messages(Valid(), "u") == []
    assert validation_messages(NotEnoughArgs(3), "u")[0] == "Not enough arguments, expected 3"
    assert validation_messages(FailedArgValidation(desc), "u")[0] == 'Invalid value for argument `<a: "x">`'
    assert validation_messages(OtherError("bad"), "u") == ["Error: bad"]
    with pytest.raises(TypeError):
        validation_messages("valid", "u")


def test_handler_exception_propagates_from_run_command():
    with pytest.raises(RuntimeError):
        _collect(_registry([]), "boom")


def test_collect_fragments_converts_handler_exception():
    fragments = _run(collect_fragments(_registry([]), "boom"))
    assert fragments == ["about to fail", COMMAND_FAILED]


def test_collect_fragments_resolves_pending_in_order():
    fragments = _run(collect_fragments(_registry([]), "pending"))
    assert fragments == [
        "applied role 1",
        "sync in between",
        "Error: directory service unavailable",
        "applied role 2",
    ]


def test_reported_awaitables_run_concurrently():
    async def _scenario():
        released = asyncio.Event()

        async def _waits():
            await released.wait()
            return "waited"

        async def _releases():
            released.set()
            return "released"

        def _handler(ctx: CommandContext):
            ctx.report(_waits())
            ctx.report(_releases())

        registry = CommandRegistry([CommandSpec("pair", schema(), _handler)])
        return await asyncio.wait_for(collect_fragments(registry, "pair"), timeout=1)

    assert _run(_scenario()) == ["waited", "released"]


def test_metrics_recorded_for_dispatch():
    _collect(_registry([]), "ping")
    _collect(_registry([]), "nope")
    assert metrics.get_counter("commands_total", {"command": "ping", "success": "true"}) == 1.0
    assert metrics.get_counter("errors_total", {"component": "dispatch", "type": "unknown_command"}) == 1.0


def test_format_reply_prefixes_addressees():
    reply = format_reply([("", ["a", "b"]), ("bob", ["c"]), ("sue", [])])
    assert reply == "a\nb\nbob: c"


def test_dispatch_message_leading_form():
    calls = []
    reply = _run(dispatch_message(_registry(calls), ".ping"))
    assert reply == "pong"


def test_dispatch_message_without_command_does_nothing():
    calls = []
    reply = _run(dispatch_message(_registry(calls), "hello there (not a command)"))
    assert reply == ""
    assert calls == []


def test_dispatch_message_aggregates_addressees_in_order():
    calls = []
    reply = _run(dispatch_message(_registry(calls), "(@bob: .slow) then (@sue: .ping)"))
    assert reply == "bob: first\nbob: second\nsue: pong"
    # both ran, the slow one finished last
    assert [name for name, _ in calls] == ["ping", "slow"]


def test_dispatch_message_isolates_failures():
    reply = _run(
        dispatch_message(_registry([]), "(@a: .boom) (@b: .nope) (@c: .role add 'x) (@d: .ping)")
    )
    assert reply.splitlines() == [
        "a: about to fail",
        f"a: {COMMAND_FAILED}",
        f"b: {UNKNOWN_COMMAND}",
        f"c: {MISSING_QUOTE}",
        "d: pong",
    ]


def test_dispatch_message_custom_prefix():
    reply = _run(dispatch_message(_registry([]), "!ping", prefix="!"))
    assert reply == "pong"
    assert _run(dispatch_message(_registry([]), ".ping", prefix="!")) == ""
