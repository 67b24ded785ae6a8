"""Command dispatch: lookup, privilege check, validation, handler call.

Every failure is reported through the ``report`` callback and stops before
the handler runs. ``dispatch_message`` drives a whole chat message: it
extracts the embedded commands, runs each addressee's command
concurrently and joins everything they reported into one reply.
"""
from __future__ import annotations

import asyncio
import inspect
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Iterable, List, Optional, Sequence, Tuple, Union

from services.arg_schema import (
    FailedArgValidation,
    NotEnoughArgs,
    OtherError,
    Valid,
    ValidationOutcome,
)
from services.argparse_simple import UnterminatedQuoteError, split_command_line
from services.commands_registry import CommandRegistry
from services.inline_commands import COMMAND_PREFIX, extract_commands, strip_prefix
from services.metrics import record_command, record_error, record_extraction
from role_keeper.logging import log_with_context

logger = logging.getLogger(__name__)

Fragment = Union[str, Awaitable[str]]
Reporter = Callable[[Fragment], None]

UNKNOWN_COMMAND = "Error: unknown command."
NOT_ALLOWED = "Error: this command requires bot admin privileges."
MISSING_QUOTE = "Error: missing closing quote."
COMMAND_FAILED = "Error: command failed."


class ScopeError(Exception):
    """The execution scope for a command could not be resolved."""


@dataclass(frozen=True)
class Invocation:
    """Who sent a command, and from which chat."""

    user_id: int = 0
    chat_id: int = 0
    chat_type: str = "private"
    display_name: str = ""

    @property
    def tag(self) -> str:
        return f"[{self.chat_id}:{self.user_id}:{self.display_name or 'unknown'}]"


ScopeResolver = Callable[[Invocation], Any]


@dataclass
class CommandContext:
    argv: List[str]
    is_admin: bool
    scope: Any
    invocation: Invocation
    report: Reporter
    registry: CommandRegistry
    prefix: str = COMMAND_PREFIX


def validation_messages(outcome: ValidationOutcome, usage: str) -> List[str]:
    """User-facing lines for a validation outcome; empty when valid."""
    if isinstance(outcome, Valid):
        return []
    if isinstance(outcome, NotEnoughArgs):
        return [f"Not enough arguments, expected {outcome.required_count}", f"Usage: `{usage}`"]
    if isinstance(outcome, FailedArgValidation):
        return [
            f"Invalid value for argument `{outcome.descriptor.describe()}`",
            f"Usage: `{usage}`",
        ]
    if isinstance(outcome, OtherError):
        return [f"Error: {outcome.detail}"]
    raise TypeError(f"Unhandled validation outcome: {outcome!r}")


async def run_command(
    registry: CommandRegistry,
    command_text: str,
    *,
    report: Reporter,
    is_admin: bool = False,
    invocation: Optional[Invocation] = None,
    resolve_scope: Optional[ScopeResolver] = None,
    prefix: str = COMMAND_PREFIX,
) -> bool:
    """Run one command text. Returns True when the handler was invoked.

    Exceptions raised by the handler itself propagate to the caller.
    """
    invocation = invocation or Invocation()
    try:
        argv = split_command_line(strip_prefix(command_text, prefix))
    except UnterminatedQuoteError:
        record_error("tokenizer", "unterminated_quote")
        report(MISSING_QUOTE)
        return False

    logger.info("%s EXEC %s", invocation.tag, argv)
    spec = registry.get(argv[0]) if argv else None
    if spec is None or spec.handler is None:
        record_error("dispatch", "unknown_command")
        report(UNKNOWN_COMMAND)
        return False

    if spec.admin_only and not is_admin:
        record_error("dispatch", "not_allowed")
        report(NOT_ALLOWED)
        return False

    args = argv[1:]
    problems = validation_messages(spec.schema.validate(args), registry.usage(spec.name, prefix))
    if problems:
        record_error("dispatch", "invalid_args")
        for line in problems:
            report(line)
        return False

    try:
        scope = resolve_scope(invocation) if resolve_scope else None
    except ScopeError as exc:
        record_error("dispatch", "scope")
        report(f"Error: {exc}")
        return False

    ctx = CommandContext(
        argv=args,
        is_admin=is_admin,
        scope=scope,
        invocation=invocation,
        report=report,
        registry=registry,
        prefix=prefix,
    )
    start = time.perf_counter()
    success = False
    try:
        result = spec.handler(ctx)
        if inspect.isawaitable(result):
            await result
        success = True
    finally:
        record_command(spec.name, (time.perf_counter() - start) * 1000, success)
    return True


async def _resolve_fragment(item: Fragment) -> str:
    if not inspect.isawaitable(item):
        return str(item)
    try:
        return str(await item)
    except Exception as exc:
        logger.exception("Reported fragment failed: %s", exc)
        record_error("handler", "fragment")
        return f"Error: {exc}"


async def collect_fragments(
    registry: CommandRegistry,
    command_text: str,
    **kwargs: Any,
) -> List[str]:
    """Run one command and return everything it reported, in order.

    Never raises for handler failures; they become an error fragment.
    """
    pending: List[Fragment] = []
    try:
        await run_command(registry, command_text, report=pending.append, **kwargs)
    except Exception as exc:
        logger.exception("Command failed: %s (%s)", command_text, exc)
        record_error("handler", type(exc).__name__)
        pending.append(COMMAND_FAILED)
    # reported awaitables run concurrently; output keeps report order
    return list(await asyncio.gather(*(_resolve_fragment(item) for item in pending)))


def format_reply(results: Iterable[Tuple[str, Sequence[str]]]) -> str:
    lines: List[str] = []
    for addressee, fragments in results:
        for fragment in fragments:
            lines.append(f"{addressee}: {fragment}" if addressee else fragment)
    return "\n".join(lines)


async def dispatch_message(
    registry: CommandRegistry,
    text: str,
    *,
    is_admin: bool = False,
    invocation: Optional[Invocation] = None,
    resolve_scope: Optional[ScopeResolver] = None,
    prefix: str = COMMAND_PREFIX,
) -> str:
    """Run every command found in ``text``; returns the combined reply.

    An empty string means there was nothing to reply.
    """
    found = extract_commands(text, prefix)
    record_extraction(len(found))
    if not found:
        return ""

    addressees = list(found)
    results = await asyncio.gather(
        *(
            collect_fragments(
                registry,
                found[addressee],
                is_admin=is_admin,
                invocation=invocation,
                resolve_scope=resolve_scope,
                prefix=prefix,
            )
            for addressee in addressees
        )
    )
    log_with_context(
        logger,
        logging.DEBUG,
        "Dispatched message",
        addressees=addressees,
        fragments=sum(len(r) for r in results),
    )
    return format_reply(zip(addressees, results))
