"""Commands every deployment gets, plus the per-user scope store."""
from __future__ import annotations

import logging
import threading
from typing import Collection, Dict, Iterable, List, Optional, Sequence, Set

from services import metrics
from services.arg_schema import OPTIONAL, choice, optional, required, schema
from services.commands import CommandContext, Invocation, ScopeError
from services.commands_registry import CommandRegistry, CommandSpec
from role_keeper.telegram.commands import grouped_command_lines

logger = logging.getLogger(__name__)

GROUP_CHAT_TYPES = {"group", "supergroup"}


class ScopeStore:
    """Remembers group chats the bot has seen and each user's chosen scope.

    A command sent from a group runs in that group. A command sent in a
    private chat runs in whatever group the user picked with ``scope``.
    """

    def __init__(self, known: Iterable[int] = ()):
        self._lock = threading.Lock()
        self._known: Set[int] = {int(x) for x in known}
        self._user_scopes: Dict[int, int] = {}

    def remember(self, chat_id: int) -> None:
        with self._lock:
            self._known.add(int(chat_id))

    def forget(self, chat_id: int) -> None:
        with self._lock:
            self._known.discard(int(chat_id))

    def is_known(self, chat_id: int) -> bool:
        with self._lock:
            return int(chat_id) in self._known

    def set_user_scope(self, user_id: int, chat_id: int) -> None:
        with self._lock:
            self._user_scopes[int(user_id)] = int(chat_id)

    def user_scope(self, user_id: int) -> Optional[int]:
        with self._lock:
            return self._user_scopes.get(int(user_id))

    def resolve(self, invocation: Invocation) -> Optional[int]:
        if invocation.chat_type in GROUP_CHAT_TYPES:
            self.remember(invocation.chat_id)
            return invocation.chat_id
        if invocation.chat_type == "private":
            chosen = self.user_scope(invocation.user_id)
            if chosen is None:
                return None
            if not self.is_known(chosen):
                raise ScopeError(f"The bot is not part of {chosen}.")
            return chosen
        raise ScopeError(f"Unknown chat type: {invocation.chat_type}.")


def _integer_scope_id(argv: Sequence[str]) -> Optional[str]:
    if not argv:
        return None
    try:
        int(argv[0])
    except ValueError:
        return f"scope id must be a number, got `{argv[0]}`."
    return None


def help_lines(registry: CommandRegistry, *, is_admin: bool, prefix: str) -> List[str]:
    lines = ["Commands:"]
    for group, entries in grouped_command_lines(registry, is_admin=is_admin, prefix=prefix).items():
        lines.append(f"{group}:")
        lines.extend(entries)
    return lines


def _help(ctx: CommandContext) -> None:
    ctx.report("\n".join(help_lines(ctx.registry, is_admin=ctx.is_admin, prefix=ctx.prefix)))


def _echo(ctx: CommandContext) -> None:
    for arg in ctx.argv:
        ctx.report(arg)


def _make_scope_handler(store: ScopeStore):
    def _scope(ctx: CommandContext) -> None:
        if not ctx.argv:
            if ctx.scope is None:
                ctx.report("No scope set. Use this command from a group, or pass a group id.")
            else:
                ctx.report(f"Your current scope is {ctx.scope}.")
            return
        chat_id = int(ctx.argv[0])
        if not store.is_known(chat_id):
            ctx.report("Error: bot is not in that chat.")
            return
        store.set_user_scope(ctx.invocation.user_id, chat_id)
        logger.info("%s scope set to %s", ctx.invocation.tag, chat_id)
        ctx.report(f"Your contextual scope is now {chat_id}.")

    return _scope


def _make_admins_handler(admin_ids: Collection[int]):
    def _admins(ctx: CommandContext) -> None:
        if not admin_ids:
            ctx.report("No bot admins configured.")
            return
        ctx.report("Bot admins: " + ", ".join(str(x) for x in sorted(admin_ids)))

    return _admins


def _metrics(ctx: CommandContext) -> None:
    limit = 50 if ctx.argv[:1] == ["full"] else 10
    ctx.report(metrics.format_metrics_text(limit=limit))


def builtin_specs(store: ScopeStore, admin_ids: Collection[int] = ()) -> List[CommandSpec]:
    return [
        CommandSpec(
            name="help",
            schema=schema(),
            handler=_help,
            description="list commands",
        ),
        CommandSpec(
            name="echo",
            schema=schema(required("text"), optional("more...")),
            handler=_echo,
            description="repeat each argument back",
        ),
        CommandSpec(
            name="scope",
            schema=schema(optional("scopeId"), checks=[_integer_scope_id]),
            handler=_make_scope_handler(store),
            description="show or choose the group your private commands act on",
            group="Scope",
        ),
        CommandSpec(
            name="admins",
            schema=schema(),
            handler=_make_admins_handler(frozenset(admin_ids)),
            admin_only=True,
            description="list bot admins",
            group="Admin",
        ),
        CommandSpec(
            name="metrics",
            schema=schema(choice("detail", OPTIONAL, ["summary", "full"])),
            handler=_metrics,
            admin_only=True,
            description="dispatch counters and latencies",
            group="Admin",
        ),
    ]


def build_registry(
    store: ScopeStore,
    admin_ids: Collection[int] = (),
    extra: Iterable[CommandSpec] = (),
) -> CommandRegistry:
    """Build the registry once at startup; it is read-only afterwards."""
    return CommandRegistry([*builtin_specs(store, admin_ids), *extra])
