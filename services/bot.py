import logging
import os
from typing import Any, Collection, Dict, List, Optional

from telegram import Update
from telegram.error import TelegramError
from telegram.ext import Application, ChatMemberHandler, ContextTypes, MessageHandler, filters
from telegram.request import HTTPXRequest

from services.builtin_commands import GROUP_CHAT_TYPES, ScopeStore, build_registry
from services.commands import Invocation, dispatch_message
from services.commands_registry import CommandRegistry
from services.inline_commands import COMMAND_PREFIX
from role_keeper.config import (
    get_admin_ids,
    get_allowed_user_ids,
    get_command_prefix,
    get_token_env_var,
    load_config,
)
from role_keeper.logging import correlation_context

TELEGRAM_MESSAGE_LIMIT = 3500
REGISTRY_KEY = "registry"
SCOPES_KEY = "scope_store"
PREFIX_KEY = "command_prefix"
ADMINS_KEY = "admin_ids"
ALLOWED_KEY = "allowed_user_ids"

PRESENT_STATUSES = {"member", "administrator", "restricted", "creator"}
GONE_STATUSES = {"left", "kicked"}

logger = logging.getLogger(__name__)


def _allowed(update: Update, allowed_ids: Collection[int]) -> bool:
    if not allowed_ids:
        return True
    user = update.effective_user
    return bool(user and int(user.id) in allowed_ids)


def is_admin(update: Update, admin_ids: Collection[int]) -> bool:
    user = update.effective_user
    if not user:
        return False
    return int(user.id) in admin_ids


def invocation_from_update(update: Update) -> Invocation:
    user = update.effective_user
    chat_obj = update.effective_chat
    user_id = int(user.id) if user else 0
    return Invocation(
        user_id=user_id,
        chat_id=int(chat_obj.id) if chat_obj else user_id,
        chat_type=str(chat_obj.type) if chat_obj else "private",
        display_name=(user.full_name if user else "").strip(),
    )


def split_for_telegram(text: str, limit: int = TELEGRAM_MESSAGE_LIMIT) -> List[str]:
    content = (text or "").strip()
    if not content:
        return []

    chunks: List[str] = []
    remaining = content

    while len(remaining) > limit:
        cut = remaining.rfind("\n", 0, limit)
        if cut < int(limit * 0.55):
            cut = remaining.rfind(" ", 0, limit)
        if cut < int(limit * 0.40):
            cut = limit

        piece = remaining[:cut].rstrip()
        if piece:
            chunks.append(piece)
        remaining = remaining[cut:].lstrip()

    if remaining:
        chunks.append(remaining)

    return chunks


async def handle_text(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    if not _allowed(update, context.bot_data.get(ALLOWED_KEY, ())):
        return
    if not update.message or not update.message.text:
        return

    registry: CommandRegistry = context.bot_data[REGISTRY_KEY]
    store: ScopeStore = context.bot_data[SCOPES_KEY]
    prefix = context.bot_data.get(PREFIX_KEY, COMMAND_PREFIX)
    invocation = invocation_from_update(update)
    if invocation.chat_type in GROUP_CHAT_TYPES:
        store.remember(invocation.chat_id)

    with correlation_context():
        reply = await dispatch_message(
            registry,
            update.message.text,
            is_admin=is_admin(update, context.bot_data.get(ADMINS_KEY, ())),
            invocation=invocation,
            resolve_scope=store.resolve,
            prefix=prefix,
        )
        if not reply:
            return
        for chunk in split_for_telegram(reply):
            try:
                await update.message.reply_text(chunk)
            except TelegramError as exc:
                logger.warning("Failed to send reply to %s: %s", invocation.tag, exc)
                return


async def handle_my_chat_member(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Track which chats the bot is in, so stale scopes stop resolving."""
    change = update.my_chat_member
    if not change:
        return
    store: ScopeStore = context.bot_data[SCOPES_KEY]
    chat_id = int(change.chat.id)
    status = change.new_chat_member.status
    if status in GONE_STATUSES:
        store.forget(chat_id)
        logger.info("Removed from chat %s (%s)", chat_id, status)
    elif status in PRESENT_STATUSES and change.chat.type in GROUP_CHAT_TYPES:
        store.remember(chat_id)
        logger.info("Joined chat %s (%s)", chat_id, status)


def build_application(token: str, config: Optional[Dict[str, Any]] = None) -> Application:
    cfg = config if config is not None else load_config()
    prefix = get_command_prefix(cfg)
    admin_ids = get_admin_ids(cfg)
    allowed_ids = get_allowed_user_ids(cfg)

    store = ScopeStore()
    registry = build_registry(store, admin_ids)
    for issue in registry.validate():
        logger.error("Command registry issue: %s", issue)

    if not allowed_ids:
        logger.warning("SECURITY: No allowed_user_ids configured; bot is open to ALL users.")

    request = HTTPXRequest(
        connect_timeout=30,
        read_timeout=60,
        write_timeout=60,
        pool_timeout=30,
    )
    app = Application.builder().token(token).request(request).build()
    app.bot_data[REGISTRY_KEY] = registry
    app.bot_data[SCOPES_KEY] = store
    app.bot_data[PREFIX_KEY] = prefix
    app.bot_data[ADMINS_KEY] = frozenset(admin_ids)
    app.bot_data[ALLOWED_KEY] = frozenset(allowed_ids)
    app.add_handler(MessageHandler(filters.TEXT, handle_text))
    app.add_handler(ChatMemberHandler(handle_my_chat_member, ChatMemberHandler.MY_CHAT_MEMBER))
    logger.info("Registered %d commands with prefix %r", len(registry), prefix)
    return app


def run_bot() -> None:
    config = load_config()
    env_var_name = get_token_env_var(config)
    token = os.getenv(env_var_name, "").strip()
    if not token:
        raise RuntimeError(f"{env_var_name} is not set. Put it in your .env file.")

    app = build_application(token, config)
    app.run_polling(close_loop=False)


if __name__ == "__main__":
    run_bot()
