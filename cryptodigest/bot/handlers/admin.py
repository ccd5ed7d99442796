"""Allowed-symbol catalog administration handlers."""
import logging
from telegram import Update
from telegram.ext import ContextTypes
from cryptodigest.core.config import settings
from cryptodigest.services.subscription_store import get_subscription_store

logger = logging.getLogger(__name__)


def is_admin(chat_id: int) -> bool:
    return chat_id in settings.admin_chat_ids_list


async def _parse_admin_symbol(update: Update, context: ContextTypes.DEFAULT_TYPE, command: str):
    """Return the requested symbol, or None after replying with the reason."""
    if not is_admin(update.effective_chat.id):
        await update.message.reply_text("⛔ This command is restricted to administrators.")
        return None

    if not context.args:
        await update.message.reply_text(f"Usage: /{command} SYMBOL")
        return None

    return context.args[0].upper()


async def allow_command(update: Update, context: ContextTypes.DEFAULT_TYPE):
    """Handle /allow SYMBOL: add a symbol to the catalog."""
    symbol = await _parse_admin_symbol(update, context, "allow")
    if symbol is None:
        return

    store = await get_subscription_store()
    if await store.add_allowed_symbol(symbol):
        logger.info(f"Admin {update.effective_chat.id} allowed {symbol}")
        await update.message.reply_text(f"✅ {symbol} can now be added to watchlists.")
    else:
        await update.message.reply_text(f"{symbol} is already available.")


async def disallow_command(update: Update, context: ContextTypes.DEFAULT_TYPE):
    """
    Handle /disallow SYMBOL: remove a symbol from the catalog.

    Existing watch-lists keep the symbol.
    """
    symbol = await _parse_admin_symbol(update, context, "disallow")
    if symbol is None:
        return

    store = await get_subscription_store()
    if await store.remove_allowed_symbol(symbol):
        logger.info(f"Admin {update.effective_chat.id} disallowed {symbol}")
        await update.message.reply_text(f"✅ {symbol} removed from available symbols.")
    else:
        await update.message.reply_text(f"{symbol} was not available.")
