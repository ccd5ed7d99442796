"""Watchlist management command handlers."""
import logging
from telegram import Update
from telegram.ext import ContextTypes
from cryptodigest.core.errors import DigestError
from cryptodigest.services.subscription_store import get_subscription_store
from cryptodigest.utils.formatting import format_allowed_symbols, format_watchlist

logger = logging.getLogger(__name__)


def _get_worker(context: ContextTypes.DEFAULT_TYPE):
    """Digest worker registered by the bot process, if broadcasting is embedded."""
    return context.bot_data.get("worker")


async def _refresh_now(update: Update, context: ContextTypes.DEFAULT_TYPE, chat_id: int):
    worker = _get_worker(context)
    if worker is None:
        return
    try:
        await worker.trigger_immediate_refresh(chat_id)
    except DigestError as e:
        logger.warning(f"Immediate refresh failed: {e.kind}: {e}")
        await update.message.reply_text(
            "⚠️ Couldn't fetch prices right now. Your digest will update on the next refresh."
        )


async def add_command(update: Update, context: ContextTypes.DEFAULT_TYPE):
    """
    Handle /add SYMBOL command.
    Adds a symbol to the subscriber's watchlist and refreshes their digest.
    """
    chat_id = update.effective_chat.id

    # Check for symbol argument
    if not context.args or len(context.args) == 0:
        await update.message.reply_text(
            "Please provide a symbol.\nUsage: /add SYMBOL\nExample: /add ETH"
        )
        return

    symbol = context.args[0].upper()

    store = await get_subscription_store()
    record = await store.get(chat_id)
    if not record:
        await update.message.reply_text("Please use /start first to initialize your account.")
        return

    allowed = await store.get_allowed_symbols()
    if symbol not in allowed:
        await update.message.reply_text(
            f"❌ {symbol} is not supported.\n{format_allowed_symbols(allowed)}"
        )
        return

    added, _ = await store.add_to_watch_list(chat_id, symbol)
    if not added:
        await update.message.reply_text(f"{symbol} is already in your watchlist.")
        return

    await update.message.reply_text(f"✅ Added {symbol} to your watchlist.")
    await _refresh_now(update, context, chat_id)


async def remove_command(update: Update, context: ContextTypes.DEFAULT_TYPE):
    """
    Handle /remove SYMBOL command.
    Removes a symbol; deletes the digest when the watchlist becomes empty.
    """
    chat_id = update.effective_chat.id

    # Check for symbol argument
    if not context.args or len(context.args) == 0:
        await update.message.reply_text(
            "Please provide a symbol.\nUsage: /remove SYMBOL\nExample: /remove BTC"
        )
        return

    symbol = context.args[0].upper()

    store = await get_subscription_store()
    record = await store.get(chat_id)
    if not record:
        await update.message.reply_text("Please use /start first to initialize your account.")
        return

    removed, watch_list = await store.remove_from_watch_list(chat_id, symbol)
    if not removed:
        await update.message.reply_text(f"❌ {symbol} was not in your watchlist.")
        return

    await update.message.reply_text(f"✅ Removed {symbol} from your watchlist.")

    if watch_list:
        await _refresh_now(update, context, chat_id)
        return

    worker = _get_worker(context)
    if worker is not None and not await worker.clear_digest(chat_id):
        logger.warning(f"Digest for {chat_id} could not be deleted, keeping its id")


async def list_command(update: Update, context: ContextTypes.DEFAULT_TYPE):
    """
    Handle /list command.
    Shows the subscriber's current watchlist.
    """
    chat_id = update.effective_chat.id

    store = await get_subscription_store()
    record = await store.get(chat_id)
    if not record:
        await update.message.reply_text("Please use /start first to initialize your account.")
        return

    await update.message.reply_text(format_watchlist(record.watch_list))
