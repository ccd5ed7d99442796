"""Start, help and symbol catalog command handlers."""
import logging
from telegram import Update
from telegram.ext import ContextTypes
from cryptodigest.models.subscription import FIELD_DISPLAY_NAME
from cryptodigest.services.subscription_store import get_subscription_store
from cryptodigest.utils.formatting import HELP_TEXT, format_allowed_symbols, format_welcome

logger = logging.getLogger(__name__)


async def start_command(update: Update, context: ContextTypes.DEFAULT_TYPE):
    """
    Handle /start command.
    Creates the subscriber record on first contact.
    """
    try:
        chat_id = update.effective_chat.id
        user = update.effective_user

        store = await get_subscription_store()
        record = await store.get(chat_id)
        allowed = await store.get_allowed_symbols()

        if record:
            await update.message.reply_text(format_welcome(allowed, record.watch_list))
            return

        display_name = (user.username or user.first_name) if user else None
        await store.merge(chat_id, {FIELD_DISPLAY_NAME: display_name})
        logger.info(f"New subscriber {chat_id} ({display_name})")

        await update.message.reply_text(format_welcome(allowed))
    except Exception as e:
        logger.error(f"Error in start_command: {e}", exc_info=True)
        await update.message.reply_text(
            "❌ An error occurred processing your request. Please try again later."
        )


async def help_command(update: Update, context: ContextTypes.DEFAULT_TYPE):
    """Handle /help command."""
    await update.message.reply_text(HELP_TEXT)


async def symbols_command(update: Update, context: ContextTypes.DEFAULT_TYPE):
    """Handle /symbols command."""
    store = await get_subscription_store()
    allowed = await store.get_allowed_symbols()
    await update.message.reply_text(format_allowed_symbols(allowed))
