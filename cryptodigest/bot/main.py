"""Telegram bot main entry point."""
import logging
import traceback
from telegram import Update
from telegram.ext import Application, CommandHandler, ContextTypes
from cryptodigest.core.config import settings
from cryptodigest.core.redis import close_redis
from cryptodigest.bot.handlers.start import start_command, help_command, symbols_command
from cryptodigest.bot.handlers.watchlist import add_command, remove_command, list_command
from cryptodigest.bot.handlers.admin import allow_command, disallow_command
from cryptodigest.scheduler.main import BroadcastScheduler, build_worker

logger = logging.getLogger(__name__)


async def error_handler(update: object, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle errors globally for the Telegram bot."""
    logger.error("Exception while handling an update:")

    # Format the traceback
    tb_list = traceback.format_exception(None, context.error, context.error.__traceback__)
    tb_string = "".join(tb_list)

    logger.error(f"Exception: {context.error}")
    logger.error(f"Traceback:\n{tb_string}")

    if update and isinstance(update, Update):
        logger.error(f"Update ID: {update.update_id}")
        if update.effective_user:
            logger.error(f"User: {update.effective_user.id} (@{update.effective_user.username})")
        if update.effective_chat:
            logger.error(f"Chat: {update.effective_chat.id}")
        if update.effective_message:
            logger.error(f"Message: {update.effective_message.text}")

    # Send a message to the user if possible
    if update and isinstance(update, Update) and update.effective_message:
        try:
            await update.effective_message.reply_text(
                "Sorry, an error occurred while processing your request. "
                "Please try again later."
            )
        except Exception as e:
            logger.error(f"Failed to send error message to user: {e}")


async def post_init(application: Application) -> None:
    """Wire the digest worker and start broadcasting before polling begins."""
    worker = await build_worker(application.bot)
    application.bot_data["worker"] = worker

    if not settings.embed_scheduler:
        logger.info("Broadcast scheduler disabled in this process")
        return

    scheduler = BroadcastScheduler(worker)
    application.bot_data["scheduler"] = scheduler

    report = await scheduler.run_startup_pass()
    logger.info(f"Startup pass: {len(report.refreshed)} refreshed, {len(report.failed)} failed")
    scheduler.start()


async def post_shutdown(application: Application) -> None:
    """Stop broadcasting and release connections."""
    scheduler = application.bot_data.get("scheduler")
    if scheduler is not None:
        scheduler.stop()

    worker = application.bot_data.get("worker")
    if worker is not None:
        await worker.provider.close()

    await close_redis()


def build_application() -> Application:
    """Create the bot application with all handlers registered."""
    application = (
        Application.builder()
        .token(settings.telegram_bot_token)
        .post_init(post_init)
        .post_shutdown(post_shutdown)
        .build()
    )

    # Register error handler
    application.add_error_handler(error_handler)

    # Register command handlers
    application.add_handler(CommandHandler("start", start_command))
    application.add_handler(CommandHandler("help", help_command))
    application.add_handler(CommandHandler("symbols", symbols_command))
    application.add_handler(CommandHandler("add", add_command))
    application.add_handler(CommandHandler("remove", remove_command))
    application.add_handler(CommandHandler("list", list_command))
    application.add_handler(CommandHandler("allow", allow_command))
    application.add_handler(CommandHandler("disallow", disallow_command))

    return application


def main():
    """Start the Telegram bot."""
    logging.basicConfig(
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        level=getattr(logging, settings.log_level)
    )

    logger.info("="*60)
    logger.info("Starting Telegram bot...")
    logger.info(f"Log level: {settings.log_level}")
    logger.info(f"Refresh cadence: every {settings.refresh_interval_seconds} seconds")
    logger.info(f"Replace policy: {settings.replace_policy}")
    logger.debug(f"Bot token configured: {bool(settings.telegram_bot_token)}")
    logger.info("="*60)

    application = build_application()

    logger.info("All handlers registered successfully")
    logger.info("Bot started successfully - polling for updates")
    application.run_polling(allowed_updates=Update.ALL_TYPES)


if __name__ == "__main__":
    main()
