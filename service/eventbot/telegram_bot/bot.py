"""
Main Telegram bot handler.

Uses python-telegram-bot to parse updates (webhook or long polling) and
hands every update to the Dispatcher as a transport-neutral ChatEvent.
"""

from typing import Optional

from telegram import Update
from telegram.ext import Application, CallbackQueryHandler, ContextTypes, MessageHandler, filters

from eventbot.config import get_settings
from eventbot.services.events_api import get_events_client
from eventbot.services.linking import get_linking_service
from .dispatcher import BotContext, Dispatcher
from .handlers import register_handlers
from .logging_config import bot_logger as logger
from .models import ChatEvent, ChatIdentity, parse_command
from .telegram_api import TelegramTransport


# Global instances (initialized once)
_application: Application | None = None
_dispatcher: Dispatcher | None = None


def get_dispatcher() -> Dispatcher:
    """Get or create the dispatcher with all handlers registered."""
    global _dispatcher

    if _dispatcher is None:
        settings = get_settings()
        context = BotContext(
            transport=TelegramTransport(),
            linking=get_linking_service(),
            events=get_events_client(),
            mini_app_url=settings.mini_app_url,
            eventapp_api_url=settings.eventapp_api_url,
        )
        _dispatcher = register_handlers(Dispatcher(context))
        logger.info(
            f"Dispatcher ready: commands={sorted(_dispatcher.commands)}, "
            f"actions={sorted(_dispatcher.actions)}"
        )

    return _dispatcher


def update_to_event(update: Update) -> Optional[ChatEvent]:
    """Convert a Telegram update into a ChatEvent, or None if not relevant."""
    if update.callback_query is not None:
        query = update.callback_query
        if query.message is None or query.from_user is None:
            return None
        return ChatEvent.callback(
            query.data or "",
            query.message.chat.id,
            ChatIdentity.from_telegram(query.from_user),
            event_id=query.id,
        )

    message = update.message
    if message is None or message.text is None or message.from_user is None:
        return None

    identity = ChatIdentity.from_telegram(message.from_user)
    name = parse_command(message.text)
    if name is not None:
        return ChatEvent.command(name, message.chat.id, identity, content=message.text)
    return ChatEvent.text(message.text, message.chat.id, identity)


async def _on_update(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    event = update_to_event(update)
    if event is None:
        logger.debug(f"Skipping update {update.update_id}")
        return
    await get_dispatcher().dispatch(event)


async def handle_error(update: object, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Last-resort handler for errors raised outside the dispatcher."""
    logger.error(f"Bot error: {context.error}", exc_info=context.error)


def get_bot_application() -> Application:
    """Get or create telegram bot application."""
    global _application

    if _application is None:
        settings = get_settings()

        _application = (
            Application.builder()
            .token(settings.telegram_bot_token)
            .build()
        )

        # Commands and plain text (the dispatcher tells them apart)
        _application.add_handler(MessageHandler(filters.TEXT, _on_update))

        # Callback queries (inline keyboard buttons)
        _application.add_handler(CallbackQueryHandler(_on_update))

        _application.add_error_handler(handle_error)

        logger.info("Telegram bot application initialized")

    return _application


async def handle_telegram_update(update_data: dict) -> None:
    """
    Process incoming webhook update from Telegram.

    This is called by FastAPI webhook endpoint in a background task.
    Failures are logged and the update dropped.
    """
    try:
        app = get_bot_application()

        update = Update.de_json(update_data, app.bot)

        if update:
            await app.process_update(update)
        else:
            logger.warning("Received invalid update data")

    except Exception as e:
        logger.error(f"Failed to process update: {e}", exc_info=True)


async def initialize_bot() -> None:
    """
    Initialize bot application (call on startup).
    """
    app = get_bot_application()
    get_dispatcher()
    await app.initialize()
    logger.info("Bot initialized successfully")


async def shutdown_bot() -> None:
    """
    Shutdown bot application (call on shutdown).
    """
    global _application
    if _application:
        await _application.shutdown()
        _application = None
        logger.info("Bot shut down")


def run_polling() -> None:
    """Run the bot with long polling instead of the webhook."""
    app = get_bot_application()
    get_dispatcher()
    logger.info("Starting long polling")
    app.run_polling(allowed_updates=["message", "callback_query"])


if __name__ == "__main__":
    run_polling()
