"""
Telegram command, button and dialog handlers.

All handlers take (event, context) and talk to the user only through
context.reply. Business logic lives in services/; handlers render
results into texts and keyboards.
"""

from eventbot.exceptions import LinkingError
from eventbot.services.linking import BOT_TOKEN_AUDIENCE, LinkingOutcome
from eventbot.services.storage import LinkedIdentityRecord

from . import menus
from .dispatcher import BotContext, Dispatcher
from .logging_config import bot_logger as logger
from .models import ChatEvent


async def _identity_record(event: ChatEvent, context: BotContext) -> LinkedIdentityRecord:
    # Attached by Dispatcher.dispatch; resolve only when called outside it
    if event.record is not None:
        return event.record
    return await context.resolver.resolve_or_create(event.from_user)


async def handle_start_command(event: ChatEvent, context: BotContext) -> None:
    """Handle /start: show the main menu. The dispatcher has registered the user."""
    user = event.from_user
    logger.info(f"/start from telegram_id={user.telegram_id}, username={user.username}")

    try:
        await context.reply(event, menus.WELCOME_TEXT, menus.main_menu_keyboard(context.mini_app_url))
    except Exception as e:
        logger.error(f"Error in /start command: {e}", exc_info=True)
        await context.reply(event, menus.format_error("Error occurred while starting the bot", e))


async def handle_help_command(event: ChatEvent, context: BotContext) -> None:
    """Handle /help command."""
    await context.reply(event, menus.HELP_TEXT)


async def handle_cancel_command(event: ChatEvent, context: BotContext) -> None:
    """Handle /cancel - abort account linking."""
    cancelled = await context.linking.cancel(event.from_user)
    await context.reply(event, menus.LINK_CANCELLED if cancelled else menus.NOTHING_TO_CANCEL)


async def handle_link_account(event: ChatEvent, context: BotContext) -> None:
    result = await context.linking.begin_linking(event.from_user, event.record)

    if result.outcome == LinkingOutcome.ALREADY_LINKED:
        await context.reply(event, menus.ALREADY_LINKED)
        return

    await context.reply(event, menus.LINK_PROMPT_EMAIL)


async def handle_my_events(event: ChatEvent, context: BotContext) -> None:
    """
    List the linked user's events from the EventApp API.

    The API call is authorized with a fresh token for the linked user.
    """
    try:
        record = await _identity_record(event, context)

        if not record.is_linked:
            await context.reply(event, menus.LINK_REQUIRED)
            return

        token = context.token_issuer.issue(record.user_id, BOT_TOKEN_AUDIENCE)
        events = await context.events.get_my_events(token)
        logger.info(f"Loaded {len(events)} events for user_id={record.user_id}")

        if not events:
            await context.reply(event, menus.NO_EVENTS)
            return

        await context.reply(event, menus.events_text(events))

    except Exception as e:
        logger.error(f"Error getting user events: {e}", exc_info=True)
        await context.reply(
            event,
            menus.format_error(
                "Error occurred while loading your events",
                e,
                {"🌐 API URL": context.eventapp_api_url or "NOT_SET"},
            ),
        )


async def handle_browse_events(event: ChatEvent, context: BotContext) -> None:
    try:
        await context.reply(event, menus.BROWSE_TEXT, menus.browse_keyboard(context.mini_app_url))
    except Exception as e:
        logger.error(f"Error browsing events: {e}", exc_info=True)
        await context.reply(
            event,
            menus.format_error(
                "Error occurred while opening event browser",
                e,
                {"🌐 Mini App URL": context.mini_app_url or "NOT_SET"},
            ),
        )


async def handle_settings(event: ChatEvent, context: BotContext) -> None:
    try:
        record = await _identity_record(event, context)
        await context.reply(
            event,
            menus.settings_text(record.is_linked, event.from_user.username),
            menus.settings_keyboard(),
        )
    except Exception as e:
        logger.error(f"Error in settings: {e}", exc_info=True)
        await context.reply(event, menus.format_error("Error occurred while loading settings", e))


async def handle_back_to_menu(event: ChatEvent, context: BotContext) -> None:
    await context.reply(event, menus.WELCOME_TEXT, menus.main_menu_keyboard(context.mini_app_url))


async def handle_dialog_text(event: ChatEvent, context: BotContext) -> None:
    """
    Feed free text into the account linking dialog.

    Text from users without an active dialog is ignored silently.
    """
    result = await context.linking.handle_text(event.from_user, event.content)
    outcome = result.outcome

    if outcome == LinkingOutcome.IGNORED:
        return

    if outcome == LinkingOutcome.INVALID_EMAIL:
        await context.reply(event, menus.LINK_INVALID_EMAIL)

    elif outcome == LinkingOutcome.PROMPT_PASSWORD:
        await context.reply(event, menus.LINK_PROMPT_PASSWORD)

    elif outcome == LinkingOutcome.LINKED:
        await context.reply(
            event,
            menus.linked_text(result.user.name if result.user else None),
            menus.linked_keyboard(context.mini_app_url),
        )

    elif outcome == LinkingOutcome.LINK_FAILED:
        if isinstance(result.error, LinkingError):
            footer = (
                "Please check your email and password, or make sure you have an EventApp account.\n\n"
                "Please enter your EventApp email address:"
            )
        else:
            footer = "Please send your password again."
        await context.reply(
            event,
            menus.format_error(
                "Failed to link account",
                result.error,
                {"📧 Email": result.email or "N/A"},
                footer=footer,
            ),
        )


def register_handlers(dispatcher: Dispatcher) -> Dispatcher:
    """Wire all bot handlers into the dispatcher tables."""
    dispatcher.add_command("start", handle_start_command)
    dispatcher.add_command("help", handle_help_command)
    dispatcher.add_command("cancel", handle_cancel_command)

    dispatcher.add_action(menus.LINK_ACCOUNT, handle_link_account)
    dispatcher.add_action(menus.MY_EVENTS, handle_my_events)
    dispatcher.add_action(menus.BROWSE_EVENTS, handle_browse_events)
    dispatcher.add_action(menus.SETTINGS, handle_settings)
    dispatcher.add_action(menus.BACK_TO_MENU, handle_back_to_menu)

    dispatcher.set_text_handler(handle_dialog_text)
    return dispatcher
