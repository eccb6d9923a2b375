"""
Event dispatcher - routes chat events to handlers.

Three event kinds:
- command: "/start" etc., looked up by command name
- callback: inline button press, looked up by action id; always acknowledged
- text: free text, handed to the dialog handler (account linking)

Handlers have the signature `async def handler(event, context)` and are
registered in tables, so new buttons need no change here. Before routing,
the sender is resolved through the IdentityResolver and the stored record
is attached as event.record.

Every failure stops at this boundary: it is logged and turned into a
diagnostic message for the user. The event is then dropped and the next
one is processed normally.
"""

from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, Awaitable, Callable, Dict, Optional

from .logging_config import bot_logger as logger
from .menus import format_error
from .models import ChatEvent, EventKind, parse_command
from .telegram_api import ChatTransport

if TYPE_CHECKING:
    from eventbot.services.events_api import EventAppClient
    from eventbot.services.identity import IdentityResolver
    from eventbot.services.linking import LinkingService
    from eventbot.services.tokens import TokenIssuer


@dataclass
class BotContext:
    """Collaborators available to every handler."""
    transport: ChatTransport
    linking: "LinkingService"
    events: "EventAppClient"
    mini_app_url: str = ""
    eventapp_api_url: str = ""

    @property
    def resolver(self) -> "IdentityResolver":
        return self.linking.resolver

    @property
    def token_issuer(self) -> "TokenIssuer":
        return self.linking.token_issuer

    async def reply(self, event: ChatEvent, text: str, keyboard: Optional[list] = None) -> None:
        await self.transport.send_message(event.chat_id, text, keyboard)


Handler = Callable[[ChatEvent, BotContext], Awaitable[None]]

ERROR_TITLES = {
    EventKind.COMMAND: "Error occurred while processing your command",
    EventKind.CALLBACK: "Error occurred while processing your request",
    EventKind.TEXT: "Error occurred while processing your message",
}


class Dispatcher:
    def __init__(self, context: BotContext):
        self.context = context
        self._commands: Dict[str, Handler] = {}
        self._actions: Dict[str, Handler] = {}
        self._text_handler: Optional[Handler] = None

    # Registration

    def add_command(self, name: str, handler: Handler) -> None:
        self._commands[name.lower()] = handler

    def add_action(self, action_id: str, handler: Handler) -> None:
        self._actions[action_id] = handler

    def set_text_handler(self, handler: Handler) -> None:
        self._text_handler = handler

    def command(self, name: str):
        def decorator(handler: Handler) -> Handler:
            self.add_command(name, handler)
            return handler
        return decorator

    def action(self, action_id: str):
        def decorator(handler: Handler) -> Handler:
            self.add_action(action_id, handler)
            return handler
        return decorator

    def text(self, handler: Handler) -> Handler:
        self.set_text_handler(handler)
        return handler

    @property
    def actions(self) -> frozenset[str]:
        return frozenset(self._actions)

    @property
    def commands(self) -> frozenset[str]:
        return frozenset(self._commands)

    # Routing

    def _route(self, event: ChatEvent) -> Optional[Handler]:
        if event.kind == EventKind.COMMAND:
            return self._commands.get(event.name.lower())
        if event.kind == EventKind.CALLBACK:
            return self._actions.get(event.name)
        return self._text_handler

    async def dispatch(self, event: ChatEvent) -> None:
        """Process one event. Never raises."""
        if event.kind == EventKind.TEXT:
            name = parse_command(event.content)
            if name is not None:
                # Never dialog input, even mid-dialog
                event = ChatEvent.command(name, event.chat_id, event.from_user, content=event.content)

        if event.kind == EventKind.CALLBACK:
            await self._acknowledge(event)

        try:
            # Profile fields are refreshed on every inbound event
            record = await self.context.resolver.resolve_or_create(event.from_user)
            event = replace(event, record=record)

            handler = self._route(event)
            if handler is None:
                logger.debug(f"No handler for {event.kind.value} event name={event.name!r} from telegram_id={event.from_user.telegram_id}")
                return

            await handler(event, self.context)
        except Exception as e:
            logger.error(
                f"Handler failed for {event.kind.value} event name={event.name!r} "
                f"from telegram_id={event.from_user.telegram_id}: {e}",
                exc_info=True,
            )
            await self._report(event, e)

    async def _acknowledge(self, event: ChatEvent) -> None:
        if not event.event_id:
            return
        try:
            await self.context.transport.acknowledge_callback(event.event_id)
        except Exception as e:
            logger.error(f"Failed to acknowledge callback {event.event_id}: {e}", exc_info=True)

    async def _report(self, event: ChatEvent, error: Exception) -> None:
        extra = {"🎯 Action": event.name} if event.kind == EventKind.CALLBACK else None
        text = format_error(ERROR_TITLES[event.kind], error, extra)
        try:
            await self.context.transport.send_message(event.chat_id, text)
        except Exception as send_error:
            logger.error(f"Failed to report error to chat_id={event.chat_id}: {send_error}", exc_info=True)
