"""
Transport-neutral chat types.

Handlers and the linking flow never see python-telegram-bot objects;
bot.py converts every Update into a ChatEvent first.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Optional

if TYPE_CHECKING:
    from eventbot.services.storage import LinkedIdentityRecord

COMMAND_MARKER = "/"


@dataclass(frozen=True)
class ChatIdentity:
    """Telegram user as seen on an inbound event."""
    telegram_id: int
    username: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    language_code: Optional[str] = None

    @classmethod
    def from_telegram(cls, user: Any) -> "ChatIdentity":
        """Build from a telegram.User or an initData user dict."""
        if isinstance(user, dict):
            return cls(
                telegram_id=int(user["id"]),
                username=user.get("username"),
                first_name=user.get("first_name"),
                last_name=user.get("last_name"),
                language_code=user.get("language_code"),
            )
        return cls(
            telegram_id=int(user.id),
            username=user.username,
            first_name=user.first_name,
            last_name=user.last_name,
            language_code=user.language_code,
        )


class EventKind(str, Enum):
    COMMAND = "command"
    CALLBACK = "callback"
    TEXT = "text"


@dataclass(frozen=True)
class ChatEvent:
    """
    One inbound event.

    name: command name (without marker) or callback action id
    content: message text or full callback data
    event_id: callback query id, needed to acknowledge button presses
    record: stored identity, attached by the dispatcher before routing
    """
    kind: EventKind
    chat_id: int
    from_user: ChatIdentity
    name: str = ""
    content: str = ""
    event_id: Optional[str] = None
    record: Optional["LinkedIdentityRecord"] = field(default=None, compare=False)

    @classmethod
    def command(cls, name: str, chat_id: int, from_user: ChatIdentity, content: str = "") -> "ChatEvent":
        return cls(EventKind.COMMAND, chat_id, from_user, name=name, content=content)

    @classmethod
    def callback(cls, action_id: str, chat_id: int, from_user: ChatIdentity, event_id: str) -> "ChatEvent":
        return cls(EventKind.CALLBACK, chat_id, from_user, name=action_id, content=action_id, event_id=event_id)

    @classmethod
    def text(cls, content: str, chat_id: int, from_user: ChatIdentity) -> "ChatEvent":
        return cls(EventKind.TEXT, chat_id, from_user, content=content)


def parse_command(text: str) -> Optional[str]:
    """
    Return the command name for "/name" or "/name@BotName args", else None.
    """
    if not text or not text.startswith(COMMAND_MARKER):
        return None
    head = text[len(COMMAND_MARKER):].split(maxsplit=1)
    if not head:
        return ""
    return head[0].split("@", 1)[0].lower()
