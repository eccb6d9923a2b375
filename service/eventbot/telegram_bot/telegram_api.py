"""
Telegram Bot API client for sending messages.

Simple wrapper for sending messages back to Telegram, plus the
ChatTransport the dispatcher talks to.
"""

import httpx
from typing import Optional, Protocol

from eventbot.config import get_settings

# 2D array of button dicts, e.g. [[{"text": "Yes", "callback_data": "yes"}]]
Keyboard = list[list[dict]]


def _api_url(method: str) -> str:
    settings = get_settings()
    return f"https://api.telegram.org/bot{settings.telegram_bot_token}/{method}"


async def send_message(chat_id: int, text: str, keyboard: Optional[Keyboard] = None) -> dict:
    """
    Send message to Telegram user.

    Args:
        chat_id: Telegram chat ID
        text: Message text (plain)
        keyboard: Optional inline keyboard rows

    Returns:
        Telegram response dict
    """
    payload = {
        "chat_id": chat_id,
        "text": text
    }

    if keyboard:
        payload["reply_markup"] = {"inline_keyboard": keyboard}

    async with httpx.AsyncClient() as client:
        response = await client.post(_api_url("sendMessage"), json=payload)
        response.raise_for_status()
        return response.json()


async def answer_callback_query(callback_query_id: str, text: Optional[str] = None) -> None:
    """
    Acknowledge a button press so the client stops showing the spinner.

    Telegram expects this for every callback query, whatever the outcome.
    """
    payload = {"callback_query_id": callback_query_id}
    if text:
        payload["text"] = text

    async with httpx.AsyncClient() as client:
        response = await client.post(_api_url("answerCallbackQuery"), json=payload)
        response.raise_for_status()


class ChatTransport(Protocol):
    async def send_message(self, chat_id: int, text: str, keyboard: Optional[Keyboard] = None) -> None:
        ...

    async def acknowledge_callback(self, event_id: str, text: Optional[str] = None) -> None:
        ...


class TelegramTransport:
    """ChatTransport backed by the Telegram Bot API."""

    async def send_message(self, chat_id: int, text: str, keyboard: Optional[Keyboard] = None) -> None:
        await send_message(chat_id, text, keyboard)

    async def acknowledge_callback(self, event_id: str, text: Optional[str] = None) -> None:
        await answer_callback_query(event_id, text)
