"""
Bot texts and inline keyboards.
"""

from datetime import datetime, timezone
from typing import Optional

from eventbot.exceptions import error_code

# Callback action ids
LINK_ACCOUNT = "link_account"
MY_EVENTS = "my_events"
BROWSE_EVENTS = "browse_events"
SETTINGS = "settings"
BACK_TO_MENU = "back_to_menu"
NOTIFICATIONS = "notifications"
LANGUAGE = "language"
ACCOUNT_SETTINGS = "account_settings"

WELCOME_TEXT = """🎉 Welcome to EventApp Bot!

This bot helps you manage and discover events. You can:

📱 Use our Mini App to browse events
🔗 Link your existing EventApp account
📅 Get event notifications
🎫 Manage your tickets

Choose an option below:"""

HELP_TEXT = """📖 EventApp Bot

/start - main menu
/help - this help
/cancel - stop linking your account

Use "🔗 Link Account" to connect your EventApp account, then "📅 My Events" to see your events."""

LINK_PROMPT_EMAIL = (
    "🔗 Let's link your EventApp account!\n\n"
    "Please enter your EventApp email address:"
)
LINK_INVALID_EMAIL = "❌ Please enter a valid email address:"
LINK_PROMPT_PASSWORD = (
    "✅ Email received!\n\n"
    "Now please enter your EventApp password:"
)
ALREADY_LINKED = "✅ Your account is already linked!"
LINK_CANCELLED = "Account linking cancelled."
NOTHING_TO_CANCEL = "Nothing to cancel."
LINK_REQUIRED = (
    "❌ Please link your EventApp account first.\n\n"
    'Use the "🔗 Link Account" option to connect your account.'
)
NO_EVENTS = "📅 You don't have any events yet."
BROWSE_TEXT = (
    "🔍 Browse Events\n\n"
    "Click the button below to open our Mini App and browse all available events:"
)


def _mini_app_row(mini_app_url: str) -> list[list[dict]]:
    # Telegram rejects web_app buttons without a URL
    if not mini_app_url:
        return []
    return [[{"text": "📱 Open Mini App", "web_app": {"url": mini_app_url}}]]


def main_menu_keyboard(mini_app_url: str) -> list[list[dict]]:
    return _mini_app_row(mini_app_url) + [
        [
            {"text": "🔗 Link Account", "callback_data": LINK_ACCOUNT},
            {"text": "📅 My Events", "callback_data": MY_EVENTS},
        ],
        [
            {"text": "🔍 Browse Events", "callback_data": BROWSE_EVENTS},
            {"text": "⚙️ Settings", "callback_data": SETTINGS},
        ],
    ]


def browse_keyboard(mini_app_url: str) -> list[list[dict]]:
    return _mini_app_row(mini_app_url) + [
        [{"text": "🔙 Back to Menu", "callback_data": BACK_TO_MENU}],
    ]


def settings_keyboard() -> list[list[dict]]:
    return [
        [
            {"text": "🔔 Notifications", "callback_data": NOTIFICATIONS},
            {"text": "🌐 Language", "callback_data": LANGUAGE},
        ],
        [{"text": "🔗 Account Settings", "callback_data": ACCOUNT_SETTINGS}],
        [{"text": "🔙 Back to Menu", "callback_data": BACK_TO_MENU}],
    ]


def linked_keyboard(mini_app_url: str) -> list[list[dict]]:
    return _mini_app_row(mini_app_url) + [
        [
            {"text": "📅 My Events", "callback_data": MY_EVENTS},
            {"text": "🔍 Browse Events", "callback_data": BROWSE_EVENTS},
        ],
    ]


def settings_text(linked: bool, username: Optional[str]) -> str:
    status = "✅ Linked" if linked else "❌ Not linked"
    return (
        "⚙️ Settings\n\n"
        f"Account Status: {status}\n"
        f"Username: @{username or 'N/A'}\n\n"
        "Choose an option:"
    )


def linked_text(name: Optional[str]) -> str:
    return (
        "✅ Account linked successfully!\n\n"
        f"Welcome back, {name or 'friend'}! 🎉\n\n"
        "You can now use all bot features."
    )


def events_text(events) -> str:
    lines = ["📅 Your Events:", ""]
    for index, event in enumerate(events, start=1):
        lines.append(f"{index}. {event.title}")
        lines.append(f"   📅 {event.display_date()}")
        lines.append(f"   📍 {event.location}")
        lines.append("")
    return "\n".join(lines).rstrip()


def format_error(
    title: str,
    error: BaseException,
    context: Optional[dict[str, str]] = None,
    footer: str = "Please try again or contact support if the problem persists.",
    now: Optional[datetime] = None,
) -> str:
    """
    User-facing diagnostic: description, error code, extra context lines
    and a UTC timestamp, so the user can report or retry.
    """
    timestamp = (now or datetime.now(timezone.utc)).isoformat(timespec="seconds")
    message = getattr(error, "message", None) or str(error) or error.__class__.__name__
    lines = [
        f"❌ {title}",
        "",
        f"🔍 Error details: {message}",
        f"📋 Error code: {error_code(error)}",
    ]
    for label, value in (context or {}).items():
        lines.append(f"{label}: {value}")
    lines.append(f"⏰ Time: {timestamp}")
    lines.append("")
    lines.append(footer)
    return "\n".join(lines)
