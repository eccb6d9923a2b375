"""
Telegram Bot module for the EventApp bridge.

ARCHITECTURE: Thin routing layer.
- bot.py turns Telegram updates (webhook or polling) into ChatEvents
- dispatcher.py routes commands, button presses and free text
- handlers.py renders service results into messages and keyboards
- sessions.py keeps the per-user account linking dialog state

Account linking, identity records and tokens live in eventbot.services.
Import submodules directly; this package does not re-export them so that
services can use the logger and models without pulling in the bot.
"""
