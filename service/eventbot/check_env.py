"""
Environment check for the EventApp Telegram bot.

Run before deploying:  eventbot-check-env
Exits with status 1 if a required variable is missing or the database
or the EventApp API cannot be reached.
"""

import os
import platform
import sys

import httpx
from dotenv import load_dotenv

REQUIRED_VARS = [
    "TELEGRAM_BOT_TOKEN",
    "SUPABASE_URL",
    "SUPABASE_SERVICE_ROLE_KEY",
    "JWT_SECRET",
    "EVENTAPP_API_URL",
    "FRONTEND_URL",
    "MINI_APP_URL",
    "PORT",
]

OPTIONAL_VARS = [
    "ENVIRONMENT",
    "TELEGRAM_WEBHOOK_SECRET",
    "SESSION_IDLE_TIMEOUT_MINUTES",
    "LOG_LEVEL",
]

SECRET_MARKERS = ("TOKEN", "SECRET", "KEY")


def mask(name: str, value: str) -> str:
    if any(marker in name for marker in SECRET_MARKERS):
        return "***SET***"
    return value


def check_variables(environ=os.environ) -> list[str]:
    """Print variable status, return the names of missing required ones."""
    missing = []

    print("📋 Required Variables:")
    for name in REQUIRED_VARS:
        value = environ.get(name)
        if value:
            print(f"✅ {name}: {mask(name, value)}")
        else:
            print(f"❌ {name}: NOT SET")
            missing.append(name)

    print("\n📋 Optional Variables:")
    for name in OPTIONAL_VARS:
        value = environ.get(name)
        if value:
            print(f"✅ {name}: {mask(name, value)}")
        else:
            print(f"⚠️  {name}: NOT SET (using default)")

    return missing


def check_database() -> bool:
    """Query both tables the bot reads and writes."""
    from eventbot.supabase_client import get_supabase_admin

    print("\n🗄️  Testing Database Connection...")
    try:
        supabase = get_supabase_admin()
        for table in ("telegram_sessions", "users"):
            supabase.table(table).select("*").limit(1).execute()
            print(f"✅ Table {table}: reachable")
    except Exception as e:
        print(f"❌ Database check failed: {e}")
        return False
    return True


def check_api(base_url: str | None, transport: httpx.BaseTransport | None = None) -> bool:
    """GET {EVENTAPP_API_URL}/health and print what the API reports."""
    print("\n🌐 Testing API Connection...")
    if not base_url:
        print("❌ EVENTAPP_API_URL not set")
        return False

    url = f"{base_url.rstrip('/')}/health"
    try:
        with httpx.Client(timeout=10.0, transport=transport) as client:
            response = client.get(url)
            response.raise_for_status()
            payload = response.json()
    except httpx.HTTPStatusError as e:
        print(f"❌ API connection failed: {e}")
        print(f"   Status: {e.response.status_code}")
        print(f"   Data: {e.response.text}")
        return False
    except (httpx.HTTPError, ValueError) as e:
        print(f"❌ API connection failed: {e}")
        return False

    if not isinstance(payload, dict):
        payload = {}
    print("✅ API connection successful")
    print(f"   Status: {payload.get('status')}")
    print(f"   Message: {payload.get('message')}")
    return True


def main() -> int:
    load_dotenv()

    print("🔍 Checking Telegram Bot Environment Variables...\n")
    missing = check_variables()

    print("\n🔧 Environment Summary:")
    print(f"Python Version: {platform.python_version()}")
    print(f"Platform: {sys.platform}")
    print(f"Architecture: {platform.machine()}")

    if missing:
        print(f"\n❌ Missing required variables: {', '.join(missing)}")
        return 1

    database_ok = check_database()
    api_ok = check_api(os.environ.get("EVENTAPP_API_URL"))
    if not (database_ok and api_ok):
        return 1

    print("\n✅ Environment looks good!")
    return 0


if __name__ == "__main__":
    sys.exit(main())
