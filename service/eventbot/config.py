from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    # Telegram
    telegram_bot_token: str
    telegram_webhook_secret: str = ""  # Optional: for webhook verification
    verify_init_data: bool = True  # Check Mini App initData HMAC signature
    mini_app_url: str = ""
    frontend_url: str = ""

    # Supabase (EventApp Postgres)
    supabase_url: str
    supabase_service_role_key: str

    # Tokens shared with the EventApp API
    jwt_secret: str
    token_expiry_days: int = 7

    # EventApp API
    eventapp_api_url: str
    eventapp_api_timeout: float = 30.0

    # Linking dialog sessions
    session_idle_timeout_minutes: int = 15
    session_max_entries: int = 10_000

    # Server
    port: int = 3001
    environment: str = "development"
    log_level: str = "INFO"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


@lru_cache()
def get_settings() -> Settings:
    return Settings()
