import asyncio
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, Header, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from eventbot.config import get_settings
from eventbot.api.telegram import router as telegram_router, error_response
from eventbot.exceptions import ValidationError
from eventbot.services.events_api import close_events_client
from eventbot.telegram_bot.bot import handle_telegram_update, initialize_bot, shutdown_bot
from eventbot.telegram_bot.logging_config import bot_logger as logger, setup_logging

# Keep references so webhook tasks are not garbage collected mid-flight
_background_tasks: set[asyncio.Task] = set()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize the bot on startup, release clients on shutdown."""
    setup_logging(get_settings().log_level)
    logger.info("[STARTUP] Initializing Telegram bot...")
    await initialize_bot()
    logger.info("[STARTUP] Bot ready")

    yield

    logger.info("[SHUTDOWN] Shutting down Telegram bot...")
    await shutdown_bot()
    await close_events_client()
    logger.info("[SHUTDOWN] Bot stopped")


app = FastAPI(
    title="EventApp Telegram Bot",
    description="Telegram bot and Mini App bridge for EventApp",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS for Telegram Mini App
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Mini App can run from various domains
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Malformed request bodies are client errors like any other: 400."""
    return error_response(400, ValidationError("Invalid request body"), details=str(exc.errors()))


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    settings = get_settings()
    return {
        "status": "OK",
        "message": "EventApp Telegram Bot is running",
        "environment": settings.environment,
    }


# Telegram webhook endpoint
@app.post("/telegram/webhook")
async def telegram_webhook(
    request: Request,
    x_telegram_bot_api_secret_token: str = Header(None)
):
    """
    Webhook endpoint for Telegram updates.

    Telegram sends updates here when messages arrive.
    """
    settings = get_settings()

    # Verify secret token if configured
    if settings.telegram_webhook_secret:
        if x_telegram_bot_api_secret_token != settings.telegram_webhook_secret:
            raise HTTPException(status_code=403, detail="Invalid secret token")

    update_data = await request.json()

    # Handle update in background (fire-and-forget for fast 200 OK)
    task = asyncio.create_task(handle_telegram_update(update_data))
    _background_tasks.add(task)
    task.add_done_callback(_background_tasks.discard)

    return {"ok": True}


app.include_router(telegram_router)


def run() -> None:
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=get_settings().port)


if __name__ == "__main__":
    run()
