import hashlib
import hmac
import json
from datetime import datetime, timezone
from urllib.parse import parse_qsl

from typing import Any, Optional

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from eventbot.config import Settings, get_settings
from eventbot.exceptions import AuthError, BotError, StorageError, ValidationError
from eventbot.services.linking import BOT_TOKEN_AUDIENCE, LinkingService, get_linking_service
from eventbot.telegram_bot.logging_config import bot_logger as logger
from eventbot.telegram_bot.models import ChatIdentity

router = APIRouter(prefix="/api/telegram", tags=["telegram"])


class LinkRequest(BaseModel):
    telegramId: Optional[int] = None
    email: Optional[str] = None
    password: Optional[str] = None


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def error_response(status_code: int, error: BotError, **extra: Any) -> JSONResponse:
    """Error body shared by all Mini App endpoints: {error, code, timestamp}."""
    return JSONResponse(
        status_code=status_code,
        content={
            "error": error.message,
            "code": error.code,
            **extra,
            "timestamp": _timestamp(),
        },
    )


def validate_telegram_init_data(init_data: str, bot_token: str, verify_signature: bool = True) -> dict:
    """
    Validate Telegram Mini App initData using HMAC-SHA-256.
    Returns parsed user data if valid, raises AuthError if not.
    """
    # Parse init_data as URL query string
    try:
        parsed = dict(parse_qsl(init_data, keep_blank_values=True, strict_parsing=True))
    except ValueError:
        raise AuthError("Malformed initData")

    if verify_signature:
        if "hash" not in parsed:
            raise AuthError("Missing hash in initData")

        received_hash = parsed.pop("hash")

        # Sort and create data-check-string
        data_check_string = "\n".join(
            f"{k}={v}" for k, v in sorted(parsed.items())
        )

        # Create secret key: HMAC-SHA256(bot_token, "WebAppData")
        secret_key = hmac.new(
            b"WebAppData",
            bot_token.encode(),
            hashlib.sha256
        ).digest()

        calculated_hash = hmac.new(
            secret_key,
            data_check_string.encode(),
            hashlib.sha256
        ).hexdigest()

        if not hmac.compare_digest(calculated_hash, received_hash):
            raise AuthError("Invalid initData signature")

    if "user" not in parsed:
        raise AuthError("Missing user in initData")

    try:
        user = json.loads(parsed["user"])
    except json.JSONDecodeError:
        raise AuthError("Invalid user JSON")

    if not isinstance(user, dict) or not user.get("id"):
        raise AuthError("Invalid user data")

    return user


@router.get("/auth")
async def auth_telegram(
    initData: Optional[str] = None,
    settings: Settings = Depends(get_settings),
    linking: LinkingService = Depends(get_linking_service),
):
    """
    Authenticate a Mini App user by Telegram initData.

    Linked users get an EventApp token; unlinked users get their
    telegramId so the Mini App can call /link.
    """
    if not initData:
        return error_response(400, AuthError("Missing initData"))

    try:
        telegram_user = validate_telegram_init_data(
            initData,
            settings.telegram_bot_token,
            verify_signature=settings.verify_init_data,
        )
        identity = ChatIdentity.from_telegram(telegram_user)
    except AuthError as e:
        logger.warning(f"Rejected Mini App auth: {e.message}")
        return error_response(400, e)
    except (TypeError, ValueError):
        return error_response(400, AuthError("Invalid user data"))

    try:
        record = await linking.resolver.resolve_or_create(identity)
    except StorageError as e:
        logger.error(f"Error in telegram auth: {e}", exc_info=True)
        return error_response(500, e, details=e.message)

    if record.is_linked:
        token = linking.token_issuer.issue(record.user_id, BOT_TOKEN_AUDIENCE)
        return {"token": token.token, "linked": True}

    return {"linked": False, "telegramId": identity.telegram_id}


@router.post("/link")
async def link_telegram(
    request: LinkRequest,
    linking: LinkingService = Depends(get_linking_service),
):
    """
    Link a Telegram account to an EventApp account from the Mini App.

    Every failure (missing fields, unknown email, wrong password, account
    already linked, database down) is a 400 with {error, code, timestamp}.
    """
    if not request.telegramId or not request.email or not request.password:
        return error_response(400, ValidationError("Missing required fields"))

    try:
        user = await linking.link_account(request.telegramId, request.email, request.password)
    except BotError as e:
        logger.error(f"Error linking account for telegram_id={request.telegramId}: {e.message} ({e.code})")
        return error_response(400, e)

    token = linking.token_issuer.issue(user.id, user.email)
    return {"token": token.token, "user": user.public_dict()}
