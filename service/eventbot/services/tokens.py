"""
Bearer tokens for the EventApp API.

HS256 JWTs signed with the secret EventApp itself uses, so the API
accepts them as its own. There is no revocation: a token dies when it
expires.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from jose import jwt, JWTError

from eventbot.telegram_bot.logging_config import bot_logger as logger

DEFAULT_EXPIRY = timedelta(days=7)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class BearerToken:
    token: str
    subject: str
    audience: str
    expires_at: datetime

    def __str__(self) -> str:
        return self.token

    @property
    def authorization_header(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.token}"}


class TokenIssuer:
    """Mint and check short-lived tokens scoped to one EventApp user."""

    def __init__(
        self,
        secret: str,
        expiry: timedelta = DEFAULT_EXPIRY,
        algorithm: str = "HS256",
        clock: Callable[[], datetime] = _utcnow,
    ):
        if not secret:
            raise ValueError("token secret must not be empty")
        self._secret = secret
        self._expiry = expiry
        self._algorithm = algorithm
        self._clock = clock

    def issue(self, subject, audience: str) -> BearerToken:
        """
        Sign {subject, audience} with a fixed expiry window.

        userId/email mirror sub/aud for the EventApp API, which reads
        those claim names.
        """
        subject = str(subject)
        issued_at = self._clock().replace(microsecond=0)
        expires_at = issued_at + self._expiry
        claims = {
            "sub": subject,
            "aud": audience,
            "iat": issued_at,
            "exp": expires_at,
            "userId": subject,
            "email": audience,
        }
        token = jwt.encode(claims, self._secret, algorithm=self._algorithm)
        return BearerToken(token=token, subject=subject, audience=audience, expires_at=expires_at)

    def verify(self, token: str | BearerToken, audience: Optional[str] = None) -> Optional[str]:
        """
        Return the token's subject, or None if it is expired, tampered or
        otherwise invalid. Never raises for a bad token.
        """
        if isinstance(token, BearerToken):
            token = token.token
        if not token or not isinstance(token, str):
            return None

        try:
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=[self._algorithm],
                audience=audience,
                options={"verify_aud": audience is not None},
            )
        except JWTError as e:
            logger.debug(f"Token rejected: {e}")
            return None

        subject = payload.get("sub")
        if not isinstance(subject, str) or not subject:
            return None
        return subject


_token_issuer: Optional[TokenIssuer] = None


def get_token_issuer() -> TokenIssuer:
    """Get or create token issuer singleton."""
    global _token_issuer
    if _token_issuer is None:
        from eventbot.config import get_settings
        settings = get_settings()
        _token_issuer = TokenIssuer(
            settings.jwt_secret,
            expiry=timedelta(days=settings.token_expiry_days),
        )
    return _token_issuer
