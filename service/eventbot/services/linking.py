"""
Account linking: Telegram identity -> existing EventApp account.

Dialog states (per telegram_id, kept in SessionStore):

    idle --begin_linking--> awaiting_email --valid email--> awaiting_password
                                  ^                                 |
                                  +---- not found / bad password ---+
                                                                    |
                                              linked (session deleted)

Failure policy is a full reset: after a rejected password the user
enters both email and password again. A storage failure at the commit
point is different: the session stays in awaiting_password so the user
can simply resend the password.
"""

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from eventbot.exceptions import (
    AccountAlreadyLinked,
    AccountNotFound,
    BotError,
    IdentityAlreadyLinked,
    InvalidCredentials,
    LinkingError,
    StorageError,
    ValidationError,
)
from eventbot.services.identity import IdentityResolver
from eventbot.services.passwords import verify_password
from eventbot.services.storage import (
    ApplicationUser,
    ApplicationUserRepository,
    LinkedIdentityRecord,
    LinkedIdentityRepository,
)
from eventbot.services.tokens import BearerToken, TokenIssuer
from eventbot.services.validation import is_valid_email, normalize_email
from eventbot.telegram_bot.logging_config import bot_logger as logger
from eventbot.telegram_bot.models import COMMAND_MARKER, ChatIdentity
from eventbot.telegram_bot.sessions import ConversationSession, LinkingState, SessionStore

# Audience of tokens minted for bot-initiated API calls
BOT_TOKEN_AUDIENCE = "telegram"


class LinkingOutcome(str, Enum):
    IGNORED = "ignored"
    ALREADY_LINKED = "already_linked"
    PROMPT_EMAIL = "prompt_email"
    INVALID_EMAIL = "invalid_email"
    PROMPT_PASSWORD = "prompt_password"
    LINKED = "linked"
    LINK_FAILED = "link_failed"


@dataclass
class LinkingResult:
    outcome: LinkingOutcome
    user: Optional[ApplicationUser] = None
    token: Optional[BearerToken] = None
    error: Optional[BotError] = None
    email: Optional[str] = None


class LinkingService:
    def __init__(
        self,
        sessions: SessionStore,
        resolver: IdentityResolver,
        identities: LinkedIdentityRepository,
        users: ApplicationUserRepository,
        token_issuer: TokenIssuer,
    ):
        self.sessions = sessions
        self.resolver = resolver
        self.identities = identities
        self.users = users
        self.token_issuer = token_issuer

    async def begin_linking(
        self,
        identity: ChatIdentity,
        record: Optional[LinkedIdentityRecord] = None,
    ) -> LinkingResult:
        """
        Start the dialog. An already linked identity short-circuits and its
        session is left exactly as it was.

        record: the identity record already resolved for this event, if any.
        """
        telegram_id = identity.telegram_id
        async with self.sessions.lock(telegram_id):
            if record is None:
                record = await self.resolver.resolve_or_create(identity)
            if record.is_linked:
                logger.info(f"Link requested by already linked telegram_id={telegram_id}")
                return LinkingResult(LinkingOutcome.ALREADY_LINKED)

            self.sessions.put(telegram_id, ConversationSession(state=LinkingState.AWAITING_EMAIL))

        logger.info(f"Linking started for telegram_id={telegram_id}")
        return LinkingResult(LinkingOutcome.PROMPT_EMAIL)

    async def handle_text(self, identity: ChatIdentity, text: Optional[str]) -> LinkingResult:
        """Advance the dialog with one free-text message."""
        if text is None or text.startswith(COMMAND_MARKER):
            return LinkingResult(LinkingOutcome.IGNORED)

        telegram_id = identity.telegram_id
        async with self.sessions.lock(telegram_id):
            session = self.sessions.get(telegram_id)
            if session is None or session.state == LinkingState.IDLE:
                return LinkingResult(LinkingOutcome.IGNORED)

            if session.state == LinkingState.AWAITING_EMAIL:
                return self._accept_email(telegram_id, text)

            return await self._accept_password(identity, session, text)

    def _accept_email(self, telegram_id: int, text: str) -> LinkingResult:
        email = normalize_email(text)
        if not is_valid_email(email):
            self.sessions.put(telegram_id, ConversationSession(state=LinkingState.AWAITING_EMAIL))
            return LinkingResult(
                LinkingOutcome.INVALID_EMAIL,
                error=ValidationError("Please enter a valid email address"),
            )

        self.sessions.put(
            telegram_id,
            ConversationSession(state=LinkingState.AWAITING_PASSWORD, email=email),
        )
        return LinkingResult(LinkingOutcome.PROMPT_PASSWORD, email=email)

    async def _accept_password(
        self,
        identity: ChatIdentity,
        session: ConversationSession,
        password: str,
    ) -> LinkingResult:
        telegram_id = identity.telegram_id
        email = session.email

        try:
            user = await self._link_account(
                telegram_id, email, password, telegram_username=identity.username
            )
        except LinkingError as e:
            # Full reset: both fields must be entered again
            self.sessions.put(telegram_id, ConversationSession(state=LinkingState.AWAITING_EMAIL))
            return LinkingResult(LinkingOutcome.LINK_FAILED, error=e, email=email)
        except StorageError as e:
            # Nothing committed; keep the email so only the password is resent
            self.sessions.put(telegram_id, session)
            return LinkingResult(LinkingOutcome.LINK_FAILED, error=e, email=email)

        self.sessions.delete(telegram_id)
        token = self.token_issuer.issue(user.id, BOT_TOKEN_AUDIENCE)
        return LinkingResult(LinkingOutcome.LINKED, user=user, token=token, email=email)

    async def cancel(self, identity: ChatIdentity) -> bool:
        """Drop any dialog in progress. Returns True if there was one."""
        telegram_id = identity.telegram_id
        async with self.sessions.lock(telegram_id):
            active = self.sessions.get(telegram_id) is not None
            self.sessions.delete(telegram_id)
        if active:
            logger.info(f"Linking cancelled by telegram_id={telegram_id}")
        return active

    async def link_account(
        self,
        telegram_id: int,
        email: Optional[str],
        password: Optional[str],
        telegram_username: Optional[str] = None,
    ) -> ApplicationUser:
        """
        Verify EventApp credentials and link telegram_id to that account.

        Entry point for POST /api/telegram/link; serialized with the chat
        dialog of the same telegram_id. Raises ValidationError,
        AccountNotFound, InvalidCredentials, AccountAlreadyLinked,
        IdentityAlreadyLinked or StorageError.
        """
        async with self.sessions.lock(telegram_id):
            return await self._link_account(telegram_id, email, password, telegram_username)

    async def _link_account(
        self,
        telegram_id: int,
        email: Optional[str],
        password: Optional[str],
        telegram_username: Optional[str] = None,
    ) -> ApplicationUser:
        email = normalize_email(email or "")
        if not telegram_id or not email or not password:
            raise ValidationError("Missing required fields")

        user = await self.users.get_by_email(email)
        if user is None:
            logger.info(f"Link failed for telegram_id={telegram_id}: no user with email={email}")
            raise AccountNotFound(email)

        # bcrypt blocks for tens of milliseconds
        valid = await asyncio.to_thread(verify_password, password, user.password_hash)
        if not valid:
            logger.info(f"Link failed for telegram_id={telegram_id}: invalid password for user_id={user.id}")
            raise InvalidCredentials()

        if user.is_linked_elsewhere(telegram_id):
            logger.info(f"Link failed for telegram_id={telegram_id}: user_id={user.id} linked to another account")
            raise AccountAlreadyLinked(user.id)

        # user_id is set once; only an explicit unlink may change it
        record = await self.identities.get(telegram_id)
        if record is not None and record.is_linked and record.user_id != user.id:
            logger.info(f"Link failed for telegram_id={telegram_id}: already linked to user_id={record.user_id}")
            raise IdentityAlreadyLinked(telegram_id)

        # Commit point
        await self.identities.link(telegram_id, user, telegram_username)

        user.telegram_id = telegram_id
        user.telegram_connected = True
        if telegram_username:
            user.telegram_username = telegram_username
        logger.info(f"Linked telegram_id={telegram_id} to user_id={user.id}")
        return user


_linking_service: Optional[LinkingService] = None


def get_linking_service() -> LinkingService:
    """Get or create the linking service wired to Supabase storage."""
    global _linking_service
    if _linking_service is None:
        from eventbot.services.storage import get_identity_repository, get_user_repository
        from eventbot.services.tokens import get_token_issuer
        from eventbot.telegram_bot.sessions import get_session_store

        identities = get_identity_repository()
        _linking_service = LinkingService(
            sessions=get_session_store(),
            resolver=IdentityResolver(identities),
            identities=identities,
            users=get_user_repository(),
            token_issuer=get_token_issuer(),
        )
    return _linking_service
