"""
Shared test fixtures: in-memory repositories, a recording chat transport
and a fully wired LinkingService.
"""

import os

# Settings are read from the environment; set them before eventbot is imported
os.environ.setdefault("TELEGRAM_BOT_TOKEN", "123456:TEST-TOKEN")
os.environ.setdefault("SUPABASE_URL", "https://example.supabase.co")
os.environ.setdefault("SUPABASE_SERVICE_ROLE_KEY", "test-service-role-key")
os.environ.setdefault("JWT_SECRET", "test-jwt-secret")
os.environ.setdefault("EVENTAPP_API_URL", "https://api.eventapp.test")
os.environ.setdefault("MINI_APP_URL", "https://mini.eventapp.test")

import dataclasses
from typing import Optional

import pytest

from eventbot.exceptions import AccountAlreadyLinked, IdentityAlreadyLinked
from eventbot.services.identity import IdentityResolver
from eventbot.services.linking import LinkingService
from eventbot.services.passwords import hash_password
from eventbot.services.storage import ApplicationUser, LinkedIdentityRecord
from eventbot.services.tokens import TokenIssuer
from eventbot.telegram_bot.models import ChatIdentity
from eventbot.telegram_bot.sessions import SessionStore

TEST_SECRET = "test-jwt-secret"
TEST_PASSWORD = "secret123"
TEST_EMAIL = "user@x.com"


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class InMemoryIdentityRepository:
    """telegram_sessions stand-in. Returns copies, like a real database."""

    def __init__(self):
        self.records: dict[int, LinkedIdentityRecord] = {}
        self.link_error: Optional[Exception] = None
        self.insert_calls = 0
        self.update_calls = 0

    async def get(self, telegram_id: int) -> Optional[LinkedIdentityRecord]:
        record = self.records.get(telegram_id)
        return dataclasses.replace(record) if record else None

    async def insert(self, identity: ChatIdentity) -> LinkedIdentityRecord:
        self.insert_calls += 1
        self.records[identity.telegram_id] = LinkedIdentityRecord(
            telegram_id=identity.telegram_id,
            username=identity.username,
            first_name=identity.first_name,
            last_name=identity.last_name,
            language_code=identity.language_code,
        )
        return await self.get(identity.telegram_id)

    async def update_profile(self, identity: ChatIdentity) -> LinkedIdentityRecord:
        self.update_calls += 1
        record = self.records[identity.telegram_id]
        record.username = identity.username
        record.first_name = identity.first_name
        record.last_name = identity.last_name
        record.language_code = identity.language_code
        return await self.get(identity.telegram_id)

    async def link(self, telegram_id: int, user: ApplicationUser, telegram_username: Optional[str] = None) -> None:
        if self.link_error is not None:
            raise self.link_error
        current = self.records.get(telegram_id)
        if current is not None and current.user_id is not None and current.user_id != user.id:
            raise IdentityAlreadyLinked(telegram_id)
        for other in self.records.values():
            if other.user_id == user.id and other.telegram_id != telegram_id:
                raise AccountAlreadyLinked(user.id)
        record = self.records.setdefault(telegram_id, LinkedIdentityRecord(telegram_id=telegram_id))
        record.user_id = user.id


class InMemoryUserRepository:
    def __init__(self, users: Optional[list[ApplicationUser]] = None):
        self.users = {u.email: u for u in users or []}

    async def get_by_email(self, email: str) -> Optional[ApplicationUser]:
        user = self.users.get(email)
        return dataclasses.replace(user) if user else None


class RecordingTransport:
    """ChatTransport that keeps everything it was asked to send."""

    def __init__(self):
        self.messages: list[tuple[int, str, Optional[list]]] = []
        self.acks: list[str] = []

    async def send_message(self, chat_id: int, text: str, keyboard: Optional[list] = None) -> None:
        self.messages.append((chat_id, text, keyboard))

    async def acknowledge_callback(self, event_id: str, text: Optional[str] = None) -> None:
        self.acks.append(event_id)

    @property
    def texts(self) -> list[str]:
        return [text for _, text, _ in self.messages]


@pytest.fixture(scope="session")
def password_hash() -> str:
    # Minimum bcrypt cost keeps the suite fast
    return hash_password(TEST_PASSWORD, rounds=4)


@pytest.fixture
def app_user(password_hash) -> ApplicationUser:
    return ApplicationUser(id="42", email=TEST_EMAIL, password_hash=password_hash, name="Alice")


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sessions(clock) -> SessionStore:
    return SessionStore(idle_timeout_seconds=600, max_sessions=100, clock=clock)


@pytest.fixture
def identity_repo() -> InMemoryIdentityRepository:
    return InMemoryIdentityRepository()


@pytest.fixture
def user_repo(app_user) -> InMemoryUserRepository:
    return InMemoryUserRepository([app_user])


@pytest.fixture
def token_issuer() -> TokenIssuer:
    return TokenIssuer(TEST_SECRET)


@pytest.fixture
def linking(sessions, identity_repo, user_repo, token_issuer) -> LinkingService:
    return LinkingService(
        sessions=sessions,
        resolver=IdentityResolver(identity_repo),
        identities=identity_repo,
        users=user_repo,
        token_issuer=token_issuer,
    )


@pytest.fixture
def identity() -> ChatIdentity:
    return ChatIdentity(
        telegram_id=1001,
        username="alice_tg",
        first_name="Alice",
        last_name="Smith",
        language_code="en",
    )


@pytest.fixture
def transport() -> RecordingTransport:
    return RecordingTransport()
