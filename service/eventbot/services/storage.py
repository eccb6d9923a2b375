"""
Persistence for linked identities and EventApp users.

Two tables in the EventApp Postgres (accessed through Supabase):
- telegram_sessions: one row per Telegram user, user_id set once linked
- users: EventApp accounts, read here and updated only by the link commit

supabase-py is synchronous; every call runs in a worker thread so a slow
database suspends the handler instead of blocking the event loop.
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Optional, Protocol, TypeVar

from postgrest.exceptions import APIError

from eventbot.exceptions import AccountAlreadyLinked, IdentityAlreadyLinked, StorageError
from eventbot.telegram_bot.logging_config import bot_logger as logger
from eventbot.telegram_bot.models import ChatIdentity

T = TypeVar("T")

IDENTITY_COLUMNS = "telegram_id, username, first_name, last_name, language_code, user_id, updated_at"
USER_COLUMNS = "id, email, password_hash, name, telegram_id, telegram_username, telegram_connected"


@dataclass
class LinkedIdentityRecord:
    """Row of telegram_sessions."""
    telegram_id: int
    user_id: Optional[str] = None
    username: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    language_code: Optional[str] = None
    updated_at: Optional[datetime] = None

    @property
    def is_linked(self) -> bool:
        return self.user_id is not None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "LinkedIdentityRecord":
        user_id = row.get("user_id")
        return cls(
            telegram_id=int(row["telegram_id"]),
            user_id=str(user_id) if user_id is not None else None,
            username=row.get("username"),
            first_name=row.get("first_name"),
            last_name=row.get("last_name"),
            language_code=row.get("language_code"),
            updated_at=_parse_timestamp(row.get("updated_at")),
        )


@dataclass
class ApplicationUser:
    """EventApp account. Owned by EventApp; never created here."""
    id: str
    email: str
    password_hash: str
    name: Optional[str] = None
    telegram_id: Optional[int] = None
    telegram_username: Optional[str] = None
    telegram_connected: bool = False

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "ApplicationUser":
        telegram_id = row.get("telegram_id")
        return cls(
            id=str(row["id"]),
            email=row["email"],
            password_hash=row.get("password_hash") or "",
            name=row.get("name"),
            telegram_id=int(telegram_id) if telegram_id is not None else None,
            telegram_username=row.get("telegram_username"),
            telegram_connected=bool(row.get("telegram_connected")),
        )

    def is_linked_elsewhere(self, telegram_id: int) -> bool:
        return (
            self.telegram_connected
            and self.telegram_id is not None
            and self.telegram_id != telegram_id
        )

    def public_dict(self) -> dict[str, Any]:
        return {"id": self.id, "name": self.name, "email": self.email}


def _parse_timestamp(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class LinkedIdentityRepository(Protocol):
    async def get(self, telegram_id: int) -> Optional[LinkedIdentityRecord]:
        ...

    async def insert(self, identity: ChatIdentity) -> LinkedIdentityRecord:
        """Create the row for a first-time user with user_id = NULL."""
        ...

    async def update_profile(self, identity: ChatIdentity) -> LinkedIdentityRecord:
        """Refresh profile fields. Must never modify user_id."""
        ...

    async def link(self, telegram_id: int, user: ApplicationUser, telegram_username: Optional[str] = None) -> None:
        """
        Commit point of linking: set user_id for telegram_id and mark the
        EventApp user as connected, as one atomic write.

        Raises AccountAlreadyLinked when the user belongs to another
        telegram_id and IdentityAlreadyLinked when telegram_id already
        points at another user.
        """
        ...


class ApplicationUserRepository(Protocol):
    async def get_by_email(self, email: str) -> Optional[ApplicationUser]:
        ...


class _SupabaseRepository:
    def __init__(self, client_factory: Callable[[], Any]):
        self._client_factory = client_factory

    async def _run(self, operation: str, fn: Callable[[Any], T]) -> T:
        try:
            return await asyncio.to_thread(fn, self._client_factory())
        except APIError as e:
            logger.error(f"Storage error during {operation}: {e.message} (code={e.code})")
            raise StorageError(
                f"Database error: {e.message}",
                details={"operation": operation, "db_code": e.code},
            ) from e
        except Exception as e:
            logger.error(f"Storage unreachable during {operation}: {e}", exc_info=True)
            raise StorageError(f"Database unavailable: {e}", details={"operation": operation}) from e


class SupabaseLinkedIdentityRepository(_SupabaseRepository):
    """telegram_sessions table via Supabase; link via a Postgres function."""

    table = "telegram_sessions"
    link_function = "link_telegram_account"

    @staticmethod
    def _profile(identity: ChatIdentity) -> dict[str, Any]:
        return {
            "username": identity.username,
            "first_name": identity.first_name,
            "last_name": identity.last_name,
            "language_code": identity.language_code,
            "updated_at": _utcnow().isoformat(),
        }

    async def get(self, telegram_id: int) -> Optional[LinkedIdentityRecord]:
        result = await self._run(
            "get identity",
            lambda db: db.table(self.table).select(IDENTITY_COLUMNS).eq("telegram_id", telegram_id).execute(),
        )
        if not result.data:
            return None
        return LinkedIdentityRecord.from_row(result.data[0])

    async def insert(self, identity: ChatIdentity) -> LinkedIdentityRecord:
        data = {"telegram_id": identity.telegram_id, **self._profile(identity)}
        # No user_id in the payload: a concurrent first contact only refreshes the profile
        result = await self._run(
            "insert identity",
            lambda db: db.table(self.table).upsert(data, on_conflict="telegram_id").execute(),
        )
        if result.data:
            return LinkedIdentityRecord.from_row(result.data[0])
        return await self._require(identity.telegram_id)

    async def update_profile(self, identity: ChatIdentity) -> LinkedIdentityRecord:
        result = await self._run(
            "update identity",
            lambda db: db.table(self.table).update(self._profile(identity)).eq(
                "telegram_id", identity.telegram_id
            ).execute(),
        )
        if result.data:
            return LinkedIdentityRecord.from_row(result.data[0])
        return await self._require(identity.telegram_id)

    async def _require(self, telegram_id: int) -> LinkedIdentityRecord:
        record = await self.get(telegram_id)
        if record is None:
            raise StorageError(
                "Identity record was not stored",
                details={"telegram_id": telegram_id},
            )
        return record

    async def link(self, telegram_id: int, user: ApplicationUser, telegram_username: Optional[str] = None) -> None:
        params = {
            "p_telegram_id": telegram_id,
            "p_user_id": user.id,
            "p_telegram_username": telegram_username,
        }
        try:
            await self._run(
                "link account",
                lambda db: db.rpc(self.link_function, params).execute(),
            )
        except StorageError as e:
            if "IDENTITY_ALREADY_LINKED" in e.message:
                raise IdentityAlreadyLinked(telegram_id) from e
            if "ACCOUNT_ALREADY_LINKED" in e.message:
                raise AccountAlreadyLinked(user.id) from e
            raise


class SupabaseApplicationUserRepository(_SupabaseRepository):
    """Read-only view of the EventApp users table."""

    table = "users"

    async def get_by_email(self, email: str) -> Optional[ApplicationUser]:
        result = await self._run(
            "get user",
            lambda db: db.table(self.table).select(USER_COLUMNS).eq("email", email).limit(1).execute(),
        )
        if not result.data:
            return None
        return ApplicationUser.from_row(result.data[0])


_identity_repo: Optional[SupabaseLinkedIdentityRepository] = None
_user_repo: Optional[SupabaseApplicationUserRepository] = None


def get_identity_repository() -> SupabaseLinkedIdentityRepository:
    global _identity_repo
    if _identity_repo is None:
        from eventbot.supabase_client import get_supabase_admin
        _identity_repo = SupabaseLinkedIdentityRepository(get_supabase_admin)
    return _identity_repo


def get_user_repository() -> SupabaseApplicationUserRepository:
    global _user_repo
    if _user_repo is None:
        from eventbot.supabase_client import get_supabase_admin
        _user_repo = SupabaseApplicationUserRepository(get_supabase_admin)
    return _user_repo
