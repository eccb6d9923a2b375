"""
Tests for the account linking dialog and the shared link operation.

Run with: pytest service/tests/test_linking.py -v
"""

import asyncio
import dataclasses

import pytest

from eventbot.exceptions import (
    AccountAlreadyLinked,
    AccountNotFound,
    IdentityAlreadyLinked,
    InvalidCredentials,
    StorageError,
    ValidationError,
)
from eventbot.services.linking import BOT_TOKEN_AUDIENCE, LinkingOutcome
from eventbot.services.passwords import hash_password
from eventbot.services.storage import ApplicationUser
from eventbot.telegram_bot.sessions import LinkingState


async def _link_through_dialog(linking, identity, email="user@x.com", password="secret123"):
    await linking.begin_linking(identity)
    await linking.handle_text(identity, email)
    return await linking.handle_text(identity, password)


class TestLinkingHappyPath:
    """Dialog runs from link_account to a linked record."""

    @pytest.mark.asyncio
    async def test_full_dialog_links_account(self, linking, identity, identity_repo, sessions, token_issuer):
        started = await linking.begin_linking(identity)
        assert started.outcome == LinkingOutcome.PROMPT_EMAIL
        assert sessions.get(1001).state == LinkingState.AWAITING_EMAIL

        prompted = await linking.handle_text(identity, "user@x.com")
        assert prompted.outcome == LinkingOutcome.PROMPT_PASSWORD
        assert sessions.get(1001).state == LinkingState.AWAITING_PASSWORD
        assert sessions.get(1001).email == "user@x.com"

        linked = await linking.handle_text(identity, "secret123")
        assert linked.outcome == LinkingOutcome.LINKED
        assert linked.user.id == "42"
        assert linked.user.name == "Alice"
        assert linked.user.telegram_connected
        assert token_issuer.verify(linked.token, audience=BOT_TOKEN_AUDIENCE) == "42"

        assert identity_repo.records[1001].user_id == "42"
        assert sessions.get(1001) is None

    @pytest.mark.asyncio
    async def test_email_is_trimmed(self, linking, identity, sessions):
        await linking.begin_linking(identity)
        result = await linking.handle_text(identity, "  user@x.com \n")
        assert result.outcome == LinkingOutcome.PROMPT_PASSWORD
        assert sessions.get(1001).email == "user@x.com"

    @pytest.mark.asyncio
    async def test_begin_when_already_linked(self, linking, identity, sessions):
        await _link_through_dialog(linking, identity)

        result = await linking.begin_linking(identity)

        assert result.outcome == LinkingOutcome.ALREADY_LINKED
        assert sessions.get(1001) is None

    @pytest.mark.asyncio
    async def test_restart_discards_previous_email(self, linking, identity, sessions):
        await linking.begin_linking(identity)
        await linking.handle_text(identity, "user@x.com")

        await linking.begin_linking(identity)

        session = sessions.get(1001)
        assert session.state == LinkingState.AWAITING_EMAIL
        assert session.email is None


class TestLinkingEmailStep:

    @pytest.mark.asyncio
    @pytest.mark.parametrize("bad_email", ["not-an-email", "a@b", "two words@x.com", "@x.com"])
    async def test_invalid_email_keeps_asking(self, linking, identity, sessions, bad_email):
        await linking.begin_linking(identity)

        result = await linking.handle_text(identity, bad_email)

        assert result.outcome == LinkingOutcome.INVALID_EMAIL
        assert isinstance(result.error, ValidationError)
        assert sessions.get(1001).state == LinkingState.AWAITING_EMAIL

    @pytest.mark.asyncio
    async def test_commands_never_consumed_as_input(self, linking, identity, sessions):
        await linking.begin_linking(identity)

        result = await linking.handle_text(identity, "/start")

        assert result.outcome == LinkingOutcome.IGNORED
        assert sessions.get(1001).state == LinkingState.AWAITING_EMAIL

    @pytest.mark.asyncio
    async def test_text_without_session_is_ignored(self, linking, identity, identity_repo):
        result = await linking.handle_text(identity, "hello")
        assert result.outcome == LinkingOutcome.IGNORED
        assert identity_repo.insert_calls == 0

    @pytest.mark.asyncio
    async def test_missing_text_is_ignored(self, linking, identity):
        await linking.begin_linking(identity)
        result = await linking.handle_text(identity, None)
        assert result.outcome == LinkingOutcome.IGNORED

    @pytest.mark.asyncio
    async def test_expired_session_is_ignored(self, linking, identity, clock):
        await linking.begin_linking(identity)
        clock.advance(601)
        result = await linking.handle_text(identity, "user@x.com")
        assert result.outcome == LinkingOutcome.IGNORED


class TestLinkingPasswordStep:
    """Outcomes of the password message, the commit point."""

    @pytest.mark.asyncio
    async def test_wrong_password_resets_to_email(self, linking, identity, sessions, identity_repo):
        result = await _link_through_dialog(linking, identity, password="wrong")

        assert result.outcome == LinkingOutcome.LINK_FAILED
        assert isinstance(result.error, InvalidCredentials)
        assert result.error.code == "INVALID_CREDENTIALS"
        assert result.email == "user@x.com"

        session = sessions.get(1001)
        assert session.state == LinkingState.AWAITING_EMAIL
        assert session.email is None
        assert identity_repo.records[1001].user_id is None

    @pytest.mark.asyncio
    async def test_retry_after_wrong_password_succeeds(self, linking, identity):
        await _link_through_dialog(linking, identity, password="wrong")

        await linking.handle_text(identity, "user@x.com")
        result = await linking.handle_text(identity, "secret123")

        assert result.outcome == LinkingOutcome.LINKED

    @pytest.mark.asyncio
    async def test_unknown_email_fails_at_password_step(self, linking, identity, sessions):
        await linking.begin_linking(identity)
        prompted = await linking.handle_text(identity, "nobody@x.com")
        assert prompted.outcome == LinkingOutcome.PROMPT_PASSWORD

        result = await linking.handle_text(identity, "secret123")

        assert result.outcome == LinkingOutcome.LINK_FAILED
        assert isinstance(result.error, AccountNotFound)
        assert result.error.message == "User not found"
        assert sessions.get(1001).state == LinkingState.AWAITING_EMAIL

    @pytest.mark.asyncio
    async def test_storage_failure_keeps_password_step(self, linking, identity, sessions, identity_repo):
        identity_repo.link_error = StorageError("Database unavailable")

        result = await _link_through_dialog(linking, identity)

        assert result.outcome == LinkingOutcome.LINK_FAILED
        assert isinstance(result.error, StorageError)
        session = sessions.get(1001)
        assert session.state == LinkingState.AWAITING_PASSWORD
        assert session.email == "user@x.com"

        identity_repo.link_error = None
        retried = await linking.handle_text(identity, "secret123")
        assert retried.outcome == LinkingOutcome.LINKED

    @pytest.mark.asyncio
    async def test_password_is_not_trimmed(self, linking, identity):
        result = await _link_through_dialog(linking, identity, password=" secret123 ")
        assert result.outcome == LinkingOutcome.LINK_FAILED


class TestOneToOneLinking:
    """An EventApp account links to at most one Telegram account."""

    @pytest.mark.asyncio
    async def test_second_telegram_account_rejected(self, linking, identity, sessions, identity_repo):
        await _link_through_dialog(linking, identity)

        other = dataclasses.replace(identity, telegram_id=2002, username="bob_tg")
        result = await _link_through_dialog(linking, other)

        assert result.outcome == LinkingOutcome.LINK_FAILED
        assert isinstance(result.error, AccountAlreadyLinked)
        assert result.error.code == "ACCOUNT_ALREADY_LINKED"
        assert identity_repo.records[2002].user_id is None
        assert sessions.get(2002).state == LinkingState.AWAITING_EMAIL

    @pytest.mark.asyncio
    async def test_user_marked_connected_elsewhere_rejected(self, linking, identity, user_repo, password_hash):
        user_repo.users["bob@x.com"] = ApplicationUser(
            id="77",
            email="bob@x.com",
            password_hash=password_hash,
            telegram_id=5555,
            telegram_connected=True,
        )

        result = await _link_through_dialog(linking, identity, email="bob@x.com")

        assert isinstance(result.error, AccountAlreadyLinked)

    @pytest.mark.asyncio
    async def test_linked_identity_cannot_move_to_other_user(self, linking, identity_repo, user_repo, password_hash):
        """A linked telegram_id keeps its user; a second account is refused."""
        user_repo.users["bob@x.com"] = ApplicationUser(id="77", email="bob@x.com", password_hash=password_hash)
        await linking.link_account(1001, "user@x.com", "secret123")

        with pytest.raises(IdentityAlreadyLinked) as exc_info:
            await linking.link_account(1001, "bob@x.com", "secret123")

        assert exc_info.value.code == "IDENTITY_ALREADY_LINKED"
        assert identity_repo.records[1001].user_id == "42"

    @pytest.mark.asyncio
    async def test_dialog_refused_after_link_from_mini_app(self, linking, identity, identity_repo, user_repo, password_hash):
        """Mini App links the identity while the chat dialog is waiting for a password."""
        user_repo.users["bob@x.com"] = ApplicationUser(id="77", email="bob@x.com", password_hash=password_hash)
        await linking.begin_linking(identity)
        await linking.handle_text(identity, "bob@x.com")

        await linking.link_account(1001, "user@x.com", "secret123")
        result = await linking.handle_text(identity, "secret123")

        assert result.outcome == LinkingOutcome.LINK_FAILED
        assert isinstance(result.error, IdentityAlreadyLinked)
        assert identity_repo.records[1001].user_id == "42"

    @pytest.mark.asyncio
    async def test_repository_refuses_relink_to_other_user(self, identity_repo, app_user, password_hash):
        """The commit itself refuses to re-point a linked telegram_id."""
        await identity_repo.link(1001, app_user)
        other = ApplicationUser(id="77", email="bob@x.com", password_hash=password_hash)

        with pytest.raises(IdentityAlreadyLinked):
            await identity_repo.link(1001, other)
        assert identity_repo.records[1001].user_id == "42"

    @pytest.mark.asyncio
    async def test_relinking_same_pair_is_allowed(self, linking, identity, user_repo, password_hash):
        user_repo.users["user@x.com"] = dataclasses.replace(
            user_repo.users["user@x.com"], telegram_id=1001, telegram_connected=True
        )
        user = await linking.link_account(1001, "user@x.com", "secret123")
        assert user.id == "42"


class TestCancel:

    @pytest.mark.asyncio
    async def test_cancel_active_dialog(self, linking, identity, sessions):
        await linking.begin_linking(identity)
        assert await linking.cancel(identity)
        assert sessions.get(1001) is None

        result = await linking.handle_text(identity, "user@x.com")
        assert result.outcome == LinkingOutcome.IGNORED

    @pytest.mark.asyncio
    async def test_cancel_without_dialog(self, linking, identity):
        assert not await linking.cancel(identity)


class TestLinkAccount:

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "telegram_id,email,password",
        [(None, "user@x.com", "secret123"), (1001, "", "secret123"), (1001, "user@x.com", None)],
    )
    async def test_missing_fields(self, linking, telegram_id, email, password):
        with pytest.raises(ValidationError) as exc_info:
            await linking.link_account(telegram_id, email, password)
        assert exc_info.value.message == "Missing required fields"

    @pytest.mark.asyncio
    async def test_records_telegram_username(self, linking, identity_repo):
        user = await linking.link_account(3003, "user@x.com", "secret123", telegram_username="carol")
        assert user.telegram_username == "carol"
        assert user.telegram_id == 3003
        assert identity_repo.records[3003].user_id == "42"

    @pytest.mark.asyncio
    async def test_unknown_email(self, linking):
        with pytest.raises(AccountNotFound):
            await linking.link_account(1001, "ghost@x.com", "secret123")

    @pytest.mark.asyncio
    async def test_password_verified_before_link(self, linking, identity_repo):
        with pytest.raises(InvalidCredentials):
            await linking.link_account(1001, "user@x.com", "nope")
        assert 1001 not in identity_repo.records


class TestConcurrency:

    @pytest.mark.asyncio
    async def test_double_submit_links_once(self, linking, identity, identity_repo):
        """Two copies of the password message: one links, the other finds no session."""
        await linking.begin_linking(identity)
        await linking.handle_text(identity, "user@x.com")

        results = await asyncio.gather(
            linking.handle_text(identity, "secret123"),
            linking.handle_text(identity, "secret123"),
        )

        outcomes = sorted(r.outcome.value for r in results)
        assert outcomes == [LinkingOutcome.IGNORED.value, LinkingOutcome.LINKED.value]
        assert identity_repo.records[1001].user_id == "42"

    @pytest.mark.asyncio
    async def test_users_progress_independently(self, linking, identity, user_repo):
        user_repo.users["bob@x.com"] = ApplicationUser(
            id="77", email="bob@x.com", password_hash=hash_password("hunter2", rounds=4)
        )
        bob = dataclasses.replace(identity, telegram_id=2002, username="bob_tg")

        alice_result, bob_result = await asyncio.gather(
            _link_through_dialog(linking, identity),
            _link_through_dialog(linking, bob, email="bob@x.com", password="hunter2"),
        )

        assert alice_result.user.id == "42"
        assert bob_result.user.id == "77"
