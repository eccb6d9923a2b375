"""
Identity resolution: Telegram user -> telegram_sessions row.

Called by the dispatcher for every inbound event so the stored profile
always reflects the latest Telegram username and names.
"""

from eventbot.services.storage import LinkedIdentityRecord, LinkedIdentityRepository
from eventbot.telegram_bot.logging_config import bot_logger as logger
from eventbot.telegram_bot.models import ChatIdentity


class IdentityResolver:
    def __init__(self, repository: LinkedIdentityRepository):
        self.repository = repository

    async def resolve_or_create(self, identity: ChatIdentity) -> LinkedIdentityRecord:
        """
        Find or create the linked identity record for a Telegram user.

        - unknown telegram_id: new record with user_id = None
        - known telegram_id: profile fields overwritten, user_id untouched

        StorageError propagates to the caller; there is no retry.
        """
        existing = await self.repository.get(identity.telegram_id)

        if existing is None:
            record = await self.repository.insert(identity)
            logger.info(f"Created identity record for telegram_id={identity.telegram_id}, username={identity.username}")
            return record

        record = await self.repository.update_profile(identity)
        logger.debug(f"Refreshed profile for telegram_id={identity.telegram_id}, linked={record.is_linked}")
        return record
