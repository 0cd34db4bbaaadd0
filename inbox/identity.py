"""
Identity resolution.

Maps (platform, platform_user_id) to exactly one SocialIdentity, creating
the identity and its Customer on first contact. Creation runs in its own
transaction so a concurrent insert of the same pair surfaces as an
IntegrityError, after which the winner's row is read back.
"""

import logging
from typing import Awaitable, Callable, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from api.channels.base import UserProfile
from database.models import SocialIdentity
from database.repositories import CustomerRepository, IdentityRepository

from .errors import DataStoreError

logger = logging.getLogger(__name__)

DEFAULT_DISPLAY_NAMES = {
    "line": "LINE User",
    "facebook": "Facebook User",
}

ProfileLoader = Callable[[], Awaitable[Optional[UserProfile]]]


class IdentityResolver:
    """Find-or-create for platform identities."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def find(self, platform: str, platform_user_id: str) -> Optional[SocialIdentity]:
        async with self.session_factory() as session:
            return await IdentityRepository(session).get(platform, platform_user_id)

    async def resolve(
        self,
        platform: str,
        platform_user_id: str,
        profile_hint: Optional[UserProfile] = None,
        profile_loader: Optional[ProfileLoader] = None,
    ) -> SocialIdentity:
        """
        Return the identity for a platform user, creating it if needed.

        Args:
            platform: Platform name (line, facebook)
            platform_user_id: Sender id as issued by the platform
            profile_hint: Profile details carried in the webhook, if any
            profile_loader: Called on first contact to fetch a profile

        Returns:
            The single SocialIdentity for this pair

        Raises:
            DataStoreError: If the store cannot be read or written
        """
        try:
            identity = await self.find(platform, platform_user_id)
            if identity:
                return identity

            profile = profile_hint
            if profile is None and profile_loader is not None:
                profile = await profile_loader()

            display_name = (profile.display_name if profile else None) or DEFAULT_DISPLAY_NAMES.get(
                platform, "Unknown User"
            )
            avatar_url = profile.picture_url if profile else None

            try:
                async with self.session_factory() as session:
                    async with session.begin():
                        customer = await CustomerRepository(session).create(full_name=display_name)
                        identity = await IdentityRepository(session).create(
                            customer_id=customer.id,
                            platform=platform,
                            platform_user_id=platform_user_id,
                            profile_name=display_name,
                            avatar_url=avatar_url,
                        )
                logger.info(f"New {platform} identity {identity.id} for customer {customer.id}")
                return identity
            except IntegrityError:
                logger.info(f"{platform} identity {platform_user_id} created concurrently, reusing it")

            identity = await self.find(platform, platform_user_id)
            if identity is None:
                raise DataStoreError(f"Identity {platform}:{platform_user_id} vanished after conflict")
            return identity

        except SQLAlchemyError as e:
            logger.error(f"Identity resolution failed for {platform}:{platform_user_id}: {e}")
            raise DataStoreError(str(e)) from e
