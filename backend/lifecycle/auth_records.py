"""
Gateway to the backing auth record of an identity.

The identity provider's user table is mirrored in ``auth_identities``. Full
account deletion removes the row last; a row that is already gone is not an
error so a deletion can be re-run after a partial failure.
"""

import logging
from typing import Optional

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from database.models import AuthIdentityDB

logger = logging.getLogger(__name__)


class AuthRecordGateway:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get(self, identity_id: str) -> Optional[AuthIdentityDB]:
        return await self.db.get(AuthIdentityDB, identity_id)

    async def exists(self, identity_id: str) -> bool:
        return await self.get(identity_id) is not None

    async def find_by_email(self, email: str) -> Optional[AuthIdentityDB]:
        result = await self.db.execute(
            select(AuthIdentityDB)
            .where(func.lower(func.trim(AuthIdentityDB.email)) == email.strip().lower())
            .limit(1)
        )
        return result.scalars().first()

    async def delete_identity(self, identity_id: str) -> bool:
        """
        Remove the auth record. Caller commits.

        Returns:
            True if a row was removed, False if it was already gone
        """
        result = await self.db.execute(
            delete(AuthIdentityDB).where(AuthIdentityDB.id == identity_id)
        )
        removed = (result.rowcount or 0) > 0
        if not removed:
            logger.info(f"Auth record {identity_id} already removed")
        return removed
