"""
Entity Resolver

Decides which lifecycle code path applies to an identity or email:

- ``full``     a profile exists (by identity id, then by email), or an auth
               record or any identity-keyed row (dependents, owned
               entities) survives without a profile
- ``partial``  no profile, but email-keyed records or owned entities match
               the email
- ``none``     nothing references the identity or email

Resolution is a pure read.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from sqlalchemy import MetaData, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from database.connection import Base
from database.models import ProfileDB

from .auth_records import AuthRecordGateway
from .errors import ValidationError
from .registry import DELETION_REGISTRY, DeletionRegistry, KeyKind

logger = logging.getLogger(__name__)


class ResolutionKind(str, Enum):
    FULL = "full"
    PARTIAL = "partial"
    NONE = "none"


def email_matches(column, email: str):
    """Case-insensitive comparison on trimmed values."""
    return func.lower(func.trim(column)) == email.strip().lower()


def looks_like_email(value: str) -> bool:
    return "@" in value


@dataclass(frozen=True)
class Resolution:
    kind: ResolutionKind
    email: Optional[str] = None
    identity_id: Optional[str] = None
    has_profile: bool = False
    has_auth_record: bool = False

    @property
    def found(self) -> bool:
        return self.kind != ResolutionKind.NONE

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "identity_id": self.identity_id,
            "email": self.email,
            "has_profile": self.has_profile,
            "has_auth_record": self.has_auth_record,
        }


class EntityResolver:
    def __init__(
        self,
        db: AsyncSession,
        registry: DeletionRegistry = DELETION_REGISTRY,
        metadata: MetaData = Base.metadata
    ):
        self.db = db
        self.registry = registry
        self.metadata = metadata
        self.auth_records = AuthRecordGateway(db)

    async def get_profile(self, identity_id: str, refresh: bool = False) -> Optional[ProfileDB]:
        return await self.db.get(ProfileDB, identity_id, populate_existing=refresh)

    async def profile_exists(self, identity_id: str) -> bool:
        return await self.get_profile(identity_id) is not None

    async def _profile_by_email(self, email: str) -> Optional[ProfileDB]:
        result = await self.db.execute(
            select(ProfileDB).where(email_matches(ProfileDB.email, email)).limit(1)
        )
        return result.scalars().first()

    async def has_email_references(self, email: str) -> bool:
        """True if any email-keyed record or owned entity matches ``email``."""
        for entry in self.registry.email_keyed_entries():
            table = self.metadata.tables[entry.table]
            if await self._any(table, table.c[entry.column], email):
                return True
        for entry in self.registry.owned_entity_entries():
            table = self.metadata.tables[entry.table]
            if await self._any(table, table.c[entry.email_column], email):
                return True
        return False

    async def has_identity_references(self, identity_id: str) -> bool:
        """True if any identity-keyed row, owned entities included, still points at ``identity_id``."""
        for entry in self.registry:
            if entry.key != KeyKind.BY_ID:
                continue
            table = self.metadata.tables[entry.table]
            result = await self.db.execute(
                select(func.count()).select_from(table).where(table.c[entry.column] == identity_id)
            )
            if (result.scalar() or 0) > 0:
                return True
        return False

    async def _any(self, table, column, email: str) -> bool:
        result = await self.db.execute(
            select(func.count()).select_from(table).where(email_matches(column, email))
        )
        return (result.scalar() or 0) > 0

    async def resolve(self, email: Optional[str] = None, identity_id: Optional[str] = None) -> Resolution:
        """
        Classify an identity.

        Raises:
            ValidationError: if neither email nor identity id is given
        """
        email = email.strip().lower() if email and email.strip() else None
        identity_id = identity_id.strip() if identity_id and identity_id.strip() else None
        if not email and not identity_id:
            raise ValidationError("identity id or email is required", details={"parameter": "identity_or_email"})

        profile = await self.db.get(ProfileDB, identity_id) if identity_id else None
        if profile is None and email:
            profile = await self._profile_by_email(email)

        if profile is not None:
            auth = await self.auth_records.get(profile.id)
            return Resolution(
                kind=ResolutionKind.FULL,
                email=(profile.email or email or "").strip().lower() or None,
                identity_id=profile.id,
                has_profile=True,
                has_auth_record=auth is not None,
            )

        # Auth record without a profile: a previous deletion stopped before
        # removing the auth record.
        auth = await self.auth_records.get(identity_id) if identity_id else None
        if auth is None and email:
            auth = await self.auth_records.find_by_email(email)
        if auth is not None:
            return Resolution(
                kind=ResolutionKind.FULL,
                email=(auth.email or email or "").strip().lower() or None,
                identity_id=auth.id,
                has_auth_record=True,
            )

        # Profile and auth record are gone but identity-keyed rows survive: an
        # earlier deletion failed part way. The full path finishes it.
        if identity_id and await self.has_identity_references(identity_id):
            return Resolution(kind=ResolutionKind.FULL, email=email, identity_id=identity_id)

        if email and await self.has_email_references(email):
            return Resolution(kind=ResolutionKind.PARTIAL, email=email, identity_id=identity_id)

        return Resolution(kind=ResolutionKind.NONE, email=email, identity_id=identity_id)

    async def resolve_reference(self, identity_or_email: Optional[str]) -> Resolution:
        """Resolve a value that is either an identity id or an email."""
        if identity_or_email is None or not identity_or_email.strip():
            raise ValidationError("identity id or email is required", details={"parameter": "identity_or_email"})
        value = identity_or_email.strip()
        if looks_like_email(value):
            return await self.resolve(email=value)
        return await self.resolve(identity_id=value)
