"""
Profile Upsert Engine

Merge-on-write for profiles.

- No profile yet: INSERT exactly the supplied non-null fields plus id/email.
- Profile exists: UPDATE only the supplied non-null fields that differ from
  the stored row. Absent or null fields keep their stored value. Immutable
  fields (``role``) are written only while still unset; an attempt to change
  them afterwards is reported as an ``ImmutableFieldConflict`` and skipped.

Repeating a call with the same input leaves the stored state unchanged and
issues no UPDATE.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, EmailStr
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from database.models import ProfileDB
from logging_config import email_domain

from .errors import ImmutableFieldConflict, PersistenceError, ValidationError, normalize_email, require
from .events import LifecycleAction, LifecycleEventDispatcher
from .resolver import EntityResolver

logger = logging.getLogger(__name__)


IMMUTABLE_FIELDS = frozenset({"role"})


class ProfileFields(BaseModel):
    """Profile write payload. ``None`` means "not supplied"."""
    model_config = ConfigDict(extra="forbid")

    email: Optional[EmailStr] = None
    name: Optional[str] = None
    role: Optional[Literal["business", "community"]] = None
    is_local_resident: Optional[bool] = None
    resident_verification_method: Optional[str] = None
    resident_zip_code: Optional[str] = None
    resident_verified_at: Optional[datetime] = None
    email_notifications_enabled: Optional[bool] = None
    marketing_emails_enabled: Optional[bool] = None

    def supplied(self) -> Dict[str, Any]:
        values = self.model_dump(exclude_none=True)
        if "email" in values:
            values["email"] = str(values["email"]).strip().lower()
        return values


PROFILE_FIELDS = tuple(ProfileFields.model_fields)


@dataclass
class UpsertOutcome:
    profile: Dict[str, Any]
    created: bool
    source: str
    written_fields: List[str] = field(default_factory=list)
    preserved_fields: List[str] = field(default_factory=list)
    immutable_conflicts: List[ImmutableFieldConflict] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "profile": self.profile,
            "created": self.created,
            "source": self.source,
            "written_fields": self.written_fields,
            "preserved_fields": self.preserved_fields,
            "immutable_conflicts": [c.to_dict() for c in self.immutable_conflicts],
        }


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes for timezone-aware columns.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _same(stored: Any, supplied: Any) -> bool:
    if isinstance(stored, datetime) and isinstance(supplied, datetime):
        return _as_utc(stored) == _as_utc(supplied)
    return stored == supplied


def coerce_fields(fields: Union[ProfileFields, Dict[str, Any], None]) -> ProfileFields:
    if fields is None:
        return ProfileFields()
    if isinstance(fields, ProfileFields):
        return fields
    try:
        return ProfileFields.model_validate(fields)
    except PydanticValidationError as e:
        raise ValidationError(
            "Invalid profile fields",
            details={"errors": [
                {"field": ".".join(str(p) for p in err["loc"]), "message": err["msg"]}
                for err in e.errors()
            ]}
        ) from e


class ProfileUpsertEngine:
    def __init__(
        self,
        db: AsyncSession,
        resolver: Optional[EntityResolver] = None,
        events: Optional[LifecycleEventDispatcher] = None
    ):
        self.db = db
        self.resolver = resolver or EntityResolver(db)
        self.events = events

    async def upsert(
        self,
        identity_id: Optional[str],
        email: Optional[str],
        fields: Union[ProfileFields, Dict[str, Any], None] = None,
        source: str = "unknown"
    ) -> UpsertOutcome:
        """
        Create or merge the profile for ``identity_id``.

        Raises:
            ValidationError: identity id or email missing (nothing is written)
            PersistenceError: the database rejected the read or write
        """
        identity_id = require(identity_id, "identity_id")
        email = normalize_email(email)
        fields = coerce_fields(fields)

        try:
            existing = await self.resolver.get_profile(identity_id)
            if existing is None:
                try:
                    outcome = await self._insert(identity_id, email, fields, source)
                except IntegrityError:
                    # Lost the race to a concurrent first write; merge instead.
                    await self.db.rollback()
                    logger.info(f"Profile {identity_id} inserted concurrently, merging")
                    existing = await self.resolver.get_profile(identity_id, refresh=True)
                    if existing is None:
                        raise
                    outcome = await self._merge(existing, fields, source)
            else:
                outcome = await self._merge(existing, fields, source)
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(f"Profile upsert failed for {identity_id}: {e.__class__.__name__}")
            raise PersistenceError(
                "Profile upsert failed",
                details={"identity_id": identity_id}
            ) from e

        await self._emit(identity_id, email, outcome)
        return outcome

    async def _insert(self, identity_id: str, email: str, fields: ProfileFields, source: str) -> UpsertOutcome:
        values = fields.supplied()
        values.setdefault("email", email)

        profile = ProfileDB(id=identity_id, **values)
        self.db.add(profile)
        await self.db.commit()

        logger.info(
            f"Profile created for {identity_id} via {source}",
            extra={"identity_id": identity_id, "written_fields": sorted(values), "source": source}
        )
        return UpsertOutcome(
            profile=profile.to_dict(),
            created=True,
            source=source,
            written_fields=sorted(values),
            preserved_fields=[],
        )

    async def _merge(self, existing: ProfileDB, fields: ProfileFields, source: str) -> UpsertOutcome:
        supplied = fields.supplied()
        writes: Dict[str, Any] = {}
        preserved: List[str] = []
        conflicts: List[ImmutableFieldConflict] = []

        for name in PROFILE_FIELDS:
            current = getattr(existing, name)
            if name not in supplied:
                preserved.append(name)
                continue
            value = supplied[name]
            if _same(current, value):
                continue
            if name in IMMUTABLE_FIELDS and current is not None:
                conflicts.append(ImmutableFieldConflict(name, current, value))
                continue
            writes[name] = value

        for conflict in conflicts:
            logger.info(
                f"Ignoring change to immutable field '{conflict.field}' for {existing.id}",
                extra={"identity_id": existing.id, "field": conflict.field, "source": source}
            )

        if writes:
            await self.db.execute(
                update(ProfileDB)
                .where(ProfileDB.id == existing.id)
                .values(**writes, updated_at=datetime.now(timezone.utc))
            )
            await self.db.commit()
            await self.db.refresh(existing)
            logger.info(
                f"Profile updated for {existing.id} via {source}",
                extra={"identity_id": existing.id, "written_fields": sorted(writes), "source": source}
            )

        return UpsertOutcome(
            profile=existing.to_dict(),
            created=False,
            source=source,
            written_fields=sorted(writes),
            preserved_fields=preserved,
            immutable_conflicts=conflicts,
        )

    async def _emit(self, identity_id: str, email: str, outcome: UpsertOutcome):
        if self.events is None:
            return
        if not (outcome.created or outcome.written_fields or outcome.immutable_conflicts):
            return
        await self.events.emit(
            LifecycleAction.PROFILE_CREATED if outcome.created else LifecycleAction.PROFILE_UPDATED,
            identity_id,
            outcome.source,
            details={
                "email_domain": email_domain(email),
                "written_fields": outcome.written_fields,
                "immutable_conflicts": [c.field for c in outcome.immutable_conflicts],
            },
            performed_by=identity_id,
        )
