"""
Account Lifecycle Service

External interface of the lifecycle subsystem. Wires the resolver, upsert
engine, deletion orchestrator and reconciliation service to one session and
one event dispatcher, and converts ``LifecycleError`` into failed ``Result``
values. Anything else (programming errors) propagates.
"""

import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from sqlalchemy import MetaData
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from database.connection import Base

from .deletion import AccountDeletionOrchestrator, DeletionReport
from .errors import LifecycleError, PersistenceError, ValidationError
from .events import LifecycleEventDispatcher
from .profile_upsert import ProfileFields, ProfileUpsertEngine, UpsertOutcome
from .reconciliation import OwnershipReconciliationService
from .registry import DELETION_REGISTRY, DeletionRegistry
from .resolver import EntityResolver, Resolution
from .result import Result

logger = logging.getLogger(__name__)


def _identity_parts(identity: Any) -> Tuple[Optional[str], Optional[str]]:
    """Accept any object with ``id`` and ``email`` (or a dict with those keys)."""
    if identity is None:
        raise ValidationError("identity is required", details={"parameter": "identity"})
    if isinstance(identity, dict):
        return identity.get("id"), identity.get("email")
    return getattr(identity, "id", None), getattr(identity, "email", None)


class AccountLifecycleService:
    def __init__(
        self,
        db: AsyncSession,
        events: Optional[LifecycleEventDispatcher] = None,
        registry: DeletionRegistry = DELETION_REGISTRY,
        metadata: MetaData = Base.metadata,
        archive_enabled: Optional[bool] = None
    ):
        self.db = db
        self.events = events or LifecycleEventDispatcher(db)
        self.resolver = EntityResolver(db, registry, metadata)
        self.profiles = ProfileUpsertEngine(db, self.resolver, self.events)
        self.deletion = AccountDeletionOrchestrator(
            db,
            registry=registry,
            metadata=metadata,
            resolver=self.resolver,
            events=self.events,
            archive_enabled=archive_enabled,
        )
        self.reconciliation = OwnershipReconciliationService(db, registry, metadata, self.events)

    async def upsert(
        self,
        identity: Any,
        fields: Union[ProfileFields, Dict[str, Any], None] = None,
        source: str = "unknown"
    ) -> Result[UpsertOutcome]:
        try:
            identity_id, email = _identity_parts(identity)
            outcome = await self.profiles.upsert(identity_id, email, fields, source)
        except LifecycleError as e:
            logger.warning(f"Profile upsert rejected: {e.kind}", extra={"error_kind": e.kind, "source": source})
            return Result.failure(e)
        return Result.success(outcome)

    async def delete_account(
        self,
        identity_or_email: Optional[str],
        hard_delete_owned_entities: bool = False,
        owned_entity_ids: Optional[Sequence[str]] = None,
        performed_by: str = "self",
        source: str = "self_service"
    ) -> Result[DeletionReport]:
        try:
            report = await self.deletion.delete_account(
                identity_or_email,
                hard_delete_owned_entities=hard_delete_owned_entities,
                owned_entity_ids=owned_entity_ids,
                performed_by=performed_by,
                source=source,
            )
        except LifecycleError as e:
            logger.warning(f"Account deletion rejected: {e.kind}", extra={"error_kind": e.kind, "source": source})
            return Result.failure(e)
        # A partial failure is still a completed deletion; the report lists it.
        return Result.success(report)

    async def reconcile(self, identity: Any) -> Result[List[Dict[str, Any]]]:
        try:
            identity_id, email = _identity_parts(identity)
            entities = await self.reconciliation.reconcile(identity_id, email)
        except LifecycleError as e:
            logger.warning(f"Ownership reconciliation rejected: {e.kind}", extra={"error_kind": e.kind})
            return Result.failure(e)
        return Result.success(entities)

    async def resolve(self, identity_or_email: Optional[str]) -> Result[Resolution]:
        try:
            try:
                resolution = await self.resolver.resolve_reference(identity_or_email)
            except SQLAlchemyError as e:
                await self.db.rollback()
                raise PersistenceError("Could not resolve account") from e
        except LifecycleError as e:
            return Result.failure(e)
        return Result.success(resolution)
