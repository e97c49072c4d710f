"""
Account Deletion Orchestrator

Tears down an account and everything that references it, driven entirely by
the deletion registry.

Full identity (profile or auth record exists), in stage order:
1. identity-keyed dependents
2. email-keyed records (profile email)
3. archive snapshot of profile + owned entities (if enabled)
4. owned entities: unlink (default) or hard delete
5. profile
6. backing auth record, last

Partial identity (email only): email-keyed records, plus owned entities with a
matching email and no owner. No auth record is touched. Entities owned by
another identity are never touched.

Each step commits on its own. A failing step is rolled back, logged and
reported; the remaining steps still run. Re-running a deletion is safe: while
any identity-keyed row survives, a retry by identity id takes the full path
again.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Sequence

from sqlalchemy import MetaData, Table, delete, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from config import get_settings
from database.connection import Base
from database.models import DeletedAccountArchiveDB
from logging_config import email_domain
from sentry_integration import capture_exception

from .auth_records import AuthRecordGateway
from .errors import NotFoundError, PersistenceError, require
from .events import LifecycleAction, LifecycleEventDispatcher
from .registry import DELETION_REGISTRY, DeletionRegistry, DeletionStage, KeyKind, RegistryEntry
from .resolver import EntityResolver, Resolution, ResolutionKind, email_matches, looks_like_email
from .result import row_to_dict

logger = logging.getLogger(__name__)

AUTH_RECORD_STEP = "auth_identities"
ARCHIVE_STEP = "deleted_account_archive"


@dataclass
class StepFailure:
    table: str
    reason: str
    entity_id: Optional[str] = None

    def to_dict(self) -> Dict[str, str]:
        data = {"table": self.table, "reason": self.reason}
        if self.entity_id:
            data["entity_id"] = self.entity_id
        return data


@dataclass
class DeletionReport:
    kind: str
    identity_id: Optional[str] = None
    email: Optional[str] = None
    performed_by: Optional[str] = None
    hard_delete_owned_entities: bool = False
    removed_counts: Dict[str, int] = field(default_factory=dict)
    hard_deleted: List[str] = field(default_factory=list)
    soft_deleted: List[str] = field(default_factory=list)
    failures: List[StepFailure] = field(default_factory=list)
    auth_record_removed: bool = False
    archived: bool = False

    @property
    def success(self) -> bool:
        return not self.failures

    @property
    def status(self) -> str:
        return "completed" if self.success else "partial_failure"

    @property
    def owned_entity_disposition(self) -> Dict[str, int]:
        return {"hard_deleted": len(self.hard_deleted), "soft_deleted": len(self.soft_deleted)}

    def count(self, table: str, n: int):
        self.removed_counts[table] = self.removed_counts.get(table, 0) + n

    def to_dict(self) -> Dict[str, Any]:
        return {
            "identity_id": self.identity_id,
            "email": self.email,
            "kind": self.kind,
            "status": self.status,
            "success": self.success,
            "performed_by": self.performed_by,
            "hard_delete_owned_entities": self.hard_delete_owned_entities,
            "removed_counts": self.removed_counts,
            "owned_entity_disposition": self.owned_entity_disposition,
            "hard_deleted_entity_ids": self.hard_deleted,
            "soft_deleted_entity_ids": self.soft_deleted,
            "failures": [f.to_dict() for f in self.failures],
            "auth_record_removed": self.auth_record_removed,
            "archived": self.archived,
        }


def _reason(exc: SQLAlchemyError) -> str:
    original = getattr(exc, "orig", None) or exc
    text = str(original).strip().splitlines()
    return f"{exc.__class__.__name__}: {text[0]}" if text else exc.__class__.__name__


class AccountDeletionOrchestrator:
    def __init__(
        self,
        db: AsyncSession,
        registry: DeletionRegistry = DELETION_REGISTRY,
        metadata: MetaData = Base.metadata,
        resolver: Optional[EntityResolver] = None,
        auth_records: Optional[AuthRecordGateway] = None,
        events: Optional[LifecycleEventDispatcher] = None,
        archive_enabled: Optional[bool] = None
    ):
        self.db = db
        self.registry = registry
        self.metadata = metadata
        self.resolver = resolver or EntityResolver(db, registry, metadata)
        self.auth_records = auth_records or AuthRecordGateway(db)
        self.events = events
        if archive_enabled is None:
            archive_enabled = get_settings().ARCHIVE_DELETED_ACCOUNTS
        self.archive_enabled = archive_enabled

    def _table(self, entry: RegistryEntry) -> Table:
        return self.metadata.tables[entry.table]

    # ==================== ENTRY POINT ====================

    async def delete_account(
        self,
        identity_or_email: Optional[str],
        hard_delete_owned_entities: bool = False,
        owned_entity_ids: Optional[Sequence[str]] = None,
        performed_by: str = "self",
        source: str = "self_service"
    ) -> DeletionReport:
        """
        Delete an account by identity id or email.

        ``owned_entity_ids`` narrows a hard delete to the listed entities; the
        account's other owned entities are unlinked instead.

        Raises:
            ValidationError: blank identity/email
            NotFoundError: nothing references the identity or email
            PersistenceError: the resolver could not read the database
        """
        reference = require(identity_or_email, "identity_or_email")

        try:
            resolution = await self.resolver.resolve_reference(reference)
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise PersistenceError("Could not resolve account for deletion") from e

        if not resolution.found:
            raise NotFoundError(
                "No account or records found",
                details={"reference": "email" if looks_like_email(reference) else "identity_id"}
            )

        report = DeletionReport(
            kind=resolution.kind.value,
            identity_id=resolution.identity_id,
            email=resolution.email,
            performed_by=performed_by,
            hard_delete_owned_entities=hard_delete_owned_entities,
        )
        selected = set(owned_entity_ids) if owned_entity_ids is not None else None

        logger.info(
            f"Deleting account ({resolution.kind.value}) {resolution.identity_id or '-'}",
            extra={
                "identity_id": resolution.identity_id,
                "email_domain": email_domain(resolution.email),
                "resolution": resolution.kind.value,
                "hard_delete_owned_entities": hard_delete_owned_entities,
                "performed_by": performed_by,
            }
        )

        if resolution.kind == ResolutionKind.FULL:
            await self._delete_full(resolution, report, hard_delete_owned_entities, selected)
        else:
            await self._delete_partial(resolution, report, hard_delete_owned_entities, selected)

        if report.success:
            logger.info(
                f"Account deletion completed for {report.identity_id or '-'}",
                extra={"identity_id": report.identity_id, "removed_counts": report.removed_counts}
            )
        else:
            logger.warning(
                f"Account deletion finished with {len(report.failures)} failed step(s) for {report.identity_id or '-'}",
                extra={"failures": [f.to_dict() for f in report.failures], "identity_id": report.identity_id}
            )

        await self._emit(report, source)
        return report

    # ==================== PATHS ====================

    async def _delete_full(
        self,
        resolution: Resolution,
        report: DeletionReport,
        hard: bool,
        selected: Optional[set]
    ):
        identity_id = resolution.identity_id
        email = resolution.email

        for entry in self.registry.by_stage(DeletionStage.DEPENDENTS):
            await self._delete_matching(report, entry, identity_id)

        if email:
            for entry in self.registry.by_stage(DeletionStage.EMAIL_RECORDS):
                await self._delete_matching(report, entry, email)

        if self.archive_enabled:
            archived = await self._run_step(report, ARCHIVE_STEP, self._archive, identity_id, email, hard, report)
            report.archived = bool(archived)

        for entry in self.registry.owned_entity_entries():
            owned = await self._run_step(report, entry.table, self._owned_ids, entry, identity_id)
            if owned is None:
                continue
            unowned = []
            if hard and email:
                unowned = await self._run_step(report, entry.table, self._unowned_ids, entry, email) or []

            if hard:
                targets = [i for i in owned + unowned if selected is None or i in selected]
                await self._hard_delete(report, entry, targets, identity_id)
                await self._unlink(report, entry, [i for i in owned if i not in targets], identity_id)
            else:
                await self._unlink(report, entry, owned, identity_id)

        for entry in self.registry.by_stage(DeletionStage.PROFILE):
            await self._delete_matching(report, entry, identity_id)

        removed = await self._run_step(report, AUTH_RECORD_STEP, self.auth_records.delete_identity, identity_id)
        report.auth_record_removed = bool(removed)

    async def _delete_partial(
        self,
        resolution: Resolution,
        report: DeletionReport,
        hard: bool,
        selected: Optional[set]
    ):
        email = resolution.email

        for entry in self.registry.email_keyed_entries():
            await self._delete_matching(report, entry, email)

        for entry in self.registry.owned_entity_entries():
            # Already unlinked rows are left as they are unless hard deleting.
            unowned = await self._run_step(report, entry.table, self._unowned_ids, entry, email, not hard)
            if not unowned:
                continue
            if hard:
                targets = [i for i in unowned if selected is None or i in selected]
                await self._hard_delete(report, entry, targets, None)
            else:
                await self._unlink(report, entry, unowned, None)

    # ==================== STEPS ====================

    async def _run_step(
        self,
        report: DeletionReport,
        table: str,
        operation: Callable[..., Awaitable[Any]],
        *args,
        entity_id: Optional[str] = None
    ):
        """
        Run one step in its own transaction.

        Returns the operation's result, or None if the step failed.
        """
        try:
            result = await operation(*args)
            await self.db.commit()
            return result
        except SQLAlchemyError as e:
            await self.db.rollback()
            reason = _reason(e)
            logger.error(
                f"Deletion step failed on {table}: {reason}",
                extra={"table": table, "identity_id": report.identity_id, "resolution": report.kind}
            )
            capture_exception(e, tags={"table": table, "resolution": report.kind})
            report.failures.append(StepFailure(table=table, reason=reason, entity_id=entity_id))
            return None

    async def _delete_matching(self, report: DeletionReport, entry: RegistryEntry, value: str):
        removed = await self._run_step(report, entry.table, self._delete_rows, entry, value)
        if removed is not None:
            report.count(entry.table, removed)

    async def _delete_rows(self, entry: RegistryEntry, value: str) -> int:
        table = self._table(entry)
        column = table.c[entry.column]
        condition = email_matches(column, value) if entry.key == KeyKind.BY_EMAIL else column == value
        result = await self.db.execute(delete(table).where(condition))
        return result.rowcount or 0

    async def _owned_ids(self, entry: RegistryEntry, identity_id: str) -> List[str]:
        table = self._table(entry)
        result = await self.db.execute(
            select(table.c.id).where(table.c[entry.column] == identity_id).order_by(table.c.id)
        )
        return list(result.scalars().all())

    async def _unowned_ids(self, entry: RegistryEntry, email: str, linked_only: bool = False) -> List[str]:
        table = self._table(entry)
        query = (
            select(table.c.id)
            .where(table.c[entry.column].is_(None))
            .where(email_matches(table.c[entry.email_column], email))
            .order_by(table.c.id)
        )
        if linked_only:
            query = query.where(table.c[entry.unlinked_column].is_(False))
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def _hard_delete(
        self,
        report: DeletionReport,
        entry: RegistryEntry,
        entity_ids: Iterable[str],
        identity_id: Optional[str]
    ):
        """
        Remove entities one by one.

        An entity that cannot be removed is detached from its owner but not
        marked unlinked, so a later sign-up with the same email does not
        reclaim it. It stays in ``report.failures`` with its id; a retry by
        email with hard delete removes it.
        """
        table = self._table(entry)
        removed = 0
        for entity_id in entity_ids:
            deleted = await self._run_step(
                report, entry.table, self._delete_entity, table, entity_id, entity_id=entity_id
            )
            if deleted is None:
                await self._run_step(
                    report, entry.table, self._update_owned, entry, [entity_id], identity_id, False,
                    entity_id=entity_id
                )
                continue
            if deleted:
                removed += deleted
                report.hard_deleted.append(entity_id)
        report.count(entry.table, removed)

    async def _delete_entity(self, table: Table, entity_id: str) -> int:
        result = await self.db.execute(delete(table).where(table.c.id == entity_id))
        return result.rowcount or 0

    async def _unlink(
        self,
        report: DeletionReport,
        entry: RegistryEntry,
        entity_ids: List[str],
        identity_id: Optional[str]
    ):
        if not entity_ids:
            return
        changed = await self._run_step(report, entry.table, self._update_owned, entry, entity_ids, identity_id, True)
        if changed is not None:
            report.soft_deleted.extend(changed)

    async def _update_owned(
        self,
        entry: RegistryEntry,
        entity_ids: List[str],
        identity_id: Optional[str],
        unlinked: bool
    ) -> List[str]:
        """Clear the owner of entities still owned by ``identity_id`` (or by nobody); returns the ids changed."""
        table = self._table(entry)
        owner = table.c[entry.column]
        owner_condition = owner.is_(None) if identity_id is None else or_(owner == identity_id, owner.is_(None))
        result = await self.db.execute(
            update(table)
            .where(table.c.id.in_(entity_ids))
            .where(owner_condition)
            .values({entry.column: None, entry.unlinked_column: unlinked})
            .returning(table.c.id)
        )
        return sorted(result.scalars().all())

    async def _archive(self, identity_id: str, email: Optional[str], hard: bool, report: DeletionReport) -> bool:
        snapshots = []
        for entry in self.registry.owned_entity_entries():
            table = self._table(entry)
            condition = table.c[entry.column] == identity_id
            if hard and email:
                condition = or_(
                    condition,
                    (table.c[entry.column].is_(None)) & email_matches(table.c[entry.email_column], email)
                )
            result = await self.db.execute(select(table).where(condition).order_by(table.c.id))
            snapshots.extend(
                dict(row_to_dict(row._mapping), entity_table=entry.table)
                for row in result
            )

        if not snapshots:
            return False

        profile = await self.resolver.get_profile(identity_id)
        profile_data = profile.to_dict() if profile is not None else {}
        self.db.add(DeletedAccountArchiveDB(
            original_identity_id=identity_id,
            original_email=email,
            original_name=profile_data.get("name"),
            original_role=profile_data.get("role"),
            profile_data=profile_data,
            owned_entities_data=snapshots,
            hard_deleted_owned_entities=hard,
            deleted_by=report.performed_by,
        ))
        return True

    # ==================== EVENTS ====================

    async def _emit(self, report: DeletionReport, source: str):
        if self.events is None:
            return
        await self.events.emit(
            LifecycleAction.ACCOUNT_DELETED if report.success else LifecycleAction.ACCOUNT_DELETION_PARTIAL_FAILURE,
            report.identity_id,
            source,
            details={
                "resolution": report.kind,
                "email_domain": email_domain(report.email),
                "removed_counts": report.removed_counts,
                "hard_deleted_count": len(report.hard_deleted),
                "soft_deleted_count": len(report.soft_deleted),
                "failed_tables": [f.table for f in report.failures],
                "auth_record_removed": report.auth_record_removed,
                "archived": report.archived,
            },
            performed_by=report.performed_by,
            success=report.success,
        )
