"""
Ownership Reconciliation

Runs once per successful sign-in. Owned entities that were unlinked by a
previous soft account deletion and carry the signed-in email are reattached to
the (new) identity.

The UPDATE re-checks ``unlinked = TRUE`` so two concurrent sign-ins converge on
a single owner instead of both claiming the row.
"""

import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import MetaData, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from database.connection import Base
from logging_config import email_domain

from .errors import PersistenceError, normalize_email, require
from .events import LifecycleAction, LifecycleEventDispatcher
from .registry import DELETION_REGISTRY, DeletionRegistry, RegistryEntry
from .resolver import email_matches
from .result import row_to_dict

logger = logging.getLogger(__name__)


class OwnershipReconciliationService:
    def __init__(
        self,
        db: AsyncSession,
        registry: DeletionRegistry = DELETION_REGISTRY,
        metadata: MetaData = Base.metadata,
        events: Optional[LifecycleEventDispatcher] = None
    ):
        self.db = db
        self.registry = registry
        self.metadata = metadata
        self.events = events

    async def reconcile(self, identity_id: Optional[str], email: Optional[str]) -> List[Dict[str, Any]]:
        """
        Reattach unlinked owned entities matching ``email`` to ``identity_id``.

        Returns:
            The reattached entities, empty when nothing matched
        """
        identity_id = require(identity_id, "identity_id")
        email = normalize_email(email)

        reattached: List[Dict[str, Any]] = []
        try:
            for entry in self.registry.owned_entity_entries():
                reattached.extend(await self._reconcile_entry(entry, identity_id, email))
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(f"Ownership reconciliation failed for {identity_id}: {e.__class__.__name__}")
            raise PersistenceError(
                "Ownership reconciliation failed",
                details={"identity_id": identity_id}
            ) from e

        if reattached:
            logger.info(
                f"Reattached {len(reattached)} owned entities to {identity_id}",
                extra={"identity_id": identity_id, "email_domain": email_domain(email), "count": len(reattached)}
            )
            if self.events is not None:
                await self.events.emit(
                    LifecycleAction.OWNERSHIP_RECONCILED,
                    identity_id,
                    "sign_in",
                    details={
                        "email_domain": email_domain(email),
                        "entity_ids": [entity["id"] for entity in reattached],
                    },
                    performed_by=identity_id,
                )
        return reattached

    async def _reconcile_entry(self, entry: RegistryEntry, identity_id: str, email: str) -> List[Dict[str, Any]]:
        table = self.metadata.tables[entry.table]
        unlinked = table.c[entry.unlinked_column]

        result = await self.db.execute(
            select(table.c.id)
            .where(email_matches(table.c[entry.email_column], email))
            .where(unlinked.is_(True))
        )
        candidate_ids = list(result.scalars().all())
        if not candidate_ids:
            return []

        await self.db.execute(
            update(table)
            .where(table.c.id.in_(candidate_ids))
            .where(unlinked.is_(True))
            .values({entry.column: identity_id, entry.unlinked_column: False})
        )
        await self.db.commit()

        # Rows a concurrent run claimed first carry the other identity.
        result = await self.db.execute(
            select(table)
            .where(table.c.id.in_(candidate_ids))
            .where(table.c[entry.column] == identity_id)
            .order_by(table.c.id)
        )
        return [row_to_dict(row._mapping) for row in result]
