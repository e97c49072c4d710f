"""
Lifecycle event dispatch.

Every profile write, account deletion and ownership reconciliation produces a
lifecycle event. The dispatcher persists it to ``lifecycle_audit_log`` and
then hands it to registered listeners (notification delivery, CRM sync and so
on live outside this service).

SECURITY: event details never carry a full email address, a name or other
profile values. Only identity ids, table names, counts and the email domain.
"""

import inspect
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from database.models import LifecycleAuditLogDB
from sentry_integration import capture_exception

logger = logging.getLogger(__name__)


class LifecycleAction(str, Enum):
    """Event types, dot notation."""
    PROFILE_CREATED = "profile.created"
    PROFILE_UPDATED = "profile.updated"
    ACCOUNT_DELETED = "account.deleted"
    ACCOUNT_DELETION_PARTIAL_FAILURE = "account.deletion_partial_failure"
    OWNERSHIP_RECONCILED = "ownership.reconciled"


PII_FIELDS = ('email', 'name', 'phone', 'address', 'resident_zip_code', 'full_email')


@dataclass
class LifecycleEvent:
    action: str
    identity_id: Optional[str]
    source: str
    performed_by: Optional[str] = None
    success: bool = True
    details: Dict[str, Any] = field(default_factory=dict)
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event": self.action,
            "identity_id": self.identity_id,
            "source": self.source,
            "performed_by": self.performed_by,
            "success": self.success,
            "details": self.details,
            "timestamp": self.occurred_at.isoformat(),
        }


Listener = Callable[[LifecycleEvent], Union[None, Awaitable[None]]]


def sanitize_details(details: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in details.items() if k not in PII_FIELDS}


class LifecycleEventDispatcher:
    def __init__(self, db: AsyncSession, listeners: Optional[List[Listener]] = None):
        self.db = db
        self.listeners: List[Listener] = list(listeners or [])

    def subscribe(self, listener: Listener):
        self.listeners.append(listener)

    async def emit(
        self,
        action: Union[LifecycleAction, str],
        identity_id: Optional[str],
        source: str,
        details: Optional[Dict[str, Any]] = None,
        performed_by: Optional[str] = None,
        success: bool = True
    ) -> LifecycleEvent:
        action = action.value if isinstance(action, LifecycleAction) else action
        event = LifecycleEvent(
            action=action,
            identity_id=identity_id,
            source=source,
            performed_by=performed_by,
            success=success,
            details=sanitize_details(details or {}),
        )

        log_entry = event.to_dict()
        if success:
            logger.info(f"Lifecycle event: {action} for identity {identity_id} via {source}", extra=log_entry)
        else:
            logger.warning(f"Lifecycle event FAILED: {action} for identity {identity_id} via {source}", extra=log_entry)

        await self._persist(event)
        await self._notify(event)
        return event

    async def _persist(self, event: LifecycleEvent):
        try:
            self.db.add(LifecycleAuditLogDB(
                action=event.action,
                subject_identity_id=event.identity_id,
                source=event.source,
                performed_by=event.performed_by,
                success=event.success,
                details=event.details,
                created_at=event.occurred_at,
            ))
            await self.db.commit()
        except SQLAlchemyError as e:
            # The lifecycle operation itself already committed.
            await self.db.rollback()
            logger.exception(f"Failed to write audit log entry for {event.action}")
            capture_exception(e, tags={"lifecycle_action": event.action})

    async def _notify(self, event: LifecycleEvent):
        for listener in self.listeners:
            try:
                outcome = listener(event)
                if inspect.isawaitable(outcome):
                    await outcome
            except Exception as e:
                logger.exception(f"Lifecycle listener {getattr(listener, '__name__', listener)} failed for {event.action}")
                capture_exception(e, tags={"lifecycle_action": event.action})
