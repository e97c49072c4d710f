"""
Tests for LifecycleEventDispatcher.

Security requirements:
- No email, name or other profile values in audit details
- A failing listener never breaks the lifecycle operation

Run with: pytest tests/test_events.py -v
"""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from database.models import LifecycleAuditLogDB
from lifecycle.events import LifecycleAction, LifecycleEventDispatcher, sanitize_details


class TestSanitizeDetails:

    def test_pii_fields_removed(self):
        details = sanitize_details({
            "email": "amy@example.com",
            "name": "Amy",
            "phone": "555-0100",
            "email_domain": "example.com",
            "written_fields": ["name"],
        })

        assert details == {"email_domain": "example.com", "written_fields": ["name"]}


class TestDispatcher:

    @pytest.mark.asyncio
    async def test_event_persisted(self, db, seed):
        dispatcher = LifecycleEventDispatcher(db)

        event = await dispatcher.emit(
            LifecycleAction.ACCOUNT_DELETED, "user-1", "admin",
            details={"email": "amy@example.com", "removed_counts": {"profiles": 1}},
            performed_by="admin:root",
        )

        assert event.details == {"removed_counts": {"profiles": 1}}
        entries = await seed.all(LifecycleAuditLogDB)
        assert len(entries) == 1
        assert entries[0].to_dict()["action"] == "account.deleted"
        assert entries[0].performed_by == "admin:root"
        assert entries[0].success is True

    @pytest.mark.asyncio
    async def test_async_and_sync_listeners_called(self, db):
        async_listener = AsyncMock()
        sync_listener = MagicMock(return_value=None)
        dispatcher = LifecycleEventDispatcher(db, listeners=[async_listener])
        dispatcher.subscribe(sync_listener)

        event = await dispatcher.emit(LifecycleAction.OWNERSHIP_RECONCILED, "U2", "sign_in")

        async_listener.assert_awaited_once_with(event)
        sync_listener.assert_called_once_with(event)
        assert type(event.action) is str
        assert event.to_dict()["event"] == "ownership.reconciled"

    def test_actions_are_string_enum_members(self):
        assert LifecycleAction("account.deleted") is LifecycleAction.ACCOUNT_DELETED
        assert LifecycleAction.ACCOUNT_DELETED == "account.deleted"

    @pytest.mark.asyncio
    async def test_failing_listener_does_not_stop_others(self, db):
        broken = AsyncMock(side_effect=RuntimeError("mail relay down"))
        healthy = AsyncMock()
        dispatcher = LifecycleEventDispatcher(db, listeners=[broken, healthy])

        with patch("lifecycle.events.capture_exception") as capture:
            await dispatcher.emit(LifecycleAction.PROFILE_CREATED, "user-1", "signup")

        healthy.assert_awaited_once()
        capture.assert_called_once()

    @pytest.mark.asyncio
    async def test_failure_event_recorded(self, db, seed):
        dispatcher = LifecycleEventDispatcher(db)

        await dispatcher.emit(
            LifecycleAction.ACCOUNT_DELETION_PARTIAL_FAILURE, "user-1", "self_service",
            details={"failed_tables": ["saved_events"]}, success=False,
        )

        entries = await seed.all(LifecycleAuditLogDB)
        assert entries[0].success is False
        assert entries[0].details == {"failed_tables": ["saved_events"]}
