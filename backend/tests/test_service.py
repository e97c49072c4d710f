"""
Tests for AccountLifecycleService: every operation returns a tagged Result.

Run with: pytest tests/test_service.py -v
"""

from types import SimpleNamespace
from unittest.mock import patch

import pytest
from sqlalchemy.exc import OperationalError

from database.models import BookingDB, BusinessListingDB, LifecycleAuditLogDB
from lifecycle.service import AccountLifecycleService


class TestServiceResults:

    @pytest.mark.asyncio
    async def test_upsert_success(self, db):
        service = AccountLifecycleService(db, archive_enabled=False)

        result = await service.upsert(SimpleNamespace(id="U1", email="a@x.com"), {"name": "Amy"}, source="signup")

        assert result.ok is True
        assert result.data.created is True
        assert result.to_dict()["data"]["profile"]["name"] == "Amy"

    @pytest.mark.asyncio
    async def test_upsert_validation_failure(self, db):
        service = AccountLifecycleService(db, archive_enabled=False)

        result = await service.upsert({"id": "U1", "email": ""}, {"name": "Amy"})

        assert result.ok is False
        assert result.error_kind == "validation_error"

    @pytest.mark.asyncio
    async def test_missing_identity(self, db):
        result = await AccountLifecycleService(db, archive_enabled=False).reconcile(None)

        assert result.error_kind == "validation_error"

    @pytest.mark.asyncio
    async def test_delete_not_found(self, db):
        result = await AccountLifecycleService(db, archive_enabled=False).delete_account("ghost@example.com")

        assert result.ok is False
        assert result.to_dict()["error"]["kind"] == "not_found"

    @pytest.mark.asyncio
    async def test_partial_identity_delete_succeeds(self, db, seed):
        await seed.add(BookingDB(user_email="b@x.com"))

        result = await AccountLifecycleService(db, archive_enabled=False).delete_account("b@x.com")

        assert result.ok is True
        assert result.data.removed_counts["bookings"] == 1
        assert await seed.count(BookingDB) == 0

    @pytest.mark.asyncio
    async def test_partial_failure_is_still_ok(self, db, seed, monkeypatch):
        await seed.account("U1", "a@x.com")
        service = AccountLifecycleService(db, archive_enabled=False)

        async def unavailable(identity_id):
            raise OperationalError("DELETE", {}, Exception("timeout"))

        monkeypatch.setattr(service.deletion.auth_records, "delete_identity", unavailable)
        with patch("lifecycle.deletion.capture_exception"):
            result = await service.delete_account("U1")

        assert result.ok is True
        assert result.data.status == "partial_failure"
        actions = [entry.action for entry in await seed.all(LifecycleAuditLogDB)]
        assert actions == ["account.deletion_partial_failure"]

    @pytest.mark.asyncio
    async def test_resolve(self, db, seed):
        await seed.listing("Corner Cafe", "a@x.com", unlinked=True)

        result = await AccountLifecycleService(db, archive_enabled=False).resolve("a@x.com")

        assert result.to_dict()["data"]["kind"] == "partial"

    @pytest.mark.asyncio
    async def test_resolve_storage_failure(self, db, monkeypatch):
        service = AccountLifecycleService(db, archive_enabled=False)

        async def unavailable(value):
            raise OperationalError("SELECT", {}, Exception("connection refused"))

        monkeypatch.setattr(service.resolver, "resolve_reference", unavailable)

        result = await service.resolve("a@x.com")

        assert result.error_kind == "persistence_error"


class TestEndToEnd:
    """Delete with soft ownership, sign up again with the same email, reclaim the listing."""

    @pytest.mark.asyncio
    async def test_delete_recreate_reconcile(self, db, seed):
        service = AccountLifecycleService(db, archive_enabled=True)
        old = SimpleNamespace(id="U1", email="a@x.com")
        new = SimpleNamespace(id="U2", email="a@x.com")

        await service.upsert(old, {"name": "Amy", "role": "business"})
        listing = await seed.listing("Corner Cafe", "a@x.com", owner="U1")

        deleted = await service.delete_account("U1")
        assert deleted.data.archived is True

        await service.upsert(new, {"name": "Amy", "role": "business"})
        reconciled = await service.reconcile(new)

        assert [entity["id"] for entity in reconciled.data] == [listing.id]
        stored = await seed.get(BusinessListingDB, listing.id)
        assert (stored.owner_identity_id, stored.unlinked) == ("U2", False)
