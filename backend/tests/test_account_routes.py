"""
API tests for the account lifecycle routers.

Runs the FastAPI app in-process over httpx's ASGI transport with the database
dependency pointed at the test session. Lifespan (startup schema check) does
not run.

Run with: pytest tests/test_account_routes.py -v
"""

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from database import get_db
from database.models import BookingDB, BusinessListingDB, ProfileDB
from middleware.auth import create_access_token
from server import app


def _auth(identity_id, email, role=None):
    return {"Authorization": f"Bearer {create_access_token(identity_id, email, role=role)}"}


@pytest_asyncio.fixture
async def client(db):
    async def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()


class TestStatus:

    @pytest.mark.asyncio
    async def test_lifecycle_status(self, client):
        response = await client.get("/api/lifecycle/status")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "operational"
        assert body["owned_entity_tables"] == ["business_listings"]


class TestProfileEndpoint:

    @pytest.mark.asyncio
    async def test_requires_token(self, client):
        response = await client.post("/api/account/profile", json={"name": "Amy"})

        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_create_then_role_change_ignored(self, client, seed):
        headers = _auth("U1", "a@x.com")

        created = await client.post(
            "/api/account/profile",
            json={"name": "Amy", "role": "community"},
            headers=headers,
        )
        updated = await client.post("/api/account/profile", json={"role": "business"}, headers=headers)

        assert created.status_code == 200
        assert created.json()["ok"] is True
        assert created.json()["data"]["created"] is True
        assert updated.status_code == 200
        conflicts = updated.json()["data"]["immutable_conflicts"]
        assert conflicts == [{"field": "role", "stored_value": "community", "attempted_value": "business"}]
        stored = await seed.get(ProfileDB, "U1")
        assert (stored.name, stored.role) == ("Amy", "community")

    @pytest.mark.asyncio
    async def test_invalid_role_rejected_by_schema(self, client):
        response = await client.post(
            "/api/account/profile", json={"role": "superuser"}, headers=_auth("U1", "a@x.com")
        )

        assert response.status_code == 422


class TestReconcileEndpoint:

    @pytest.mark.asyncio
    async def test_reattaches_unlinked_listing(self, client, seed):
        listing = await seed.listing("Corner Cafe", "a@x.com", unlinked=True)

        response = await client.post("/api/account/reconcile", headers=_auth("U2", "a@x.com"))

        assert response.status_code == 200
        assert [entity["id"] for entity in response.json()["data"]] == [listing.id]


class TestSelfDeletion:

    @pytest.mark.asyncio
    async def test_deletes_own_account(self, client, seed):
        await seed.account("U1", "a@x.com", role="business")
        listing = await seed.listing("Corner Cafe", "a@x.com", owner="U1")

        response = await client.delete("/api/account", headers=_auth("U1", "a@x.com"))

        assert response.status_code == 200
        body = response.json()
        assert body["ok"] is True
        assert body["data"]["status"] == "completed"
        assert body["data"]["owned_entity_disposition"] == {"hard_deleted": 0, "soft_deleted": 1}
        assert body["data"]["soft_deleted_entity_ids"] == [listing.id]
        assert await seed.get(ProfileDB, "U1") is None

    @pytest.mark.asyncio
    async def test_hard_delete_flag(self, client, seed):
        await seed.account("U1", "a@x.com", role="business")
        listing = await seed.listing("Corner Cafe", "a@x.com", owner="U1")

        response = await client.delete(
            "/api/account",
            params={"hard_delete_owned_entities": "true"},
            headers=_auth("U1", "a@x.com"),
        )

        assert response.status_code == 200
        assert await seed.get(BusinessListingDB, listing.id) is None

    @pytest.mark.asyncio
    async def test_nothing_to_delete_is_404(self, client):
        response = await client.delete("/api/account", headers=_auth("U9", "ghost@example.com"))

        assert response.status_code == 404
        assert response.json()["error"]["kind"] == "not_found"


class TestAdminEndpoints:

    @pytest.mark.asyncio
    async def test_requires_admin_role(self, client):
        response = await client.post(
            "/api/admin/accounts/delete",
            json={"email": "b@x.com"},
            headers=_auth("U1", "a@x.com"),
        )

        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_admin_deletes_partial_identity(self, client, seed):
        await seed.add(BookingDB(user_email="b@x.com"))

        response = await client.post(
            "/api/admin/accounts/delete",
            json={"email": "b@x.com"},
            headers=_auth("ADMIN", "admin@example.com", role="admin"),
        )

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["kind"] == "partial"
        assert data["removed_counts"]["bookings"] == 1
        assert data["performed_by"] == "admin:ADMIN"

    @pytest.mark.asyncio
    async def test_admin_cannot_delete_self(self, client, seed):
        await seed.account("ADMIN", "admin@example.com")

        by_id = await client.post(
            "/api/admin/accounts/delete",
            json={"identity_id": "ADMIN"},
            headers=_auth("ADMIN", "admin@example.com", role="admin"),
        )
        by_email = await client.post(
            "/api/admin/accounts/delete",
            json={"email": "Admin@Example.com"},
            headers=_auth("ADMIN", "admin@example.com", role="admin"),
        )

        assert by_id.status_code == 400
        assert by_email.status_code == 400
        assert await seed.get(ProfileDB, "ADMIN") is not None

    @pytest.mark.asyncio
    async def test_missing_reference_is_400(self, client):
        response = await client.post(
            "/api/admin/accounts/delete",
            json={},
            headers=_auth("ADMIN", "admin@example.com", role="admin"),
        )

        assert response.status_code == 400
        assert response.json()["error"]["kind"] == "validation_error"

    @pytest.mark.asyncio
    async def test_resolve(self, client, seed):
        await seed.account("U1", "a@x.com")

        response = await client.get(
            "/api/admin/accounts/resolve",
            params={"identity_or_email": "a@x.com"},
            headers=_auth("ADMIN", "admin@example.com", role="admin"),
        )

        assert response.status_code == 200
        assert response.json()["data"]["kind"] == "full"
        assert response.json()["data"]["identity_id"] == "U1"

    @pytest.mark.asyncio
    async def test_registry_listing(self, client):
        response = await client.get(
            "/api/admin/lifecycle/registry",
            headers=_auth("ADMIN", "admin@example.com", role="admin"),
        )

        assert response.status_code == 200
        tables = [entry["table"] for entry in response.json()["entries"]]
        assert "business_listings" in tables
        assert tables[-1] == "profiles"

    @pytest.mark.asyncio
    async def test_admin_email_setting_grants_admin(self, client, monkeypatch):
        from config import get_settings

        monkeypatch.setattr(get_settings(), "ADMIN_EMAILS", "ops@example.com")

        response = await client.get(
            "/api/admin/lifecycle/registry",
            headers=_auth("OPS", "ops@example.com"),
        )

        assert response.status_code == 200
