"""
Shared fixtures for the lifecycle test suite.

Every test gets a fresh in-memory SQLite database (aiosqlite) with all tables
created from the models. ``seed`` writes through its own short-lived sessions
so the session under test starts with an empty identity map.
"""

import os

os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key-for-lifecycle-tests")
os.environ.setdefault("ENVIRONMENT", "test")

import pytest
import pytest_asyncio
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from config import get_settings
from database.connection import Base
from database.models import (
    AuthIdentityDB, ProfileDB, BusinessListingDB,
    ListingChangeRequestDB, ListingJobPostDB,
    UserNotificationDB, DismissedNotificationDB, SavedEventDB, SavedListingDB,
    CouponRedemptionDB, CalendarEventDB, EventFlagDB, EventVoteDB, EmailPreferenceDB,
    FunnelResponseDB, BookingDB, BookingEventDB, BusinessApplicationDB,
)

get_settings.cache_clear()


@pytest_asyncio.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(engine):
    return async_sessionmaker(engine, expire_on_commit=False, autoflush=False)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


class Seeder:
    """Writes fixture rows and reads back committed state, each in its own session."""

    def __init__(self, factory):
        self.factory = factory

    async def add(self, *objects):
        async with self.factory() as session:
            session.add_all(objects)
            await session.commit()
        return objects[0] if len(objects) == 1 else objects

    async def account(self, identity_id, email, role=None, name=None, with_auth=True, **fields):
        objects = [ProfileDB(id=identity_id, email=email, role=role, name=name, **fields)]
        if with_auth:
            objects.append(AuthIdentityDB(id=identity_id, email=email))
        await self.add(*objects)
        return objects[0]

    async def auth_only(self, identity_id, email):
        return await self.add(AuthIdentityDB(id=identity_id, email=email))

    async def listing(self, name, email, owner=None, unlinked=False, listing_id=None):
        listing = BusinessListingDB(name=name, email=email, owner_identity_id=owner, unlinked=unlinked)
        if listing_id:
            listing.id = listing_id
        return await self.add(listing)

    async def dependents(self, identity_id):
        """One row in every identity-keyed dependent table."""
        await self.add(
            UserNotificationDB(identity_id=identity_id, subject="Welcome"),
            DismissedNotificationDB(identity_id=identity_id, notification_key="tour"),
            SavedEventDB(identity_id=identity_id, event_id="evt-1"),
            SavedListingDB(identity_id=identity_id, listing_id="lst-1"),
            CouponRedemptionDB(identity_id=identity_id, coupon_code="SPRING"),
            CalendarEventDB(created_by_identity_id=identity_id, title="Open house"),
            EventFlagDB(identity_id=identity_id, event_id="evt-2", reason="spam"),
            EventVoteDB(identity_id=identity_id, event_id="evt-3"),
            EmailPreferenceDB(identity_id=identity_id),
            ListingChangeRequestDB(owner_identity_id=identity_id, request_type="hours"),
            ListingJobPostDB(owner_identity_id=identity_id, title="Barista"),
        )

    async def email_records(self, email):
        """One row in every email-keyed table."""
        await self.add(
            FunnelResponseDB(user_email=email, answers={"step": 1}),
            BookingDB(user_email=email),
            BookingEventDB(customer_email=email),
            BusinessApplicationDB(email=email, business_name="Pending Co"),
        )

    async def count(self, model, *conditions):
        async with self.factory() as session:
            query = select(func.count()).select_from(model)
            if conditions:
                query = query.where(*conditions)
            result = await session.execute(query)
            return result.scalar()

    async def get(self, model, pk):
        async with self.factory() as session:
            return await session.get(model, pk)

    async def all(self, model, *conditions):
        async with self.factory() as session:
            query = select(model)
            if conditions:
                query = query.where(*conditions)
            result = await session.execute(query)
            return list(result.scalars().all())


@pytest.fixture
def seed(session_factory):
    return Seeder(session_factory)


DEPENDENT_MODELS = [
    (UserNotificationDB, UserNotificationDB.identity_id),
    (DismissedNotificationDB, DismissedNotificationDB.identity_id),
    (SavedEventDB, SavedEventDB.identity_id),
    (SavedListingDB, SavedListingDB.identity_id),
    (CouponRedemptionDB, CouponRedemptionDB.identity_id),
    (CalendarEventDB, CalendarEventDB.created_by_identity_id),
    (EventFlagDB, EventFlagDB.identity_id),
    (EventVoteDB, EventVoteDB.identity_id),
    (EmailPreferenceDB, EmailPreferenceDB.identity_id),
    (ListingChangeRequestDB, ListingChangeRequestDB.owner_identity_id),
    (ListingJobPostDB, ListingJobPostDB.owner_identity_id),
]

EMAIL_MODELS = [
    (FunnelResponseDB, FunnelResponseDB.user_email),
    (BookingDB, BookingDB.user_email),
    (BookingEventDB, BookingEventDB.customer_email),
    (BusinessApplicationDB, BusinessApplicationDB.email),
]


@pytest.fixture
def dependent_models():
    return DEPENDENT_MODELS


@pytest.fixture
def email_models():
    return EMAIL_MODELS
