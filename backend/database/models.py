"""
Directory Core - Database Models

SQLAlchemy models for every table that references an account.

Each column that points at an identity carries ``info={"identity_ref": ...}``:
- ``by_id``     removed through the deletion registry by identity id
- ``by_email``  removed (or unlinked) through the deletion registry by email
- ``self``      the identity's own row attributes (profile / auth record)
- ``retained``  intentionally kept after deletion (audit trail, archive)

``lifecycle.registry.check_registry_complete`` refuses to start when a column
named ``*identity_id`` or ``*email`` has no tag, or a ``by_id``/``by_email``
column has no registry entry.
"""

import uuid
from datetime import datetime, timezone
from typing import Dict, Any

from sqlalchemy import (
    Column, String, Boolean, Integer, DateTime, Text, JSON,
    CheckConstraint, Index,
)
from sqlalchemy.dialects.postgresql import JSONB

from .connection import Base

JSONType = JSON().with_variant(JSONB(), "postgresql")

BY_ID = {"identity_ref": "by_id"}
BY_EMAIL = {"identity_ref": "by_email"}
SELF = {"identity_ref": "self"}
RETAINED = {"identity_ref": "retained"}


def _uuid() -> str:
    return str(uuid.uuid4())


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value) -> Any:
    return value.isoformat() if isinstance(value, datetime) else value


class ProfileRole:
    BUSINESS = "business"
    COMMUNITY = "community"

    ALL = (BUSINESS, COMMUNITY)


# ==================== IDENTITY ====================

class AuthIdentityDB(Base):
    """
    Backing auth record for an identity.

    Mirrors the identity provider's user table; removed last during deletion.
    """
    __tablename__ = "auth_identities"

    id = Column(String(64), primary_key=True)
    email = Column(String(255), index=True, info=SELF)
    provider = Column(String(50), default="email")
    last_sign_in_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), default=_now)


class ProfileDB(Base):
    """One row per identity. ``role`` is immutable once set."""
    __tablename__ = "profiles"

    id = Column(String(64), primary_key=True, info=BY_ID)
    email = Column(String(255), index=True, info=SELF)
    name = Column(String(255))
    role = Column(String(30))
    is_local_resident = Column(Boolean)
    resident_verification_method = Column(String(50))
    resident_zip_code = Column(String(20))
    resident_verified_at = Column(DateTime(timezone=True))
    email_notifications_enabled = Column(Boolean)
    marketing_emails_enabled = Column(Boolean)
    is_admin = Column(Boolean, default=False)
    created_at = Column(DateTime(timezone=True), default=_now)
    updated_at = Column(DateTime(timezone=True), default=_now, onupdate=_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "email": self.email,
            "name": self.name,
            "role": self.role,
            "is_local_resident": self.is_local_resident,
            "resident_verification_method": self.resident_verification_method,
            "resident_zip_code": self.resident_zip_code,
            "resident_verified_at": _iso(self.resident_verified_at),
            "email_notifications_enabled": self.email_notifications_enabled,
            "marketing_emails_enabled": self.marketing_emails_enabled,
            "is_admin": bool(self.is_admin),
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


# ==================== OWNED ENTITIES ====================

class BusinessListingDB(Base):
    """
    Business listing - the owned entity.

    A listing is Owned (owner set), Unlinked (owner cleared, reclaimable by
    email) or gone. ``unlinked`` implies no owner.
    """
    __tablename__ = "business_listings"
    __table_args__ = (
        CheckConstraint(
            "NOT unlinked OR owner_identity_id IS NULL",
            name="ck_business_listings_unlinked_has_no_owner",
        ),
        Index("ix_business_listings_email_unlinked", "email", "unlinked"),
    )

    id = Column(String(36), primary_key=True, default=_uuid)
    name = Column(String(255), nullable=False)
    email = Column(String(255), info=BY_EMAIL)
    owner_identity_id = Column(String(64), index=True, info=BY_ID)
    unlinked = Column(Boolean, nullable=False, default=False)
    category_key = Column(String(50))
    phone = Column(String(50))
    website = Column(String(255))
    address = Column(Text)
    is_member = Column(Boolean, default=False)
    created_at = Column(DateTime(timezone=True), default=_now)
    updated_at = Column(DateTime(timezone=True), default=_now, onupdate=_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "owner_identity_id": self.owner_identity_id,
            "unlinked": bool(self.unlinked),
            "category_key": self.category_key,
            "phone": self.phone,
            "website": self.website,
            "address": self.address,
            "is_member": bool(self.is_member),
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


class ListingChangeRequestDB(Base):
    __tablename__ = "listing_change_requests"

    id = Column(String(36), primary_key=True, default=_uuid)
    listing_id = Column(String(36), index=True)
    owner_identity_id = Column(String(64), index=True, info=BY_ID)
    request_type = Column(String(50))
    changes = Column(JSONType, default=dict)
    status = Column(String(30), default="pending")
    created_at = Column(DateTime(timezone=True), default=_now)


class ListingJobPostDB(Base):
    __tablename__ = "listing_job_posts"

    id = Column(String(36), primary_key=True, default=_uuid)
    listing_id = Column(String(36), index=True)
    owner_identity_id = Column(String(64), index=True, info=BY_ID)
    title = Column(String(255))
    status = Column(String(30), default="pending")
    created_at = Column(DateTime(timezone=True), default=_now)


# ==================== IDENTITY-KEYED DEPENDENTS ====================

class UserNotificationDB(Base):
    __tablename__ = "user_notifications"

    id = Column(String(36), primary_key=True, default=_uuid)
    identity_id = Column(String(64), index=True, info=BY_ID)
    subject = Column(String(255))
    is_read = Column(Boolean, default=False)
    created_at = Column(DateTime(timezone=True), default=_now)


class DismissedNotificationDB(Base):
    __tablename__ = "dismissed_notifications"

    id = Column(String(36), primary_key=True, default=_uuid)
    identity_id = Column(String(64), index=True, info=BY_ID)
    notification_key = Column(String(100))
    created_at = Column(DateTime(timezone=True), default=_now)


class SavedEventDB(Base):
    __tablename__ = "saved_events"

    id = Column(String(36), primary_key=True, default=_uuid)
    identity_id = Column(String(64), index=True, info=BY_ID)
    event_id = Column(String(36))
    created_at = Column(DateTime(timezone=True), default=_now)


class SavedListingDB(Base):
    __tablename__ = "saved_listings"

    id = Column(String(36), primary_key=True, default=_uuid)
    identity_id = Column(String(64), index=True, info=BY_ID)
    listing_id = Column(String(36))
    created_at = Column(DateTime(timezone=True), default=_now)


class CouponRedemptionDB(Base):
    __tablename__ = "coupon_redemptions"

    id = Column(String(36), primary_key=True, default=_uuid)
    identity_id = Column(String(64), index=True, info=BY_ID)
    listing_id = Column(String(36))
    coupon_code = Column(String(50))
    created_at = Column(DateTime(timezone=True), default=_now)


class CalendarEventDB(Base):
    __tablename__ = "calendar_events"

    id = Column(String(36), primary_key=True, default=_uuid)
    created_by_identity_id = Column(String(64), index=True, info=BY_ID)
    title = Column(String(255))
    starts_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), default=_now)


class EventFlagDB(Base):
    __tablename__ = "event_flags"

    id = Column(String(36), primary_key=True, default=_uuid)
    identity_id = Column(String(64), index=True, info=BY_ID)
    event_id = Column(String(36))
    reason = Column(Text)
    created_at = Column(DateTime(timezone=True), default=_now)


class EventVoteDB(Base):
    __tablename__ = "event_votes"

    id = Column(String(36), primary_key=True, default=_uuid)
    identity_id = Column(String(64), index=True, info=BY_ID)
    event_id = Column(String(36))
    value = Column(Integer, default=1)
    created_at = Column(DateTime(timezone=True), default=_now)


class EmailPreferenceDB(Base):
    __tablename__ = "email_preferences"

    id = Column(String(36), primary_key=True, default=_uuid)
    identity_id = Column(String(64), unique=True, info=BY_ID)
    unsubscribed = Column(Boolean, default=False)
    updated_at = Column(DateTime(timezone=True), default=_now)


# ==================== EMAIL-KEYED RECORDS ====================

class FunnelResponseDB(Base):
    __tablename__ = "funnel_responses"

    id = Column(String(36), primary_key=True, default=_uuid)
    user_email = Column(String(255), index=True, info=BY_EMAIL)
    answers = Column(JSONType, default=dict)
    created_at = Column(DateTime(timezone=True), default=_now)


class BookingDB(Base):
    __tablename__ = "bookings"

    id = Column(String(36), primary_key=True, default=_uuid)
    listing_id = Column(String(36), index=True)
    user_email = Column(String(255), index=True, info=BY_EMAIL)
    status = Column(String(30), default="new")
    created_at = Column(DateTime(timezone=True), default=_now)


class BookingEventDB(Base):
    __tablename__ = "booking_events"

    id = Column(String(36), primary_key=True, default=_uuid)
    listing_id = Column(String(36), index=True)
    customer_email = Column(String(255), index=True, info=BY_EMAIL)
    starts_at = Column(DateTime(timezone=True))
    status = Column(String(30), default="confirmed")
    created_at = Column(DateTime(timezone=True), default=_now)


class BusinessApplicationDB(Base):
    __tablename__ = "business_applications"

    id = Column(String(36), primary_key=True, default=_uuid)
    email = Column(String(255), index=True, info=BY_EMAIL)
    business_name = Column(String(255))
    status = Column(String(30), default="pending")
    created_at = Column(DateTime(timezone=True), default=_now)


# ==================== RETAINED RECORDS ====================

class LifecycleAuditLogDB(Base):
    """
    Audit trail for profile writes, deletions and reconciliations.

    No foreign key to the identity: entries outlive the account they describe.
    """
    __tablename__ = "lifecycle_audit_log"

    id = Column(String(36), primary_key=True, default=_uuid)
    action = Column(String(50), nullable=False)
    subject_identity_id = Column(String(64), index=True, info=RETAINED)
    source = Column(String(50))
    performed_by = Column(String(100))
    success = Column(Boolean, default=True)
    details = Column(JSONType, default=dict)
    created_at = Column(DateTime(timezone=True), default=_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "action": self.action,
            "subject_identity_id": self.subject_identity_id,
            "source": self.source,
            "performed_by": self.performed_by,
            "success": bool(self.success),
            "details": self.details,
            "created_at": _iso(self.created_at),
        }


class DeletedAccountArchiveDB(Base):
    """Snapshot of a profile and its listings taken before a full deletion."""
    __tablename__ = "deleted_account_archive"

    id = Column(String(36), primary_key=True, default=_uuid)
    original_identity_id = Column(String(64), index=True, nullable=False, info=RETAINED)
    original_email = Column(String(255), index=True, info=RETAINED)
    original_name = Column(String(255))
    original_role = Column(String(30))
    profile_data = Column(JSONType, default=dict)
    owned_entities_data = Column(JSONType, default=list)
    hard_deleted_owned_entities = Column(Boolean, default=False)
    deleted_by = Column(String(100))
    deleted_at = Column(DateTime(timezone=True), default=_now)
