from .connection import get_db, get_engine, get_session_factory, init_db, dispose_engine, Base

from .models import (
    ProfileDB, AuthIdentityDB, BusinessListingDB, ProfileRole,
    ListingChangeRequestDB, ListingJobPostDB,
    UserNotificationDB, DismissedNotificationDB, SavedEventDB, SavedListingDB,
    CouponRedemptionDB, CalendarEventDB, EventFlagDB, EventVoteDB, EmailPreferenceDB,
    FunnelResponseDB, BookingDB, BookingEventDB, BusinessApplicationDB,
    LifecycleAuditLogDB, DeletedAccountArchiveDB,
)

__all__ = [
    'get_db', 'get_engine', 'get_session_factory', 'init_db', 'dispose_engine', 'Base',
    # Identity
    'ProfileDB', 'AuthIdentityDB', 'ProfileRole',
    # Owned entities
    'BusinessListingDB', 'ListingChangeRequestDB', 'ListingJobPostDB',
    # Identity-keyed dependents
    'UserNotificationDB', 'DismissedNotificationDB', 'SavedEventDB', 'SavedListingDB',
    'CouponRedemptionDB', 'CalendarEventDB', 'EventFlagDB', 'EventVoteDB', 'EmailPreferenceDB',
    # Email-keyed records
    'FunnelResponseDB', 'BookingDB', 'BookingEventDB', 'BusinessApplicationDB',
    # Retained
    'LifecycleAuditLogDB', 'DeletedAccountArchiveDB',
]
