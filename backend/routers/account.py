"""
Account Lifecycle API Router

Self-service endpoints for the signed-in identity.

Endpoints:
- GET    /api/lifecycle/status      - Module status and schema version
- POST   /api/account/profile       - Create or merge the caller's profile
- POST   /api/account/reconcile     - Reattach unlinked listings after sign-in
- DELETE /api/account               - Delete the caller's account

Security:
- Account endpoints require a bearer access token
- Request bodies never reach the logs; only identity ids and the email domain
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from database.schema import SCHEMA_VERSION
from lifecycle import DELETION_REGISTRY, AccountLifecycleService, ProfileFields
from logging_config import email_domain
from middleware.auth import AuthUser, get_current_user_required

from .responses import get_lifecycle_service, result_response

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/account", tags=["Account Lifecycle"])
status_router = APIRouter(prefix="/lifecycle", tags=["Account Lifecycle"])


@status_router.get("/status")
async def lifecycle_status():
    """Module status for uptime checks and deploy verification."""
    return {
        "module": "account_lifecycle",
        "status": "operational",
        "schema_version": SCHEMA_VERSION,
        "registry_entries": len(DELETION_REGISTRY),
        "owned_entity_tables": [entry.table for entry in DELETION_REGISTRY.owned_entity_entries()],
    }


@router.post("/profile")
async def upsert_profile(
    fields: ProfileFields,
    source: str = Query("api", max_length=50, description="Calling flow, for diagnostics"),
    current_user: AuthUser = Depends(get_current_user_required),
    service: AccountLifecycleService = Depends(get_lifecycle_service)
):
    """
    Create the caller's profile or merge the supplied fields into it.

    Omitted or null fields keep their stored value. ``role`` can only be set
    once; later attempts to change it are reported under
    ``immutable_conflicts`` and ignored.
    """
    result = await service.upsert(current_user, fields, source=source)
    return result_response(result)


@router.post("/reconcile")
async def reconcile_ownership(
    current_user: AuthUser = Depends(get_current_user_required),
    service: AccountLifecycleService = Depends(get_lifecycle_service)
):
    """
    Reattach listings left unlinked by a previous account deletion.

    Called by the client once per sign-in. Returns the reattached listings.
    """
    result = await service.reconcile(current_user)
    return result_response(result)


@router.delete("")
async def delete_own_account(
    hard_delete_owned_entities: bool = Query(False, description="Permanently remove owned listings instead of unlinking them"),
    owned_entity_ids: Optional[List[str]] = Query(None, description="Limit a hard delete to these listings"),
    current_user: AuthUser = Depends(get_current_user_required),
    service: AccountLifecycleService = Depends(get_lifecycle_service)
):
    """
    Delete the caller's account.

    By default owned listings are unlinked and can be reclaimed by signing up
    again with the same email. A step that fails is listed in the report's
    ``failures`` with ``status: partial_failure``; the response is still 200.
    """
    logger.info(
        f"Self-service account deletion requested by {current_user.id}",
        extra={"identity_id": current_user.id, "email_domain": email_domain(current_user.email)}
    )
    result = await service.delete_account(
        current_user.id,
        hard_delete_owned_entities=hard_delete_owned_entities,
        owned_entity_ids=owned_entity_ids,
        performed_by="self",
        source="self_service",
    )
    return result_response(result)
