"""
Admin Account Lifecycle Router

Endpoints:
- POST /api/admin/accounts/delete    - Delete an account by identity id or email
- GET  /api/admin/accounts/resolve   - Classify an identity id or email
- GET  /api/admin/lifecycle/registry - List the deletion registry

Security:
- All endpoints require the admin role (token role or ADMIN_EMAILS)
- Admins cannot delete their own account through this endpoint
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, EmailStr, Field

from lifecycle import DELETION_REGISTRY, AccountLifecycleService
from lifecycle.resolver import looks_like_email
from middleware.auth import AuthUser, require_admin

from .responses import get_lifecycle_service, result_response

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["Admin Account Lifecycle"])


class AdminDeleteRequest(BaseModel):
    """Delete an account. Supply the identity id, the email, or both."""
    identity_id: Optional[str] = Field(None, description="Identity id of the account")
    email: Optional[EmailStr] = Field(None, description="Email, for accounts with records but no profile")
    hard_delete_owned_entities: bool = Field(False, description="Permanently remove owned listings")
    owned_entity_ids: Optional[List[str]] = Field(None, description="Limit a hard delete to these listings")

    model_config = {
        "json_schema_extra": {
            "example": {
                "email": "owner@example.com",
                "hard_delete_owned_entities": False
            }
        }
    }


def _is_self(admin: AuthUser, identity_id: Optional[str], email: Optional[str]) -> bool:
    if identity_id and identity_id.strip() == admin.id:
        return True
    return bool(email) and email.strip().lower() == admin.email.strip().lower()


@router.post("/accounts/delete")
async def admin_delete_account(
    request: AdminDeleteRequest,
    admin: AuthUser = Depends(require_admin),
    service: AccountLifecycleService = Depends(get_lifecycle_service)
):
    """
    Delete an account and everything it references.

    Accounts with a profile get the full teardown (dependents, email-keyed
    records, listings, profile, auth record). An email with records but no
    profile only has its email-keyed records and unowned listings removed.
    """
    email = str(request.email) if request.email else None
    reference = request.identity_id or email

    if _is_self(admin, request.identity_id, email):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Admins cannot delete their own account"
        )

    # An email may resolve to the admin's own identity.
    if reference and not request.identity_id:
        resolved = await service.resolve(reference)
        if resolved.ok and resolved.data.identity_id == admin.id:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Admins cannot delete their own account"
            )

    logger.info(
        f"Admin {admin.id} requested account deletion",
        extra={"performed_by": admin.id, "hard_delete_owned_entities": request.hard_delete_owned_entities}
    )
    result = await service.delete_account(
        reference,
        hard_delete_owned_entities=request.hard_delete_owned_entities,
        owned_entity_ids=request.owned_entity_ids,
        performed_by=f"admin:{admin.id}",
        source="admin",
    )
    return result_response(result)


@router.get("/accounts/resolve")
async def admin_resolve_account(
    identity_or_email: str = Query(..., description="Identity id or email"),
    admin: AuthUser = Depends(require_admin),
    service: AccountLifecycleService = Depends(get_lifecycle_service)
):
    """Report whether a value resolves to a full, partial or no account."""
    logger.info(
        f"Admin {admin.id} resolved an account by {'email' if looks_like_email(identity_or_email) else 'identity id'}"
    )
    result = await service.resolve(identity_or_email)
    return result_response(result)


@router.get("/lifecycle/registry")
async def admin_list_registry(admin: AuthUser = Depends(require_admin)):
    """Every table referencing an identity and what account deletion does to it."""
    return {
        "entries": DELETION_REGISTRY.to_list(),
        "count": len(DELETION_REGISTRY),
    }
