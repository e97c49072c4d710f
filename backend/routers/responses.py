"""
Shared plumbing for lifecycle routers: service dependency and Result -> HTTP mapping.

    ok                  200
    validation_error    400
    not_found           404
    persistence_error   503
    anything else       500

The body is always the tagged result: ``{"ok": ..., "data" | "error": ...}``.
"""

from fastapi import Depends, status
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from lifecycle import AccountLifecycleService, Result

ERROR_STATUS = {
    "validation_error": status.HTTP_400_BAD_REQUEST,
    "not_found": status.HTTP_404_NOT_FOUND,
    "persistence_error": status.HTTP_503_SERVICE_UNAVAILABLE,
}


async def get_lifecycle_service(db: AsyncSession = Depends(get_db)) -> AccountLifecycleService:
    return AccountLifecycleService(db)


def result_response(result: Result) -> JSONResponse:
    if result.ok:
        status_code = status.HTTP_200_OK
    else:
        status_code = ERROR_STATUS.get(result.error_kind, status.HTTP_500_INTERNAL_SERVER_ERROR)
    return JSONResponse(status_code=status_code, content=jsonable_encoder(result.to_dict()))
