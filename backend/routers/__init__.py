from .account import router as account_router, status_router as lifecycle_status_router
from .admin_accounts import router as admin_accounts_router

__all__ = [
    'account_router',
    'lifecycle_status_router',
    'admin_accounts_router',
]
