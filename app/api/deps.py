import hmac

from fastapi import Header, HTTPException, Request

from app.config import settings
from app.db import get_db
from app.services.masspay import MassPayClient
from app.services.payouts.dispatcher import PayoutDispatcher


def require_admin_api_key(
    x_api_key: str | None = Header(default=None),
    request: Request = None,
):
    """Guard operator endpoints with the shared ADMIN_API_KEY."""
    expected = settings.admin_api_key
    if not expected or not x_api_key or not hmac.compare_digest(x_api_key, expected):
        raise HTTPException(status_code=401, detail="Unauthorized")
    if request is not None:
        request.state.actor_type = "api_key"
    return {"actor_type": "api_key"}


def get_masspay_client() -> MassPayClient:
    return MassPayClient.from_settings()


def get_payout_dispatcher() -> PayoutDispatcher:
    return PayoutDispatcher()


__all__ = [
    "get_db",
    "get_masspay_client",
    "get_payout_dispatcher",
    "require_admin_api_key",
]
