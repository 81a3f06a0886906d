"""
Order synchronization endpoints
"""
from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, field_validator
from typing import Optional
from datetime import datetime, timedelta
from app.services.credential_store import ShopCredentialStore
from app.services.sync_coordinator import SyncCoordinator
from app.utils.logger import log

router = APIRouter(prefix="/sync", tags=["sync"])


class ShopCredentialRequest(BaseModel):
    shop_name: str
    account_id: str
    access_token: str

    @field_validator("shop_name", "account_id", "access_token")
    @classmethod
    def not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be blank")
        return value


# Lazy-init so the app can start before the database is reachable
_coordinator = None


def get_coordinator() -> SyncCoordinator:
    global _coordinator
    if _coordinator is None:
        _coordinator = SyncCoordinator()
    return _coordinator


def get_credential_store() -> ShopCredentialStore:
    return ShopCredentialStore()


@router.post("/accounts/{account_id}")
async def sync_account(
    account_id: str,
    timeout_seconds: Optional[float] = Query(None, gt=0, description="Give up on shops still running after this many seconds"),
    coordinator: SyncCoordinator = Depends(get_coordinator)
):
    """
    Sync orders for every shop connected to an account.

    Individual shop failures are reported per shop in the response;
    the request itself only fails when the account's shops cannot be loaded.
    """
    deadline = None
    if timeout_seconds:
        deadline = datetime.utcnow() + timedelta(seconds=timeout_seconds)

    try:
        report = await coordinator.sync_account(account_id, deadline=deadline)
    except Exception as e:
        log.error(f"Order sync error for account {account_id}: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))

    return report.to_dict()


@router.post("/credentials")
def save_credential(
    request: ShopCredentialRequest,
    store: ShopCredentialStore = Depends(get_credential_store)
):
    """Connect a shop to an account, or replace its access token"""
    try:
        store.save_shop_credential(request.shop_name, request.account_id, request.access_token)
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))

    return {
        "success": True,
        "shop_name": request.shop_name,
        "account_id": request.account_id
    }
