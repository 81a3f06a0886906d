"""
Synced order read endpoints
"""
import math

from fastapi import APIRouter, Depends, HTTPException, Query
from app.services.order_store import OrderStore

router = APIRouter(prefix="/orders", tags=["orders"])


def get_order_store() -> OrderStore:
    return OrderStore()


@router.get("/accounts/{account_id}")
def list_account_orders(
    account_id: str,
    page: int = Query(1, description="Page number (values below 1 are treated as 1)"),
    page_size: int = Query(50, le=250, description="Orders per page"),
    store: OrderStore = Depends(get_order_store)
):
    """Orders across all of an account's shops, newest first"""
    if page < 1:
        page = 1
    if page_size < 1:
        page_size = 50

    orders, total = store.get_account_orders(account_id, page=page, page_size=page_size)

    return {
        "account_id": account_id,
        "orders": [order.to_dict() for order in orders],
        "total_count": total,
        "total_pages": math.ceil(total / page_size) if total else 0,
        "current_page": page
    }


@router.get("/{shop_name}/{order_id}")
def get_order(
    shop_name: str,
    order_id: int,
    store: OrderStore = Depends(get_order_store)
):
    """One synced order"""
    order = store.get_order(shop_name, order_id)
    if order is None:
        raise HTTPException(status_code=404, detail=f"Order {order_id} not found for shop {shop_name}")

    return {"shop_name": shop_name, "order": order.to_dict()}
