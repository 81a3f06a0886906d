"""
Tests for the SQLAlchemy order and credential stores (SQLite).
"""
import time
from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy import insert
from sqlalchemy.exc import IntegrityError

from app.connectors.base import CustomerSnapshot, OrderRecord
from app.models.shopify import ShopifyOrder
from app.services.order_store import EPOCH, BatchTimeoutError, OrderStore
from app.utils.logger import log

from conftest import BASE_TIME


def _order(order_id: int, minutes: int = 0, **kwargs) -> OrderRecord:
    updated_at = BASE_TIME + timedelta(minutes=minutes)
    params = dict(
        order_id=order_id,
        updated_at=updated_at,
        created_at=BASE_TIME,
        name=f"#{1000 + order_id}",
        total_price=Decimal("25.50"),
        financial_status="pending",
    )
    params.update(kwargs)
    return OrderRecord(**params)


class TestUpsert:

    def test_inserts_new_orders(self, order_store):
        outcome = order_store.upsert_order_batch([_order(1), _order(2)], "shop-a", "acct-1")

        assert outcome.committed
        assert outcome.written == 2
        assert outcome.duplicates_skipped == 0

        stored = order_store.get_order("shop-a", 1)
        assert stored.name == "#1001"
        assert stored.total_price == Decimal("25.50")

    def test_empty_batch_is_a_noop(self, order_store):
        outcome = order_store.upsert_order_batch([], "shop-a", "acct-1")
        assert outcome.committed
        assert outcome.written == 0

    def test_newer_version_updates_mutable_fields(self, order_store):
        order_store.upsert_order_batch([_order(1)], "shop-a", "acct-1")
        order_store.upsert_order_batch(
            [_order(1, minutes=5, financial_status="paid", tags="vip", total_price=Decimal("30.00"))],
            "shop-a", "acct-1"
        )

        stored = order_store.get_order("shop-a", 1)
        assert stored.financial_status == "paid"
        assert stored.tags == "vip"
        assert stored.total_price == Decimal("30.00")
        assert stored.updated_at == BASE_TIME + timedelta(minutes=5)

    def test_older_version_never_regresses(self, order_store):
        order_store.upsert_order_batch([_order(1, minutes=10, financial_status="refunded")], "shop-a", "acct-1")
        order_store.upsert_order_batch([_order(1, minutes=1, financial_status="pending")], "shop-a", "acct-1")

        stored = order_store.get_order("shop-a", 1)
        assert stored.financial_status == "refunded"
        assert stored.updated_at == BASE_TIME + timedelta(minutes=10)

    def test_ownership_and_identity_fields_are_not_rewritten(self, order_store):
        order_store.upsert_order_batch([_order(1)], "shop-a", "acct-1")
        order_store.upsert_order_batch([_order(1, minutes=5, name="#renamed")], "shop-a", "acct-2")

        orders, total = order_store.get_account_orders("acct-1")
        assert total == 1
        assert orders[0].name == "#1001"
        assert order_store.get_account_orders("acct-2") == ([], 0)

    def test_same_order_id_in_different_shops(self, order_store):
        order_store.upsert_order_batch([_order(1)], "shop-a", "acct-1")
        order_store.upsert_order_batch([_order(1)], "shop-b", "acct-1")

        _, total = order_store.get_account_orders("acct-1")
        assert total == 2

    def test_customer_snapshot_is_stored(self, order_store):
        customer = CustomerSnapshot(id=77, email="a@example.com", first_name="Ada", last_name="L", phone="")
        order_store.upsert_order_batch([_order(1, customer=customer)], "shop-a", "acct-1")

        assert order_store.get_order("shop-a", 1).customer == customer

    def test_three_decimal_currency_keeps_its_precision(self, order_store):
        order_store.upsert_order_batch(
            [_order(1, currency="KWD", total_price=Decimal("12.345"), total_tax=Decimal("1.125"))],
            "shop-a", "acct-1"
        )

        stored = order_store.get_order("shop-a", 1)
        assert stored.currency == "KWD"
        assert stored.total_price == Decimal("12.345")
        assert stored.total_tax == Decimal("1.125")

    def test_expired_deadline_writes_nothing(self, order_store):
        with pytest.raises(BatchTimeoutError):
            order_store.upsert_order_batch(
                [_order(1), _order(2)], "shop-a", "acct-1",
                deadline=time.monotonic() - 1
            )

        assert order_store.get_account_orders("acct-1") == ([], 0)


class TestWatermark:

    def test_epoch_when_shop_has_no_orders(self, order_store):
        assert order_store.get_latest_order_timestamp("shop-a", "acct-1") == EPOCH

    def test_latest_updated_at(self, order_store):
        order_store.upsert_order_batch([_order(1, minutes=3), _order(2, minutes=9), _order(3, minutes=1)], "shop-a", "acct-1")

        assert order_store.get_latest_order_timestamp("shop-a", "acct-1") == BASE_TIME + timedelta(minutes=9)

    def test_scoped_to_shop_and_account(self, order_store):
        order_store.upsert_order_batch([_order(1, minutes=9)], "shop-a", "acct-1")

        assert order_store.get_latest_order_timestamp("shop-b", "acct-1") == EPOCH
        assert order_store.get_latest_order_timestamp("shop-a", "acct-2") == EPOCH

    def test_synced_versions(self, order_store):
        order_store.upsert_order_batch([_order(1, minutes=3), _order(2, minutes=4)], "shop-a", "acct-1")

        versions = order_store.get_synced_versions("shop-a", [1, 2, 3])
        assert versions == {
            1: BASE_TIME + timedelta(minutes=3),
            2: BASE_TIME + timedelta(minutes=4),
        }
        assert order_store.get_synced_versions("shop-a", []) == {}


class TestReads:

    def test_account_orders_are_paginated(self, order_store):
        orders = [_order(i, created_at=BASE_TIME + timedelta(hours=i)) for i in range(1, 8)]
        order_store.upsert_order_batch(orders, "shop-a", "acct-1")

        page_one, total = order_store.get_account_orders("acct-1", page=1, page_size=3)
        page_three, _ = order_store.get_account_orders("acct-1", page=3, page_size=3)

        assert total == 7
        assert [order.order_id for order in page_one] == [7, 6, 5]
        assert [order.order_id for order in page_three] == [1]

    def test_invalid_paging_is_clamped(self, order_store):
        order_store.upsert_order_batch([_order(1)], "shop-a", "acct-1")

        orders, total = order_store.get_account_orders("acct-1", page=0, page_size=0)
        assert total == 1
        assert len(orders) == 1

    def test_missing_order(self, order_store):
        assert order_store.get_order("shop-a", 404) is None


class ClashingOrderStore(OrderStore):
    """Writes chosen orders with a plain insert built from overridden row values"""

    def __init__(self, session_factory, overrides):
        super().__init__(session_factory)
        self.overrides = overrides

    def _build_upsert(self, db, order, shop_name, account_id):
        if order.order_id not in self.overrides:
            return super()._build_upsert(db, order, shop_name, account_id)
        row = self._to_row(order, shop_name, account_id)
        row.update(self.overrides[order.order_id])
        return insert(ShopifyOrder.__table__).values(**row)


class TestConflictHandling:

    def test_primary_key_clash_is_skipped_and_batch_commits(self, session_factory):
        # order 1 is the first row in an empty table, so it gets id 1
        store = ClashingOrderStore(session_factory, {2: {"id": 1}})
        messages = []
        handler_id = log.add(messages.append, level="WARNING")
        try:
            outcome = store.upsert_order_batch([_order(1), _order(2), _order(3)], "shop-a", "acct-1")
        finally:
            log.remove(handler_id)

        assert outcome.committed
        assert outcome.written == 2
        assert outcome.duplicates_skipped == 1
        assert store.get_account_orders("acct-1")[1] == 2
        assert store.get_order("shop-a", 1) is not None
        assert store.get_order("shop-a", 2) is None
        assert store.get_order("shop-a", 3) is not None
        assert any("uniqueness conflict" in str(message) for message in messages)

    def test_other_integrity_errors_roll_back_the_batch(self, session_factory):
        store = ClashingOrderStore(session_factory, {2: {"updated_at": None}})

        with pytest.raises(IntegrityError):
            store.upsert_order_batch([_order(1), _order(2), _order(3)], "shop-a", "acct-1")

        assert store.get_account_orders("acct-1") == ([], 0)


def test_unique_violation_detection():
    duplicate = IntegrityError("INSERT ...", {}, Exception("UNIQUE constraint failed: shopify_orders.id"))
    not_null = IntegrityError("INSERT ...", {}, Exception("NOT NULL constraint failed: shopify_orders.updated_at"))

    assert OrderStore._is_unique_violation(duplicate)
    assert not OrderStore._is_unique_violation(not_null)


class TestCredentialStore:

    def test_save_and_list(self, credential_store):
        credential_store.save_shop_credential("shop-b", "acct-1", "token-b")
        credential_store.save_shop_credential("shop-a", "acct-1", "token-a")
        credential_store.save_shop_credential("shop-c", "acct-2", "token-c")

        credentials = credential_store.list_shop_credentials("acct-1")
        assert [c.shop_name for c in credentials] == ["shop-a", "shop-b"]
        assert credential_store.list_account_ids() == ["acct-1", "acct-2"]

    def test_save_replaces_token(self, credential_store):
        credential_store.save_shop_credential("shop-a", "acct-1", "old")
        credential_store.save_shop_credential("shop-a", "acct-1", "new")

        credentials = credential_store.list_shop_credentials("acct-1")
        assert len(credentials) == 1
        assert credentials[0].access_token == "new"

    def test_unknown_account_has_no_credentials(self, credential_store):
        assert credential_store.list_shop_credentials("nobody") == []
