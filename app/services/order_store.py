"""
Order store

Durable side of the sync engine: idempotent batch upserts of normalized
orders, the per-shop watermark, and read access for the API.
"""
import time
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Tuple

from sqlalchemy import func, text
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from app.connectors.base import CustomerSnapshot, OrderRecord
from app.models.base import SessionLocal
from app.models.shopify import ShopifyOrder, MUTABLE_ORDER_COLUMNS
from app.utils.logger import log

# Watermark for a shop that has never been synced
EPOCH = datetime(1970, 1, 1)


class OrderStoreError(Exception):
    """Database failure in the order store"""


class BatchTimeoutError(OrderStoreError):
    """A batch ran past its deadline and was rolled back"""


@dataclass
class UpsertOutcome:
    """Result of one committed batch"""
    committed: bool
    written: int = 0
    duplicates_skipped: int = 0


class OrderStore:
    """SQLAlchemy-backed order storage"""

    def __init__(self, session_factory: sessionmaker = SessionLocal):
        self.session_factory = session_factory

    def upsert_order_batch(
        self,
        orders: List[OrderRecord],
        shop_name: str,
        account_id: str,
        deadline: Optional[float] = None
    ) -> UpsertOutcome:
        """
        Insert or update a batch of orders in one transaction

        New (shop, order) pairs are inserted. Existing ones get their mutable
        columns refreshed unless the stored row is newer. Any other
        uniqueness conflict on a row is skipped and counted.

        Args:
            orders: Orders to write
            shop_name: Owning shop
            account_id: Owning account
            deadline: time.monotonic() value after which the batch is abandoned

        Raises:
            BatchTimeoutError: deadline passed before commit (nothing written)
            SQLAlchemyError: any other database failure (nothing written)
        """
        if not orders:
            return UpsertOutcome(committed=True)

        db = self.session_factory()
        written = 0
        duplicates = 0

        try:
            with db.begin():
                self._apply_statement_timeout(db, deadline)

                for order in orders:
                    self._check_deadline(deadline, shop_name)

                    stmt = self._build_upsert(db, order, shop_name, account_id)
                    try:
                        with db.begin_nested():
                            db.execute(stmt)
                        written += 1
                    except IntegrityError as e:
                        if not self._is_unique_violation(e):
                            raise
                        duplicates += 1
                        log.warning(
                            f"{shop_name}: order {order.order_id} hit a uniqueness conflict, "
                            f"treating as already synced ({e.orig})"
                        )

                self._check_deadline(deadline, shop_name)

        finally:
            db.close()

        return UpsertOutcome(committed=True, written=written, duplicates_skipped=duplicates)

    def get_latest_order_timestamp(self, shop_name: str, account_id: str) -> datetime:
        """Max updated_at already stored for the shop; the epoch when there are no orders"""
        db = self.session_factory()
        try:
            latest = db.query(func.max(ShopifyOrder.updated_at)).filter(
                ShopifyOrder.shop_name == shop_name,
                ShopifyOrder.account_id == account_id
            ).scalar()
            return latest or EPOCH
        finally:
            db.close()

    def get_synced_versions(self, shop_name: str, order_ids: Iterable[int]) -> Dict[int, datetime]:
        """Stored updated_at for each of the given orders that is already in the store"""
        ids = list(order_ids)
        if not ids:
            return {}

        db = self.session_factory()
        try:
            rows = db.query(ShopifyOrder.shopify_order_id, ShopifyOrder.updated_at).filter(
                ShopifyOrder.shop_name == shop_name,
                ShopifyOrder.shopify_order_id.in_(ids)
            ).all()
            return {order_id: updated_at for order_id, updated_at in rows}
        finally:
            db.close()

    def get_account_orders(self, account_id: str, page: int = 1, page_size: int = 50) -> Tuple[List[OrderRecord], int]:
        """
        Orders across every shop of an account, newest first

        Returns:
            (orders on the requested page, total order count for the account)
        """
        if page < 1:
            page = 1
        if page_size < 1:
            page_size = 50

        db = self.session_factory()
        try:
            query = db.query(ShopifyOrder).filter(ShopifyOrder.account_id == account_id)
            total = query.count()
            rows = query.order_by(
                ShopifyOrder.created_at.desc(),
                ShopifyOrder.id.desc()
            ).offset((page - 1) * page_size).limit(page_size).all()

            return [self._to_record(row) for row in rows], total
        finally:
            db.close()

    def get_order(self, shop_name: str, order_id: int) -> Optional[OrderRecord]:
        """One order by its identity, or None"""
        db = self.session_factory()
        try:
            row = db.query(ShopifyOrder).filter(
                ShopifyOrder.shop_name == shop_name,
                ShopifyOrder.shopify_order_id == order_id
            ).first()
            return self._to_record(row) if row else None
        finally:
            db.close()

    def _build_upsert(self, db: Session, order: OrderRecord, shop_name: str, account_id: str):
        dialect = db.get_bind().dialect.name
        if dialect == "postgresql":
            insert = postgresql.insert
        elif dialect == "sqlite":
            insert = sqlite.insert
        else:
            raise OrderStoreError(f"upsert not supported on {dialect}")

        table = ShopifyOrder.__table__
        stmt = insert(table).values(**self._to_row(order, shop_name, account_id))
        return stmt.on_conflict_do_update(
            index_elements=["shop_name", "shopify_order_id"],
            set_={column: stmt.excluded[column] for column in MUTABLE_ORDER_COLUMNS},
            # Never regress an order to an older remote version
            where=table.c.updated_at <= stmt.excluded.updated_at
        )

    @staticmethod
    def _is_unique_violation(error: IntegrityError) -> bool:
        """True for duplicate-key errors (PostgreSQL 23505 or SQLite UNIQUE)"""
        if getattr(error.orig, "pgcode", None) == "23505":
            return True
        return "unique" in str(error.orig).lower()

    @staticmethod
    def _apply_statement_timeout(db: Session, deadline: Optional[float]) -> None:
        if deadline is None or db.get_bind().dialect.name != "postgresql":
            return
        remaining_ms = max(int((deadline - time.monotonic()) * 1000), 1)
        db.execute(text(f"SET LOCAL statement_timeout = {remaining_ms}"))

    @staticmethod
    def _check_deadline(deadline: Optional[float], shop_name: str) -> None:
        if deadline is not None and time.monotonic() >= deadline:
            raise BatchTimeoutError(f"batch for {shop_name} exceeded its time budget")

    @staticmethod
    def _to_row(order: OrderRecord, shop_name: str, account_id: str) -> dict:
        return {
            "shop_name": shop_name,
            "account_id": account_id,
            "shopify_order_id": order.order_id,
            "name": order.name,
            "order_number": order.order_number,
            "email": order.email,
            "created_at": order.created_at,
            "updated_at": order.updated_at,
            "cancelled_at": order.cancelled_at,
            "closed_at": order.closed_at,
            "processed_at": order.processed_at,
            "currency": order.currency,
            "total_price": order.total_price,
            "subtotal_price": order.subtotal_price,
            "total_discounts": order.total_discounts,
            "total_tax": order.total_tax,
            "financial_status": order.financial_status,
            "fulfillment_status": order.fulfillment_status,
            "test": order.test,
            "confirmed": order.confirmed,
            "taxes_included": order.taxes_included,
            "tags": order.tags,
            "cancel_reason": order.cancel_reason,
            "gateway": order.gateway,
            "browser_ip": order.browser_ip,
            "contact_email": order.contact_email,
            "phone": order.phone,
            "customer_id": order.customer.id,
            "customer_email": order.customer.email,
            "customer_first_name": order.customer.first_name,
            "customer_last_name": order.customer.last_name,
            "customer_phone": order.customer.phone,
            "synced_at": datetime.utcnow(),
        }

    @staticmethod
    def _to_record(row: ShopifyOrder) -> OrderRecord:
        def _money(value) -> Decimal:
            return Decimal(str(value)) if value is not None else Decimal("0")

        return OrderRecord(
            order_id=row.shopify_order_id,
            name=row.name or "",
            order_number=row.order_number,
            email=row.email or "",
            created_at=row.created_at,
            updated_at=row.updated_at,
            cancelled_at=row.cancelled_at,
            closed_at=row.closed_at,
            processed_at=row.processed_at,
            currency=row.currency or "",
            total_price=_money(row.total_price),
            subtotal_price=_money(row.subtotal_price),
            total_discounts=_money(row.total_discounts),
            total_tax=_money(row.total_tax),
            financial_status=row.financial_status or "",
            fulfillment_status=row.fulfillment_status or "",
            test=bool(row.test),
            confirmed=bool(row.confirmed),
            taxes_included=bool(row.taxes_included),
            tags=row.tags or "",
            cancel_reason=row.cancel_reason or "",
            gateway=row.gateway or "",
            browser_ip=row.browser_ip or "",
            contact_email=row.contact_email or "",
            phone=row.phone or "",
            customer=CustomerSnapshot(
                id=row.customer_id,
                email=row.customer_email or "",
                first_name=row.customer_first_name or "",
                last_name=row.customer_last_name or "",
                phone=row.customer_phone or "",
            ),
        )
