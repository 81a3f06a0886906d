"""
Shared fixtures for the order sync tests.

Every test gets its own SQLite file under tmp_path; remote shops are
replaced by a scripted in-memory order source.
"""
import asyncio
import os
import tempfile
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

# Settings are read once and cached, so the environment must be set up
# before anything under app/ is imported.
os.environ.setdefault("LOG_TO_FILE", "false")
os.environ.setdefault("ENABLE_SCHEDULER", "false")
os.environ.setdefault("LOG_LEVEL", "WARNING")
os.environ.setdefault(
    "DATABASE_URL",
    "sqlite:///" + os.path.join(tempfile.mkdtemp(prefix="shopsync-tests-"), "shopsync.db")
)

import pytest
from sqlalchemy.orm import sessionmaker

from app.connectors.base import (
    BaseOrderSource,
    OrderPage,
    OrderRecord,
    PageOptions,
)
from app.models.base import create_db_engine, init_db
from app.services.credential_store import ShopCredentialStore
from app.services.order_store import OrderStore
from app.services.rate_governor import AdaptiveRateGovernor


BASE_TIME = datetime(2024, 1, 1, 0, 0, 0)


def make_raw_order(order_id: int, updated_at: datetime, **extra) -> Dict[str, Any]:
    """Raw remote order with the fields the fake source understands"""
    raw = {
        "id": order_id,
        "name": f"#{1000 + order_id}",
        "created_at": updated_at,
        "updated_at": updated_at,
        "total_price": "10.00",
        "financial_status": "paid",
    }
    raw.update(extra)
    return raw


def make_orders(count: int, start_id: int = 1, start: datetime = BASE_TIME) -> List[Dict[str, Any]]:
    """count orders with strictly increasing updated_at"""
    return [
        make_raw_order(start_id + i, start + timedelta(minutes=i))
        for i in range(count)
    ]


class FakeOrderSource(BaseOrderSource):
    """
    Scripted remote shop

    Serves its orders like the Shopify orders endpoint: filtered by
    updated_at_min (inclusive), sorted by updated_at, paged by limit.
    `errors` maps a 1-based call number to the exception that call raises.
    """

    def __init__(self, shop_name: str, orders: Optional[List[Dict[str, Any]]] = None,
                 errors: Optional[Dict[int, Exception]] = None, on_call=None):
        super().__init__(shop_name, source_name="fake")
        self.orders = list(orders or [])
        self.errors = dict(errors or {})
        self.on_call = on_call
        self.calls: List[PageOptions] = []
        self.closed = False
        self._snapshot: List[Dict[str, Any]] = []

    async def list_orders_page(self, options: PageOptions) -> OrderPage:
        self.calls.append(options)
        if self.on_call:
            self.on_call(len(self.calls))

        error = self.errors.get(len(self.calls))
        if error is not None:
            raise error

        if options.cursor is None:
            matching = [
                order for order in self.orders
                if options.updated_at_min is None or order["updated_at"] >= options.updated_at_min
            ]
            self._snapshot = sorted(matching, key=lambda order: (order["updated_at"], order.get("id", 0)))
            offset = 0
        else:
            offset = int(options.cursor)

        page = self._snapshot[offset:offset + options.limit]
        next_offset = offset + options.limit
        next_cursor = str(next_offset) if next_offset < len(self._snapshot) else None
        return OrderPage(orders=page, next_cursor=next_cursor)

    def normalize_order(self, raw: Dict[str, Any]) -> OrderRecord:
        return OrderRecord(
            order_id=int(raw["id"]),
            name=raw.get("name", ""),
            created_at=self._normalize_date(raw.get("created_at")),
            updated_at=self._normalize_date(raw["updated_at"]),
            total_price=self._parse_decimal(raw.get("total_price")),
            financial_status=raw.get("financial_status") or "",
        )

    async def close(self) -> None:
        self.closed = True


class FakeClock:
    """Manually advanced monotonic clock with a matching async sleep"""

    def __init__(self, start: float = 0.0):
        self.now = start
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    async def sleep(self, delay: float) -> None:
        self.sleeps.append(delay)
        self.now += max(delay, 0)
        await asyncio.sleep(0)


async def no_sleep(delay: float) -> None:
    await asyncio.sleep(0)


def fast_governor(name: str = "") -> AdaptiveRateGovernor:
    """Governor with millisecond intervals so tests run quickly"""
    return AdaptiveRateGovernor(
        initial_interval=0.001,
        min_interval=0.001,
        max_interval=0.002,
        step=0.001,
        name=name
    )


@pytest.fixture
def session_factory(tmp_path):
    engine = create_db_engine(f"sqlite:///{tmp_path / 'orders.db'}")
    init_db(bind=engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


@pytest.fixture
def order_store(session_factory):
    return OrderStore(session_factory)


@pytest.fixture
def credential_store(session_factory):
    return ShopCredentialStore(session_factory)


@pytest.fixture
def clock():
    return FakeClock()
