"""
Tests for the page fetcher: throttle-only retry with backoff.
"""
import asyncio
from decimal import Decimal

import pytest

from app.connectors.base import PageOptions, ShopifyAPIError, ShopifyThrottledError
from app.services.page_fetcher import PageFetchError, PageFetcher
from app.services.rate_governor import AdaptiveRateGovernor

from conftest import BASE_TIME, FakeOrderSource, make_orders


@pytest.fixture
def governor(clock):
    return AdaptiveRateGovernor(
        initial_interval=0.2,
        min_interval=0.1,
        max_interval=1.0,
        step=0.05,
        clock=clock,
        sleep=clock.sleep,
        name="shop-a"
    )


def _fetcher(source, governor, backoffs, **kwargs):
    async def record_sleep(delay):
        backoffs.append(delay)

    return PageFetcher(source, governor, sleep=record_sleep, **kwargs)


def _throttle():
    return ShopifyThrottledError("Exceeded 2 calls per second for api client")


class TestThrottleRecovery:

    def test_three_throttles_then_success(self, governor):
        source = FakeOrderSource(
            "shop-a",
            orders=make_orders(3),
            errors={1: _throttle(), 2: _throttle(), 3: _throttle()}
        )
        backoffs = []
        fetcher = _fetcher(source, governor, backoffs)

        page = asyncio.run(fetcher.fetch(PageOptions()))

        assert len(page.orders) == 3
        assert page.is_last
        assert len(source.calls) == 4
        # slowed to the cap by three throttles, then one step faster
        assert governor.interval == pytest.approx(0.95)
        assert governor.interval > 0.2
        assert fetcher.retry_count == 0
        assert fetcher.backoff == pytest.approx(1.0)
        assert backoffs == [pytest.approx(1.0)] * 3

    def test_backoff_grows_until_capped(self, governor):
        source = FakeOrderSource(
            "shop-a",
            orders=make_orders(1),
            errors={1: _throttle(), 2: _throttle(), 3: _throttle()}
        )
        backoffs = []
        fetcher = _fetcher(source, governor, backoffs, initial_backoff=0.25)

        asyncio.run(fetcher.fetch(PageOptions()))

        assert backoffs == [pytest.approx(0.25), pytest.approx(0.5), pytest.approx(1.0)]

    def test_gives_up_after_retry_budget(self, governor):
        source = FakeOrderSource(
            "shop-a",
            orders=make_orders(1),
            errors={n: _throttle() for n in range(1, 10)}
        )
        backoffs = []
        fetcher = _fetcher(source, governor, backoffs, max_retries=5)

        with pytest.raises(PageFetchError) as exc_info:
            asyncio.run(fetcher.fetch(PageOptions()))

        assert exc_info.value.throttled
        assert exc_info.value.retries == 5
        assert len(source.calls) == 6
        assert len(backoffs) == 5

    def test_on_retry_callback(self, governor):
        source = FakeOrderSource("shop-a", orders=make_orders(1), errors={1: _throttle()})
        seen = []
        fetcher = _fetcher(
            source, governor, [],
            on_retry=lambda attempt, error, delay: seen.append((attempt, type(error), delay))
        )

        asyncio.run(fetcher.fetch(PageOptions()))

        assert seen == [(1, ShopifyThrottledError, 1.0)]


class TestNonRetryableErrors:

    def test_api_error_is_not_retried(self, governor):
        source = FakeOrderSource("shop-a", errors={1: ShopifyAPIError("500 from shop", status_code=500)})
        backoffs = []
        fetcher = _fetcher(source, governor, backoffs)

        with pytest.raises(PageFetchError) as exc_info:
            asyncio.run(fetcher.fetch(PageOptions()))

        assert not exc_info.value.throttled
        assert len(source.calls) == 1
        assert backoffs == []

    def test_malformed_order_fails_the_page(self, governor):
        source = FakeOrderSource("shop-a", orders=[{"updated_at": BASE_TIME}])
        fetcher = _fetcher(source, governor, [])

        with pytest.raises(PageFetchError, match="malformed order"):
            asyncio.run(fetcher.fetch(PageOptions()))


def test_success_speeds_up_governor(governor):
    source = FakeOrderSource("shop-a", orders=make_orders(2))
    fetcher = _fetcher(source, governor, [])

    page = asyncio.run(fetcher.fetch(PageOptions()))

    assert governor.interval == pytest.approx(0.15)
    assert [order.order_id for order in page.orders] == [1, 2]
    assert page.orders[0].total_price == Decimal("10.00")
    assert fetcher.stats.success


def test_returns_next_cursor(governor):
    source = FakeOrderSource("shop-a", orders=make_orders(5))
    fetcher = _fetcher(source, governor, [])

    page = asyncio.run(fetcher.fetch(PageOptions(limit=2)))

    assert len(page.orders) == 2
    assert page.next_cursor == "2"
    assert not page.is_last
