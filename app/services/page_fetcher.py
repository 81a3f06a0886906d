"""
Page fetcher: one page of orders per call, paced by the shop's rate governor.

Only throttling is treated as transient. A throttled request slows the
governor, waits out an exponential backoff and is retried up to the retry
budget; every other error ends the shop's run.
"""
import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, List, Optional

from app.connectors.base import (
    BaseOrderSource,
    OrderRecord,
    PageOptions,
    ShopifyThrottledError,
)
from app.services.rate_governor import AdaptiveRateGovernor
from app.utils.logger import log
from app.utils.retry import RetryStats, calculate_backoff


class PageFetchError(Exception):
    """A page could not be fetched; terminal for the shop's current run"""

    def __init__(self, message: str, retries: int = 0, throttled: bool = False):
        super().__init__(message)
        self.retries = retries
        self.throttled = throttled


@dataclass
class FetchedPage:
    """Normalized orders from one page plus the cursor for the next one"""
    orders: List[OrderRecord]
    next_cursor: Optional[str] = None

    @property
    def is_last(self) -> bool:
        return self.next_cursor is None


class PageFetcher:
    """
    Fetches pages for one shop

    Retry count and backoff live on the instance and reset after every
    successful page, so one fetcher serves a whole shop run.
    """

    def __init__(
        self,
        source: BaseOrderSource,
        governor: AdaptiveRateGovernor,
        max_retries: int = 5,
        initial_backoff: float = 1.0,
        max_backoff: Optional[float] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        on_retry: Optional[Callable[[int, Exception, float], None]] = None
    ):
        """
        Args:
            source: Remote order source for the shop
            governor: The shop's rate governor
            max_retries: Throttled retries allowed per page
            initial_backoff: First backoff delay in seconds
            max_backoff: Backoff cap (defaults to the governor's slowest interval)
            sleep: Awaitable sleep, replaceable in tests
            on_retry: Callback called on each retry (attempt, error, delay)
        """
        self.source = source
        self.governor = governor
        self.max_retries = max_retries
        self.initial_backoff = initial_backoff
        self.max_backoff = max_backoff if max_backoff is not None else governor.max_interval
        self._sleep = sleep
        self._on_retry = on_retry

        self.retry_count = 0
        self.backoff = initial_backoff
        self.stats = RetryStats()

    async def fetch(self, options: PageOptions) -> FetchedPage:
        """
        Fetch and normalize one page

        Raises:
            PageFetchError: retry budget exhausted or a non-throttling error
        """
        while True:
            await self.governor.wait()

            try:
                page = await self.source.list_orders_page(options)
            except ShopifyThrottledError as e:
                if self.retry_count >= self.max_retries:
                    self.stats.record_attempt(error=e)
                    log.error(
                        f"{self.source.shop_name}: still throttled after {self.retry_count} retries, giving up"
                    )
                    raise PageFetchError(
                        f"failed to list orders after {self.retry_count} retries: {e}",
                        retries=self.retry_count,
                        throttled=True
                    ) from e

                self.retry_count += 1
                self.governor.adjust(True)

                delay = self.backoff
                self.stats.record_attempt(error=e, delay=delay)
                log.warning(
                    f"{self.source.shop_name}: throttled (retry {self.retry_count}/{self.max_retries}), "
                    f"backing off {delay:.1f}s, interval now {self.governor.interval * 1000:.0f}ms"
                )

                if self._on_retry:
                    self._on_retry(self.retry_count, e, delay)

                await self._sleep(delay)
                self.backoff = calculate_backoff(
                    self.retry_count + 1,
                    base_delay=self.initial_backoff,
                    max_delay=self.max_backoff,
                    jitter=False
                )
                continue
            except Exception as e:
                self.stats.record_attempt(error=e)
                raise PageFetchError(f"failed to list orders: {e}", retries=self.retry_count) from e

            if self.retry_count:
                log.info(f"{self.source.shop_name}: page fetched after {self.retry_count} retries")

            self.stats.record_attempt()
            self.stats.mark_success()
            self.governor.adjust(False)
            self.retry_count = 0
            self.backoff = self.initial_backoff

            try:
                orders = [self.source.normalize_order(raw) for raw in page.orders]
            except (KeyError, TypeError, ValueError) as e:
                raise PageFetchError(f"malformed order in page: {e}") from e

            return FetchedPage(orders=orders, next_cursor=page.next_cursor)
