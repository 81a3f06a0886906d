"""
Shop sync worker: pulls one shop's orders end-to-end.

Walks every page changed since the shop's watermark, commits them in
bounded batches and always ends with exactly one ShopSyncResult, whatever
happens inside. Nothing a single shop does can raise out of run().
"""
import asyncio
import time
from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import Awaitable, Callable, List, Optional

from app.connectors.base import BaseOrderSource, OrderRecord, PageOptions
from app.services.batch_writer import BatchWriteError, BatchWriter
from app.services.credential_store import ShopCredential
from app.services.order_store import EPOCH, OrderStore
from app.services.page_fetcher import PageFetchError, PageFetcher
from app.services.rate_governor import AdaptiveRateGovernor
from app.utils.logger import log


class SyncState(str, Enum):
    IDLE = "idle"
    FETCHING = "fetching"
    RATE_LIMITED = "rate_limited"
    BACKOFF = "backoff"
    BATCH_READY = "batch_ready"
    COMMITTING = "committing"
    ERROR = "error"
    TIMED_OUT = "timed_out"
    PANICKED = "panicked"
    REPORTING = "reporting"


@dataclass
class ShopSyncResult:
    """Outcome of one shop's sync run"""
    shop_name: str
    success: bool
    error_message: Optional[str] = None
    orders_synced: int = 0
    timed_out: bool = False
    duplicates_skipped: int = 0
    pages_fetched: int = 0
    duration_seconds: float = 0.0

    def to_dict(self) -> dict:
        return {
            "shop_name": self.shop_name,
            "success": self.success,
            "error_message": self.error_message,
            "orders_synced": self.orders_synced,
            "timed_out": self.timed_out,
            "duplicates_skipped": self.duplicates_skipped,
            "pages_fetched": self.pages_fetched,
            "duration_seconds": round(self.duration_seconds, 2),
        }


class ShopSyncWorker:
    """
    Syncs one shop

    The rate governor, retry state and in-memory batch all belong to this
    worker; nothing is shared with sibling shops except the database.
    """

    def __init__(
        self,
        credential: ShopCredential,
        source_factory: Callable[[ShopCredential], BaseOrderSource],
        order_store: OrderStore,
        batch_writer: BatchWriter,
        governor: Optional[AdaptiveRateGovernor] = None,
        batch_size: int = 250,
        max_retries: int = 5,
        initial_backoff: float = 1.0,
        shop_timeout: float = 1800.0,
        caller_deadline: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    ):
        """
        Args:
            credential: Shop to sync
            source_factory: Builds the remote order source for the credential
            order_store: Watermark and version lookups
            batch_writer: Commits batches
            governor: Rate governor (a fresh one from settings when omitted)
            batch_size: Orders per page and per committed batch
            max_retries: Throttled retries per page
            initial_backoff: First throttle backoff in seconds
            shop_timeout: Budget for the whole shop run in seconds
            caller_deadline: clock() value the caller needs the run finished by
        """
        self.credential = credential
        self.shop_name = credential.shop_name
        self.account_id = credential.account_id
        self.source_factory = source_factory
        self.order_store = order_store
        self.batch_writer = batch_writer
        self.governor = governor or AdaptiveRateGovernor.from_settings(name=credential.shop_name)
        self.batch_size = batch_size
        self.max_retries = max_retries
        self.initial_backoff = initial_backoff
        self.shop_timeout = shop_timeout
        self.caller_deadline = caller_deadline

        self._clock = clock
        self._sleep = sleep

        self.state = SyncState.IDLE
        self.orders_synced = 0
        self.duplicates_skipped = 0
        self.pages_fetched = 0
        self.batches_written = 0

    async def run(self) -> ShopSyncResult:
        """Sync the shop; never raises for shop-level problems"""
        started = self._clock()

        try:
            result = await self._sync(started)
        except Exception as e:
            self._set_state(SyncState.PANICKED)
            log.exception(f"{self.shop_name}: internal error during order sync")
            result = self._result(False, f"internal error: {type(e).__name__}: {e}")

        self._set_state(SyncState.REPORTING)
        result.duration_seconds = self._clock() - started

        if result.success:
            log.info(
                f"{self.shop_name}: synced {result.orders_synced} orders "
                f"in {result.duration_seconds:.1f}s ({result.pages_fetched} pages)"
            )
        else:
            log.error(
                f"{self.shop_name}: sync {'timed out' if result.timed_out else 'failed'} "
                f"after {result.orders_synced} orders: {result.error_message}"
            )
        return result

    async def _sync(self, started: float) -> ShopSyncResult:
        if not self.credential.is_valid():
            self._set_state(SyncState.ERROR)
            return self._result(False, "invalid shop name or token")

        deadline = started + self.shop_timeout
        if self.caller_deadline is not None:
            deadline = min(deadline, self.caller_deadline)

        source = self.source_factory(self.credential)
        try:
            watermark = await self._load_watermark()
            fetcher = PageFetcher(
                source,
                self.governor,
                max_retries=self.max_retries,
                initial_backoff=self.initial_backoff,
                sleep=self._sleep,
                on_retry=self._on_retry
            )

            options = PageOptions(
                limit=self.batch_size,
                updated_at_min=watermark if watermark > EPOCH else None
            )
            batch: List[OrderRecord] = []

            while True:
                if self._clock() >= deadline:
                    self._set_state(SyncState.TIMED_OUT)
                    return self._result(
                        False,
                        "operation cancelled or timed out: sync deadline exceeded",
                        timed_out=True
                    )

                self._set_state(SyncState.FETCHING)
                try:
                    page = await fetcher.fetch(options)
                except PageFetchError as e:
                    self._set_state(SyncState.ERROR)
                    log.debug(f"{self.shop_name}: fetch retry stats {fetcher.stats.to_dict()}")
                    return self._result(False, str(e))

                self.pages_fetched += 1
                orders = await self._drop_already_synced(page.orders, watermark)

                for order in orders:
                    batch.append(order)
                    if len(batch) >= self.batch_size:
                        error = await self._flush(batch)
                        if error:
                            return error
                        batch = []

                if page.is_last:
                    if batch:
                        error = await self._flush(batch)
                        if error:
                            return error
                    return self._result(True)

                options = replace(options, cursor=page.next_cursor)
        finally:
            await self._close_source(source)

    async def _close_source(self, source: BaseOrderSource) -> None:
        """Release the source; a failed close never changes the shop's result"""
        try:
            await source.close()
        except Exception as e:
            log.warning(f"{self.shop_name}: failed to close order source: {str(e)}")

    async def _flush(self, batch: List[OrderRecord]) -> Optional[ShopSyncResult]:
        """Commit the batch; returns a failure result if the shop must stop"""
        self._set_state(SyncState.BATCH_READY)
        self._set_state(SyncState.COMMITTING)
        try:
            outcome = await self.batch_writer.write(batch, self.shop_name, self.account_id)
        except BatchWriteError as e:
            self._set_state(SyncState.ERROR)
            return self._result(False, str(e))

        self.orders_synced += len(batch)
        self.duplicates_skipped += outcome.duplicates_skipped
        self.batches_written += 1
        return None

    async def _load_watermark(self) -> datetime:
        """Latest stored updated_at; a failed read falls back to a full sync"""
        try:
            return await asyncio.to_thread(
                self.order_store.get_latest_order_timestamp, self.shop_name, self.account_id
            )
        except Exception as e:
            log.warning(f"{self.shop_name}: failed to read sync watermark, running a full sync: {str(e)}")
            return EPOCH

    async def _drop_already_synced(self, orders: List[OrderRecord], watermark: datetime) -> List[OrderRecord]:
        """
        Remove orders the store already holds at this version

        Shopify's updated_at_min is inclusive, so the orders sitting exactly
        on the watermark come back on every run.
        """
        if watermark <= EPOCH:
            return orders

        candidates = [order.order_id for order in orders if order.updated_at <= watermark]
        if not candidates:
            return orders

        try:
            versions = await asyncio.to_thread(
                self.order_store.get_synced_versions, self.shop_name, candidates
            )
        except Exception as e:
            log.warning(f"{self.shop_name}: version lookup failed, re-writing boundary orders: {str(e)}")
            return orders

        return [
            order for order in orders
            if not (order.order_id in versions and versions[order.order_id] >= order.updated_at)
        ]

    def _on_retry(self, attempt: int, error: Exception, delay: float) -> None:
        self._set_state(SyncState.RATE_LIMITED)
        self._set_state(SyncState.BACKOFF)

    def _set_state(self, state: SyncState) -> None:
        if state != self.state:
            log.trace(f"{self.shop_name}: {self.state.value} -> {state.value}")
            self.state = state

    def _result(self, success: bool, error_message: Optional[str] = None, timed_out: bool = False) -> ShopSyncResult:
        return ShopSyncResult(
            shop_name=self.shop_name,
            success=success,
            error_message=error_message,
            orders_synced=self.orders_synced,
            timed_out=timed_out,
            duplicates_skipped=self.duplicates_skipped,
            pages_fetched=self.pages_fetched,
        )
