"""
Sync coordinator: syncs every shop of an account concurrently.

Each shop runs in its own task with its own rate governor, so a slow or
failing shop never holds up or breaks its siblings. The coordinator only
raises when the account's credentials cannot be read at all.
"""
import asyncio
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Awaitable, Callable, Dict, List, Optional

import pytz

from app.config import Settings, get_settings
from app.connectors.base import BaseOrderSource
from app.connectors.shopify import ShopifyConnector
from app.services.batch_writer import BatchWriter
from app.services.credential_store import ShopCredential, ShopCredentialStore
from app.services.order_store import OrderStore
from app.services.rate_governor import AdaptiveRateGovernor
from app.services.shop_sync_worker import ShopSyncResult, ShopSyncWorker
from app.utils.logger import log

SourceFactory = Callable[[ShopCredential], BaseOrderSource]


@dataclass
class SyncReport:
    """Per-shop results of one account sync"""
    account_id: str
    results: Dict[str, ShopSyncResult] = field(default_factory=dict)
    started_at: datetime = field(default_factory=datetime.utcnow)
    completed_at: Optional[datetime] = None

    @property
    def fully_successful(self) -> bool:
        return all(result.success for result in self.results.values())

    @property
    def total_orders_synced(self) -> int:
        return sum(result.orders_synced for result in self.results.values())

    def to_dict(self) -> dict:
        return {
            "account_id": self.account_id,
            "fully_successful": self.fully_successful,
            "total_orders_synced": self.total_orders_synced,
            "shops_synced": sum(1 for result in self.results.values() if result.success),
            "total_shops": len(self.results),
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "results": {name: result.to_dict() for name, result in self.results.items()},
        }


def shopify_source_factory(settings: Settings) -> SourceFactory:
    """Source factory building a Shopify Admin API connector per shop"""
    def _build(credential: ShopCredential) -> BaseOrderSource:
        return ShopifyConnector(
            shop_name=credential.shop_name,
            access_token=credential.access_token,
            api_version=settings.shopify_api_version,
            timeout=settings.shopify_request_timeout
        )
    return _build


class SyncCoordinator:
    """Fans an account sync out to one worker per shop"""

    def __init__(
        self,
        credential_store: Optional[ShopCredentialStore] = None,
        order_store: Optional[OrderStore] = None,
        source_factory: Optional[SourceFactory] = None,
        settings: Optional[Settings] = None,
        governor_factory: Optional[Callable[[str], AdaptiveRateGovernor]] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    ):
        self.settings = settings or get_settings()
        self.credential_store = credential_store or ShopCredentialStore()
        self.order_store = order_store or OrderStore()
        self.source_factory = source_factory or shopify_source_factory(self.settings)
        self.governor_factory = governor_factory or (lambda name: AdaptiveRateGovernor.from_settings(name=name))
        self.batch_writer = BatchWriter(
            self.order_store,
            batch_size=self.settings.sync_batch_size,
            timeout=self.settings.batch_sync_timeout_seconds
        )
        self._sleep = sleep

    async def sync_account(self, account_id: str, deadline: Optional[datetime] = None) -> SyncReport:
        """
        Sync all shops connected to an account

        Args:
            account_id: Account to sync
            deadline: Optional wall-clock deadline (naive UTC or tz-aware)

        Returns:
            SyncReport with exactly one result per shop

        Raises:
            Exception: the credential store could not be read
        """
        report = SyncReport(account_id=account_id)

        try:
            credentials = await asyncio.to_thread(self.credential_store.list_shop_credentials, account_id)
        except Exception as e:
            log.error(f"Failed to load shop credentials for account {account_id}: {str(e)}")
            raise

        if not credentials:
            log.info(f"Account {account_id} has no connected shops, nothing to sync")
            report.completed_at = datetime.utcnow()
            return report

        log.info(f"Starting order sync for account {account_id} ({len(credentials)} shops)")

        caller_deadline = self._to_monotonic(deadline)
        completed: asyncio.Queue = asyncio.Queue(maxsize=len(credentials))

        limit = self.settings.sync_max_concurrent_shops
        semaphore = asyncio.Semaphore(limit) if limit > 0 else None

        async def _supervise(credential: ShopCredential):
            try:
                if semaphore:
                    async with semaphore:
                        result = await self._run_shop(credential, caller_deadline)
                else:
                    result = await self._run_shop(credential, caller_deadline)
            except Exception as e:
                log.exception(f"{credential.shop_name}: sync task crashed")
                result = ShopSyncResult(
                    shop_name=credential.shop_name,
                    success=False,
                    error_message=f"internal error: {type(e).__name__}: {e}"
                )
            await completed.put(result)

        await asyncio.gather(*(_supervise(credential) for credential in credentials))

        while not completed.empty():
            result = completed.get_nowait()
            report.results[result.shop_name] = result

        report.completed_at = datetime.utcnow()
        failed = [name for name, result in report.results.items() if not result.success]
        if failed:
            log.warning(
                f"Order sync for account {account_id} finished with {len(failed)} failed shops: {', '.join(sorted(failed))}"
            )
        else:
            log.info(f"Order sync for account {account_id} complete: {report.total_orders_synced} orders")

        return report

    async def sync_all_accounts(self) -> List[SyncReport]:
        """Sync every account with connected shops, one account at a time"""
        account_ids = await asyncio.to_thread(self.credential_store.list_account_ids)
        reports = []

        for account_id in account_ids:
            try:
                reports.append(await self.sync_account(account_id))
            except Exception as e:
                log.error(f"Skipping account {account_id}: {str(e)}")

        return reports

    async def _run_shop(self, credential: ShopCredential, caller_deadline: Optional[float]) -> ShopSyncResult:
        worker = ShopSyncWorker(
            credential=credential,
            source_factory=self.source_factory,
            order_store=self.order_store,
            batch_writer=self.batch_writer,
            governor=self.governor_factory(credential.shop_name),
            batch_size=self.settings.sync_batch_size,
            max_retries=self.settings.sync_max_retries,
            initial_backoff=self.settings.sync_initial_backoff_seconds,
            shop_timeout=self.settings.shop_sync_timeout_seconds,
            caller_deadline=caller_deadline,
            sleep=self._sleep
        )
        return await worker.run()

    @staticmethod
    def _to_monotonic(deadline: Optional[datetime]) -> Optional[float]:
        """Convert a wall-clock deadline into a time.monotonic() value"""
        if deadline is None:
            return None
        if deadline.tzinfo is not None:
            deadline = deadline.astimezone(pytz.UTC).replace(tzinfo=None)
        remaining = (deadline - datetime.utcnow()).total_seconds()
        return time.monotonic() + remaining
