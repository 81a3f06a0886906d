"""
Tests for the APScheduler order sync job.
"""
import asyncio

import pytest

from app import scheduler as scheduler_module
from app.scheduler import ORDER_SYNC_JOB_ID, get_scheduled_jobs, scheduler, setup_scheduler, sync_all_orders
from app.services.shop_sync_worker import ShopSyncResult
from app.services.sync_coordinator import SyncReport
from app.utils.logger import log


@pytest.fixture
def clean_scheduler():
    scheduler.remove_all_jobs()
    yield scheduler
    scheduler.remove_all_jobs()


def _capture_logs(level="INFO"):
    messages = []
    handler_id = log.add(messages.append, level=level)
    return messages, handler_id


class StubCoordinator:
    reports = []

    async def sync_all_accounts(self):
        return self.reports


def test_setup_registers_one_interval_job(clean_scheduler):
    setup_scheduler()

    jobs = get_scheduled_jobs()
    assert [job["id"] for job in jobs] == [ORDER_SYNC_JOB_ID]
    assert "interval" in jobs[0]["trigger"]
    assert clean_scheduler.get_job(ORDER_SYNC_JOB_ID).max_instances == 1


def test_sync_all_orders_reports_totals(monkeypatch):
    StubCoordinator.reports = [
        SyncReport(account_id="acct-1", results={
            "shop-a": ShopSyncResult(shop_name="shop-a", success=True, orders_synced=4),
            "shop-b": ShopSyncResult(shop_name="shop-b", success=True, orders_synced=1),
        }),
    ]
    monkeypatch.setattr(scheduler_module, "SyncCoordinator", StubCoordinator)

    messages, handler_id = _capture_logs()
    try:
        asyncio.run(sync_all_orders())
    finally:
        log.remove(handler_id)

    assert any("completed: 5 orders across 1 accounts" in str(message) for message in messages)


def test_sync_all_orders_warns_on_failed_shops(monkeypatch):
    StubCoordinator.reports = [
        SyncReport(account_id="acct-1", results={
            "shop-a": ShopSyncResult(shop_name="shop-a", success=False, error_message="boom"),
        }),
    ]
    monkeypatch.setattr(scheduler_module, "SyncCoordinator", StubCoordinator)

    messages, handler_id = _capture_logs(level="WARNING")
    try:
        asyncio.run(sync_all_orders())
    finally:
        log.remove(handler_id)

    assert any("1 failed shops" in str(message) for message in messages)


def test_sync_all_orders_never_raises(monkeypatch):
    class BrokenCoordinator:
        async def sync_all_accounts(self):
            raise RuntimeError("database unavailable")

    monkeypatch.setattr(scheduler_module, "SyncCoordinator", BrokenCoordinator)

    messages, handler_id = _capture_logs(level="ERROR")
    try:
        asyncio.run(sync_all_orders())
    finally:
        log.remove(handler_id)

    assert any("database unavailable" in str(message) for message in messages)
