"""
Scheduler for periodic order syncs

Uses APScheduler to sync every account with connected shops on a fixed interval.
"""
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
import time

from app.services.sync_coordinator import SyncCoordinator
from app.config import get_settings
from app.utils.logger import log

settings = get_settings()
scheduler = AsyncIOScheduler()

ORDER_SYNC_JOB_ID = "order_sync"


# Sync Functions

async def sync_all_orders():
    """Sync orders for every account (interval job)"""
    start = time.time()
    try:
        log.info("Starting scheduled order sync...")
        reports = await SyncCoordinator().sync_all_accounts()

        failed_shops = sum(
            1 for report in reports for result in report.results.values() if not result.success
        )
        total_orders = sum(report.total_orders_synced for report in reports)

        if failed_shops:
            log.warning(
                f"Scheduled order sync finished with {failed_shops} failed shops: "
                f"{total_orders} orders across {len(reports)} accounts in {time.time() - start:.1f}s"
            )
        else:
            log.info(
                f"Scheduled order sync completed: {total_orders} orders across "
                f"{len(reports)} accounts in {time.time() - start:.1f}s"
            )

    except Exception as e:
        log.error(f"Scheduled order sync error: {str(e)}")


def setup_scheduler():
    """Configure the sync jobs"""
    scheduler.add_job(
        sync_all_orders,
        trigger=IntervalTrigger(minutes=settings.sync_schedule_minutes),
        id=ORDER_SYNC_JOB_ID,
        name='Order Sync (all accounts)',
        replace_existing=True,
        max_instances=1
    )

    log.info(f"Scheduler configured: order sync every {settings.sync_schedule_minutes} minutes")


def start_scheduler():
    """Start the scheduler"""
    setup_scheduler()
    scheduler.start()
    log.info("Scheduler started")


def stop_scheduler():
    """Stop the scheduler"""
    if scheduler.running:
        scheduler.shutdown()
        log.info("Scheduler stopped")


def get_scheduled_jobs() -> list:
    """
    Get list of all scheduled jobs

    Returns:
        List of job info dicts
    """
    jobs = []

    for job in scheduler.get_jobs():
        next_run = getattr(job, "next_run_time", None)

        jobs.append({
            'id': job.id,
            'name': job.name,
            'next_run': next_run.isoformat() if next_run else None,
            'trigger': str(job.trigger)
        })

    return jobs
