#!/usr/bin/env python3
"""
Account Order Sync Script

Runs one order sync by hand, outside the scheduler, and prints the
per-shop report.

Usage:
    python scripts/sync_account.py ACCOUNT_ID [--timeout 600]
    python scripts/sync_account.py --all

Examples:
    # Sync every shop connected to acct-1
    python scripts/sync_account.py acct-1

    # Give up on shops still running after 10 minutes
    python scripts/sync_account.py acct-1 --timeout 600

    # Sync every account with connected shops
    python scripts/sync_account.py --all
"""
import asyncio
import sys
import argparse
import json
from datetime import datetime, timedelta
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from app.models.base import init_db
from app.services.sync_coordinator import SyncCoordinator
from app.utils.logger import log


async def sync_account(account_id: str, timeout: float = None) -> bool:
    """Sync one account and print its report; True when every shop succeeded"""
    deadline = datetime.utcnow() + timedelta(seconds=timeout) if timeout else None

    report = await SyncCoordinator().sync_account(account_id, deadline=deadline)
    print(json.dumps(report.to_dict(), indent=2))

    return report.fully_successful


async def sync_all() -> bool:
    """Sync every account and print a summary line per account"""
    reports = await SyncCoordinator().sync_all_accounts()

    for report in reports:
        status = "OK" if report.fully_successful else "FAILED SHOPS"
        print(f"{report.account_id}: {report.total_orders_synced} orders, {len(report.results)} shops [{status}]")

    return all(report.fully_successful for report in reports)


if __name__ == "__main__":
    parser = argparse.ArgumentParser(
        description="Sync orders for one account or for every account",
        formatter_class=argparse.RawDescriptionHelpFormatter
    )
    parser.add_argument(
        "account_id", nargs="?",
        help="Account to sync"
    )
    parser.add_argument(
        "--all", action="store_true",
        help="Sync every account with connected shops"
    )
    parser.add_argument(
        "--timeout", type=float, default=None,
        help="Seconds before unfinished shops are reported as timed out"
    )

    args = parser.parse_args()

    if not args.all and not args.account_id:
        parser.error("an account id or --all is required")

    init_db()

    try:
        if args.all:
            ok = asyncio.run(sync_all())
        else:
            ok = asyncio.run(sync_account(args.account_id, timeout=args.timeout))
    except Exception as e:
        log.error(f"Order sync failed: {str(e)}")
        sys.exit(2)

    sys.exit(0 if ok else 1)
