"""
Batch writer: commits one bounded batch of orders for a shop.

The database work runs in a worker thread so other shops keep fetching
while a batch commits. Each batch has its own time budget, separate from
the shop's overall deadline.
"""
import asyncio
import time
from typing import List

from app.connectors.base import OrderRecord
from app.services.order_store import BatchTimeoutError, OrderStore, UpsertOutcome
from app.utils.logger import log


class BatchWriteError(Exception):
    """A batch was rolled back; terminal for the shop's current run"""


class BatchWriter:
    """Writes order batches through the order store"""

    def __init__(self, order_store: OrderStore, batch_size: int = 250, timeout: float = 300.0):
        self.order_store = order_store
        self.batch_size = batch_size
        self.timeout = timeout

    async def write(self, orders: List[OrderRecord], shop_name: str, account_id: str) -> UpsertOutcome:
        """
        Commit a batch (all or nothing)

        Returns:
            UpsertOutcome for the committed batch

        Raises:
            BatchWriteError: the batch timed out or the database rejected it
        """
        if len(orders) > self.batch_size:
            raise ValueError(f"batch of {len(orders)} exceeds batch size {self.batch_size}")

        started = time.monotonic()
        deadline = started + self.timeout

        try:
            outcome = await asyncio.to_thread(
                self.order_store.upsert_order_batch, orders, shop_name, account_id, deadline
            )
        except BatchTimeoutError as e:
            log.error(f"{shop_name}: batch of {len(orders)} orders timed out after {self.timeout:.0f}s")
            raise BatchWriteError(f"batch timed out: {e}") from e
        except Exception as e:
            log.error(f"{shop_name}: batch of {len(orders)} orders failed: {str(e)}")
            raise BatchWriteError(f"failed to sync batch: {e}") from e

        if not outcome.committed:
            raise BatchWriteError("batch sync reported failure")

        log.debug(
            f"{shop_name}: committed {len(orders)} orders in {time.monotonic() - started:.2f}s "
            f"({outcome.duplicates_skipped} duplicates skipped)"
        )
        return outcome
