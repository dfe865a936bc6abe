import asyncio
import logging
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from config import settings
from lnaddress.services.watcher import settlement_watcher

logger = logging.getLogger(__name__)


class SettlementScheduler:
    def __init__(self, watcher=settlement_watcher):
        self.watcher = watcher
        self.scheduler = AsyncIOScheduler()
        self.stream_task: Optional[asyncio.Task] = None
        self.is_running = False

    def start(self):
        """Start the background scheduler and the settlement stream"""
        if not self.is_running:
            self.scheduler.add_job(
                self.expire_invoices,
                IntervalTrigger(seconds=settings.EXPIRY_CHECK_INTERVAL_SECONDS),
                id='expire_invoices',
                replace_existing=True
            )
            logger.info(f"Invoice expiry sweep every {settings.EXPIRY_CHECK_INTERVAL_SECONDS} seconds")

            self.scheduler.add_job(
                self.reconcile_invoices,
                IntervalTrigger(seconds=settings.RECONCILE_INTERVAL_SECONDS),
                id='reconcile_invoices',
                replace_existing=True
            )
            logger.info(f"Pending invoice reconciliation every {settings.RECONCILE_INTERVAL_SECONDS} seconds")

            if settings.SETTLEMENT_STREAM_ENABLED:
                self.stream_task = asyncio.create_task(self.watcher.watch_forever())
                logger.info("Settlement stream enabled")
            else:
                logger.info("Settlement stream disabled (webhook and reconciliation only)")

            self.scheduler.start()
            self.is_running = True
            logger.info("Background scheduler started")

    async def stop(self):
        """Stop the background scheduler"""
        if self.is_running:
            self.scheduler.shutdown()
            if self.stream_task is not None:
                self.stream_task.cancel()
                await asyncio.gather(self.stream_task, return_exceptions=True)
                self.stream_task = None
            self.is_running = False
            logger.info("Background scheduler stopped")

    async def expire_invoices(self):
        """Expire PENDING invoices past their BOLT11 expiry"""
        try:
            expired = self.watcher.expire_stale_invoices()
            if expired:
                logger.info(f"Expired {expired} invoices")
            else:
                logger.debug("No invoices to expire")
        except Exception as e:
            logger.error(f"Error expiring invoices: {str(e)}")

    async def reconcile_invoices(self):
        """Catch settlements the stream may have missed"""
        try:
            settled = await self.watcher.reconcile_pending()
            if settled:
                logger.info(f"Reconciliation settled {settled} invoices")
        except Exception as e:
            logger.error(f"Error reconciling invoices: {str(e)}")


# Global scheduler instance
settlement_scheduler = SettlementScheduler()
