import asyncio
import hashlib
import logging
from datetime import datetime, timezone
from typing import AsyncIterator, Callable, Optional

from config import settings
from lnaddress.errors import CorrelationConflict, DuplicateSettlement, UnknownInvoice
from lnaddress.models import Invoice, InvoiceState
from lnaddress.services.lightning import lightning_backend
from lnaddress.services.receipts import receipt_queue
from lnaddress.services.store import invoice_store, zap_store

logger = logging.getLogger(__name__)


class SettlementWatcher:
    """Drives invoices out of PENDING.

    Settlements come from the backend stream, the webhook or reconciliation;
    expiry and cancellation come from the scheduler and the admin routes.
    Every transition is a compare-and-set on the stored state, so any number of
    watchers may run against the same database.
    """

    def __init__(
        self,
        invoices=invoice_store,
        zaps=zap_store,
        backend=lightning_backend,
        enqueue: Optional[Callable[[int], None]] = None,
        sleep=asyncio.sleep
    ):
        self.invoices = invoices
        self.zaps = zaps
        self.backend = backend
        self.enqueue = enqueue or receipt_queue.enqueue
        self.sleep = sleep

    def _transition(self, invoice: Invoice, next_state: InvoiceState) -> bool:
        """CAS PENDING -> next_state, logging (not raising) when the invoice already moved on"""
        try:
            current = InvoiceState(invoice.state)
            if current.is_terminal:
                raise DuplicateSettlement(invoice.id, current)

            if not self.invoices.compare_and_set_state(invoice.id, InvoiceState.PENDING, next_state):
                raise CorrelationConflict(invoice.id, f"lost race moving PENDING -> {next_state.name}")
        except (DuplicateSettlement, CorrelationConflict) as e:
            logger.info(f"Ignoring {next_state.name} transition: {str(e)}")
            return False

        return True

    def handle_settlement(self, preimage: str) -> bool:
        """Apply one settlement notification. Returns True only for the delivery that paid the invoice."""
        preimage = preimage.strip().lower()

        invoice = self.invoices.find_by_preimage(preimage)
        if invoice is None:
            logger.warning(f"Settlement for unknown preimage {preimage[:16]}..., discarding")
            return False

        if not self._transition(invoice, InvoiceState.PAID):
            return False

        logger.info(f"Invoice {invoice.id} paid: {invoice.amount_msats} msats")

        if self.zaps.find_by_id(invoice.id) is not None:
            self.enqueue(invoice.id)

        return True

    async def run(self, stream: AsyncIterator[str]) -> int:
        """Consume a settlement stream until it ends. Returns the number of invoices paid."""
        paid = 0
        async for preimage in stream:
            try:
                if self.handle_settlement(preimage):
                    paid += 1
            except Exception as e:
                logger.error(f"Error handling settlement notification: {str(e)}")
        return paid

    async def watch_forever(self, retry_seconds: Optional[float] = None):
        """Follow the backend settlement stream, reconnecting after failures"""
        retry_seconds = retry_seconds if retry_seconds is not None else settings.SETTLEMENT_STREAM_RETRY_SECONDS

        while True:
            try:
                logger.info("Subscribing to settlement stream")
                await self.run(self.backend.subscribe_settlements())
                logger.warning("Settlement stream closed")
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Settlement stream failed: {str(e)}")

            # Notifications may have been missed while disconnected
            try:
                await self.reconcile_pending()
            except Exception as e:
                logger.error(f"Reconciliation after stream loss failed: {str(e)}")

            await self.sleep(retry_seconds)

    def expire_stale_invoices(self, now: Optional[datetime] = None) -> int:
        """Move PENDING invoices past their BOLT11 expiry to EXPIRED"""
        now = now or datetime.now(timezone.utc)
        expired = 0

        for invoice in self.invoices.find_by_state(InvoiceState.PENDING):
            try:
                expires_at = self.backend.get_expiry(invoice.bolt11)
            except ValueError as e:
                logger.warning(f"Cannot read expiry of invoice {invoice.id}: {str(e)}")
                continue

            if expires_at > now:
                continue

            if self._transition(invoice, InvoiceState.EXPIRED):
                logger.info(f"Invoice {invoice.id} expired at {expires_at.isoformat()}")
                expired += 1

        return expired

    async def reconcile_pending(self) -> int:
        """Ask the backend about every PENDING invoice and apply settlements it reports"""
        settled = 0

        for invoice in self.invoices.find_by_state(InvoiceState.PENDING):
            payment_hash = hashlib.sha256(bytes.fromhex(invoice.preimage)).hexdigest()
            if not await self.backend.is_settled(payment_hash):
                continue

            logger.info(f"Reconciliation found settled invoice {invoice.id}")
            if self.handle_settlement(invoice.preimage):
                settled += 1

        return settled

    def cancel_invoice(self, invoice_id: int) -> bool:
        invoice = self.invoices.find_by_id(invoice_id)
        if invoice is None:
            raise UnknownInvoice(invoice_id)

        if not self._transition(invoice, InvoiceState.CANCELLED):
            return False

        logger.info(f"Invoice {invoice_id} cancelled")
        return True


# Global watcher instance
settlement_watcher = SettlementWatcher()
