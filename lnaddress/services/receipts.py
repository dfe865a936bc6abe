import asyncio
import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from config import settings
from lnaddress.errors import PublishFailure
from lnaddress.models import Invoice, InvoiceState
from lnaddress.services.nostr_keys import nostr_signer
from lnaddress.services.relay import relay_publisher
from lnaddress.services.store import invoice_store, user_directory, zap_store

logger = logging.getLogger(__name__)

# Receipts that could not be published, after every retry or at shutdown, are reported here
operator_logger = logging.getLogger("lnaddress.operator")

ZAP_RECEIPT_KIND = 9735


def _first_tag(tags: List[List[str]], name: str) -> Optional[str]:
    for tag in tags:
        if isinstance(tag, list) and len(tag) >= 2 and tag[0] == name:
            return tag[1]
    return None


def build_zap_receipt(invoice: Invoice, zap_request: str, created_at: Optional[int] = None) -> Dict[str, Any]:
    """Unsigned kind 9735 receipt for a paid zap invoice"""
    request = json.loads(zap_request)
    request_tags = request.get("tags", [])

    tags = [["p", _first_tag(request_tags, "p")]]
    for name in ("e", "a"):
        value = _first_tag(request_tags, name)
        if value:
            tags.append([name, value])
    tags.append(["P", request["pubkey"]])
    tags.append(["bolt11", invoice.bolt11])
    tags.append(["description", zap_request])
    tags.append(["preimage", invoice.preimage])
    tags.append(["amount", str(invoice.amount_msats)])

    return {
        "kind": ZAP_RECEIPT_KIND,
        "created_at": created_at or int(time.time()),
        "tags": tags,
        "content": invoice.lnurlp_comment or ""
    }


@dataclass
class RetryPolicy:
    max_attempts: int = 5
    base_delay: float = 2.0
    max_delay: float = 60.0
    backoff_factor: float = 2.0

    def delay(self, attempt: int) -> float:
        """Delay before retrying after the given (0-indexed) failed attempt"""
        return min(self.base_delay * (self.backoff_factor ** attempt), self.max_delay)


class ReceiptEmitter:
    def __init__(
        self,
        invoices=invoice_store,
        zaps=zap_store,
        users=user_directory,
        signer=nostr_signer,
        publisher=relay_publisher,
        retry_policy: Optional[RetryPolicy] = None,
        sleep=asyncio.sleep
    ):
        self.invoices = invoices
        self.zaps = zaps
        self.users = users
        self.signer = signer
        self.publisher = publisher
        self.retry_policy = retry_policy or RetryPolicy(
            max_attempts=settings.RECEIPT_PUBLISH_MAX_ATTEMPTS,
            base_delay=settings.RECEIPT_PUBLISH_BASE_DELAY,
            max_delay=settings.RECEIPT_PUBLISH_MAX_DELAY
        )
        self.sleep = sleep

    async def emit_receipt(self, invoice_id: int) -> Optional[str]:
        """Publish the zap receipt for a paid invoice and record its event id.

        Returns the recorded receipt event id, or None when no receipt applies
        or publishing failed for good (the zap row keeps a null event id and
        the invoice can be enqueued again).
        """
        invoice = self.invoices.find_by_id(invoice_id)
        if invoice is None:
            logger.warning(f"Receipt requested for unknown invoice {invoice_id}")
            return None

        if invoice.state != InvoiceState.PAID:
            logger.debug(f"Invoice {invoice_id} is {InvoiceState(invoice.state).name}, no receipt")
            return None

        zap = self.zaps.find_by_id(invoice_id)
        if zap is None:
            return None

        if zap.event_id is not None:
            logger.debug(f"Receipt for invoice {invoice_id} already recorded: {zap.event_id}")
            return zap.event_id

        user = self.users.lookup(invoice.user_id)
        if user is None or user.disabled_zaps:
            logger.info(f"Zaps disabled for owner of invoice {invoice_id}, skipping receipt")
            return None

        try:
            event = self.signer.sign(build_zap_receipt(invoice, zap.request))
            event_id = await self._publish_with_retry(invoice_id, event)
        except (PublishFailure, ValueError) as e:
            operator_logger.error(
                f"Zap receipt for invoice {invoice_id} not published: {str(e)}. "
                f"Invoice stays PAID with no receipt; re-enqueue to retry."
            )
            return None

        if self.zaps.compare_and_set_receipt_event_id(invoice_id, event_id):
            logger.info(f"Recorded zap receipt {event_id} for invoice {invoice_id}")
            return event_id

        recorded = self.zaps.find_by_id(invoice_id)
        logger.info(
            f"Discarding duplicate zap receipt {event_id} for invoice {invoice_id}; "
            f"{recorded.event_id} already recorded"
        )
        return recorded.event_id

    async def _publish_with_retry(self, invoice_id: int, event: Dict[str, Any]) -> str:
        policy = self.retry_policy
        last_error = PublishFailure("No publish attempt made")

        for attempt in range(policy.max_attempts):
            try:
                return await self.publisher.publish(event)
            except PublishFailure as e:
                last_error = e
                if attempt + 1 >= policy.max_attempts:
                    break

                delay = policy.delay(attempt)
                logger.warning(
                    f"Receipt publish attempt {attempt + 1}/{policy.max_attempts} for invoice "
                    f"{invoice_id} failed: {str(e)}; retrying in {delay:.1f}s"
                )
                await self.sleep(delay)

        raise PublishFailure(f"gave up after {policy.max_attempts} attempts: {last_error}")


class ReceiptQueue:
    """Invoice ids waiting for a receipt, drained by a pool of worker tasks"""

    def __init__(self, emitter: ReceiptEmitter, workers: Optional[int] = None):
        self.emitter = emitter
        self.workers = workers or settings.RECEIPT_WORKERS
        self.queue: Optional[asyncio.Queue] = None
        self.tasks: List[asyncio.Task] = []
        # Worker number -> invoice id it is emitting
        self.in_flight: Dict[int, int] = {}

    @property
    def is_running(self) -> bool:
        return bool(self.tasks)

    @property
    def pending(self) -> int:
        return self.queue.qsize() if self.queue is not None else 0

    def start(self):
        """Start the worker tasks (requires a running event loop)"""
        if self.tasks:
            return
        if self.queue is None:
            self.queue = asyncio.Queue()
        self.tasks = [asyncio.create_task(self._worker(n)) for n in range(self.workers)]
        logger.info(f"Receipt queue started with {self.workers} workers")

    async def stop(self):
        """Cancel the workers and report every invoice whose receipt was left unpublished"""
        dropped = list(self.in_flight.values())

        for task in self.tasks:
            task.cancel()
        await asyncio.gather(*self.tasks, return_exceptions=True)
        self.tasks = []
        self.in_flight = {}

        if self.queue is not None:
            while not self.queue.empty():
                dropped.append(self.queue.get_nowait())
            self.queue = None

        if dropped:
            operator_logger.warning(
                f"Receipt queue stopped with {len(dropped)} unpublished zap receipts "
                f"(invoices {', '.join(str(invoice_id) for invoice_id in dropped)}); "
                f"they are re-enqueued on next start"
            )
        logger.info("Receipt queue stopped")

    def enqueue(self, invoice_id: int):
        if self.queue is None:
            self.queue = asyncio.Queue()
        self.queue.put_nowait(invoice_id)
        logger.debug(f"Enqueued invoice {invoice_id} for zap receipt")

    def enqueue_unpublished(self) -> int:
        """Enqueue every paid zap without a recorded receipt, e.g. after a restart"""
        emitter = self.emitter
        count = 0
        for zap in emitter.zaps.find_unpublished():
            invoice = emitter.invoices.find_by_id(zap.id)
            user = emitter.users.lookup(invoice.user_id)
            if user is None or user.disabled_zaps:
                continue
            self.enqueue(zap.id)
            count += 1

        if count:
            logger.info(f"Re-enqueued {count} unpublished zap receipts")
        return count

    async def join(self):
        if self.queue is not None:
            await self.queue.join()

    async def _worker(self, n: int):
        while True:
            invoice_id = await self.queue.get()
            self.in_flight[n] = invoice_id
            try:
                await self.emitter.emit_receipt(invoice_id)
            except Exception as e:
                logger.error(f"Receipt worker {n} failed on invoice {invoice_id}: {str(e)}")
            finally:
                self.in_flight.pop(n, None)
                self.queue.task_done()


# Global emitter and queue instances
receipt_emitter = ReceiptEmitter()
receipt_queue = ReceiptQueue(receipt_emitter)
