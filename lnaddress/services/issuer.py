import hashlib
import json
import logging
import secrets
from typing import Any, Dict, Optional

from config import settings
from lnaddress.errors import BackendUnavailable, InvalidZapRequest, UnknownUser, ZapsDisabled
from lnaddress.models import Invoice, InvoiceState
from lnaddress.services.lightning import lightning_backend
from lnaddress.services.nostr_keys import verify_event
from lnaddress.services.store import invoice_store, user_directory

logger = logging.getLogger(__name__)

ZAP_REQUEST_KIND = 9734
COMMENT_MAX_LENGTH = 100


def calc_metadata(name: str, domain: str) -> str:
    """LNURL-pay metadata string for a lightning address"""
    return json.dumps(
        [["text/identifier", f"{name}@{domain}"], ["text/plain", f"Sats for {name}"]],
        separators=(',', ':')
    )


def parse_zap_request(raw: str, amount_msats: int) -> Dict[str, Any]:
    """Validate a zap request (kind 9734) for an invoice of amount_msats"""
    try:
        event = json.loads(raw)
    except (TypeError, json.JSONDecodeError):
        raise InvalidZapRequest("Invalid zap request")

    if not isinstance(event, dict) or event.get("kind") != ZAP_REQUEST_KIND:
        raise InvalidZapRequest("Invalid zap request")

    tags = event.get("tags") or []
    p_tags = [tag for tag in tags if isinstance(tag, list) and len(tag) >= 2 and tag[0] == "p"]
    if len(p_tags) != 1:
        raise InvalidZapRequest("Zap request must have exactly one p tag")

    if not verify_event(event):
        raise InvalidZapRequest("Invalid zap request signature")

    for tag in tags:
        if isinstance(tag, list) and len(tag) >= 2 and tag[0] == "amount":
            try:
                requested_msats = int(tag[1])
            except ValueError:
                raise InvalidZapRequest("Malformed amount tag in zap request")
            if requested_msats != amount_msats:
                raise InvalidZapRequest("Zap request amount does not match invoice amount")
            break

    return event


class InvoiceIssuer:
    def __init__(
        self,
        store=invoice_store,
        users=user_directory,
        backend=lightning_backend,
        domain: Optional[str] = None,
        expiry_seconds: Optional[int] = None
    ):
        self.store = store
        self.users = users
        self.backend = backend
        self.domain = domain or settings.DOMAIN
        self.expiry_seconds = expiry_seconds or settings.INVOICE_EXPIRY_SECONDS

    async def create_invoice(
        self,
        user_id: int,
        amount_msats: int,
        comment: Optional[str] = None,
        zap_request: Optional[str] = None
    ) -> Invoice:
        """Issue a BOLT11 invoice for a user and persist it as PENDING.

        The backend is called before anything is written, so a failed call
        leaves no invoice behind. The invoice and its zap row (if any) are
        inserted in one transaction.

        Raises:
            UnknownUser: user_id does not exist
            ZapsDisabled: a zap was requested for a user with zaps disabled
            InvalidZapRequest: the zap request failed validation
            BackendUnavailable: the Lightning backend could not issue the invoice, or
                issued one whose hash or amount differs from the request
            ValueError: negative amount or oversized comment
        """
        if amount_msats < 0:
            raise ValueError("Amount must not be negative")
        if comment and len(comment) > COMMENT_MAX_LENGTH:
            raise ValueError(f"Comment longer than {COMMENT_MAX_LENGTH} characters")

        user = self.users.lookup(user_id)
        if user is None:
            raise UnknownUser(user_id)

        if zap_request is not None:
            if user.disabled_zaps:
                raise ZapsDisabled(user.name)
            parse_zap_request(zap_request, amount_msats)
            description = zap_request
        else:
            description = calc_metadata(user.name, self.domain)

        description_hash = hashlib.sha256(description.encode('utf-8')).hexdigest()
        preimage = secrets.token_bytes(32)
        payment_hash = hashlib.sha256(preimage).hexdigest()

        payment_request = await self.backend.create_payment_request(
            amount_msats=amount_msats,
            payment_hash=payment_hash,
            preimage=preimage.hex(),
            description_hash=description_hash,
            expiry=self.expiry_seconds
        )

        if payment_request.payment_hash != payment_hash:
            raise BackendUnavailable("Backend returned an invoice for a different payment hash")

        # LND issues an amountless invoice for 0 msats, which fails this check too
        try:
            invoice_msats = self.backend.get_amount_msats(payment_request.bolt11)
        except ValueError as e:
            raise BackendUnavailable(f"Backend returned an undecodable invoice: {str(e)}") from e
        if invoice_msats is None or invoice_msats != amount_msats:
            raise BackendUnavailable("Invoice amount mismatch")

        invoice = self.store.insert(
            Invoice(
                user_id=user.id,
                bolt11=payment_request.bolt11,
                amount_msats=amount_msats,
                preimage=preimage.hex(),
                lnurlp_comment=comment or None,
                state=int(InvoiceState.PENDING)
            ),
            zap_request=zap_request
        )

        logger.info(
            f"Created invoice {invoice.id} for {user.name}: {amount_msats} msats"
            f"{' (zap)' if zap_request is not None else ''}"
        )
        return invoice


# Global issuer instance
invoice_issuer = InvoiceIssuer()
