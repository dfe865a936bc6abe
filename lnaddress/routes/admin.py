from fastapi import APIRouter, Depends, HTTPException, status, Header
from typing import List
import logging

from lnaddress.errors import UnknownInvoice
from lnaddress.models import InvoiceState
from lnaddress.schemas import ErrorResponse, StatusResponse, UnpublishedZapResponse
from lnaddress.services.receipts import receipt_queue
from lnaddress.services.store import invoice_store, user_directory, zap_store
from lnaddress.services.watcher import settlement_watcher
from config import settings

logger = logging.getLogger(__name__)


def verify_admin_key(x_api_key: str = Header(..., description="Admin API key for authentication")):
    """Verify admin API key"""
    if x_api_key != settings.ADMIN_API_KEY:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid API key"
        )
    return x_api_key


router = APIRouter(prefix="/api/admin", tags=["admin"], dependencies=[Depends(verify_admin_key)])


@router.post(
    "/invoices/{invoice_id}/cancel",
    response_model=StatusResponse,
    summary="Cancel a pending invoice",
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}}
)
async def cancel_invoice(invoice_id: int):
    """Move a PENDING invoice to CANCELLED"""
    try:
        cancelled = settlement_watcher.cancel_invoice(invoice_id)
    except UnknownInvoice:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Invoice not found"
        )

    if not cancelled:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Invoice is not pending"
        )

    logger.info(f"Admin cancelled invoice {invoice_id}")
    return StatusResponse(status="success", message=f"Invoice {invoice_id} cancelled")


@router.get(
    "/zaps/unpublished",
    response_model=List[UnpublishedZapResponse],
    summary="Paid zaps without a recorded receipt"
)
async def list_unpublished_zaps():
    """List zaps whose receipt was never recorded"""
    unpublished = []
    for zap in zap_store.find_unpublished():
        invoice = invoice_store.find_by_id(zap.id)
        unpublished.append(UnpublishedZapResponse(
            invoice_id=invoice.id,
            user_id=invoice.user_id,
            amount_msats=invoice.amount_msats,
            bolt11=invoice.bolt11
        ))
    return unpublished


@router.post(
    "/zaps/{invoice_id}/redrive",
    response_model=StatusResponse,
    summary="Re-enqueue a zap receipt",
    description="""
    Queue the receipt of a paid zap again, for example after every relay
    rejected it. Zaps that already have a recorded receipt are refused.
    """,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}}
)
async def redrive_zap(invoice_id: int):
    """Re-enqueue an unpublished zap receipt"""
    invoice = invoice_store.find_by_id(invoice_id)
    zap = zap_store.find_by_id(invoice_id)
    if invoice is None or zap is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Zap not found"
        )

    if invoice.state != InvoiceState.PAID:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Invoice is not paid"
        )
    if zap.event_id is not None:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Receipt already recorded"
        )

    receipt_queue.enqueue(invoice_id)
    logger.info(f"Admin re-enqueued zap receipt for invoice {invoice_id}")
    return StatusResponse(status="success", message=f"Receipt for invoice {invoice_id} enqueued")


@router.post(
    "/users/{name}/disable-zaps",
    response_model=StatusResponse,
    summary="Disable zaps for a user",
    responses={404: {"model": ErrorResponse}}
)
async def disable_zaps(name: str):
    """Stop accepting zap requests and publishing receipts for a user"""
    if not user_directory.disable_zaps(name):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="User not found"
        )

    logger.info(f"Admin disabled zaps for {name}")
    return StatusResponse(status="success", message=f"Zaps disabled for {name}")
