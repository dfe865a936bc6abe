from fastapi import APIRouter, HTTPException, status
import logging

from lnaddress.schemas import ErrorResponse, SettlementNotification, SettlementResponse
from lnaddress.services.watcher import settlement_watcher

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/webhook", tags=["settlement"])


@router.post(
    "/settled",
    response_model=SettlementResponse,
    summary="Settlement notification",
    description="""
    Push a settlement notification for a paid invoice.

    The preimage is the proof of payment, so no other authentication is
    required. Repeated notifications for the same preimage are accepted and
    have no further effect; `paid` is true only for the delivery that moved
    the invoice to PAID.
    """,
    responses={500: {"model": ErrorResponse}}
)
async def settled(notification: SettlementNotification):
    """Apply a settlement pushed by the Lightning backend"""
    try:
        paid = settlement_watcher.handle_settlement(notification.preimage)
    except Exception as e:
        logger.error(f"Error handling settlement webhook: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to process settlement"
        )

    return SettlementResponse(status="OK", paid=paid)
