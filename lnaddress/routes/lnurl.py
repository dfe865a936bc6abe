from fastapi import APIRouter, HTTPException, Query, status
from fastapi.responses import JSONResponse
from typing import Optional
import logging

from lnaddress.errors import (
    BackendUnavailable,
    InvalidZapRequest,
    NameTaken,
    PubkeyTaken,
    UnknownUser,
    ZapsDisabled
)
from lnaddress.schemas import (
    ErrorResponse,
    LnurlErrorResponse,
    LnurlInvoiceResponse,
    LnurlPayResponse,
    RegisterRequest,
    RegisterResponse
)
from lnaddress.services.issuer import COMMENT_MAX_LENGTH, calc_metadata, invoice_issuer
from lnaddress.services.nostr_keys import nostr_signer
from lnaddress.services.store import user_directory
from config import settings

logger = logging.getLogger(__name__)
router = APIRouter(tags=["lnurl"])


def lnurl_error(reason: str, status_code: int = status.HTTP_400_BAD_REQUEST) -> JSONResponse:
    """LNURL-style error body"""
    return JSONResponse(status_code=status_code, content={"status": "ERROR", "reason": reason})


@router.get(
    "/.well-known/lnurlp/{name}",
    response_model=LnurlPayResponse,
    response_model_exclude_none=True,
    summary="LNURL-pay parameters",
    description="""
    First step of LNURL-pay for `name@DOMAIN`.

    Returns the callback URL, sendable range (msats) and metadata. When the
    service holds a Nostr key it also advertises zap support (`allowsNostr`,
    `nostrPubkey`).
    """,
    responses={400: {"model": LnurlErrorResponse}}
)
async def lnurlp(name: str):
    """LNURL-pay discovery endpoint"""
    user = user_directory.find_by_name(name)
    if user is None:
        return lnurl_error("User not found")

    allows_nostr = nostr_signer.is_enabled() and not user.disabled_zaps

    return LnurlPayResponse(
        callback=f"https://{settings.DOMAIN}/get-invoice/{name}",
        min_sendable=settings.MIN_SENDABLE,
        max_sendable=settings.MAX_SENDABLE,
        metadata=calc_metadata(name, settings.DOMAIN),
        comment_allowed=COMMENT_MAX_LENGTH,
        allows_nostr=True if allows_nostr else None,
        nostr_pubkey=nostr_signer.public_key_hex if allows_nostr else None
    )


@router.get(
    "/get-invoice/{name}",
    response_model=LnurlInvoiceResponse,
    summary="LNURL-pay callback",
    description="""
    Second step of LNURL-pay: issue a BOLT11 invoice.

    ### Query Parameters:
    - **amount**: amount in millisatoshis (required)
    - **comment**: optional payer comment (up to 100 characters)
    - **nostr**: optional zap request (kind 9734 event JSON)
    """,
    responses={400: {"model": LnurlErrorResponse}, 503: {"model": LnurlErrorResponse}}
)
async def get_invoice(
    name: str,
    amount: Optional[int] = Query(None, description="Amount in millisatoshis"),
    comment: Optional[str] = Query(None),
    nostr: Optional[str] = Query(None, description="Zap request event JSON")
):
    """Create an invoice for a lightning address payment"""
    if amount is None:
        return lnurl_error("Missing amount parameter")
    if amount < settings.MIN_SENDABLE or amount > settings.MAX_SENDABLE:
        return lnurl_error("Amount out of bounds")

    user = user_directory.find_by_name(name)
    if user is None:
        return lnurl_error("User not found")

    try:
        invoice = await invoice_issuer.create_invoice(
            user_id=user.id,
            amount_msats=amount,
            comment=comment or None,
            zap_request=nostr or None
        )
    except BackendUnavailable as e:
        logger.error(f"Invoice creation for {name} failed: {str(e)}")
        return lnurl_error("Lightning backend unavailable", status.HTTP_503_SERVICE_UNAVAILABLE)
    except (UnknownUser, ZapsDisabled, InvalidZapRequest, ValueError) as e:
        return lnurl_error(str(e))

    return LnurlInvoiceResponse(pr=invoice.bolt11)


@router.post(
    "/v1/register",
    response_model=RegisterResponse,
    summary="Register a lightning address",
    responses={400: {"model": ErrorResponse}}
)
async def register(request: RegisterRequest):
    """Register a name for a public key"""
    try:
        user = user_directory.register(request.name, request.pubkey.lower())
    except (NameTaken, PubkeyTaken) as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e)
        )
    except Exception as e:
        logger.error(f"Error registering {request.name}: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="ServerError"
        )

    return RegisterResponse(name=user.name)
