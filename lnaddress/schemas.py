from pydantic import BaseModel, ConfigDict, Field
from typing import Any, List, Optional


# Registration schemas
class RegisterRequest(BaseModel):
    name: str = Field(
        ...,
        min_length=1,
        max_length=255,
        description="Name for the lightning address (the part before the @)",
        examples=["alice"]
    )
    pubkey: str = Field(
        ...,
        pattern="^0[23][0-9a-fA-F]{64}$",
        description="Compressed secp256k1 public key, hex encoded (66 characters)",
        examples=["02" + "ab" * 32]
    )


class RegisterResponse(BaseModel):
    name: str


# LNURL-pay schemas
class LnurlPayResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    callback: str
    min_sendable: int = Field(..., alias="minSendable")
    max_sendable: int = Field(..., alias="maxSendable")
    tag: str = "payRequest"
    metadata: str
    comment_allowed: int = Field(100, alias="commentAllowed")
    allows_nostr: Optional[bool] = Field(None, alias="allowsNostr")
    nostr_pubkey: Optional[str] = Field(None, alias="nostrPubkey")


class LnurlInvoiceResponse(BaseModel):
    status: str = "OK"
    pr: str
    routes: List[Any] = []


# Settlement webhook
class SettlementNotification(BaseModel):
    preimage: str = Field(
        ...,
        pattern="^[0-9a-fA-F]{64}$",
        description="Hex preimage of the settled payment",
        examples=["00" * 32]
    )


class SettlementResponse(BaseModel):
    status: str
    paid: bool


# Admin schemas
class UnpublishedZapResponse(BaseModel):
    invoice_id: int
    user_id: int
    amount_msats: int
    bolt11: str


class StatusResponse(BaseModel):
    status: str
    message: Optional[str] = None


class HealthCheckResponse(BaseModel):
    status: str = "pass"
    version: str


class ErrorResponse(BaseModel):
    detail: str


class LnurlErrorResponse(BaseModel):
    status: str = "ERROR"
    reason: str
