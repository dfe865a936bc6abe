import enum

from sqlalchemy import BigInteger, Boolean, Column, ForeignKey, Index, Integer, String, Text, false, text
from sqlalchemy.orm import relationship

from lnaddress.database import Base


class InvoiceState(enum.IntEnum):
    """Persisted invoice states. The integer values are stored in invoice.state and must never change."""

    PENDING = 0
    PAID = 1
    EXPIRED = 2
    CANCELLED = 3

    @property
    def is_terminal(self) -> bool:
        return self is not InvoiceState.PENDING


# Every transition starts from PENDING; terminal states have no way out
ALLOWED_TRANSITIONS = {
    InvoiceState.PENDING: {InvoiceState.PAID, InvoiceState.EXPIRED, InvoiceState.CANCELLED},
    InvoiceState.PAID: set(),
    InvoiceState.EXPIRED: set(),
    InvoiceState.CANCELLED: set(),
}


def is_valid_transition(current: InvoiceState, next_state: InvoiceState) -> bool:
    return InvoiceState(next_state) in ALLOWED_TRANSITIONS[InvoiceState(current)]


class User(Base):
    __tablename__ = "users"
    __table_args__ = (
        Index("idx_user_pk", "pubkey", unique=True),
        Index("idx_user_name", "name", unique=True),
    )

    id = Column(Integer, primary_key=True)
    pubkey = Column(String(66), nullable=False)  # compressed secp256k1 key, hex
    name = Column(String(255), nullable=False, unique=True)
    disabled_zaps = Column(Boolean, nullable=False, default=False, server_default=false())

    invoices = relationship("Invoice", back_populates="user")


class Invoice(Base):
    __tablename__ = "invoice"
    __table_args__ = (Index("idx_invoice_state", "state"),)

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    bolt11 = Column(String(2048), nullable=False)
    amount_msats = Column(BigInteger, nullable=False)
    preimage = Column(String(64), nullable=False)  # hex, set once at creation
    lnurlp_comment = Column(String(100), nullable=True)
    state = Column(Integer, nullable=False, default=int(InvoiceState.PENDING), server_default=text("0"))

    user = relationship("User", back_populates="invoices")
    zap = relationship("Zap", back_populates="invoice", uselist=False)


class Zap(Base):
    """Zap request correlated with an invoice. Shares the invoice primary key."""

    __tablename__ = "zaps"
    __table_args__ = (Index("idx_zaps_event_id", "event_id"),)

    id = Column(Integer, ForeignKey("invoice.id"), primary_key=True, autoincrement=False)
    request = Column(Text, nullable=False)  # signed kind 9734 event, verbatim
    event_id = Column(String(64), nullable=True)  # receipt event id once published

    invoice = relationship("Invoice", back_populates="zap")
