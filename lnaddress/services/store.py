import logging
from typing import List, Optional

from sqlalchemy.exc import IntegrityError

from lnaddress.database import SessionLocal
from lnaddress.errors import NameTaken, PubkeyTaken
from lnaddress.models import Invoice, InvoiceState, User, Zap, is_valid_transition

logger = logging.getLogger(__name__)


class InvoiceStore:
    """Durable invoice records.

    Every call opens and closes its own session, so nothing is held open while
    callers wait on the Lightning backend or the relays. Instances returned are
    detached snapshots; state changes only go through compare_and_set_state.
    """

    def __init__(self, session_factory=SessionLocal):
        self.session_factory = session_factory

    def insert(self, invoice: Invoice, zap_request: Optional[str] = None) -> Invoice:
        """Persist an invoice and, for zaps, its correlation row in one transaction"""
        db = self.session_factory()
        try:
            db.add(invoice)
            db.flush()  # assigns invoice.id for the shared zap primary key

            if zap_request is not None:
                db.add(Zap(id=invoice.id, request=zap_request))

            db.commit()
            db.refresh(invoice)
            return invoice
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def find_by_id(self, invoice_id: int) -> Optional[Invoice]:
        db = self.session_factory()
        try:
            return db.query(Invoice).filter(Invoice.id == invoice_id).first()
        finally:
            db.close()

    def find_by_preimage(self, preimage: str) -> Optional[Invoice]:
        """Look up the invoice committed to a preimage (random 32 bytes, so at most one)"""
        db = self.session_factory()
        try:
            return db.query(Invoice).filter(Invoice.preimage == preimage).one_or_none()
        finally:
            db.close()

    def find_by_state(self, state: InvoiceState) -> List[Invoice]:
        db = self.session_factory()
        try:
            return db.query(Invoice).filter(Invoice.state == int(state)).order_by(Invoice.id).all()
        finally:
            db.close()

    def compare_and_set_state(self, invoice_id: int, expected: InvoiceState, next_state: InvoiceState) -> bool:
        """Move an invoice from expected to next_state in a single conditional UPDATE.

        Returns False when the stored state is no longer `expected`.
        """
        if not is_valid_transition(expected, next_state):
            raise ValueError(f"Invalid invoice transition {InvoiceState(expected).name} -> {InvoiceState(next_state).name}")

        db = self.session_factory()
        try:
            updated = db.query(Invoice).filter(
                Invoice.id == invoice_id,
                Invoice.state == int(expected)
            ).update({Invoice.state: int(next_state)}, synchronize_session=False)
            db.commit()
            return updated == 1
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()


class ZapStore:
    """Durable zap request correlations, keyed by invoice id"""

    def __init__(self, session_factory=SessionLocal):
        self.session_factory = session_factory

    def find_by_id(self, invoice_id: int) -> Optional[Zap]:
        db = self.session_factory()
        try:
            return db.query(Zap).filter(Zap.id == invoice_id).first()
        finally:
            db.close()

    def compare_and_set_receipt_event_id(self, invoice_id: int, event_id: str) -> bool:
        """Record the receipt event id if none is recorded yet"""
        db = self.session_factory()
        try:
            updated = db.query(Zap).filter(
                Zap.id == invoice_id,
                Zap.event_id.is_(None)
            ).update({Zap.event_id: event_id}, synchronize_session=False)
            db.commit()
            return updated == 1
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def find_unpublished(self) -> List[Zap]:
        """Zaps whose invoice is paid but whose receipt was never recorded"""
        db = self.session_factory()
        try:
            return db.query(Zap).join(Invoice, Invoice.id == Zap.id).filter(
                Invoice.state == int(InvoiceState.PAID),
                Zap.event_id.is_(None)
            ).order_by(Zap.id).all()
        finally:
            db.close()


class UserDirectory:
    def __init__(self, session_factory=SessionLocal):
        self.session_factory = session_factory

    def lookup(self, user_id: int) -> Optional[User]:
        db = self.session_factory()
        try:
            return db.query(User).filter(User.id == user_id).first()
        finally:
            db.close()

    def find_by_name(self, name: str) -> Optional[User]:
        db = self.session_factory()
        try:
            return db.query(User).filter(User.name == name).first()
        finally:
            db.close()

    def register(self, name: str, pubkey: str) -> User:
        db = self.session_factory()
        try:
            if db.query(User).filter(User.name == name).first():
                raise NameTaken(name)
            if db.query(User).filter(User.pubkey == pubkey).first():
                raise PubkeyTaken(pubkey)

            user = User(name=name, pubkey=pubkey, disabled_zaps=False)
            db.add(user)
            db.commit()
            db.refresh(user)
            logger.info(f"Registered user {name}")
            return user
        except IntegrityError:
            # Lost a race with a concurrent registration of the same name
            db.rollback()
            raise NameTaken(name)
        finally:
            db.close()

    def disable_zaps(self, name: str) -> bool:
        db = self.session_factory()
        try:
            updated = db.query(User).filter(User.name == name).update(
                {User.disabled_zaps: True}, synchronize_session=False
            )
            db.commit()
            return updated == 1
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()


# Global store instances
invoice_store = InvoiceStore()
zap_store = ZapStore()
user_directory = UserDirectory()
