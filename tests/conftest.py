"""
Pytest configuration and shared fixtures.

Every test gets its own in-memory SQLite database and stores bound to it;
the Lightning backend and the relays are replaced by in-process fakes.
"""

import json
import os
from datetime import datetime, timezone

# Keep module-level engine and signer away from real resources
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("NOSTR_PRIVATE_KEY", "")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from lnaddress.database import Base, create_tables
from lnaddress.errors import BackendUnavailable, PublishFailure
from lnaddress.services.lightning import PaymentRequest
from lnaddress.services.nostr_keys import NostrSigner
from lnaddress.services.receipts import ReceiptEmitter, RetryPolicy
from lnaddress.services.issuer import InvoiceIssuer
from lnaddress.services.store import InvoiceStore, UserDirectory, ZapStore
from lnaddress.services.watcher import SettlementWatcher

SERVICE_KEY = "01" * 32
ZAPPER_KEY = "02" * 32
ALICE_PUBKEY = "02" + "ab" * 32
FAR_FUTURE = datetime(2100, 1, 1, tzinfo=timezone.utc)


class FakeLightningBackend:
    """Records payment requests and reports settlements it was told about"""

    def __init__(self):
        self.requests = []
        self.settled_hashes = set()
        self.expiries = {}
        self.amounts = {}
        self.stream = []
        self.fail = False

    async def create_payment_request(self, amount_msats, payment_hash, preimage, description_hash, expiry):
        if self.fail:
            raise BackendUnavailable("LND API error: connection refused")

        self.requests.append({
            "amount_msats": amount_msats,
            "payment_hash": payment_hash,
            "preimage": preimage,
            "description_hash": description_hash,
            "expiry": expiry
        })
        bolt11 = f"lnbcrt{amount_msats}n1fake{payment_hash[:20]}"
        # Like LND, no amount field for a 0 msat request
        self.amounts[bolt11] = amount_msats or None
        return PaymentRequest(bolt11=bolt11, payment_hash=payment_hash)

    async def is_settled(self, payment_hash):
        return payment_hash in self.settled_hashes

    async def subscribe_settlements(self):
        for preimage in self.stream:
            yield preimage

    def get_amount_msats(self, bolt11):
        return self.amounts.get(bolt11)

    def get_expiry(self, bolt11):
        return self.expiries.get(bolt11, FAR_FUTURE)


class FakeRelayPublisher:
    """Accepts events, optionally failing the first `failures` attempts"""

    def __init__(self, event_id=None, failures=0):
        self.event_id = event_id
        self.failures = failures
        self.attempts = 0
        self.published = []

    async def publish(self, event):
        self.attempts += 1
        if self.failures:
            self.failures -= 1
            raise PublishFailure(f"Event {event['id']} rejected by all 2 relays")

        self.published.append(event)
        return self.event_id or event["id"]


@pytest.fixture(scope="function")
def db_engine():
    """Create an in-memory SQLite database engine for testing."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool
    )
    create_tables(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=db_engine)


@pytest.fixture
def invoices(session_factory):
    return InvoiceStore(session_factory)


@pytest.fixture
def zaps(session_factory):
    return ZapStore(session_factory)


@pytest.fixture
def users(session_factory):
    return UserDirectory(session_factory)


@pytest.fixture
def alice(users):
    return users.register("alice", ALICE_PUBKEY)


@pytest.fixture
def backend():
    return FakeLightningBackend()


@pytest.fixture
def signer():
    return NostrSigner(SERVICE_KEY)


@pytest.fixture
def zapper():
    return NostrSigner(ZAPPER_KEY)


@pytest.fixture
def publisher():
    return FakeRelayPublisher()


@pytest.fixture
def issuer(invoices, users, backend):
    return InvoiceIssuer(store=invoices, users=users, backend=backend, domain="example.com", expiry_seconds=600)


@pytest.fixture
def enqueued():
    return []


@pytest.fixture
def watcher(invoices, zaps, backend, enqueued):
    return SettlementWatcher(invoices=invoices, zaps=zaps, backend=backend, enqueue=enqueued.append)


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def emitter(invoices, zaps, users, signer, publisher, sleeps):
    async def fake_sleep(delay):
        sleeps.append(delay)

    return ReceiptEmitter(
        invoices=invoices,
        zaps=zaps,
        users=users,
        signer=signer,
        publisher=publisher,
        retry_policy=RetryPolicy(max_attempts=3, base_delay=1.0, max_delay=10.0),
        sleep=fake_sleep
    )


@pytest.fixture
def make_zap_request(zapper, signer):
    """Build a signed kind 9734 zap request JSON string"""

    def _make(amount_msats=None, recipient=None, extra_tags=None, content=""):
        tags = [["p", recipient or signer.public_key_hex], ["relays", "wss://relay.example.com"]]
        if amount_msats is not None:
            tags.append(["amount", str(amount_msats)])
        tags.extend(extra_tags or [])

        event = zapper.sign({"kind": 9734, "created_at": 1700000000, "tags": tags, "content": content})
        return json.dumps(event)

    return _make
