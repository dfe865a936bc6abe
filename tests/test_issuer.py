"""Tests for invoice creation and zap request validation."""

import hashlib
import json

import pytest

from lnaddress.errors import BackendUnavailable, InvalidZapRequest, UnknownUser, ZapsDisabled
from lnaddress.models import InvoiceState
from lnaddress.services.issuer import calc_metadata, parse_zap_request
from lnaddress.services.lightning import PaymentRequest


def test_calc_metadata():
    assert calc_metadata("alice", "example.com") == (
        '[["text/identifier","alice@example.com"],["text/plain","Sats for alice"]]'
    )


class TestCreateInvoice:
    @pytest.mark.asyncio
    async def test_plain_invoice(self, issuer, invoices, zaps, backend, alice):
        invoice = await issuer.create_invoice(alice.id, 21000, comment="gm")

        assert invoice.state == InvoiceState.PENDING
        assert invoice.amount_msats == 21000
        assert invoice.lnurlp_comment == "gm"
        assert zaps.find_by_id(invoice.id) is None

        request = backend.requests[0]
        assert request["preimage"] == invoice.preimage
        assert request["payment_hash"] == hashlib.sha256(bytes.fromhex(invoice.preimage)).hexdigest()
        assert request["description_hash"] == hashlib.sha256(
            calc_metadata("alice", "example.com").encode()
        ).hexdigest()
        assert request["expiry"] == 600
        assert invoices.find_by_id(invoice.id).bolt11 == invoice.bolt11

    @pytest.mark.asyncio
    async def test_zap_invoice_stores_request_verbatim(self, issuer, zaps, backend, alice, make_zap_request):
        zap_request = make_zap_request(amount_msats=21000)

        invoice = await issuer.create_invoice(alice.id, 21000, zap_request=zap_request)

        zap = zaps.find_by_id(invoice.id)
        assert zap.request == zap_request
        assert zap.event_id is None
        assert backend.requests[0]["description_hash"] == hashlib.sha256(zap_request.encode()).hexdigest()

    @pytest.mark.asyncio
    async def test_fresh_preimage_per_invoice(self, issuer, alice):
        first = await issuer.create_invoice(alice.id, 1000)
        second = await issuer.create_invoice(alice.id, 1000)

        assert first.preimage != second.preimage
        assert len(first.preimage) == 64

    @pytest.mark.asyncio
    async def test_zero_amount_gets_amountless_invoice(self, issuer, invoices, backend, alice):
        with pytest.raises(BackendUnavailable, match="Invoice amount mismatch"):
            await issuer.create_invoice(alice.id, 0)

        assert backend.requests[0]["amount_msats"] == 0
        assert invoices.find_by_state(InvoiceState.PENDING) == []

    @pytest.mark.asyncio
    async def test_backend_amount_mismatch(self, issuer, invoices, backend, alice):
        backend.get_amount_msats = lambda bolt11: 2000

        with pytest.raises(BackendUnavailable, match="Invoice amount mismatch"):
            await issuer.create_invoice(alice.id, 1000)

        assert invoices.find_by_state(InvoiceState.PENDING) == []

    @pytest.mark.asyncio
    async def test_backend_invoice_undecodable(self, issuer, invoices, backend, alice):
        def undecodable(bolt11):
            raise ValueError("Invalid bolt11: bad checksum")

        backend.get_amount_msats = undecodable

        with pytest.raises(BackendUnavailable):
            await issuer.create_invoice(alice.id, 1000)

        assert invoices.find_by_state(InvoiceState.PENDING) == []

    @pytest.mark.asyncio
    async def test_unknown_user(self, issuer, invoices, backend):
        with pytest.raises(UnknownUser):
            await issuer.create_invoice(42, 1000)

        assert backend.requests == []
        assert invoices.find_by_state(InvoiceState.PENDING) == []

    @pytest.mark.asyncio
    async def test_backend_failure_leaves_no_row(self, issuer, invoices, backend, alice, make_zap_request):
        backend.fail = True

        with pytest.raises(BackendUnavailable):
            await issuer.create_invoice(alice.id, 21000, zap_request=make_zap_request())

        assert invoices.find_by_state(InvoiceState.PENDING) == []

    @pytest.mark.asyncio
    async def test_backend_hash_mismatch(self, issuer, invoices, backend, alice):
        async def wrong_hash(**kwargs):
            return PaymentRequest(bolt11="lnbcrt1fake", payment_hash="00" * 32)

        backend.create_payment_request = wrong_hash

        with pytest.raises(BackendUnavailable):
            await issuer.create_invoice(alice.id, 1000)

        assert invoices.find_by_state(InvoiceState.PENDING) == []

    @pytest.mark.asyncio
    async def test_zaps_disabled(self, issuer, users, backend, alice, make_zap_request):
        users.disable_zaps("alice")

        with pytest.raises(ZapsDisabled):
            await issuer.create_invoice(alice.id, 1000, zap_request=make_zap_request())
        assert backend.requests == []

        # Plain payments still work
        invoice = await issuer.create_invoice(alice.id, 1000)
        assert invoice.state == InvoiceState.PENDING

    @pytest.mark.asyncio
    async def test_negative_amount(self, issuer, alice):
        with pytest.raises(ValueError):
            await issuer.create_invoice(alice.id, -1)

    @pytest.mark.asyncio
    async def test_comment_too_long(self, issuer, alice):
        with pytest.raises(ValueError):
            await issuer.create_invoice(alice.id, 1000, comment="x" * 101)

        invoice = await issuer.create_invoice(alice.id, 1000, comment="x" * 100)
        assert len(invoice.lnurlp_comment) == 100


class TestParseZapRequest:
    def test_valid(self, make_zap_request, zapper):
        event = parse_zap_request(make_zap_request(amount_msats=5000), 5000)
        assert event["kind"] == 9734
        assert event["pubkey"] == zapper.public_key_hex

    def test_without_amount_tag(self, make_zap_request):
        assert parse_zap_request(make_zap_request(), 5000)["kind"] == 9734

    def test_not_json(self):
        with pytest.raises(InvalidZapRequest):
            parse_zap_request("not json", 1000)

    def test_wrong_kind(self, zapper):
        event = zapper.sign({"kind": 1, "tags": [["p", "ab" * 32]], "content": ""})
        with pytest.raises(InvalidZapRequest):
            parse_zap_request(json.dumps(event), 1000)

    def test_needs_exactly_one_p_tag(self, make_zap_request):
        with pytest.raises(InvalidZapRequest):
            parse_zap_request(make_zap_request(extra_tags=[["p", "cd" * 32]]), 1000)

    def test_tampered_content(self, make_zap_request):
        event = json.loads(make_zap_request(content="gm"))
        event["content"] = "gn"
        with pytest.raises(InvalidZapRequest):
            parse_zap_request(json.dumps(event), 1000)

    def test_bad_signature(self, make_zap_request):
        event = json.loads(make_zap_request())
        event["sig"] = "00" * 64
        with pytest.raises(InvalidZapRequest):
            parse_zap_request(json.dumps(event), 1000)

    def test_amount_mismatch(self, make_zap_request):
        with pytest.raises(InvalidZapRequest):
            parse_zap_request(make_zap_request(amount_msats=5000), 6000)
