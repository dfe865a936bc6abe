"""Tests for the invoice, zap and user stores."""

import pytest
from sqlalchemy import inspect

from lnaddress.database import verify_database_schema
from lnaddress.errors import NameTaken, PubkeyTaken
from lnaddress.models import Invoice, InvoiceState, is_valid_transition


def make_invoice(user_id, preimage="aa" * 32, amount_msats=21000, comment=None):
    return Invoice(
        user_id=user_id,
        bolt11="lnbcrt210n1fake",
        amount_msats=amount_msats,
        preimage=preimage,
        lnurlp_comment=comment,
        state=int(InvoiceState.PENDING)
    )


class TestSchema:
    def test_tables_and_columns(self, db_engine):
        assert verify_database_schema(db_engine) is True

        inspector = inspect(db_engine)
        assert set(inspector.get_table_names()) >= {"users", "invoice", "zaps"}

    def test_indexes(self, db_engine):
        inspector = inspect(db_engine)

        user_indexes = {index["name"]: index for index in inspector.get_indexes("users")}
        assert user_indexes["idx_user_pk"]["unique"]
        assert user_indexes["idx_user_name"]["unique"]

        assert "idx_invoice_state" in {index["name"] for index in inspector.get_indexes("invoice")}
        assert "idx_zaps_event_id" in {index["name"] for index in inspector.get_indexes("zaps")}

    def test_column_limits(self, db_engine):
        inspector = inspect(db_engine)
        invoice_columns = {col["name"]: col for col in inspector.get_columns("invoice")}

        assert invoice_columns["bolt11"]["type"].length == 2048
        assert invoice_columns["preimage"]["type"].length == 64
        assert invoice_columns["lnurlp_comment"]["type"].length == 100
        assert invoice_columns["lnurlp_comment"]["nullable"]

        zap_columns = {col["name"]: col for col in inspector.get_columns("zaps")}
        assert zap_columns["event_id"]["type"].length == 64
        assert zap_columns["event_id"]["nullable"]


class TestStateMapping:
    def test_fixed_integer_values(self):
        assert InvoiceState.PENDING == 0
        assert InvoiceState.PAID == 1
        assert InvoiceState.EXPIRED == 2
        assert InvoiceState.CANCELLED == 3

    def test_only_transitions_out_of_pending(self):
        for state in InvoiceState:
            for next_state in InvoiceState:
                expected = state is InvoiceState.PENDING and next_state is not InvoiceState.PENDING
                assert is_valid_transition(state, next_state) is expected


class TestInvoiceStore:
    def test_insert_defaults_to_pending(self, invoices, zaps, alice):
        invoice = invoices.insert(make_invoice(alice.id))

        assert invoice.id is not None
        assert invoice.state == InvoiceState.PENDING
        assert zaps.find_by_id(invoice.id) is None

    def test_insert_with_zap_request(self, invoices, zaps, alice):
        invoice = invoices.insert(make_invoice(alice.id), zap_request='{"kind":9734}')

        zap = zaps.find_by_id(invoice.id)
        assert zap.request == '{"kind":9734}'
        assert zap.event_id is None

    def test_find_by_preimage(self, invoices, alice):
        first = invoices.insert(make_invoice(alice.id, preimage="aa" * 32))
        invoices.insert(make_invoice(alice.id, preimage="bb" * 32))

        assert invoices.find_by_preimage("aa" * 32).id == first.id
        assert invoices.find_by_preimage("cc" * 32) is None

    def test_find_by_state(self, invoices, alice):
        first = invoices.insert(make_invoice(alice.id, preimage="aa" * 32))
        second = invoices.insert(make_invoice(alice.id, preimage="bb" * 32))
        invoices.compare_and_set_state(second.id, InvoiceState.PENDING, InvoiceState.PAID)

        assert [i.id for i in invoices.find_by_state(InvoiceState.PENDING)] == [first.id]
        assert [i.id for i in invoices.find_by_state(InvoiceState.PAID)] == [second.id]

    def test_compare_and_set_succeeds_once(self, invoices, alice):
        invoice = invoices.insert(make_invoice(alice.id))

        assert invoices.compare_and_set_state(invoice.id, InvoiceState.PENDING, InvoiceState.PAID) is True
        assert invoices.compare_and_set_state(invoice.id, InvoiceState.PENDING, InvoiceState.PAID) is False
        assert invoices.compare_and_set_state(invoice.id, InvoiceState.PENDING, InvoiceState.EXPIRED) is False
        assert invoices.find_by_id(invoice.id).state == InvoiceState.PAID

    def test_compare_and_set_rejects_terminal_source(self, invoices, alice):
        invoice = invoices.insert(make_invoice(alice.id))
        invoices.compare_and_set_state(invoice.id, InvoiceState.PENDING, InvoiceState.CANCELLED)

        with pytest.raises(ValueError):
            invoices.compare_and_set_state(invoice.id, InvoiceState.CANCELLED, InvoiceState.PAID)

        assert invoices.find_by_id(invoice.id).state == InvoiceState.CANCELLED

    def test_compare_and_set_unknown_invoice(self, invoices):
        assert invoices.compare_and_set_state(999, InvoiceState.PENDING, InvoiceState.PAID) is False


class TestZapStore:
    def test_receipt_event_id_set_once(self, invoices, zaps, alice):
        invoice = invoices.insert(make_invoice(alice.id), zap_request="{}")

        assert zaps.compare_and_set_receipt_event_id(invoice.id, "abc123") is True
        assert zaps.compare_and_set_receipt_event_id(invoice.id, "def456") is False
        assert zaps.find_by_id(invoice.id).event_id == "abc123"

    def test_receipt_event_id_without_zap_row(self, invoices, zaps, alice):
        invoice = invoices.insert(make_invoice(alice.id))
        assert zaps.compare_and_set_receipt_event_id(invoice.id, "abc123") is False

    def test_find_unpublished(self, invoices, zaps, alice):
        pending = invoices.insert(make_invoice(alice.id, preimage="aa" * 32), zap_request="{}")
        paid = invoices.insert(make_invoice(alice.id, preimage="bb" * 32), zap_request="{}")
        published = invoices.insert(make_invoice(alice.id, preimage="cc" * 32), zap_request="{}")
        invoices.insert(make_invoice(alice.id, preimage="dd" * 32))

        for invoice in (paid, published):
            invoices.compare_and_set_state(invoice.id, InvoiceState.PENDING, InvoiceState.PAID)
        zaps.compare_and_set_receipt_event_id(published.id, "abc123")

        unpublished = [zap.id for zap in zaps.find_unpublished()]
        assert unpublished == [paid.id]
        assert pending.id not in unpublished


class TestUserDirectory:
    def test_register_and_lookup(self, users):
        user = users.register("bob", "03" + "cd" * 32)

        assert users.lookup(user.id).name == "bob"
        assert users.find_by_name("bob").pubkey == "03" + "cd" * 32
        assert user.disabled_zaps is False
        assert users.lookup(999) is None

    def test_name_taken(self, users, alice):
        with pytest.raises(NameTaken):
            users.register("alice", "03" + "cd" * 32)

    def test_pubkey_taken(self, users, alice):
        with pytest.raises(PubkeyTaken):
            users.register("alice2", alice.pubkey)

    def test_disable_zaps(self, users, alice):
        assert users.disable_zaps("alice") is True
        assert users.lookup(alice.id).disabled_zaps is True
        assert users.disable_zaps("nobody") is False
