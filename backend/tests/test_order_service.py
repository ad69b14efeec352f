# Overview: Pytest coverage for order creation, document-driven transitions, and deletion.

"""
Order Fulfillment Tests

Covers:
- creation: sequential transaction_ids, one shared entry_no, assets Reserved
- read-phase validation (duplicate number, empty selection, unavailable item)
- invoice -> delivery order -> signed delivery transitions
- out-of-order documents are recorded without a status change
- delete rules (blocked once Delivered or holding a replacement)
- replacement of a sold item, before and after delivery
- dates earlier than an item's latest activity are refused
- cancellation keeps the order and links each item back
"""

from contextlib import contextmanager
from datetime import datetime

import pytest

from assetledger.errors import NotFoundError, Unauthenticated, ValidationError
from assetledger.models import Asset, LedgerEntry, Order
from assetledger.services import consistency, discrepancy_service, ledger_service, order_service, registry_service
from assetledger.services.status_service import derive_status


def _status(serial):
    return registry_service.get_asset(serial).status


def _derived(serial):
    return derive_status(serial, ledger_service.entries_for_serial(serial)).status


@pytest.fixture
def new_order(user, stock):
    def _new_order(number="SO-1", serials=("A", "B", "C"), **kwargs):
        stock(*serials)
        return order_service.create_order(
            user_id=user.id,
            order_number=number,
            serial_numbers=list(serials),
            customer_dealer="Dealer One",
            **kwargs,
        )
    return _new_order


def _advance(user, number, *file_types):
    result = None
    for i, file_type in enumerate(file_types):
        result = order_service.handle_document_uploaded(
            user_id=user.id,
            order_number=number,
            file_type=file_type,
            file_id=f"file-{file_type}-{i}",
        )
    return result


class TestCreateOrder:
    def test_three_items_get_sequential_ids_and_one_entry_no(self, db_session, new_order):
        order = new_order()

        entries = order_service.order_items(order)
        tx_ids = [e.transaction_id for e in entries]
        assert len(set(tx_ids)) == 3
        assert tx_ids == list(range(tx_ids[0], tx_ids[0] + 3))
        assert {e.entry_no for e in entries} == {order.entry_no}
        assert all(e.type == "Stock_Out" and e.status == "Reserved" for e in entries)

        assert order.total_items == 3
        assert (order.invoice_status, order.delivery_status) == ("Reserved", "Pending")
        for serial in ("A", "B", "C"):
            assert _status(serial) == "Reserved"
            assert _derived(serial) == "Reserved"

    def test_defaults_for_client_and_warranty(self, db_session, new_order):
        order = new_order(serials=("A",))
        entry = order_service.order_items(order)[0]
        assert order.customer_client == "N/A"
        assert entry.warranty_type == "No Warranty"
        assert entry.warranty_period == 0

    def test_next_order_gets_next_entry_no(self, db_session, user, stock, new_order):
        first = new_order(number="SO-1", serials=("A",))
        second = new_order(number="SO-2", serials=("B",))
        assert second.entry_no == first.entry_no + 1

    def test_serials_match_case_insensitively(self, db_session, user, stock):
        stock("ab-100")
        order = order_service.create_order(
            user_id=user.id,
            order_number="SO-9",
            serial_numbers=["AB-100", "Ab-100"],
            customer_dealer="Dealer",
        )
        assert order.total_items == 1
        assert order_service.order_items(order)[0].serial_number == "ab-100"

    def test_already_reserved_serial_is_rejected(self, db_session, user, stock, new_order):
        new_order(number="SO-1", serials=("A",))
        stock("B")

        with pytest.raises(ValidationError) as exc:
            order_service.create_order(
                user_id=user.id,
                order_number="SO-2",
                serial_numbers=["B", "A"],
                customer_dealer="Dealer",
            )

        assert "A" in exc.value.message
        assert exc.value.details["serial_numbers"] == ["A"]
        assert exc.value.details["statuses"] == {"A": "Reserved"}
        # Nothing written for the failed order
        assert order_service.find_order("SO-2") is None
        assert _status("B") == "Active"
        assert ledger_service.entries_for_serial("B", "Stock_Out") == []

    def test_duplicate_order_number(self, db_session, user, stock, new_order):
        new_order(number="SO-1", serials=("A",))
        stock("B")
        with pytest.raises(ValidationError):
            order_service.create_order(
                user_id=user.id, order_number="SO-1", serial_numbers=["B"], customer_dealer="Dealer",
            )

    def test_empty_selection(self, db_session, user):
        with pytest.raises(ValidationError):
            order_service.create_order(
                user_id=user.id, order_number="SO-1", serial_numbers=[" ", ""], customer_dealer="Dealer",
            )

    def test_unknown_serial(self, db_session, user, stock):
        stock("A")
        with pytest.raises(ValidationError) as exc:
            order_service.create_order(
                user_id=user.id, order_number="SO-1", serial_numbers=["A", "NOPE"], customer_dealer="Dealer",
            )
        assert exc.value.details["serial_numbers"] == ["NOPE"]

    def test_bad_date(self, db_session, user, stock):
        stock("A")
        with pytest.raises(ValidationError):
            order_service.create_order(
                user_id=user.id, order_number="SO-1", serial_numbers=["A"],
                customer_dealer="Dealer", occurred_at="next tuesday",
            )

    def test_requires_caller(self, db_session, stock):
        with pytest.raises(Unauthenticated):
            order_service.create_order(
                user_id=None, order_number="SO-1", serial_numbers=["A"], customer_dealer="Dealer",
            )


class TestDocumentTransitions:
    def test_full_happy_path(self, db_session, user, new_order):
        new_order(serials=("A",))

        result = _advance(user, "SO-1", "invoice")
        assert result.data["transition"] == {"from": ["Reserved", "Pending"], "to": ["Invoiced", "Pending"]}

        result = _advance(user, "SO-1", "delivery_order")
        assert result.data["transition"]["to"] == ["Invoiced", "Issued"]

        result = _advance(user, "SO-1", "signed_delivery_order")
        assert result.data["transition"]["to"] == ["Invoiced", "Delivered"]

    def test_signed_delivery_creates_exactly_one_entry_for_single_item(self, db_session, user, new_order):
        order = new_order(serials=("A",))
        original = order_service.order_items(order)[0]
        original_id, original_tx = original.id, original.transaction_id
        _advance(user, "SO-1", "invoice", "delivery_order")
        before = db_session.query(LedgerEntry).count()

        result = _advance(user, "SO-1", "signed_delivery_order")

        assert db_session.query(LedgerEntry).count() == before + 1
        assert len(result.data["delivered_transaction_ids"]) == 1
        delivered = db_session.query(LedgerEntry).filter_by(
            transaction_id=result.data["delivered_transaction_ids"][0]
        ).one()
        assert (delivered.type, delivered.status) == ("Stock_Out", "Delivered")
        assert delivered.entry_no == order.entry_no
        assert delivered.delivery_date is not None

        # The reserved entry is untouched
        unchanged = db_session.get(LedgerEntry, original_id)
        assert (unchanged.transaction_id, unchanged.status) == (original_tx, "Reserved")

        order = order_service.get_order("SO-1")
        assert delivered.transaction_id in order.transaction_ids
        assert _status("A") == "Delivered"
        assert _derived("A") == "Delivered"

    def test_signed_delivery_covers_every_item(self, db_session, user, new_order):
        new_order(serials=("A", "B"))
        result = _advance(user, "SO-1", "invoice", "delivery_order", "signed_delivery_order")

        assert len(result.data["delivered_transaction_ids"]) == 2
        assert _status("A") == _status("B") == "Delivered"
        assert _derived("A") == _derived("B") == "Delivered"

    def test_out_of_order_document_recorded_without_transition(self, db_session, user, new_order):
        new_order(serials=("A",))

        result = _advance(user, "SO-1", "delivery_order")

        assert result.data["transition"] is None
        order = order_service.get_order("SO-1")
        assert order.delivery_file_id == "file-delivery_order-0"
        assert (order.invoice_status, order.delivery_status) == ("Reserved", "Pending")

    def test_unknown_file_type(self, db_session, user, new_order):
        new_order(serials=("A",))
        with pytest.raises(ValidationError):
            _advance(user, "SO-1", "receipt")

    def test_unknown_order(self, db_session, user):
        with pytest.raises(NotFoundError):
            _advance(user, "NOPE", "invoice")

    def test_document_removed_keeps_status(self, db_session, user, new_order):
        new_order(serials=("A",))
        _advance(user, "SO-1", "invoice")

        order = order_service.handle_document_removed(user_id=user.id, order_number="SO-1", file_type="invoice")

        assert order.invoice_file_id is None
        assert order.invoice_status == "Invoiced"

    def test_file_status(self, db_session, user, new_order):
        new_order(serials=("A",))
        _advance(user, "SO-1", "invoice")

        status = order_service.order_file_status("SO-1")
        assert status["files"]["invoice"]["present"] is True
        assert status["files"]["invoice"]["uploaded_at"].endswith("Z")
        assert status["files"]["delivery_order"]["present"] is False

    def test_work_queues(self, db_session, user, new_order):
        new_order(number="SO-1", serials=("A",))
        new_order(number="SO-2", serials=("B",))
        _advance(user, "SO-2", "invoice")

        assert [o.order_number for o in order_service.orders_for_invoicing()] == ["SO-1"]
        assert [o.order_number for o in order_service.orders_for_delivery()] == ["SO-2"]


class TestInvoiceDetails:
    def test_details_copied_to_entries(self, db_session, user, new_order):
        order = new_order(serials=("A", "B"))

        result = order_service.record_invoice_details(
            user_id=user.id,
            order_number="SO-1",
            invoice_number="INV-77",
            invoice_date="2024-03-01",
            file_id="inv-file",
        )

        assert result.partial is False
        assert result.data["order"]["invoice_status"] == "Invoiced"
        for entry in order_service.order_items(order_service.get_order("SO-1")):
            assert entry.invoice_number == "INV-77"
            assert entry.invoice_date is not None

    def test_failed_copy_is_partial_success(self, db_session, user, new_order, monkeypatch):
        new_order(serials=("A",))

        def _boom(*args, **kwargs):
            raise ValidationError("ledger unavailable")

        monkeypatch.setattr(ledger_service, "attach_metadata", _boom)
        result = order_service.record_invoice_details(
            user_id=user.id, order_number="SO-1", invoice_number="INV-1",
        )

        assert result.partial is True
        assert "ledger unavailable" in result.warnings[0]
        assert order_service.get_order("SO-1").invoice_number == "INV-1"
        assert result.to_dict()["partial_success"] is True


class TestRevertRename:
    def test_revert_delivery_restores_reserved(self, db_session, user, new_order):
        new_order(serials=("A",))
        _advance(user, "SO-1", "invoice", "delivery_order", "signed_delivery_order")

        order = order_service.revert_delivery(user_id=user.id, order_number="SO-1")

        assert order.delivery_status == "Pending"
        assert order.signed_delivery_file_id is None
        assert _status("A") == "Reserved"
        assert _derived("A") == "Reserved"
        assert len(order.transaction_ids) == 1

    def test_revert_without_delivery_data(self, db_session, user, new_order):
        new_order(serials=("A",))
        with pytest.raises(ValidationError):
            order_service.revert_delivery(user_id=user.id, order_number="SO-1")

    def test_rename(self, db_session, user, new_order):
        new_order(number="SO-1", serials=("A",))
        new_order(number="SO-2", serials=("B",))

        with pytest.raises(ValidationError):
            order_service.rename_order(user_id=user.id, old_number="SO-1", new_number="SO-2")

        renamed = order_service.rename_order(user_id=user.id, old_number="SO-1", new_number="SO-1A")
        assert renamed.order_number == "SO-1A"
        assert order_service.find_order("SO-1") is None


class TestDeleteOrder:
    def test_delete_delivered_order_is_rejected(self, db_session, user, new_order):
        new_order(serials=("A",))
        _advance(user, "SO-1", "invoice", "delivery_order", "signed_delivery_order")

        with pytest.raises(ValidationError):
            order_service.delete_order(user_id=user.id, order_number="SO-1")
        assert order_service.find_order("SO-1") is not None

    def test_delete_issued_order_restores_items(self, db_session, user, new_order):
        new_order(serials=("A", "B"))
        _advance(user, "SO-1", "invoice", "delivery_order")

        result = order_service.delete_order(user_id=user.id, order_number="SO-1")

        assert result.data["deleted_entries"] == 2
        assert sorted(result.data["restored_serials"]) == ["A", "B"]
        assert order_service.find_order("SO-1") is None
        assert db_session.query(LedgerEntry).filter_by(type="Stock_Out").count() == 0
        assert _status("A") == _status("B") == "Active"
        assert _derived("A") == "Active"

    def test_cleanup_hook_receives_documents(self, app, db_session, user, new_order, monkeypatch):
        calls = []
        monkeypatch.setitem(app.config, "DOCUMENT_CLEANUP_HOOK", lambda number, ids: calls.append((number, ids)))
        new_order(serials=("A",))
        _advance(user, "SO-1", "invoice")

        result = order_service.delete_order(user_id=user.id, order_number="SO-1")

        assert calls == [("SO-1", ["file-invoice-0"])]
        assert result.warnings == []

    def test_cleanup_failure_is_a_warning(self, app, db_session, user, new_order, monkeypatch):
        def _fail(number, ids):
            raise RuntimeError("file store offline")

        monkeypatch.setitem(app.config, "DOCUMENT_CLEANUP_HOOK", _fail)
        new_order(serials=("A",))
        _advance(user, "SO-1", "invoice")

        result = order_service.delete_order(user_id=user.id, order_number="SO-1")

        assert result.partial is True
        assert order_service.find_order("SO-1") is None


class TestReplaceItem:
    def test_replacement_reuses_entry_no(self, db_session, user, stock, new_order):
        order = new_order(serials=("A",))
        _advance(user, "SO-1", "invoice", "delivery_order", "signed_delivery_order")
        stock("R")

        result = order_service.replace_item(
            user_id=user.id, returned_serial="A", replacement_serial="R", remarks="faulty",
        )

        assert result.data["entry_no"] == order.entry_no
        assert result.data["order_number"] == "SO-1"
        assert _status("A") == "Returned"
        assert _status("R") == "Delivered"
        assert _derived("A") == "Returned"
        assert _derived("R") == "Delivered"

        replacement = db_session.query(LedgerEntry).filter_by(
            transaction_id=result.data["replacement_transaction_id"]
        ).one()
        assert replacement.entry_no == order.entry_no
        assert replacement.transaction_id in order_service.get_order("SO-1").transaction_ids

    def test_replacement_must_be_active(self, db_session, user, new_order):
        new_order(number="SO-1", serials=("A",))
        new_order(number="SO-2", serials=("B",))
        with pytest.raises(ValidationError):
            order_service.replace_item(user_id=user.id, returned_serial="A", replacement_serial="B")

    def test_returned_item_needs_stock_out(self, db_session, user, stock):
        stock("A", "R")
        with pytest.raises(ValidationError):
            order_service.replace_item(user_id=user.id, returned_serial="A", replacement_serial="R")
        assert db_session.query(Asset).filter_by(status="Active").count() == 2
        assert db_session.query(Order).count() == 0


def _replace(user, returned, replacement, **kwargs):
    return order_service.replace_item(
        user_id=user.id, returned_serial=returned, replacement_serial=replacement, **kwargs,
    )


class TestReplacementFollowUps:
    def test_signed_delivery_after_replacing_a_reserved_item(self, db_session, user, stock, new_order):
        new_order(serials=("A", "B", "C"))
        _advance(user, "SO-1", "invoice", "delivery_order")
        a_reserved_tx = ledger_service.entries_for_serial("A", "Stock_Out")[0].transaction_id
        stock("R")

        _replace(user, "A", "R", remarks="damaged in transit")
        order = order_service.get_order("SO-1")
        assert order.replaced_transaction_ids == [a_reserved_tx]

        result = order_service.handle_document_uploaded(
            user_id=user.id, order_number="SO-1", file_type="signed_delivery_order", file_id="signed-1",
        )

        assert result.data["transition"]["to"] == ["Invoiced", "Delivered"]
        delivered = db_session.query(LedgerEntry).filter(
            LedgerEntry.transaction_id.in_(result.data["delivered_transaction_ids"])
        ).all()
        assert sorted(e.serial_number for e in delivered) == ["B", "C"]
        assert _status("A") == _derived("A") == "Returned"
        assert _status("R") == _derived("R") == "Delivered"
        assert _status("B") == _status("C") == "Delivered"
        assert discrepancy_service.analyze()["clean"] is True

    def test_signed_delivery_when_every_item_was_replaced(self, db_session, user, stock, new_order):
        new_order(serials=("A",))
        _advance(user, "SO-1", "invoice", "delivery_order")
        stock("R")
        _replace(user, "A", "R")
        before = db_session.query(LedgerEntry).count()

        result = _advance(user, "SO-1", "signed_delivery_order")

        assert result.data["delivered_transaction_ids"] == []
        assert result.data["transition"]["to"] == ["Invoiced", "Delivered"]
        assert db_session.query(LedgerEntry).count() == before
        assert discrepancy_service.analyze()["clean"] is True

    def test_order_holding_a_replacement_cannot_be_deleted(self, db_session, user, stock, new_order):
        new_order(serials=("A", "B"))
        stock("R")
        _replace(user, "A", "R")

        with pytest.raises(ValidationError) as exc:
            order_service.delete_order(user_id=user.id, order_number="SO-1")

        assert exc.value.details["delivered_serials"] == ["R"]
        assert order_service.find_order("SO-1") is not None
        assert _status("R") == _derived("R") == "Delivered"
        assert _status("A") == _derived("A") == "Returned"
        assert _status("B") == _derived("B") == "Reserved"
        assert discrepancy_service.analyze()["clean"] is True

    def test_revert_after_replacement_keeps_the_replacement(self, db_session, user, stock, new_order):
        new_order(serials=("A", "B"))
        _advance(user, "SO-1", "invoice", "delivery_order", "signed_delivery_order")
        stock("R")
        _replace(user, "A", "R")

        order = order_service.revert_delivery(user_id=user.id, order_number="SO-1")

        assert order.delivery_status == "Pending"
        assert _status("B") == _derived("B") == "Reserved"
        assert _status("R") == _derived("R") == "Delivered"
        assert _status("A") == _derived("A") == "Returned"
        assert discrepancy_service.analyze()["clean"] is True


class TestBackdatedDates:
    def test_order_dated_before_stock_in_is_rejected(self, db_session, user, stock):
        stock("A", occurred_at=datetime(2026, 3, 1))

        with pytest.raises(ValidationError) as exc:
            order_service.create_order(
                user_id=user.id, order_number="SO-1", serial_numbers=["A"],
                customer_dealer="Dealer", occurred_at="2026-02-01T00:00:00Z",
            )

        assert exc.value.details["field"] == "occurred_at"
        assert exc.value.details["serial_numbers"] == ["A"]
        assert exc.value.details["latest_activity"] == {"A": "2026-03-01T00:00:00Z"}
        assert order_service.find_order("SO-1") is None
        assert _status("A") == _derived("A") == "Active"
        assert discrepancy_service.analyze()["clean"] is True

    def test_same_timestamp_as_latest_activity_is_allowed(self, db_session, user, stock):
        stock("A", occurred_at=datetime(2026, 3, 1))

        order_service.create_order(
            user_id=user.id, order_number="SO-1", serial_numbers=["A"],
            customer_dealer="Dealer", occurred_at="2026-03-01T00:00:00Z",
        )

        assert _status("A") == _derived("A") == "Reserved"

    def test_backdated_signed_delivery_is_rejected(self, db_session, user, new_order):
        new_order(serials=("A",))
        _advance(user, "SO-1", "invoice", "delivery_order")

        with pytest.raises(ValidationError) as exc:
            order_service.handle_document_uploaded(
                user_id=user.id, order_number="SO-1", file_type="signed_delivery_order",
                file_id="signed-1", uploaded_at="2020-01-01T00:00:00Z",
            )

        assert exc.value.details["field"] == "uploaded_at"
        order = order_service.get_order("SO-1")
        assert order.delivery_status == "Issued"
        assert order.signed_delivery_file_id is None
        assert _status("A") == _derived("A") == "Reserved"
        assert discrepancy_service.analyze()["clean"] is True

    def test_backdated_replacement_is_rejected(self, db_session, user, stock, new_order):
        new_order(serials=("A",))
        _advance(user, "SO-1", "invoice", "delivery_order", "signed_delivery_order")
        stock("R")

        with pytest.raises(ValidationError):
            _replace(user, "A", "R", occurred_at="2020-01-01T00:00:00Z")

        assert _status("A") == _derived("A") == "Delivered"
        assert _status("R") == _derived("R") == "Active"
        assert ledger_service.entries_for_serial("A", "Returned") == []
        assert discrepancy_service.analyze()["clean"] is True


class TestCancelOrder:
    def test_cancel_links_entries_and_frees_items(self, db_session, user, new_order):
        order = new_order(serials=("A", "B"))
        _advance(user, "SO-1", "invoice")
        stock_out_ids = list(order.transaction_ids)

        result = order_service.cancel_order(user_id=user.id, order_number="SO-1", reason="Customer withdrew")

        assert sorted(result.data["cancelled_items"]) == ["A", "B"]
        order = order_service.get_order("SO-1")
        assert order.order_status == "Cancelled"
        assert order.cancellation_reason == "Customer withdrew"
        assert order.cancelled_by_user_id == user.id
        assert order.cancelled_at is not None
        assert (order.original_invoice_status, order.original_delivery_status) == ("Invoiced", "Pending")
        assert (order.invoice_status, order.delivery_status) == ("Invoiced", "Pending")
        assert order.transaction_ids == stock_out_ids

        cancellations = db_session.query(LedgerEntry).filter_by(type="Cancellation").all()
        assert sorted(e.transaction_id for e in cancellations) == sorted(order.cancellation_transaction_ids)
        assert sorted(e.original_transaction_id for e in cancellations) == sorted(stock_out_ids)
        assert {e.cancelled_from_order for e in cancellations} == {"SO-1"}
        assert {e.cancellation_reason for e in cancellations} == {"Customer withdrew"}
        assert {e.entry_no for e in cancellations} == {order.entry_no}

        for serial in ("A", "B"):
            assert _status(serial) == _derived(serial) == "Active"
        assert discrepancy_service.analyze()["clean"] is True

    def test_cancelled_items_can_be_ordered_again(self, db_session, user, new_order):
        new_order(serials=("A",))
        order_service.cancel_order(user_id=user.id, order_number="SO-1", reason="Duplicate")

        order_service.create_order(
            user_id=user.id, order_number="SO-2", serial_numbers=["A"], customer_dealer="Dealer",
        )

        assert _status("A") == _derived("A") == "Reserved"

    def test_reason_is_required(self, db_session, user, new_order):
        new_order(serials=("A",))
        with pytest.raises(ValidationError):
            order_service.cancel_order(user_id=user.id, order_number="SO-1", reason="   ")
        assert order_service.get_order("SO-1").order_status == "Open"

    def test_requires_caller(self, db_session, new_order):
        new_order(serials=("A",))
        with pytest.raises(Unauthenticated):
            order_service.cancel_order(user_id=None, order_number="SO-1", reason="x")

    def test_delivered_order_cannot_be_cancelled(self, db_session, user, new_order):
        new_order(serials=("A",))
        _advance(user, "SO-1", "invoice", "delivery_order", "signed_delivery_order")

        with pytest.raises(ValidationError):
            order_service.cancel_order(user_id=user.id, order_number="SO-1", reason="Too late")

        assert order_service.get_order("SO-1").order_status == "Open"
        assert _status("A") == "Delivered"

    def test_order_holding_a_replacement_cannot_be_cancelled(self, db_session, user, stock, new_order):
        new_order(serials=("A", "B"))
        stock("R")
        _replace(user, "A", "R")

        with pytest.raises(ValidationError) as exc:
            order_service.cancel_order(user_id=user.id, order_number="SO-1", reason="Changed mind")

        assert exc.value.details["delivered_serials"] == ["R"]
        assert _status("B") == "Reserved"

    def test_cancel_twice_is_rejected(self, db_session, user, new_order):
        new_order(serials=("A",))
        order_service.cancel_order(user_id=user.id, order_number="SO-1", reason="Duplicate")

        with pytest.raises(ValidationError):
            order_service.cancel_order(user_id=user.id, order_number="SO-1", reason="Again")

        assert db_session.query(LedgerEntry).filter_by(type="Cancellation").count() == 1

    def test_cancelled_order_is_frozen(self, db_session, user, new_order):
        new_order(serials=("A",))
        _advance(user, "SO-1", "invoice", "delivery_order")
        order_service.cancel_order(user_id=user.id, order_number="SO-1", reason="Customer withdrew")

        with pytest.raises(ValidationError):
            _advance(user, "SO-1", "signed_delivery_order")
        with pytest.raises(ValidationError):
            order_service.revert_delivery(user_id=user.id, order_number="SO-1")
        with pytest.raises(ValidationError):
            order_service.record_invoice_details(user_id=user.id, order_number="SO-1", invoice_number="INV-9")
        with pytest.raises(ValidationError):
            order_service.delete_order(user_id=user.id, order_number="SO-1")

        assert _status("A") == _derived("A") == "Active"
        assert order_service.get_order("SO-1").signed_delivery_file_id is None

    def test_queues_leave_out_cancelled_orders(self, db_session, user, new_order):
        new_order(number="SO-1", serials=("A",))
        new_order(number="SO-2", serials=("B",))
        new_order(number="SO-3", serials=("C",))
        _advance(user, "SO-2", "invoice", "delivery_order", "signed_delivery_order")
        order_service.cancel_order(user_id=user.id, order_number="SO-3", reason="Duplicate")

        assert [o.order_number for o in order_service.cancellable_orders()] == ["SO-1"]
        assert [o.order_number for o in order_service.orders_for_invoicing()] == ["SO-1"]
        assert [o.order_number for o in order_service.list_orders(order_status="Cancelled")] == ["SO-3"]


class TestReadPhaseChecks:
    def test_nothing_to_deliver_is_refused_before_writing(self, db_session, user, new_order, monkeypatch):
        new_order(serials=("A",))
        _advance(user, "SO-1", "invoice", "delivery_order")

        entered = []
        real_unit_of_work = order_service.unit_of_work

        @contextmanager
        def _recording_unit_of_work():
            entered.append(True)
            with real_unit_of_work():
                yield

        monkeypatch.setattr(order_service, "unit_of_work", _recording_unit_of_work)
        monkeypatch.setattr(order_service, "_reserved_entries", lambda order: [])

        with pytest.raises(ValidationError) as exc:
            _advance(user, "SO-1", "signed_delivery_order")

        assert "no reserved items" in exc.value.message
        assert entered == []
        order = order_service.get_order("SO-1")
        assert order.signed_delivery_file_id is None
        assert order.delivery_status == "Issued"

    def test_changing_workflows_lock_the_order_row(self, db_session, user, new_order, monkeypatch):
        locked = []

        def _recording_lock(query):
            locked.append(query.column_descriptions[0]["entity"])
            return consistency.lock_for_update(query)

        monkeypatch.setattr(order_service, "lock_for_update", _recording_lock)
        new_order(number="SO-1", serials=("A",))
        new_order(number="SO-2", serials=("B",))
        assert locked == []

        _advance(user, "SO-1", "invoice", "delivery_order")
        order_service.revert_delivery(user_id=user.id, order_number="SO-1")
        order_service.cancel_order(user_id=user.id, order_number="SO-1", reason="Duplicate")
        order_service.delete_order(user_id=user.id, order_number="SO-2")

        assert len(locked) == 5
        assert set(locked) == {Order}
