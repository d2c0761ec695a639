# Overview: Pytest coverage for invoice cancellation, deletion and the reservation lifecycle.

"""
Cancellation Tests

An invoice can be cancelled only when net paid is zero. Cancelling keeps
its lines for the audit trail but stops them from reserving stock.
"""

import pytest

from stockledger.models import InvoiceItem, InventoryItemEvent
from stockledger.services import invoice_service, line_item_service
from stockledger.services.availability_service import compute_availability
from stockledger.services.errors import InsufficientStockError, InvalidAmountError, InvalidStateError, NotFoundError
from conftest import pay, refund


class TestCancelInvoice:

    def test_cancel_releases_reservation(self, db_session, product, invoice):
        line_item_service.add_item(invoice.id, product.id, quantity=1)

        result = invoice_service.cancel_invoice(invoice.id, reason="Customer left")

        assert result.invoice.status == "CANCELLED"
        assert result.invoice.cancellation_reason == "Customer left"
        assert result.invoice.total_cents == 0
        assert result.invoice.balance_due_cents == 0
        assert len(result.released_items) == 1
        assert result.released_items[0]["product_id"] == product.id
        assert result.released_items[0]["new_status"] == "InStock"
        assert compute_availability(product.id).available == 1

    def test_cancel_keeps_line_items(self, db_session, product, invoice):
        line_item_service.add_item(invoice.id, product.id, quantity=1)
        invoice_service.cancel_invoice(invoice.id)
        assert db_session.query(InvoiceItem).filter_by(invoice_id=invoice.id).count() == 1

    def test_cancel_records_events(self, db_session, product, invoice):
        line_item_service.add_item(invoice.id, product.id, quantity=1)
        invoice_service.cancel_invoice(invoice.id)
        types = [ev.event_type for ev in db_session.query(InventoryItemEvent).filter_by(product_id=product.id)]
        assert "INVOICE_CANCELLED" in types
        assert "INVENTORY_RELEASED" in types

    def test_cancel_with_net_payment_rejected(self, db_session, make_product, invoice):
        product = make_product(quantity_on_hand=1)
        line_item_service.add_item(invoice.id, product.id, quantity=1)
        pay(invoice.id, 3000)

        with pytest.raises(InvalidStateError) as exc:
            invoice_service.cancel_invoice(invoice.id)
        assert exc.value.code == "HAS_NET_PAYMENTS"
        assert exc.value.details == {"payments_cents": 3000, "refunds_cents": 0, "net_paid_cents": 3000}

    def test_cancel_after_full_refund(self, db_session, make_product, invoice):
        product = make_product(quantity_on_hand=1)
        line_item_service.add_item(invoice.id, product.id, quantity=1)
        pay(invoice.id, 10000)
        refund(invoice.id, 10000)

        result = invoice_service.cancel_invoice(invoice.id)
        assert result.invoice.status == "CANCELLED"
        assert product.quantity_on_hand == 1
        assert compute_availability(product.id).available == 1

    def test_cancel_twice_rejected(self, db_session, invoice):
        invoice_service.cancel_invoice(invoice.id)
        with pytest.raises(InvalidStateError) as exc:
            invoice_service.cancel_invoice(invoice.id)
        assert exc.value.code == "ALREADY_CANCELLED"

    def test_cancel_unknown_invoice(self, db_session):
        with pytest.raises(NotFoundError):
            invoice_service.cancel_invoice(999999)

    def test_cancelled_invoice_is_locked(self, db_session, make_product, invoice):
        product = make_product(quantity_on_hand=2)
        line_item_service.add_item(invoice.id, product.id, quantity=1)
        invoice_service.cancel_invoice(invoice.id)

        with pytest.raises(InvalidStateError):
            line_item_service.add_item(invoice.id, product.id, quantity=1)
        with pytest.raises(InvalidStateError):
            invoice_service.update_invoice_discount(invoice.id, "percentage", 500)


class TestSingleUnitLifecycle:
    """One unit on hand, two invoices competing for it."""

    def test_reservation_follows_invoice_a(self, db_session, product):
        a = invoice_service.create_invoice(currency="GHS")
        b = invoice_service.create_invoice(currency="GHS")

        line_item_service.add_item(a.id, product.id, quantity=1)
        with pytest.raises(InsufficientStockError):
            line_item_service.add_item(b.id, product.id, quantity=1)

        # A pays: the unit is sold
        pay(a.id, 10000)
        assert product.quantity_on_hand == 0
        with pytest.raises(InsufficientStockError):
            line_item_service.add_item(b.id, product.id, quantity=1)

        # A is refunded: back on the shelf, but A reserves it again
        refund(a.id, 10000)
        assert product.quantity_on_hand == 1
        with pytest.raises(InsufficientStockError):
            line_item_service.add_item(b.id, product.id, quantity=1)

        # A is cancelled: B can finally take it
        invoice_service.cancel_invoice(a.id)
        item = line_item_service.add_item(b.id, product.id, quantity=1)
        assert item.quantity == 1
        assert product.status == "Processing"


class TestDeleteInvoice:

    def test_delete_empty_unpaid(self, db_session, invoice):
        deleted = invoice_service.delete_invoice(invoice.id)
        assert deleted.is_deleted is True
        with pytest.raises(NotFoundError):
            invoice_service.get_invoice(invoice.id)

    def test_delete_with_items_rejected(self, db_session, product, invoice):
        line_item_service.add_item(invoice.id, product.id, quantity=1)
        with pytest.raises(InvalidStateError) as exc:
            invoice_service.delete_invoice(invoice.id)
        assert exc.value.code == "HAS_ITEMS"

    def test_delete_cancelled(self, db_session, product, invoice):
        line_item_service.add_item(invoice.id, product.id, quantity=1)
        invoice_service.cancel_invoice(invoice.id)
        invoice_service.delete_invoice(invoice.id)
        assert invoice_service.list_invoices() == []

    def test_delete_partially_paid_rejected(self, db_session, make_product, invoice):
        product = make_product(quantity_on_hand=1)
        line_item_service.add_item(invoice.id, product.id, quantity=1)
        pay(invoice.id, 100)
        with pytest.raises(InvalidStateError) as exc:
            invoice_service.delete_invoice(invoice.id)
        assert exc.value.code == "CANNOT_DELETE"

    def test_delete_twice_rejected(self, db_session, invoice):
        invoice_service.delete_invoice(invoice.id)
        with pytest.raises(InvalidStateError) as exc:
            invoice_service.delete_invoice(invoice.id)
        assert exc.value.code == "ALREADY_DELETED"


class TestInvoiceDiscount:

    def test_invoice_discount_within_manager_ceiling(self, db_session, make_product, invoice, manager_user):
        product = make_product(quantity_on_hand=2, price_cents=10000)
        line_item_service.add_item(invoice.id, product.id, quantity=2)

        inv = invoice_service.update_invoice_discount(invoice.id, "percentage", 2500, actor=manager_user)
        assert inv.subtotal_cents == 20000
        assert inv.discount_cents == 5000
        assert inv.total_cents == 15000

    def test_invoice_discount_over_sales_ceiling(self, db_session, product, invoice, sales_user):
        line_item_service.add_item(invoice.id, product.id, quantity=1)
        with pytest.raises(InvalidAmountError) as exc:
            invoice_service.update_invoice_discount(invoice.id, "fixed", 1500, actor=sales_user)
        assert exc.value.code == "DISCOUNT_LIMIT_EXCEEDED"
        assert invoice_service.get_invoice(invoice.id).discount_cents == 0

    def test_admin_has_no_ceiling(self, db_session, product, invoice, admin_user):
        line_item_service.add_item(invoice.id, product.id, quantity=1)
        inv = invoice_service.update_invoice_discount(invoice.id, "percentage", 10000, actor=admin_user)
        assert inv.total_cents == 0


class TestInvoiceNumbers:

    def test_numbers_are_sequential_and_unique(self, db_session):
        numbers = [invoice_service.create_invoice(currency="GHS").invoice_number for _ in range(3)]
        assert len(set(numbers)) == 3
        seqs = [int(n.rsplit("-", 1)[1]) for n in numbers]
        assert seqs == sorted(seqs)
        assert all(n.startswith("INV-") for n in numbers)

    def test_invalid_currency(self, db_session):
        with pytest.raises(InvalidAmountError) as exc:
            invoice_service.create_invoice(currency="EUR")
        assert exc.value.code == "INVALID_CURRENCY"
