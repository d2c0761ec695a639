# Overview: Pytest coverage for computed availability and cached product status.

"""
Availability and Asset Status Tests

Availability = on_hand - units on non-voided lines of open invoices.
Product status is a cached projection: Processing while on an open invoice,
Sold while on a PAID invoice, InStock otherwise.
"""

import pytest

from stockledger.services import invoice_service, line_item_service
from stockledger.services.availability_service import (
    compute_availability,
    compute_bulk_availability,
    get_reserved_quantity,
)
from stockledger.services.asset_status_service import resolve_status
from stockledger.services.errors import NotFoundError
from conftest import pay, refund


class TestAvailability:

    def test_fresh_product_is_fully_available(self, db_session, make_product):
        product = make_product(quantity_on_hand=5)
        availability = compute_availability(product.id)
        assert availability.on_hand == 5
        assert availability.reserved == 0
        assert availability.available == 5

    def test_open_invoice_reserves(self, db_session, make_product, invoice):
        product = make_product(quantity_on_hand=5)
        line_item_service.add_item(invoice.id, product.id, quantity=3)

        availability = compute_availability(product.id)
        assert availability.reserved == 3
        assert availability.available == 2

    def test_exclude_invoice(self, db_session, make_product, invoice):
        product = make_product(quantity_on_hand=5)
        line_item_service.add_item(invoice.id, product.id, quantity=3)

        availability = compute_availability(product.id, exclude_invoice_id=invoice.id)
        assert availability.reserved == 0
        assert availability.available == 5

    def test_cancelled_invoice_does_not_reserve(self, db_session, make_product, invoice):
        product = make_product(quantity_on_hand=2)
        line_item_service.add_item(invoice.id, product.id, quantity=2)
        invoice_service.cancel_invoice(invoice.id)

        assert get_reserved_quantity(product.id) == 0
        assert compute_availability(product.id).available == 2

    def test_paid_invoice_consumes_on_hand_not_reservation(self, db_session, make_product, invoice):
        product = make_product(quantity_on_hand=3)
        line_item_service.add_item(invoice.id, product.id, quantity=2)
        pay(invoice.id, invoice_service.get_invoice(invoice.id).total_cents)

        availability = compute_availability(product.id)
        assert availability.on_hand == 1
        assert availability.reserved == 0
        assert availability.available == 1

    def test_refund_out_of_paid_restores_on_hand_and_reservation(self, db_session, make_product, invoice):
        product = make_product(quantity_on_hand=1)
        line_item_service.add_item(invoice.id, product.id, quantity=1)
        total = invoice_service.get_invoice(invoice.id).total_cents
        pay(invoice.id, total)
        refund(invoice.id, total)

        availability = compute_availability(product.id)
        assert availability.on_hand == 1
        assert availability.reserved == 1
        assert availability.available == 0

    def test_available_never_negative(self, db_session, make_product, invoice):
        product = make_product(quantity_on_hand=2)
        line_item_service.add_item(invoice.id, product.id, quantity=2)
        # Counter shrinks underneath an open reservation
        product.quantity_on_hand = 1
        db_session.commit()

        assert compute_availability(product.id).available == 0

    def test_unknown_product(self, db_session):
        with pytest.raises(NotFoundError) as exc:
            compute_availability(999999)
        assert exc.value.code == "PRODUCT_NOT_FOUND"

    def test_bulk_matches_single(self, db_session, make_product, invoice):
        p1 = make_product(quantity_on_hand=4)
        p2 = make_product(quantity_on_hand=1)
        p3 = make_product(quantity_on_hand=0)
        line_item_service.add_item(invoice.id, p1.id, quantity=1)
        line_item_service.add_item(invoice.id, p2.id, quantity=1)

        bulk = compute_bulk_availability([p1.id, p2.id, p3.id, 999999])
        assert set(bulk) == {p1.id, p2.id, p3.id}
        for pid in (p1.id, p2.id, p3.id):
            assert bulk[pid] == compute_availability(pid)

    def test_bulk_empty_input(self, db_session):
        assert compute_bulk_availability([]) == {}


class TestAssetStatus:

    def test_status_follows_invoice_lifecycle(self, db_session, make_product, invoice):
        product = make_product(quantity_on_hand=1)
        assert resolve_status(product.id) == "InStock"

        line_item_service.add_item(invoice.id, product.id, quantity=1)
        assert product.status == "Processing"

        pay(invoice.id, invoice_service.get_invoice(invoice.id).total_cents)
        assert product.status == "Sold"

    def test_remove_item_returns_product_to_stock(self, db_session, make_product, invoice):
        product = make_product(quantity_on_hand=1)
        item = line_item_service.add_item(invoice.id, product.id, quantity=1)
        line_item_service.remove_item(invoice.id, item.id)

        assert product.status == "InStock"
        assert resolve_status(product.id) == "InStock"

    def test_cancel_returns_product_to_stock(self, db_session, make_product, invoice):
        product = make_product(quantity_on_hand=1)
        line_item_service.add_item(invoice.id, product.id, quantity=1)
        invoice_service.cancel_invoice(invoice.id)

        assert product.status == "InStock"

    def test_partial_payment_keeps_processing(self, db_session, make_product, invoice):
        product = make_product(quantity_on_hand=1)
        line_item_service.add_item(invoice.id, product.id, quantity=1)
        pay(invoice.id, 100)

        assert invoice_service.get_invoice(invoice.id).status == "PARTIALLY_PAID"
        assert product.status == "Processing"

    def test_cached_status_matches_full_recompute_at_every_step(self, db_session, make_product):
        product = make_product(quantity_on_hand=3, price_cents=10000)
        other = make_product(quantity_on_hand=1, price_cents=10000)

        def assert_consistent():
            for p in (product, other):
                assert p.status == resolve_status(p.id)

        first = invoice_service.create_invoice(currency="GHS")
        second = invoice_service.create_invoice(currency="GHS")
        assert_consistent()

        line = line_item_service.add_item(first.id, product.id, quantity=2)
        assert_consistent()
        line_item_service.add_item(first.id, other.id, quantity=1)
        assert_consistent()

        spare = line_item_service.add_item(second.id, product.id, quantity=1)
        assert_consistent()
        line_item_service.remove_item(second.id, spare.id)
        assert_consistent()

        pay(first.id, 30000)
        assert_consistent()
        assert (product.status, other.status) == ("Sold", "Sold")

        line_item_service.void_item(first.id, line.id, "Damaged in store", quantity=1)
        assert_consistent()
        assert product.quantity_on_hand == 2

        # Net 15000 against a 20000 total leaves PAID
        refund(first.id, 15000)
        assert_consistent()
        assert invoice_service.get_invoice(first.id).status == "PARTIALLY_PAID"
        assert (product.status, other.status) == ("Processing", "Processing")
        assert product.quantity_on_hand == 3
