# Overview: Pytest coverage for catalog maintenance and stock-takes.

"""
Stock Service Tests

quantity_on_hand only moves through adjust_stock() (or the invoice and
return flows). A count can never drop below what open invoices reserve.
"""

import pytest

from stockledger.models import InventoryItemEvent, ActivityLog
from stockledger.services import line_item_service, stock_service
from stockledger.services.availability_service import compute_availability
from stockledger.services.errors import InvalidAmountError, InvalidStateError, NotFoundError
from stockledger.validation import ConflictError, ValidationError


def _patch(**overrides):
    patch = {
        "sku": "PHONE-001",
        "name": "Refurbished phone",
        "quantity_on_hand": 4,
        "price_cents": 250000,
        "price_currency": "GHS",
        "cost_cents": 12000,
        "cost_currency": "USD",
    }
    patch.update(overrides)
    return patch


class TestCreateProduct:

    def test_create_records_event(self, db_session, admin_user):
        product = stock_service.create_product(_patch(), actor=admin_user)

        assert product.id is not None
        assert product.status == "InStock"
        assert compute_availability(product.id).available == 4
        events = db_session.query(InventoryItemEvent).filter_by(product_id=product.id).all()
        assert [ev.event_type for ev in events] == ["CREATED"]
        assert events[0].actor_user_id == admin_user.id

    def test_duplicate_sku(self, db_session):
        stock_service.create_product(_patch())
        with pytest.raises(ConflictError):
            stock_service.create_product(_patch(name="Another"))

    def test_negative_price_rejected(self, db_session):
        with pytest.raises(ValidationError):
            stock_service.create_product(_patch(price_cents=-1))


class TestUpdateProduct:

    def test_update_fields(self, db_session, make_product):
        product = make_product()
        updated = stock_service.update_product(product.id, {"name": "Renamed", "price_cents": 9000})
        assert updated.name == "Renamed"
        assert updated.price_cents == 9000

    def test_quantity_not_editable(self, db_session, make_product):
        product = make_product()
        with pytest.raises(InvalidAmountError) as exc:
            stock_service.update_product(product.id, {"quantity_on_hand": 10})
        assert exc.value.code == "USE_STOCK_ADJUSTMENT"

    def test_sku_conflict(self, db_session, make_product):
        make_product(sku="TAKEN")
        product = make_product()
        with pytest.raises(ConflictError):
            stock_service.update_product(product.id, {"sku": "TAKEN"})


class TestAdjustStock:

    def test_adjust_records_event_and_activity(self, db_session, make_product, manager_user):
        product = make_product(quantity_on_hand=2)
        stock_service.adjust_stock(product.id, 5, "Delivery counted", actor=manager_user)

        assert product.quantity_on_hand == 5
        event = db_session.query(InventoryItemEvent).filter_by(
            product_id=product.id, event_type="STOCK_ADJUSTED"
        ).one()
        assert event.details["delta"] == 3
        assert event.details["reason"] == "Delivery counted"
        assert db_session.query(ActivityLog).filter_by(action_type="STOCK_ADJUSTED").count() == 1

    def test_cannot_go_below_reserved(self, db_session, make_product, invoice):
        product = make_product(quantity_on_hand=3)
        line_item_service.add_item(invoice.id, product.id, quantity=2)

        with pytest.raises(InvalidStateError) as exc:
            stock_service.adjust_stock(product.id, 1, "Shrinkage")
        assert exc.value.code == "BELOW_RESERVED"
        assert exc.value.details == {"reserved": 2, "requested": 1}
        assert product.quantity_on_hand == 3

        stock_service.adjust_stock(product.id, 2, "Shrinkage")
        assert compute_availability(product.id).available == 0

    def test_reason_required(self, db_session, make_product):
        product = make_product()
        with pytest.raises(InvalidAmountError) as exc:
            stock_service.adjust_stock(product.id, 3, "  ")
        assert exc.value.code == "REASON_REQUIRED"

    @pytest.mark.parametrize("quantity", [-1, 2.0, True, "3"])
    def test_invalid_quantity(self, db_session, make_product, quantity):
        product = make_product()
        with pytest.raises(InvalidAmountError) as exc:
            stock_service.adjust_stock(product.id, quantity, "Count")
        assert exc.value.code == "INVALID_QUANTITY"

    def test_unknown_product(self, db_session):
        with pytest.raises(NotFoundError):
            stock_service.adjust_stock(999999, 1, "Count")


class TestSoftDelete:

    def test_delete_hides_product(self, db_session, make_product):
        product = make_product()
        stock_service.soft_delete_product(product.id)

        assert product.is_deleted
        with pytest.raises(NotFoundError):
            stock_service.get_product(product.id)
        assert stock_service.get_product(product.id, include_deleted=True).id == product.id
        assert stock_service.list_products() == []

    def test_reserved_product_cannot_be_deleted(self, db_session, product, invoice):
        line_item_service.add_item(invoice.id, product.id, quantity=1)
        with pytest.raises(InvalidStateError) as exc:
            stock_service.soft_delete_product(product.id)
        assert exc.value.code == "PRODUCT_RESERVED"

    def test_delete_twice(self, db_session, make_product):
        product = make_product()
        stock_service.soft_delete_product(product.id)
        with pytest.raises(InvalidStateError) as exc:
            stock_service.soft_delete_product(product.id)
        assert exc.value.code == "ALREADY_DELETED"


class TestListProducts:

    def test_search_and_status(self, db_session, make_product, invoice):
        phone = make_product(sku="PHONE-9")
        make_product(sku="LAPTOP-1")
        line_item_service.add_item(invoice.id, phone.id, quantity=1)

        assert [p.sku for p in stock_service.list_products(search="phone")] == ["PHONE-9"]
        assert [p.id for p in stock_service.list_products(status="Processing")] == [phone.id]
