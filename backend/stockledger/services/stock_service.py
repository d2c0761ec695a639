# Overview: Product catalog and stock-take operations (create, adjust, soft delete).

"""
Stock Service

WHY: quantity_on_hand is the only stored stock counter, so every write to it
outside the invoice flow goes through this module and leaves an
InventoryItemEvent behind. Reservations are never touched here; they are
derived from open invoice lines (see availability_service).

RULES:
- A stock-take may not set on_hand below what open invoices already reserve
- A product that is reserved or sold on an open line cannot be deleted
- Products with history are soft-deleted, never removed
"""

from __future__ import annotations

import logging

from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Product
from ..models.inventory import PRODUCT_STATUS_IN_STOCK, PRODUCT_STATUS_PROCESSING
from ..models.audit import EVENT_CREATED, EVENT_STOCK_ADJUSTED, EVENT_SOFT_DELETED
from ..validation import ConflictError, enforce_rules_product
from stockledger.time_utils import utcnow
from . import audit_service
from .audit_service import actor_id_of
from .availability_service import availability_for
from .concurrency import begin_write_lock, lock_for_update, run_with_retry
from .errors import NotFoundError, InvalidStateError, InvalidAmountError


logger = logging.getLogger(__name__)


def _get_locked_product(product_id: int) -> Product:
    product = lock_for_update(db.session.query(Product).filter_by(id=product_id)).first()
    if not product:
        raise NotFoundError(f"Product {product_id} not found", code="PRODUCT_NOT_FOUND")
    return product


def create_product(patch: dict, actor=None) -> Product:
    """
    Create a product from an already validated patch (see validation.py).

    Raises ConflictError when the SKU is taken.
    """
    enforce_rules_product(patch)
    actor_id = actor_id_of(actor)

    def _op():
        begin_write_lock()
        if db.session.query(Product.id).filter_by(sku=patch["sku"]).first():
            raise ConflictError(f"SKU already exists: {patch['sku']}")

        product = Product(**patch)
        product.status = PRODUCT_STATUS_IN_STOCK
        db.session.add(product)
        try:
            db.session.flush()
        except IntegrityError:
            raise ConflictError(f"SKU already exists: {patch['sku']}")

        audit_service.record_event(
            product_id=product.id,
            event_type=EVENT_CREATED,
            summary=f"Product {product.sku} created with {product.quantity_on_hand or 0} on hand",
            actor_user_id=actor_id,
            source="USER",
            details={"quantity_on_hand": product.quantity_on_hand or 0},
        )
        audit_service.log_activity(
            action_type=audit_service.ACTION_PRODUCT_CREATED,
            entity_type="PRODUCT",
            entity_id=product.id,
            summary=f"Product {product.sku} created",
            actor_user_id=actor_id,
        )

        db.session.commit()
        return product

    return run_with_retry(_op)


def update_product(product_id: int, patch: dict, actor=None) -> Product:
    """
    Edit descriptive and pricing fields.

    quantity_on_hand is not editable here; use adjust_stock().
    """
    if "quantity_on_hand" in patch:
        raise InvalidAmountError(
            "Use a stock adjustment to change quantity on hand",
            code="USE_STOCK_ADJUSTMENT",
        )
    enforce_rules_product(patch)

    def _op():
        begin_write_lock()
        product = _get_locked_product(product_id)
        if product.is_deleted:
            raise InvalidStateError("Product is deleted", code="PRODUCT_DELETED")

        if "sku" in patch and patch["sku"] != product.sku:
            taken = db.session.query(Product.id).filter(Product.sku == patch["sku"], Product.id != product.id).first()
            if taken:
                raise ConflictError(f"SKU already exists: {patch['sku']}")

        for key, value in patch.items():
            setattr(product, key, value)

        db.session.commit()
        return product

    return run_with_retry(_op)


def adjust_stock(product_id: int, new_quantity: int, reason: str, actor=None) -> Product:
    """
    Stock-take: set quantity_on_hand to a counted value.

    Raises:
        InvalidAmountError: negative quantity or missing reason
        InvalidStateError: product deleted, or count below reserved units
            (BELOW_RESERVED, details carry reserved / requested)
    """
    if not isinstance(new_quantity, int) or isinstance(new_quantity, bool) or new_quantity < 0:
        raise InvalidAmountError("Quantity must be a non-negative integer", code="INVALID_QUANTITY")
    reason = (reason or "").strip()
    if not reason:
        raise InvalidAmountError("A reason is required for stock adjustments", code="REASON_REQUIRED")
    actor_id = actor_id_of(actor)

    def _op():
        begin_write_lock()
        product = _get_locked_product(product_id)
        if product.is_deleted:
            raise InvalidStateError("Product is deleted", code="PRODUCT_DELETED")

        availability = availability_for(product)
        if new_quantity < availability.reserved:
            raise InvalidStateError(
                f"Cannot set on hand to {new_quantity}; {availability.reserved} unit(s) are reserved by open invoices",
                code="BELOW_RESERVED",
                details={"reserved": availability.reserved, "requested": new_quantity},
            )

        previous = product.quantity_on_hand or 0
        product.quantity_on_hand = new_quantity
        delta = new_quantity - previous

        audit_service.record_event(
            product_id=product.id,
            event_type=EVENT_STOCK_ADJUSTED,
            summary=f"Stock adjusted {previous} -> {new_quantity}: {reason}",
            actor_user_id=actor_id,
            source="USER",
            details={"previous": previous, "new": new_quantity, "delta": delta, "reason": reason},
        )
        audit_service.log_activity(
            action_type=audit_service.ACTION_STOCK_ADJUSTED,
            entity_type="PRODUCT",
            entity_id=product.id,
            summary=f"Stock for {product.sku} adjusted by {delta:+d}",
            actor_user_id=actor_id,
            details={"previous": previous, "new": new_quantity, "reason": reason},
        )

        db.session.commit()
        logger.info("Product %s on hand %d -> %d (%s)", product.sku, previous, new_quantity, reason)
        return product

    return run_with_retry(_op)


def soft_delete_product(product_id: int, actor=None) -> Product:
    """Mark a product deleted. Rejected while any open invoice reserves it."""
    actor_id = actor_id_of(actor)

    def _op():
        begin_write_lock()
        product = _get_locked_product(product_id)
        if product.is_deleted:
            raise InvalidStateError("Product is already deleted", code="ALREADY_DELETED")

        availability = availability_for(product)
        if availability.reserved > 0 or product.status == PRODUCT_STATUS_PROCESSING:
            raise InvalidStateError(
                "Product is on an open invoice and cannot be deleted",
                code="PRODUCT_RESERVED",
                details={"reserved": availability.reserved, "status": product.status},
            )

        product.deleted_at = utcnow()
        product.deleted_by_user_id = actor_id

        audit_service.record_event(
            product_id=product.id,
            event_type=EVENT_SOFT_DELETED,
            summary=f"Product {product.sku} deleted",
            actor_user_id=actor_id,
            source="USER",
        )
        audit_service.log_activity(
            action_type=audit_service.ACTION_PRODUCT_DELETED,
            entity_type="PRODUCT",
            entity_id=product.id,
            summary=f"Product {product.sku} deleted",
            actor_user_id=actor_id,
        )

        db.session.commit()
        return product

    return run_with_retry(_op)


def get_product(product_id: int, include_deleted: bool = False) -> Product:
    product = db.session.get(Product, product_id)
    if not product or (product.is_deleted and not include_deleted):
        raise NotFoundError(f"Product {product_id} not found", code="PRODUCT_NOT_FOUND")
    return product


def list_products(
    status: str | None = None,
    search: str | None = None,
    include_deleted: bool = False,
    limit: int = 100,
    offset: int = 0,
) -> list[Product]:
    query = db.session.query(Product)
    if not include_deleted:
        query = query.filter(Product.deleted_at.is_(None))
    if status:
        query = query.filter(Product.status == status)
    if search:
        like = f"%{search.strip()}%"
        query = query.filter(db.or_(Product.sku.ilike(like), Product.name.ilike(like)))
    return query.order_by(Product.id).offset(offset).limit(limit).all()
