# Overview: Service-layer operations for invoice line items (reservations).

"""
Line Item Reservation Manager

WHY: A non-voided line item on an open invoice IS the reservation. There is
no counter to increment, so add/update/remove only have to get the
availability check and the row write into one locked unit of work.

DESIGN PRINCIPLES:
- Product row is locked before availability is read (no lost update when
  two invoices race for the last unit)
- Adding the same product twice merges into the existing line
- Unit cost is frozen in invoice currency at add-time (FX snapshot kept on
  the invoice)
- Voiding is for PAID invoices only and restores on-hand for the voided
  quantity; unpaid lines are removed instead
- Every operation ends with product status refresh and invoice totals
  recomputation in the same unit of work
"""

from __future__ import annotations

from ..extensions import db
from ..models import InvoiceItem, Product
from ..models.invoices import (
    INVOICE_STATUS_UNPAID,
    INVOICE_STATUS_PARTIALLY_PAID,
    INVOICE_STATUS_PAID,
    INVOICE_STATUS_CANCELLED,
    DISCOUNT_NONE,
    DISCOUNT_FIXED,
)
from ..models.audit import EVENT_ADDED_TO_INVOICE, EVENT_RESERVED, EVENT_ITEM_VOIDED, EVENT_INVENTORY_RELEASED
from stockledger.time_utils import utcnow
from . import audit_service
from .asset_status_service import refresh_status
from .audit_service import actor_id_of
from .availability_service import availability_for
from .concurrency import begin_write_lock, lock_for_update, run_with_retry
from .discount_service import enforce_discount_ceiling, validate_discount, ceiling_for
from .errors import NotFoundError, InvalidStateError, InvalidAmountError, InsufficientStockError
from .exchange_rate_service import convert_cents, get_rate_with_source
from .invoice_service import (
    get_locked_invoice,
    recalculate_invoice_totals,
    apply_line_totals,
    enforce_invoice_discount_ceiling,
)


def _is_positive_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value >= 1


def _lock_product(product_id: int) -> Product:
    product = lock_for_update(db.session.query(Product).filter_by(id=product_id)).first()
    if not product:
        raise NotFoundError("Inventory item not found", code="PRODUCT_NOT_FOUND", details={"product_id": product_id})
    return product


def _get_item(invoice_id: int, item_id: int) -> InvoiceItem:
    item = lock_for_update(
        db.session.query(InvoiceItem).filter_by(id=item_id, invoice_id=invoice_id)
    ).first()
    if not item:
        raise NotFoundError("Invoice item not found", code="ITEM_NOT_FOUND", details={"item_id": item_id})
    return item


def _describe(product: Product) -> str:
    return f"{product.name} [{product.sku}]"


# =============================================================================
# ADD
# =============================================================================

def add_item(
    invoice_id: int,
    product_id: int,
    quantity: int = 1,
    unit_price_cents: int | None = None,
    actor=None,
) -> InvoiceItem:
    """
    Reserve `quantity` units of a product on an UNPAID invoice.

    Raises:
        InvalidAmountError: quantity < 1 or negative price
        NotFoundError: invoice or product missing
        InvalidStateError: invoice not UNPAID, product soft-deleted
        InsufficientStockError: quantity > available (details carry
            available and requested)
    """
    if not _is_positive_int(quantity):
        raise InvalidAmountError("Quantity must be an integer >= 1", code="INVALID_QUANTITY", details={"quantity": quantity})
    if unit_price_cents is not None and (isinstance(unit_price_cents, bool) or not isinstance(unit_price_cents, int) or unit_price_cents < 0):
        raise InvalidAmountError("Unit price must be a non-negative integer", code="INVALID_PRICE")
    actor_id = actor_id_of(actor)

    def _op():
        begin_write_lock()
        invoice = get_locked_invoice(invoice_id)
        if invoice.status != INVOICE_STATUS_UNPAID:
            if invoice.status == INVOICE_STATUS_CANCELLED:
                msg = "Cannot add items to cancelled invoices"
            else:
                msg = "Cannot add items to invoices with payments. Void the payment first."
            raise InvalidStateError(msg, code="INVOICE_LOCKED", details={"status": invoice.status})

        product = _lock_product(product_id)
        if product.is_deleted:
            raise InvalidStateError("Inventory item has been deleted", code="PRODUCT_DELETED", details={"product_id": product_id})

        availability = availability_for(product)
        if quantity > availability.available:
            raise InsufficientStockError(
                f"Only {availability.available} units available (requested {quantity})",
                code="ASSET_UNAVAILABLE",
                details={
                    "product_id": product.id,
                    "available": availability.available,
                    "requested": quantity,
                    "on_hand": availability.on_hand,
                    "reserved": availability.reserved,
                },
            )

        existing = (
            db.session.query(InvoiceItem)
            .filter(
                InvoiceItem.invoice_id == invoice.id,
                InvoiceItem.product_id == product.id,
                InvoiceItem.voided_at.is_(None),
            )
            .first()
        )

        if existing:
            existing.quantity += quantity
            item = existing
        else:
            unit_cost = product.cost_cents or 0
            cost_currency = product.cost_currency or "USD"
            if unit_cost > 0 and cost_currency != invoice.currency:
                rate, source = get_rate_with_source(cost_currency, invoice.currency)
                unit_cost = convert_cents(unit_cost, cost_currency, invoice.currency)
                if invoice.fx_rate_used is None:
                    invoice.fx_rate_used = rate
                    invoice.fx_rate_source = source
                    invoice.fx_fetched_at = utcnow()

            if unit_price_cents is not None:
                price = unit_price_cents
            else:
                price = convert_cents(product.price_cents or 0, product.price_currency or invoice.currency, invoice.currency)

            item = InvoiceItem(
                invoice_id=invoice.id,
                product_id=product.id,
                description=_describe(product),
                quantity=quantity,
                unit_price_cents=price,
                unit_cost_cents=unit_cost,
                original_cost_cents=product.cost_cents,
                original_cost_currency=cost_currency,
            )
            db.session.add(item)

        db.session.flush()
        refresh_status(product)
        invoice.updated_by_user_id = actor_id
        recalculate_invoice_totals(invoice, actor_id=actor_id)
        enforce_invoice_discount_ceiling(invoice, actor)

        audit_service.record_event(
            product_id=product.id,
            event_type=EVENT_ADDED_TO_INVOICE,
            summary=f"Added {quantity} to invoice {invoice.invoice_number}",
            actor_user_id=actor_id,
            source="INVOICE",
            reference_type="invoice",
            reference_id=invoice.id,
            details={"item_id": item.id, "quantity": quantity, "line_quantity": item.quantity},
        )
        audit_service.record_event(
            product_id=product.id,
            event_type=EVENT_RESERVED,
            summary=f"Reserved {quantity} for invoice {invoice.invoice_number}",
            actor_user_id=actor_id,
            source="INVOICE",
            reference_type="invoice",
            reference_id=invoice.id,
            details={"available_before": availability.available},
        )
        audit_service.log_activity(
            action_type=audit_service.ACTION_INVOICE_ITEM_ADDED,
            entity_type="INVOICE",
            entity_id=invoice.id,
            summary=f"Item added to invoice {invoice.invoice_number}: {product.sku} x{quantity}",
            actor_user_id=actor_id,
            details={"product_id": product.id, "quantity": quantity, "merged": existing is not None},
        )

        db.session.commit()
        return item

    return run_with_retry(_op)


# =============================================================================
# UPDATE
# =============================================================================

def update_item(
    invoice_id: int,
    item_id: int,
    quantity: int | None = None,
    unit_price_cents: int | None = None,
    discount_type: str | None = None,
    discount_value=None,
    actor=None,
) -> InvoiceItem:
    """
    Change quantity, unit price and/or line discount.

    A quantity increase locks the product and checks only the delta against
    availability; a decrease needs no check. The actor's discount ceiling
    applies to the effective percentage of the pre-discount line total.
    """
    if quantity is not None and not _is_positive_int(quantity):
        raise InvalidAmountError("Quantity must be an integer >= 1", code="INVALID_QUANTITY", details={"quantity": quantity})
    if unit_price_cents is not None and (isinstance(unit_price_cents, bool) or not isinstance(unit_price_cents, int) or unit_price_cents < 0):
        raise InvalidAmountError("Unit price must be a non-negative integer", code="INVALID_PRICE")
    if discount_type is not None:
        discount_type, discount_value = validate_discount(discount_type, discount_value)
    elif discount_value is not None:
        raise InvalidAmountError("discount_type is required with discount_value", code="INVALID_DISCOUNT_TYPE")
    actor_id = actor_id_of(actor)

    def _op():
        begin_write_lock()
        invoice = get_locked_invoice(invoice_id)
        if invoice.is_locked:
            raise InvalidStateError(
                "Cannot update items on paid or cancelled invoices",
                code="INVOICE_LOCKED",
                details={"status": invoice.status},
            )

        item = _get_item(invoice.id, item_id)
        if item.is_voided:
            raise InvalidStateError("This item has been voided", code="ALREADY_VOIDED")

        changes = {}
        new_quantity = quantity if quantity is not None else item.quantity
        new_price = unit_price_cents if unit_price_cents is not None else item.unit_price_cents
        new_discount_type = discount_type if discount_type is not None else item.discount_type
        new_discount_value = discount_value if discount_type is not None else item.discount_value

        if new_quantity < (item.quantity_returned_total or 0):
            raise InvalidAmountError(
                f"Quantity cannot be below the {item.quantity_returned_total} unit(s) already returned",
                code="INVALID_QUANTITY",
                details={"quantity_returned_total": item.quantity_returned_total},
            )

        # Price and quantity cuts raise the effective percentage of a stored discount
        if new_discount_type not in (None, DISCOUNT_NONE):
            pre_discount = (new_quantity - (item.quantity_returned_total or 0)) * new_price
            enforce_discount_ceiling(pre_discount, new_discount_type, new_discount_value, ceiling_for(actor))

        product = None
        if new_quantity > item.quantity:
            product = _lock_product(item.product_id)
            delta = new_quantity - item.quantity
            # Reservation already includes this line's current quantity
            availability = availability_for(product)
            if delta > availability.available:
                raise InsufficientStockError(
                    f"Only {availability.available} more units available (need {delta})",
                    code="INSUFFICIENT_STOCK",
                    details={
                        "product_id": product.id,
                        "available": availability.available,
                        "requested": delta,
                    },
                )

        if new_quantity != item.quantity:
            changes["quantity"] = [item.quantity, new_quantity]
            item.quantity = new_quantity
        if new_price != item.unit_price_cents:
            changes["unit_price_cents"] = [item.unit_price_cents, new_price]
            item.unit_price_cents = new_price
        if discount_type is not None:
            changes["discount"] = [[item.discount_type, item.discount_value], [new_discount_type, new_discount_value]]
            item.discount_type = new_discount_type
            item.discount_value = new_discount_value

        apply_line_totals(item)
        db.session.flush()

        if "quantity" in changes:
            refresh_status(product or db.session.get(Product, item.product_id))

        invoice.updated_by_user_id = actor_id
        recalculate_invoice_totals(invoice, actor_id=actor_id)
        enforce_invoice_discount_ceiling(invoice, actor)

        audit_service.log_activity(
            action_type=audit_service.ACTION_INVOICE_ITEM_UPDATED,
            entity_type="INVOICE",
            entity_id=invoice.id,
            summary=f"Item updated on invoice {invoice.invoice_number}: {item.description}",
            actor_user_id=actor_id,
            details={"item_id": item.id, "changes": changes},
        )

        db.session.commit()
        return item

    return run_with_retry(_op)


# =============================================================================
# REMOVE
# =============================================================================

def remove_item(invoice_id: int, item_id: int, actor=None):
    """
    Hard-delete a line from an unpaid invoice, releasing its reservation.

    Rejected on PAID / PARTIALLY_PAID / CANCELLED invoices.
    """
    actor_id = actor_id_of(actor)

    def _op():
        begin_write_lock()
        invoice = get_locked_invoice(invoice_id)
        if invoice.status in (INVOICE_STATUS_PAID, INVOICE_STATUS_PARTIALLY_PAID, INVOICE_STATUS_CANCELLED):
            if invoice.status == INVOICE_STATUS_CANCELLED:
                msg = "Cannot remove items from cancelled invoices"
            else:
                msg = "Cannot remove items from invoices with payments. Void the payment first."
            raise InvalidStateError(msg, code="INVOICE_LOCKED", details={"status": invoice.status})

        item = _get_item(invoice.id, item_id)
        product = _lock_product(item.product_id)
        removed = {"item_id": item.id, "product_id": product.id, "quantity": item.quantity, "description": item.description}

        db.session.delete(item)
        db.session.flush()

        refresh_status(product)
        invoice.updated_by_user_id = actor_id
        recalculate_invoice_totals(invoice, actor_id=actor_id)
        enforce_invoice_discount_ceiling(invoice, actor)

        audit_service.record_event(
            product_id=product.id,
            event_type=EVENT_INVENTORY_RELEASED,
            summary=f"Removed {removed['quantity']} from invoice {invoice.invoice_number}",
            actor_user_id=actor_id,
            source="INVOICE",
            reference_type="invoice",
            reference_id=invoice.id,
            details=removed,
        )
        audit_service.log_activity(
            action_type=audit_service.ACTION_INVOICE_ITEM_REMOVED,
            entity_type="INVOICE",
            entity_id=invoice.id,
            summary=f"Item removed from invoice {invoice.invoice_number}: {product.sku}",
            actor_user_id=actor_id,
            details=removed,
        )

        db.session.commit()
        return invoice

    return run_with_retry(_op)


# =============================================================================
# VOID
# =============================================================================

def void_item(invoice_id: int, item_id: int, reason: str, quantity: int | None = None, actor=None) -> InvoiceItem:
    """
    Void all or part of a line on a PAID invoice.

    Full void stamps the void marker. Partial void reduces the original line
    and inserts a second, already-voided line carrying the voided quantity.
    On-hand is restored by the voided quantity. Voiding the last non-voided
    line is rejected (void the payment, then remove or cancel instead).

    Returns the voided line (the original on full void, the split line on
    partial void).
    """
    if not (reason or "").strip():
        raise InvalidAmountError("A reason is required when voiding an item", code="REASON_REQUIRED")
    if quantity is not None and not _is_positive_int(quantity):
        raise InvalidAmountError("Void quantity must be an integer >= 1", code="INVALID_QUANTITY")
    actor_id = actor_id_of(actor)
    reason = reason.strip()

    def _op():
        begin_write_lock()
        invoice = get_locked_invoice(invoice_id)
        if invoice.status != INVOICE_STATUS_PAID:
            raise InvalidStateError(
                "Items can only be voided on paid invoices. For unpaid invoices, remove the item instead.",
                code="NOT_PAID",
                details={"status": invoice.status},
            )

        item = _get_item(invoice.id, item_id)
        if item.is_voided:
            raise InvalidStateError("This item has already been voided", code="ALREADY_VOIDED")

        voidable = item.outstanding_quantity
        qty = quantity if quantity is not None else voidable
        if qty < 1 or qty > voidable:
            raise InvalidAmountError(
                f"Void quantity must be between 1 and {voidable}",
                code="INVALID_QUANTITY",
                details={"quantity": qty, "max_quantity": voidable},
            )

        is_full_void = qty == item.quantity
        if is_full_void:
            active_count = (
                db.session.query(InvoiceItem.id)
                .filter(InvoiceItem.invoice_id == invoice.id, InvoiceItem.voided_at.is_(None))
                .count()
            )
            if active_count <= 1:
                raise InvalidStateError(
                    "Cannot void the last item on a paid invoice. Void the payment first, then remove or cancel the invoice.",
                    code="LAST_ITEM",
                )

        product = _lock_product(item.product_id)
        now = utcnow()

        if is_full_void:
            item.voided_at = now
            item.voided_by_user_id = actor_id
            item.void_reason = reason
            voided_line = item
        else:
            item.quantity -= qty
            voided_line = InvoiceItem(
                invoice_id=invoice.id,
                product_id=item.product_id,
                description=item.description,
                quantity=qty,
                unit_price_cents=item.unit_price_cents,
                unit_cost_cents=item.unit_cost_cents,
                original_cost_cents=item.original_cost_cents,
                original_cost_currency=item.original_cost_currency,
                discount_type=item.discount_type,
                discount_value=item.discount_value if item.discount_type != DISCOUNT_FIXED else 0,
                voided_at=now,
                voided_by_user_id=actor_id,
                void_reason=reason,
            )
            voided_line.quantity_returned_total = 0
            apply_line_totals(voided_line)
            db.session.add(voided_line)

        # Payment already decremented on-hand for these units
        product.quantity_on_hand += qty
        db.session.flush()

        refresh_status(product)
        invoice.updated_by_user_id = actor_id
        recalculate_invoice_totals(invoice, actor_id=actor_id)

        audit_service.record_event(
            product_id=product.id,
            event_type=EVENT_ITEM_VOIDED,
            summary=f"Voided {qty} on invoice {invoice.invoice_number}",
            actor_user_id=actor_id,
            source="INVOICE",
            reference_type="invoice_item",
            reference_id=voided_line.id,
            details={"quantity": qty, "reason": reason, "on_hand_after": product.quantity_on_hand},
        )
        audit_service.log_activity(
            action_type=audit_service.ACTION_INVOICE_ITEM_VOIDED,
            entity_type="INVOICE",
            entity_id=invoice.id,
            summary=f"Item voided on invoice {invoice.invoice_number}: {item.description} x{qty}",
            actor_user_id=actor_id,
            details={"item_id": item.id, "quantity": qty, "reason": reason, "full_void": is_full_void},
        )

        db.session.commit()
        return voided_line

    return run_with_retry(_op)
