# Overview: Read-side availability computation (on hand minus reserved).

"""
Availability Service

WHY: There is no stored reservation counter. A product is reserved by every
non-voided line item on an invoice that is still open (neither CANCELLED nor
PAID). Deriving the number by query removes the class of bugs where a
counter drifts from the rows it summarizes.

PAID invoices are excluded from `reserved` because payment already
decremented quantity_on_hand; counting them again would double-subtract.

Callers that mutate line items must call compute_availability(lock=True)
inside their unit of work, after begin_write_lock(), so the read and the
write happen under the same lock.
"""

from __future__ import annotations

from typing import Iterable, NamedTuple

from sqlalchemy import func

from ..extensions import db
from ..models import Product, Invoice, InvoiceItem
from ..models.invoices import INVOICE_STATUS_CANCELLED, INVOICE_STATUS_PAID
from .concurrency import lock_for_update
from .errors import NotFoundError


NON_RESERVING_STATUSES = (INVOICE_STATUS_CANCELLED, INVOICE_STATUS_PAID)


class Availability(NamedTuple):
    product_id: int
    on_hand: int
    reserved: int
    available: int


def _outstanding_quantity():
    return func.coalesce(
        func.sum(InvoiceItem.quantity - InvoiceItem.quantity_returned_total),
        0,
    )


def _reserving_items_query(columns, exclude_invoice_id: int | None = None):
    query = (
        db.session.query(*columns)
        .join(Invoice, Invoice.id == InvoiceItem.invoice_id)
        .filter(
            InvoiceItem.voided_at.is_(None),
            Invoice.status.notin_(NON_RESERVING_STATUSES),
            Invoice.is_deleted.is_(False),
        )
    )
    if exclude_invoice_id is not None:
        query = query.filter(InvoiceItem.invoice_id != exclude_invoice_id)
    return query


def get_reserved_quantity(product_id: int, exclude_invoice_id: int | None = None) -> int:
    """Sum of outstanding quantity on open, non-voided invoice lines."""
    reserved = (
        _reserving_items_query([_outstanding_quantity()], exclude_invoice_id)
        .filter(InvoiceItem.product_id == product_id)
        .scalar()
    )
    return int(reserved or 0)


def compute_availability(
    product_id: int,
    exclude_invoice_id: int | None = None,
    lock: bool = False,
) -> Availability:
    """
    Availability of one product.

    With lock=True the product row is read FOR UPDATE inside the caller's
    unit of work.
    """
    query = db.session.query(Product).filter_by(id=product_id)
    if lock:
        query = lock_for_update(query)
    product = query.first()
    if not product:
        raise NotFoundError(f"Product {product_id} not found", code="PRODUCT_NOT_FOUND")

    return availability_for(product, exclude_invoice_id=exclude_invoice_id)


def availability_for(product: Product, exclude_invoice_id: int | None = None) -> Availability:
    """Availability of an already loaded (and, if needed, locked) product."""
    reserved = get_reserved_quantity(product.id, exclude_invoice_id=exclude_invoice_id)
    on_hand = product.quantity_on_hand or 0
    return Availability(
        product_id=product.id,
        on_hand=on_hand,
        reserved=reserved,
        available=max(0, on_hand - reserved),
    )


def compute_bulk_availability(product_ids: Iterable[int]) -> dict[int, Availability]:
    """
    Availability for many products in two queries regardless of input size.

    Unknown ids are absent from the result. Soft-deleted products are
    included so callers can decide how to present them.
    """
    ids = sorted({int(pid) for pid in product_ids or []})
    if not ids:
        return {}

    rows = (
        _reserving_items_query([InvoiceItem.product_id, _outstanding_quantity()])
        .filter(InvoiceItem.product_id.in_(ids))
        .group_by(InvoiceItem.product_id)
        .all()
    )
    reserved_map = {int(pid): int(reserved or 0) for pid, reserved in rows}

    products = (
        db.session.query(Product.id, Product.quantity_on_hand)
        .filter(Product.id.in_(ids))
        .all()
    )

    result = {}
    for pid, on_hand in products:
        on_hand = on_hand or 0
        reserved = reserved_map.get(pid, 0)
        result[pid] = Availability(
            product_id=pid,
            on_hand=on_hand,
            reserved=reserved,
            available=max(0, on_hand - reserved),
        )
    return result
