# Overview: Derives the cached product status from invoice line items.

from __future__ import annotations

import logging

from ..extensions import db
from ..models import Product, Invoice, InvoiceItem
from ..models.inventory import (
    PRODUCT_STATUS_IN_STOCK,
    PRODUCT_STATUS_PROCESSING,
    PRODUCT_STATUS_SOLD,
)
from ..models.invoices import INVOICE_STATUS_CANCELLED, INVOICE_STATUS_PAID


logger = logging.getLogger(__name__)


def _active_lines(product_id: int):
    return (
        db.session.query(InvoiceItem.id)
        .join(Invoice, Invoice.id == InvoiceItem.invoice_id)
        .filter(
            InvoiceItem.product_id == product_id,
            InvoiceItem.voided_at.is_(None),
            Invoice.is_deleted.is_(False),
        )
    )


def resolve_status(product_id: int) -> str:
    """
    Compute product status from scratch.

    - Sold: a non-voided line on a PAID invoice still has units not returned
    - Processing: a non-voided line on an open (not CANCELLED, not PAID) invoice
    - InStock: otherwise

    Pure function of invoice_items and invoices; never reads the stored status.
    """
    sold = (
        _active_lines(product_id)
        .filter(
            Invoice.status == INVOICE_STATUS_PAID,
            InvoiceItem.quantity_returned_total < InvoiceItem.quantity,
        )
        .first()
    )
    if sold:
        return PRODUCT_STATUS_SOLD

    processing = (
        _active_lines(product_id)
        .filter(Invoice.status.notin_((INVOICE_STATUS_CANCELLED, INVOICE_STATUS_PAID)))
        .first()
    )
    if processing:
        return PRODUCT_STATUS_PROCESSING

    return PRODUCT_STATUS_IN_STOCK


def refresh_status(product: Product) -> tuple[str, str]:
    """
    Recompute and persist status only when it changed.

    Returns (old_status, new_status). Idempotent.
    """
    old = product.status
    new = resolve_status(product.id)
    if new != old:
        product.status = new
        logger.debug("Product %s status %s -> %s", product.id, old, new)
    return old, new


def refresh_statuses(product_ids) -> dict[int, tuple[str, str]]:
    """Refresh several products (each id once)."""
    changes = {}
    for pid in sorted(set(product_ids)):
        product = db.session.get(Product, pid)
        if product is None:
            continue
        changes[pid] = refresh_status(product)
    return changes
