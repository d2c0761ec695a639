# Overview: Service-layer operations for invoices (lifecycle, totals, cancellation).

"""
Invoice Service

WHY: An invoice is a document whose money fields are caches of its line
items and ledger rows. Every mutation ends with recalculate_invoice_totals()
inside the same unit of work, so a reader never sees items and totals that
disagree.

LIFECYCLE:
- UNPAID / PARTIALLY_PAID / PAID are derived by settlement_service
- CANCELLED is set only here, and only when net paid is zero
- Soft delete is allowed for empty UNPAID invoices and CANCELLED invoices
"""

from __future__ import annotations

import logging
from typing import NamedTuple

from flask import current_app, has_app_context

from ..extensions import db
from ..models import Invoice, InvoiceItem
from ..models.invoices import (
    CURRENCIES,
    INVOICE_STATUS_UNPAID,
    INVOICE_STATUS_PAID,
    INVOICE_STATUS_CANCELLED,
)
from ..models.audit import EVENT_INVOICE_CANCELLED, EVENT_INVENTORY_RELEASED
from stockledger.time_utils import utcnow
from . import audit_service
from .asset_status_service import refresh_status
from .audit_service import actor_id_of
from .concurrency import begin_write_lock, lock_for_update, run_with_retry
from .discount_service import (
    compute_line_totals,
    compute_invoice_totals,
    enforce_discount_ceiling,
    validate_discount,
    ceiling_for,
)
from .document_service import next_document_number, DOCUMENT_TYPE_INVOICE
from .errors import NotFoundError, InvalidStateError, InvalidAmountError
from .settlement_service import recalculate_settlement, net_paid_breakdown


logger = logging.getLogger(__name__)

INVOICE_NUMBER_PREFIX = "INV"


class CancellationResult(NamedTuple):
    invoice: Invoice
    released_items: list


def get_locked_invoice(invoice_id: int) -> Invoice:
    """Load a live invoice FOR UPDATE inside the current unit of work."""
    invoice = lock_for_update(
        db.session.query(Invoice).filter_by(id=invoice_id, is_deleted=False)
    ).first()
    if not invoice:
        raise NotFoundError("Invoice not found", code="NOT_FOUND", details={"invoice_id": invoice_id})
    return invoice


# =============================================================================
# TOTALS
# =============================================================================

def apply_line_totals(item: InvoiceItem) -> None:
    """
    Store line totals on an item. Billed quantity is the outstanding
    quantity, so finalized returns leave the invoice total.
    """
    totals = compute_line_totals(
        item.outstanding_quantity,
        item.unit_price_cents,
        item.unit_cost_cents,
        item.discount_type,
        item.discount_value,
    )
    item.discount_cents = totals.discount_cents
    item.line_total_cents = totals.line_total_cents
    item.line_cost_cents = totals.line_cost_cents
    item.line_profit_cents = totals.line_profit_cents


def recalculate_invoice_totals(invoice: Invoice, actor_id: int | None = None) -> Invoice:
    """
    Rebuild line and invoice totals from non-voided items, then re-derive
    settlement fields. Must run inside a unit of work.

    CANCELLED invoices keep zeroed totals.
    """
    if invoice.status == INVOICE_STATUS_CANCELLED:
        _zero_totals(invoice)
        return invoice

    items = (
        db.session.query(InvoiceItem)
        .filter(InvoiceItem.invoice_id == invoice.id, InvoiceItem.voided_at.is_(None))
        .order_by(InvoiceItem.id)
        .all()
    )

    for item in items:
        apply_line_totals(item)

    invoice_totals = compute_invoice_totals(
        [item.line_total_cents for item in items],
        [item.line_cost_cents for item in items],
        invoice.discount_type,
        invoice.discount_value,
    )
    invoice.subtotal_cents = invoice_totals.subtotal_cents
    invoice.discount_cents = invoice_totals.discount_cents
    invoice.total_cents = invoice_totals.total_cents
    invoice.total_cost_cents = invoice_totals.total_cost_cents
    invoice.total_profit_cents = invoice_totals.total_profit_cents
    invoice.margin_bps = invoice_totals.margin_bps

    recalculate_settlement(invoice, actor_id=actor_id)
    return invoice


def enforce_invoice_discount_ceiling(invoice: Invoice, actor) -> None:
    """
    Check the stored invoice discount against the current subtotal.

    Call after recalculate_invoice_totals(); a fixed discount grows as a share
    of the subtotal when lines are removed or repriced.
    """
    enforce_discount_ceiling(invoice.subtotal_cents, invoice.discount_type, invoice.discount_value, ceiling_for(actor))


def _zero_totals(invoice: Invoice) -> None:
    invoice.subtotal_cents = 0
    invoice.discount_cents = 0
    invoice.total_cents = 0
    invoice.amount_paid_cents = 0
    invoice.balance_due_cents = 0
    invoice.total_cost_cents = 0
    invoice.total_profit_cents = 0
    invoice.margin_bps = None


# =============================================================================
# CREATION / EDITING
# =============================================================================

def create_invoice(currency: str | None = None, customer_id=None, notes: str | None = None, actor=None) -> Invoice:
    """Create an empty UNPAID invoice with the next sequential number."""
    if currency is None:
        currency = current_app.config.get("DEFAULT_CURRENCY", "GHS") if has_app_context() else "GHS"
    if currency not in CURRENCIES:
        raise InvalidAmountError(
            f"Currency must be one of: {', '.join(CURRENCIES)}",
            code="INVALID_CURRENCY",
            details={"currency": currency},
        )
    actor_id = actor_id_of(actor)

    def _op():
        begin_write_lock()
        number = next_document_number(document_type=DOCUMENT_TYPE_INVOICE, prefix=INVOICE_NUMBER_PREFIX)
        invoice = Invoice(
            invoice_number=number,
            customer_id=str(customer_id) if customer_id is not None else None,
            status=INVOICE_STATUS_UNPAID,
            currency=currency,
            notes=notes,
            created_by_user_id=actor_id,
            updated_by_user_id=actor_id,
        )
        db.session.add(invoice)
        db.session.flush()

        audit_service.log_activity(
            action_type=audit_service.ACTION_INVOICE_CREATED,
            entity_type="INVOICE",
            entity_id=invoice.id,
            summary=f"Invoice {invoice.invoice_number} created",
            actor_user_id=actor_id,
            details={"currency": currency, "customer_id": invoice.customer_id},
        )

        db.session.commit()
        return invoice

    return run_with_retry(_op)


def update_invoice(invoice_id: int, customer_id=None, notes: str | None = None, actor=None) -> Invoice:
    """Edit header fields (customer reference, notes) on an open invoice."""
    actor_id = actor_id_of(actor)

    def _op():
        begin_write_lock()
        invoice = get_locked_invoice(invoice_id)
        if invoice.is_locked:
            raise InvalidStateError(
                "Can only update unpaid or partially paid invoices",
                code="INVOICE_LOCKED",
                details={"status": invoice.status},
            )
        if customer_id is not None:
            invoice.customer_id = str(customer_id)
        if notes is not None:
            invoice.notes = notes
        invoice.updated_by_user_id = actor_id
        db.session.commit()
        return invoice

    return run_with_retry(_op)


def update_invoice_discount(invoice_id: int, discount_type: str, discount_value=0, actor=None) -> Invoice:
    """
    Set the invoice-level discount (applied to the subtotal).

    The actor's ceiling is enforced on the effective percentage of the subtotal.
    """
    discount_type, discount_value = validate_discount(discount_type, discount_value)
    actor_id = actor_id_of(actor)

    def _op():
        begin_write_lock()
        invoice = get_locked_invoice(invoice_id)
        if invoice.is_locked:
            raise InvalidStateError(
                "Cannot update discount on paid or cancelled invoices",
                code="INVOICE_LOCKED",
                details={"status": invoice.status},
            )

        # Subtotal must be current before the ceiling check
        recalculate_invoice_totals(invoice, actor_id=actor_id)
        enforce_discount_ceiling(invoice.subtotal_cents, discount_type, discount_value, ceiling_for(actor))

        invoice.discount_type = discount_type
        invoice.discount_value = discount_value
        invoice.updated_by_user_id = actor_id
        recalculate_invoice_totals(invoice, actor_id=actor_id)

        audit_service.log_activity(
            action_type=audit_service.ACTION_INVOICE_DISCOUNT_UPDATED,
            entity_type="INVOICE",
            entity_id=invoice.id,
            summary=f"Invoice discount on {invoice.invoice_number} set to {discount_type} {discount_value}",
            actor_user_id=actor_id,
            details={
                "discount_type": discount_type,
                "discount_value": discount_value,
                "discount_cents": invoice.discount_cents,
            },
        )

        db.session.commit()
        return invoice

    return run_with_retry(_op)


def delete_invoice(invoice_id: int, actor=None) -> Invoice:
    """
    Soft-delete an invoice. Preserves the audit trail.

    Allowed for CANCELLED invoices and for UNPAID invoices with no items.
    """
    actor_id = actor_id_of(actor)

    def _op():
        begin_write_lock()
        invoice = lock_for_update(db.session.query(Invoice).filter_by(id=invoice_id)).first()
        if not invoice:
            raise NotFoundError("Invoice not found", code="NOT_FOUND")
        if invoice.is_deleted:
            raise InvalidStateError("Invoice is already deleted", code="ALREADY_DELETED")

        if invoice.status != INVOICE_STATUS_CANCELLED:
            if invoice.status != INVOICE_STATUS_UNPAID:
                raise InvalidStateError(
                    "Only cancelled invoices or empty unpaid invoices can be deleted",
                    code="CANNOT_DELETE",
                    details={"status": invoice.status},
                )
            item_count = db.session.query(InvoiceItem.id).filter_by(invoice_id=invoice.id).count()
            if item_count:
                raise InvalidStateError(
                    "Remove all items or cancel the invoice before deleting it",
                    code="HAS_ITEMS",
                    details={"item_count": item_count},
                )

        invoice.is_deleted = True
        invoice.deleted_at = utcnow()
        invoice.deleted_by_user_id = actor_id

        audit_service.log_activity(
            action_type=audit_service.ACTION_INVOICE_DELETED,
            entity_type="INVOICE",
            entity_id=invoice.id,
            summary=f"Invoice {invoice.invoice_number} deleted",
            actor_user_id=actor_id,
            details={"status": invoice.status},
        )

        db.session.commit()
        return invoice

    return run_with_retry(_op)


# =============================================================================
# CANCELLATION
# =============================================================================

def cancel_invoice(invoice_id: int, reason: str | None = None, actor=None) -> CancellationResult:
    """
    Cancel an invoice whose net paid is zero.

    Line items are kept for the audit trail. The invoice stops reserving its
    products because CANCELLED invoices are excluded from availability, so
    no stock counter is touched here.

    Raises:
        NotFoundError: invoice missing
        InvalidStateError: already cancelled, or net paid is not zero
            (HAS_NET_PAYMENTS, details carry payments/refunds/net)
    """
    actor_id = actor_id_of(actor)

    def _op():
        begin_write_lock()
        invoice = get_locked_invoice(invoice_id)
        if invoice.status == INVOICE_STATUS_CANCELLED:
            raise InvalidStateError("Invoice is already cancelled", code="ALREADY_CANCELLED")

        payments, refunds, net = net_paid_breakdown(invoice.id)
        if net != 0:
            raise InvalidStateError(
                f"Cannot cancel invoice with outstanding payments. Net paid: {net} {invoice.currency} cents. "
                "Refund all payments first so net paid = 0.",
                code="HAS_NET_PAYMENTS",
                details={"payments_cents": payments, "refunds_cents": refunds, "net_paid_cents": net},
            )

        released = _cancel_locked(invoice, reason=reason, actor_id=actor_id)
        db.session.commit()
        return CancellationResult(invoice=invoice, released_items=released)

    return run_with_retry(_op)


def _cancel_locked(invoice: Invoice, reason: str | None, actor_id: int | None) -> list[dict]:
    """Apply cancellation to a locked invoice. Caller has checked net paid."""
    if invoice.status == INVOICE_STATUS_PAID:
        # Unreachable while net paid is zero and total is positive
        raise InvalidStateError("Paid invoices cannot be cancelled", code="INVOICE_LOCKED")

    invoice.status = INVOICE_STATUS_CANCELLED
    _zero_totals(invoice)
    invoice.cancelled_at = utcnow()
    invoice.cancelled_by_user_id = actor_id
    invoice.cancellation_reason = reason or None
    invoice.updated_by_user_id = actor_id
    db.session.flush()

    items = (
        db.session.query(InvoiceItem)
        .filter(InvoiceItem.invoice_id == invoice.id, InvoiceItem.voided_at.is_(None))
        .order_by(InvoiceItem.id)
        .all()
    )

    released = []
    seen = set()
    for item in items:
        if item.product_id in seen:
            continue
        seen.add(item.product_id)
        product = item.product
        previous_status, new_status = refresh_status(product)

        audit_service.record_event(
            product_id=product.id,
            event_type=EVENT_INVOICE_CANCELLED,
            summary=f"Invoice {invoice.invoice_number} cancelled",
            actor_user_id=actor_id,
            source="INVOICE",
            reference_type="invoice",
            reference_id=invoice.id,
            details={"reason": reason},
        )
        audit_service.record_event(
            product_id=product.id,
            event_type=EVENT_INVENTORY_RELEASED,
            summary=f"Released from cancelled invoice {invoice.invoice_number}; status {new_status}",
            actor_user_id=actor_id,
            source="INVOICE",
            reference_type="invoice",
            reference_id=invoice.id,
            details={"previous_status": previous_status, "new_status": new_status},
        )
        released.append({
            "product_id": product.id,
            "sku": product.sku,
            "previous_status": previous_status,
            "new_status": new_status,
        })

    audit_service.log_activity(
        action_type=audit_service.ACTION_INVOICE_CANCELLED,
        entity_type="INVOICE",
        entity_id=invoice.id,
        summary=f"Invoice {invoice.invoice_number} cancelled",
        actor_user_id=actor_id,
        details={"reason": reason, "released_items": len(released)},
    )
    logger.info("Invoice %s cancelled; released %d product(s)", invoice.invoice_number, len(released))
    return released


# =============================================================================
# QUERIES
# =============================================================================

def get_invoice(invoice_id: int) -> Invoice:
    invoice = db.session.get(Invoice, invoice_id)
    if not invoice or invoice.is_deleted:
        raise NotFoundError("Invoice not found", code="NOT_FOUND", details={"invoice_id": invoice_id})
    return invoice


def list_invoices(status: str | None = None, customer_id=None, limit: int = 100, offset: int = 0) -> list[Invoice]:
    query = db.session.query(Invoice).filter(Invoice.is_deleted.is_(False))
    if status:
        query = query.filter(Invoice.status == status)
    if customer_id is not None:
        query = query.filter(Invoice.customer_id == str(customer_id))
    return query.order_by(Invoice.id.desc()).offset(offset).limit(limit).all()
