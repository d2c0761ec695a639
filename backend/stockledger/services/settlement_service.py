# Overview: Service-layer operations for invoice settlement (payments, refunds, voids).

"""
Settlement Ledger

WHY: amount_paid, balance_due and status are never typed in by a caller.
They are re-derived from the append-only invoice_transactions rows every
time the ledger changes, so a void is just a marker and recomputation is
idempotent.

DESIGN PRINCIPLES:
- amount_paid = max(0, sum(PAYMENT) - sum(REFUND)) over non-voided rows
- balance_due = max(0, total - amount_paid)
- status: paid <= 0 -> UNPAID, paid < total -> PARTIALLY_PAID, else PAID
- CANCELLED is set only by cancel_invoice() and is never produced here
- Entering PAID decrements quantity_on_hand by each line's outstanding
  quantity; leaving PAID restores the same amount
"""

from __future__ import annotations

import logging

from sqlalchemy import func

from ..extensions import db
from ..models import Invoice, InvoiceItem, InvoiceTransaction, Product
from ..models.invoices import (
    INVOICE_STATUS_UNPAID,
    INVOICE_STATUS_PARTIALLY_PAID,
    INVOICE_STATUS_PAID,
    INVOICE_STATUS_CANCELLED,
    TRANSACTION_PAYMENT,
    TRANSACTION_REFUND,
    TRANSACTION_TYPES,
    PAYMENT_METHODS,
    PAYMENT_METHOD_OTHER,
)
from ..models.audit import (
    EVENT_SOLD,
    EVENT_PAYMENT_RECEIVED,
    EVENT_REFUND_ISSUED,
    EVENT_INVENTORY_RELEASED,
)
from stockledger.time_utils import utcnow, normalize_datetime
from . import audit_service
from .asset_status_service import refresh_statuses
from .audit_service import actor_id_of
from .concurrency import begin_write_lock, lock_for_update, run_with_retry
from .errors import NotFoundError, InvalidStateError, InvalidAmountError, InsufficientStockError


logger = logging.getLogger(__name__)


# =============================================================================
# STATUS DERIVATION
# =============================================================================

def derive_status(amount_paid_cents: int, total_cents: int) -> str:
    if amount_paid_cents <= 0:
        return INVOICE_STATUS_UNPAID
    if amount_paid_cents < total_cents:
        return INVOICE_STATUS_PARTIALLY_PAID
    return INVOICE_STATUS_PAID


def net_paid_breakdown(invoice_id: int) -> tuple[int, int, int]:
    """Return (payments_cents, refunds_cents, net_cents) over non-voided rows."""
    rows = (
        db.session.query(InvoiceTransaction.transaction_type, func.coalesce(func.sum(InvoiceTransaction.amount_cents), 0))
        .filter(
            InvoiceTransaction.invoice_id == invoice_id,
            InvoiceTransaction.voided_at.is_(None),
        )
        .group_by(InvoiceTransaction.transaction_type)
        .all()
    )
    sums = {tx_type: int(total or 0) for tx_type, total in rows}
    payments = sums.get(TRANSACTION_PAYMENT, 0)
    refunds = sums.get(TRANSACTION_REFUND, 0)
    return payments, refunds, payments - refunds


def _active_items(invoice_id: int) -> list[InvoiceItem]:
    return (
        db.session.query(InvoiceItem)
        .filter(InvoiceItem.invoice_id == invoice_id, InvoiceItem.voided_at.is_(None))
        .order_by(InvoiceItem.id)
        .all()
    )


def _locked_products(product_ids) -> dict[int, Product]:
    ids = sorted(set(product_ids))
    if not ids:
        return {}
    products = lock_for_update(
        db.session.query(Product).filter(Product.id.in_(ids)).order_by(Product.id)
    ).all()
    return {p.id: p for p in products}


# =============================================================================
# STOCK TRANSITIONS
# =============================================================================

def _apply_paid_transition(invoice: Invoice, actor_id: int | None) -> None:
    """Invoice just entered PAID: units leave the shelf."""
    items = _active_items(invoice.id)
    products = _locked_products(item.product_id for item in items)

    for item in items:
        qty = item.outstanding_quantity
        if qty <= 0:
            continue
        product = products[item.product_id]
        if product.quantity_on_hand < qty:
            raise InsufficientStockError(
                f"Cannot complete sale: only {product.quantity_on_hand} of {product.sku} on hand",
                code="STOCK_DEPLETED",
                details={
                    "product_id": product.id,
                    "on_hand": product.quantity_on_hand,
                    "requested": qty,
                },
            )
        product.quantity_on_hand -= qty
        audit_service.record_event(
            product_id=product.id,
            event_type=EVENT_SOLD,
            summary=f"Sold {qty} on invoice {invoice.invoice_number}",
            actor_user_id=actor_id,
            source="INVOICE",
            reference_type="invoice",
            reference_id=invoice.id,
            details={"quantity": qty, "on_hand_after": product.quantity_on_hand},
        )

    logger.info("Invoice %s entered PAID; on-hand decremented for %d line(s)", invoice.invoice_number, len(items))


def _apply_unpaid_transition(invoice: Invoice, actor_id: int | None) -> None:
    """Invoice just left PAID: outstanding units go back on the shelf."""
    items = _active_items(invoice.id)
    products = _locked_products(item.product_id for item in items)

    for item in items:
        qty = item.outstanding_quantity
        if qty <= 0:
            continue
        product = products[item.product_id]
        product.quantity_on_hand += qty
        audit_service.record_event(
            product_id=product.id,
            event_type=EVENT_INVENTORY_RELEASED,
            summary=f"Restocked {qty} after invoice {invoice.invoice_number} left PAID",
            actor_user_id=actor_id,
            source="INVOICE",
            reference_type="invoice",
            reference_id=invoice.id,
            details={"quantity": qty, "on_hand_after": product.quantity_on_hand},
        )

    logger.info("Invoice %s left PAID; on-hand restored for %d line(s)", invoice.invoice_number, len(items))


# =============================================================================
# RECALCULATION
# =============================================================================

def recalculate_settlement(invoice: Invoice, actor_id: int | None = None) -> tuple[str, str]:
    """
    Re-derive amount_paid, balance_due and status from the ledger rows.

    Applies the on-hand decrement/restore when the status crosses PAID and
    refreshes the status of every product on the invoice. Must run inside a
    unit of work. Idempotent: a second call finds no transition.

    Returns (old_status, new_status).
    """
    old_status = invoice.status

    if old_status == INVOICE_STATUS_CANCELLED:
        invoice.amount_paid_cents = 0
        invoice.balance_due_cents = 0
        return old_status, old_status

    _payments, _refunds, net = net_paid_breakdown(invoice.id)
    paid = max(0, net)
    total = invoice.total_cents or 0

    new_status = derive_status(paid, total)
    invoice.amount_paid_cents = paid
    invoice.balance_due_cents = max(0, total - paid)
    invoice.status = new_status
    db.session.flush()

    if old_status != INVOICE_STATUS_PAID and new_status == INVOICE_STATUS_PAID:
        _apply_paid_transition(invoice, actor_id)
    elif old_status == INVOICE_STATUS_PAID and new_status != INVOICE_STATUS_PAID:
        _apply_unpaid_transition(invoice, actor_id)

    if old_status != new_status:
        refresh_statuses(item.product_id for item in _active_items(invoice.id))

    return old_status, new_status


# =============================================================================
# TRANSACTION RECORDING
# =============================================================================

def _validate_transaction_input(
    transaction_type: str,
    amount_cents,
    payment_method: str,
    comment: str | None,
    payment_method_other_text: str | None,
) -> None:
    if transaction_type not in TRANSACTION_TYPES:
        raise InvalidAmountError(
            f"Transaction type must be one of: {', '.join(TRANSACTION_TYPES)}",
            code="INVALID_TYPE",
            details={"transaction_type": transaction_type},
        )
    if isinstance(amount_cents, bool) or not isinstance(amount_cents, int) or amount_cents <= 0:
        raise InvalidAmountError(
            "Amount must be a positive integer number of cents",
            code="INVALID_AMOUNT",
            details={"amount_cents": amount_cents},
        )
    if not payment_method:
        raise InvalidAmountError("Payment method is required", code="METHOD_REQUIRED")
    if payment_method not in PAYMENT_METHODS:
        raise InvalidAmountError(
            f"Invalid payment method. Must be one of: {', '.join(PAYMENT_METHODS)}",
            code="INVALID_METHOD",
            details={"payment_method": payment_method},
        )
    if payment_method == PAYMENT_METHOD_OTHER and not (payment_method_other_text or "").strip():
        raise InvalidAmountError(
            'Please specify the payment method when selecting "Other"',
            code="OTHER_TEXT_REQUIRED",
        )
    if not (comment or "").strip():
        raise InvalidAmountError(
            "Comment is required describing the transaction details",
            code="COMMENT_REQUIRED",
        )


def _check_transaction_allowed(invoice: Invoice, transaction_type: str, amount_cents: int) -> None:
    if invoice.status == INVOICE_STATUS_CANCELLED:
        raise InvalidStateError("Cannot add transaction to cancelled invoice", code="INVOICE_CANCELLED")

    _payments, _refunds, net = net_paid_breakdown(invoice.id)
    current_paid = max(0, net)
    total = invoice.total_cents or 0

    if transaction_type == TRANSACTION_PAYMENT:
        if invoice.status == INVOICE_STATUS_PAID:
            raise InvalidStateError("Invoice is already fully paid", code="ALREADY_PAID")

        items = _active_items(invoice.id)
        if items and all(item.outstanding_quantity <= 0 for item in items):
            raise InvalidStateError(
                "Cannot record payment: all items on this invoice have been returned",
                code="ALL_ITEMS_RETURNED",
            )

        if current_paid + amount_cents > total:
            raise InvalidAmountError(
                f"Payment would exceed invoice total. Maximum allowed: {total - current_paid} cents",
                code="OVERPAYMENT",
                details={"max_allowed_cents": max(0, total - current_paid), "requested_cents": amount_cents},
            )
    else:
        if amount_cents > current_paid:
            raise InvalidAmountError(
                f"Refund cannot exceed amount paid. Maximum refund allowed: {current_paid} cents",
                code="REFUND_EXCEEDS_PAID",
                details={"max_allowed_cents": current_paid, "requested_cents": amount_cents},
            )


def _record_transaction_locked(
    invoice: Invoice,
    *,
    transaction_type: str,
    amount_cents: int,
    payment_method: str,
    comment: str,
    payment_method_other_text: str | None = None,
    transaction_date=None,
    actor_id: int | None = None,
    linked_return_id: int | None = None,
) -> InvoiceTransaction:
    """
    Append a ledger row and recompute. Caller holds the invoice lock.

    Also used by return finalization so refunds issued by a return follow
    the same rules and PAID transitions as manual refunds.
    """
    _check_transaction_allowed(invoice, transaction_type, amount_cents)

    try:
        occurred = normalize_datetime(transaction_date)
    except ValueError:
        raise InvalidAmountError("Invalid transaction_date", code="INVALID_DATE")

    txn = InvoiceTransaction(
        invoice_id=invoice.id,
        transaction_type=transaction_type,
        amount_cents=amount_cents,
        currency=invoice.currency,
        payment_method=payment_method,
        payment_method_other_text=(
            payment_method_other_text.strip() if payment_method == PAYMENT_METHOD_OTHER else None
        ),
        comment=comment.strip(),
        transaction_date=occurred,
        received_by_user_id=actor_id,
        linked_return_id=linked_return_id,
    )
    db.session.add(txn)
    db.session.flush()

    invoice.updated_by_user_id = actor_id
    recalculate_settlement(invoice, actor_id=actor_id)

    event_type = EVENT_PAYMENT_RECEIVED if transaction_type == TRANSACTION_PAYMENT else EVENT_REFUND_ISSUED
    label = "Payment" if transaction_type == TRANSACTION_PAYMENT else "Refund"
    for product_id in sorted({item.product_id for item in _active_items(invoice.id)}):
        audit_service.record_event(
            product_id=product_id,
            event_type=event_type,
            summary=f"{label} of {amount_cents} {invoice.currency} cents on invoice {invoice.invoice_number}",
            actor_user_id=actor_id,
            source="PAYMENT",
            reference_type="invoice_transaction",
            reference_id=txn.id,
            details={"invoice_id": invoice.id, "amount_cents": amount_cents},
        )

    audit_service.log_activity(
        action_type=(
            audit_service.ACTION_PAYMENT_RECORDED
            if transaction_type == TRANSACTION_PAYMENT
            else audit_service.ACTION_REFUND_RECORDED
        ),
        entity_type="INVOICE",
        entity_id=invoice.id,
        summary=f"{label} of {amount_cents} cents recorded on invoice {invoice.invoice_number}",
        actor_user_id=actor_id,
        details={
            "transaction_id": txn.id,
            "payment_method": payment_method,
            "status": invoice.status,
            "linked_return_id": linked_return_id,
        },
    )
    return txn


def record_transaction(
    invoice_id: int,
    transaction_type: str,
    amount_cents: int,
    payment_method: str,
    comment: str,
    payment_method_other_text: str | None = None,
    transaction_date=None,
    actor=None,
) -> InvoiceTransaction:
    """
    Record a PAYMENT or REFUND against an invoice.

    Raises:
        InvalidAmountError: bad type/method/comment/amount, overpayment,
            refund beyond paid
        NotFoundError: invoice missing
        InvalidStateError: cancelled, already paid, all items returned
    """
    _validate_transaction_input(
        transaction_type, amount_cents, payment_method, comment, payment_method_other_text
    )
    actor_id = actor_id_of(actor)

    def _op():
        begin_write_lock()
        invoice = lock_for_update(
            db.session.query(Invoice).filter_by(id=invoice_id, is_deleted=False)
        ).first()
        if not invoice:
            raise NotFoundError("Invoice not found", code="NOT_FOUND")

        txn = _record_transaction_locked(
            invoice,
            transaction_type=transaction_type,
            amount_cents=amount_cents,
            payment_method=payment_method,
            comment=comment,
            payment_method_other_text=payment_method_other_text,
            transaction_date=transaction_date,
            actor_id=actor_id,
        )
        db.session.commit()
        return txn

    return run_with_retry(_op)


def void_transaction(invoice_id: int, transaction_id: int, reason: str, actor=None) -> InvoiceTransaction:
    """
    Attach the void marker to a ledger row and recompute.

    Voiding a payment may take the invoice out of PAID (on-hand restored);
    voiding a refund may put it back into PAID (on-hand decremented).
    """
    if not (reason or "").strip():
        raise InvalidAmountError("A reason is required when voiding a transaction", code="REASON_REQUIRED")
    actor_id = actor_id_of(actor)

    def _op():
        begin_write_lock()
        invoice = lock_for_update(
            db.session.query(Invoice).filter_by(id=invoice_id, is_deleted=False)
        ).first()
        if not invoice:
            raise NotFoundError("Invoice not found", code="NOT_FOUND")
        if invoice.status == INVOICE_STATUS_CANCELLED:
            raise InvalidStateError("Cannot void transactions on a cancelled invoice", code="INVOICE_CANCELLED")

        txn = lock_for_update(
            db.session.query(InvoiceTransaction).filter_by(id=transaction_id, invoice_id=invoice_id)
        ).first()
        if not txn:
            raise NotFoundError("Transaction not found", code="TRANSACTION_NOT_FOUND")
        if txn.is_voided:
            raise InvalidStateError("This transaction has already been voided", code="ALREADY_VOIDED")

        txn.voided_at = utcnow()
        txn.voided_by_user_id = actor_id
        txn.void_reason = reason.strip()
        db.session.flush()

        invoice.updated_by_user_id = actor_id
        old_status, new_status = recalculate_settlement(invoice, actor_id=actor_id)

        audit_service.log_activity(
            action_type=audit_service.ACTION_TRANSACTION_VOIDED,
            entity_type="INVOICE",
            entity_id=invoice.id,
            summary=f"{txn.transaction_type.title()} {txn.id} voided on invoice {invoice.invoice_number}",
            actor_user_id=actor_id,
            details={
                "transaction_id": txn.id,
                "amount_cents": txn.amount_cents,
                "reason": txn.void_reason,
                "old_status": old_status,
                "new_status": new_status,
            },
        )

        db.session.commit()
        return txn

    return run_with_retry(_op)


# =============================================================================
# QUERIES
# =============================================================================

def get_transactions(invoice_id: int, include_voided: bool = False) -> list[InvoiceTransaction]:
    invoice = db.session.get(Invoice, invoice_id)
    if not invoice or invoice.is_deleted:
        raise NotFoundError("Invoice not found", code="NOT_FOUND")

    query = db.session.query(InvoiceTransaction).filter_by(invoice_id=invoice_id)
    if not include_voided:
        query = query.filter(InvoiceTransaction.voided_at.is_(None))
    return query.order_by(InvoiceTransaction.transaction_date.desc(), InvoiceTransaction.id.desc()).all()


def get_settlement_summary(invoice_id: int) -> dict:
    """
    Payment summary for an invoice.

    Returns:
        Dict with total, payments, refunds, amount paid, balance and status
    """
    invoice = db.session.get(Invoice, invoice_id)
    if not invoice or invoice.is_deleted:
        raise NotFoundError("Invoice not found", code="NOT_FOUND")

    payments, refunds, net = net_paid_breakdown(invoice_id)
    voided_count = (
        db.session.query(func.count(InvoiceTransaction.id))
        .filter(InvoiceTransaction.invoice_id == invoice_id, InvoiceTransaction.voided_at.isnot(None))
        .scalar()
    )
    return {
        "invoice_id": invoice.id,
        "invoice_number": invoice.invoice_number,
        "currency": invoice.currency,
        "status": invoice.status,
        "total_cents": invoice.total_cents,
        "payments_cents": payments,
        "refunds_cents": refunds,
        "net_paid_cents": net,
        "amount_paid_cents": invoice.amount_paid_cents,
        "balance_due_cents": invoice.balance_due_cents,
        "voided_transaction_count": int(voided_count or 0),
    }
