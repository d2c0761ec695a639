# Overview: Service-layer operations for returns (refund or exchange credit).

"""
Return Service

WHY: A paid invoice has already taken its units off the shelf. A return
puts some of them back and either refunds the customer or issues store
credit, without rewriting the original sale.

LIFECYCLE:
- create_return(): DRAFT, validates quantities and amounts, touches nothing else
- finalize_return(): increments quantity_returned_total, restores on-hand,
  then records a linked REFUND (RETURN_REFUND) or an ACTIVE CustomerCredit
  (EXCHANGE). The refund goes through the settlement ledger, so an invoice
  falling out of PAID restores its remaining outstanding units.
- cancel_return(): DRAFT only
- An invoice whose items are all returned and whose net paid is zero is
  cancelled automatically.
"""

from __future__ import annotations

import logging

from ..extensions import db
from ..models import InvoiceItem, InvoiceReturn, InvoiceReturnItem, CustomerCredit, Product
from ..models.invoices import INVOICE_STATUS_PAID, TRANSACTION_REFUND
from ..models.returns import (
    RETURN_TYPES,
    RETURN_TYPE_REFUND,
    RETURN_REASON_CODES,
    RESTOCK_CONDITIONS,
    RETURN_STATUS_DRAFT,
    RETURN_STATUS_FINALIZED,
    RETURN_STATUS_CANCELLED,
    CREDIT_STATUS_ACTIVE,
)
from ..models.audit import (
    EVENT_RETURN_INITIATED,
    EVENT_RETURN_FINALIZED,
    EVENT_EXCHANGE_CREDIT_CREATED,
)
from stockledger.time_utils import utcnow
from . import audit_service
from .asset_status_service import refresh_status
from .audit_service import actor_id_of
from .concurrency import begin_write_lock, lock_for_update, run_with_retry
from .discount_service import round_half_up
from .document_service import next_document_number, DOCUMENT_TYPE_RETURN
from .errors import NotFoundError, InvalidStateError, InvalidAmountError
from .invoice_service import get_invoice, get_locked_invoice, recalculate_invoice_totals, _cancel_locked
from .settlement_service import (
    _record_transaction_locked,
    _validate_transaction_input,
    net_paid_breakdown,
)


logger = logging.getLogger(__name__)

RETURN_NUMBER_PREFIX = "RET"
AUTO_CANCEL_REASON = "All items returned and fully refunded"


def _returnable_items(invoice_id: int) -> dict[int, InvoiceItem]:
    items = (
        db.session.query(InvoiceItem)
        .filter(InvoiceItem.invoice_id == invoice_id, InvoiceItem.voided_at.is_(None))
        .order_by(InvoiceItem.id)
        .all()
    )
    return {item.id: item for item in items}


def _line_return_cents(item: InvoiceItem, quantity: int) -> int:
    """Pro-rata share of the discounted line total (which bills outstanding units only)."""
    outstanding = item.outstanding_quantity
    if outstanding <= 0:
        return 0
    return round_half_up(item.line_total_cents * quantity, outstanding)


def get_returnable_items(invoice_id: int) -> list[dict]:
    invoice = get_invoice(invoice_id)
    return [
        {
            "invoice_item_id": item.id,
            "product_id": item.product_id,
            "description": item.description,
            "quantity": item.quantity,
            "quantity_returned_total": item.quantity_returned_total,
            "returnable_quantity": item.outstanding_quantity,
            "unit_price_cents": item.unit_price_cents,
        }
        for item in _returnable_items(invoice.id).values()
    ]


# =============================================================================
# CREATE
# =============================================================================

def create_return(
    invoice_id: int,
    return_type: str,
    reason_code: str,
    items: list[dict],
    reason: str | None = None,
    actor=None,
) -> InvoiceReturn:
    """
    Create a DRAFT return against a PAID invoice.

    items: [{"invoice_item_id": int, "quantity_returned": int,
             "restock_condition": str (optional)}]
    """
    if return_type not in RETURN_TYPES:
        raise InvalidAmountError("Return type must be RETURN_REFUND or EXCHANGE", code="INVALID_RETURN_TYPE")
    if reason_code not in RETURN_REASON_CODES:
        raise InvalidAmountError(
            f"Return reason is required. Must be one of: {', '.join(RETURN_REASON_CODES)}",
            code="INVALID_REASON_CODE",
        )
    if not items:
        raise InvalidAmountError("At least one item must be selected for return", code="NO_ITEMS")
    actor_id = actor_id_of(actor)

    def _op():
        begin_write_lock()
        invoice = get_locked_invoice(invoice_id)
        if invoice.status != INVOICE_STATUS_PAID:
            raise InvalidStateError(
                "Returns can only be created for paid invoices",
                code="NOT_PAID",
                details={"status": invoice.status},
            )

        returnable = _returnable_items(invoice.id)
        requested: dict[int, int] = {}
        lines = []
        total = 0
        for entry in items:
            item_id = entry.get("invoice_item_id")
            qty = entry.get("quantity_returned", 1)
            condition = entry.get("restock_condition") or "AS_NEW"

            item = returnable.get(item_id)
            if not item:
                raise InvalidAmountError(
                    f"Invoice item {item_id} not found on this invoice",
                    code="INVALID_ITEM",
                    details={"invoice_item_id": item_id},
                )
            if isinstance(qty, bool) or not isinstance(qty, int) or qty < 1:
                raise InvalidAmountError("Quantity must be at least 1", code="INVALID_QUANTITY")
            if condition not in RESTOCK_CONDITIONS:
                raise InvalidAmountError(
                    f"Restock condition must be one of: {', '.join(RESTOCK_CONDITIONS)}",
                    code="INVALID_RESTOCK_CONDITION",
                )

            requested[item.id] = requested.get(item.id, 0) + qty
            if requested[item.id] > item.outstanding_quantity:
                raise InvalidAmountError(
                    f'Cannot return {requested[item.id]} of "{item.description}". '
                    f"Maximum returnable: {item.outstanding_quantity}",
                    code="EXCEEDS_RETURNABLE",
                    details={"invoice_item_id": item.id, "returnable": item.outstanding_quantity},
                )

            line_cents = _line_return_cents(item, qty)
            total += line_cents
            lines.append((item, qty, line_cents, condition))

        if return_type == RETURN_TYPE_REFUND and total > invoice.amount_paid_cents:
            raise InvalidAmountError(
                f"Return amount ({total}) exceeds amount paid ({invoice.amount_paid_cents})",
                code="EXCEEDS_PAID",
                details={"total_return_cents": total, "amount_paid_cents": invoice.amount_paid_cents},
            )

        invoice_return = InvoiceReturn(
            return_number=next_document_number(document_type=DOCUMENT_TYPE_RETURN, prefix=RETURN_NUMBER_PREFIX),
            invoice_id=invoice.id,
            customer_id=invoice.customer_id,
            return_type=return_type,
            status=RETURN_STATUS_DRAFT,
            currency=invoice.currency,
            total_return_cents=total,
            reason=reason,
            return_reason_code=reason_code,
            created_by_user_id=actor_id,
        )
        db.session.add(invoice_return)
        db.session.flush()

        for item, qty, line_cents, condition in lines:
            db.session.add(InvoiceReturnItem(
                return_id=invoice_return.id,
                invoice_item_id=item.id,
                product_id=item.product_id,
                quantity_returned=qty,
                unit_price_at_sale_cents=item.unit_price_cents,
                line_return_cents=line_cents,
                restock_condition=condition,
            ))
            audit_service.record_event(
                product_id=item.product_id,
                event_type=EVENT_RETURN_INITIATED,
                summary=f"Return {invoice_return.return_number} drafted for {qty} unit(s)",
                actor_user_id=actor_id,
                source="RETURN",
                reference_type="invoice_return",
                reference_id=invoice_return.id,
                details={"invoice_id": invoice.id, "quantity": qty},
            )

        audit_service.log_activity(
            action_type=audit_service.ACTION_RETURN_CREATED,
            entity_type="INVOICE",
            entity_id=invoice.id,
            summary=f"Return {invoice_return.return_number} created for invoice {invoice.invoice_number}",
            actor_user_id=actor_id,
            details={"return_id": invoice_return.id, "return_type": return_type, "total_return_cents": total},
        )

        db.session.commit()
        return invoice_return

    return run_with_retry(_op)


# =============================================================================
# FINALIZE
# =============================================================================

def finalize_return(
    return_id: int,
    refund_method: str | None = None,
    refund_comment: str | None = None,
    refund_method_other_text: str | None = None,
    transaction_date=None,
    actor=None,
) -> InvoiceReturn:
    """
    Finalize a DRAFT return: restock, then refund or issue store credit.

    RETURN_REFUND requires refund_method and refund_comment.
    """
    actor_id = actor_id_of(actor)

    def _op():
        begin_write_lock()
        invoice_return = lock_for_update(db.session.query(InvoiceReturn).filter_by(id=return_id)).first()
        if not invoice_return:
            raise NotFoundError("Return not found", code="NOT_FOUND")
        if invoice_return.status != RETURN_STATUS_DRAFT:
            raise InvalidStateError(
                f"Cannot finalize return with status {invoice_return.status}",
                code="INVALID_STATUS",
            )

        is_refund = invoice_return.return_type == RETURN_TYPE_REFUND
        if is_refund:
            if not refund_method or not (refund_comment or "").strip():
                raise InvalidAmountError(
                    "Payment method and comment are required for refund",
                    code="REFUND_REQUIRED",
                )
            _validate_transaction_input(
                TRANSACTION_REFUND,
                invoice_return.total_return_cents,
                refund_method,
                refund_comment,
                refund_method_other_text,
            )

        invoice = get_locked_invoice(invoice_return.invoice_id)
        if invoice.status != INVOICE_STATUS_PAID:
            raise InvalidStateError(
                "Returns can only be finalized on paid invoices",
                code="NOT_PAID",
                details={"status": invoice.status},
            )

        return_items = (
            db.session.query(InvoiceReturnItem)
            .filter_by(return_id=invoice_return.id)
            .order_by(InvoiceReturnItem.id)
            .all()
        )

        product_ids = sorted({ri.product_id for ri in return_items})
        products = {
            p.id: p
            for p in lock_for_update(
                db.session.query(Product).filter(Product.id.in_(product_ids)).order_by(Product.id)
            ).all()
        }

        # 1. Returned units come back on the shelf
        for ri in return_items:
            item = lock_for_update(db.session.query(InvoiceItem).filter_by(id=ri.invoice_item_id)).first()
            if item is None or item.is_voided or ri.quantity_returned > item.outstanding_quantity:
                raise InvalidStateError(
                    "Returned quantity is no longer available on the invoice line",
                    code="EXCEEDS_RETURNABLE",
                    details={"invoice_item_id": ri.invoice_item_id},
                )
            item.quantity_returned_total = (item.quantity_returned_total or 0) + ri.quantity_returned
            product = products[ri.product_id]
            product.quantity_on_hand += ri.quantity_returned

        db.session.flush()

        # Returned units leave the invoice total before any money moves
        recalculate_invoice_totals(invoice, actor_id=actor_id)

        for ri in return_items:
            product = products[ri.product_id]
            audit_service.record_event(
                product_id=product.id,
                event_type=EVENT_RETURN_FINALIZED,
                summary=f"Return {invoice_return.return_number} restocked {ri.quantity_returned}",
                actor_user_id=actor_id,
                source="RETURN",
                reference_type="invoice_return",
                reference_id=invoice_return.id,
                details={
                    "quantity": ri.quantity_returned,
                    "restock_condition": ri.restock_condition,
                    "on_hand_after": product.quantity_on_hand,
                },
            )

        # 2. Money: refund through the ledger, or store credit
        if is_refund:
            _record_transaction_locked(
                invoice,
                transaction_type=TRANSACTION_REFUND,
                amount_cents=invoice_return.total_return_cents,
                payment_method=refund_method,
                comment=refund_comment,
                payment_method_other_text=refund_method_other_text,
                transaction_date=transaction_date,
                actor_id=actor_id,
                linked_return_id=invoice_return.id,
            )
        else:
            credit = CustomerCredit(
                customer_id=invoice_return.customer_id,
                currency=invoice_return.currency,
                original_cents=invoice_return.total_return_cents,
                remaining_cents=invoice_return.total_return_cents,
                status=CREDIT_STATUS_ACTIVE,
                source_return_id=invoice_return.id,
                created_by_user_id=actor_id,
            )
            db.session.add(credit)
            db.session.flush()
            for pid in product_ids:
                audit_service.record_event(
                    product_id=pid,
                    event_type=EVENT_EXCHANGE_CREDIT_CREATED,
                    summary=f"Store credit {credit.id} issued for return {invoice_return.return_number}",
                    actor_user_id=actor_id,
                    source="RETURN",
                    reference_type="customer_credit",
                    reference_id=credit.id,
                    details={"amount_cents": credit.original_cents},
                )

        for pid in product_ids:
            refresh_status(products[pid])

        invoice_return.status = RETURN_STATUS_FINALIZED
        invoice_return.finalized_at = utcnow()
        invoice_return.finalized_by_user_id = actor_id

        # 3. Nothing left on the invoice and nothing paid: close it
        remaining = _returnable_items(invoice.id).values()
        all_returned = bool(remaining) and all(item.outstanding_quantity <= 0 for item in remaining)
        _payments, _refunds, net = net_paid_breakdown(invoice.id)
        if all_returned and net <= 0:
            _cancel_locked(invoice, reason=AUTO_CANCEL_REASON, actor_id=actor_id)

        audit_service.log_activity(
            action_type=audit_service.ACTION_RETURN_FINALIZED,
            entity_type="INVOICE",
            entity_id=invoice.id,
            summary=f"Return {invoice_return.return_number} finalized on invoice {invoice.invoice_number}",
            actor_user_id=actor_id,
            details={
                "return_id": invoice_return.id,
                "return_type": invoice_return.return_type,
                "total_return_cents": invoice_return.total_return_cents,
                "invoice_status": invoice.status,
            },
        )
        logger.info(
            "Return %s finalized (%s, %d cents)",
            invoice_return.return_number,
            invoice_return.return_type,
            invoice_return.total_return_cents,
        )

        db.session.commit()
        return invoice_return

    return run_with_retry(_op)


# =============================================================================
# CANCEL / QUERIES
# =============================================================================

def cancel_return(return_id: int, actor=None) -> InvoiceReturn:
    actor_id = actor_id_of(actor)

    def _op():
        begin_write_lock()
        invoice_return = lock_for_update(db.session.query(InvoiceReturn).filter_by(id=return_id)).first()
        if not invoice_return:
            raise NotFoundError("Return not found", code="NOT_FOUND")
        if invoice_return.status != RETURN_STATUS_DRAFT:
            raise InvalidStateError("Only draft returns can be cancelled", code="INVALID_STATUS")

        invoice_return.status = RETURN_STATUS_CANCELLED
        invoice_return.cancelled_at = utcnow()

        audit_service.log_activity(
            action_type=audit_service.ACTION_RETURN_CANCELLED,
            entity_type="INVOICE",
            entity_id=invoice_return.invoice_id,
            summary=f"Return {invoice_return.return_number} cancelled",
            actor_user_id=actor_id,
            details={"return_id": invoice_return.id},
        )

        db.session.commit()
        return invoice_return

    return run_with_retry(_op)


def get_return(return_id: int) -> InvoiceReturn:
    invoice_return = db.session.get(InvoiceReturn, return_id)
    if not invoice_return:
        raise NotFoundError("Return not found", code="NOT_FOUND")
    return invoice_return


def list_invoice_returns(invoice_id: int) -> list[InvoiceReturn]:
    return (
        db.session.query(InvoiceReturn)
        .filter_by(invoice_id=invoice_id)
        .order_by(InvoiceReturn.id.desc())
        .all()
    )


def get_customer_credits(customer_id, active_only: bool = False) -> list[CustomerCredit]:
    query = db.session.query(CustomerCredit).filter_by(customer_id=str(customer_id))
    if active_only:
        query = query.filter(CustomerCredit.status == CREDIT_STATUS_ACTIVE, CustomerCredit.remaining_cents > 0)
    return query.order_by(CustomerCredit.id.desc()).all()
