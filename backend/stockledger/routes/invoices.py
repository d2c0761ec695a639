# Overview: Flask API routes for invoices, line items, transactions and returns; parses input and returns JSON responses.

# backend/stockledger/routes/invoices.py
"""
Invoice API Routes

WHY: Thin HTTP layer over the invoice, line item, settlement and return
services. Every business rejection comes back as
{"error": ..., "code": ..., "details": {...}} with the status carried by
the error class (404 / 409 / 400).

DESIGN:
- Money is integer cents in and out; no float parsing
- Request ints are coerced strictly (no "12.5", no "1e3")
- The acting user comes from X-User-Id; money-moving and discount-bearing routes require it
"""

from flask import Blueprint, request, jsonify, current_app

from ..services import (
    invoice_service,
    line_item_service,
    settlement_service,
    return_service,
    audit_service,
)
from ..validation import coerce_int, ValidationError
from ..decorators import with_actor, require_actor, current_actor
from ._errors import HANDLED_ERRORS, error_response


invoices_bp = Blueprint("invoices", __name__, url_prefix="/api/invoices")


def _optional_int(payload: dict, key: str):
    if key not in payload or payload[key] is None:
        return None
    return coerce_int(payload[key], key)


def _internal_error(message: str, *args):
    current_app.logger.exception(message, *args)
    return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# INVOICES
# =============================================================================

@invoices_bp.post("")
@with_actor
def create_invoice_route():
    """
    Create an empty UNPAID invoice.

    Request body (all optional):
    {
        "currency": "GHS",
        "customer_id": "C-1001",
        "notes": "Walk-in"
    }
    """
    data = request.get_json(silent=True) or {}
    try:
        invoice = invoice_service.create_invoice(
            currency=data.get("currency"),
            customer_id=data.get("customer_id"),
            notes=data.get("notes"),
            actor=current_actor(),
        )
        return jsonify({"invoice": invoice.to_dict(include_items=True)}), 201
    except HANDLED_ERRORS as e:
        return error_response(e)
    except Exception:
        return _internal_error("Failed to create invoice")


@invoices_bp.get("")
def list_invoices_route():
    """
    List live invoices, newest first.

    Query params: status, customer_id, limit (max 500), offset
    """
    limit = min(request.args.get("limit", 100, type=int), 500)
    offset = request.args.get("offset", 0, type=int)
    invoices = invoice_service.list_invoices(
        status=request.args.get("status"),
        customer_id=request.args.get("customer_id"),
        limit=limit,
        offset=offset,
    )
    return jsonify({"invoices": [inv.to_dict() for inv in invoices], "count": len(invoices)}), 200


@invoices_bp.get("/<int:invoice_id>")
def get_invoice_route(invoice_id: int):
    try:
        invoice = invoice_service.get_invoice(invoice_id)
    except HANDLED_ERRORS as e:
        return error_response(e)
    return jsonify({"invoice": invoice.to_dict(include_items=True)}), 200


@invoices_bp.patch("/<int:invoice_id>")
@with_actor
def update_invoice_route(invoice_id: int):
    data = request.get_json(silent=True) or {}
    try:
        invoice = invoice_service.update_invoice(
            invoice_id,
            customer_id=data.get("customer_id"),
            notes=data.get("notes"),
            actor=current_actor(),
        )
        return jsonify({"invoice": invoice.to_dict(include_items=True)}), 200
    except HANDLED_ERRORS as e:
        return error_response(e)
    except Exception:
        return _internal_error("Failed to update invoice %s", invoice_id)


@invoices_bp.put("/<int:invoice_id>/discount")
@require_actor
def update_discount_route(invoice_id: int):
    """
    Set the invoice-level discount.

    Request body:
    {
        "discount_type": "none" | "percentage" | "fixed",
        "discount_value": 1500   (bps for percentage, cents for fixed)
    }
    """
    data = request.get_json(silent=True) or {}
    try:
        invoice = invoice_service.update_invoice_discount(
            invoice_id,
            data.get("discount_type"),
            _optional_int(data, "discount_value") or 0,
            actor=current_actor(),
        )
        return jsonify({"invoice": invoice.to_dict(include_items=True)}), 200
    except HANDLED_ERRORS as e:
        return error_response(e)
    except Exception:
        return _internal_error("Failed to update discount on invoice %s", invoice_id)


@invoices_bp.delete("/<int:invoice_id>")
@with_actor
def delete_invoice_route(invoice_id: int):
    try:
        invoice_service.delete_invoice(invoice_id, actor=current_actor())
        return jsonify({"ok": True}), 200
    except HANDLED_ERRORS as e:
        return error_response(e)
    except Exception:
        return _internal_error("Failed to delete invoice %s", invoice_id)


@invoices_bp.post("/<int:invoice_id>/cancel")
@with_actor
def cancel_invoice_route(invoice_id: int):
    """
    Cancel an invoice whose net paid is zero.

    Request body (optional):
    {
        "reason": "Customer walked away"
    }
    """
    data = request.get_json(silent=True) or {}
    try:
        result = invoice_service.cancel_invoice(invoice_id, reason=data.get("reason"), actor=current_actor())
        return jsonify({
            "invoice": result.invoice.to_dict(include_items=True),
            "released_items": result.released_items,
        }), 200
    except HANDLED_ERRORS as e:
        return error_response(e)
    except Exception:
        return _internal_error("Failed to cancel invoice %s", invoice_id)


@invoices_bp.get("/<int:invoice_id>/activity")
def invoice_activity_route(invoice_id: int):
    try:
        invoice_service.get_invoice(invoice_id)
    except HANDLED_ERRORS as e:
        return error_response(e)
    rows = audit_service.get_activity("INVOICE", invoice_id)
    return jsonify({"activity": [row.to_dict() for row in rows]}), 200


# =============================================================================
# LINE ITEMS
# =============================================================================

@invoices_bp.post("/<int:invoice_id>/items")
@with_actor
def add_item_route(invoice_id: int):
    """
    Reserve a product on an UNPAID invoice.

    Request body:
    {
        "product_id": 7,
        "quantity": 2,                (optional, default 1)
        "unit_price_cents": 150000    (optional, defaults to product price in invoice currency)
    }

    Returns:
        201: line created or merged into an existing line for the product
        409: ASSET_UNAVAILABLE with available / requested in details
    """
    data = request.get_json(silent=True) or {}
    try:
        product_id = _optional_int(data, "product_id")
        if product_id is None:
            raise ValidationError("product_id is required")
        quantity = _optional_int(data, "quantity")
        item = line_item_service.add_item(
            invoice_id,
            product_id,
            quantity=1 if quantity is None else quantity,
            unit_price_cents=_optional_int(data, "unit_price_cents"),
            actor=current_actor(),
        )
        invoice = invoice_service.get_invoice(invoice_id)
        return jsonify({"item": item.to_dict(), "invoice": invoice.to_dict()}), 201
    except HANDLED_ERRORS as e:
        return error_response(e)
    except Exception:
        return _internal_error("Failed to add item to invoice %s", invoice_id)


@invoices_bp.patch("/<int:invoice_id>/items/<int:item_id>")
@require_actor
def update_item_route(invoice_id: int, item_id: int):
    """
    Change quantity, unit price and/or line discount.

    Request body (any subset):
    {
        "quantity": 3,
        "unit_price_cents": 9900,
        "discount_type": "percentage",
        "discount_value": 500
    }
    """
    data = request.get_json(silent=True) or {}
    try:
        item = line_item_service.update_item(
            invoice_id,
            item_id,
            quantity=_optional_int(data, "quantity"),
            unit_price_cents=_optional_int(data, "unit_price_cents"),
            discount_type=data.get("discount_type"),
            discount_value=_optional_int(data, "discount_value"),
            actor=current_actor(),
        )
        invoice = invoice_service.get_invoice(invoice_id)
        return jsonify({"item": item.to_dict(), "invoice": invoice.to_dict()}), 200
    except HANDLED_ERRORS as e:
        return error_response(e)
    except Exception:
        return _internal_error("Failed to update item %s on invoice %s", item_id, invoice_id)


@invoices_bp.delete("/<int:invoice_id>/items/<int:item_id>")
@require_actor
def remove_item_route(invoice_id: int, item_id: int):
    try:
        invoice = line_item_service.remove_item(invoice_id, item_id, actor=current_actor())
        return jsonify({"invoice": invoice.to_dict(include_items=True)}), 200
    except HANDLED_ERRORS as e:
        return error_response(e)
    except Exception:
        return _internal_error("Failed to remove item %s from invoice %s", item_id, invoice_id)


@invoices_bp.post("/<int:invoice_id>/items/<int:item_id>/void")
@require_actor
def void_item_route(invoice_id: int, item_id: int):
    """
    Void all or part of a line on a PAID invoice.

    Request body:
    {
        "reason": "Damaged on delivery",
        "quantity": 1     (optional, default: whole outstanding line)
    }
    """
    data = request.get_json(silent=True) or {}
    try:
        item = line_item_service.void_item(
            invoice_id,
            item_id,
            data.get("reason"),
            quantity=_optional_int(data, "quantity"),
            actor=current_actor(),
        )
        invoice = invoice_service.get_invoice(invoice_id)
        return jsonify({"item": item.to_dict(), "invoice": invoice.to_dict(include_items=True)}), 200
    except HANDLED_ERRORS as e:
        return error_response(e)
    except Exception:
        return _internal_error("Failed to void item %s on invoice %s", item_id, invoice_id)


# =============================================================================
# TRANSACTIONS
# =============================================================================

@invoices_bp.post("/<int:invoice_id>/transactions")
@require_actor
def record_transaction_route(invoice_id: int):
    """
    Record a PAYMENT or REFUND.

    Request body:
    {
        "transaction_type": "PAYMENT",
        "amount_cents": 50000,
        "payment_method": "MoMo",
        "comment": "Deposit",
        "payment_method_other_text": "...",   (required when method is Other)
        "transaction_date": "2026-01-05T10:00:00Z"  (optional)
    }
    """
    data = request.get_json(silent=True) or {}
    try:
        txn = settlement_service.record_transaction(
            invoice_id,
            data.get("transaction_type"),
            _optional_int(data, "amount_cents"),
            data.get("payment_method"),
            data.get("comment"),
            payment_method_other_text=data.get("payment_method_other_text"),
            transaction_date=data.get("transaction_date"),
            actor=current_actor(),
        )
        invoice = invoice_service.get_invoice(invoice_id)
        return jsonify({"transaction": txn.to_dict(), "invoice": invoice.to_dict()}), 201
    except HANDLED_ERRORS as e:
        return error_response(e)
    except Exception:
        return _internal_error("Failed to record transaction on invoice %s", invoice_id)


@invoices_bp.get("/<int:invoice_id>/transactions")
def list_transactions_route(invoice_id: int):
    include_voided = request.args.get("include_voided", "false").lower() == "true"
    try:
        invoice_service.get_invoice(invoice_id)
    except HANDLED_ERRORS as e:
        return error_response(e)
    txns = settlement_service.get_transactions(invoice_id, include_voided=include_voided)
    return jsonify({"transactions": [t.to_dict() for t in txns]}), 200


@invoices_bp.post("/<int:invoice_id>/transactions/<int:transaction_id>/void")
@require_actor
def void_transaction_route(invoice_id: int, transaction_id: int):
    """
    Void a ledger row.

    Request body:
    {
        "reason": "Entered twice"
    }
    """
    data = request.get_json(silent=True) or {}
    try:
        txn = settlement_service.void_transaction(
            invoice_id, transaction_id, data.get("reason"), actor=current_actor()
        )
        invoice = invoice_service.get_invoice(invoice_id)
        return jsonify({"transaction": txn.to_dict(), "invoice": invoice.to_dict()}), 200
    except HANDLED_ERRORS as e:
        return error_response(e)
    except Exception:
        return _internal_error("Failed to void transaction %s on invoice %s", transaction_id, invoice_id)


@invoices_bp.get("/<int:invoice_id>/summary")
def settlement_summary_route(invoice_id: int):
    try:
        summary = settlement_service.get_settlement_summary(invoice_id)
    except HANDLED_ERRORS as e:
        return error_response(e)
    return jsonify(summary), 200


# =============================================================================
# RETURNS
# =============================================================================

@invoices_bp.get("/<int:invoice_id>/returnable-items")
def returnable_items_route(invoice_id: int):
    try:
        items = return_service.get_returnable_items(invoice_id)
    except HANDLED_ERRORS as e:
        return error_response(e)
    return jsonify({"items": items}), 200


@invoices_bp.post("/<int:invoice_id>/returns")
@require_actor
def create_return_route(invoice_id: int):
    """
    Create a DRAFT return against a PAID invoice.

    Request body:
    {
        "return_type": "RETURN_REFUND" | "EXCHANGE",
        "reason_code": "DEFECT",
        "reason": "Screen flickers",     (optional)
        "items": [
            {"invoice_item_id": 12, "quantity_returned": 1, "restock_condition": "OPEN_BOX"}
        ]
    }
    """
    data = request.get_json(silent=True) or {}
    try:
        raw_items = data.get("items") or []
        if not isinstance(raw_items, list):
            raise ValidationError("items must be a list")
        items = []
        for raw in raw_items:
            if not isinstance(raw, dict):
                raise ValidationError("each item must be an object")
            quantity = _optional_int(raw, "quantity_returned")
            items.append({
                "invoice_item_id": _optional_int(raw, "invoice_item_id"),
                "quantity_returned": 1 if quantity is None else quantity,
                "restock_condition": raw.get("restock_condition"),
            })

        invoice_return = return_service.create_return(
            invoice_id,
            data.get("return_type"),
            data.get("reason_code"),
            items,
            reason=data.get("reason"),
            actor=current_actor(),
        )
        return jsonify({"return": invoice_return.to_dict()}), 201
    except HANDLED_ERRORS as e:
        return error_response(e)
    except Exception:
        return _internal_error("Failed to create return for invoice %s", invoice_id)


@invoices_bp.get("/<int:invoice_id>/returns")
def list_returns_route(invoice_id: int):
    try:
        invoice_service.get_invoice(invoice_id)
    except HANDLED_ERRORS as e:
        return error_response(e)
    returns = return_service.list_invoice_returns(invoice_id)
    return jsonify({"returns": [r.to_dict() for r in returns]}), 200
