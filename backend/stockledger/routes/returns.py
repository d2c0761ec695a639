# Overview: Flask API routes for return documents and customer credits; parses input and returns JSON responses.

# backend/stockledger/routes/returns.py
"""
Return Processing API Routes

WHY: A return is created against a PAID invoice (see routes/invoices.py) as
a DRAFT, then finalized or cancelled here.

DESIGN:
- Finalizing a RETURN_REFUND restocks the units and writes a REFUND row
  linked to the return; refund_method and refund_comment are required
- Finalizing an EXCHANGE restocks the units and issues customer credit
- Cancelling is only possible while the return is still a DRAFT
"""

from flask import Blueprint, request, jsonify, current_app

from ..services import return_service
from ..decorators import require_actor, current_actor
from ._errors import HANDLED_ERRORS, error_response


returns_bp = Blueprint("returns", __name__, url_prefix="/api/returns")


@returns_bp.get("/<int:return_id>")
def get_return_route(return_id: int):
    try:
        invoice_return = return_service.get_return(return_id)
    except HANDLED_ERRORS as e:
        return error_response(e)
    return jsonify({"return": invoice_return.to_dict()}), 200


@returns_bp.post("/<int:return_id>/finalize")
@require_actor
def finalize_return_route(return_id: int):
    """
    Finalize a DRAFT return.

    Request body (RETURN_REFUND):
    {
        "refund_method": "Cash",
        "refund_comment": "Refunded at counter",
        "refund_method_other_text": "...",   (required when method is Other)
        "transaction_date": "2026-01-05T10:00:00Z"  (optional)
    }

    EXCHANGE returns need no body.
    """
    data = request.get_json(silent=True) or {}
    try:
        invoice_return = return_service.finalize_return(
            return_id,
            refund_method=data.get("refund_method"),
            refund_comment=data.get("refund_comment"),
            refund_method_other_text=data.get("refund_method_other_text"),
            transaction_date=data.get("transaction_date"),
            actor=current_actor(),
        )
        return jsonify({
            "return": invoice_return.to_dict(),
            "invoice": invoice_return.invoice.to_dict(),
        }), 200
    except HANDLED_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to finalize return %s", return_id)
        return jsonify({"error": "Internal server error"}), 500


@returns_bp.post("/<int:return_id>/cancel")
@require_actor
def cancel_return_route(return_id: int):
    try:
        invoice_return = return_service.cancel_return(return_id, actor=current_actor())
        return jsonify({"return": invoice_return.to_dict()}), 200
    except HANDLED_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to cancel return %s", return_id)
        return jsonify({"error": "Internal server error"}), 500


@returns_bp.get("/credits/<customer_id>")
def customer_credits_route(customer_id: str):
    """
    Store credit issued to a customer by EXCHANGE returns.

    Query params:
    - active_only: "true" to hide exhausted credits
    """
    active_only = request.args.get("active_only", "false").lower() == "true"
    credits = return_service.get_customer_credits(customer_id, active_only=active_only)
    return jsonify({"credits": [c.to_dict() for c in credits]}), 200
