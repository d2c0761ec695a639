# Overview: Flask API routes for products and stock; parses input and returns JSON responses.

# backend/stockledger/routes/products.py
"""
Product and stock routes.

Availability is always computed, never stored: list and detail responses
carry on_hand / reserved / available next to the product row.

Writes are attributed to the user in X-User-Id when present.
"""
from flask import Blueprint, request, current_app, jsonify
from ..models import Product
from ..services import stock_service, audit_service
from ..services.availability_service import compute_availability, compute_bulk_availability
from ..validation import (
    ModelValidationPolicy,
    validate_payload,
    coerce_int,
    ValidationError,
)
from ..decorators import with_actor, current_actor
from ._errors import HANDLED_ERRORS, error_response

PRODUCT_POLICY = ModelValidationPolicy(
    writable_fields={
        "sku", "name", "description", "quantity_on_hand",
        "price_cents", "price_currency", "cost_cents", "cost_currency",
    },
    required_on_create={"sku", "name"},
)

products_bp = Blueprint("products", __name__, url_prefix="/api/products")


def _with_availability(product: Product, availability) -> dict:
    data = product.to_dict()
    data["availability"] = {
        "on_hand": availability.on_hand if availability else product.quantity_on_hand,
        "reserved": availability.reserved if availability else 0,
        "available": availability.available if availability else product.quantity_on_hand,
    }
    return data


@products_bp.get("")
def list_products():
    """
    List products with computed availability.

    Query params:
    - status: InStock | Processing | Sold (optional)
    - q: search in sku and name (optional)
    - include_deleted: "true" to include soft-deleted rows
    - limit / offset: pagination (limit max 500)
    """
    status = request.args.get("status")
    search = request.args.get("q")
    include_deleted = request.args.get("include_deleted", "false").lower() == "true"
    limit = min(request.args.get("limit", 100, type=int), 500)
    offset = request.args.get("offset", 0, type=int)

    products = stock_service.list_products(
        status=status,
        search=search,
        include_deleted=include_deleted,
        limit=limit,
        offset=offset,
    )
    availability = compute_bulk_availability([p.id for p in products])
    return jsonify({
        "products": [_with_availability(p, availability.get(p.id)) for p in products],
        "count": len(products),
    }), 200


@products_bp.post("")
@with_actor
def create_product_route():
    """Create a new product (on hand defaults to 0)."""
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=False)
        created = stock_service.create_product(patch, actor=current_actor())
    except HANDLED_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create product")
        return jsonify({"error": "Internal server error"}), 500

    return jsonify({"product": created.to_dict()}), 201


@products_bp.get("/<int:product_id>")
def get_product_route(product_id: int):
    try:
        product = stock_service.get_product(product_id, include_deleted=True)
        availability = compute_availability(product_id)
    except HANDLED_ERRORS as e:
        return error_response(e)
    return jsonify({"product": _with_availability(product, availability)}), 200


@products_bp.put("/<int:product_id>")
@with_actor
def update_product_route(product_id: int):
    """Update descriptive and pricing fields. On hand changes go through /adjust."""
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=True)
        updated = stock_service.update_product(product_id, patch, actor=current_actor())
    except HANDLED_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update product %s", product_id)
        return jsonify({"error": "Internal server error"}), 500

    return jsonify({"product": updated.to_dict()}), 200


@products_bp.delete("/<int:product_id>")
@with_actor
def delete_product_route(product_id: int):
    """Soft-delete a product that no open invoice reserves."""
    try:
        stock_service.soft_delete_product(product_id, actor=current_actor())
    except HANDLED_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to delete product %s", product_id)
        return jsonify({"error": "Internal server error"}), 500

    return jsonify({"ok": True}), 200


@products_bp.get("/<int:product_id>/availability")
def availability_route(product_id: int):
    """
    Availability of a single product.

    Query params:
    - exclude_invoice_id: ignore reservations held by this invoice (optional)
    """
    exclude_invoice_id = request.args.get("exclude_invoice_id", type=int)
    try:
        availability = compute_availability(product_id, exclude_invoice_id=exclude_invoice_id)
    except HANDLED_ERRORS as e:
        return error_response(e)
    return jsonify(availability._asdict()), 200


@products_bp.post("/availability")
def bulk_availability_route():
    """
    Availability for many products in one call.

    Request body:
    {
        "product_ids": [1, 2, 3]
    }
    """
    payload = request.get_json(silent=True) or {}
    raw_ids = payload.get("product_ids")
    if not isinstance(raw_ids, list):
        return jsonify({"error": "product_ids must be a list", "code": "VALIDATION_ERROR", "details": {}}), 400

    try:
        ids = [coerce_int(pid, "product_ids") for pid in raw_ids]
    except ValidationError as e:
        return error_response(e)

    result = compute_bulk_availability(ids)
    return jsonify({
        "availability": {str(pid): row._asdict() for pid, row in result.items()},
    }), 200


@products_bp.post("/<int:product_id>/adjust")
@with_actor
def adjust_stock_route(product_id: int):
    """
    Stock-take: set on hand to a counted value.

    Request body:
    {
        "quantity_on_hand": 12,
        "reason": "Cycle count"
    }
    """
    payload = request.get_json(silent=True) or {}
    try:
        if "quantity_on_hand" not in payload:
            raise ValidationError("quantity_on_hand is required")
        quantity = coerce_int(payload.get("quantity_on_hand"), "quantity_on_hand")
        product = stock_service.adjust_stock(
            product_id, quantity, payload.get("reason"), actor=current_actor()
        )
        availability = compute_availability(product_id)
    except HANDLED_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to adjust stock for product %s", product_id)
        return jsonify({"error": "Internal server error"}), 500

    return jsonify({"product": _with_availability(product, availability)}), 200


@products_bp.get("/<int:product_id>/events")
def product_events_route(product_id: int):
    limit = min(request.args.get("limit", 100, type=int), 500)
    try:
        stock_service.get_product(product_id, include_deleted=True)
    except HANDLED_ERRORS as e:
        return error_response(e)
    events = audit_service.get_product_events(product_id, limit=limit)
    return jsonify({"events": [ev.to_dict() for ev in events]}), 200
