# Overview: Maps service and validation errors to JSON responses.

from flask import jsonify

from ..services.errors import InvoiceError
from ..validation import ValidationError, ConflictError


HANDLED_ERRORS = (InvoiceError, ValidationError, ConflictError)


def error_response(e: Exception):
    """
    Convert a known business or input error into (json, status).

    InvoiceError subclasses carry their own status and code; validation
    problems are 400 and conflicts (duplicate SKU) are 409.
    """
    if isinstance(e, InvoiceError):
        return jsonify(e.to_dict()), e.http_status
    if isinstance(e, ConflictError):
        return jsonify({"error": str(e), "code": "CONFLICT", "details": {}}), 409
    return jsonify({"error": str(e), "code": "VALIDATION_ERROR", "details": {}}), 400
