# Overview: Shared error taxonomy for the invoicing and stock services.

"""
Service Errors

WHY: Routes map every business rejection to a status code without parsing
messages. Each error carries a stable uppercase `code` and a `details` dict
(e.g. available / requested for a stock rejection).

HTTP mapping (see routes/_errors.py):
- NotFoundError          -> 404
- InvalidStateError      -> 409
- InsufficientStockError -> 409
- InvalidAmountError     -> 400
"""

from __future__ import annotations


class InvoiceError(Exception):
    """Base class for invoice, settlement, return and stock rejections."""

    http_status = 400
    default_code = "INVOICE_ERROR"

    def __init__(self, message: str, code: str | None = None, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.details = details or {}

    def to_dict(self) -> dict:
        return {"error": self.message, "code": self.code, "details": self.details}


class NotFoundError(InvoiceError):
    """Referenced invoice, item, product, transaction or return does not exist."""

    http_status = 404
    default_code = "NOT_FOUND"


class InvalidStateError(InvoiceError):
    """Operation not allowed in the entity's current lifecycle state."""

    http_status = 409
    default_code = "INVALID_STATE"


class InsufficientStockError(InvoiceError):
    """Requested quantity exceeds what is available to sell."""

    http_status = 409
    default_code = "ASSET_UNAVAILABLE"


class InvalidAmountError(InvoiceError):
    """Quantity, price, discount or transaction amount is out of range."""

    http_status = 400
    default_code = "INVALID_AMOUNT"
