from __future__ import annotations

from ..extensions import db
from stockledger.time_utils import to_utc_z


RETURN_TYPE_REFUND = "RETURN_REFUND"
RETURN_TYPE_EXCHANGE = "EXCHANGE"
RETURN_TYPES = [RETURN_TYPE_REFUND, RETURN_TYPE_EXCHANGE]

RETURN_STATUS_DRAFT = "DRAFT"
RETURN_STATUS_FINALIZED = "FINALIZED"
RETURN_STATUS_CANCELLED = "CANCELLED"
RETURN_STATUSES = [RETURN_STATUS_DRAFT, RETURN_STATUS_FINALIZED, RETURN_STATUS_CANCELLED]

RETURN_REASON_CODES = ["BUYER_REMORSE", "DEFECT", "EXCHANGE", "OTHER"]

RESTOCK_CONDITIONS = ["AS_NEW", "OPEN_BOX", "DAMAGED"]

CREDIT_STATUS_ACTIVE = "ACTIVE"
CREDIT_STATUS_CONSUMED = "CONSUMED"
CREDIT_STATUS_VOIDED = "VOIDED"
CREDIT_STATUSES = [CREDIT_STATUS_ACTIVE, CREDIT_STATUS_CONSUMED, CREDIT_STATUS_VOIDED]


class InvoiceReturn(db.Model):
    """
    Return document against a PAID invoice.

    Lifecycle: DRAFT -> FINALIZED or DRAFT -> CANCELLED. Only finalization
    touches stock and money.
    """
    __tablename__ = "invoice_returns"
    __table_args__ = (
        db.Index("ix_invoice_returns_invoice_status", "invoice_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    return_number = db.Column(db.String(32), nullable=False, unique=True)
    invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id"), nullable=False, index=True)
    customer_id = db.Column(db.String(64), nullable=True)

    return_type = db.Column(db.String(16), nullable=False)
    status = db.Column(db.String(16), nullable=False, default=RETURN_STATUS_DRAFT, index=True)
    currency = db.Column(db.String(3), nullable=False)
    total_return_cents = db.Column(db.Integer, nullable=False, default=0)

    reason = db.Column(db.Text, nullable=True)
    return_reason_code = db.Column(db.String(32), nullable=False)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    finalized_at = db.Column(db.DateTime(timezone=True), nullable=True)
    finalized_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)

    invoice = db.relationship("Invoice", backref=db.backref("returns", lazy=True))
    items = db.relationship(
        "InvoiceReturnItem",
        backref=db.backref("invoice_return", lazy=True),
        lazy=True,
        order_by="InvoiceReturnItem.id",
    )

    def to_dict(self, include_items: bool = True) -> dict:
        data = {
            "id": self.id,
            "return_number": self.return_number,
            "invoice_id": self.invoice_id,
            "customer_id": self.customer_id,
            "return_type": self.return_type,
            "status": self.status,
            "currency": self.currency,
            "total_return_cents": self.total_return_cents,
            "reason": self.reason,
            "return_reason_code": self.return_reason_code,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "finalized_at": to_utc_z(self.finalized_at) if self.finalized_at else None,
            "finalized_by_user_id": self.finalized_by_user_id,
            "cancelled_at": to_utc_z(self.cancelled_at) if self.cancelled_at else None,
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class InvoiceReturnItem(db.Model):
    """Returned quantity of one invoice line, priced at the net sale price."""
    __tablename__ = "invoice_return_items"
    __table_args__ = (
        db.CheckConstraint("quantity_returned >= 1", name="ck_invoice_return_items_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    return_id = db.Column(db.Integer, db.ForeignKey("invoice_returns.id"), nullable=False, index=True)
    invoice_item_id = db.Column(db.Integer, db.ForeignKey("invoice_items.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)

    quantity_returned = db.Column(db.Integer, nullable=False)
    unit_price_at_sale_cents = db.Column(db.Integer, nullable=False)
    line_return_cents = db.Column(db.Integer, nullable=False)
    restock_condition = db.Column(db.String(16), nullable=False, default="AS_NEW")

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "return_id": self.return_id,
            "invoice_item_id": self.invoice_item_id,
            "product_id": self.product_id,
            "quantity_returned": self.quantity_returned,
            "unit_price_at_sale_cents": self.unit_price_at_sale_cents,
            "line_return_cents": self.line_return_cents,
            "restock_condition": self.restock_condition,
            "created_at": to_utc_z(self.created_at),
        }


class CustomerCredit(db.Model):
    """Store credit issued by an EXCHANGE return."""
    __tablename__ = "customer_credits"
    __table_args__ = (
        db.CheckConstraint("remaining_cents >= 0", name="ck_customer_credits_remaining_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(db.String(64), nullable=True, index=True)
    currency = db.Column(db.String(3), nullable=False)
    original_cents = db.Column(db.Integer, nullable=False)
    remaining_cents = db.Column(db.Integer, nullable=False)
    status = db.Column(db.String(16), nullable=False, default=CREDIT_STATUS_ACTIVE, index=True)
    source_return_id = db.Column(db.Integer, db.ForeignKey("invoice_returns.id"), nullable=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "customer_id": self.customer_id,
            "currency": self.currency,
            "original_cents": self.original_cents,
            "remaining_cents": self.remaining_cents,
            "status": self.status,
            "source_return_id": self.source_return_id,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
        }
