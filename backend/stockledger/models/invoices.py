from __future__ import annotations

from ..extensions import db
from stockledger.time_utils import to_utc_z


# Invoice status (derived by settlement_service, never set by a caller)
INVOICE_STATUS_UNPAID = "UNPAID"
INVOICE_STATUS_PARTIALLY_PAID = "PARTIALLY_PAID"
INVOICE_STATUS_PAID = "PAID"
INVOICE_STATUS_CANCELLED = "CANCELLED"

INVOICE_STATUSES = [
    INVOICE_STATUS_UNPAID,
    INVOICE_STATUS_PARTIALLY_PAID,
    INVOICE_STATUS_PAID,
    INVOICE_STATUS_CANCELLED,
]

CURRENCIES = ["USD", "GHS", "GBP"]

DISCOUNT_NONE = "none"
DISCOUNT_PERCENTAGE = "percentage"
DISCOUNT_FIXED = "fixed"

DISCOUNT_TYPES = [DISCOUNT_NONE, DISCOUNT_PERCENTAGE, DISCOUNT_FIXED]

TRANSACTION_PAYMENT = "PAYMENT"
TRANSACTION_REFUND = "REFUND"

TRANSACTION_TYPES = [TRANSACTION_PAYMENT, TRANSACTION_REFUND]

PAYMENT_METHOD_OTHER = "Other"
PAYMENT_METHODS = ["Cash", "MoMo", "Card", "ACH", PAYMENT_METHOD_OTHER]


class Invoice(db.Model):
    """
    Customer invoice (sales document settled by payments and refunds).

    WHY: Every monetary field on the invoice is a cache of its items and
    transactions. recalculate_invoice_totals() rebuilds them from scratch, so
    the stored values are never the source of truth.

    CANCELLED invoices keep their rows (items, transactions) for the audit
    trail but carry zeroed totals.
    """
    __tablename__ = "invoices"
    __table_args__ = (
        db.UniqueConstraint("invoice_number", name="uq_invoices_invoice_number"),
        db.CheckConstraint("balance_due_cents >= 0", name="ck_invoices_balance_non_negative"),
        db.CheckConstraint("amount_paid_cents >= 0", name="ck_invoices_paid_non_negative"),
        db.Index("ix_invoices_status_deleted", "status", "is_deleted"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Human-readable number (e.g., "INV-2026-000042")
    invoice_number = db.Column(db.String(32), nullable=False)

    # Opaque reference to a customer record kept elsewhere
    customer_id = db.Column(db.String(64), nullable=True, index=True)

    status = db.Column(db.String(16), nullable=False, default=INVOICE_STATUS_UNPAID, index=True)
    currency = db.Column(db.String(3), nullable=False, default="GHS")

    # Totals (all amounts in cents of `currency`)
    subtotal_cents = db.Column(db.Integer, nullable=False, default=0)
    discount_type = db.Column(db.String(16), nullable=False, default=DISCOUNT_NONE)
    discount_value = db.Column(db.Integer, nullable=False, default=0)  # bps for percentage, cents for fixed
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False, default=0)
    amount_paid_cents = db.Column(db.Integer, nullable=False, default=0)
    balance_due_cents = db.Column(db.Integer, nullable=False, default=0)

    total_cost_cents = db.Column(db.Integer, nullable=False, default=0)
    total_profit_cents = db.Column(db.Integer, nullable=False, default=0)
    margin_bps = db.Column(db.Integer, nullable=True)

    # FX snapshot taken when the first item was costed
    fx_rate_used = db.Column(db.Numeric(12, 6), nullable=True)
    fx_rate_source = db.Column(db.String(32), nullable=True)
    fx_fetched_at = db.Column(db.DateTime(timezone=True), nullable=True)

    notes = db.Column(db.Text, nullable=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    updated_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    # Cancellation audit trail
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    cancellation_reason = db.Column(db.String(255), nullable=True)

    # Soft delete
    is_deleted = db.Column(db.Boolean, nullable=False, default=False)
    deleted_at = db.Column(db.DateTime(timezone=True), nullable=True)
    deleted_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    items = db.relationship(
        "InvoiceItem",
        backref=db.backref("invoice", lazy=True),
        lazy=True,
        order_by="InvoiceItem.id",
    )
    transactions = db.relationship(
        "InvoiceTransaction",
        backref=db.backref("invoice", lazy=True),
        lazy=True,
        order_by="InvoiceTransaction.id",
    )

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_locked(self) -> bool:
        """PAID and CANCELLED invoices reject item and discount edits."""
        return self.status in (INVOICE_STATUS_PAID, INVOICE_STATUS_CANCELLED)

    @property
    def active_items(self) -> list["InvoiceItem"]:
        return [item for item in self.items if item.voided_at is None]

    def __repr__(self) -> str:
        return f"<Invoice id={self.id} number={self.invoice_number!r} status={self.status}>"

    def to_dict(self, include_items: bool = False) -> dict:
        data = {
            "id": self.id,
            "invoice_number": self.invoice_number,
            "customer_id": self.customer_id,
            "status": self.status,
            "currency": self.currency,
            "subtotal_cents": self.subtotal_cents,
            "discount_type": self.discount_type,
            "discount_value": self.discount_value,
            "discount_cents": self.discount_cents,
            "total_cents": self.total_cents,
            "amount_paid_cents": self.amount_paid_cents,
            "balance_due_cents": self.balance_due_cents,
            "total_cost_cents": self.total_cost_cents,
            "total_profit_cents": self.total_profit_cents,
            "margin_bps": self.margin_bps,
            "fx_rate_used": str(self.fx_rate_used) if self.fx_rate_used is not None else None,
            "fx_rate_source": self.fx_rate_source,
            "fx_fetched_at": to_utc_z(self.fx_fetched_at) if self.fx_fetched_at else None,
            "notes": self.notes,
            "created_by_user_id": self.created_by_user_id,
            "updated_by_user_id": self.updated_by_user_id,
            "cancelled_at": to_utc_z(self.cancelled_at) if self.cancelled_at else None,
            "cancelled_by_user_id": self.cancelled_by_user_id,
            "cancellation_reason": self.cancellation_reason,
            "is_deleted": self.is_deleted,
            "deleted_at": to_utc_z(self.deleted_at) if self.deleted_at else None,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
            data["transactions"] = [txn.to_dict() for txn in self.transactions]
        return data


class InvoiceItem(db.Model):
    """
    Line item on an invoice.

    A non-voided line on an invoice that is not CANCELLED is the reservation
    of `quantity - quantity_returned_total` units of its product.
    """
    __tablename__ = "invoice_items"
    __table_args__ = (
        db.CheckConstraint("quantity >= 1", name="ck_invoice_items_quantity_positive"),
        db.CheckConstraint(
            "quantity_returned_total >= 0 AND quantity_returned_total <= quantity",
            name="ck_invoice_items_returned_range",
        ),
        db.Index("ix_invoice_items_product_voided", "product_id", "voided_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)

    description = db.Column(db.String(255), nullable=True)
    quantity = db.Column(db.Integer, nullable=False, default=1)

    # Frozen at add-time in invoice currency
    unit_price_cents = db.Column(db.Integer, nullable=False, default=0)
    unit_cost_cents = db.Column(db.Integer, nullable=False, default=0)
    original_cost_cents = db.Column(db.Integer, nullable=True)
    original_cost_currency = db.Column(db.String(3), nullable=True)

    discount_type = db.Column(db.String(16), nullable=False, default=DISCOUNT_NONE)
    discount_value = db.Column(db.Integer, nullable=False, default=0)  # bps for percentage, cents for fixed
    discount_cents = db.Column(db.Integer, nullable=False, default=0)

    line_total_cents = db.Column(db.Integer, nullable=False, default=0)
    line_cost_cents = db.Column(db.Integer, nullable=False, default=0)
    line_profit_cents = db.Column(db.Integer, nullable=False, default=0)

    quantity_returned_total = db.Column(db.Integer, nullable=False, default=0)

    # Void audit trail
    voided_at = db.Column(db.DateTime(timezone=True), nullable=True)
    voided_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    void_reason = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    product = db.relationship("Product")

    @property
    def is_voided(self) -> bool:
        return self.voided_at is not None

    @property
    def outstanding_quantity(self) -> int:
        return self.quantity - (self.quantity_returned_total or 0)

    def __repr__(self) -> str:
        return f"<InvoiceItem id={self.id} invoice_id={self.invoice_id} product_id={self.product_id} qty={self.quantity}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "invoice_id": self.invoice_id,
            "product_id": self.product_id,
            "description": self.description,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "unit_cost_cents": self.unit_cost_cents,
            "original_cost_cents": self.original_cost_cents,
            "original_cost_currency": self.original_cost_currency,
            "discount_type": self.discount_type,
            "discount_value": self.discount_value,
            "discount_cents": self.discount_cents,
            "line_total_cents": self.line_total_cents,
            "line_cost_cents": self.line_cost_cents,
            "line_profit_cents": self.line_profit_cents,
            "quantity_returned_total": self.quantity_returned_total,
            "voided_at": to_utc_z(self.voided_at) if self.voided_at else None,
            "voided_by_user_id": self.voided_by_user_id,
            "void_reason": self.void_reason,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class InvoiceTransaction(db.Model):
    """
    Append-only settlement ledger row (PAYMENT or REFUND).

    The only mutation after insert is attaching the void marker.
    """
    __tablename__ = "invoice_transactions"
    __table_args__ = (
        db.CheckConstraint("amount_cents > 0", name="ck_invoice_transactions_amount_positive"),
        db.Index("ix_invoice_transactions_invoice_voided", "invoice_id", "voided_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id"), nullable=False, index=True)

    transaction_type = db.Column(db.String(16), nullable=False, index=True)
    amount_cents = db.Column(db.Integer, nullable=False)
    currency = db.Column(db.String(3), nullable=False)

    payment_method = db.Column(db.String(16), nullable=False)
    payment_method_other_text = db.Column(db.String(255), nullable=True)
    comment = db.Column(db.Text, nullable=False)

    transaction_date = db.Column(db.DateTime(timezone=True), nullable=False)
    received_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    # Set when the refund was issued by a finalized return
    linked_return_id = db.Column(db.Integer, db.ForeignKey("invoice_returns.id"), nullable=True)

    # Void audit trail
    voided_at = db.Column(db.DateTime(timezone=True), nullable=True)
    voided_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    void_reason = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    @property
    def is_voided(self) -> bool:
        return self.voided_at is not None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "invoice_id": self.invoice_id,
            "transaction_type": self.transaction_type,
            "amount_cents": self.amount_cents,
            "currency": self.currency,
            "payment_method": self.payment_method,
            "payment_method_other_text": self.payment_method_other_text,
            "comment": self.comment,
            "transaction_date": to_utc_z(self.transaction_date),
            "received_by_user_id": self.received_by_user_id,
            "linked_return_id": self.linked_return_id,
            "voided_at": to_utc_z(self.voided_at) if self.voided_at else None,
            "voided_by_user_id": self.voided_by_user_id,
            "void_reason": self.void_reason,
            "created_at": to_utc_z(self.created_at),
        }


class DocumentSequence(db.Model):
    """
    Atomic per-year document sequences.

    WHY: Prevent race conditions when generating invoice and return numbers.
    """
    __tablename__ = "document_sequences"
    __table_args__ = (
        db.UniqueConstraint("document_type", "year", name="uq_doc_sequences_type_year"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    document_type = db.Column(db.String(32), nullable=False, index=True)
    year = db.Column(db.Integer, nullable=False)
    next_number = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "document_type": self.document_type,
            "year": self.year,
            "next_number": self.next_number,
            "updated_at": to_utc_z(self.updated_at),
        }
