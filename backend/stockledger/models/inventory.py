from __future__ import annotations

from ..extensions import db
from stockledger.time_utils import to_utc_z


PRODUCT_STATUS_IN_STOCK = "InStock"
PRODUCT_STATUS_PROCESSING = "Processing"
PRODUCT_STATUS_SOLD = "Sold"

PRODUCT_STATUSES = [PRODUCT_STATUS_IN_STOCK, PRODUCT_STATUS_PROCESSING, PRODUCT_STATUS_SOLD]


class Product(db.Model):
    """
    Sellable / stockable inventory item.

    STOCK COUNTER:
    quantity_on_hand is the ONLY stored counter. It is decremented when an
    invoice becomes PAID and incremented by item void, return, refund or
    payment void that takes an invoice out of PAID, and stock-take adjustment.

    There is no quantity_reserved column. Reservation is implied by
    invoice_items rows and computed by availability_service.

    status is a cached projection of invoice_items (see asset_status_service)
    and carries no authority of its own.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.UniqueConstraint("sku", name="uq_products_sku"),
        db.CheckConstraint("quantity_on_hand >= 0", name="ck_products_on_hand_non_negative"),
        db.Index("ix_products_status_deleted", "status", "deleted_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    sku = db.Column(db.String(64), nullable=False)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)

    quantity_on_hand = db.Column(db.Integer, nullable=False, default=0)
    status = db.Column(db.String(16), nullable=False, default=PRODUCT_STATUS_IN_STOCK, index=True)

    # Authoritative storage in cents (frontend may only format for display)
    price_cents = db.Column(db.Integer, nullable=True)
    price_currency = db.Column(db.String(3), nullable=False, default="GHS")
    cost_cents = db.Column(db.Integer, nullable=True)
    cost_currency = db.Column(db.String(3), nullable=False, default="USD")

    # Soft delete (products with history are never hard-deleted)
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

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    def __repr__(self) -> str:
        return f"<Product id={self.id} sku={self.sku!r} on_hand={self.quantity_on_hand} status={self.status}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sku": self.sku,
            "name": self.name,
            "description": self.description,
            "quantity_on_hand": self.quantity_on_hand,
            "status": self.status,
            "price_cents": self.price_cents,
            "price_currency": self.price_currency,
            "cost_cents": self.cost_cents,
            "cost_currency": self.cost_currency,
            "deleted_at": to_utc_z(self.deleted_at) if self.deleted_at else None,
            "deleted_by_user_id": self.deleted_by_user_id,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
