from __future__ import annotations

from ..extensions import db
from stockledger.time_utils import to_utc_z


# Per-product lifecycle events
EVENT_CREATED = "CREATED"
EVENT_ADDED_TO_INVOICE = "ADDED_TO_INVOICE"
EVENT_RESERVED = "RESERVED"
EVENT_SOLD = "SOLD"
EVENT_PAYMENT_RECEIVED = "PAYMENT_RECEIVED"
EVENT_RETURN_INITIATED = "RETURN_INITIATED"
EVENT_RETURN_FINALIZED = "RETURN_FINALIZED"
EVENT_REFUND_ISSUED = "REFUND_ISSUED"
EVENT_EXCHANGE_CREDIT_CREATED = "EXCHANGE_CREDIT_CREATED"
EVENT_INVENTORY_RELEASED = "INVENTORY_RELEASED"
EVENT_INVOICE_CANCELLED = "INVOICE_CANCELLED"
EVENT_ITEM_VOIDED = "ITEM_VOIDED"
EVENT_STOCK_ADJUSTED = "STOCK_ADJUSTED"
EVENT_SOFT_DELETED = "SOFT_DELETED"

EVENT_TYPES = [
    EVENT_CREATED,
    EVENT_ADDED_TO_INVOICE,
    EVENT_RESERVED,
    EVENT_SOLD,
    EVENT_PAYMENT_RECEIVED,
    EVENT_RETURN_INITIATED,
    EVENT_RETURN_FINALIZED,
    EVENT_REFUND_ISSUED,
    EVENT_EXCHANGE_CREDIT_CREATED,
    EVENT_INVENTORY_RELEASED,
    EVENT_INVOICE_CANCELLED,
    EVENT_ITEM_VOIDED,
    EVENT_STOCK_ADJUSTED,
    EVENT_SOFT_DELETED,
]

EVENT_SOURCES = ["SYSTEM", "USER", "INVOICE", "RETURN", "PAYMENT"]


class InventoryItemEvent(db.Model):
    """
    Append-only per-product event timeline.

    WHY: quantity_on_hand and status are overwritten in place. The event
    rows keep the history of every reservation, sale, release and restock.
    """
    __tablename__ = "inventory_item_events"
    __table_args__ = (
        db.Index("ix_inventory_item_events_product_occurred", "product_id", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    event_type = db.Column(db.String(32), nullable=False, index=True)
    actor_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    source = db.Column(db.String(16), nullable=False, default="SYSTEM")

    reference_type = db.Column(db.String(32), nullable=True)
    reference_id = db.Column(db.String(64), nullable=True)

    summary = db.Column(db.String(255), nullable=False)
    details = db.Column(db.JSON, nullable=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "event_type": self.event_type,
            "actor_user_id": self.actor_user_id,
            "source": self.source,
            "reference_type": self.reference_type,
            "reference_id": self.reference_id,
            "summary": self.summary,
            "details": self.details,
            "occurred_at": to_utc_z(self.occurred_at),
        }


class ActivityLog(db.Model):
    """Coarse, human-readable activity feed."""
    __tablename__ = "activity_logs"
    __table_args__ = (
        db.Index("ix_activity_logs_entity", "entity_type", "entity_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    actor_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    action_type = db.Column(db.String(32), nullable=False, index=True)
    entity_type = db.Column(db.String(32), nullable=False)
    entity_id = db.Column(db.String(64), nullable=True)
    summary = db.Column(db.String(255), nullable=False)
    details = db.Column(db.JSON, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "actor_user_id": self.actor_user_id,
            "action_type": self.action_type,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "summary": self.summary,
            "details": self.details,
            "created_at": to_utc_z(self.created_at),
        }
