# Overview: Audit/event sinks (per-product timeline and coarse activity feed).

"""
Audit Invariants

- Append-only. No updates or deletes of existing rows.
- Rows are written inside a SAVEPOINT of the caller's unit of work, so they
  commit or roll back together with the business change they describe.
- A failed audit write is logged and dropped; it never aborts the business
  transaction.
"""

from __future__ import annotations

import logging

from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import InventoryItemEvent, ActivityLog
from ..models.audit import EVENT_TYPES, EVENT_SOURCES

logger = logging.getLogger("stockledger.audit")


# Activity log action types
ACTION_INVOICE_CREATED = "INVOICE_CREATED"
ACTION_INVOICE_ITEM_ADDED = "INVOICE_ITEM_ADDED"
ACTION_INVOICE_ITEM_UPDATED = "INVOICE_ITEM_UPDATED"
ACTION_INVOICE_ITEM_REMOVED = "INVOICE_ITEM_REMOVED"
ACTION_INVOICE_ITEM_VOIDED = "INVOICE_ITEM_VOIDED"
ACTION_INVOICE_DISCOUNT_UPDATED = "INVOICE_DISCOUNT_UPDATED"
ACTION_INVOICE_CANCELLED = "INVOICE_CANCELLED"
ACTION_INVOICE_DELETED = "INVOICE_DELETED"
ACTION_PAYMENT_RECORDED = "PAYMENT_RECORDED"
ACTION_REFUND_RECORDED = "REFUND_RECORDED"
ACTION_TRANSACTION_VOIDED = "TRANSACTION_VOIDED"
ACTION_RETURN_CREATED = "RETURN_CREATED"
ACTION_RETURN_FINALIZED = "RETURN_FINALIZED"
ACTION_RETURN_CANCELLED = "RETURN_CANCELLED"
ACTION_PRODUCT_CREATED = "PRODUCT_CREATED"
ACTION_STOCK_ADJUSTED = "STOCK_ADJUSTED"
ACTION_PRODUCT_DELETED = "PRODUCT_DELETED"


def actor_id_of(actor) -> int | None:
    return actor.id if actor is not None else None


def record_event(
    *,
    product_id: int,
    event_type: str,
    summary: str,
    actor_user_id: int | None = None,
    source: str = "SYSTEM",
    reference_type: str | None = None,
    reference_id=None,
    details: dict | None = None,
) -> InventoryItemEvent | None:
    """
    Append a per-product event.

    Returns the event, or None when the write failed (already logged).
    """
    if event_type not in EVENT_TYPES:
        raise ValueError(f"Unknown inventory event type: {event_type}")
    if source not in EVENT_SOURCES:
        raise ValueError(f"Unknown inventory event source: {source}")

    try:
        with db.session.begin_nested():
            ev = InventoryItemEvent(
                product_id=product_id,
                event_type=event_type,
                actor_user_id=actor_user_id,
                source=source,
                reference_type=reference_type,
                reference_id=str(reference_id) if reference_id is not None else None,
                summary=summary[:255],
                details=details,
            )
            db.session.add(ev)
        return ev
    except SQLAlchemyError:
        logger.exception("Failed to record inventory event %s for product %s", event_type, product_id)
        return None


def log_activity(
    *,
    action_type: str,
    entity_type: str,
    entity_id=None,
    summary: str,
    actor_user_id: int | None = None,
    details: dict | None = None,
) -> ActivityLog | None:
    """Append a coarse activity row. Same failure policy as record_event()."""
    try:
        with db.session.begin_nested():
            row = ActivityLog(
                actor_user_id=actor_user_id,
                action_type=action_type,
                entity_type=entity_type,
                entity_id=str(entity_id) if entity_id is not None else None,
                summary=summary[:255],
                details=details,
            )
            db.session.add(row)
        return row
    except SQLAlchemyError:
        logger.exception("Failed to log activity %s for %s %s", action_type, entity_type, entity_id)
        return None


def get_product_events(product_id: int, limit: int = 100) -> list[InventoryItemEvent]:
    return (
        db.session.query(InventoryItemEvent)
        .filter_by(product_id=product_id)
        .order_by(InventoryItemEvent.occurred_at.desc(), InventoryItemEvent.id.desc())
        .limit(limit)
        .all()
    )


def get_activity(entity_type: str, entity_id, limit: int = 100) -> list[ActivityLog]:
    return (
        db.session.query(ActivityLog)
        .filter_by(entity_type=entity_type, entity_id=str(entity_id))
        .order_by(ActivityLog.id.desc())
        .limit(limit)
        .all()
    )
