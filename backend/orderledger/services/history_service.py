# Overview: Append-only order history; no business logic.

from __future__ import annotations

from ..extensions import db
from ..models import Order, OrderEvent


def record_event(order: Order, description: str, actor_user_id: int | None = None) -> OrderEvent:
    """
    Append a history entry inside the caller's transaction.

    - No domain logic here.
    - No updates/deletes of existing events; they go away only with the order.
    """
    # Joins order.events even when that collection is already loaded
    event = OrderEvent(
        order=order,
        description=description,
        actor_user_id=actor_user_id,
    )
    db.session.add(event)
    db.session.flush()  # ensures event.id is assigned without committing
    return event


def list_events(order: Order) -> list[OrderEvent]:
    """History for an order, most recent first."""
    return (
        db.session.query(OrderEvent)
        .filter_by(order_id=order.id)
        .order_by(OrderEvent.created_at.desc(), OrderEvent.id.desc())
        .all()
    )
