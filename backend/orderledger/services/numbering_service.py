# Overview: Service-layer operations for order numbering; tenant-scoped sequential numbers.

from __future__ import annotations

from sqlalchemy import func

from ..extensions import db
from ..models import Order, OrderNumberSequence
from .concurrency import lock_for_update
"""
Order Numbering Invariants (authoritative)

- Numbers are per organization, start at 1 and increase by one.
- next = max(sequence.next_number, max(existing order number) + 1).
- The sequence row is locked while allocating; its version_id turns a lost
  race into StaleDataError, which run_with_retry() retries.
- uq_orders_org_number stays the final arbiter: a collision surfaces as
  IntegrityError on insert and the caller allocates again.
- Numbers of deleted orders are never handed out again implicitly: the
  sequence only moves forward.

All functions here run inside the caller's unit of work; none of them commit.
"""


def _max_existing_number(org_id: int) -> int:
    current = (
        db.session.query(func.max(Order.number))
        .filter(Order.org_id == org_id)
        .scalar()
    )
    return int(current or 0)


def _get_sequence(org_id: int, *, lock: bool = False) -> OrderNumberSequence | None:
    query = db.session.query(OrderNumberSequence).filter_by(org_id=org_id)
    if lock:
        query = lock_for_update(query)
    return query.first()


def _ensure_sequence(org_id: int) -> OrderNumberSequence:
    seq = _get_sequence(org_id, lock=True)
    if seq is not None:
        return seq

    # A concurrent creator of the same row makes this flush fail with
    # IntegrityError; the lifecycle service rolls back and allocates again.
    seq = OrderNumberSequence(org_id=org_id, next_number=_max_existing_number(org_id) + 1)
    db.session.add(seq)
    db.session.flush()
    return seq


def next_order_number(org_id: int) -> int:
    """
    Allocate the next order number for an organization.

    Returns one greater than the highest existing number (1 for the first
    order), never lower than what the sequence has already handed out.
    """
    seq = _ensure_sequence(org_id)
    number = max(seq.next_number, _max_existing_number(org_id) + 1)
    seq.next_number = number + 1
    db.session.flush()
    return number


def reserve_order_number(org_id: int, number: int) -> None:
    """Advance the sequence past a client-supplied number."""
    seq = _ensure_sequence(org_id)
    if seq.next_number <= number:
        seq.next_number = number + 1
        db.session.flush()


def peek_next_order_number(org_id: int) -> int:
    """Preview the number next_order_number() would hand out. Reserves nothing."""
    seq = _get_sequence(org_id)
    floor = _max_existing_number(org_id) + 1
    if seq is None:
        return floor
    return max(seq.next_number, floor)


def order_number_in_use(org_id: int, number: int, *, exclude_order_id: int | None = None) -> bool:
    query = db.session.query(Order.id).filter(Order.org_id == org_id, Order.number == number)
    if exclude_order_id is not None:
        query = query.filter(Order.id != exclude_order_id)
    return db.session.query(query.exists()).scalar()
