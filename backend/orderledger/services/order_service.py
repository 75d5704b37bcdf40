"""
Order Lifecycle Service - quotes and sales with their stock effects

Every public operation here is one unit of work: it takes the write lock,
validates against the persisted order, mutates order, lines, stock ledger
and history together, and commits. Any exception rolls the whole attempt
back (see concurrency.run_with_retry), so no partial effect escapes.

STOCK INVARIANT: an order has posted stock movements for its GOOD lines
if and only if it is currently SOLD. Every transition below keeps that true:
- create as SOLD          -> OUT per GOOD line
- update                  -> net difference between the stock effect before
                             and after the update, per product
- reopen SOLD -> QUOTE    -> IN per GOOD line
- delete of a SOLD order  -> IN per GOOD line, then the order goes away
- clone                   -> always a QUOTE, no movements
"""

from __future__ import annotations

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Client, Order, OrderEvent, OrderLine, Product, StockMovement, User
from ..validation import ConflictError, NotFoundError, ValidationError
from .concurrency import begin_write, lock_for_update, run_with_retry
from .history_service import list_events, record_event
from .numbering_service import (
    next_order_number,
    order_number_in_use,
    peek_next_order_number,
    reserve_order_number,
)
from .order_schemas import CreateOrderRequest, OrderContext, OrderFilters, UpdateOrderRequest
from .stock_service import post_movement_for_product


# Status changes update_order accepts; anything else goes through reopen_order
ALLOWED_TRANSITIONS = {
    "QUOTE": {"QUOTE", "SOLD", "DECLINED"},
    "SOLD": {"SOLD"},
    "DECLINED": {"DECLINED"},
}


# =============================================================================
# Loading and validation helpers
# =============================================================================

def _load_order(org_id: int, order_id: int, *, lock: bool = False) -> Order:
    query = db.session.query(Order).filter_by(id=order_id)
    if lock:
        query = lock_for_update(query)
    order = query.first()
    # Orders of other tenants are reported as missing, not as forbidden
    if order is None or order.org_id != org_id:
        raise NotFoundError(f"Order {order_id} not found")
    return order


def _resolve_client(org_id: int, client_id: int) -> Client:
    client = db.session.get(Client, client_id)
    if client is None:
        raise NotFoundError(f"Client {client_id} not found")
    if client.org_id != org_id:
        raise ConflictError(
            "Client belongs to another organization",
            details={"client_id": client_id},
        )
    return client


def _resolve_salesperson(org_id: int, user_id: int | None) -> int | None:
    if user_id is None:
        return None
    user = db.session.get(User, user_id)
    if user is None:
        raise NotFoundError(f"User {user_id} not found")
    if user.org_id != org_id:
        raise ConflictError(
            "Salesperson belongs to another organization",
            details={"salesperson_id": user_id},
        )
    return user.id


def _resolve_product(org_id: int, product_id: int, field: str) -> Product:
    product = db.session.get(Product, product_id)
    if product is None:
        raise NotFoundError(f"Product {product_id} not found")
    if product.org_id != org_id:
        raise ConflictError(
            "Product belongs to another organization",
            details={"product_id": product_id},
        )
    if not product.is_active:
        raise ValidationError(
            "Product is inactive",
            details={field: [f"product {product_id} is inactive"]},
        )
    return product


def _build_lines(org_id: int, line_requests) -> list[OrderLine]:
    """
    Turn validated line requests into new OrderLine rows.

    Lines referencing a product take its kind; free-text lines keep the
    requested kind (SERVICE when omitted) and never move stock.
    """
    if not line_requests:
        raise ValidationError(
            "The order must have at least one line",
            details={"lines": ["The order must have at least one line"]},
        )

    lines = []
    for i, req in enumerate(line_requests):
        kind = req.kind or "SERVICE"
        if req.product_id is not None:
            product = _resolve_product(org_id, req.product_id, f"lines[{i}].product_id")
            kind = product.kind
        lines.append(OrderLine(
            position=i,
            product_id=req.product_id,
            description=req.description,
            quantity=req.quantity,
            unit_price_cents=req.unit_price_cents,
            kind=kind,
        ))
    return lines


def _compute_total(lines, shipping_fee_cents: int | None) -> int:
    return sum(line.quantity * line.unit_price_cents for line in lines) + int(shipping_fee_cents or 0)


def _stock_effect(lines) -> dict[int, int]:
    """Units each product owes to a SOLD order with these lines."""
    effect: dict[int, int] = {}
    for line in lines:
        if line.moves_stock:
            effect[line.product_id] = effect.get(line.product_id, 0) + line.quantity
    return effect


def _check_transition(current: str, requested: str) -> None:
    if requested not in ALLOWED_TRANSITIONS.get(current, set()):
        raise ConflictError(
            f"Cannot change status from {current} to {requested}",
            details={"status": current, "requested_status": requested},
        )


def _mark_first_purchase(client_id: int) -> None:
    db.session.query(Client).filter_by(
        id=client_id, first_purchase_completed=False,
    ).update({"first_purchase_completed": True}, synchronize_session="fetch")


# =============================================================================
# Stock effects
# =============================================================================

def _post_per_line(order: Order, direction: str, reason: str) -> list[StockMovement]:
    # Product rows are locked in id order so concurrent orders cannot deadlock
    stock_lines = sorted(
        (line for line in order.lines if line.moves_stock),
        key=lambda line: (line.product_id, line.position),
    )
    movements = []
    for line in stock_lines:
        movements.append(post_movement_for_product(
            org_id=order.org_id,
            product_id=line.product_id,
            direction=direction,
            quantity=line.quantity,
            reason=reason,
        ))
    return movements


def _post_effect_difference(
    org_id: int,
    before: dict[int, int],
    after: dict[int, int],
    reason: str,
) -> list[StockMovement]:
    """Post one movement per product whose owed quantity changed."""
    movements = []
    for product_id in sorted(set(before) | set(after)):
        diff = after.get(product_id, 0) - before.get(product_id, 0)
        if diff == 0:
            continue
        movements.append(post_movement_for_product(
            org_id=org_id,
            product_id=product_id,
            direction="OUT" if diff > 0 else "IN",
            quantity=abs(diff),
            reason=reason,
        ))
    return movements


def _duplicate_number(number: int) -> ConflictError:
    return ConflictError(f"Order number {number} already exists", details={"number": number})


def _number_attempts() -> int:
    return max(1, int(current_app.config.get("ORDER_NUMBER_RETRY_ATTEMPTS", 3)))


# =============================================================================
# Lifecycle operations
# =============================================================================

def create_order(context: OrderContext, request: CreateOrderRequest | dict) -> Order:
    """
    Create an order (QUOTE or directly SOLD).

    A client-supplied number that is taken fails immediately with
    ConflictError. An allocated number that collides with a concurrent
    create is allocated again, up to ORDER_NUMBER_RETRY_ATTEMPTS times.
    """
    if isinstance(request, dict):
        request = CreateOrderRequest.from_dict(request)

    org_id = context.org_id
    explicit_number = request.number is not None

    def _op():
        begin_write()

        client = _resolve_client(org_id, request.client_id)
        salesperson_id = _resolve_salesperson(
            org_id, request.salesperson_id or context.actor_user_id,
        )
        lines = _build_lines(org_id, request.lines)

        if explicit_number:
            if order_number_in_use(org_id, request.number):
                raise _duplicate_number(request.number)
            number = request.number
        else:
            number = next_order_number(org_id)

        order = Order(
            org_id=org_id,
            number=number,
            client_id=client.id,
            salesperson_id=salesperson_id,
            status=request.status,
            quote_valid_until=request.quote_valid_until,
            delivery_date=request.delivery_date,
            shipping_fee_cents=request.shipping_fee_cents,
            notes=request.notes,
            invoice_notes=request.invoice_notes,
            total_cents=_compute_total(lines, request.shipping_fee_cents),
        )
        order.lines = lines
        db.session.add(order)
        db.session.flush()

        if explicit_number:
            reserve_order_number(org_id, number)

        record_event(order, f"Order created with status {order.status}", context.actor_user_id)

        if order.status == "SOLD":
            _post_per_line(order, "OUT", f"sale of order #{order.number}")
            _mark_first_purchase(client.id)

        db.session.commit()
        return order

    attempts = _number_attempts()
    for attempt in range(attempts):
        try:
            order = run_with_retry(_op)
        except IntegrityError as exc:
            # A concurrent writer took the requested number; anything else
            # (allocated number, sequence row) is allocated again
            if explicit_number and order_number_in_use(org_id, request.number):
                raise _duplicate_number(request.number) from exc
            current_app.logger.warning(
                "Order number collision for org_id=%s (attempt %d of %d)",
                org_id, attempt + 1, attempts,
            )
            continue
        current_app.logger.info(
            "Order #%s created for org_id=%s with status %s", order.number, org_id, order.status,
        )
        return order

    raise ConflictError("Could not allocate a unique order number", details={"org_id": org_id})


def update_order(context: OrderContext, order_id: int, request: UpdateOrderRequest | dict) -> Order:
    """
    Update header fields, status and/or the full line set of an order.

    Lines are replaced wholesale. Stock is reconciled by comparing what the
    order owed before (its old GOOD lines, if it was SOLD) with what it owes
    after (its new GOOD lines, if it is SOLD now); only the per-product
    difference is posted, so editing a SOLD order never double-counts.
    """
    if isinstance(request, dict):
        request = UpdateOrderRequest.from_dict(request)

    org_id = context.org_id

    def _op():
        begin_write()

        order = _load_order(org_id, order_id, lock=True)
        previous_status = order.status
        previous_number = order.number
        owed_before = _stock_effect(order.lines) if previous_status == "SOLD" else {}

        new_number = previous_number
        if request.has("number") and request.number != previous_number:
            if order_number_in_use(org_id, request.number, exclude_order_id=order.id):
                raise _duplicate_number(request.number)
            new_number = request.number

        new_status = request.status if request.has("status") else previous_status
        _check_transition(previous_status, new_status)

        if request.has("client_id"):
            order.client_id = _resolve_client(org_id, request.client_id).id

        if request.has("lines"):
            order.lines = _build_lines(org_id, request.lines)

        if request.has("quote_valid_until"):
            order.quote_valid_until = request.quote_valid_until
        if request.has("delivery_date"):
            order.delivery_date = request.delivery_date
        if request.has("shipping_fee_cents"):
            order.shipping_fee_cents = request.shipping_fee_cents
        if request.has("notes"):
            order.notes = request.notes
        if request.has("invoice_notes"):
            order.invoice_notes = request.invoice_notes

        order.status = new_status
        order.number = new_number
        order.total_cents = _compute_total(order.lines, order.shipping_fee_cents)
        db.session.flush()

        if new_number != previous_number:
            reserve_order_number(org_id, new_number)

        owed_after = _stock_effect(order.lines) if new_status == "SOLD" else {}
        if previous_status == "SOLD":
            reason = f"adjustment of order #{new_number}"
        else:
            reason = f"sale of order #{new_number}"
        _post_effect_difference(org_id, owed_before, owed_after, reason)

        changes = []
        if new_status != previous_status:
            changes.append(f"Status changed from {previous_status} to {new_status}")
        if new_number != previous_number:
            changes.append(f"Number changed from {previous_number} to {new_number}")
        if changes:
            record_event(order, ", ".join(changes), context.actor_user_id)

        if new_status == "SOLD" and previous_status != "SOLD":
            _mark_first_purchase(order.client_id)

        db.session.commit()
        return order

    attempts = _number_attempts()
    for attempt in range(attempts):
        try:
            return run_with_retry(_op)
        except IntegrityError as exc:
            if request.has("number") and order_number_in_use(
                org_id, request.number, exclude_order_id=order_id,
            ):
                raise _duplicate_number(request.number) from exc
            if attempt == attempts - 1:
                raise
            current_app.logger.warning(
                "Integrity conflict updating order %s for org_id=%s (attempt %d of %d)",
                order_id, org_id, attempt + 1, attempts,
            )


def delete_order(context: OrderContext, order_id: int) -> dict:
    """
    Delete an order with full compensation.

    A SOLD order first returns its GOOD line quantities to stock (one IN
    movement per line). If any compensation fails, nothing is deleted.
    """
    org_id = context.org_id

    def _op():
        begin_write()

        order = _load_order(org_id, order_id, lock=True)
        number = order.number

        movements = []
        if order.status == "SOLD":
            movements = _post_per_line(order, "IN", f"reversal of deleted order #{number}")

        record_event(order, "Order deleted", context.actor_user_id)

        # Cascades to lines and history
        db.session.delete(order)
        db.session.commit()
        return {
            "deleted": True,
            "order_id": order_id,
            "number": number,
            "compensating_movements": len(movements),
        }

    result = run_with_retry(_op)
    current_app.logger.info(
        "Order #%s deleted for org_id=%s (%d compensating movements)",
        result["number"], org_id, result["compensating_movements"],
    )
    return result


def clone_order(context: OrderContext, order_id: int) -> Order:
    """
    Copy an order into a brand-new QUOTE with the next order number.

    Lines are copied (never shared) and no stock movement is posted,
    whatever the source status was.
    """
    org_id = context.org_id

    def _op():
        begin_write()

        source = _load_order(org_id, order_id)
        number = next_order_number(org_id)

        clone = Order(
            org_id=org_id,
            number=number,
            client_id=source.client_id,
            salesperson_id=context.actor_user_id or source.salesperson_id,
            status="QUOTE",
            shipping_fee_cents=source.shipping_fee_cents,
            total_cents=source.total_cents,
        )
        clone.lines = [
            OrderLine(
                position=line.position,
                product_id=line.product_id,
                description=line.description,
                quantity=line.quantity,
                unit_price_cents=line.unit_price_cents,
                kind=line.kind,
            )
            for line in source.lines
        ]
        db.session.add(clone)
        db.session.flush()

        record_event(clone, f"Order created as a copy of order #{source.number}", context.actor_user_id)

        db.session.commit()
        return clone

    attempts = _number_attempts()
    for attempt in range(attempts):
        try:
            clone = run_with_retry(_op)
        except IntegrityError:
            current_app.logger.warning(
                "Order number collision while cloning for org_id=%s (attempt %d of %d)",
                org_id, attempt + 1, attempts,
            )
            continue
        current_app.logger.info("Order %s cloned as #%s for org_id=%s", order_id, clone.number, org_id)
        return clone

    raise ConflictError("Could not allocate a unique order number", details={"org_id": org_id})


def reopen_order(context: OrderContext, order_id: int) -> Order:
    """
    Move a SOLD or DECLINED order back to QUOTE.

    Un-selling mirrors delete's compensation: every GOOD line of a SOLD
    order goes back to stock, but the order itself is kept.
    """
    org_id = context.org_id

    def _op():
        begin_write()

        order = _load_order(org_id, order_id, lock=True)
        previous_status = order.status
        if previous_status == "QUOTE":
            raise ConflictError("Order is already a quote", details={"status": previous_status})

        if previous_status == "SOLD":
            _post_per_line(order, "IN", f"reversal of reopened order #{order.number}")

        order.status = "QUOTE"
        record_event(
            order,
            f"Status changed from {previous_status} to QUOTE (reopened)",
            context.actor_user_id,
        )

        db.session.commit()
        return order

    return run_with_retry(_op)


# =============================================================================
# Read side
# =============================================================================

def get_order(context: OrderContext, order_id: int) -> Order:
    return _load_order(context.org_id, order_id)


def list_orders(context: OrderContext, filters: OrderFilters | None = None) -> list[Order]:
    """Orders of the caller's organization, newest first."""
    filters = filters or OrderFilters()

    query = db.session.query(Order).filter(Order.org_id == context.org_id)
    if filters.status:
        query = query.filter(Order.status == filters.status)
    if filters.salesperson_id:
        query = query.filter(Order.salesperson_id == filters.salesperson_id)
    if filters.date_from is not None:
        query = query.filter(Order.created_at >= filters.date_from)
    if filters.date_to is not None:
        query = query.filter(Order.created_at <= filters.date_to)

    return query.order_by(Order.created_at.desc(), Order.id.desc()).all()


def list_order_history(context: OrderContext, order_id: int) -> list[OrderEvent]:
    order = _load_order(context.org_id, order_id)
    return list_events(order)


def preview_next_number(context: OrderContext) -> int:
    return peek_next_order_number(context.org_id)
