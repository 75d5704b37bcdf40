# Overview: Service-layer operations for the stock ledger; encapsulates business logic and database work.

from __future__ import annotations

from flask import current_app
from sqlalchemy import case, func

from ..extensions import db
from ..models import Product, StockMovement
from ..validation import ConflictError, LedgerIntegrityError, NotFoundError, ValidationError
from .concurrency import begin_write, commit_with_retry, lock_for_update, run_with_retry
"""
Stock Ledger Invariants (authoritative)

- StockMovement rows are append-only: never updated, never deleted.
  Corrections are new movements in the opposite direction.
- quantity > 0 on every movement; direction (IN/OUT) carries the sign.
- Product.on_hand_quantity == SUM(IN) - SUM(OUT) at all times. The counter
  update and the movement insert happen in the same flush of the same
  transaction, so they commit together or not at all.
- SERVICE products have no stock: posting against them is rejected.
- Going negative is allowed (oversell) unless STOCK_ALLOW_NEGATIVE is False.
- A divergence between counter and ledger is a data-integrity defect:
  it is logged and raised as LedgerIntegrityError, never corrected here.
"""


def _ensure_product_in_org(
    org_id: int,
    product_id: int,
    *,
    require_active: bool = False,
    lock: bool = False,
) -> Product:
    query = db.session.query(Product).filter_by(id=product_id)
    if lock:
        query = lock_for_update(query)
    product = query.first()
    if product is None or product.org_id != org_id:
        raise NotFoundError(f"Product {product_id} not found")
    if require_active and not product.is_active:
        raise ValidationError("product is inactive", details={"product_id": ["product is inactive"]})
    return product


def _post_movement_locked(
    product: Product,
    direction: str,
    quantity: int,
    reason: str | None = None,
) -> StockMovement:
    """Core posting logic without locking, retry, or commit.

    The caller holds the product row and owns the transaction.
    """
    if direction not in ("IN", "OUT"):
        raise ValidationError("direction must be IN or OUT", details={"direction": ["must be IN or OUT"]})
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        raise ValidationError("quantity must be a positive integer", details={"quantity": ["must be > 0"]})
    if not product.tracks_stock:
        raise ValidationError(
            "SERVICE products have no stock",
            details={"product_id": [f"product {product.id} is a SERVICE"]},
        )

    delta = quantity if direction == "IN" else -quantity
    if delta < 0 and not current_app.config.get("STOCK_ALLOW_NEGATIVE", True):
        if product.on_hand_quantity + delta < 0:
            raise ConflictError(
                "Insufficient stock",
                details={
                    "product_id": product.id,
                    "requested_quantity": quantity,
                    "on_hand": product.on_hand_quantity,
                },
            )

    product.on_hand_quantity = product.on_hand_quantity + delta
    movement = StockMovement(
        org_id=product.org_id,
        product_id=product.id,
        direction=direction,
        quantity=quantity,
        reason=reason,
    )
    db.session.add(movement)
    db.session.flush()
    return movement


def post_movement_for_product(
    *,
    org_id: int,
    product_id: int,
    direction: str,
    quantity: int,
    reason: str | None = None,
) -> StockMovement:
    """Lock the product and post a movement inside the caller's transaction."""
    product = _ensure_product_in_org(org_id, product_id, lock=True)
    return _post_movement_locked(product, direction, quantity, reason)


def post_movement(
    *,
    org_id: int,
    product_id: int,
    direction: str,
    quantity: int,
    reason: str | None = None,
) -> StockMovement:
    """
    Post a single stock movement as its own unit of work.

    Counter update and movement insert commit together; any failure
    rolls both back.
    """
    def _op():
        begin_write()
        movement = post_movement_for_product(
            org_id=org_id,
            product_id=product_id,
            direction=direction,
            quantity=quantity,
            reason=reason,
        )
        db.session.commit()
        return movement

    return run_with_retry(_op)


def current_stock(org_id: int, product_id: int) -> int:
    """Maintained on-hand counter for a product."""
    product = _ensure_product_in_org(org_id, product_id)
    return int(product.on_hand_quantity or 0)


def ledger_balance(org_id: int, product_id: int) -> int:
    """Signed sum of a product's movements: SUM(IN) - SUM(OUT)."""
    signed = case(
        (StockMovement.direction == "IN", StockMovement.quantity),
        else_=-StockMovement.quantity,
    )
    total = (
        db.session.query(func.coalesce(func.sum(signed), 0))
        .filter(StockMovement.org_id == org_id, StockMovement.product_id == product_id)
        .scalar()
    )
    return int(total or 0)


def verify_product_stock(org_id: int, product_id: int) -> int:
    """
    Check that the counter equals the ledger sum.

    Returns the verified quantity; raises LedgerIntegrityError otherwise.
    """
    counter = current_stock(org_id, product_id)
    balance = ledger_balance(org_id, product_id)
    if counter != balance:
        current_app.logger.error(
            "Stock ledger divergence: org_id=%s product_id=%s counter=%s ledger=%s",
            org_id, product_id, counter, balance,
        )
        raise LedgerIntegrityError(
            f"Stock counter for product {product_id} diverges from its ledger",
            details={"product_id": product_id, "counter": counter, "ledger": balance},
        )
    return counter


def verify_all_stock(org_id: int) -> list[dict]:
    """Divergence report for every GOOD product of an organization."""
    signed = case(
        (StockMovement.direction == "IN", StockMovement.quantity),
        else_=-StockMovement.quantity,
    )
    balances = dict(
        db.session.query(StockMovement.product_id, func.sum(signed))
        .filter(StockMovement.org_id == org_id)
        .group_by(StockMovement.product_id)
        .all()
    )

    problems = []
    products = db.session.query(Product).filter_by(org_id=org_id).order_by(Product.id).all()
    for product in products:
        balance = int(balances.get(product.id) or 0)
        counter = int(product.on_hand_quantity or 0)
        if counter != balance:
            problems.append({
                "product_id": product.id,
                "sku": product.sku,
                "counter": counter,
                "ledger": balance,
            })

    if problems:
        current_app.logger.error(
            "Stock ledger divergence for org_id=%s: %d product(s)", org_id, len(problems),
        )
    return problems


def list_movements(*, org_id: int, product_id: int, limit: int = 200) -> list[StockMovement]:
    _ensure_product_in_org(org_id, product_id)

    return (
        db.session.query(StockMovement)
        .filter_by(org_id=org_id, product_id=product_id)
        .order_by(StockMovement.created_at.desc(), StockMovement.id.desc())
        .limit(limit)
        .all()
    )


def deactivate_product(org_id: int, product_id: int) -> Product:
    """
    Soft-deactivate a product.

    Products are never hard-deleted: order lines and movements keep
    pointing at them. Inactive products cannot be added to new lines.
    """
    product = _ensure_product_in_org(org_id, product_id)
    product.is_active = False
    commit_with_retry()
    return product


def stock_metrics(org_id: int) -> dict:
    """Stock value and alert counts over active GOOD products."""
    products = (
        db.session.query(Product)
        .filter_by(org_id=org_id, is_active=True)
        .all()
    )

    value_at_cost = 0
    value_at_price = 0
    low_stock = 0
    out_of_stock = 0

    for product in products:
        if not product.tracks_stock:
            continue
        qty = int(product.on_hand_quantity or 0)
        value_at_cost += qty * int(product.cost_cents or 0)
        value_at_price += qty * int(product.price_cents or 0)
        if qty == 0:
            out_of_stock += 1
        elif qty <= int(product.min_stock or 0):
            low_stock += 1

    return {
        "total_products": len(products),
        "stock_value_cost_cents": value_at_cost,
        "stock_value_price_cents": value_at_price,
        "low_stock_products": low_stock,
        "out_of_stock_products": out_of_stock,
    }
