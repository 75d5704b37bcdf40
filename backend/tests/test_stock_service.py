"""
Stock ledger tests.

The on-hand counter must always equal SUM(IN) - SUM(OUT) of the movements.
"""

import pytest

from conftest import make_product
from orderledger.models import Product, StockMovement
from orderledger.services import stock_service
from orderledger.validation import (
    ConflictError,
    LedgerIntegrityError,
    NotFoundError,
    ValidationError,
)


def test_post_in_and_out_updates_counter_and_ledger(db_session, org_a, good_a):
    stock_service.post_movement(
        org_id=org_a.id, product_id=good_a.id, direction="IN", quantity=5, reason="Restock",
    )
    stock_service.post_movement(
        org_id=org_a.id, product_id=good_a.id, direction="OUT", quantity=3, reason="Breakage",
    )

    assert stock_service.current_stock(org_a.id, good_a.id) == 12
    assert stock_service.ledger_balance(org_a.id, good_a.id) == 12
    assert stock_service.verify_product_stock(org_a.id, good_a.id) == 12


@pytest.mark.parametrize("quantity", [0, -1, 2.5, True])
def test_rejects_non_positive_or_non_integer_quantity(db_session, org_a, good_a, quantity):
    with pytest.raises(ValidationError):
        stock_service.post_movement(
            org_id=org_a.id, product_id=good_a.id, direction="OUT", quantity=quantity,
        )
    assert stock_service.verify_product_stock(org_a.id, good_a.id) == 10


def test_rejects_unknown_direction(db_session, org_a, good_a):
    with pytest.raises(ValidationError):
        stock_service.post_movement(
            org_id=org_a.id, product_id=good_a.id, direction="SIDEWAYS", quantity=1,
        )


def test_service_products_have_no_stock(db_session, org_a, service_a):
    with pytest.raises(ValidationError):
        stock_service.post_movement(
            org_id=org_a.id, product_id=service_a.id, direction="IN", quantity=1,
        )
    assert db_session.query(StockMovement).filter_by(product_id=service_a.id).count() == 0


def test_oversell_allowed_by_default(db_session, org_a, good_a):
    stock_service.post_movement(
        org_id=org_a.id, product_id=good_a.id, direction="OUT", quantity=15,
    )
    assert stock_service.verify_product_stock(org_a.id, good_a.id) == -5


def test_negative_stock_rejected_when_disabled(app, db_session, org_a, good_a):
    app.config["STOCK_ALLOW_NEGATIVE"] = False
    try:
        with pytest.raises(ConflictError) as exc_info:
            stock_service.post_movement(
                org_id=org_a.id, product_id=good_a.id, direction="OUT", quantity=11,
            )
        assert exc_info.value.details["on_hand"] == 10
        assert stock_service.verify_product_stock(org_a.id, good_a.id) == 10

        # Exactly emptying the shelf is fine
        stock_service.post_movement(
            org_id=org_a.id, product_id=good_a.id, direction="OUT", quantity=10,
        )
        assert stock_service.current_stock(org_a.id, good_a.id) == 0
    finally:
        app.config["STOCK_ALLOW_NEGATIVE"] = True


def test_product_of_other_org_is_not_found(db_session, org_a, good_b):
    with pytest.raises(NotFoundError):
        stock_service.post_movement(
            org_id=org_a.id, product_id=good_b.id, direction="IN", quantity=1,
        )
    with pytest.raises(NotFoundError):
        stock_service.current_stock(org_a.id, good_b.id)


def test_divergence_raises_integrity_error(db_session, org_a, good_a):
    # Bypass the ledger to simulate a corrupted counter
    db_session.query(Product).filter_by(id=good_a.id).update({"on_hand_quantity": 99})
    db_session.commit()

    with pytest.raises(LedgerIntegrityError) as exc_info:
        stock_service.verify_product_stock(org_a.id, good_a.id)
    assert exc_info.value.details == {"product_id": good_a.id, "counter": 99, "ledger": 10}


def test_verify_all_stock_reports_only_divergent_products(db_session, org_a, good_a, good_a2):
    assert stock_service.verify_all_stock(org_a.id) == []

    db_session.query(Product).filter_by(id=good_a2.id).update({"on_hand_quantity": 0})
    db_session.commit()

    problems = stock_service.verify_all_stock(org_a.id)
    assert problems == [
        {"product_id": good_a2.id, "sku": good_a2.sku, "counter": 0, "ledger": 20},
    ]


def test_list_movements_newest_first(db_session, org_a, good_a):
    stock_service.post_movement(
        org_id=org_a.id, product_id=good_a.id, direction="OUT", quantity=2, reason="Second",
    )
    movements = stock_service.list_movements(org_id=org_a.id, product_id=good_a.id)

    assert [m.reason for m in movements] == ["Second", "Initial stock"]
    assert [m.signed_quantity for m in movements] == [-2, 10]


def test_deactivate_product_keeps_row(db_session, org_a, good_a):
    product = stock_service.deactivate_product(org_a.id, good_a.id)

    assert product.is_active is False
    assert db_session.get(Product, good_a.id) is not None
    assert stock_service.verify_product_stock(org_a.id, good_a.id) == 10


def test_stock_metrics(db_session, org_a, good_a, service_a):
    make_product(db_session, org_a, sku="EMPTY-001", price_cents=100, cost_cents=50)
    make_product(db_session, org_a, sku="LOW-001", price_cents=100, cost_cents=50, stock=2, min_stock=5)

    metrics = stock_service.stock_metrics(org_a.id)

    assert metrics["total_products"] == 4
    assert metrics["out_of_stock_products"] == 1
    assert metrics["low_stock_products"] == 1
    # good_a: 10 x 400 cost, 10 x 1000 price; LOW-001: 2 x 50, 2 x 100
    assert metrics["stock_value_cost_cents"] == 4100
    assert metrics["stock_value_price_cents"] == 10200
