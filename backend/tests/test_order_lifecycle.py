"""
Order lifecycle tests: create, delete, clone, reopen.

Every lifecycle operation keeps the stock ledger consistent and leaves no
partial effect when it fails.
"""

from datetime import datetime

import pytest

from conftest import line, order_payload
from orderledger.models import Client, Order, OrderEvent, OrderLine, StockMovement, User
from orderledger.services import order_service, stock_service
from orderledger.services.order_schemas import OrderFilters
from orderledger.validation import ConflictError, NotFoundError, ValidationError


def _row_counts(db_session):
    return (
        db_session.query(Order).count(),
        db_session.query(OrderLine).count(),
        db_session.query(OrderEvent).count(),
        db_session.query(StockMovement).count(),
    )


# =============================================================================
# CREATE
# =============================================================================

class TestCreate:

    def test_create_quote_posts_no_stock(self, db_session, org_a, ctx_a, client_a, good_a):
        order = order_service.create_order(
            ctx_a, order_payload(client_a, [line(good_a, quantity=3)], shipping_fee_cents=500),
        )

        assert order.status == "QUOTE"
        assert order.total_cents == 3 * good_a.price_cents + 500
        assert stock_service.verify_product_stock(org_a.id, good_a.id) == 10
        assert [e.description for e in order_service.list_order_history(ctx_a, order.id)] == [
            "Order created with status QUOTE",
        ]

    def test_create_sold_posts_one_out_per_good_line(self, db_session, org_a, ctx_a, client_a,
                                                     good_a, good_a2, service_a):
        order = order_service.create_order(ctx_a, order_payload(client_a, [
            line(good_a, quantity=2),
            line(service_a, quantity=1),
            line(good_a2, quantity=5),
            line(description="Gift wrap", unit_price_cents=100),
        ], status="SOLD"))

        assert order.status == "SOLD"
        assert stock_service.verify_product_stock(org_a.id, good_a.id) == 8
        assert stock_service.verify_product_stock(org_a.id, good_a2.id) == 15

        sale_movements = db_session.query(StockMovement).filter_by(
            reason=f"sale of order #{order.number}",
        ).all()
        assert sorted((m.product_id, m.direction, m.quantity) for m in sale_movements) == sorted([
            (good_a.id, "OUT", 2),
            (good_a2.id, "OUT", 5),
        ])

    def test_create_sold_marks_first_purchase(self, db_session, ctx_a, client_a, good_a):
        order_service.create_order(ctx_a, order_payload(client_a, [line(good_a)], status="SOLD"))
        assert db_session.get(Client, client_a.id).first_purchase_completed is True

    def test_quote_does_not_mark_first_purchase(self, db_session, ctx_a, client_a, good_a):
        order_service.create_order(ctx_a, order_payload(client_a, [line(good_a)]))
        assert db_session.get(Client, client_a.id).first_purchase_completed is False

    def test_lines_keep_their_order_and_kind(self, db_session, ctx_a, client_a, good_a, service_a):
        order = order_service.create_order(ctx_a, order_payload(client_a, [
            line(service_a),
            line(good_a, quantity=2, unit_price_cents=900),
            line(description="Custom engraving", unit_price_cents=300, kind="GOOD"),
        ]))

        lines = order.lines
        assert [ln.position for ln in lines] == [0, 1, 2]
        assert [ln.kind for ln in lines] == ["SERVICE", "GOOD", "GOOD"]
        assert lines[1].unit_price_cents == 900
        # A free-text line never moves stock, whatever its kind
        assert [ln.moves_stock for ln in lines] == [False, True, False]

    def test_salesperson_defaults_to_actor(self, db_session, ctx_a, user_a, client_a, service_a):
        order = order_service.create_order(ctx_a, order_payload(client_a, [line(service_a)]))
        assert order.salesperson_id == user_a.id

    def test_order_without_lines_is_rejected(self, db_session, ctx_a, client_a):
        with pytest.raises(ValidationError) as exc_info:
            order_service.create_order(ctx_a, order_payload(client_a, []))
        assert "lines" in exc_info.value.details
        assert _row_counts(db_session) == (0, 0, 0, 0)

    def test_zero_quantity_is_rejected(self, db_session, ctx_a, client_a, good_a):
        with pytest.raises(ValidationError) as exc_info:
            order_service.create_order(ctx_a, order_payload(client_a, [line(good_a, quantity=0)]))
        assert "lines[0].quantity" in exc_info.value.details

    def test_missing_product_leaves_nothing_behind(self, db_session, org_a, ctx_a, client_a, good_a):
        before = _row_counts(db_session)

        with pytest.raises(NotFoundError):
            order_service.create_order(ctx_a, order_payload(client_a, [
                line(good_a, quantity=2),
                {"description": "Ghost", "quantity": 1, "unit_price_cents": 100, "product_id": 999999},
            ], status="SOLD"))

        assert _row_counts(db_session) == before
        assert stock_service.verify_product_stock(org_a.id, good_a.id) == 10
        assert order_service.preview_next_number(ctx_a) == 1

    def test_inactive_product_is_rejected(self, db_session, org_a, ctx_a, client_a, good_a):
        stock_service.deactivate_product(org_a.id, good_a.id)

        with pytest.raises(ValidationError) as exc_info:
            order_service.create_order(ctx_a, order_payload(client_a, [line(good_a)]))
        assert "lines[0].product_id" in exc_info.value.details

    def test_unknown_client_is_not_found(self, db_session, ctx_a, service_a):
        with pytest.raises(NotFoundError):
            order_service.create_order(ctx_a, {
                "client_id": 999999,
                "lines": [line(service_a)],
            })

    def test_oversell_on_sale_when_negative_disabled(self, app, db_session, org_a, ctx_a,
                                                     client_a, good_a, good_a2):
        app.config["STOCK_ALLOW_NEGATIVE"] = False
        try:
            with pytest.raises(ConflictError):
                order_service.create_order(ctx_a, order_payload(client_a, [
                    line(good_a2, quantity=1),
                    line(good_a, quantity=11),
                ], status="SOLD"))
        finally:
            app.config["STOCK_ALLOW_NEGATIVE"] = True

        assert db_session.query(Order).count() == 0
        assert stock_service.verify_product_stock(org_a.id, good_a2.id) == 20


# =============================================================================
# DELETE
# =============================================================================

class TestDelete:

    def test_delete_sold_order_restores_stock(self, db_session, org_a, ctx_a, client_a,
                                              good_a, good_a2):
        order = order_service.create_order(ctx_a, order_payload(client_a, [
            line(good_a, quantity=4),
            line(good_a2, quantity=6),
        ], status="SOLD"))

        result = order_service.delete_order(ctx_a, order.id)

        assert result == {
            "deleted": True,
            "order_id": order.id,
            "number": order.number,
            "compensating_movements": 2,
        }
        assert stock_service.verify_product_stock(org_a.id, good_a.id) == 10
        assert stock_service.verify_product_stock(org_a.id, good_a2.id) == 20
        reversal = db_session.query(StockMovement).filter_by(
            reason=f"reversal of deleted order #{order.number}",
        ).all()
        assert sorted((m.product_id, m.direction, m.quantity) for m in reversal) == sorted([
            (good_a.id, "IN", 4),
            (good_a2.id, "IN", 6),
        ])

    def test_delete_removes_lines_and_history(self, db_session, ctx_a, client_a, good_a):
        order = order_service.create_order(ctx_a, order_payload(client_a, [line(good_a)]))
        order_id = order.id

        order_service.delete_order(ctx_a, order_id)

        assert db_session.get(Order, order_id) is None
        assert db_session.query(OrderLine).filter_by(order_id=order_id).count() == 0
        assert db_session.query(OrderEvent).filter_by(order_id=order_id).count() == 0

    def test_delete_quote_posts_nothing(self, db_session, ctx_a, client_a, good_a):
        order = order_service.create_order(ctx_a, order_payload(client_a, [line(good_a, quantity=3)]))
        movements_before = db_session.query(StockMovement).count()

        result = order_service.delete_order(ctx_a, order.id)

        assert result["compensating_movements"] == 0
        assert db_session.query(StockMovement).count() == movements_before

    def test_failed_compensation_keeps_order(self, app, db_session, org_a, ctx_a, client_a, good_a):
        order = order_service.create_order(ctx_a, order_payload(client_a, [line(good_a, quantity=2)],
                                                                 status="SOLD"))
        # Product became a SERVICE after the sale; its reversal can no longer post
        good_a.kind = "SERVICE"
        db_session.commit()

        with pytest.raises(ValidationError):
            order_service.delete_order(ctx_a, order.id)

        assert db_session.get(Order, order.id) is not None
        assert db_session.query(StockMovement).filter(
            StockMovement.reason.like("reversal%"),
        ).count() == 0

    def test_delete_with_loaded_history_removes_every_event(self, db_session, ctx_a, client_a, good_a):
        order = order_service.create_order(ctx_a, order_payload(client_a, [line(good_a)],
                                                                 status="SOLD"))
        order_id = order.id
        # History collection already loaded in the session before the delete
        assert len(order.events) == 1

        order_service.delete_order(ctx_a, order_id)

        assert db_session.query(OrderEvent).filter_by(order_id=order_id).all() == []
        assert db_session.query(OrderEvent).count() == 0

    def test_delete_missing_order(self, db_session, ctx_a):
        with pytest.raises(NotFoundError):
            order_service.delete_order(ctx_a, 999999)


# =============================================================================
# CLONE
# =============================================================================

class TestClone:

    def test_clone_is_a_fresh_quote(self, db_session, org_a, ctx_a, client_a, good_a, service_a):
        source = order_service.create_order(ctx_a, order_payload(client_a, [
            line(good_a, quantity=2),
            line(service_a),
        ], status="SOLD", shipping_fee_cents=700, notes="Deliver before noon"))
        movements_before = db_session.query(StockMovement).count()

        clone = order_service.clone_order(ctx_a, source.id)

        assert clone.id != source.id
        assert clone.number == source.number + 1
        assert clone.status == "QUOTE"
        assert clone.client_id == source.client_id
        assert clone.total_cents == source.total_cents
        assert clone.notes is None
        assert [(ln.product_id, ln.quantity, ln.unit_price_cents, ln.kind) for ln in clone.lines] == [
            (ln.product_id, ln.quantity, ln.unit_price_cents, ln.kind) for ln in source.lines
        ]
        assert {ln.id for ln in clone.lines}.isdisjoint({ln.id for ln in source.lines})
        assert db_session.query(StockMovement).count() == movements_before
        assert stock_service.verify_product_stock(org_a.id, good_a.id) == 8

    def test_clone_history(self, db_session, ctx_a, client_a, service_a):
        source = order_service.create_order(ctx_a, order_payload(client_a, [line(service_a)]))
        clone = order_service.clone_order(ctx_a, source.id)

        events = order_service.list_order_history(ctx_a, clone.id)
        assert [e.description for e in events] == [f"Order created as a copy of order #{source.number}"]

    def test_editing_clone_leaves_source_untouched(self, db_session, ctx_a, client_a, good_a):
        source = order_service.create_order(ctx_a, order_payload(client_a, [line(good_a, quantity=2)]))
        clone = order_service.clone_order(ctx_a, source.id)

        order_service.update_order(ctx_a, clone.id, {"lines": [line(good_a, quantity=9)]})

        source = order_service.get_order(ctx_a, source.id)
        assert [ln.quantity for ln in source.lines] == [2]


# =============================================================================
# REOPEN
# =============================================================================

class TestReopen:

    def test_reopen_sold_returns_stock(self, db_session, org_a, ctx_a, client_a, good_a):
        order = order_service.create_order(ctx_a, order_payload(client_a, [line(good_a, quantity=3)],
                                                                 status="SOLD"))

        reopened = order_service.reopen_order(ctx_a, order.id)

        assert reopened.status == "QUOTE"
        assert stock_service.verify_product_stock(org_a.id, good_a.id) == 10
        assert order_service.list_order_history(ctx_a, order.id)[0].description == (
            "Status changed from SOLD to QUOTE (reopened)"
        )

    def test_reopen_declined_posts_nothing(self, db_session, ctx_a, client_a, good_a):
        order = order_service.create_order(ctx_a, order_payload(client_a, [line(good_a)]))
        order_service.update_order(ctx_a, order.id, {"status": "DECLINED"})
        movements_before = db_session.query(StockMovement).count()

        assert order_service.reopen_order(ctx_a, order.id).status == "QUOTE"
        assert db_session.query(StockMovement).count() == movements_before

    def test_reopen_quote_is_a_conflict(self, db_session, ctx_a, client_a, good_a):
        order = order_service.create_order(ctx_a, order_payload(client_a, [line(good_a)]))
        with pytest.raises(ConflictError):
            order_service.reopen_order(ctx_a, order.id)

    def test_sell_again_after_reopen(self, db_session, org_a, ctx_a, client_a, good_a):
        order = order_service.create_order(ctx_a, order_payload(client_a, [line(good_a, quantity=3)],
                                                                 status="SOLD"))
        order_service.reopen_order(ctx_a, order.id)
        order_service.update_order(ctx_a, order.id, {"status": "SOLD"})

        assert stock_service.verify_product_stock(org_a.id, good_a.id) == 7


# =============================================================================
# READ SIDE
# =============================================================================

class TestRead:

    def test_list_orders_filters_by_status(self, db_session, ctx_a, client_a, good_a, service_a):
        quote = order_service.create_order(ctx_a, order_payload(client_a, [line(service_a)]))
        sale = order_service.create_order(ctx_a, order_payload(client_a, [line(good_a)], status="SOLD"))

        all_ids = [o.id for o in order_service.list_orders(ctx_a)]
        assert set(all_ids) == {quote.id, sale.id}

        sold = order_service.list_orders(ctx_a, OrderFilters(status="SOLD"))
        assert [o.id for o in sold] == [sale.id]

    def test_to_dict_includes_lines(self, db_session, ctx_a, client_a, good_a):
        order = order_service.create_order(ctx_a, order_payload(
            client_a, [line(good_a, quantity=2)], quote_valid_until="2026-12-31",
        ))
        data = order.to_dict()

        assert data["client_name"] == client_a.name
        assert data["quote_valid_until"] == "2026-12-31"
        assert data["lines"][0]["subtotal_cents"] == 2 * good_a.price_cents

    def test_list_orders_filters_by_salesperson(self, db_session, org_a, ctx_a, user_a, client_a,
                                                service_a):
        other_seller = User(org_id=org_a.id, username="seller_a2", name="Seller A2")
        db_session.add(other_seller)
        db_session.commit()

        own = order_service.create_order(ctx_a, order_payload(client_a, [line(service_a)]))
        theirs = order_service.create_order(ctx_a, order_payload(
            client_a, [line(service_a)], salesperson_id=other_seller.id,
        ))

        mine = order_service.list_orders(ctx_a, OrderFilters(salesperson_id=user_a.id))
        assert [o.id for o in mine] == [own.id]
        other = order_service.list_orders(ctx_a, OrderFilters(salesperson_id=other_seller.id))
        assert [o.id for o in other] == [theirs.id]

    def test_list_orders_date_range_is_inclusive(self, db_session, ctx_a, client_a, service_a):
        created = {}
        for day in (9, 10, 11, 12):
            order = order_service.create_order(ctx_a, order_payload(client_a, [line(service_a)]))
            created[day] = order.id
            db_session.query(Order).filter_by(id=order.id).update(
                {"created_at": datetime(2026, 3, day, 12, 0, 0)},
            )
            db_session.commit()

        in_range = order_service.list_orders(ctx_a, OrderFilters(
            date_from=datetime(2026, 3, 10, 12, 0, 0),
            date_to=datetime(2026, 3, 11, 12, 0, 0),
        ))
        # Newest first; both bounds included
        assert [o.id for o in in_range] == [created[11], created[10]]

        from_only = order_service.list_orders(ctx_a, OrderFilters(date_from=datetime(2026, 3, 11)))
        assert {o.id for o in from_only} == {created[11], created[12]}

        to_only = order_service.list_orders(ctx_a, OrderFilters(date_to=datetime(2026, 3, 9, 12, 0, 0)))
        assert [o.id for o in to_only] == [created[9]]

    def test_list_orders_combines_filters(self, db_session, ctx_a, user_a, client_a, good_a, service_a):
        order_service.create_order(ctx_a, order_payload(client_a, [line(service_a)]))
        sale = order_service.create_order(ctx_a, order_payload(client_a, [line(good_a)], status="SOLD"))

        result = order_service.list_orders(ctx_a, OrderFilters(
            status="SOLD", salesperson_id=user_a.id, date_from=datetime(2000, 1, 1),
        ))
        assert [o.id for o in result] == [sale.id]
