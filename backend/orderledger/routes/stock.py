# Overview: Flask API routes for stock ledger reads; returns JSON responses.

from flask import Blueprint, current_app, g, jsonify, request

from ..services import stock_service
from ..decorators import require_tenant_context
from .errors import SERVICE_ERRORS, error_response


stock_bp = Blueprint("stock", __name__, url_prefix="/api/stock")


@stock_bp.get("/products/<int:product_id>")
@require_tenant_context
def product_stock_route(product_id: int):
    """On-hand quantity, checked against the movement ledger."""
    try:
        quantity = stock_service.verify_product_stock(g.order_context.org_id, product_id)
        return jsonify({"product_id": product_id, "on_hand_quantity": quantity}), 200

    except SERVICE_ERRORS as e:
        return error_response(e)


@stock_bp.get("/products/<int:product_id>/movements")
@require_tenant_context
def product_movements_route(product_id: int):
    try:
        limit = min(int(request.args.get("limit", 200)), 1000)
    except ValueError:
        return jsonify({"error": "limit must be an integer"}), 400

    try:
        movements = stock_service.list_movements(
            org_id=g.order_context.org_id,
            product_id=product_id,
            limit=limit,
        )
        return jsonify({"movements": [m.to_dict() for m in movements]}), 200

    except SERVICE_ERRORS as e:
        return error_response(e)


@stock_bp.post("/products/<int:product_id>/deactivate")
@require_tenant_context
def deactivate_product_route(product_id: int):
    try:
        product = stock_service.deactivate_product(g.order_context.org_id, product_id)
        return jsonify({"product": product.to_dict()}), 200

    except SERVICE_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to deactivate product")
        return jsonify({"error": "Internal server error"}), 500


@stock_bp.get("/metrics")
@require_tenant_context
def stock_metrics_route():
    return jsonify(stock_service.stock_metrics(g.order_context.org_id)), 200
