# Overview: Flask API routes for order operations; parses input and returns JSON responses.

"""Order API routes. Tenant context comes from the host's authentication layer."""

from flask import Blueprint, current_app, g, jsonify, request

from ..services import order_service
from ..services.order_schemas import CreateOrderRequest, OrderFilters, UpdateOrderRequest
from ..decorators import require_tenant_context
from .errors import SERVICE_ERRORS, error_response


orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")


@orders_bp.get("/")
@require_tenant_context
def list_orders_route():
    """List orders, newest first. Filters: status, salesperson_id, date_from, date_to."""
    try:
        filters = OrderFilters.from_args(request.args)
        orders = order_service.list_orders(g.order_context, filters)
        return jsonify({"orders": [o.to_dict() for o in orders]}), 200

    except SERVICE_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list orders")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/")
@require_tenant_context
def create_order_route():
    """Create a quote or a sale."""
    try:
        payload = CreateOrderRequest.from_dict(request.get_json(silent=True))
        order = order_service.create_order(g.order_context, payload)
        return jsonify({"order": order.to_dict()}), 201

    except SERVICE_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("/next-number")
@require_tenant_context
def next_number_route():
    """Preview the next order number. Nothing is reserved."""
    return jsonify({"next_number": order_service.preview_next_number(g.order_context)}), 200


@orders_bp.get("/<int:order_id>")
@require_tenant_context
def get_order_route(order_id: int):
    try:
        order = order_service.get_order(g.order_context, order_id)
        return jsonify({"order": order.to_dict()}), 200

    except SERVICE_ERRORS as e:
        return error_response(e)


@orders_bp.put("/<int:order_id>")
@require_tenant_context
def update_order_route(order_id: int):
    """Update header fields, status, and/or replace all lines."""
    try:
        payload = UpdateOrderRequest.from_dict(request.get_json(silent=True))
        order = order_service.update_order(g.order_context, order_id, payload)
        return jsonify({"order": order.to_dict()}), 200

    except SERVICE_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.delete("/<int:order_id>")
@require_tenant_context
def delete_order_route(order_id: int):
    try:
        result = order_service.delete_order(g.order_context, order_id)
        return jsonify(result), 200

    except SERVICE_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to delete order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/<int:order_id>/clone")
@require_tenant_context
def clone_order_route(order_id: int):
    try:
        order = order_service.clone_order(g.order_context, order_id)
        return jsonify({"order": order.to_dict()}), 201

    except SERVICE_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to clone order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/<int:order_id>/reopen")
@require_tenant_context
def reopen_order_route(order_id: int):
    """Move a SOLD or DECLINED order back to QUOTE, returning sold units to stock."""
    try:
        order = order_service.reopen_order(g.order_context, order_id)
        return jsonify({"order": order.to_dict()}), 200

    except SERVICE_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to reopen order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("/<int:order_id>/history")
@require_tenant_context
def order_history_route(order_id: int):
    try:
        events = order_service.list_order_history(g.order_context, order_id)
        return jsonify({"history": [e.to_dict() for e in events]}), 200

    except SERVICE_ERRORS as e:
        return error_response(e)
