# Overview: Request decorators for API routes.

from functools import wraps
from flask import jsonify, g

from .services.order_schemas import OrderContext


def require_tenant_context(f):
    """
    Require the tenant context established by the host application.

    Authentication is not done here. The authentication layer in front of
    these blueprints sets:
    - g.org_id: the organization ID (tenant context) - REQUIRED
    - g.user_id: the acting user (may be None for system callers)

    The decorated view receives g.order_context, an OrderContext built from
    those values. Returns 401 if the tenant context is missing.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        org_id = getattr(g, "org_id", None)
        if not org_id:
            return jsonify({"error": "Authentication required"}), 401

        g.order_context = OrderContext(org_id=org_id, actor_user_id=getattr(g, "user_id", None))
        return f(*args, **kwargs)

    return decorated_function
