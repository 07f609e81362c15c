# Overview: Request decorators for identity and business membership checks.

from functools import wraps
from flask import current_app, request, jsonify, g

from .services import audit_service, membership_service


def require_auth(f):
    """
    Require an authenticated caller.

    Authentication itself happens upstream: the identity provider forwards
    the caller's user id in the IDENTITY_HEADER header. Sets g.user_id.

    Returns 401 if the header is missing or blank.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        header = current_app.config.get("IDENTITY_HEADER", "X-User-Id")
        user_id = (request.headers.get(header) or "").strip()

        if not user_id:
            return jsonify({"error": "Authentication required"}), 401

        g.user_id = user_id
        return f(*args, **kwargs)

    return decorated_function


def require_member(admin: bool = False):
    """
    Require active membership in the business named by the `business_id`
    URL parameter; with admin=True the member must hold an admin role.

    Denials are written to security_events.
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not hasattr(g, "user_id"):
                return jsonify({"error": "Authentication required"}), 401

            business_id = kwargs.get("business_id")
            member = membership_service.get_member(business_id, g.user_id)
            allowed = member is not None and member.status == "active"
            if allowed and admin:
                allowed = membership_service.is_business_admin(business_id, g.user_id)

            if not allowed:
                audit_service.log_security_event(
                    user_id=g.user_id,
                    event_type="ACCESS_DENIED",
                    success=False,
                    resource=request.path,
                    action=request.method,
                    reason="Administrator role required" if admin else "Not a member of this business",
                    business_id=business_id if member is not None else None,
                )
                return jsonify({"error": "Permission denied"}), 403

            return f(*args, **kwargs)

        return decorated_function
    return decorator
