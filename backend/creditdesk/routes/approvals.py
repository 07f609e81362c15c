# Overview: Flask API routes for approval roles, bindings and decisions; parses input and returns JSON responses.

from flask import Blueprint, g, jsonify, request

from ..decorators import require_auth, require_member
from ..errors import UnauthorizedError, ValidationError
from ..services import approval_service, membership_service


approvals_bp = Blueprint("approvals", __name__, url_prefix="/api/businesses/<int:business_id>/approvals")


@approvals_bp.get("/roles")
@require_auth
@require_member()
def list_roles(business_id: int):
    roles = approval_service.list_roles(business_id)
    return jsonify([r.to_dict() for r in roles]), 200


@approvals_bp.post("/roles")
@require_auth
@require_member(admin=True)
def create_role(business_id: int):
    role = approval_service.create_role(business_id, request.get_json() or {})
    return jsonify(role.to_dict()), 201


@approvals_bp.patch("/roles/<int:role_id>")
@require_auth
@require_member(admin=True)
def update_role(business_id: int, role_id: int):
    role = approval_service.update_role(business_id, role_id, request.get_json() or {})
    return jsonify(role.to_dict()), 200


@approvals_bp.delete("/roles/<int:role_id>")
@require_auth
@require_member(admin=True)
def delete_role(business_id: int, role_id: int):
    approval_service.delete_role(business_id, role_id)
    return "", 204


@approvals_bp.put("/roles/<int:role_id>/active")
@require_auth
@require_member(admin=True)
def set_role_active(business_id: int, role_id: int):
    data = request.get_json() or {}
    role = approval_service.toggle_role_active(
        business_id, role_id, data.get("is_active"), actor_user_id=g.user_id
    )
    return jsonify(role.to_dict()), 200


@approvals_bp.get("/users")
@require_auth
@require_member()
def list_bindings(business_id: int):
    role_id = request.args.get("role_id", type=int)
    bindings = approval_service.list_bindings(business_id, role_id=role_id)
    return jsonify([b.to_dict() for b in bindings]), 200


@approvals_bp.post("/users")
@require_auth
@require_member(admin=True)
def assign_user(business_id: int):
    data = request.get_json() or {}
    user_id = data.get("user_id")
    role_id = data.get("role_id")
    if not isinstance(role_id, int):
        raise ValidationError("role_id must be an integer")

    # Cache display fields from the membership record when available
    member = membership_service.get_member(business_id, user_id) if user_id else None
    binding = approval_service.assign_user_to_role(
        business_id,
        user_id,
        role_id,
        user_name=data.get("user_name") or (member.display_name if member else ""),
        user_email=data.get("user_email") or (member.email if member else ""),
        assigned_by=g.user_id,
    )
    return jsonify(binding.to_dict()), 201


@approvals_bp.delete("/users/<int:binding_id>")
@require_auth
@require_member(admin=True)
def remove_binding(business_id: int, binding_id: int):
    removed = approval_service.remove_user_binding(business_id, binding_id)
    return jsonify({"removed": removed}), 200


@approvals_bp.post("/check")
@require_auth
@require_member()
def check_approval(business_id: int):
    """
    Evaluate an approval decision for the caller, optionally resolved with a
    `secondary_user_id`. Only administrators may evaluate on behalf of another
    `user_id`.
    """
    data = request.get_json() or {}
    user_id = data.get("user_id") or g.user_id
    if user_id != g.user_id and not membership_service.is_business_admin(business_id, g.user_id):
        raise UnauthorizedError("Only administrators may check approvals for another user")

    decision = approval_service.check_approval(
        business_id,
        user_id,
        data.get("secondary_user_id"),
        data.get("action"),
        data.get("amount_cents"),
    )
    return jsonify(decision.to_dict()), 200
