# Overview: Flask API routes for business creation and membership; parses input and returns JSON responses.

from flask import Blueprint, g, jsonify, request

from ..decorators import require_auth, require_member
from ..services import membership_service
from ..validation import coerce_int


businesses_bp = Blueprint("businesses", __name__, url_prefix="/api/businesses")


@businesses_bp.post("")
@require_auth
def create_business():
    """
    Create a business owned by the caller.

    The response is the only place the authorization codes are returned.
    """
    data = request.get_json() or {}
    threshold = data.get("credit_approval_threshold_cents")
    owner = data.get("owner") or {}

    business = membership_service.create_business(
        data.get("name"),
        g.user_id,
        email=data.get("email"),
        phone=data.get("phone"),
        address=data.get("address"),
        business_type=data.get("business_type"),
        currency=data.get("currency") or "TZS",
        timezone=data.get("timezone") or "UTC",
        credit_approval_threshold_cents=coerce_int("credit_approval_threshold_cents", threshold)
        if threshold is not None else None,
        owner_first_name=owner.get("first_name", ""),
        owner_last_name=owner.get("last_name", ""),
        owner_email=owner.get("email", ""),
        owner_phone=owner.get("phone"),
    )
    return jsonify(business.to_dict(include_codes=True)), 201


@businesses_bp.get("")
@require_auth
def list_my_businesses():
    businesses = membership_service.list_businesses_for_user(g.user_id)
    return jsonify([b.to_dict() for b in businesses]), 200


@businesses_bp.get("/memberships")
@require_auth
def my_memberships():
    """
    The caller's membership status per business, including pending join
    requests. Optional filter: ?business_id=<id>.
    """
    business_id = request.args.get("business_id", type=int)
    statuses = membership_service.membership_status(g.user_id, business_id=business_id)
    return jsonify([s.to_dict() for s in statuses]), 200


@businesses_bp.post("/join")
@require_auth
def join_business():
    """
    Join with a business code.

    201: active member (admin with system code)
    202: request accepted, pending administrator approval
    """
    data = request.get_json() or {}
    result = membership_service.join_business(
        data.get("business_code"),
        data.get("role"),
        g.user_id,
        first_name=data.get("first_name", ""),
        last_name=data.get("last_name", ""),
        email=data.get("email", ""),
        phone=data.get("phone"),
        system_code=data.get("system_code"),
    )
    return jsonify(result.to_dict()), (202 if result.is_pending else 201)


@businesses_bp.get("/<int:business_id>/members")
@require_auth
@require_member()
def list_members(business_id: int):
    members = membership_service.list_members(business_id)
    return jsonify([m.to_dict() for m in members]), 200


@businesses_bp.get("/<int:business_id>/pending-members")
@require_auth
@require_member(admin=True)
def list_pending_members(business_id: int):
    pending = membership_service.list_pending_members(business_id)
    return jsonify([p.to_dict() for p in pending]), 200


@businesses_bp.post("/<int:business_id>/pending-members/<int:pending_id>/approve")
@require_auth
@require_member(admin=True)
def approve_member(business_id: int, pending_id: int):
    member = membership_service.approve_member(business_id, pending_id, approved_by=g.user_id)
    return jsonify(member.to_dict()), 200


@businesses_bp.post("/<int:business_id>/pending-members/<int:pending_id>/reject")
@require_auth
@require_member(admin=True)
def reject_member(business_id: int, pending_id: int):
    rejected = membership_service.reject_member(business_id, pending_id, rejected_by=g.user_id)
    return jsonify({"rejected": rejected}), 200
