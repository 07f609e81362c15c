# Overview: Flask API routes for customers and their credit ledger; parses input and returns JSON responses.

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_auth, require_member
from ..errors import CreditDeskError
from ..services import ledger_service


customers_bp = Blueprint("customers", __name__, url_prefix="/api/businesses/<int:business_id>/customers")


def _customer_payload(customer) -> dict:
    data = customer.to_dict()
    data["credit_status"] = ledger_service.credit_status(customer).value
    return data


@customers_bp.get("")
@require_auth
@require_member()
def list_customers(business_id: int):
    """Optional filters: ?q=<search term>, ?status=<credit status>."""
    status = request.args.get("status")
    if status:
        customers = ledger_service.customers_by_credit_status(business_id, status)
    else:
        customers = ledger_service.search_customers(business_id, request.args.get("q", ""))
    return jsonify([_customer_payload(c) for c in customers]), 200


@customers_bp.post("")
@require_auth
@require_member()
def create_customer(business_id: int):
    customer = ledger_service.create_customer(business_id, request.get_json() or {})
    return jsonify(_customer_payload(customer)), 201


@customers_bp.get("/<int:customer_id>")
@require_auth
@require_member()
def get_customer(business_id: int, customer_id: int):
    customer = ledger_service.get_customer(business_id, customer_id)
    return jsonify(_customer_payload(customer)), 200


@customers_bp.patch("/<int:customer_id>")
@require_auth
@require_member()
def update_customer(business_id: int, customer_id: int):
    data = request.get_json() or {}
    # Limit changes go through the dedicated admin endpoint
    data.pop("credit_limit_cents", None)
    customer = ledger_service.update_customer(business_id, customer_id, data)
    return jsonify(_customer_payload(customer)), 200


@customers_bp.delete("/<int:customer_id>")
@require_auth
@require_member(admin=True)
def delete_customer(business_id: int, customer_id: int):
    ledger_service.delete_customer(business_id, customer_id)
    return "", 204


@customers_bp.put("/<int:customer_id>/credit-limit")
@require_auth
@require_member(admin=True)
def set_credit_limit(business_id: int, customer_id: int):
    data = request.get_json() or {}
    customer = ledger_service.set_credit_limit(business_id, customer_id, data.get("credit_limit_cents"))
    return jsonify(_customer_payload(customer)), 200


@customers_bp.get("/<int:customer_id>/transactions")
@require_auth
@require_member()
def list_transactions(business_id: int, customer_id: int):
    snapshot = ledger_service.query_ledger(business_id, customer_id).snapshot()
    return jsonify({
        "transactions": [t.to_dict() for t in snapshot.transactions],
        "degraded": snapshot.degraded,
    }), 200


@customers_bp.post("/<int:customer_id>/transactions")
@require_auth
@require_member()
def record_transaction(business_id: int, customer_id: int):
    """
    Post a ledger entry.

    Clients retrying after a timeout must resend the same Idempotency-Key
    header (or idempotency_key field) so the entry is posted once.
    """
    data = request.get_json() or {}
    try:
        entry = ledger_service.record_transaction(
            business_id,
            customer_id,
            data.get("type"),
            data.get("amount_cents"),
            reference=data.get("reference"),
            note=data.get("note"),
            idempotency_key=request.headers.get("Idempotency-Key") or data.get("idempotency_key"),
            actor_user_id=g.user_id,
            secondary_approver_id=data.get("secondary_approver_id"),
        )
    except CreditDeskError:
        raise
    except Exception:
        current_app.logger.exception("Failed to record transaction")
        return jsonify({"error": "Internal server error"}), 500

    customer = ledger_service.get_customer(business_id, customer_id)
    return jsonify({"transaction": entry.to_dict(), "customer": _customer_payload(customer)}), 201
