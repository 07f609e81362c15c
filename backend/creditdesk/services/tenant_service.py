"""
Multi-Tenant Service: Business Validation and Scoping Helpers

Every service operation is scoped to one business. Records fetched by id
must be re-checked against the caller's business_id; a record belonging to
another business is reported exactly like a missing one so its existence
is not revealed.

USAGE:
    from creditdesk.services.tenant_service import require_business, scoped_get

    business = require_business(business_id)
    customer = scoped_get(Customer, customer_id, business_id, "Customer")
"""

from ..errors import NotFoundError
from ..extensions import db
from ..models import Business


def require_business(business_id: int, active_only: bool = True) -> Business:
    """
    Validate that a business exists (and is active).

    Raises:
        NotFoundError if the business doesn't exist or is inactive
    """
    business = db.session.get(Business, business_id)

    if not business:
        raise NotFoundError("Business not found")

    if active_only and not business.is_active:
        raise NotFoundError("Business not found")

    return business


def find_business_by_code(business_code: str) -> Business | None:
    """Look up an active business by its general join code."""
    code = (business_code or "").strip().upper()
    if not code:
        return None
    return db.session.query(Business).filter_by(business_code=code, is_active=True).first()


def scoped_get(model, record_id: int, business_id: int, label: str):
    """
    Fetch a business-owned record by id, enforcing tenant isolation.

    Raises NotFoundError if the record is missing or owned by another business.
    """
    record = db.session.get(model, record_id)
    if record is None or record.business_id != business_id:
        raise NotFoundError(f"{label} not found")
    return record


def scoped_query(model, business_id: int):
    """Base query for a model filtered to one business."""
    return db.session.query(model).filter(model.business_id == business_id)
