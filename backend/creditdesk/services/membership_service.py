# Overview: Membership authorization gate; business codes, join requests and member approval.

"""
Membership Authorization Gate

Turns a shared secret into business membership:

- business_code + any non-admin role  -> PendingMember awaiting approval
- business_code + admin + system_code -> active admin member immediately
- business_code + admin + wrong code  -> UnauthorizedError, nothing created

SECURITY NOTES:
- Codes are drawn from `secrets` (6 chars, A-Z0-9) and regenerated on
  collision with any existing business code
- System codes are compared in constant time
- Rejected system codes are written to security_events
- Approving/rejecting requires admin authority, which callers establish
  (see is_business_admin) before invoking these functions
"""

from __future__ import annotations

import hmac
import secrets
import string
from dataclasses import dataclass

from flask import current_app
from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError

from ..errors import ConflictError, NotFoundError, UnauthorizedError, ValidationError
from ..extensions import db
from ..models import Business, BusinessMember, PendingMember
from ..time_utils import utcnow
from . import approval_service
from .audit_service import log_security_event
from .tenant_service import find_business_by_code, require_business, scoped_get, scoped_query


MEMBER_ROLES = (
    "admin",
    "business_owner",
    "sales_rep",
    "inventory_manager",
    "packer",
    "accountant",
    "customer",
)
ADMIN_ROLES = frozenset({"admin", "business_owner"})

CODE_ALPHABET = string.ascii_uppercase + string.digits
CODE_LENGTH = 6


@dataclass(frozen=True)
class JoinResult:
    business: Business
    member: BusinessMember | None = None
    pending: PendingMember | None = None

    @property
    def is_pending(self) -> bool:
        return self.pending is not None

    def to_dict(self) -> dict:
        if self.is_pending:
            return {
                "status": "pending",
                "message": "Join request submitted; awaiting administrator approval",
                "business_id": self.business.id,
                "pending_member": self.pending.to_dict(),
            }
        return {
            "status": "active",
            "message": "Joined as an active member",
            "business_id": self.business.id,
            "member": self.member.to_dict(),
        }


@dataclass(frozen=True)
class MembershipStatus:
    business_id: int
    business_name: str
    status: str
    role: str

    def to_dict(self) -> dict:
        return {
            "business_id": self.business_id,
            "business_name": self.business_name,
            "status": self.status,
            "role": self.role,
        }


# =============================================================================
# BUSINESSES
# =============================================================================


def generate_code() -> str:
    return "".join(secrets.choice(CODE_ALPHABET) for _ in range(CODE_LENGTH))


def _code_in_use(code: str) -> bool:
    return db.session.query(Business.id).filter(
        or_(Business.business_code == code, Business.system_code == code)
    ).first() is not None


def create_business(
    name: str,
    owner_user_id: str,
    *,
    email: str | None = None,
    phone: str | None = None,
    address: str | None = None,
    business_type: str | None = None,
    currency: str = "TZS",
    timezone: str = "UTC",
    credit_approval_threshold_cents: int | None = None,
    owner_first_name: str = "",
    owner_last_name: str = "",
    owner_email: str = "",
    owner_phone: str | None = None,
) -> Business:
    """
    Create a business with fresh authorization codes.

    The creator becomes an active admin member and the default approval roles
    are seeded. Codes that collide with any existing business code are
    regenerated, up to CODE_GENERATION_ATTEMPTS times.
    """
    name = (name or "").strip()
    if not name:
        raise ValidationError("Business name is required")
    if not owner_user_id:
        raise ValidationError("owner_user_id is required")
    if credit_approval_threshold_cents is not None and credit_approval_threshold_cents < 0:
        raise ValidationError("credit_approval_threshold_cents must be >= 0")

    attempts = current_app.config.get("CODE_GENERATION_ATTEMPTS", 10)
    for _ in range(attempts):
        business_code = generate_code()
        system_code = generate_code()
        if business_code == system_code or _code_in_use(business_code) or _code_in_use(system_code):
            current_app.logger.info("Authorization code collision; regenerating")
            continue

        business = Business(
            name=name,
            email=email,
            phone=phone,
            address=address,
            business_type=business_type,
            owner_user_id=owner_user_id,
            business_code=business_code,
            system_code=system_code,
            currency=currency,
            timezone=timezone,
            credit_approval_threshold_cents=credit_approval_threshold_cents,
            is_active=True,
        )
        db.session.add(business)
        try:
            db.session.flush()
        except IntegrityError:
            # Another request claimed the code between our check and insert
            db.session.rollback()
            continue

        db.session.add(BusinessMember(
            business_id=business.id,
            user_id=owner_user_id,
            first_name=owner_first_name or "",
            last_name=owner_last_name or "",
            email=owner_email or "",
            phone=owner_phone,
            role="admin",
            status="active",
            approved_by=owner_user_id,
            approved_at=utcnow(),
        ))
        db.session.commit()

        approval_service.seed_default_approval_roles(business.id)
        current_app.logger.info("Created business %s (%s)", business.id, business.name)
        return business

    raise ConflictError("Could not generate unique authorization codes")


def list_businesses_for_user(user_id: str) -> list[Business]:
    return db.session.query(Business).join(
        BusinessMember, BusinessMember.business_id == Business.id
    ).filter(
        BusinessMember.user_id == user_id,
        BusinessMember.status == "active",
        Business.is_active.is_(True),
    ).order_by(Business.name).all()


def membership_status(user_id: str, business_id: int | None = None) -> list[MembershipStatus]:
    """
    The caller's own standing in every business they belong to or have asked
    to join: "active" (or "suspended") members and "pending" join requests.
    """
    if not user_id:
        raise ValidationError("user_id is required")

    members = db.session.query(BusinessMember, Business).join(
        Business, BusinessMember.business_id == Business.id
    ).filter(BusinessMember.user_id == user_id)
    pending = db.session.query(PendingMember, Business).join(
        Business, PendingMember.business_id == Business.id
    ).filter(PendingMember.user_id == user_id)
    if business_id is not None:
        members = members.filter(Business.id == business_id)
        pending = pending.filter(Business.id == business_id)

    statuses = [
        MembershipStatus(business.id, business.name, member.status, member.role)
        for member, business in members.all()
    ]
    statuses.extend(
        MembershipStatus(business.id, business.name, "pending", join_request.requested_role)
        for join_request, business in pending.all()
    )
    return sorted(statuses, key=lambda s: s.business_id)


# =============================================================================
# JOINING
# =============================================================================


def join_business(
    code: str,
    requested_role: str,
    user_id: str,
    *,
    first_name: str = "",
    last_name: str = "",
    email: str = "",
    phone: str | None = None,
    system_code: str | None = None,
) -> JoinResult:
    """
    Request membership using a business code.

    Raises:
        NotFoundError: no active business has this code
        ValidationError: unknown role or missing user id
        UnauthorizedError: admin requested without the matching system code
        ConflictError: user is already a member or has a pending request
    """
    if not user_id:
        raise ValidationError("user_id is required")

    business = find_business_by_code(code)
    if business is None:
        raise NotFoundError("Invalid business authorization code")

    if requested_role not in MEMBER_ROLES:
        raise ValidationError(f"Unknown role: {requested_role}")

    if requested_role == "admin":
        supplied = (system_code or "").strip().upper()
        if not supplied or not hmac.compare_digest(supplied, business.system_code):
            log_security_event(
                user_id=user_id,
                event_type="SYSTEM_CODE_REJECTED",
                success=False,
                resource=f"business:{business.id}",
                action="join_admin",
                reason="Invalid system authorization code for admin role",
                business_id=business.id,
            )
            raise UnauthorizedError("Invalid system authorization code for admin role")

    if get_member(business.id, user_id) is not None:
        raise ConflictError("Already a member of this business")
    if scoped_query(PendingMember, business.id).filter(PendingMember.user_id == user_id).first():
        raise ConflictError("A join request for this business is already pending")

    if requested_role == "admin":
        member = BusinessMember(
            business_id=business.id,
            user_id=user_id,
            first_name=first_name or "",
            last_name=last_name or "",
            email=email or "",
            phone=phone,
            role="admin",
            status="active",
            approved_by=user_id,
            approved_at=utcnow(),
        )
        db.session.add(member)
        _commit_membership()
        return JoinResult(business=business, member=member)

    pending = PendingMember(
        business_id=business.id,
        user_id=user_id,
        first_name=first_name or "",
        last_name=last_name or "",
        email=email or "",
        phone=phone,
        requested_role=requested_role,
    )
    db.session.add(pending)
    _commit_membership()
    return JoinResult(business=business, pending=pending)


def _commit_membership() -> None:
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError("Membership already exists")


# =============================================================================
# PENDING MEMBERS
# =============================================================================


def list_pending_members(business_id: int) -> list[PendingMember]:
    require_business(business_id)
    return scoped_query(PendingMember, business_id).order_by(
        PendingMember.joined_at.asc(), PendingMember.id.asc()
    ).all()


def approve_member(business_id: int, pending_id: int, approved_by: str | None = None) -> BusinessMember:
    """
    Promote a pending request to an active member with its requested role.

    The member insert and the pending delete commit together. Concurrent
    approvals of the same request converge on a single member.
    """
    pending = scoped_get(PendingMember, pending_id, business_id, "Pending member")
    user_id = pending.user_id

    member = get_member(business_id, user_id)
    if member is None:
        member = BusinessMember(
            business_id=business_id,
            user_id=user_id,
            first_name=pending.first_name,
            last_name=pending.last_name,
            email=pending.email,
            phone=pending.phone,
            role=pending.requested_role,
            status="active",
            joined_at=pending.joined_at,
            approved_by=approved_by,
            approved_at=utcnow(),
        )
        db.session.add(member)

    try:
        db.session.delete(pending)
        log_security_event(
            user_id=approved_by,
            event_type="MEMBER_APPROVED",
            success=True,
            resource=f"member:{user_id}",
            reason=f"Approved as {member.role}",
            business_id=business_id,
            commit=False,
        )
        db.session.commit()
    except IntegrityError:
        # A concurrent approval created the member first
        db.session.rollback()
        member = get_member(business_id, user_id)
        if member is None:
            raise
        leftover = db.session.get(PendingMember, pending_id)
        if leftover is not None:
            db.session.delete(leftover)
            db.session.commit()
    current_app.logger.info("Approved member %s in business %s", user_id, business_id)
    return member


def reject_member(business_id: int, pending_id: int, rejected_by: str | None = None) -> bool:
    """Delete a pending request. Rejecting an absent request is a no-op returning False."""
    pending = db.session.get(PendingMember, pending_id)
    if pending is None or pending.business_id != business_id:
        return False

    db.session.delete(pending)
    log_security_event(
        user_id=rejected_by,
        event_type="MEMBER_REJECTED",
        success=True,
        resource=f"member:{pending.user_id}",
        business_id=business_id,
        commit=False,
    )
    db.session.commit()
    current_app.logger.info("Rejected join request %s in business %s", pending_id, business_id)
    return True


# =============================================================================
# MEMBERS
# =============================================================================


def get_member(business_id: int, user_id: str) -> BusinessMember | None:
    return scoped_query(BusinessMember, business_id).filter(BusinessMember.user_id == user_id).first()


def list_members(business_id: int) -> list[BusinessMember]:
    return scoped_query(BusinessMember, business_id).order_by(BusinessMember.joined_at.desc()).all()


def is_business_admin(business_id: int, user_id: str | None) -> bool:
    if not user_id:
        return False
    member = get_member(business_id, user_id)
    return member is not None and member.status == "active" and member.role in ADMIN_ROLES
