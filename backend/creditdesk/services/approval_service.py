# Overview: Approval policy engine; role thresholds, user bindings and approval decisions.

"""
Approval Policy Engine

Classifies a proposed monetary action into one of three outcomes for the
acting user:

    APPROVED                  amount within the role's own authority
    NEEDS_SECONDARY_APPROVAL  amount within the role's secondary ceiling;
                              a second, independent approver must sign off
    DENIED                    no active binding, inactive role, missing
                              capability flag, or amount above every tier

DESIGN PRINCIPLES:
- Fail closed: anything unresolved is DENIED
- The role is re-read on every decision; deactivating it revokes authority
  of every bound user immediately
- Log denials only (security_events). Decisions never commit: the event
  joins the caller's transaction and is persisted when the caller commits
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from sqlalchemy.exc import IntegrityError

from ..errors import ConflictError, NotFoundError, ValidationError
from ..extensions import db
from ..models import ApprovalRole, ApprovalUser, BusinessMember
from ..validation import ModelValidationPolicy, enforce_rules_approval_role, require_amount_cents, validate_payload
from .audit_service import log_security_event
from .tenant_service import require_business, scoped_get, scoped_query


class ApprovalAction(str, Enum):
    ORDERS = "orders"
    CREDIT = "credit"
    TRANSFERS = "transfers"

    @property
    def role_flag(self) -> str:
        return f"can_approve_{self.value}"


class ApprovalOutcome(str, Enum):
    APPROVED = "approved"
    NEEDS_SECONDARY_APPROVAL = "needs_secondary_approval"
    DENIED = "denied"


@dataclass(frozen=True)
class ApprovalDecision:
    outcome: ApprovalOutcome
    reason: str
    role_id: int | None = None

    @property
    def is_approved(self) -> bool:
        return self.outcome is ApprovalOutcome.APPROVED

    @property
    def needs_secondary(self) -> bool:
        return self.outcome is ApprovalOutcome.NEEDS_SECONDARY_APPROVAL

    @property
    def is_denied(self) -> bool:
        return self.outcome is ApprovalOutcome.DENIED

    def to_dict(self) -> dict:
        return {"outcome": self.outcome.value, "reason": self.reason, "role_id": self.role_id}


ROLE_POLICY = ModelValidationPolicy(
    writable_fields={
        "name",
        "description",
        "can_approve_orders",
        "can_approve_credit",
        "can_approve_transfers",
        "max_approval_amount_cents",
        "requires_secondary_approval",
        "secondary_approval_amount_cents",
    },
    required_on_create={"name"},
)

# Created for every new business. Amounts are in minor units (TZS).
DEFAULT_APPROVAL_ROLES = (
    {
        "name": "admin",
        "description": "Full system access and administrative privileges",
        "can_approve_orders": True,
        "can_approve_credit": True,
        "can_approve_transfers": True,
        "max_approval_amount_cents": 1_000_000_000,
        "requires_secondary_approval": False,
        "secondary_approval_amount_cents": 0,
    },
    {
        "name": "Business Owner",
        "description": "Oversees all business operations and has final approval authority",
        "can_approve_orders": True,
        "can_approve_credit": True,
        "can_approve_transfers": True,
        "max_approval_amount_cents": 1_000_000_000,
        "requires_secondary_approval": False,
        "secondary_approval_amount_cents": 0,
    },
    {
        "name": "sales_rep",
        "description": "Handles customer sales and order processing",
        "can_approve_orders": True,
        "can_approve_credit": False,
        "can_approve_transfers": False,
        "max_approval_amount_cents": 50_000_000,
        "requires_secondary_approval": True,
        "secondary_approval_amount_cents": 100_000_000,
    },
)


# =============================================================================
# ROLES
# =============================================================================


def get_role(business_id: int, role_id: int) -> ApprovalRole:
    return scoped_get(ApprovalRole, role_id, business_id, "Approval role")


def list_roles(business_id: int, active_only: bool = False) -> list[ApprovalRole]:
    query = scoped_query(ApprovalRole, business_id)
    if active_only:
        query = query.filter(ApprovalRole.is_active.is_(True))
    return query.order_by(ApprovalRole.created_at.desc(), ApprovalRole.id.desc()).all()


def _ensure_unique_name(business_id: int, name: str, exclude_id: int | None = None) -> None:
    query = scoped_query(ApprovalRole, business_id).filter(ApprovalRole.name == name)
    if exclude_id is not None:
        query = query.filter(ApprovalRole.id != exclude_id)
    if query.first():
        raise ConflictError(f"Approval role '{name}' already exists")


def _commit_role(role: ApprovalRole) -> ApprovalRole:
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError(f"Approval role '{role.name}' already exists")
    return role


def create_role(business_id: int, payload: dict, *, is_active: bool = True) -> ApprovalRole:
    """
    Create an approval role.

    Raises ValidationError for an empty name, negative thresholds, or a
    secondary ceiling below the primary one; ConflictError for a duplicate
    name within the business.
    """
    require_business(business_id)
    patch = validate_payload(model=ApprovalRole, payload=payload, policy=ROLE_POLICY, partial=False)
    enforce_rules_approval_role(patch)
    _ensure_unique_name(business_id, patch["name"])

    role = ApprovalRole(business_id=business_id, is_active=is_active, **patch)
    db.session.add(role)
    return _commit_role(role)


def update_role(business_id: int, role_id: int, payload: dict) -> ApprovalRole:
    role = get_role(business_id, role_id)
    patch = validate_payload(model=ApprovalRole, payload=payload, policy=ROLE_POLICY, partial=True)
    enforce_rules_approval_role(patch, current=role.to_dict())
    if "name" in patch:
        _ensure_unique_name(business_id, patch["name"], exclude_id=role.id)

    for key, value in patch.items():
        setattr(role, key, value)
    return _commit_role(role)


def toggle_role_active(
    business_id: int,
    role_id: int,
    is_active: bool,
    *,
    actor_user_id: str | None = None,
) -> ApprovalRole:
    """
    Set a role's active flag. Idempotent: setting the current value is a no-op.

    Bindings are left untouched; can_approve reads role.is_active at decision
    time, so every bound user loses (or regains) authority immediately.
    """
    if not isinstance(is_active, bool):
        raise ValidationError("is_active must be a boolean")

    role = get_role(business_id, role_id)
    if role.is_active == is_active:
        return role

    role.is_active = is_active
    if not is_active:
        log_security_event(
            user_id=actor_user_id,
            event_type="ROLE_DEACTIVATED",
            success=True,
            resource=f"approval_role:{role.id}",
            reason=f"Approval role '{role.name}' deactivated",
            business_id=business_id,
            commit=False,
        )
    db.session.commit()
    return role


def delete_role(business_id: int, role_id: int) -> None:
    """Delete a role together with every binding that references it."""
    role = get_role(business_id, role_id)
    for binding in scoped_query(ApprovalUser, business_id).filter(ApprovalUser.role_id == role.id).all():
        db.session.delete(binding)
    db.session.delete(role)
    db.session.commit()


def seed_default_approval_roles(business_id: int) -> list[ApprovalRole]:
    """
    Create the default approval roles when the business has none.

    Safe to call repeatedly (idempotent).
    """
    require_business(business_id)
    if scoped_query(ApprovalRole, business_id).first():
        return []

    roles = [ApprovalRole(business_id=business_id, is_active=True, **template) for template in DEFAULT_APPROVAL_ROLES]
    db.session.add_all(roles)
    db.session.commit()
    return roles


# =============================================================================
# BINDINGS
# =============================================================================


def get_active_binding(business_id: int, user_id: str) -> ApprovalUser | None:
    return scoped_query(ApprovalUser, business_id).filter(
        ApprovalUser.user_id == user_id,
        ApprovalUser.is_active.is_(True),
    ).first()


def list_bindings(business_id: int, role_id: int | None = None, active_only: bool = True) -> list[ApprovalUser]:
    query = scoped_query(ApprovalUser, business_id)
    if role_id is not None:
        query = query.filter(ApprovalUser.role_id == role_id)
    if active_only:
        query = query.filter(ApprovalUser.is_active.is_(True))
    return query.order_by(ApprovalUser.assigned_at.desc(), ApprovalUser.id.desc()).all()


def assign_user_to_role(
    business_id: int,
    user_id: str,
    role_id: int,
    *,
    user_name: str = "",
    user_email: str = "",
    assigned_by: str | None = None,
) -> ApprovalUser:
    """
    Bind a user to an approval role.

    The role must exist and be active (NotFoundError otherwise). A previous
    active binding of the same user is deactivated, leaving exactly one.
    """
    if not user_id:
        raise ValidationError("user_id is required")

    role = get_role(business_id, role_id)
    if not role.is_active:
        raise NotFoundError("Approval role not found or inactive")

    previous = get_active_binding(business_id, user_id)
    if previous is not None:
        previous.is_active = False
        db.session.flush()

    binding = ApprovalUser(
        business_id=business_id,
        user_id=user_id,
        user_name=user_name or "",
        user_email=user_email or "",
        role_id=role.id,
        is_active=True,
        assigned_by=assigned_by,
    )
    db.session.add(binding)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError("User already holds an active approval role")
    return binding


def remove_user_binding(business_id: int, binding_id: int) -> bool:
    binding = db.session.get(ApprovalUser, binding_id)
    if binding is None or binding.business_id != business_id:
        return False
    db.session.delete(binding)
    db.session.commit()
    return True


def auto_assign_default_users(business_id: int, assigned_by: str | None = None) -> list[ApprovalUser]:
    """
    Bind active members whose membership role matches a default approval
    role name and who hold no active binding yet.
    """
    roles_by_name = {role.name: role for role in list_roles(business_id, active_only=True)}
    default_names = {template["name"] for template in DEFAULT_APPROVAL_ROLES}
    bound = {b.user_id for b in list_bindings(business_id)}

    members = scoped_query(BusinessMember, business_id).filter(BusinessMember.status == "active").all()

    created = []
    for member in members:
        role = roles_by_name.get(member.role)
        if role is None or member.role not in default_names or member.user_id in bound:
            continue
        binding = ApprovalUser(
            business_id=business_id,
            user_id=member.user_id,
            user_name=member.display_name,
            user_email=member.email or "",
            role_id=role.id,
            is_active=True,
            assigned_by=assigned_by or "system",
        )
        db.session.add(binding)
        created.append(binding)

    if created:
        db.session.commit()
    return created


# =============================================================================
# DECISIONS
# =============================================================================


def _deny(business_id: int, user_id: str | None, action: ApprovalAction, reason: str,
          role_id: int | None = None) -> ApprovalDecision:
    log_security_event(
        user_id=user_id,
        event_type="APPROVAL_DENIED",
        success=False,
        resource=f"approval_role:{role_id}" if role_id else None,
        action=action.value,
        reason=reason,
        business_id=business_id,
        commit=False,
    )
    return ApprovalDecision(ApprovalOutcome.DENIED, reason, role_id)


def can_approve(business_id: int, user_id: str | None, action, amount_cents) -> ApprovalDecision:
    """
    Decide whether `user_id` may approve `action` for `amount_cents`.

    1. No active binding, inactive role, or role lacking the action's
       capability flag -> DENIED
    2. amount <= max_approval_amount -> APPROVED
    3. requires_secondary_approval and amount <= secondary_approval_amount
       -> NEEDS_SECONDARY_APPROVAL
    4. otherwise -> DENIED
    """
    try:
        action = ApprovalAction(action)
    except ValueError:
        raise ValidationError(f"Unknown approval action: {action}")
    amount = require_amount_cents("amount_cents", amount_cents, allow_zero=True)

    binding = get_active_binding(business_id, user_id) if user_id else None
    if binding is None:
        return _deny(business_id, user_id, action, "No active approval role")

    role = db.session.get(ApprovalRole, binding.role_id)
    if role is None or role.business_id != business_id or not role.is_active:
        return _deny(business_id, user_id, action, "Approval role is inactive", binding.role_id)

    if not getattr(role, action.role_flag):
        return _deny(business_id, user_id, action, f"Role '{role.name}' cannot approve {action.value}", role.id)

    if amount <= role.max_approval_amount_cents:
        return ApprovalDecision(ApprovalOutcome.APPROVED, f"Within '{role.name}' authority", role.id)

    if role.requires_secondary_approval and amount <= role.secondary_approval_amount_cents:
        return ApprovalDecision(
            ApprovalOutcome.NEEDS_SECONDARY_APPROVAL,
            f"Exceeds '{role.name}' authority; secondary approval required",
            role.id,
        )

    return _deny(business_id, user_id, action, f"Amount exceeds '{role.name}' approval limits", role.id)


def evaluate_dual_approval(
    business_id: int,
    primary_user_id: str | None,
    secondary_user_id: str | None,
    action,
    amount_cents,
) -> ApprovalDecision:
    """
    Resolve an action with an optional second approver.

    The primary decision stands unless it is NEEDS_SECONDARY_APPROVAL; then a
    different user whose own decision is APPROVED turns it into APPROVED.
    """
    primary = can_approve(business_id, primary_user_id, action, amount_cents)
    if not primary.needs_secondary:
        return primary

    if not secondary_user_id:
        return primary
    if secondary_user_id == primary_user_id:
        return ApprovalDecision(ApprovalOutcome.DENIED, "Secondary approver must be a different user", primary.role_id)

    secondary = can_approve(business_id, secondary_user_id, action, amount_cents)
    if secondary.is_approved:
        return ApprovalDecision(ApprovalOutcome.APPROVED, "Approved with secondary sign-off", secondary.role_id)
    return ApprovalDecision(ApprovalOutcome.DENIED, f"Secondary approver: {secondary.reason}", secondary.role_id)


def check_approval(
    business_id: int,
    primary_user_id: str | None,
    secondary_user_id: str | None,
    action,
    amount_cents,
) -> ApprovalDecision:
    """Standalone decision request: evaluates and persists any denial events."""
    decision = evaluate_dual_approval(business_id, primary_user_id, secondary_user_id, action, amount_cents)
    db.session.commit()
    return decision
