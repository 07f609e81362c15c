from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class ApprovalRole(db.Model):
    """
    Named bundle of approval permission flags and monetary thresholds.

    THRESHOLDS:
    - amount <= max_approval_amount_cents: approved on this role's authority
    - amount <= secondary_approval_amount_cents (when requires_secondary_approval):
      needs a second, independent approver
    - otherwise: denied

    is_active is read at decision time; bindings never cache it.
    """
    __tablename__ = "approval_roles"
    __table_args__ = (
        db.UniqueConstraint("business_id", "name", name="uq_approval_roles_business_name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    business_id = db.Column(db.Integer, db.ForeignKey("businesses.id"), nullable=False, index=True)

    name = db.Column(db.String(64), nullable=False)
    description = db.Column(db.Text, nullable=True)

    can_approve_orders = db.Column(db.Boolean, nullable=False, default=False)
    can_approve_credit = db.Column(db.Boolean, nullable=False, default=False)
    can_approve_transfers = db.Column(db.Boolean, nullable=False, default=False)

    max_approval_amount_cents = db.Column(db.BigInteger, nullable=False, default=0)
    requires_secondary_approval = db.Column(db.Boolean, nullable=False, default=False)
    secondary_approval_amount_cents = db.Column(db.BigInteger, nullable=False, default=0)

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    business = db.relationship("Business", backref=db.backref("approval_roles", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "business_id": self.business_id,
            "name": self.name,
            "description": self.description,
            "can_approve_orders": self.can_approve_orders,
            "can_approve_credit": self.can_approve_credit,
            "can_approve_transfers": self.can_approve_transfers,
            "max_approval_amount_cents": self.max_approval_amount_cents,
            "requires_secondary_approval": self.requires_secondary_approval,
            "secondary_approval_amount_cents": self.secondary_approval_amount_cents,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class ApprovalUser(db.Model):
    """
    Binding of one business member to one approval role.

    role_id is a foreign key, not ownership: deactivating the role revokes
    the binding's authority without touching the binding row.
    At most one active binding per (business, user).
    """
    __tablename__ = "approval_users"
    __table_args__ = (
        db.Index(
            "uq_approval_users_active_user",
            "business_id",
            "user_id",
            unique=True,
            sqlite_where=db.text("is_active = 1"),
            postgresql_where=db.text("is_active"),
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    business_id = db.Column(db.Integer, db.ForeignKey("businesses.id"), nullable=False, index=True)
    user_id = db.Column(db.String(128), nullable=False, index=True)
    user_name = db.Column(db.String(255), nullable=False, default="")
    user_email = db.Column(db.String(255), nullable=False, default="")

    role_id = db.Column(db.Integer, db.ForeignKey("approval_roles.id"), nullable=False, index=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    assigned_by = db.Column(db.String(128), nullable=True)
    assigned_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    role = db.relationship("ApprovalRole", backref=db.backref("bindings", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "business_id": self.business_id,
            "user_id": self.user_id,
            "user_name": self.user_name,
            "user_email": self.user_email,
            "role_id": self.role_id,
            "role_name": self.role.name if self.role else None,
            "is_active": self.is_active,
            "assigned_by": self.assigned_by,
            "assigned_at": to_utc_z(self.assigned_at),
        }
