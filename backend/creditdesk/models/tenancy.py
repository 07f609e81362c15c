from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class Business(db.Model):
    """
    Multi-tenant root: every tenant is a Business.

    All customers, approval roles and members belong to exactly one business.
    No data may cross business boundaries.

    AUTHORIZATION CODES:
    - business_code: shared secret for general membership requests
    - system_code: shared secret for admin self-elevation
    Both are 6-character uppercase alphanumerics, unique across businesses,
    written once at creation.
    """
    __tablename__ = "businesses"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    email = db.Column(db.String(255), nullable=True)
    phone = db.Column(db.String(32), nullable=True)
    address = db.Column(db.String(255), nullable=True)
    business_type = db.Column(db.String(64), nullable=True)
    owner_user_id = db.Column(db.String(128), nullable=False, index=True)

    business_code = db.Column(db.String(6), nullable=False, unique=True, index=True)
    system_code = db.Column(db.String(6), nullable=False, unique=True)

    currency = db.Column(db.String(8), nullable=False, default="TZS")
    timezone = db.Column(db.String(64), nullable=False, default="UTC")

    # Ledger postings above this amount must pass the approval policy (NULL = no gate)
    credit_approval_threshold_cents = db.Column(db.BigInteger, nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def __repr__(self) -> str:
        return f"<Business id={self.id} name={self.name!r}>"

    def to_dict(self, include_codes: bool = False) -> dict:
        data = {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "phone": self.phone,
            "address": self.address,
            "business_type": self.business_type,
            "owner_user_id": self.owner_user_id,
            "currency": self.currency,
            "timezone": self.timezone,
            "credit_approval_threshold_cents": self.credit_approval_threshold_cents,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_codes:
            data["business_code"] = self.business_code
            data["system_code"] = self.system_code
        return data


class BusinessMember(db.Model):
    """
    Active membership of an externally authenticated user in a business.

    user_id is the identity provider's id; this service never stores
    credentials.
    """
    __tablename__ = "business_members"
    __table_args__ = (
        db.UniqueConstraint("business_id", "user_id", name="uq_business_members_business_user"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    business_id = db.Column(db.Integer, db.ForeignKey("businesses.id"), nullable=False, index=True)
    user_id = db.Column(db.String(128), nullable=False, index=True)

    first_name = db.Column(db.String(128), nullable=False, default="")
    last_name = db.Column(db.String(128), nullable=False, default="")
    email = db.Column(db.String(255), nullable=False, default="")
    phone = db.Column(db.String(32), nullable=True)

    role = db.Column(db.String(32), nullable=False)
    status = db.Column(db.String(16), nullable=False, default="active")  # active, suspended

    joined_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    approved_by = db.Column(db.String(128), nullable=True)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)

    business = db.relationship("Business", backref=db.backref("members", lazy=True, cascade="all, delete-orphan"))

    @property
    def display_name(self) -> str:
        name = f"{self.first_name} {self.last_name}".strip()
        return name or self.email or "Unknown User"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "business_id": self.business_id,
            "user_id": self.user_id,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "email": self.email,
            "phone": self.phone,
            "role": self.role,
            "status": self.status,
            "joined_at": to_utc_z(self.joined_at),
            "approved_by": self.approved_by,
            "approved_at": to_utc_z(self.approved_at),
        }


class PendingMember(db.Model):
    """
    Join request awaiting administrative approval or rejection.

    LIFECYCLE: created on join request, then either promoted to a
    BusinessMember (approved) or deleted (rejected). Terminal once resolved.
    """
    __tablename__ = "pending_members"
    __table_args__ = (
        db.UniqueConstraint("business_id", "user_id", name="uq_pending_members_business_user"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    business_id = db.Column(db.Integer, db.ForeignKey("businesses.id"), nullable=False, index=True)
    user_id = db.Column(db.String(128), nullable=False)

    first_name = db.Column(db.String(128), nullable=False, default="")
    last_name = db.Column(db.String(128), nullable=False, default="")
    email = db.Column(db.String(255), nullable=False, default="")
    phone = db.Column(db.String(32), nullable=True)

    requested_role = db.Column(db.String(32), nullable=False)
    joined_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    business = db.relationship("Business", backref=db.backref("pending_members", lazy=True, cascade="all, delete-orphan"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "business_id": self.business_id,
            "user_id": self.user_id,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "email": self.email,
            "phone": self.phone,
            "requested_role": self.requested_role,
            "joined_at": to_utc_z(self.joined_at),
        }
