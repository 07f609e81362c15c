from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


TRANSACTION_TYPES = ("invoice", "payment", "credit-adjustment", "refund")
DEBIT_TYPES = frozenset({"invoice"})
CREDIT_TYPES = frozenset({"payment", "credit-adjustment", "refund"})


class Customer(db.Model):
    """
    Customer master data and credit account.

    MULTI-TENANT: Customers are scoped to businesses via business_id.

    AGGREGATES: credit_used_cents and total_spent_cents are derived from the
    customer's transaction history and are only written by ledger_service.
    credit_used_cents may exceed credit_limit_cents; that is a business-rule
    breach surfaced through credit status, not a write-time rejection.

    CONCURRENCY: version_id is incremented on every write. Ledger postings
    check it explicitly; ORM flushes check it through version_id_col.
    """
    __tablename__ = "customers"
    __table_args__ = (
        db.Index("ix_customers_business_active", "business_id", "is_active"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    business_id = db.Column(db.Integer, db.ForeignKey("businesses.id"), nullable=False, index=True)

    first_name = db.Column(db.String(128), nullable=False)
    last_name = db.Column(db.String(128), nullable=False)
    email = db.Column(db.String(255), nullable=True)
    phone = db.Column(db.String(32), nullable=True)
    address = db.Column(db.String(255), nullable=True)
    city = db.Column(db.String(128), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    credit_limit_cents = db.Column(db.BigInteger, nullable=False, default=0)
    credit_used_cents = db.Column(db.BigInteger, nullable=False, default=0)
    total_spent_cents = db.Column(db.BigInteger, nullable=False, default=0)

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    business = db.relationship("Business", backref=db.backref("customers", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    @property
    def over_limit(self) -> bool:
        return self.credit_limit_cents > 0 and self.credit_used_cents > self.credit_limit_cents

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "business_id": self.business_id,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "email": self.email,
            "phone": self.phone,
            "address": self.address,
            "city": self.city,
            "notes": self.notes,
            "credit_limit_cents": self.credit_limit_cents,
            "credit_used_cents": self.credit_used_cents,
            "total_spent_cents": self.total_spent_cents,
            "over_limit": self.over_limit,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }


class CustomerTransaction(db.Model):
    """
    Append-only credit ledger for one customer.

    TRANSACTION TYPES:
    - invoice: debit, raises credit_used and total_spent
    - payment, refund, credit-adjustment: credit, lowers credit_used (floored at 0)

    balance_after_cents is the customer's credit_used immediately after the
    posting. IMMUTABLE: records are never updated or deleted individually.
    """
    __tablename__ = "customer_transactions"
    __table_args__ = (
        db.UniqueConstraint("customer_id", "idempotency_key", name="uq_customer_txns_idempotency"),
        db.Index("ix_customer_txns_customer_created", "customer_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)
    business_id = db.Column(db.Integer, db.ForeignKey("businesses.id"), nullable=False, index=True)

    transaction_type = db.Column(db.String(32), nullable=False, index=True)
    amount_cents = db.Column(db.BigInteger, nullable=False)
    balance_after_cents = db.Column(db.BigInteger, nullable=False)

    reference = db.Column(db.String(128), nullable=True)
    note = db.Column(db.Text, nullable=True)
    idempotency_key = db.Column(db.String(128), nullable=True)

    created_by = db.Column(db.String(128), nullable=True)
    approved_by = db.Column(db.String(128), nullable=True)
    secondary_approved_by = db.Column(db.String(128), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    customer = db.relationship(
        "Customer",
        backref=db.backref("transactions", lazy=True, cascade="all, delete-orphan"),
    )

    @property
    def is_debit(self) -> bool:
        return self.transaction_type in DEBIT_TYPES

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "customer_id": self.customer_id,
            "business_id": self.business_id,
            "type": self.transaction_type,
            "amount_cents": self.amount_cents,
            "balance_after_cents": self.balance_after_cents,
            "reference": self.reference,
            "note": self.note,
            "idempotency_key": self.idempotency_key,
            "created_by": self.created_by,
            "approved_by": self.approved_by,
            "secondary_approved_by": self.secondary_approved_by,
            "created_at": to_utc_z(self.created_at),
        }
