# Overview: Customer credit ledger; append-only history and version-checked running balance.

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from flask import current_app
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError, OperationalError

from ..errors import BackendUnavailableError, ConflictError, NotFoundError, UnauthorizedError, ValidationError
from ..extensions import db
from ..models import Customer, CustomerTransaction
from ..models.customers import CREDIT_TYPES, DEBIT_TYPES, TRANSACTION_TYPES
from ..validation import ModelValidationPolicy, require_amount_cents, validate_payload
from . import approval_service
from .concurrency import lock_for_update, run_with_retry
from .tenant_service import require_business, scoped_get, scoped_query

"""
Credit Ledger Invariants (authoritative)

- Append-only: entries are never updated; they disappear only when the
  owning customer is deleted.
- customer.credit_used_cents always equals the fold of the history in
  posting order: debits add, credits subtract, floored at zero.
- Every entry's balance_after_cents equals credit_used_cents right after
  its posting.
- Posting order is id order. Ids are assigned by the insert that follows the
  version-checked UPDATE, so they are serialized per customer; created_at is
  the transaction start time on some backends and must not be used to order.
- The entry insert and the aggregate update commit in one DB transaction,
  guarded by a version check on the customer row; lost updates surface as
  ConflictError and are retried from a fresh read.
- Credit-limit changes are direct field updates and create no entry.
"""


class CreditStatus(str, Enum):
    GOOD = "good"
    WARNING = "warning"
    HIGH_RISK = "high-risk"
    CASH_ONLY = "cash-only"


CUSTOMER_POLICY = ModelValidationPolicy(
    writable_fields={
        "first_name",
        "last_name",
        "email",
        "phone",
        "address",
        "city",
        "notes",
        "credit_limit_cents",
        "is_active",
    },
    required_on_create={"first_name", "last_name"},
)


@dataclass(frozen=True)
class _BalanceState:
    version_id: int
    credit_used_cents: int
    total_spent_cents: int
    is_active: bool


@dataclass(frozen=True)
class LedgerSnapshot:
    transactions: list
    degraded: bool = False


@dataclass(frozen=True)
class BalanceCheck:
    customer_id: int
    stored_cents: int
    computed_cents: int

    @property
    def consistent(self) -> bool:
        return self.stored_cents == self.computed_cents


# =============================================================================
# CUSTOMERS
# =============================================================================


def get_customer(business_id: int, customer_id: int) -> Customer:
    return scoped_get(Customer, customer_id, business_id, "Customer")


def list_customers(business_id: int, active_only: bool = False) -> list[Customer]:
    query = scoped_query(Customer, business_id)
    if active_only:
        query = query.filter(Customer.is_active.is_(True))
    return query.order_by(Customer.created_at.desc(), Customer.id.desc()).all()


def create_customer(business_id: int, payload: dict) -> Customer:
    require_business(business_id)
    patch = validate_payload(model=Customer, payload=payload, policy=CUSTOMER_POLICY, partial=False)
    if patch.get("credit_limit_cents") is not None:
        require_amount_cents("credit_limit_cents", patch["credit_limit_cents"], allow_zero=True)

    customer = Customer(business_id=business_id, credit_used_cents=0, total_spent_cents=0, **patch)
    db.session.add(customer)
    db.session.commit()
    return customer


def update_customer(business_id: int, customer_id: int, payload: dict) -> Customer:
    """
    Update profile fields. Balance aggregates are not writable here; they
    change only through record_transaction.
    """
    patch = validate_payload(model=Customer, payload=payload, policy=CUSTOMER_POLICY, partial=True)
    if patch.get("credit_limit_cents") is not None:
        require_amount_cents("credit_limit_cents", patch["credit_limit_cents"], allow_zero=True)

    def _op():
        customer = lock_for_update(
            scoped_query(Customer, business_id).filter(Customer.id == customer_id)
        ).first()
        if not customer:
            raise NotFoundError("Customer not found")
        for key, value in patch.items():
            setattr(customer, key, value)
        db.session.commit()
        return customer

    return run_with_retry(_op)


def delete_customer(business_id: int, customer_id: int) -> None:
    """Delete a customer and its ledger."""
    customer = get_customer(business_id, customer_id)
    db.session.delete(customer)
    db.session.commit()


def set_credit_limit(business_id: int, customer_id: int, new_limit_cents) -> Customer:
    """
    Set the customer's credit limit.

    Direct field update: no ledger entry is written, so limit history cannot
    be reconstructed from the ledger.
    """
    limit = require_amount_cents("credit_limit_cents", new_limit_cents, allow_zero=True)

    def _op():
        customer = get_customer(business_id, customer_id)
        customer.credit_limit_cents = limit
        db.session.commit()
        return customer

    return run_with_retry(_op)


def search_customers(business_id: int, term: str) -> list[Customer]:
    customers = list_customers(business_id)
    term = (term or "").strip().lower()
    if not term:
        return customers
    return [
        c for c in customers
        if term in (c.first_name or "").lower()
        or term in (c.last_name or "").lower()
        or term in (c.email or "").lower()
        or term in (c.phone or "")
        or term in (c.address or "").lower()
    ]


def credit_status(customer) -> CreditStatus:
    """
    Classify credit usage. Pure function of (credit_used, credit_limit).

    limit == 0 -> cash-only; usage < 70% good; < 90% warning; else high-risk.
    """
    limit = customer.credit_limit_cents
    if limit == 0:
        return CreditStatus.CASH_ONLY

    pct = customer.credit_used_cents / limit * 100
    if pct < 70:
        return CreditStatus.GOOD
    if pct < 90:
        return CreditStatus.WARNING
    return CreditStatus.HIGH_RISK


def customers_by_credit_status(business_id: int, status) -> list[Customer]:
    try:
        status = CreditStatus(status)
    except ValueError:
        raise ValidationError(f"Unknown credit status: {status}")
    return [c for c in list_customers(business_id) if credit_status(c) is status]


# =============================================================================
# LEDGER
# =============================================================================


def apply_transaction(balance_cents: int, transaction_type: str, amount_cents: int) -> int:
    """Balance after posting one entry: debits add, credits subtract floored at zero."""
    if transaction_type in DEBIT_TYPES:
        return balance_cents + amount_cents
    if transaction_type in CREDIT_TYPES:
        return max(0, balance_cents - amount_cents)
    raise ValidationError(f"Unknown transaction type: {transaction_type}")


def _load_balance_state(business_id: int, customer_id: int) -> _BalanceState:
    customer = scoped_query(Customer, business_id).filter(Customer.id == customer_id).first()
    if not customer:
        raise NotFoundError("Customer not found")
    return _BalanceState(
        version_id=customer.version_id,
        credit_used_cents=customer.credit_used_cents,
        total_spent_cents=customer.total_spent_cents,
        is_active=customer.is_active,
    )


def _find_by_idempotency_key(customer_id: int, idempotency_key: str) -> CustomerTransaction | None:
    return db.session.query(CustomerTransaction).filter_by(
        customer_id=customer_id,
        idempotency_key=idempotency_key,
    ).first()


def _same_posting(entry: CustomerTransaction, transaction_type: str, amount_cents: int) -> CustomerTransaction:
    """Return a replayed entry, or raise ConflictError if the key was used for a different posting."""
    if entry.transaction_type != transaction_type or entry.amount_cents != amount_cents:
        raise ConflictError(
            f"Idempotency key '{entry.idempotency_key}' was already used for "
            f"{entry.transaction_type} of {entry.amount_cents}"
        )
    return entry


def _authorize_posting(
    business_id: int,
    amount_cents: int,
    actor_user_id: str | None,
    secondary_approver_id: str | None,
) -> tuple[str | None, str | None]:
    """
    Apply the business's approval gate. Returns (approved_by, secondary_approved_by).
    """
    business = require_business(business_id)
    threshold = business.credit_approval_threshold_cents
    if threshold is None or amount_cents <= threshold:
        return None, None

    if not actor_user_id:
        raise UnauthorizedError("Approval required for amounts above the credit approval threshold")

    action = approval_service.ApprovalAction.CREDIT
    primary = approval_service.can_approve(business_id, actor_user_id, action, amount_cents)
    if primary.is_approved:
        return actor_user_id, None
    if primary.is_denied:
        # Keep the APPROVAL_DENIED event; nothing else is pending at this point
        db.session.commit()
        raise UnauthorizedError(primary.reason)

    if not secondary_approver_id:
        raise UnauthorizedError("Secondary approval required")
    if secondary_approver_id == actor_user_id:
        raise UnauthorizedError("Secondary approver must be a different user")
    secondary = approval_service.can_approve(business_id, secondary_approver_id, action, amount_cents)
    if not secondary.is_approved:
        db.session.commit()
        raise UnauthorizedError(f"Secondary approver: {secondary.reason}")
    return actor_user_id, secondary_approver_id


def record_transaction(
    business_id: int,
    customer_id: int,
    transaction_type: str,
    amount_cents,
    *,
    reference: str | None = None,
    note: str | None = None,
    idempotency_key: str | None = None,
    actor_user_id: str | None = None,
    secondary_approver_id: str | None = None,
) -> CustomerTransaction:
    """
    Post one ledger entry and update the customer's aggregates atomically.

    Replaying an idempotency_key returns the original entry without posting;
    replaying it with a different type or amount raises ConflictError.

    Raises:
        NotFoundError: customer absent
        ValidationError: amount <= 0, unknown type, inactive customer
        UnauthorizedError: approval gate not satisfied
        ConflictError: version conflicts persisted through every retry
        BackendUnavailableError: database unreachable; nothing was applied
    """
    if transaction_type not in TRANSACTION_TYPES:
        raise ValidationError(f"Unknown transaction type: {transaction_type}")
    amount = require_amount_cents("amount_cents", amount_cents)
    idempotency_key = (idempotency_key or "").strip() or None

    if idempotency_key:
        get_customer(business_id, customer_id)
        existing = _find_by_idempotency_key(customer_id, idempotency_key)
        if existing is not None:
            return _same_posting(existing, transaction_type, amount)

    approved_by, secondary_approved_by = _authorize_posting(
        business_id, amount, actor_user_id, secondary_approver_id
    )

    def _op():
        state = _load_balance_state(business_id, customer_id)
        if not state.is_active:
            raise ValidationError("Customer is not active")

        if idempotency_key:
            existing = _find_by_idempotency_key(customer_id, idempotency_key)
            if existing is not None:
                return existing

        new_balance = apply_transaction(state.credit_used_cents, transaction_type, amount)
        new_spent = state.total_spent_cents + (amount if transaction_type in DEBIT_TYPES else 0)

        # Check-and-increment: only succeeds if nobody wrote since our read
        result = db.session.execute(
            update(Customer)
            .where(Customer.id == customer_id, Customer.version_id == state.version_id)
            .values(
                credit_used_cents=new_balance,
                total_spent_cents=new_spent,
                version_id=state.version_id + 1,
                updated_at=db.func.now(),
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise ConflictError(f"Customer {customer_id} was modified concurrently")

        entry = CustomerTransaction(
            customer_id=customer_id,
            business_id=business_id,
            transaction_type=transaction_type,
            amount_cents=amount,
            balance_after_cents=new_balance,
            reference=reference,
            note=note,
            idempotency_key=idempotency_key,
            created_by=actor_user_id,
            approved_by=approved_by,
            secondary_approved_by=secondary_approved_by,
        )
        db.session.add(entry)
        db.session.commit()
        return entry

    try:
        entry = run_with_retry(_op)
    except IntegrityError:
        db.session.rollback()
        # Lost an idempotency race: the other request posted the entry
        if idempotency_key:
            existing = _find_by_idempotency_key(customer_id, idempotency_key)
            if existing is not None:
                return _same_posting(existing, transaction_type, amount)
        raise
    except OperationalError as exc:
        db.session.rollback()
        current_app.logger.error("Ledger write failed for customer %s: %s", customer_id, exc)
        raise BackendUnavailableError("Ledger store unavailable; transaction not recorded") from exc
    return _same_posting(entry, transaction_type, amount)


class LedgerHistory:
    """
    Lazy, restartable view of one customer's ledger, newest first (id desc).

    Every iteration re-reads the full history from the database. No
    incremental cursor is kept.
    """

    def __init__(self, business_id: int, customer_id: int):
        self.business_id = business_id
        self.customer_id = customer_id
        self._last_read: list[CustomerTransaction] | None = None

    def _query(self):
        return db.session.query(CustomerTransaction).filter(
            CustomerTransaction.business_id == self.business_id,
            CustomerTransaction.customer_id == self.customer_id,
        ).order_by(CustomerTransaction.id.desc())

    def __iter__(self):
        try:
            rows = self._query().all()
        except OperationalError as exc:
            db.session.rollback()
            raise BackendUnavailableError("Ledger store unavailable") from exc
        self._last_read = rows
        return iter(rows)

    def snapshot(self) -> LedgerSnapshot:
        """Read the history, degrading to the last read (or empty) on outage."""
        try:
            return LedgerSnapshot(list(self))
        except BackendUnavailableError:
            current_app.logger.warning("Serving degraded ledger for customer %s", self.customer_id)
            return LedgerSnapshot(list(self._last_read or []), degraded=True)


def query_ledger(business_id: int, customer_id: int) -> LedgerHistory:
    get_customer(business_id, customer_id)
    return LedgerHistory(business_id, customer_id)


def verify_balance(customer: Customer) -> BalanceCheck:
    """Recompute the balance from history (oldest first) and compare it with the stored aggregate."""
    entries = db.session.query(CustomerTransaction).filter_by(customer_id=customer.id).order_by(
        CustomerTransaction.id.asc()
    )
    computed = 0
    for entry in entries:
        computed = apply_transaction(computed, entry.transaction_type, entry.amount_cents)
    return BalanceCheck(customer.id, customer.credit_used_cents, computed)


def find_inconsistent_balances(business_id: int | None = None) -> list[BalanceCheck]:
    query = db.session.query(Customer)
    if business_id is not None:
        query = query.filter(Customer.business_id == business_id)
    checks = (verify_balance(c) for c in query.order_by(Customer.id).all())
    return [check for check in checks if not check.consistent]
