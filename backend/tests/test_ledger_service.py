# Overview: Pytest coverage for the customer credit ledger.

"""
Credit Ledger Tests

Verifies:
1. The running balance equals the fold of the history (debits add, credits
   subtract, floored at zero) and every entry records the balance after it
2. Idempotency keys post an entry once
3. Version conflicts between concurrent writers are retried from fresh state
4. The approval gate on large postings
5. Outage behavior: degraded reads, loud writes
"""

from datetime import datetime
from types import SimpleNamespace

import pytest
from sqlalchemy.exc import OperationalError

from creditdesk.errors import (
    BackendUnavailableError, ConflictError, NotFoundError, UnauthorizedError, ValidationError,
)
from creditdesk.models import CustomerTransaction, SecurityEvent
from creditdesk.services import approval_service, ledger_service
from creditdesk.services.ledger_service import CreditStatus, LedgerHistory


def _outage(*args, **kwargs):
    raise OperationalError("SELECT 1", {}, Exception("database is locked"))


def _entries(db_session, customer):
    return db_session.query(CustomerTransaction).filter_by(customer_id=customer.id).order_by(
        CustomerTransaction.id
    ).all()


class TestBalanceFold:

    def test_sequence_matches_fold(self, db_session, business, customer):
        """invoice 30000, payment 10000, invoice 5000, refund 50000 -> 0 (clamped)."""
        postings = [
            ("invoice", 30_000, 30_000),
            ("payment", 10_000, 20_000),
            ("invoice", 5_000, 25_000),
            ("refund", 50_000, 0),
        ]
        for tx_type, amount, expected in postings:
            entry = ledger_service.record_transaction(business.id, customer.id, tx_type, amount)
            assert entry.balance_after_cents == expected

        customer = ledger_service.get_customer(business.id, customer.id)
        assert customer.credit_used_cents == 0
        assert customer.total_spent_cents == 35_000
        assert ledger_service.verify_balance(customer).consistent

    def test_credit_adjustment_reduces_balance(self, db_session, business, customer):
        ledger_service.record_transaction(business.id, customer.id, "invoice", 8_000)
        entry = ledger_service.record_transaction(business.id, customer.id, "credit-adjustment", 3_000)

        assert entry.balance_after_cents == 5_000
        assert ledger_service.get_customer(business.id, customer.id).credit_used_cents == 5_000

    def test_overpayment_clamps_at_zero(self, db_session, business, customer):
        ledger_service.record_transaction(business.id, customer.id, "invoice", 1_000)
        entry = ledger_service.record_transaction(business.id, customer.id, "payment", 4_000)

        assert entry.balance_after_cents == 0
        assert entry.amount_cents == 4_000

    def test_apply_transaction_pure(self):
        assert ledger_service.apply_transaction(100, "invoice", 50) == 150
        assert ledger_service.apply_transaction(100, "refund", 150) == 0
        with pytest.raises(ValidationError):
            ledger_service.apply_transaction(100, "gift", 5)

    def test_history_newest_first(self, db_session, business, customer):
        ids = [
            ledger_service.record_transaction(business.id, customer.id, "invoice", amount).id
            for amount in (100, 200, 300)
        ]
        history = ledger_service.query_ledger(business.id, customer.id)
        assert [t.id for t in history] == list(reversed(ids))

    def test_posting_order_ignores_timestamps(self, db_session, business, customer):
        """A later posting stamped earlier (transaction-start clocks) keeps its place."""
        ledger_service.record_transaction(business.id, customer.id, "invoice", 1_000)
        ledger_service.record_transaction(business.id, customer.id, "payment", 1_500)
        last_id = ledger_service.record_transaction(business.id, customer.id, "invoice", 300).id

        db_session.query(CustomerTransaction).filter_by(id=last_id).update(
            {"created_at": datetime(2000, 1, 1)}, synchronize_session=False
        )
        db_session.commit()

        history = list(ledger_service.query_ledger(business.id, customer.id))
        assert history[0].id == last_id
        customer = ledger_service.get_customer(business.id, customer.id)
        assert customer.credit_used_cents == 300
        assert ledger_service.verify_balance(customer).consistent

    def test_history_restarts_from_source(self, db_session, business, customer):
        history = ledger_service.query_ledger(business.id, customer.id)
        assert list(history) == []

        ledger_service.record_transaction(business.id, customer.id, "invoice", 700)
        assert [t.amount_cents for t in history] == [700]


class TestValidation:

    @pytest.mark.parametrize("amount", [0, -5, 1.5, "1e3", "10.50", True, None])
    def test_rejects_bad_amounts(self, db_session, business, customer, amount):
        with pytest.raises(ValidationError):
            ledger_service.record_transaction(business.id, customer.id, "invoice", amount)
        assert _entries(db_session, customer) == []

    def test_rejects_unknown_type(self, db_session, business, customer):
        with pytest.raises(ValidationError):
            ledger_service.record_transaction(business.id, customer.id, "gift", 100)

    def test_missing_customer(self, db_session, business):
        with pytest.raises(NotFoundError):
            ledger_service.record_transaction(business.id, 99999, "invoice", 100)

    def test_inactive_customer_rejected(self, db_session, business, customer):
        ledger_service.update_customer(business.id, customer.id, {"is_active": False})
        with pytest.raises(ValidationError):
            ledger_service.record_transaction(business.id, customer.id, "invoice", 100)

    def test_cross_tenant_customer_is_not_found(self, db_session, business, other_business, customer):
        with pytest.raises(NotFoundError):
            ledger_service.record_transaction(other_business.id, customer.id, "invoice", 100)
        with pytest.raises(NotFoundError):
            ledger_service.query_ledger(other_business.id, customer.id)


class TestIdempotency:

    def test_replay_posts_once(self, db_session, business, customer):
        first = ledger_service.record_transaction(
            business.id, customer.id, "invoice", 2_500, idempotency_key="inv-001"
        )
        replay = ledger_service.record_transaction(
            business.id, customer.id, "invoice", 2_500, idempotency_key="inv-001"
        )

        assert replay.id == first.id
        assert len(_entries(db_session, customer)) == 1
        assert ledger_service.get_customer(business.id, customer.id).credit_used_cents == 2_500

    def test_distinct_keys_post_separately(self, db_session, business, customer):
        ledger_service.record_transaction(business.id, customer.id, "invoice", 100, idempotency_key="a")
        ledger_service.record_transaction(business.id, customer.id, "invoice", 100, idempotency_key="b")
        assert len(_entries(db_session, customer)) == 2

    def test_replay_with_different_posting_conflicts(self, db_session, business, customer):
        ledger_service.record_transaction(business.id, customer.id, "invoice", 2_500, idempotency_key="inv-002")

        with pytest.raises(ConflictError):
            ledger_service.record_transaction(
                business.id, customer.id, "invoice", 3_000, idempotency_key="inv-002"
            )
        with pytest.raises(ConflictError):
            ledger_service.record_transaction(
                business.id, customer.id, "payment", 2_500, idempotency_key="inv-002"
            )
        assert len(_entries(db_session, customer)) == 1
        assert ledger_service.get_customer(business.id, customer.id).credit_used_cents == 2_500

    def test_lost_key_race_returns_winner(self, db_session, business, customer, monkeypatch):
        """Both key lookups miss, so the unique constraint decides; the loser returns the winner's entry."""
        winner = ledger_service.record_transaction(
            business.id, customer.id, "invoice", 500, idempotency_key="inv-race"
        )
        winner_id = winner.id
        version_before = ledger_service.get_customer(business.id, customer.id).version_id

        real_find = ledger_service._find_by_idempotency_key
        calls = {"n": 0}

        def late_find(customer_id, idempotency_key):
            calls["n"] += 1
            if calls["n"] <= 2:
                return None
            return real_find(customer_id, idempotency_key)

        monkeypatch.setattr(ledger_service, "_find_by_idempotency_key", late_find)
        replay = ledger_service.record_transaction(
            business.id, customer.id, "invoice", 500, idempotency_key="inv-race"
        )

        assert replay.id == winner_id
        assert len(_entries(db_session, customer)) == 1
        customer = ledger_service.get_customer(business.id, customer.id)
        assert customer.credit_used_cents == 500
        assert customer.version_id == version_before


class TestConcurrency:

    def test_interleaved_writer_is_retried(self, db_session, business, customer, monkeypatch):
        """A competing posting lands between our read and write; ours retries and both apply."""
        real_load = ledger_service._load_balance_state
        state = {"interleaved": False}

        def interleaving_load(business_id, customer_id):
            snapshot = real_load(business_id, customer_id)
            if not state["interleaved"]:
                state["interleaved"] = True
                ledger_service.record_transaction(business_id, customer_id, "invoice", 5_000)
            return snapshot

        monkeypatch.setattr(ledger_service, "_load_balance_state", interleaving_load)
        entry = ledger_service.record_transaction(business.id, customer.id, "invoice", 3_000)

        assert entry.balance_after_cents == 8_000
        customer = ledger_service.get_customer(business.id, customer.id)
        assert customer.credit_used_cents == 8_000
        assert [e.balance_after_cents for e in _entries(db_session, customer)] == [5_000, 8_000]
        assert ledger_service.verify_balance(customer).consistent

    def test_interleaved_credits_clamp_in_posting_order(self, db_session, business, customer, monkeypatch):
        """invoice 1000; a payment of 800 lands before our refund of 500 -> 200 - 500 clamps to 0."""
        ledger_service.record_transaction(business.id, customer.id, "invoice", 1_000)
        real_load = ledger_service._load_balance_state
        state = {"interleaved": False}

        def interleaving_load(business_id, customer_id):
            snapshot = real_load(business_id, customer_id)
            if not state["interleaved"]:
                state["interleaved"] = True
                ledger_service.record_transaction(business_id, customer_id, "payment", 800)
            return snapshot

        monkeypatch.setattr(ledger_service, "_load_balance_state", interleaving_load)
        entry = ledger_service.record_transaction(business.id, customer.id, "refund", 500)

        assert entry.balance_after_cents == 0
        assert [e.balance_after_cents for e in _entries(db_session, customer)] == [1_000, 200, 0]
        assert ledger_service.verify_balance(ledger_service.get_customer(business.id, customer.id)).consistent

    def test_persistent_conflict_surfaces(self, app, db_session, business, customer, monkeypatch):
        real_load = ledger_service._load_balance_state
        depth = {"n": 0}

        def always_interleave(business_id, customer_id):
            snapshot = real_load(business_id, customer_id)
            if depth["n"] == 0:
                depth["n"] += 1
                try:
                    ledger_service.record_transaction(business_id, customer_id, "invoice", 10)
                finally:
                    depth["n"] -= 1
            return snapshot

        monkeypatch.setattr(ledger_service, "_load_balance_state", always_interleave)
        with pytest.raises(ConflictError):
            ledger_service.record_transaction(business.id, customer.id, "invoice", 999)

        attempts = app.config["LEDGER_RETRY_ATTEMPTS"]
        entries = _entries(db_session, customer)
        assert [e.amount_cents for e in entries] == [10] * attempts
        customer = ledger_service.get_customer(business.id, customer.id)
        assert customer.credit_used_cents == 10 * attempts


class TestCreditLimit:

    def test_limit_change_creates_no_entry(self, db_session, business, customer):
        ledger_service.record_transaction(business.id, customer.id, "invoice", 1_000)
        updated = ledger_service.set_credit_limit(business.id, customer.id, 250_000)

        assert updated.credit_limit_cents == 250_000
        assert updated.credit_used_cents == 1_000
        assert len(_entries(db_session, customer)) == 1

    def test_limit_must_be_non_negative(self, db_session, business, customer):
        with pytest.raises(ValidationError):
            ledger_service.set_credit_limit(business.id, customer.id, -1)

    def test_balance_fields_not_writable(self, db_session, business, customer):
        with pytest.raises(ValidationError):
            ledger_service.update_customer(business.id, customer.id, {"credit_used_cents": 0})


class TestCreditStatus:

    @pytest.mark.parametrize("used,limit,expected", [
        (0, 0, CreditStatus.CASH_ONLY),
        (500, 0, CreditStatus.CASH_ONLY),
        (0, 1000, CreditStatus.GOOD),
        (500, 1000, CreditStatus.GOOD),
        (700, 1000, CreditStatus.WARNING),
        (800, 1000, CreditStatus.WARNING),
        (900, 1000, CreditStatus.HIGH_RISK),
        (950, 1000, CreditStatus.HIGH_RISK),
        (1500, 1000, CreditStatus.HIGH_RISK),
    ])
    def test_bands(self, used, limit, expected):
        customer = SimpleNamespace(credit_used_cents=used, credit_limit_cents=limit)
        assert ledger_service.credit_status(customer) is expected

    def test_customers_by_status(self, db_session, business, customer):
        cash = ledger_service.create_customer(business.id, {"first_name": "Cash", "last_name": "Only"})
        ledger_service.record_transaction(business.id, customer.id, "invoice", 95_000)

        assert [c.id for c in ledger_service.customers_by_credit_status(business.id, "high-risk")] == [customer.id]
        assert [c.id for c in ledger_service.customers_by_credit_status(business.id, "cash-only")] == [cash.id]
        with pytest.raises(ValidationError):
            ledger_service.customers_by_credit_status(business.id, "excellent")


class TestCustomers:

    def test_search(self, db_session, business, customer):
        ledger_service.create_customer(business.id, {"first_name": "Neema", "last_name": "Shop"})

        assert [c.id for c in ledger_service.search_customers(business.id, "juma")] == [customer.id]
        assert [c.id for c in ledger_service.search_customers(business.id, "0700000001")] == [customer.id]
        assert len(ledger_service.search_customers(business.id, "")) == 2

    def test_create_requires_names(self, db_session, business):
        with pytest.raises(ValidationError):
            ledger_service.create_customer(business.id, {"first_name": "Only"})

    def test_delete_removes_ledger(self, db_session, business, customer):
        ledger_service.record_transaction(business.id, customer.id, "invoice", 100)
        ledger_service.delete_customer(business.id, customer.id)

        assert db_session.query(CustomerTransaction).count() == 0
        with pytest.raises(NotFoundError):
            ledger_service.get_customer(business.id, customer.id)

    def test_find_inconsistent_balances(self, db_session, business, customer):
        ledger_service.record_transaction(business.id, customer.id, "invoice", 400)
        assert ledger_service.find_inconsistent_balances(business.id) == []

        customer.credit_used_cents = 1
        db_session.commit()
        [check] = ledger_service.find_inconsistent_balances(business.id)
        assert (check.customer_id, check.stored_cents, check.computed_cents) == (customer.id, 1, 400)


class TestApprovalGate:

    @pytest.fixture
    def gated(self, db_session, business, credit_roles):
        business.credit_approval_threshold_cents = 2_000
        db_session.commit()
        approval_service.assign_user_to_role(business.id, "clerk", credit_roles["junior"].id)
        approval_service.assign_user_to_role(business.id, "manager", credit_roles["senior"].id)
        approval_service.assign_user_to_role(business.id, "seller", credit_roles["sales"].id)
        return business

    def test_below_threshold_needs_no_approver(self, gated, customer):
        entry = ledger_service.record_transaction(gated.id, customer.id, "invoice", 2_000)
        assert entry.approved_by is None

    def test_above_threshold_without_actor_rejected(self, db_session, gated, customer):
        with pytest.raises(UnauthorizedError):
            ledger_service.record_transaction(gated.id, customer.id, "invoice", 3_000)
        assert _entries(db_session, customer) == []

    def test_actor_within_authority(self, gated, customer):
        entry = ledger_service.record_transaction(
            gated.id, customer.id, "invoice", 3_000, actor_user_id="manager"
        )
        assert entry.approved_by == "manager"
        assert entry.secondary_approved_by is None

    def test_actor_without_credit_capability(self, gated, customer):
        with pytest.raises(UnauthorizedError):
            ledger_service.record_transaction(gated.id, customer.id, "invoice", 3_000, actor_user_id="seller")

    def test_denial_is_recorded(self, db_session, gated, customer):
        with pytest.raises(UnauthorizedError):
            ledger_service.record_transaction(gated.id, customer.id, "invoice", 3_000, actor_user_id="seller")

        db_session.rollback()
        assert db_session.query(SecurityEvent).filter_by(
            event_type="APPROVAL_DENIED", user_id="seller"
        ).count() == 1

    def test_secondary_approval_required(self, db_session, gated, customer):
        with pytest.raises(UnauthorizedError):
            ledger_service.record_transaction(gated.id, customer.id, "invoice", 3_000, actor_user_id="clerk")

        with pytest.raises(UnauthorizedError):
            ledger_service.record_transaction(
                gated.id, customer.id, "invoice", 3_000, actor_user_id="clerk", secondary_approver_id="clerk"
            )

        entry = ledger_service.record_transaction(
            gated.id, customer.id, "invoice", 3_000, actor_user_id="clerk", secondary_approver_id="manager"
        )
        assert (entry.approved_by, entry.secondary_approved_by) == ("clerk", "manager")
        assert len(_entries(db_session, customer)) == 1


class TestOutage:

    def test_snapshot_degrades_to_last_read(self, db_session, business, customer, monkeypatch):
        ledger_service.record_transaction(business.id, customer.id, "invoice", 100)
        history = ledger_service.query_ledger(business.id, customer.id)
        fresh = history.snapshot()
        assert not fresh.degraded

        monkeypatch.setattr(LedgerHistory, "_query", _outage)
        stale = history.snapshot()

        assert stale.degraded
        assert [t.id for t in stale.transactions] == [t.id for t in fresh.transactions]

    def test_snapshot_degrades_to_empty(self, db_session, business, customer, monkeypatch):
        history = ledger_service.query_ledger(business.id, customer.id)
        monkeypatch.setattr(LedgerHistory, "_query", _outage)

        snapshot = history.snapshot()
        assert snapshot.degraded
        assert snapshot.transactions == []
        with pytest.raises(BackendUnavailableError):
            list(history)

    def test_write_fails_loudly(self, db_session, business, customer, monkeypatch):
        monkeypatch.setattr(ledger_service, "_load_balance_state", _outage)

        with pytest.raises(BackendUnavailableError):
            ledger_service.record_transaction(business.id, customer.id, "invoice", 100)

        monkeypatch.undo()
        assert _entries(db_session, customer) == []
        assert ledger_service.get_customer(business.id, customer.id).credit_used_cents == 0
