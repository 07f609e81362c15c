"""
Pytest fixtures for CreditDesk backend tests.

Provides test database setup, business/customer fixtures, and test client.
"""

import pytest
from creditdesk import create_app
from creditdesk.config import TestingConfig
from creditdesk.extensions import db
from creditdesk.services import approval_service, ledger_service, membership_service


OWNER_ID = "owner-1"


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app(TestingConfig)

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def business(db_session):
    """Business A with its owner as admin and the default approval roles."""
    return membership_service.create_business(
        "Duka A",
        OWNER_ID,
        owner_first_name="Asha",
        owner_last_name="Owner",
        owner_email="asha@duka-a.test",
    )


@pytest.fixture(scope='function')
def other_business(db_session):
    """Business B (second tenant)."""
    return membership_service.create_business("Duka B", "owner-2")


@pytest.fixture(scope='function')
def customer(business):
    return ledger_service.create_customer(business.id, {
        "first_name": "Juma",
        "last_name": "Mteja",
        "email": "juma@example.test",
        "phone": "+255700000001",
        "credit_limit_cents": 100_000,
    })


@pytest.fixture(scope='function')
def credit_roles(business):
    """
    Three credit roles:
    - junior:  max 1000, secondary up to 5000
    - senior:  max 10000
    - sales:   orders only
    """
    junior = approval_service.create_role(business.id, {
        "name": "junior",
        "can_approve_credit": True,
        "max_approval_amount_cents": 1000,
        "requires_secondary_approval": True,
        "secondary_approval_amount_cents": 5000,
    })
    senior = approval_service.create_role(business.id, {
        "name": "senior",
        "can_approve_credit": True,
        "max_approval_amount_cents": 10000,
    })
    sales = approval_service.create_role(business.id, {
        "name": "sales",
        "can_approve_orders": True,
        "can_approve_credit": False,
        "max_approval_amount_cents": 10000,
    })
    return {"junior": junior, "senior": senior, "sales": sales}


@pytest.fixture(scope='function')
def add_member(db_session):
    """Factory: join `business` as `user_id` and approve the request."""
    def _add(business, user_id: str, role: str = "sales_rep"):
        result = membership_service.join_business(
            business.business_code, role, user_id, first_name=user_id.title(), email=f"{user_id}@example.test"
        )
        return membership_service.approve_member(business.id, result.pending.id, approved_by=OWNER_ID)
    return _add


@pytest.fixture(scope='function')
def auth_headers(app):
    """Helper to create identity headers as forwarded by the upstream provider."""
    header = app.config["IDENTITY_HEADER"]
    return lambda user_id: {header: user_id}
