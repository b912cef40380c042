"""Shared pytest fixtures for test suite"""
import os
from datetime import datetime, timedelta, timezone
from typing import Generator

# Settings must be in place before disputekit is imported
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["JWT_SECRET"] = "test-jwt-secret"
os.environ["TOKEN_ENCRYPTION_SECRET"] = "test-token-encryption-secret"
os.environ["STRIPE_SECRET_KEY"] = "sk_test_platform"
os.environ["STRIPE_CLIENT_ID"] = "ca_test_client"
os.environ["OPENROUTER_API_KEY"] = "or-test-key"
os.environ["APP_URL"] = "http://testserver.local"
os.environ["REMOTE_SUBMIT_ENABLED"] = "true"

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from disputekit import cipher
from disputekit.auth import create_access_token, sign_up
from disputekit.database import Base, get_db
from disputekit.main import app
from disputekit.models import Dispute, StripeAccount, User

# SQLite in-memory database for testing
test_engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)

PASSWORD = "TestPassword123!"


@pytest.fixture
def db_session() -> Generator[Session, None, None]:
    """Fresh in-memory database session for each test"""
    Base.metadata.create_all(bind=test_engine)
    session = TestSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=test_engine)


@pytest.fixture
def client(db_session: Session) -> Generator[TestClient, None, None]:
    """FastAPI test client bound to the test database"""
    def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    try:
        with TestClient(app) as test_client:
            yield test_client
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def user(db_session: Session) -> User:
    return sign_up(db_session, "merchant@example.com", PASSWORD)


@pytest.fixture
def other_user(db_session: Session) -> User:
    return sign_up(db_session, "someone-else@example.com", PASSWORD)


@pytest.fixture
def auth_headers(user: User) -> dict:
    return {"Authorization": f"Bearer {create_access_token(user)}"}


@pytest.fixture
def connect_account(db_session: Session):
    """Factory storing a connected Stripe account with encrypted tokens"""
    def _connect(owner: User, stripe_account_id: str = "acct_merchant",
                 access_token: str = "sk_connected_access", expires_in: int = 3600) -> StripeAccount:
        account = StripeAccount(
            user_id=owner.id,
            stripe_account_id=stripe_account_id,
            stripe_email=owner.email,
            access_token_encrypted=cipher.encrypt(access_token),
            refresh_token_encrypted=cipher.encrypt("rt_connected_refresh"),
            token_expires_at=datetime.now(timezone.utc) + timedelta(seconds=expires_in),
        )
        db_session.add(account)
        db_session.commit()
        return account
    return _connect


@pytest.fixture
def connected_account(user: User, connect_account) -> StripeAccount:
    return connect_account(user)


@pytest.fixture
def make_dispute(db_session: Session):
    """Factory storing a mirrored dispute"""
    def _make(owner: User, stripe_dispute_id: str = "dp_local", stripe_account_id: str = "acct_merchant",
              **fields) -> Dispute:
        values = {
            "charge_id": "ch_123",
            "reason": "fraud",
            "amount": 5000,
            "currency": "usd",
            "status": "needs_response",
            "payment_method_details": {"card": {"brand": "visa", "last4": "4242"}},
            "created_at": datetime(2025, 10, 9, 12, 0, tzinfo=timezone.utc),
        }
        values.update(fields)
        dispute = Dispute(
            user_id=owner.id,
            stripe_account_id=stripe_account_id,
            stripe_dispute_id=stripe_dispute_id,
            **values
        )
        db_session.add(dispute)
        db_session.commit()
        return dispute
    return _make


@pytest.fixture
def stripe_dispute():
    """Factory building a Stripe dispute object as returned by Dispute.list"""
    def _build(dispute_id: str = "dp_123", **overrides) -> dict:
        obj = {
            "id": dispute_id,
            "object": "dispute",
            "charge": "ch_123",
            "reason": "fraud",
            "amount": 5000,
            "currency": "usd",
            "status": "needs_response",
            "evidence_details": {"due_by": 1767225600},
            "payment_method_details": {"type": "card", "card": {"brand": "visa", "last4": "4242"}},
            "created": 1760000000,
        }
        obj.update(overrides)
        return obj
    return _build
