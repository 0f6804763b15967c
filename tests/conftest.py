"""Pytest fixtures for testing"""

import hashlib
import json
import pytest
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Callable, Generator, Optional
from cryptography.fernet import Fernet
from cryptography.hazmat.primitives.asymmetric import ec
from fastapi.testclient import TestClient
from jwt.algorithms import ECAlgorithm
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool
import httpx
import jwt

from mock_services.provider_server import main as provider_app
from moony_analytics.api.main import create_app
from moony_analytics.api import dependencies
from moony_analytics.infrastructure.database.models import Base, User
from moony_analytics.infrastructure.database.session import get_db
from moony_analytics.infrastructure.clients.plaid import PlaidClient
from moony_analytics.infrastructure.security.credentials import CredentialCipher
from moony_analytics.domain.models import ProcessedTransaction, VerificationKey


# Test database
TEST_DATABASE_URL = "sqlite://"
engine = create_engine(TEST_DATABASE_URL, connect_args={"check_same_thread": False}, poolclass=StaticPool)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

FIXED_NOW = datetime(2025, 6, 15, 12, 0, tzinfo=timezone.utc)
KEY_ID = "test-key-1"


class MutableClock:
    """Clock whose time tests can move"""

    def __init__(self, now: datetime = FIXED_NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def db() -> Generator[Session, None, None]:
    """Create test database and session"""
    Base.metadata.create_all(bind=engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def session_factory(db: Session) -> Callable[[], Session]:
    """Session factory bound to the test database (tables created by `db`)"""
    return TestingSessionLocal


@pytest.fixture
def clock() -> MutableClock:
    return MutableClock()


@pytest.fixture
def cipher() -> CredentialCipher:
    return CredentialCipher(Fernet.generate_key())


@pytest.fixture
def make_user(session_factory, cipher: CredentialCipher) -> Callable[..., str]:
    """Insert a user; pass access_token=None for a user who never connected"""

    def _make_user(
        user_id: str,
        item_id: Optional[str] = None,
        access_token: Optional[str] = "access-sandbox-token",
        connected_at: Optional[datetime] = FIXED_NOW - timedelta(minutes=10),
    ) -> str:
        with session_factory() as session:
            session.add(
                User(
                    id=user_id,
                    first_name="Test",
                    last_name="User",
                    plaid_item_id=item_id if item_id is not None else f"item-{user_id}",
                    plaid_access_token=cipher.encrypt(access_token) if access_token else None,
                    plaid_connected_at=connected_at,
                )
            )
            session.commit()
        return user_id

    return _make_user


@pytest.fixture
def signing_key() -> ec.EllipticCurvePrivateKey:
    return ec.generate_private_key(ec.SECP256R1())


@pytest.fixture
def verification_key(signing_key) -> VerificationKey:
    jwk = json.loads(ECAlgorithm.to_jwk(signing_key.public_key()))
    return VerificationKey(key_id=KEY_ID, jwk=jwk, expires_at=None)


@pytest.fixture
def sign_webhook(signing_key) -> Callable[..., str]:
    """Build a Plaid-Verification token for a body"""

    def _sign(body: bytes, issued_at: Optional[datetime] = None, key_id: str = KEY_ID, body_hash: Optional[str] = None) -> str:
        issued_at = issued_at or FIXED_NOW
        claims = {
            "iat": int(issued_at.timestamp()),
            "request_body_sha256": body_hash or hashlib.sha256(body).hexdigest(),
        }
        return jwt.encode(claims, signing_key, algorithm="ES256", headers={"kid": key_id})

    return _sign


@pytest.fixture
def client(db: Session, session_factory) -> TestClient:
    """Create FastAPI test client with test database"""
    app = create_app()

    def override_get_db():
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[dependencies.get_session_factory] = lambda: session_factory
    return TestClient(app)


def _spend(day: str, amount: str, category: Optional[str] = None, txn_id: Optional[str] = None) -> ProcessedTransaction:
    """Shorthand for an already-filtered spending transaction"""
    return ProcessedTransaction(
        transaction_id=txn_id or f"txn-{day}-{amount}",
        amount=Decimal(amount),
        date=datetime.fromisoformat(day).date(),
        account_id="acc-1",
        merchant_name="Store",
        category=category,
    )


@pytest.fixture
def sample_transactions() -> list[ProcessedTransaction]:
    """Four historical months (May..Feb 2025) plus current-month spend, relative to FIXED_NOW"""
    return [
        _spend("2025-06-03", "25.50"),
        _spend("2025-06-10", "14.50"),
        _spend("2025-05-20", "100.00"),
        _spend("2025-04-11", "120.00"),
        _spend("2025-04-25", "180.00"),
        _spend("2025-03-02", "200.00"),
        _spend("2025-02-14", "400.00"),
    ]


@pytest.fixture
def spend() -> Callable[..., ProcessedTransaction]:
    return _spend


def provider_record(txn_id: str, day: str, amount: float, category: Optional[list[str]] = None) -> dict:
    return {
        "transaction_id": txn_id,
        "account_id": "acc-1",
        "amount": amount,
        "date": day,
        "merchant_name": "Store",
        "category": category or ["Shops"],
    }


@pytest.fixture
def provider_records() -> list[dict]:
    """Raw provider history behind sample_transactions, plus records the filter must drop"""
    return [
        provider_record("t1", "2025-06-03", 25.50),
        provider_record("t2", "2025-06-10", 14.50),
        provider_record("t3", "2025-05-20", 100.00),
        provider_record("t4", "2025-04-11", 120.00),
        provider_record("t5", "2025-04-25", 180.00),
        provider_record("t6", "2025-03-02", 200.00),
        provider_record("t7", "2025-02-14", 400.00),
        provider_record("t8", "2025-01-31", -2000.00, ["Payroll"]),
        provider_record("t9", "2025-05-02", 500.00, ["Transfer", "Debit"]),
        provider_record("t10", "2025-05-03", 0.01),
        provider_record("t11", "2024-11-01", 999.00),
    ]


@pytest.fixture
def plaid_client(provider_records, verification_key) -> Generator[PlaidClient, None, None]:
    """PlaidClient wired to the in-process mock provider"""
    provider_app.TRANSACTIONS["access-sandbox-token"] = provider_records
    provider_app.VERIFICATION_KEYS[KEY_ID] = {**verification_key.jwk, "kid": KEY_ID, "alg": "ES256", "expired_at": None}
    try:
        yield PlaidClient(
            base_url="http://provider",
            client_id="client",
            secret="secret",
            page_size=4,
            transport=httpx.ASGITransport(app=provider_app.app),
        )
    finally:
        provider_app.TRANSACTIONS.clear()
        provider_app.VERIFICATION_KEYS.clear()
