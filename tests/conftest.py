"""
Pytest configuration and fixtures for the payment-links tests.
"""

import os

# Settings are read at import time, so the environment comes first
os.environ.setdefault("JWT_SECRET", "test-jwt-secret")
os.environ.setdefault("ENCRYPTION_KEY", "0123456789abcdef" * 4)
os.environ["SQLITE_URL"] = "sqlite://"
os.environ["LOG_DIR"] = ""
os.environ["APP_URL"] = "https://links.example.com"
os.environ["GATEWAY_TEST_MODE"] = "false"

from datetime import datetime, timedelta  # noqa: E402
from decimal import Decimal  # noqa: E402
from typing import Dict, List, Optional  # noqa: E402
from uuid import uuid4  # noqa: E402

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402
from sqlmodel import Session, SQLModel, create_engine  # noqa: E402

from src.application.merchant_service import pwd_context  # noqa: E402
from src.core.exceptions import PaymentNotFoundError  # noqa: E402
from src.domain.models import LinkStatus, Merchant, PaymentLink, utcnow  # noqa: E402
from src.infrastructure.clients.mercadopago_client import (  # noqa: E402
    GatewayPaymentStatus,
    GatewayPreference,
)
from src.infrastructure.crypto.credential_store import CredentialStore  # noqa: E402
from src.infrastructure.database.session import get_session  # noqa: E402
from src.infrastructure.realtime.notifier import RealtimeNotifier  # noqa: E402
from src.infrastructure.services import jwt_service  # noqa: E402
from src.interfaces.http.dependencies import (  # noqa: E402
    get_credential_store,
    get_gateway_client,
    get_notifier,
)
from src.main import app  # noqa: E402

TEST_ENCRYPTION_KEY = "0123456789abcdef" * 4
MERCHANT_ACCESS_TOKEN = "TEST-1234567890-merchant-token"
MERCHANT_PASSWORD = "secret123"


class FakeGatewayClient:
    """
    In-memory stand-in for MercadoPagoClient.
    Payments are seeded with `set_payment`; errors can be injected per call.
    """

    def __init__(self):
        self.payments: Dict[str, GatewayPaymentStatus] = {}
        self.created: List[dict] = []
        self.expired: List[str] = []
        self.status_calls: List[tuple] = []
        self.create_error: Optional[Exception] = None
        self.status_error: Optional[Exception] = None
        self.expire_error: Optional[Exception] = None

    def set_payment(
        self,
        payment_id: str,
        status: str,
        external_reference: Optional[str] = None,
        payment_method: str = "pix",
        payer_email: str = "payer@example.com",
    ) -> GatewayPaymentStatus:
        payment = GatewayPaymentStatus(
            payment_id=payment_id,
            status=status,
            status_detail="accredited" if status == "approved" else None,
            payment_method=payment_method,
            transaction_amount=Decimal("25.99"),
            payer_email=payer_email,
            approved_at=utcnow() if status == "approved" else None,
            external_reference=external_reference,
        )
        self.payments[payment_id] = payment
        return payment

    async def create_link(
        self, access_token, description, amount, payer, external_reference
    ) -> GatewayPreference:
        if self.create_error is not None:
            raise self.create_error
        self.created.append(
            {
                "access_token": access_token,
                "description": description,
                "amount": amount,
                "payer": payer,
                "external_reference": external_reference,
            }
        )
        preference_id = f"pref-{len(self.created)}"
        return GatewayPreference(
            gateway_reference_id=preference_id,
            payment_url=f"https://www.mercadopago.com.br/checkout/v1/redirect?pref_id={preference_id}",
            sandbox_url=f"https://sandbox.mercadopago.com.br/checkout/v1/redirect?pref_id={preference_id}",
            expires_at=utcnow() + timedelta(hours=24),
        )

    async def get_payment_status(self, access_token, payment_transaction_id):
        self.status_calls.append((access_token, payment_transaction_id))
        if self.status_error is not None:
            raise self.status_error
        if payment_transaction_id not in self.payments:
            raise PaymentNotFoundError(f"Payment {payment_transaction_id} not found")
        return self.payments[payment_transaction_id]

    async def expire_preference(self, access_token, gateway_reference_id):
        if self.expire_error is not None:
            raise self.expire_error
        self.expired.append(gateway_reference_id)


@pytest.fixture(scope="function")
def engine():
    """
    Fresh in-memory SQLite database for each test.
    StaticPool keeps a single connection so every session sees the same data.
    """
    test_engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(test_engine)
    yield test_engine
    SQLModel.metadata.drop_all(test_engine)
    test_engine.dispose()


@pytest.fixture(scope="function")
def session(engine):
    with Session(engine) as db_session:
        yield db_session


@pytest.fixture
def credential_store():
    return CredentialStore(TEST_ENCRYPTION_KEY)


@pytest.fixture
def notifier():
    return RealtimeNotifier()


@pytest.fixture
def fake_gateway():
    return FakeGatewayClient()


def _create_merchant(session, credential_store, email: str, name: str) -> Merchant:
    merchant = Merchant(
        name=name,
        email=email,
        hashed_password=pwd_context.hash(MERCHANT_PASSWORD),
        store_name=f"{name} Store",
        access_token=credential_store.encrypt(MERCHANT_ACCESS_TOKEN),
        public_key="TEST-public-key-123",
    )
    session.add(merchant)
    session.commit()
    session.refresh(merchant)
    return merchant


@pytest.fixture
def merchant(session, credential_store):
    """Merchant with valid (sandbox) gateway credentials."""
    return _create_merchant(session, credential_store, "merchant@example.com", "Ana")


@pytest.fixture
def other_merchant(session, credential_store):
    return _create_merchant(session, credential_store, "other@example.com", "Bruno")


@pytest.fixture
def make_link(session):
    """Factory inserting payment links directly, bypassing the gateway."""

    def _make_link(
        merchant: Merchant,
        status: str = LinkStatus.PENDING.value,
        amount: str = "25.99",
        expires_at: Optional[datetime] = None,
        payment_transaction_id: Optional[str] = None,
        gateway_reference_id: Optional[str] = None,
        created_at: Optional[datetime] = None,
    ) -> PaymentLink:
        link = PaymentLink(
            merchant_id=merchant.id,
            description="Consultoria",
            amount=Decimal(amount),
            status=status,
            external_reference=str(uuid4()),
            gateway_reference_id=gateway_reference_id or f"pref-{uuid4().hex[:8]}",
            payment_url="https://www.mercadopago.com.br/checkout/v1/redirect?pref_id=x",
            sandbox_url="https://sandbox.mercadopago.com.br/checkout/v1/redirect?pref_id=x",
            payment_transaction_id=payment_transaction_id,
            payer_email="cliente@example.com",
            payer_name="Cliente Teste",
            expires_at=expires_at or utcnow() + timedelta(hours=24),
            paid_at=utcnow() if status == LinkStatus.PAID.value else None,
        )
        if created_at is not None:
            link.created_at = created_at
        session.add(link)
        session.commit()
        session.refresh(link)
        return link

    return _make_link


@pytest.fixture(scope="function")
def client(session, fake_gateway, notifier, credential_store):
    """
    Test client with the database session, gateway and notifier overridden.
    """

    def override_get_session():
        yield session

    app.dependency_overrides[get_session] = override_get_session
    app.dependency_overrides[get_gateway_client] = lambda: fake_gateway
    app.dependency_overrides[get_notifier] = lambda: notifier
    app.dependency_overrides[get_credential_store] = lambda: credential_store

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers(merchant):
    token = jwt_service.create_access_token(merchant.id)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def other_auth_headers(other_merchant):
    token = jwt_service.create_access_token(other_merchant.id)
    return {"Authorization": f"Bearer {token}"}
