import os
import tempfile
from collections.abc import Generator
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

os.environ["ENVIRONMENT"] = "development"
os.environ["DATABASE_URL"] = "sqlite:///:memory:"
os.environ["SECRET_KEY"] = "test-secret-key-for-storefront-tests-0123456789"
os.environ["CELERY_TASK_ALWAYS_EAGER"] = "true"
os.environ["RAZORPAY_KEY_ID"] = ""
os.environ["RAZORPAY_KEY_SECRET"] = ""
os.environ["SMTP_HOST"] = ""

import storefront.models  # noqa: F401
from storefront.core.exceptions import PaymentProviderError
from storefront.db.base_class import Base
from storefront.db.session import enable_sqlite_foreign_keys, get_db
from storefront.main import app
from storefront.services.payment_gateway import IntentStatus, get_payment_gateway
from storefront.services.settings_service import settings_cache


class FakeGateway:
    """Stands in for Razorpay. Unconfigured by default, like a dev box."""

    def __init__(self):
        self.configured = False
        self.fail = False
        self.statuses = {}
        self.created = []
        # Overrides what the provider reports as captured; defaults to the intent amount
        self.amounts_paid = {}

    def create_intent(self, amount: Decimal, currency: str, receipt: str, notes=None) -> str:
        if self.fail:
            raise PaymentProviderError()
        reference = f"order_fake{len(self.created) + 1}"
        self.created.append((reference, amount, currency))
        self.statuses[reference] = "created"
        return reference

    def fetch_status(self, reference: str) -> IntentStatus:
        if self.fail:
            raise PaymentProviderError()
        status = self.statuses.get(reference, "created")
        requested = next((amount for ref, amount, _ in self.created if ref == reference), Decimal("0"))
        paid = self.amounts_paid.get(reference, requested) if status == "paid" else Decimal("0")
        return IntentStatus(status=status, amount_paid=paid)


@pytest.fixture()
def db_session() -> Generator[Session, None, None]:
    db_file = tempfile.NamedTemporaryFile(suffix=".db", delete=False)
    db_file.close()

    engine = create_engine(
        f"sqlite:///{db_file.name}",
        connect_args={"check_same_thread": False},
    )
    enable_sqlite_foreign_keys(engine)
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    Base.metadata.create_all(bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)
        engine.dispose()
        os.unlink(db_file.name)


@pytest.fixture()
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture()
def client(db_session: Session, gateway: FakeGateway) -> Generator[TestClient, None, None]:
    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_payment_gateway] = lambda: gateway
    app.state.limiter.reset()
    settings_cache.invalidate()
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
    settings_cache.invalidate()
