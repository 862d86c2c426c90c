from datetime import datetime, timedelta
from decimal import Decimal

from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from storefront.core.security import create_access_token
from storefront.models.order import Order, OrderStatus
from storefront.models.product import Product
from storefront.models.user import User, UserRole
from storefront.services import order_service
from storefront.services.order_service import OrderHeader, OrderLineRecord
from storefront.services.pricing import quote_subtotal


def _create_user(db: Session, email: str, role: UserRole = UserRole.CUSTOMER) -> User:
    user = User(email=email, full_name="Admin Test User", role=role)
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def _auth(user: User) -> dict:
    return {"Authorization": f"Bearer {create_access_token({'sub': str(user.id)})}"}


def _create_order(db: Session, user: User, product: Product, quantity: int, reference: str, status=OrderStatus.COMPLETED) -> Order:
    subtotal = product.price * quantity
    return order_service.create_order(
        db,
        OrderHeader(
            user_id=user.id,
            status=status,
            pricing=quote_subtotal(subtotal),
            currency="USD",
            shipping_address={"city": "Portland"},
            payment_intent_id=reference,
        ),
        [OrderLineRecord(product_id=product.id, product_name=product.name, quantity=quantity, price=product.price)],
    )


def test_dashboard_stats(client: TestClient, db_session: Session):
    admin = _create_user(db_session, "admin@example.com", role=UserRole.ADMIN)
    customer = _create_user(db_session, "customer@example.com")
    frame = Product(name="Aviator", slug="aviator", price=Decimal("60.00"), stock=10)
    lens = Product(name="Clip On", slug="clip-on", price=Decimal("10.00"), stock=10, is_active=False)
    db_session.add_all([frame, lens])
    db_session.commit()

    _create_order(db_session, customer, frame, 2, "pi_dev_stats_1")
    _create_order(db_session, customer, lens, 1, "pi_dev_stats_2", status=OrderStatus.CANCELLED)

    response = client.get("/api/admin/stats", headers=_auth(admin))

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["totalRevenue"] == "129.60"
    assert data["totalOrders"] == 2
    assert data["activeProducts"] == 1
    assert data["customers"] == 1
    assert data["topProducts"][0] == {"productId": frame.id, "name": "Aviator", "sold": 2}
    assert len(data["recentOrders"]) == 2


def test_sales_chart_fills_empty_days(client: TestClient, db_session: Session):
    admin = _create_user(db_session, "chart@example.com", role=UserRole.ADMIN)
    customer = _create_user(db_session, "buyer@example.com")
    frame = Product(name="Round", slug="round", price=Decimal("50.00"), stock=10)
    db_session.add(frame)
    db_session.commit()

    today_order = _create_order(db_session, customer, frame, 1, "pi_dev_chart_today")
    old_order = _create_order(db_session, customer, frame, 1, "pi_dev_chart_old")
    old_order.created_at = datetime.utcnow() - timedelta(days=20)
    db_session.commit()

    week = client.get("/api/admin/sales-chart", headers=_auth(admin), params={"period": "7d"}).json()["data"]
    month = client.get("/api/admin/sales-chart", headers=_auth(admin), params={"period": "30d"}).json()["data"]

    assert len(week) == 7
    assert week[-1]["date"] == datetime.utcnow().date().isoformat()
    assert week[-1]["revenue"] == str(today_order.total)
    assert week[-1]["orders"] == 1
    assert all(day["revenue"] == "0.00" and day["orders"] == 0 for day in week[:-1])
    assert len(month) == 30
    assert sum(day["orders"] for day in month) == 2


def test_sales_chart_rejects_unknown_period(client: TestClient, db_session: Session):
    admin = _create_user(db_session, "period@example.com", role=UserRole.ADMIN)

    response = client.get("/api/admin/sales-chart", headers=_auth(admin), params={"period": "1y"})

    assert response.status_code == 400
    assert response.json()["errors"][0]["code"] == "INVALID_ARGUMENT"


def test_admin_routes_reject_customers(client: TestClient, db_session: Session):
    customer = _create_user(db_session, "plain@example.com")

    for path in ("/api/admin/stats", "/api/admin/sales-chart", "/api/admin/reconciliation", "/api/users"):
        assert client.get(path, headers=_auth(customer)).status_code == 403


def test_reconciliation_queue_starts_empty(client: TestClient, db_session: Session):
    admin = _create_user(db_session, "recon@example.com", role=UserRole.ADMIN)

    response = client.get("/api/admin/reconciliation", headers=_auth(admin))

    assert response.status_code == 200
    assert response.json()["data"] == []
