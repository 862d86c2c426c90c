import threading
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session, sessionmaker

from storefront.core.config import settings
from storefront.core.exceptions import EmptyCart, InvalidArgument
from storefront.core.security import create_access_token
from storefront.models.cart import CartItem
from storefront.models.checkout_attempt import CheckoutAttempt, CheckoutState
from storefront.models.order import Order, OrderItem
from storefront.models.order_status_history import OrderStatusHistory
from storefront.models.product import Product
from storefront.models.user import User, UserRole
from storefront.services import checkout_service
from storefront.tasks import alert_tasks

SHIPPING_ADDRESS = {
    "firstName": "Ada",
    "lastName": "Lovelace",
    "address": "12 Optic Lane",
    "city": "Portland",
    "state": "OR",
    "zipCode": "97201",
}


def _create_user(db: Session, email: str, role: UserRole = UserRole.CUSTOMER) -> User:
    user = User(email=email, full_name="Checkout Test User", role=role)
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def _auth(user: User) -> dict:
    return {"Authorization": f"Bearer {create_access_token({'sub': str(user.id)})}"}


def _create_product(db: Session, slug: str, price: str, stock: int = 10) -> Product:
    product = Product(name=slug.replace("-", " ").title(), slug=slug, price=Decimal(price), stock=stock)
    db.add(product)
    db.commit()
    db.refresh(product)
    return product


def _add_to_cart(db: Session, user: User, product: Product, quantity: int, options_key: str = "{}") -> None:
    db.add(CartItem(user_id=user.id, product_id=product.id, quantity=quantity, options={}, options_key=options_key))
    db.commit()


def _create_intent(client: TestClient, headers: dict, amount: str) -> dict:
    response = client.post("/api/create-payment-intent", headers=headers, json={"amount": amount})
    assert response.status_code == 200
    return response.json()["data"]


def _confirm(client: TestClient, headers: dict, intent_id: str):
    return client.post(
        "/api/confirm-payment",
        headers=headers,
        json={"paymentIntentId": intent_id, "shippingAddress": SHIPPING_ADDRESS},
    )


def test_development_checkout_creates_completed_order(client: TestClient, db_session: Session):
    user = _create_user(db_session, "scenario@example.com")
    frame_a = _create_product(db_session, "frame-a", "30.00", stock=5)
    frame_b = _create_product(db_session, "frame-b", "50.00", stock=5)
    _add_to_cart(db_session, user, frame_a, 2)
    _add_to_cart(db_session, user, frame_b, 1)
    headers = _auth(user)

    intent = _create_intent(client, headers, "118.80")
    assert intent["development"] is True
    assert intent["intentId"].startswith("pi_dev_")
    assert intent["amount"] == "118.80"
    assert intent["currency"] == "USD"

    response = _confirm(client, headers, intent["intentId"])

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["created"] is True
    assert data["status"] == "completed"
    assert data["subtotal"] == "110.00"
    assert data["tax"] == "8.80"
    assert data["shipping"] == "0.00"
    assert data["total"] == "118.80"
    assert data["order_number"].startswith("EYE")
    assert data["payment_intent_id"] == intent["intentId"]
    assert data["shipping_address"]["firstName"] == "Ada"
    assert sorted((item["product_id"], item["quantity"], item["price"]) for item in data["items"]) == sorted(
        [(frame_a.id, 2, "30.00"), (frame_b.id, 1, "50.00")]
    )

    assert db_session.query(CartItem).filter(CartItem.user_id == user.id).count() == 0
    db_session.expire_all()
    assert db_session.get(Product, frame_a.id).stock == 3
    assert db_session.get(Product, frame_b.id).stock == 4

    attempt = db_session.query(CheckoutAttempt).filter(CheckoutAttempt.intent_reference == intent["intentId"]).one()
    assert attempt.state == CheckoutState.ORDER_CREATED
    assert attempt.order_id == data["id"]
    assert attempt.payment_captured is False

    history = db_session.query(OrderStatusHistory).filter(OrderStatusHistory.order_id == data["id"]).all()
    assert [(h.old_status, h.new_status) for h in history] == [(None, "completed")]


def test_checkout_is_atomic_across_three_lines(client: TestClient, db_session: Session):
    user = _create_user(db_session, "atomic@example.com")
    for index, price in enumerate(("10.00", "20.00", "30.00")):
        _add_to_cart(db_session, user, _create_product(db_session, f"atomic-{index}", price), 1)
    headers = _auth(user)

    intent = _create_intent(client, headers, "79.80")
    response = _confirm(client, headers, intent["intentId"])

    assert response.status_code == 200
    assert db_session.query(Order).filter(Order.user_id == user.id).count() == 1
    order_id = response.json()["data"]["id"]
    assert db_session.query(OrderItem).filter(OrderItem.order_id == order_id).count() == 3
    assert db_session.query(CartItem).filter(CartItem.user_id == user.id).count() == 0


def test_order_keeps_price_after_catalog_change(client: TestClient, db_session: Session):
    user = _create_user(db_session, "snapshot@example.com")
    product = _create_product(db_session, "snapshot-frame", "100.00")
    _add_to_cart(db_session, user, product, 1)
    headers = _auth(user)

    intent = _create_intent(client, headers, "108.00")
    order_id = _confirm(client, headers, intent["intentId"]).json()["data"]["id"]

    product.price = Decimal("150.00")
    db_session.commit()

    response = client.get(f"/api/orders/{order_id}", headers=headers)
    data = response.json()["data"]
    assert data["items"][0]["price"] == "100.00"
    assert data["total"] == "108.00"


def test_empty_cart_confirmation_is_rejected(client: TestClient, db_session: Session):
    user = _create_user(db_session, "empty@example.com")
    _add_to_cart(db_session, user, _create_product(db_session, "emptied-frame", "40.00"), 1)
    headers = _auth(user)

    intent = _create_intent(client, headers, "58.20")
    db_session.query(CartItem).filter(CartItem.user_id == user.id).delete()
    db_session.commit()
    response = _confirm(client, headers, intent["intentId"])

    assert response.status_code == 400
    assert response.json()["errors"][0]["code"] == "EMPTY_CART"
    assert db_session.query(Order).count() == 0


def test_repeat_confirmation_returns_existing_order(client: TestClient, db_session: Session):
    user = _create_user(db_session, "repeat@example.com")
    product = _create_product(db_session, "repeat-frame", "40.00", stock=5)
    _add_to_cart(db_session, user, product, 1)
    headers = _auth(user)
    intent = _create_intent(client, headers, "58.20")

    first = _confirm(client, headers, intent["intentId"])
    _add_to_cart(db_session, user, product, 2)
    second = _confirm(client, headers, intent["intentId"])

    assert first.status_code == 200
    assert second.status_code == 200
    assert second.json()["data"]["created"] is False
    assert second.json()["data"]["id"] == first.json()["data"]["id"]
    assert db_session.query(Order).count() == 1
    # The second call must not consume the new cart or stock.
    assert db_session.query(CartItem).filter(CartItem.user_id == user.id).count() == 1
    db_session.expire_all()
    assert db_session.get(Product, product.id).stock == 4


def test_another_user_cannot_reuse_an_intent(client: TestClient, db_session: Session):
    owner = _create_user(db_session, "intent-owner@example.com")
    thief = _create_user(db_session, "intent-thief@example.com")
    product = _create_product(db_session, "shared-frame", "40.00")
    _add_to_cart(db_session, owner, product, 1)
    _add_to_cart(db_session, thief, product, 1)

    intent = _create_intent(client, _auth(owner), "58.20")
    assert _confirm(client, _auth(owner), intent["intentId"]).status_code == 200

    response = _confirm(client, _auth(thief), intent["intentId"])

    assert response.status_code == 409
    assert db_session.query(CartItem).filter(CartItem.user_id == thief.id).count() == 1


def test_insufficient_stock_in_development_leaves_cart(client: TestClient, db_session: Session):
    user = _create_user(db_session, "lowstock@example.com")
    product = _create_product(db_session, "scarce-frame", "30.00", stock=1)
    _add_to_cart(db_session, user, product, 2)
    headers = _auth(user)

    intent = _create_intent(client, headers, "79.80")
    response = _confirm(client, headers, intent["intentId"])

    assert response.status_code == 409
    assert response.json()["errors"][0]["code"] == "INSUFFICIENT_STOCK"
    assert db_session.query(Order).count() == 0
    assert db_session.query(CartItem).filter(CartItem.user_id == user.id).count() == 1
    db_session.expire_all()
    assert db_session.get(Product, product.id).stock == 1


def test_invalid_amount_is_rejected(client: TestClient, db_session: Session):
    user = _create_user(db_session, "amount@example.com")

    response = client.post("/api/create-payment-intent", headers=_auth(user), json={"amount": "0"})

    assert response.status_code == 400
    assert response.json()["message"] == "Invalid amount"


def test_provider_down_without_dev_payments_is_an_error(client: TestClient, db_session: Session, gateway, monkeypatch):
    monkeypatch.setattr(settings, "ALLOW_DEV_PAYMENTS", False)
    gateway.configured = True
    gateway.fail = True
    user = _create_user(db_session, "nodev@example.com")
    _add_to_cart(db_session, user, _create_product(db_session, "nodev-case", "5.00"), 1)

    response = client.post("/api/create-payment-intent", headers=_auth(user), json={"amount": "20.40"})

    assert response.status_code == 502
    assert db_session.query(CheckoutAttempt).count() == 0


def test_provider_down_with_dev_payments_falls_back(client: TestClient, db_session: Session, gateway):
    gateway.configured = True
    gateway.fail = True
    user = _create_user(db_session, "fallback@example.com")
    _add_to_cart(db_session, user, _create_product(db_session, "fallback-case", "5.00"), 1)

    intent = _create_intent(client, _auth(user), "20.40")

    assert intent["development"] is True
    assert intent["intentId"].startswith("pi_dev_")


def test_development_reference_rejected_when_dev_payments_disabled(
    client: TestClient, db_session: Session, monkeypatch
):
    user = _create_user(db_session, "devoff@example.com")
    product = _create_product(db_session, "devoff-frame", "40.00")
    _add_to_cart(db_session, user, product, 1)
    headers = _auth(user)
    intent = _create_intent(client, headers, "58.20")

    monkeypatch.setattr(settings, "ALLOW_DEV_PAYMENTS", False)
    response = _confirm(client, headers, intent["intentId"])

    assert response.status_code == 400
    assert db_session.query(Order).count() == 0


def test_real_payment_creates_processing_order(client: TestClient, db_session: Session, gateway):
    gateway.configured = True
    user = _create_user(db_session, "realpay@example.com")
    product = _create_product(db_session, "real-frame", "120.00")
    _add_to_cart(db_session, user, product, 1)
    headers = _auth(user)

    intent = _create_intent(client, headers, "129.60")
    assert intent["development"] is False
    gateway.statuses[intent["intentId"]] = "paid"

    response = _confirm(client, headers, intent["intentId"])

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["status"] == "processing"
    assert data["total"] == "129.60"
    attempt = db_session.query(CheckoutAttempt).filter(CheckoutAttempt.intent_reference == intent["intentId"]).one()
    assert attempt.payment_captured is True
    assert attempt.state == CheckoutState.ORDER_CREATED


def test_declined_payment_leaves_cart_untouched(client: TestClient, db_session: Session, gateway):
    gateway.configured = True
    user = _create_user(db_session, "declined@example.com")
    product = _create_product(db_session, "declined-frame", "120.00")
    _add_to_cart(db_session, user, product, 1)
    headers = _auth(user)
    intent = _create_intent(client, headers, "129.60")

    response = _confirm(client, headers, intent["intentId"])

    assert response.status_code == 402
    assert response.json()["errors"][0]["code"] == "PAYMENT_DECLINED"
    assert db_session.query(Order).count() == 0
    assert db_session.query(CartItem).filter(CartItem.user_id == user.id).count() == 1
    attempt = db_session.query(CheckoutAttempt).filter(CheckoutAttempt.intent_reference == intent["intentId"]).one()
    assert attempt.state == CheckoutState.FAILED
    assert attempt.payment_captured is False


def test_provider_error_on_confirm_leaves_cart_untouched(client: TestClient, db_session: Session, gateway):
    gateway.configured = True
    user = _create_user(db_session, "provider-error@example.com")
    product = _create_product(db_session, "provider-frame", "120.00")
    _add_to_cart(db_session, user, product, 1)
    headers = _auth(user)
    intent = _create_intent(client, headers, "129.60")

    gateway.fail = True
    response = _confirm(client, headers, intent["intentId"])

    assert response.status_code == 502
    assert db_session.query(Order).count() == 0
    assert db_session.query(CartItem).filter(CartItem.user_id == user.id).count() == 1


def test_captured_payment_without_order_is_inconsistent_state(client: TestClient, db_session: Session, gateway):
    gateway.configured = True
    admin = _create_user(db_session, "recon-admin@example.com", role=UserRole.ADMIN)
    user = _create_user(db_session, "captured@example.com")
    product = _create_product(db_session, "captured-frame", "60.00", stock=1)
    _add_to_cart(db_session, user, product, 2)
    headers = _auth(user)
    intent = _create_intent(client, headers, "129.60")
    gateway.statuses[intent["intentId"]] = "paid"

    response = _confirm(client, headers, intent["intentId"])

    assert response.status_code == 500
    payload = response.json()
    assert payload["errors"][0]["code"] == "INCONSISTENT_STATE"
    assert payload["errors"][0]["payment_intent_id"] == intent["intentId"]
    assert db_session.query(Order).count() == 0
    assert db_session.query(CartItem).filter(CartItem.user_id == user.id).count() == 1

    attempt = db_session.query(CheckoutAttempt).filter(CheckoutAttempt.intent_reference == intent["intentId"]).one()
    assert attempt.state == CheckoutState.FAILED
    assert attempt.payment_captured is True

    queue = client.get("/api/admin/reconciliation", headers=_auth(admin))
    assert queue.status_code == 200
    assert [entry["payment_intent_id"] for entry in queue.json()["data"]] == [intent["intentId"]]


def test_confirm_requires_shipping_address(client: TestClient, db_session: Session):
    user = _create_user(db_session, "noaddress@example.com")

    response = client.post(
        "/api/confirm-payment",
        headers=_auth(user),
        json={"paymentIntentId": "pi_dev_1_abc"},
    )

    assert response.status_code == 422


class _RecordingTask:
    def __init__(self):
        self.calls = []

    def delay(self, **kwargs):
        self.calls.append(kwargs)


def test_intent_amount_must_match_cart_total(client: TestClient, db_session: Session, gateway):
    gateway.configured = True
    user = _create_user(db_session, "lowball@example.com")
    _add_to_cart(db_session, user, _create_product(db_session, "lowball-frame", "120.00"), 1)

    response = client.post("/api/create-payment-intent", headers=_auth(user), json={"amount": "1.00"})

    assert response.status_code == 400
    assert response.json()["errors"][0]["cart_total"] == "129.60"
    assert gateway.created == []
    assert db_session.query(CheckoutAttempt).count() == 0


def test_intent_requires_a_cart(client: TestClient, db_session: Session):
    user = _create_user(db_session, "nocart@example.com")

    response = client.post("/api/create-payment-intent", headers=_auth(user), json={"amount": "10.00"})

    assert response.status_code == 400
    assert response.json()["errors"][0]["code"] == "EMPTY_CART"


def test_provider_is_charged_the_cart_total(client: TestClient, db_session: Session, gateway):
    gateway.configured = True
    user = _create_user(db_session, "charged@example.com")
    _add_to_cart(db_session, user, _create_product(db_session, "charged-frame", "120.00"), 1)

    intent = _create_intent(client, _auth(user), "129.6")

    assert gateway.created == [(intent["intentId"], Decimal("129.60"), "USD")]


def test_captured_amount_below_order_total_creates_no_order(
    client: TestClient, db_session: Session, gateway, monkeypatch
):
    alerts = _RecordingTask()
    monkeypatch.setattr(alert_tasks, "send_reconciliation_alert", alerts)
    gateway.configured = True
    user = _create_user(db_session, "underpaid@example.com")
    product = _create_product(db_session, "underpaid-frame", "120.00", stock=5)
    _add_to_cart(db_session, user, product, 1)
    headers = _auth(user)
    intent = _create_intent(client, headers, "129.60")
    gateway.statuses[intent["intentId"]] = "paid"

    # Cart grows after the intent was paid
    _add_to_cart(db_session, user, _create_product(db_session, "underpaid-extra", "80.00"), 1)
    response = _confirm(client, headers, intent["intentId"])

    assert response.status_code == 500
    assert response.json()["errors"][0]["code"] == "INCONSISTENT_STATE"
    assert db_session.query(Order).count() == 0
    assert db_session.query(CartItem).filter(CartItem.user_id == user.id).count() == 2
    db_session.expire_all()
    assert db_session.get(Product, product.id).stock == 5

    attempt = db_session.query(CheckoutAttempt).filter(CheckoutAttempt.intent_reference == intent["intentId"]).one()
    assert attempt.state == CheckoutState.FAILED
    assert attempt.payment_captured is True
    assert [call["intent_reference"] for call in alerts.calls] == [intent["intentId"]]


def test_provider_reported_amount_is_checked(client: TestClient, db_session: Session, gateway, monkeypatch):
    alerts = _RecordingTask()
    monkeypatch.setattr(alert_tasks, "send_reconciliation_alert", alerts)
    gateway.configured = True
    user = _create_user(db_session, "partial@example.com")
    _add_to_cart(db_session, user, _create_product(db_session, "partial-frame", "120.00"), 1)
    headers = _auth(user)
    intent = _create_intent(client, headers, "129.60")
    gateway.statuses[intent["intentId"]] = "paid"
    gateway.amounts_paid[intent["intentId"]] = Decimal("1.00")

    response = _confirm(client, headers, intent["intentId"])

    assert response.status_code == 500
    assert db_session.query(Order).count() == 0
    assert len(alerts.calls) == 1


def test_captured_payment_with_emptied_cart_is_reconciled(
    client: TestClient, db_session: Session, gateway, monkeypatch
):
    alerts = _RecordingTask()
    monkeypatch.setattr(alert_tasks, "send_reconciliation_alert", alerts)
    gateway.configured = True
    user = _create_user(db_session, "emptied-paid@example.com")
    _add_to_cart(db_session, user, _create_product(db_session, "emptied-paid-frame", "120.00"), 1)
    headers = _auth(user)
    intent = _create_intent(client, headers, "129.60")
    gateway.statuses[intent["intentId"]] = "paid"
    db_session.query(CartItem).filter(CartItem.user_id == user.id).delete()
    db_session.commit()

    response = _confirm(client, headers, intent["intentId"])

    assert response.status_code == 500
    payload = response.json()
    assert payload["errors"][0]["code"] == "INCONSISTENT_STATE"
    assert payload["errors"][0]["payment_intent_id"] == intent["intentId"]
    attempt = db_session.query(CheckoutAttempt).filter(CheckoutAttempt.intent_reference == intent["intentId"]).one()
    assert attempt.state == CheckoutState.FAILED
    assert attempt.payment_captured is True
    assert len(alerts.calls) == 1
    assert alerts.calls[0]["intent_reference"] == intent["intentId"]
    assert alerts.calls[0]["user_id"] == user.id


def test_concurrent_confirmations_for_one_user_create_one_order(db_session: Session, gateway, monkeypatch):
    user = _create_user(db_session, "double-tap@example.com")
    product = _create_product(db_session, "double-tap-frame", "40.00", stock=5)
    _add_to_cart(db_session, user, product, 1)
    references = [
        checkout_service.create_intent(db_session, user, Decimal("58.20"), gateway)["intentId"] for _ in range(2)
    ]
    user_id = user.id

    # Both threads finish their own attempt bookkeeping before either takes the checkout lock
    barrier = threading.Barrier(2, timeout=10)
    real_lock = checkout_service.user_checkout_lock

    def lock_after_barrier(locked_user_id):
        barrier.wait()
        return real_lock(locked_user_id)

    monkeypatch.setattr(checkout_service, "user_checkout_lock", lock_after_barrier)
    SessionFactory = sessionmaker(autocommit=False, autoflush=False, bind=db_session.get_bind())
    outcomes = {}

    def confirm(reference):
        session = SessionFactory()
        try:
            buyer = session.get(User, user_id)
            order, created = checkout_service.confirm_payment(session, buyer, reference, SHIPPING_ADDRESS, gateway)
            outcomes[reference] = ("order", order.id, created)
        except Exception as exc:
            outcomes[reference] = ("error", exc)
        finally:
            session.close()

    threads = [threading.Thread(target=confirm, args=(reference,)) for reference in references]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=30)

    assert sorted(outcome[0] for outcome in outcomes.values()) == ["error", "order"]
    loser = next(reference for reference, outcome in outcomes.items() if outcome[0] == "error")
    assert isinstance(outcomes[loser][1], EmptyCart)

    db_session.expire_all()
    assert db_session.query(Order).filter(Order.user_id == user_id).count() == 1
    assert db_session.query(CartItem).filter(CartItem.user_id == user_id).count() == 0
    assert db_session.get(Product, product.id).stock == 4
    loser_attempt = db_session.query(CheckoutAttempt).filter(CheckoutAttempt.intent_reference == loser).one()
    assert loser_attempt.state == CheckoutState.FAILED


def test_checkout_locks_are_striped():
    stripes = checkout_service.CHECKOUT_LOCK_STRIPES
    lock_count = len(checkout_service._checkout_locks)

    for user_id in range(1, stripes * 10):
        with checkout_service.user_checkout_lock(user_id):
            pass

    assert len(checkout_service._checkout_locks) == lock_count == stripes
    assert checkout_service._checkout_locks[1 % stripes] is checkout_service._checkout_locks[(1 + stripes) % stripes]


def test_create_intent_service_rejects_mismatched_amount(db_session: Session, gateway):
    user = _create_user(db_session, "service-mismatch@example.com")
    _add_to_cart(db_session, user, _create_product(db_session, "service-mismatch-frame", "40.00"), 1)

    with pytest.raises(InvalidArgument):
        checkout_service.create_intent(db_session, user, Decimal("58.19"), gateway)
