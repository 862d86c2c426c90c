"""Checkout: turn a confirmed payment into exactly one order.

An attempt moves ``intent_created -> confirmed -> order_created``. It lands in
``failed`` when the provider declines or errors (no money taken) or when the
order could not be written after the money was captured. The second case is
surfaced as :class:`InconsistentState` and queued for reconciliation.
"""
import secrets
import threading
import time
from collections import defaultdict
from contextlib import contextmanager
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence, Tuple

import structlog
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from storefront.core.config import settings
from storefront.core.exceptions import (
    Conflict,
    EmptyCart,
    Forbidden,
    InconsistentState,
    InsufficientStock,
    InvalidArgument,
    PaymentDeclined,
    PaymentProviderError,
)
from storefront.models.checkout_attempt import CheckoutAttempt, CheckoutState
from storefront.models.order import Order, OrderStatus
from storefront.models.product import Product
from storefront.models.user import User
from storefront.services import cart_service, order_service
from storefront.services.cart_service import CartLineView
from storefront.services.order_service import OrderHeader, OrderLineRecord
from storefront.services.payment_gateway import (
    DEV_INTENT_PREFIX,
    RazorpayGateway,
    is_development_reference,
)
from storefront.services.pricing import ZERO, to_money
from storefront.tasks import alert_tasks

logger = structlog.get_logger()

LOW_STOCK_WARNING_THRESHOLD = 5

# Striped: a user always maps to the same lock, unrelated users may share one.
CHECKOUT_LOCK_STRIPES = 64
_checkout_locks = [threading.Lock() for _ in range(CHECKOUT_LOCK_STRIPES)]


@contextmanager
def user_checkout_lock(user_id: int):
    """Serialize checkouts of one user within this process."""
    with _checkout_locks[user_id % CHECKOUT_LOCK_STRIPES]:
        yield


def _new_development_reference() -> str:
    return f"{DEV_INTENT_PREFIX}{int(time.time() * 1000)}_{secrets.token_hex(6)}"


def _cart_snapshot(lines: Sequence[CartLineView]) -> List[Dict[str, Any]]:
    return [
        {
            "product_id": line.product_id,
            "quantity": line.quantity,
            "unit_price": str(line.unit_price),
            "options": line.options,
        }
        for line in lines
    ]


def create_intent(
    db: Session,
    user: User,
    amount: Decimal,
    gateway: RazorpayGateway,
    currency: str = "USD",
) -> Dict[str, Any]:
    """Open a payment intent for the cart and record the attempt.

    ``amount`` is what the customer was shown. It must match the cart total
    priced here; the provider is always asked for the server-side total.
    """
    amount = to_money(amount)
    if amount <= ZERO:
        raise InvalidArgument("Invalid amount")

    lines = cart_service.list_items(db, user.id)
    if not lines:
        raise EmptyCart()
    cart_total = cart_service.summarize(lines).total
    if amount != cart_total:
        logger.info(
            "payment_intent_amount_rejected",
            user_id=user.id,
            requested=str(amount),
            cart_total=str(cart_total),
        )
        raise InvalidArgument(
            f"Amount {amount} does not match the cart total {cart_total}",
            errors=[{"code": InvalidArgument.code, "cart_total": str(cart_total)}],
        )

    reference = None
    if gateway.configured:
        try:
            reference = gateway.create_intent(
                cart_total,
                currency,
                receipt=f"user-{user.id}-{int(time.time())}",
                notes={"user_id": str(user.id)},
            )
        except PaymentProviderError:
            if not settings.ALLOW_DEV_PAYMENTS:
                raise
            logger.warning("payment_intent_dev_fallback", user_id=user.id, reason="provider_error")
    elif not settings.ALLOW_DEV_PAYMENTS:
        raise PaymentProviderError("Payment provider is not configured")
    else:
        logger.warning("payment_intent_dev_fallback", user_id=user.id, reason="provider_unconfigured")

    development = reference is None
    if development:
        reference = _new_development_reference()

    attempt = CheckoutAttempt(
        user_id=user.id,
        intent_reference=reference,
        is_development=development,
        amount=amount,
        currency=currency,
        cart_snapshot=_cart_snapshot(lines),
        state=CheckoutState.INTENT_CREATED,
    )
    db.add(attempt)
    db.commit()

    logger.info(
        "payment_intent_created",
        user_id=user.id,
        payment_intent_id=reference,
        amount=str(amount),
        development=development,
    )

    return {
        "clientSecret": f"{reference}_secret_dev" if development else reference,
        "intentId": reference,
        "development": development,
        "amount": str(amount),
        "currency": currency,
    }


def _existing_order(db: Session, user: User, reference: str) -> Optional[Order]:
    order = order_service.get_order_by_intent(db, reference)
    if order and order.user_id != user.id:
        raise Conflict("Payment intent was already used for another order")
    return order


def _load_attempt(db: Session, user: User, reference: str) -> CheckoutAttempt:
    attempt = (
        db.query(CheckoutAttempt)
        .filter(CheckoutAttempt.intent_reference == reference)
        .first()
    )
    if attempt and attempt.user_id != user.id:
        raise Forbidden("Payment intent does not belong to this user")
    if attempt is None:
        # Intent opened by another process that never recorded it locally.
        attempt = CheckoutAttempt(
            user_id=user.id,
            intent_reference=reference,
            is_development=is_development_reference(reference),
            amount=ZERO,
            cart_snapshot=[],
            state=CheckoutState.INTENT_CREATED,
        )
        db.add(attempt)
        db.commit()
    return attempt


def _mark_failed(db: Session, attempt: CheckoutAttempt, reason: str, captured: bool) -> None:
    attempt.state = CheckoutState.FAILED
    attempt.payment_captured = captured
    attempt.failure_reason = reason[:1000]
    db.commit()


def _verify_payment(
    db: Session,
    attempt: CheckoutAttempt,
    reference: str,
    gateway: RazorpayGateway,
) -> Optional[Decimal]:
    """Returns the captured amount, or None for a development intent."""
    if is_development_reference(reference):
        if not settings.ALLOW_DEV_PAYMENTS:
            raise InvalidArgument("Development payments are disabled")
        amount_paid = None
    else:
        try:
            intent_status = gateway.fetch_status(reference)
        except PaymentProviderError as exc:
            _mark_failed(db, attempt, f"provider error: {exc.message}", captured=False)
            raise
        if not intent_status.paid:
            _mark_failed(db, attempt, "payment not completed", captured=False)
            logger.info("payment_declined", user_id=attempt.user_id, payment_intent_id=reference)
            raise PaymentDeclined()
        amount_paid = to_money(intent_status.amount_paid)

    attempt.state = CheckoutState.CONFIRMED
    attempt.payment_captured = amount_paid is not None
    attempt.failure_reason = None
    db.commit()
    return amount_paid


def _reserve_stock(db: Session, lines: Sequence[CartLineView]) -> None:
    """Decrement stock for every line or raise before anything is written."""
    needed: Dict[int, int] = defaultdict(int)
    for line in lines:
        needed[line.product_id] += line.quantity

    # Fixed order keeps concurrent checkouts from deadlocking on product rows.
    for product_id in sorted(needed):
        quantity = needed[product_id]
        updated = (
            db.query(Product)
            .filter(Product.id == product_id, Product.stock >= quantity)
            .update({Product.stock: Product.stock - quantity}, synchronize_session=False)
        )
        current = (
            db.query(Product.name, Product.stock)
            .filter(Product.id == product_id)
            .one()
        )
        if not updated:
            raise InsufficientStock(current.name, current.stock)
        if current.stock <= LOW_STOCK_WARNING_THRESHOLD:
            logger.warning("stock_depletion_warning", product_id=product_id, stock=current.stock)


def _queue_reconciliation_alert(attempt: CheckoutAttempt, cause: BaseException) -> None:
    try:
        alert_tasks.send_reconciliation_alert.delay(
            intent_reference=attempt.intent_reference,
            user_id=attempt.user_id,
            amount=str(attempt.amount),
            currency=attempt.currency,
            reason=str(cause),
        )
    except Exception:
        logger.exception(
            "reconciliation_alert_queue_failed",
            payment_intent_id=attempt.intent_reference,
        )


def confirm_payment(
    db: Session,
    user: User,
    intent_reference: str,
    shipping_address: Dict[str, Any],
    gateway: RazorpayGateway,
    currency: str = "USD",
) -> Tuple[Order, bool]:
    """Create the order for a paid intent. Returns ``(order, created)``.

    Confirming the same intent again returns the order made the first time.
    A captured payment must cover the order total exactly; anything else is
    left for reconciliation instead of becoming an order.
    """
    intent_reference = (intent_reference or "").strip()
    if not intent_reference:
        raise InvalidArgument("Payment intent is required")
    user_id = user.id

    existing = _existing_order(db, user, intent_reference)
    if existing:
        return existing, False

    attempt = _load_attempt(db, user, intent_reference)
    amount_paid = _verify_payment(db, attempt, intent_reference, gateway)
    captured = amount_paid is not None

    with user_checkout_lock(user_id):
        try:
            # Row lock for deployments running several worker processes.
            db.query(User).filter(User.id == user_id).with_for_update().first()

            existing = _existing_order(db, user, intent_reference)
            if existing:
                db.rollback()
                return existing, False

            lines = cart_service.list_items(db, user_id)
            if not lines:
                raise EmptyCart()

            pricing = cart_service.summarize(lines)
            if captured and amount_paid != pricing.total:
                raise Conflict(
                    f"Captured amount {amount_paid} does not match order total {pricing.total}"
                )
            if attempt.amount and to_money(attempt.amount) != pricing.total:
                logger.warning(
                    "checkout_amount_mismatch",
                    user_id=user_id,
                    payment_intent_id=intent_reference,
                    intent_amount=str(attempt.amount),
                    order_total=str(pricing.total),
                )

            _reserve_stock(db, lines)

            header = OrderHeader(
                user_id=user_id,
                status=OrderStatus.PROCESSING if captured else OrderStatus.COMPLETED,
                pricing=pricing,
                currency=currency,
                shipping_address=shipping_address,
                payment_intent_id=intent_reference,
            )
            records = [
                OrderLineRecord(
                    product_id=line.product_id,
                    product_name=line.product_name,
                    quantity=line.quantity,
                    price=line.unit_price,
                    options=line.options,
                )
                for line in lines
            ]
            order = order_service.create_order(db, header, records, commit=False)
            cart_service.clear(db, user_id, commit=False)

            attempt.state = CheckoutState.ORDER_CREATED
            attempt.order_id = order.id
            db.commit()
        except IntegrityError as exc:
            db.rollback()
            winner = order_service.get_order_by_intent(db, intent_reference)
            if winner and winner.user_id == user_id:
                return winner, False
            _handle_order_failure(db, attempt, user_id, captured, exc)
            raise
        except Exception as exc:
            db.rollback()
            _handle_order_failure(db, attempt, user_id, captured, exc)
            raise

    db.refresh(order)
    logger.info(
        "checkout_order_created",
        user_id=user_id,
        order_id=order.id,
        order_number=order.order_number,
        payment_intent_id=intent_reference,
        total=str(pricing.total),
        development=not captured,
    )
    return order, True


def _handle_order_failure(
    db: Session,
    attempt: CheckoutAttempt,
    user_id: int,
    captured: bool,
    cause: BaseException,
) -> None:
    """Record the failure; raise InconsistentState when money was already taken."""
    _mark_failed(db, attempt, f"{type(cause).__name__}: {cause}", captured=captured)
    if not captured:
        return

    logger.error(
        "checkout_inconsistent_state",
        user_id=user_id,
        payment_intent_id=attempt.intent_reference,
        cause=repr(cause),
    )
    _queue_reconciliation_alert(attempt, cause)
    raise InconsistentState(attempt.intent_reference, cause) from cause


def list_unreconciled(db: Session) -> List[CheckoutAttempt]:
    """Captured payments that never became orders, oldest first."""
    return (
        db.query(CheckoutAttempt)
        .filter(
            CheckoutAttempt.state == CheckoutState.FAILED,
            CheckoutAttempt.payment_captured == True,
        )
        .order_by(CheckoutAttempt.created_at, CheckoutAttempt.id)
        .all()
    )


def serialize_attempt(attempt: CheckoutAttempt) -> dict:
    return {
        "id": attempt.id,
        "user_id": attempt.user_id,
        "payment_intent_id": attempt.intent_reference,
        "development": attempt.is_development,
        "amount": str(to_money(attempt.amount)),
        "currency": attempt.currency,
        "state": attempt.state.value,
        "payment_captured": attempt.payment_captured,
        "failure_reason": attempt.failure_reason,
        "order_id": attempt.order_id,
        "created_at": attempt.created_at,
    }
