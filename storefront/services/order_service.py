import random
import string
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence

import structlog
from sqlalchemy.orm import Session, selectinload

from storefront.core.exceptions import Conflict, InvalidArgument, NotFound
from storefront.models.order import Order, OrderItem, OrderStatus
from storefront.models.order_status_history import OrderStatusHistory
from storefront.services.pricing import PriceBreakdown, to_money

logger = structlog.get_logger()

ORDER_NUMBER_PREFIX = "EYE"

# Allowed next statuses. Completed and cancelled are terminal.
STATUS_TRANSITIONS = {
    OrderStatus.PENDING: {OrderStatus.PROCESSING, OrderStatus.COMPLETED, OrderStatus.CANCELLED},
    OrderStatus.PROCESSING: {OrderStatus.SHIPPED, OrderStatus.COMPLETED, OrderStatus.CANCELLED},
    OrderStatus.SHIPPED: {OrderStatus.DELIVERED, OrderStatus.CANCELLED},
    OrderStatus.DELIVERED: {OrderStatus.COMPLETED},
    OrderStatus.COMPLETED: set(),
    OrderStatus.CANCELLED: set(),
}


@dataclass(frozen=True)
class OrderLineRecord:
    """A purchased line with its price frozen at checkout."""

    product_id: int
    product_name: str
    quantity: int
    price: Decimal
    options: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class OrderHeader:
    user_id: int
    status: OrderStatus
    pricing: PriceBreakdown
    currency: str
    shipping_address: Dict[str, Any]
    payment_intent_id: str


def generate_order_number(db: Session) -> str:
    """Generate a unique order number with bounded retries."""
    max_attempts = 10

    for _ in range(max_attempts):
        timestamp = datetime.utcnow().strftime("%Y%m%d")
        random_part = "".join(
            random.choices(string.ascii_uppercase + string.digits, k=8)
        )
        order_number = f"{ORDER_NUMBER_PREFIX}{timestamp}{random_part}"

        existing = db.query(Order.id).filter(Order.order_number == order_number).first()
        if not existing:
            return order_number

    raise ValueError("Failed to generate unique order number")


def create_order(
    db: Session,
    header: OrderHeader,
    lines: Sequence[OrderLineRecord],
    commit: bool = True,
) -> Order:
    """Persist an order with all of its lines, or nothing.

    With ``commit=False`` the rows are only flushed so the caller can fold them
    into a larger transaction.
    """
    if not lines:
        raise InvalidArgument("An order needs at least one line")

    try:
        order = Order(
            order_number=generate_order_number(db),
            user_id=header.user_id,
            status=header.status,
            subtotal=header.pricing.subtotal,
            tax=header.pricing.tax,
            shipping=header.pricing.shipping,
            total=header.pricing.total,
            currency=header.currency,
            shipping_address=dict(header.shipping_address),
            payment_intent_id=header.payment_intent_id,
        )
        db.add(order)
        db.flush()

        for line in lines:
            db.add(
                OrderItem(
                    order_id=order.id,
                    product_id=line.product_id,
                    product_name=line.product_name,
                    quantity=line.quantity,
                    price=to_money(line.price),
                    options=dict(line.options),
                )
            )
        db.add(
            OrderStatusHistory(
                order_id=order.id,
                old_status=None,
                new_status=header.status.value,
                notes="Order created",
            )
        )
        db.flush()

        if commit:
            db.commit()
            db.refresh(order)
    except Exception:
        db.rollback()
        raise

    return order


def get_order(db: Session, order_id: int) -> Order:
    order = (
        db.query(Order)
        .options(selectinload(Order.items))
        .filter(Order.id == order_id)
        .first()
    )
    if not order:
        raise NotFound("Order not found")
    return order


def get_order_by_intent(db: Session, payment_intent_id: str) -> Optional[Order]:
    return (
        db.query(Order)
        .options(selectinload(Order.items))
        .filter(Order.payment_intent_id == payment_intent_id)
        .first()
    )


def get_orders(db: Session, user_id: Optional[int] = None) -> List[Order]:
    """All orders when ``user_id`` is None, otherwise only that user's."""
    query = db.query(Order).options(selectinload(Order.items))
    if user_id is not None:
        query = query.filter(Order.user_id == user_id)
    return query.order_by(Order.created_at.desc(), Order.id.desc()).all()


def parse_status(value: str) -> OrderStatus:
    try:
        return OrderStatus((value or "").lower().strip())
    except ValueError:
        allowed = ", ".join(s.value for s in OrderStatus)
        raise InvalidArgument(f"Invalid status. Allowed values: {allowed}")


def update_status(
    db: Session,
    order_id: int,
    new_status: OrderStatus,
    changed_by: Optional[int] = None,
    notes: Optional[str] = None,
) -> Order:
    """Move an order along the status graph, recording who did it."""
    order = db.query(Order).filter(Order.id == order_id).with_for_update().first()
    if not order:
        raise NotFound("Order not found")

    old_status = order.status
    if new_status == old_status:
        return order

    if new_status not in STATUS_TRANSITIONS[old_status]:
        raise Conflict(
            f"Cannot change order status from {old_status.value} to {new_status.value}"
        )

    order.status = new_status
    db.add(
        OrderStatusHistory(
            order_id=order.id,
            old_status=old_status.value,
            new_status=new_status.value,
            changed_by=changed_by,
            notes=notes,
        )
    )
    db.commit()
    db.refresh(order)

    logger.info(
        "order_status_updated",
        order_id=order.id,
        old_status=old_status.value,
        new_status=new_status.value,
        changed_by=changed_by,
    )
    return order


def get_status_history(db: Session, order_id: int) -> List[OrderStatusHistory]:
    return (
        db.query(OrderStatusHistory)
        .filter(OrderStatusHistory.order_id == order_id)
        .order_by(OrderStatusHistory.id)
        .all()
    )


def serialize_order(order: Order) -> dict:
    return {
        "id": order.id,
        "order_number": order.order_number,
        "user_id": order.user_id,
        "status": order.status.value,
        "subtotal": str(to_money(order.subtotal)),
        "tax": str(to_money(order.tax)),
        "shipping": str(to_money(order.shipping)),
        "total": str(to_money(order.total)),
        "currency": order.currency,
        "shipping_address": order.shipping_address,
        "payment_intent_id": order.payment_intent_id,
        "items": [
            {
                "id": item.id,
                "product_id": item.product_id,
                "product_name": item.product_name,
                "quantity": item.quantity,
                "price": str(to_money(item.price)),
                "options": item.options or {},
            }
            for item in order.items
        ],
        "created_at": order.created_at,
    }
