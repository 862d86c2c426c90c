"""Deletes that must not orphan order history.

Both deletes lock the parent row before checking for references. Checkout
updates the same product rows (stock) and locks the same user row, so a
reference cannot appear between the check and the delete.
"""
import structlog
from fastapi import status
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from storefront.core.exceptions import Conflict, NotFound
from storefront.models.cart import CartItem
from storefront.models.checkout_attempt import CheckoutAttempt
from storefront.models.order import Order, OrderItem
from storefront.models.order_status_history import OrderStatusHistory
from storefront.models.product import Product
from storefront.models.user import User

logger = structlog.get_logger()

PRODUCT_ORDERED_MESSAGE = (
    "Cannot delete product: it has been ordered by customers. "
    "Deactivate it instead of deleting."
)
USER_HAS_ORDERS_MESSAGE = "Cannot delete user with existing orders. Deactivate the account instead."


def _user_conflict(message: str) -> Conflict:
    return Conflict(message, status_code=status.HTTP_400_BAD_REQUEST)


def delete_product(db: Session, product_id: int) -> None:
    try:
        product = db.query(Product).filter(Product.id == product_id).with_for_update().first()
        if not product:
            raise NotFound("Product not found")

        ordered = db.query(OrderItem.id).filter(OrderItem.product_id == product_id).count()
        if ordered > 0:
            raise Conflict(PRODUCT_ORDERED_MESSAGE)

        db.query(CartItem).filter(CartItem.product_id == product_id).delete(synchronize_session=False)
        db.delete(product)
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        logger.warning("product_delete_blocked", product_id=product_id, error=str(exc.orig))
        raise Conflict(PRODUCT_ORDERED_MESSAGE) from exc
    except Exception:
        db.rollback()
        raise

    logger.info("product_deleted", product_id=product_id)


def delete_user(db: Session, user_id: int) -> None:
    try:
        user = db.query(User).filter(User.id == user_id).with_for_update().first()
        if not user:
            raise NotFound("User not found")

        db.query(CartItem).filter(CartItem.user_id == user_id).delete(synchronize_session=False)
        if db.query(Order.id).filter(Order.user_id == user_id).first() is not None:
            raise _user_conflict(USER_HAS_ORDERS_MESSAGE)

        unreconciled = db.query(CheckoutAttempt.id).filter(
            CheckoutAttempt.user_id == user_id,
            CheckoutAttempt.payment_captured == True,
        ).first()
        if unreconciled:
            raise _user_conflict("Cannot delete user with a captured payment awaiting reconciliation.")

        db.query(CheckoutAttempt).filter(CheckoutAttempt.user_id == user_id).delete(synchronize_session=False)
        db.query(OrderStatusHistory).filter(OrderStatusHistory.changed_by == user_id).update(
            {OrderStatusHistory.changed_by: None}, synchronize_session=False
        )
        db.delete(user)
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        logger.warning("user_delete_blocked", user_id=user_id, error=str(exc.orig))
        raise _user_conflict(USER_HAS_ORDERS_MESSAGE) from exc
    except Exception:
        db.rollback()
        raise

    logger.info("user_deleted", user_id=user_id)
