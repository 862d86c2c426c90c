import json
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, List, Optional

import structlog
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, joinedload

from storefront.core.exceptions import InvalidArgument, NotFound
from storefront.models.cart import CartItem
from storefront.models.product import Product
from storefront.services.pricing import PriceBreakdown, PriceLine, price_lines, to_money

logger = structlog.get_logger()


def canonical_options(options: Optional[Dict[str, Any]]) -> str:
    """Stable text form of an options mapping, used as part of the cart key."""
    return json.dumps(options or {}, sort_keys=True, separators=(",", ":"))


@dataclass(frozen=True)
class CartLineView:
    """A cart line as shown to the customer: priced live from the catalog."""

    id: int
    product_id: int
    product_name: str
    product_slug: str
    product_image: Optional[str]
    unit_price: Decimal
    quantity: int
    options: Dict[str, Any]
    stock_available: int
    is_active: bool

    @property
    def line_total(self) -> Decimal:
        return to_money(self.unit_price * self.quantity)

    def as_price_line(self) -> PriceLine:
        return PriceLine(unit_price=self.unit_price, quantity=self.quantity)

    def as_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "product_slug": self.product_slug,
            "product_image": self.product_image,
            "unit_price": str(self.unit_price),
            "quantity": self.quantity,
            "options": self.options,
            "line_total": str(self.line_total),
            "stock_available": self.stock_available,
        }


def _line_view(item: CartItem) -> CartLineView:
    product = item.product
    return CartLineView(
        id=item.id,
        product_id=product.id,
        product_name=product.name,
        product_slug=product.slug,
        product_image=product.primary_image,
        unit_price=to_money(product.price),
        quantity=item.quantity,
        options=dict(item.options or {}),
        stock_available=product.stock,
        is_active=product.is_active,
    )


def _find_line(db: Session, user_id: int, product_id: int, options_key: str) -> Optional[CartItem]:
    return (
        db.query(CartItem)
        .filter(
            CartItem.user_id == user_id,
            CartItem.product_id == product_id,
            CartItem.options_key == options_key,
        )
        .first()
    )


def add_item(
    db: Session,
    user_id: int,
    product_id: int,
    quantity: int,
    options: Optional[Dict[str, Any]] = None,
) -> CartItem:
    """Add to cart, merging into the existing line for the same product and options."""
    if quantity < 1:
        raise InvalidArgument("Quantity must be at least 1")

    product = db.query(Product).filter(
        Product.id == product_id,
        Product.is_active == True,
    ).first()
    if not product:
        raise NotFound("Product not found")

    options = dict(options or {})
    options_key = canonical_options(options)

    existing = _find_line(db, user_id, product_id, options_key)
    if existing:
        existing.quantity += quantity
        db.commit()
        db.refresh(existing)
        return existing

    item = CartItem(
        user_id=user_id,
        product_id=product_id,
        quantity=quantity,
        options=options,
        options_key=options_key,
    )
    db.add(item)
    try:
        db.commit()
    except IntegrityError:
        # A parallel request inserted the same line first; fold into it.
        db.rollback()
        existing = _find_line(db, user_id, product_id, options_key)
        if not existing:
            raise
        existing.quantity += quantity
        db.commit()
        item = existing

    db.refresh(item)
    logger.info("cart_item_added", user_id=user_id, product_id=product_id, quantity=item.quantity)
    return item


def update_quantity(db: Session, user_id: int, item_id: int, quantity: int) -> CartItem:
    """Set a line's quantity. Zero is rejected; removal is a separate call."""
    if quantity is None or quantity <= 0:
        raise InvalidArgument("Quantity must be greater than zero")

    item = db.query(CartItem).filter(
        CartItem.id == item_id,
        CartItem.user_id == user_id,
    ).first()
    if not item:
        raise NotFound("Cart item not found")

    item.quantity = quantity
    db.commit()
    db.refresh(item)
    return item


def remove_item(db: Session, user_id: int, item_id: int) -> None:
    deleted = (
        db.query(CartItem)
        .filter(CartItem.id == item_id, CartItem.user_id == user_id)
        .delete(synchronize_session=False)
    )
    db.commit()
    if deleted:
        logger.info("cart_item_removed", user_id=user_id, cart_item_id=item_id)


def list_items(db: Session, user_id: int) -> List[CartLineView]:
    items = (
        db.query(CartItem)
        .options(joinedload(CartItem.product))
        .filter(CartItem.user_id == user_id)
        .order_by(CartItem.created_at, CartItem.id)
        .all()
    )
    return [_line_view(item) for item in items]


def summarize(lines: List[CartLineView]) -> PriceBreakdown:
    return price_lines(line.as_price_line() for line in lines)


def clear(db: Session, user_id: int, commit: bool = True) -> int:
    deleted = (
        db.query(CartItem)
        .filter(CartItem.user_id == user_id)
        .delete(synchronize_session=False)
    )
    if commit:
        db.commit()
    return deleted
