from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.orm import Session

from storefront.api.deps import get_current_user
from storefront.db.session import get_db
from storefront.models.user import User
from storefront.schemas.cart import CartItemCreate, CartItemUpdate
from storefront.services import cart_service
from storefront.services.settings_service import SettingsService, get_settings_service
from storefront.utils.response import success

router = APIRouter()


def _cart_item_dict(item) -> dict:
    return {
        "id": item.id,
        "product_id": item.product_id,
        "quantity": item.quantity,
        "options": item.options or {},
        "created_at": item.created_at,
    }


@router.get("", response_model=dict)
@router.get("/", response_model=dict)
def get_cart(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    store_settings: SettingsService = Depends(get_settings_service),
):
    """Get user's cart priced from the live catalog"""
    lines = cart_service.list_items(db, current_user.id)
    pricing = cart_service.summarize(lines)

    return success(
        data={
            "items": [line.as_dict() for line in lines],
            "total_items": sum(line.quantity for line in lines),
            "currency": store_settings.currency,
            **pricing.as_dict(),
        },
        message="Cart retrieved successfully",
    )


@router.post("", status_code=status.HTTP_201_CREATED)
@router.post("/", status_code=status.HTTP_201_CREATED)
def add_to_cart(
    cart_item: CartItemCreate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Add item to cart"""
    item = cart_service.add_item(
        db,
        current_user.id,
        cart_item.product_id,
        cart_item.quantity,
        cart_item.options,
    )
    return success(data=_cart_item_dict(item), message="Item added to cart")


@router.put("/{item_id}")
def update_cart_item(
    item_id: int,
    update: CartItemUpdate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Update cart item quantity"""
    item = cart_service.update_quantity(db, current_user.id, item_id, update.quantity)
    return success(data=_cart_item_dict(item), message="Cart updated")


@router.delete("/{item_id}", status_code=status.HTTP_204_NO_CONTENT)
def remove_from_cart(
    item_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Remove item from cart"""
    cart_service.remove_item(db, current_user.id, item_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.delete("", status_code=status.HTTP_204_NO_CONTENT)
@router.delete("/", status_code=status.HTTP_204_NO_CONTENT)
def clear_cart(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Clear entire cart"""
    cart_service.clear(db, current_user.id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
