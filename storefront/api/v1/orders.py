from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from storefront.api.deps import get_current_user, require_admin
from storefront.core.exceptions import Forbidden
from storefront.core.rate_limiter import limiter
from storefront.db.session import get_db
from storefront.models.order import Order
from storefront.models.user import User
from storefront.schemas.order import OrderStatusUpdate
from storefront.services import order_service
from storefront.utils.response import success

router = APIRouter()


def _isoformat_or_none(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return f"{value.isoformat()}Z"


def _get_visible_order(db: Session, order_id: int, user: User) -> Order:
    order = order_service.get_order(db, order_id)
    if not user.is_admin and order.user_id != user.id:
        raise Forbidden("Not authorized to view this order")
    return order


@router.get("", response_model=dict)
@router.get("/", response_model=dict)
def list_orders(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Own orders for customers, every order for admins"""
    orders = order_service.get_orders(
        db,
        user_id=None if current_user.is_admin else current_user.id,
    )
    return success(
        data=[order_service.serialize_order(order) for order in orders],
        message="Orders retrieved successfully",
    )


@router.get("/{order_id}", response_model=dict)
def get_order(
    order_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    order = _get_visible_order(db, order_id, current_user)
    return success(data=order_service.serialize_order(order), message="Order retrieved successfully")


@router.put("/{order_id}/status")
@limiter.limit("60/minute")
def update_order_status(
    request: Request,
    order_id: int,
    payload: OrderStatusUpdate,
    current_admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    """Admin: move an order to its next status"""
    new_status = order_service.parse_status(payload.status)
    order = order_service.update_status(
        db,
        order_id,
        new_status,
        changed_by=current_admin.id,
        notes=payload.notes,
    )
    order = order_service.get_order(db, order.id)
    return success(data=order_service.serialize_order(order), message="Order status updated")


@router.get("/{order_id}/history", response_model=dict)
def get_order_history(
    order_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    _get_visible_order(db, order_id, current_user)
    history = order_service.get_status_history(db, order_id)
    return success(
        data=[
            {
                "id": entry.id,
                "old_status": entry.old_status,
                "new_status": entry.new_status,
                "changed_by": entry.changed_by,
                "notes": entry.notes,
                "created_at": _isoformat_or_none(entry.created_at),
            }
            for entry in history
        ],
        message="Order history retrieved successfully",
    )
