from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from storefront.api.deps import get_current_user
from storefront.core.rate_limiter import limiter
from storefront.db.session import get_db
from storefront.models.user import User
from storefront.schemas.payment import PaymentConfirm, PaymentIntentCreate
from storefront.services import checkout_service
from storefront.services.order_service import serialize_order
from storefront.services.payment_gateway import RazorpayGateway, get_payment_gateway
from storefront.services.settings_service import SettingsService, get_settings_service
from storefront.utils.response import success

router = APIRouter()


@router.post("/create-payment-intent")
@limiter.limit("10/minute")
def create_payment_intent(
    request: Request,
    payload: PaymentIntentCreate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    gateway: RazorpayGateway = Depends(get_payment_gateway),
    store_settings: SettingsService = Depends(get_settings_service),
):
    """Open a payment intent for the amount shown to the customer"""
    intent = checkout_service.create_intent(
        db,
        current_user,
        payload.amount,
        gateway,
        currency=store_settings.currency,
    )
    return success(data=intent, message="Payment intent created")


@router.post("/confirm-payment")
@limiter.limit("10/minute")
def confirm_payment(
    request: Request,
    payload: PaymentConfirm,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    gateway: RazorpayGateway = Depends(get_payment_gateway),
    store_settings: SettingsService = Depends(get_settings_service),
):
    """Create the order for a paid intent; repeats return the same order"""
    order, created = checkout_service.confirm_payment(
        db,
        current_user,
        payload.payment_intent_id,
        payload.shipping_address.snapshot(),
        gateway,
        currency=store_settings.currency,
    )
    data = serialize_order(order)
    data["created"] = created
    return success(
        data=data,
        message="Order created successfully" if created else "Order already exists for this payment",
    )
