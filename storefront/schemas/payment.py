from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

from storefront.schemas.order import ShippingAddress


class PaymentIntentCreate(BaseModel):
    # Validated by the checkout service so a non-positive amount is a 400.
    amount: Decimal


class PaymentConfirm(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    payment_intent_id: str = Field(..., min_length=1, max_length=255, alias="paymentIntentId")
    shipping_address: ShippingAddress = Field(..., alias="shippingAddress")
