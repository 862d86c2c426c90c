from pydantic import BaseModel, ConfigDict, Field
from typing import Any, Dict


class CartItemCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    product_id: int = Field(..., gt=0, alias="productId")
    quantity: int = Field(default=1, ge=1, le=100)
    options: Dict[str, Any] = Field(default_factory=dict)


class CartItemUpdate(BaseModel):
    # Range is checked by the cart service so zero gets a 400, not a 422.
    quantity: int
