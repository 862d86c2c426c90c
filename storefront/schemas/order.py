from typing import Optional

import bleach
from pydantic import BaseModel, ConfigDict, Field, field_validator


def _clean(value: Optional[str]) -> Optional[str]:
    if value is None:
        return value
    return bleach.clean(value, tags=[], attributes={}, strip=True).strip()


class ShippingAddress(BaseModel):
    """Address captured at checkout and stored on the order as-is."""

    model_config = ConfigDict(populate_by_name=True)

    first_name: str = Field(..., min_length=1, max_length=100, alias="firstName")
    last_name: str = Field(..., min_length=1, max_length=100, alias="lastName")
    address: str = Field(..., min_length=1, max_length=300)
    city: str = Field(..., min_length=1, max_length=100)
    state: str = Field(..., min_length=1, max_length=100)
    zip_code: str = Field(..., min_length=1, max_length=20, alias="zipCode")
    country: str = Field(default="US", max_length=100)
    phone: Optional[str] = Field(default=None, max_length=30)

    @field_validator("first_name", "last_name", "address", "city", "state", "zip_code", "country", "phone")
    @classmethod
    def strip_markup(cls, value: Optional[str]) -> Optional[str]:
        return _clean(value)

    def snapshot(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)


class OrderStatusUpdate(BaseModel):
    status: str
    notes: Optional[str] = None

    @field_validator("notes")
    @classmethod
    def validate_notes(cls, value: Optional[str]) -> Optional[str]:
        sanitized = _clean(value)
        if sanitized is not None and len(sanitized) > 500:
            raise ValueError("Notes too long (max 500 chars)")
        return sanitized
