from pydantic import BaseModel, EmailStr
from typing import Optional
from datetime import datetime

from storefront.models.user import UserRole


class UserResponse(BaseModel):
    id: int
    email: EmailStr
    username: Optional[str] = None
    full_name: str
    role: UserRole
    is_active: bool
    created_at: datetime

    class Config:
        from_attributes = True


class UserAdminUpdate(BaseModel):
    email: Optional[EmailStr] = None
    full_name: Optional[str] = None
    role: Optional[UserRole] = None
    is_active: Optional[bool] = None
