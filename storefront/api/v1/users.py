from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from storefront.api.deps import get_current_user, require_admin
from storefront.core.exceptions import Conflict, Forbidden, NotFound
from storefront.core.rate_limiter import limiter
from storefront.db.session import get_db
from storefront.models.user import User
from storefront.schemas.user import UserAdminUpdate, UserResponse
from storefront.services import deletion_guard
from storefront.utils.response import success

router = APIRouter()


def _user_dict(user: User) -> dict:
    return UserResponse.model_validate(user).model_dump()


@router.get("/user")
def get_current_user_profile(current_user: User = Depends(get_current_user)):
    return success(data=_user_dict(current_user), message="User retrieved successfully")


@router.delete("/user")
@limiter.limit("5/minute")
def delete_own_account(
    request: Request,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Delete the caller's account unless it has order history"""
    deletion_guard.delete_user(db, current_user.id)
    return success(message="Account deleted successfully")


@router.delete("/user/{user_id}")
@limiter.limit("20/minute")
def delete_user(
    request: Request,
    user_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    if not current_user.is_admin and current_user.id != user_id:
        raise Forbidden("Not authorized to delete this user")
    deletion_guard.delete_user(db, user_id)
    return success(message="User deleted successfully")


@router.get("/users")
def list_users(
    current_admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    """Admin: all users, newest first"""
    users = db.query(User).order_by(User.created_at.desc(), User.id.desc()).all()
    return success(data=[_user_dict(user) for user in users], message="Users retrieved successfully")


@router.put("/users/{user_id}")
def update_user(
    user_id: int,
    payload: UserAdminUpdate,
    current_admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    """Admin: change a user's role, name, email or active flag"""
    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise NotFound("User not found")

    changes = payload.model_dump(exclude_unset=True)
    if "email" in changes and changes["email"] != user.email:
        taken = db.query(User.id).filter(User.email == changes["email"], User.id != user.id).first()
        if taken:
            raise Conflict("Email already in use")

    for field, value in changes.items():
        if value is not None:
            setattr(user, field, value)
    db.commit()
    db.refresh(user)

    return success(data=_user_dict(user), message="User updated successfully")
