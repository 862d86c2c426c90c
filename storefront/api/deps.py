import structlog
from fastapi import Depends, Request
from sqlalchemy.orm import Session

from storefront.core.exceptions import Forbidden, Unauthorized
from storefront.core.security import decode_token
from storefront.db.session import get_db
from storefront.models.user import User, UserRole

logger = structlog.get_logger()


def _extract_token(request: Request):
    auth_header = request.headers.get("Authorization")
    if auth_header and auth_header.startswith("Bearer "):
        return auth_header.split(" ", 1)[1].strip()
    return request.cookies.get("access_token")


def get_current_user(
    request: Request,
    db: Session = Depends(get_db),
) -> User:
    """Get current authenticated user from bearer token or cookie."""
    token = _extract_token(request)
    if not token:
        raise Unauthorized("Not authenticated")

    payload = decode_token(token)
    user_id = payload.get("sub")
    try:
        user_id = int(user_id)
    except (TypeError, ValueError):
        raise Unauthorized("Invalid authentication credentials")

    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise Unauthorized("User not found")

    if not user.is_active:
        raise Forbidden("Account is inactive")

    structlog.contextvars.bind_contextvars(user_id=user.id)
    return user


def require_admin(
    request: Request,
    current_user: User = Depends(get_current_user),
) -> User:
    if current_user.role != UserRole.ADMIN:
        raise Forbidden("Admin access required")

    logger.info(
        "admin_action",
        action=f"{request.method} {request.url.path}",
        admin_user_id=current_user.id,
    )
    return current_user
