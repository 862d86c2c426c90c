from datetime import datetime, timedelta
from jose import JWTError, jwt
from storefront.core.config import settings
from storefront.core.exceptions import Unauthorized


def create_access_token(data: dict, expires_delta: timedelta = None) -> str:
    """Create a bearer token in the identity provider's format (tests, tooling)."""
    to_encode = data.copy()

    if expires_delta:
        expire = datetime.utcnow() + expires_delta
    else:
        expire = datetime.utcnow() + timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)

    to_encode.update({"exp": expire, "type": "access"})
    encoded_jwt = jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)
    return encoded_jwt


def decode_token(token: str) -> dict:
    """Decode and validate JWT token"""
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except JWTError:
        raise Unauthorized("Could not validate credentials")

    if payload.get("type") != "access":
        raise Unauthorized("Invalid token type")
    return payload
