import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from fastapi import Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from passlib.context import CryptContext
from sqlalchemy.orm import Session

from ..config import settings
from ..db import get_db
from ..errors import AuthenticationError, AuthorizationError
from ..models.models import User


pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")
http_bearer = HTTPBearer(auto_error=False)


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain: str, hashed: str) -> bool:
    try:
        return pwd_context.verify(plain, hashed)
    except (ValueError, TypeError):
        return False


def _create_token(sub: str, ttl_seconds: int, extra: Optional[dict] = None) -> str:
    now = datetime.now(tz=timezone.utc)
    payload = {
        "sub": sub,
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(seconds=ttl_seconds)).timestamp()),
        "jti": str(uuid.uuid4()),
    }
    if extra:
        payload.update(extra)
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def create_access_token(user: User) -> str:
    return _create_token(
        str(user.id),
        settings.jwt_ttl_seconds,
        extra={"type": "access", "email": user.email, "role": user.role},
    )


def create_refresh_token(user: User) -> str:
    return _create_token(str(user.id), settings.refresh_ttl_seconds, extra={"type": "refresh"})


def decode_token(token: str, expected_type: str = "access") -> dict:
    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except jwt.ExpiredSignatureError:
        raise AuthenticationError("Token expired")
    except jwt.InvalidTokenError:
        raise AuthenticationError("Invalid token")
    if payload.get("type") != expected_type:
        raise AuthenticationError("Invalid token type")
    return payload


def user_id_from_payload(payload: dict) -> uuid.UUID:
    try:
        return uuid.UUID(str(payload.get("sub")))
    except ValueError:
        raise AuthenticationError("Invalid subject")


def get_current_user(
    creds: Optional[HTTPAuthorizationCredentials] = Depends(http_bearer),
    db: Session = Depends(get_db),
) -> User:
    if creds is None or creds.scheme.lower() != "bearer":
        raise AuthenticationError("Access token required")
    payload = decode_token(creds.credentials)
    user = db.get(User, user_id_from_payload(payload))
    if user is None:
        raise AuthenticationError("User not found")
    if not user.is_active:
        raise AuthenticationError("User account is deactivated")
    return user


def require_roles(*allowed_roles: str):
    def _dep(user: User = Depends(get_current_user)) -> User:
        if user.role not in allowed_roles:
            raise AuthorizationError("Insufficient permissions")
        return user

    return _dep


def require_self_or_roles(*allowed_roles: str, param: str = "user_id"):
    """Allow the listed roles, or the user named by the ``param`` path parameter."""
    def _dep(request: Request, user: User = Depends(get_current_user)) -> User:
        if user.role in allowed_roles:
            return user
        if str(user.id) == str(request.path_params.get(param)):
            return user
        raise AuthorizationError("Access denied. You can only access your own resources.")

    return _dep


require_admin = require_roles("admin")
require_admin_or_hr = require_roles("admin", "hr")
