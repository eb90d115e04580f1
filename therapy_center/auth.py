# therapy_center/auth.py

from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends, HTTPException
from fastapi.security import OAuth2PasswordBearer
from jose import jwt, JWTError
from sqlmodel import Session, select

from .config import get_settings
from .db import get_session
from .deps import RequestContext
from .models import User
from .schemas import UserRole

# Tokens come from the external auth service.
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="auth/login")


def create_access_token(data: dict, expires_minutes: Optional[int] = None) -> str:
    settings = get_settings()
    to_encode = data.copy()
    if "sub" in to_encode:
        to_encode["sub"] = str(to_encode["sub"])
    minutes = expires_minutes if expires_minutes is not None else settings.access_token_expire_minutes
    to_encode["exp"] = datetime.now(timezone.utc) + timedelta(minutes=minutes)
    return jwt.encode(to_encode, settings.secret_key, algorithm=settings.algorithm)


def _unauthorized():
    return HTTPException(
        status_code=401,
        detail="Invalid token",
        headers={"WWW-Authenticate": "Bearer"},
    )


def get_current_user(
    token: str = Depends(oauth2_scheme),
    session: Session = Depends(get_session),
) -> RequestContext:
    settings = get_settings()
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])
        user_id = payload.get("sub")
        tenant_id = payload.get("tenant_id")
        if user_id is None or tenant_id is None:
            raise _unauthorized()
        user_id = int(user_id)
    except (JWTError, ValueError):
        raise _unauthorized()

    user = session.exec(
        select(User)
        .where(User.id == user_id)
        .where(User.tenant_id == tenant_id)
    ).first()

    if user is None or not user.active:
        raise _unauthorized()

    return RequestContext.for_user(user.tenant_id, user.id, UserRole(user.role))
