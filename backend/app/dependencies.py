from __future__ import annotations

import hmac
import logging
from typing import Optional

from fastapi import Depends, Header, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app import models
from app.config import settings
from app.database import get_db
from app.services.username_validation import (
    generate_unique_username,
    generate_username_from_email,
    validate_username,
)

logger = logging.getLogger(__name__)

# missing credentials must be a 401, not FastAPI's default 403
security = HTTPBearer(auto_error=False)


def _unauthorized(detail: str = "Unauthorized") -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def verify_access_token(token: str) -> Optional[dict]:
    """Decode an auth-provider access token. None when invalid or expired."""
    if not settings.AUTH_JWT_SECRET:
        logger.error("AUTH_JWT_SECRET is not set; rejecting access token")
        return None
    try:
        return jwt.decode(
            token,
            settings.AUTH_JWT_SECRET,
            algorithms=[settings.AUTH_JWT_ALGORITHM],
            audience=settings.AUTH_JWT_AUDIENCE,
        )
    except JWTError:
        return None


def _initial_username(db: Session, email: str, metadata: Optional[dict]) -> str:
    requested = str((metadata or {}).get("username") or "").strip().lower()
    if requested and validate_username(db, requested).is_valid:
        return requested
    return generate_unique_username(db, generate_username_from_email(email))


def _get_or_create_user(
    db: Session,
    user_id: str,
    email: str,
    metadata: Optional[dict] = None,
) -> Optional[models.User]:
    """
    Users live in the auth provider first: the local row is created on the
    first authenticated request.
    """
    user = db.get(models.User, user_id)
    if user:
        return user

    if not email:
        return None

    user = models.User(id=user_id, email=email, username=_initial_username(db, email, metadata))
    try:
        db.add(user)
        db.commit()
        db.refresh(user)
    except SQLAlchemyError:
        # concurrent first request already created it
        db.rollback()
        logger.exception("Could not create local user %s", user_id)
        return db.get(models.User, user_id)

    logger.info("Created local user %s (%s)", user.id, user.username)
    return user


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: Session = Depends(get_db),
) -> models.User:
    if credentials is None:
        raise _unauthorized()

    payload = verify_access_token(credentials.credentials)
    if payload is None:
        raise _unauthorized("Invalid or expired token")

    user_id = payload.get("sub")
    if not user_id:
        raise _unauthorized("Invalid token payload")

    metadata = payload.get("user_metadata")
    user = _get_or_create_user(
        db,
        str(user_id),
        payload.get("email") or "",
        metadata if isinstance(metadata, dict) else None,
    )
    if user is None:
        raise _unauthorized("User not found")

    return user


def require_cron_secret(authorization: Optional[str] = Header(default=None)) -> None:
    """Open when CRON_SECRET is unset (local runs), bearer-protected otherwise."""
    secret = settings.CRON_SECRET
    if not secret:
        return

    expected = f"Bearer {secret}"
    if not authorization or not hmac.compare_digest(authorization, expected):
        raise _unauthorized()
