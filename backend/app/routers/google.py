from __future__ import annotations

import logging
from typing import Optional
from urllib.parse import quote

from fastapi import APIRouter, Depends
from fastapi.responses import RedirectResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app import models
from app.config import settings
from app.database import get_db
from app.dependencies import get_current_user
from app.errors import ApiError
from app.services import google_calendar

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/google", tags=["Google"])

DEFAULT_RETURN_URL = "/dashboard/store"


def _safe_return_url(return_url: Optional[str]) -> str:
    # relative paths only, never an absolute URL (open redirect)
    if not return_url or not return_url.startswith("/") or return_url.startswith("//"):
        return DEFAULT_RETURN_URL
    return return_url


def _back(return_url: str, query: str) -> RedirectResponse:
    sep = "&" if "?" in return_url else "?"
    return RedirectResponse(settings.public_url(f"{return_url}{sep}{query}"), status_code=302)


@router.get("/auth")
def google_auth(returnUrl: Optional[str] = None, user: models.User = Depends(get_current_user)):
    state = f"{user.id}|{_safe_return_url(returnUrl)}"
    return RedirectResponse(google_calendar.get_google_auth_url(state), status_code=302)


@router.get("/callback")
def google_callback(
    code: Optional[str] = None,
    state: Optional[str] = None,
    error: Optional[str] = None,
    db: Session = Depends(get_db),
):
    user_id, _, return_url = (state or "").partition("|")
    return_url = _safe_return_url(return_url)

    if error:
        logger.error("Google OAuth error: %s", error)
        return _back(return_url, f"google_error={quote(error, safe='')}")

    if not code or not state or not user_id:
        return _back(return_url, "google_error=missing_code_or_state")

    try:
        tokens = google_calendar.get_google_tokens(code)
        if not tokens.success:
            return _back(return_url, f"google_error={quote(tokens.error or 'token_exchange_failed', safe='')}")

        user = db.get(models.User, user_id)
        if not user:
            return _back(return_url, "google_error=unauthorized")

        user.google_access_token = tokens.data.get("access_token")
        # Google only issues a refresh token on consent; keep the old one otherwise
        user.google_refresh_token = tokens.data.get("refresh_token") or user.google_refresh_token
        user.google_token_expiry = tokens.data.get("expiry")

        try:
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            logger.exception("Error storing Google tokens for user %s", user_id)
            return _back(return_url, "google_error=storage_failed")

    except Exception:
        logger.exception("Error in Google callback")
        return _back(return_url, "google_error=callback_failed")

    return _back(return_url, "google_connected=true")


@router.post("/disconnect")
def google_disconnect(user: models.User = Depends(get_current_user), db: Session = Depends(get_db)):
    user.google_access_token = None
    user.google_refresh_token = None
    user.google_token_expiry = None

    try:
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Error disconnecting Google account for user %s", user.id)
        raise ApiError(500, "Failed to disconnect Google account")

    return {"success": True}


@router.get("/status")
def google_status(user: models.User = Depends(get_current_user)):
    expiry = user.google_token_expiry
    return {
        "isConnected": bool(user.google_access_token and user.google_refresh_token),
        "isExpired": google_calendar.is_token_expired(user),
        "tokenExpiry": google_calendar.as_utc(expiry).isoformat() if expiry else None,
    }
