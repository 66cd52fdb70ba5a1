from __future__ import annotations

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app import models, schemas
from app.database import get_db
from app.dependencies import get_current_user
from app.errors import ApiError
from app.models import SocialPlatform
from app.services.username_validation import validate_username

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/profile", tags=["Profile"])


def _commit(db: Session, action: str) -> None:
    try:
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Error while trying to %s", action)
        raise ApiError(500, f"Failed to {action}")


@router.get("", response_model=schemas.ProfileOut)
def get_profile(user: models.User = Depends(get_current_user)):
    return user


@router.patch("", response_model=schemas.ProfileOut)
def update_profile(
    payload: schemas.ProfileUpdate,
    user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    data = payload.model_dump(exclude_unset=True)

    if "username" in data:
        username = (data.pop("username") or "").strip().lower()
        if username != user.username:
            result = validate_username(db, username, exclude_user_id=user.id)
            if not result.is_valid:
                raise ApiError(400, result.error)
            user.username = username

    # an empty avatar keeps the current one
    for field in ("avatar_url", "avatar_path"):
        if field in data and not data[field]:
            data.pop(field)

    for field, value in data.items():
        setattr(user, field, value)

    _commit(db, "update profile")
    db.refresh(user)
    return user


@router.put("/social-links", response_model=schemas.ProfileOut)
def replace_social_links(
    payload: schemas.SocialLinksUpdate,
    user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    db.query(models.SocialLink).filter(models.SocialLink.user_id == user.id).delete()

    position = 1
    for platform in SocialPlatform:
        url = (getattr(payload, platform.value) or "").strip()
        if not url:
            continue
        db.add(models.SocialLink(user_id=user.id, platform=platform, url=url, position=position))
        position += 1

    _commit(db, "update social links")
    db.refresh(user)
    return user
