from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, Request
from fastapi.responses import HTMLResponse
from fastapi.templating import Jinja2Templates
from sqlalchemy import func
from sqlalchemy.orm import Session

from app import models, schemas
from app.config import TEMPLATES_DIR
from app.database import get_db
from app.errors import ApiError
from app.models import AnalyticsType, ProductType
from app.services.analytics import track_event

router = APIRouter(tags=["Public"])

templates = Jinja2Templates(directory=str(TEMPLATES_DIR))


# --------------------------------------------------
# UTILS
# --------------------------------------------------
def _get_user_by_username(db: Session, username: str) -> models.User:
    username = username.lower().strip()
    user = db.query(models.User).filter(func.lower(models.User.username) == username).first()
    if not user:
        raise ApiError(404, "User not found")
    return user


def _published_products(db: Session, user: models.User) -> List[models.Product]:
    return (
        db.query(models.Product)
        .filter(
            models.Product.user_id == user.id,
            models.Product.is_active.is_(True),
            models.Product.is_draft.is_(False),
        )
        .order_by(models.Product.created_at.desc())
        .all()
    )


def _public_product(product: models.Product) -> schemas.PublicProductOut:
    fields = schemas.parse_form_fields(product.type, product.form_fields)
    return schemas.PublicProductOut(
        id=product.id,
        type=product.type,
        title=product.title,
        subtitle=product.subtitle,
        description=product.description,
        price=product.price,
        currency=product.currency,
        image_url=product.image_url,
        button_text=product.button_text,
        delivery_type=product.delivery_type,
        form_fields=schemas.form_fields_to_json(fields),
    )


def _public_profile(db: Session, username: str) -> schemas.PublicProfileOut:
    user = _get_user_by_username(db, username)
    profile = schemas.PublicProfileOut(
        username=user.username,
        full_name=user.full_name,
        bio=user.bio,
        avatar_url=user.avatar_url,
        social_links=[schemas.SocialLinkOut.model_validate(link) for link in user.social_links],
        products=[_public_product(p) for p in _published_products(db, user)],
    )
    track_event(db, user.id, AnalyticsType.PAGE_VIEW, {"username": user.username})
    return profile


# --------------------------------------------------
# PUBLIC PAGE
# --------------------------------------------------
@router.get("/api/public/{username}", response_model=schemas.PublicProfileOut)
def public_profile(username: str, db: Session = Depends(get_db)):
    return _public_profile(db, username)


@router.get("/u/{username}", response_class=HTMLResponse)
def public_page(username: str, request: Request, db: Session = Depends(get_db)):
    profile = _public_profile(db, username)
    return templates.TemplateResponse(
        request,
        "public_page.html",
        {
            "profile": profile,
            "ProductType": ProductType,
        },
    )
