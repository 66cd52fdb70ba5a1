from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app import models, schemas
from app.config import settings
from app.errors import ApiError
from app.models import DeliveryType, ProductType
from app.services import storage

logger = logging.getLogger(__name__)


# ============================================================
# RESULT
# ============================================================
NOT_FOUND = "not_found"
VALIDATION = "validation"
WRITE_FAILED = "write_failed"

WIZARD_TYPES = (ProductType.FREE_LEAD, ProductType.DIGITAL, ProductType.WEBINAR)

DEFAULT_TITLE = "Untitled Draft"
DEFAULT_BUTTON_TEXT = "Get Free Download"

# media columns keep their value when re-submitted empty
MEDIA_FIELDS = ("image_url", "image_path", "file_url", "file_path", "file_name")


@dataclass
class DraftResult:
    success: bool
    error: Optional[str] = None
    error_kind: Optional[str] = None
    product_id: Optional[str] = None
    draft: Optional[schemas.DraftOut] = None


def _fail(kind: str, error: str) -> DraftResult:
    return DraftResult(success=False, error=error, error_kind=kind)


STATUS_BY_KIND = {NOT_FOUND: 404, VALIDATION: 400, WRITE_FAILED: 500}


def unwrap(result: DraftResult) -> DraftResult:
    """Router side: a failed result becomes the matching ApiError."""
    if not result.success:
        raise ApiError(STATUS_BY_KIND.get(result.error_kind, 500), result.error)
    return result


class _Invalid(ValueError):
    pass


# ============================================================
# HELPERS
# ============================================================
def get_owned_product(db: Session, product_id: str, owner_id: str) -> Optional[models.Product]:
    # a foreign product and a missing one look the same to the caller
    return (
        db.query(models.Product)
        .filter(models.Product.id == product_id, models.Product.user_id == owner_id)
        .first()
    )


def _check_price(price: Optional[Decimal]) -> Decimal:
    if price is None:
        return Decimal("0")
    if price < 0:
        raise _Invalid("Price must be a positive number")
    return price


def _untitled(product_type: ProductType) -> str:
    return "Untitled Lead Magnet" if product_type == ProductType.FREE_LEAD else "Untitled Product"


def _serialize_form_fields(product_type: ProductType, raw) -> object:
    if raw is None:
        return None
    try:
        parsed = schemas.parse_form_fields(product_type, raw, strict=True)
    except schemas.FormFieldsError as e:
        raise _Invalid(str(e)) from e
    return schemas.form_fields_to_json(parsed)


def _apply_changes(product: models.Product, payload: schemas.DraftIn, default_title: str) -> None:
    """
    Merge the supplied keys into `product` (partial PATCH). Keys absent from
    the payload keep their stored value; media keys also keep it when sent
    empty.
    """
    supplied = payload.model_fields_set

    if "title" in supplied:
        product.title = (payload.title or "").strip() or default_title

    if "subtitle" in supplied:
        product.subtitle = payload.subtitle or None

    if "description" in supplied:
        product.description = payload.description or ""
    elif "subtitle" in supplied:
        product.description = payload.subtitle or ""

    if "button_text" in supplied:
        product.button_text = payload.button_text or DEFAULT_BUTTON_TEXT

    if "delivery_type" in supplied:
        product.delivery_type = payload.delivery_type or DeliveryType.UPLOAD.value

    if "redirect_url" in supplied:
        product.redirect_url = payload.redirect_url or None

    if "price" in supplied and product.type != ProductType.FREE_LEAD:
        product.price = _check_price(payload.price)

    if "form_fields" in supplied:
        product.form_fields = _serialize_form_fields(product.type, payload.form_fields)

    for field in MEDIA_FIELDS:
        value = getattr(payload, field)
        if field in supplied and value:
            setattr(product, field, value)

    if "current_step" in supplied and payload.current_step is not None:
        product.current_step = payload.current_step


def to_draft_out(product: models.Product) -> schemas.DraftOut:
    fields = schemas.parse_form_fields(product.type, product.form_fields)
    return schemas.DraftOut(
        id=product.id,
        type=product.type,
        title=product.title,
        subtitle=product.subtitle,
        description=product.description,
        price=product.price if product.price is not None else Decimal("0"),
        button_text=product.button_text,
        image_url=product.image_url,
        file_url=product.file_url,
        file_name=product.file_name,
        delivery_type=product.delivery_type or DeliveryType.UPLOAD.value,
        redirect_url=product.redirect_url,
        form_fields=schemas.form_fields_to_json(fields) if product.form_fields is not None else None,
        current_step=product.current_step or 1,
        is_draft=bool(product.is_draft),
        is_active=bool(product.is_active),
    )


def _commit(db: Session, action: str) -> Optional[DraftResult]:
    try:
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Error while trying to %s", action)
        return _fail(WRITE_FAILED, f"Failed to {action}")
    return None


# ============================================================
# SAVE / UPDATE / FINALIZE / LOAD
# ============================================================
def save_draft(db: Session, owner_id: str, payload: schemas.DraftIn) -> DraftResult:
    product_type = payload.product_type if payload.product_type in WIZARD_TYPES else ProductType.DIGITAL

    try:
        price = Decimal("0") if product_type == ProductType.FREE_LEAD else _check_price(payload.price)
        form_fields = _serialize_form_fields(product_type, payload.form_fields)
    except _Invalid as e:
        return _fail(VALIDATION, str(e))

    subtitle = payload.subtitle or None
    product = models.Product(
        user_id=owner_id,
        type=product_type,
        title=(payload.title or "").strip() or DEFAULT_TITLE,
        subtitle=subtitle,
        description=payload.description or subtitle or "",
        price=price,
        currency="USD",
        image_url=payload.image_url or None,
        image_path=payload.image_path or None,
        file_url=payload.file_url or None,
        file_path=payload.file_path or None,
        file_name=payload.file_name or None,
        button_text=payload.button_text or DEFAULT_BUTTON_TEXT,
        delivery_type=payload.delivery_type or DeliveryType.UPLOAD.value,
        redirect_url=payload.redirect_url or None,
        form_fields=form_fields,
        current_step=payload.current_step or 1,
        is_draft=True,
        is_active=False,
    )

    db.add(product)
    failed = _commit(db, "save draft")
    if failed:
        return failed

    db.refresh(product)
    logger.info("Draft %s saved for user %s at step %s", product.id, owner_id, product.current_step)
    return DraftResult(success=True, product_id=product.id)


def update_draft(db: Session, owner_id: str, product_id: str, payload: schemas.DraftIn) -> DraftResult:
    product = get_owned_product(db, product_id, owner_id)
    if not product:
        return _fail(NOT_FOUND, "Product not found")

    try:
        _apply_changes(product, payload, DEFAULT_TITLE)
    except _Invalid as e:
        db.rollback()
        return _fail(VALIDATION, str(e))

    failed = _commit(db, "update draft")
    if failed:
        return failed

    return DraftResult(success=True, product_id=product.id)


def finalize_draft(db: Session, owner_id: str, product_id: str, payload: schemas.DraftIn) -> DraftResult:
    """The only draft -> published transition."""
    product = get_owned_product(db, product_id, owner_id)
    if not product:
        return _fail(NOT_FOUND, "Product not found")

    try:
        _apply_changes(product, payload, _untitled(product.type))
    except _Invalid as e:
        db.rollback()
        return _fail(VALIDATION, str(e))

    product.is_draft = False
    product.is_active = True

    failed = _commit(db, "finalize product")
    if failed:
        return failed

    logger.info("Product %s published by user %s", product.id, owner_id)
    return DraftResult(success=True, product_id=product.id)


def load_draft(db: Session, owner_id: str, product_id: str) -> DraftResult:
    try:
        product = get_owned_product(db, product_id, owner_id)
    except SQLAlchemyError:
        logger.exception("Error loading draft %s", product_id)
        return _fail(WRITE_FAILED, "Failed to load draft")

    if not product:
        return _fail(NOT_FOUND, "Product not found")

    return DraftResult(success=True, product_id=product.id, draft=to_draft_out(product))


# ============================================================
# DIRECT PRODUCTS (non-wizard)
# ============================================================
def list_products(db: Session, owner_id: str) -> List[models.Product]:
    return (
        db.query(models.Product)
        .filter(models.Product.user_id == owner_id)
        .order_by(models.Product.created_at.desc())
        .all()
    )


def create_product(db: Session, owner_id: str, payload: schemas.ProductCreate) -> DraftResult:
    title = (payload.title or "").strip()
    if not title or payload.price is None:
        return _fail(VALIDATION, "Please fill in all required fields")
    if payload.price <= 0:
        return _fail(VALIDATION, "Price must be a positive number")

    product = models.Product(
        user_id=owner_id,
        type=payload.type,
        title=title,
        description=(payload.description or "").strip() or None,
        price=payload.price,
        currency=payload.currency or "USD",
        image_url=payload.image_url,
        image_path=payload.image_path,
        file_url=payload.file_url,
        file_path=payload.file_path,
        file_name=payload.file_name,
        is_draft=False,
        is_active=True,
    )

    db.add(product)
    failed = _commit(db, "create product")
    if failed:
        return failed

    db.refresh(product)
    return DraftResult(success=True, product_id=product.id)


def delete_product(db: Session, owner_id: str, product_id: str) -> DraftResult:
    product = get_owned_product(db, product_id, owner_id)
    if not product:
        return _fail(NOT_FOUND, "Product not found")

    bucket = settings.STORAGE_PRODUCTS_BUCKET
    paths = [
        product.image_path or storage.path_from_public_url(bucket, product.image_url),
        product.file_path or storage.path_from_public_url(bucket, product.file_url),
    ]

    db.delete(product)
    failed = _commit(db, "delete product")
    if failed:
        return failed

    for path in filter(None, paths):
        try:
            storage.delete_file(bucket, path)
        except storage.StorageError:
            logger.exception("Could not remove %s after deleting product %s", path, product_id)

    return DraftResult(success=True, product_id=product_id)
