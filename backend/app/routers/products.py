from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app import models, schemas
from app.database import get_db
from app.dependencies import get_current_user
from app.services import drafts

router = APIRouter(prefix="/api/products", tags=["Products"])


@router.get("", response_model=List[schemas.ProductOut])
def list_products(user: models.User = Depends(get_current_user), db: Session = Depends(get_db)):
    return drafts.list_products(db, user.id)


@router.post("", response_model=schemas.ProductOut, status_code=201)
def create_product(
    payload: schemas.ProductCreate,
    user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    result = drafts.unwrap(drafts.create_product(db, user.id, payload))
    return drafts.get_owned_product(db, result.product_id, user.id)


@router.delete("/{product_id}")
def delete_product(
    product_id: str,
    user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    drafts.unwrap(drafts.delete_product(db, user.id, product_id))
    return {"success": True}
