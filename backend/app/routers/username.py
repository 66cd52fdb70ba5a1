from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app import schemas
from app.database import get_db
from app.errors import ApiError
from app.services.username_validation import validate_username

router = APIRouter(prefix="/api/username", tags=["Username"])


@router.post("/check", response_model=schemas.UsernameValidationOut, response_model_exclude_none=True)
def check_username(payload: schemas.UsernameCheckRequest, db: Session = Depends(get_db)):
    if not payload.username or not isinstance(payload.username, str):
        raise ApiError(400, "Username is required")

    result = validate_username(db, payload.username, payload.exclude_user_id)
    return schemas.UsernameValidationOut(is_valid=result.is_valid, error=result.error)
