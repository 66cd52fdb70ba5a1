from __future__ import annotations

import logging
from typing import Literal

from fastapi import APIRouter, Depends, File, UploadFile

from app import models, schemas
from app.config import settings
from app.dependencies import get_current_user
from app.errors import ApiError
from app.services import storage

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/uploads", tags=["Uploads"])


def _store(upload: UploadFile, content: bytes, bucket: str, folder: str, user: models.User) -> schemas.UploadOut:
    try:
        result = storage.upload_file(
            content,
            upload.filename or "upload",
            upload.content_type or "application/octet-stream",
            bucket,
            folder,
            user.id,
        )
    except storage.StorageError as e:
        logger.error("Upload for user %s failed: %s", user.id, e)
        raise ApiError(502, str(e))

    return schemas.UploadOut(url=result.url, path=result.path, file_name=upload.filename)


@router.post("/image", response_model=schemas.UploadOut)
async def upload_image(
    file: UploadFile = File(...),
    target: Literal["product", "avatar"] = "product",
    user: models.User = Depends(get_current_user),
):
    content = await file.read()
    error = storage.validate_image_file(file.content_type, len(content))
    if error:
        raise ApiError(400, error)

    if target == "avatar":
        return _store(file, content, settings.STORAGE_AVATARS_BUCKET, "", user)
    return _store(file, content, settings.STORAGE_PRODUCTS_BUCKET, "images", user)


@router.post("/file", response_model=schemas.UploadOut)
async def upload_product_file(
    file: UploadFile = File(...),
    user: models.User = Depends(get_current_user),
):
    content = await file.read()
    error = storage.validate_product_file(file.content_type, len(content))
    if error:
        raise ApiError(400, error)

    return _store(file, content, settings.STORAGE_PRODUCTS_BUCKET, "files", user)
