from __future__ import annotations

import logging
import random
import re
import string
from dataclasses import dataclass
from datetime import datetime
from typing import Optional
from urllib.parse import quote

import httpx

from app.config import settings
from app.models import utcnow

logger = logging.getLogger(__name__)


# ============================================================
# FILE VALIDATION (pure)
# ============================================================
ALLOWED_IMAGE_TYPES = ("image/jpeg", "image/png", "image/gif", "image/webp")
MAX_IMAGE_SIZE = 5 * 1024 * 1024  # 5MB

ALLOWED_PRODUCT_FILE_TYPES = (
    "application/pdf",
    "application/zip",
    "application/x-zip-compressed",
    "application/msword",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "text/plain",
)
MAX_PRODUCT_FILE_SIZE = 50 * 1024 * 1024  # 50MB


def validate_image_file(content_type: Optional[str], size: int) -> Optional[str]:
    if content_type not in ALLOWED_IMAGE_TYPES:
        return "Please upload a valid image file (JPEG, PNG, GIF, or WebP)"
    if size > MAX_IMAGE_SIZE:
        return "Image file size must be less than 5MB"
    return None


def validate_product_file(content_type: Optional[str], size: int) -> Optional[str]:
    if content_type not in ALLOWED_PRODUCT_FILE_TYPES:
        return "Please upload a valid file (PDF, ZIP, DOC, DOCX, or TXT)"
    if size > MAX_PRODUCT_FILE_SIZE:
        return "File size must be less than 50MB"
    return None


# ============================================================
# GATEWAY
# ============================================================
EXTENSION_REGEX = re.compile(r"[A-Za-z0-9]+")


class StorageError(RuntimeError):
    pass


@dataclass(frozen=True)
class UploadResult:
    url: str
    path: str


def _client() -> httpx.Client:
    return httpx.Client(timeout=settings.HTTP_TIMEOUT_SECONDS)


def _headers(content_type: Optional[str] = None) -> dict:
    key = settings.STORAGE_SERVICE_KEY or ""
    headers = {"Authorization": f"Bearer {key}", "apikey": key}
    if content_type:
        headers["Content-Type"] = content_type
    return headers


def _storage_base() -> str:
    return settings.STORAGE_URL.rstrip("/") + "/storage/v1"


def _error_message(resp: httpx.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        return resp.text or f"HTTP {resp.status_code}"
    return body.get("message") or body.get("error") or f"HTTP {resp.status_code}"


def build_object_path(user_id: str, filename: str, folder: str = "", now: Optional[datetime] = None) -> str:
    """
    user_id/[folder/]<epoch-ms>-<random>.<ext>

    The first segment must stay the owner's id: the bucket policies grant
    write access per user folder.
    """
    now = now or utcnow()
    ext = filename.rsplit(".", 1)[-1] if "." in (filename or "") else ""
    if not EXTENSION_REGEX.fullmatch(ext):
        ext = "bin"
    rand = "".join(random.choices(string.ascii_lowercase + string.digits, k=11))
    name = f"{int(now.timestamp() * 1000)}-{rand}.{ext}"
    return f"{user_id}/{folder.strip('/')}/{name}" if folder else f"{user_id}/{name}"


def get_public_url(bucket: str, path: str) -> str:
    return f"{_storage_base()}/object/public/{bucket}/{quote(path)}"


def path_from_public_url(bucket: str, url: Optional[str]) -> Optional[str]:
    if not url:
        return None
    parts = url.split(f"/storage/v1/object/public/{bucket}/")
    if len(parts) != 2 or not parts[1]:
        return None
    return parts[1]


def upload_file(
    content: bytes,
    filename: str,
    content_type: str,
    bucket: str,
    folder: str,
    user_id: str,
) -> UploadResult:
    path = build_object_path(user_id, filename, folder)

    try:
        with _client() as client:
            resp = client.post(
                f"{_storage_base()}/object/{bucket}/{quote(path)}",
                content=content,
                headers={**_headers(content_type), "x-upsert": "false"},
            )
    except httpx.HTTPError as e:
        raise StorageError(f"Upload failed: {e}") from e

    if resp.status_code >= 400:
        raise StorageError(f"Upload failed: {_error_message(resp)}")

    logger.info("Uploaded %s to bucket %s", path, bucket)
    return UploadResult(url=get_public_url(bucket, path), path=path)


def delete_file(bucket: str, path: str) -> None:
    try:
        with _client() as client:
            resp = client.request(
                "DELETE",
                f"{_storage_base()}/object/{bucket}",
                json={"prefixes": [path]},
                headers=_headers(),
            )
    except httpx.HTTPError as e:
        raise StorageError(f"Delete failed: {e}") from e

    if resp.status_code >= 400:
        raise StorageError(f"Delete failed: {_error_message(resp)}")


def create_signed_url(bucket: str, path: str, expires_in: Optional[int] = None) -> str:
    expires_in = expires_in or settings.SIGNED_URL_TTL_SECONDS

    try:
        with _client() as client:
            resp = client.post(
                f"{_storage_base()}/object/sign/{bucket}/{quote(path)}",
                json={"expiresIn": expires_in},
                headers=_headers(),
            )
    except httpx.HTTPError as e:
        raise StorageError(f"Signing failed: {e}") from e

    if resp.status_code >= 400:
        raise StorageError(f"Signing failed: {_error_message(resp)}")

    signed = (resp.json() or {}).get("signedURL")
    if not signed:
        raise StorageError("Signing failed: empty response")

    return signed if signed.startswith("http") else _storage_base() + signed
