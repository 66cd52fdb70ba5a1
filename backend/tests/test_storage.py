from __future__ import annotations

import json
from datetime import datetime, timezone

import httpx
import pytest

from app.services import storage


def _mock(monkeypatch, handler):
    calls = []

    def _recording(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return handler(request)

    monkeypatch.setattr(storage, "_client", lambda: httpx.Client(transport=httpx.MockTransport(_recording)))
    return calls


# ============================================================
# VALIDATION
# ============================================================
def test_image_validation():
    assert storage.validate_image_file("image/png", 1024) is None
    assert storage.validate_image_file("image/png", storage.MAX_IMAGE_SIZE) is None
    assert storage.validate_image_file("image/png", storage.MAX_IMAGE_SIZE + 1) == "Image file size must be less than 5MB"
    assert storage.validate_image_file("image/svg+xml", 10).startswith("Please upload a valid image file")
    assert storage.validate_image_file(None, 10) is not None


def test_product_file_validation():
    assert storage.validate_product_file("application/pdf", 1024) is None
    assert storage.validate_product_file("text/plain", 1) is None
    assert storage.validate_product_file("video/mp4", 1) == "Please upload a valid file (PDF, ZIP, DOC, DOCX, or TXT)"
    assert storage.validate_product_file("application/zip", storage.MAX_PRODUCT_FILE_SIZE + 1) == "File size must be less than 50MB"


# ============================================================
# PATHS
# ============================================================
def test_object_path_starts_with_owner():
    now = datetime(2024, 5, 1, tzinfo=timezone.utc)
    path = storage.build_object_path("user-1", "guide.final.pdf", "files", now=now)

    owner, folder, name = path.split("/")
    assert owner == "user-1"
    assert folder == "files"
    assert name.startswith(f"{int(now.timestamp() * 1000)}-")
    assert name.endswith(".pdf")

    assert storage.build_object_path("user-1", "noext", now=now).endswith(".bin")
    assert storage.build_object_path("user-1", "a.png", now=now).count("/") == 1


def test_object_path_extension_is_sanitized():
    path = storage.build_object_path("owner1", "evil./victim/files/evil", "files")
    assert path.startswith("owner1/files/")
    assert path.count("/") == 2
    assert path.endswith(".bin")

    assert storage.build_object_path("owner1", "photo.JPG").endswith(".JPG")
    assert storage.build_object_path("owner1", "archive.tar-gz").endswith(".bin")


def test_path_from_public_url():
    url = storage.get_public_url("products", "user-1/images/1-abc.png")
    assert storage.path_from_public_url("products", url) == "user-1/images/1-abc.png"
    assert storage.path_from_public_url("products", "https://elsewhere.test/a.png") is None
    assert storage.path_from_public_url("products", None) is None


# ============================================================
# GATEWAY
# ============================================================
def test_upload_returns_public_url_and_path(monkeypatch):
    calls = _mock(monkeypatch, lambda request: httpx.Response(200, json={"Key": "ok"}))

    result = storage.upload_file(b"%PDF", "guide.pdf", "application/pdf", "products", "files", "user-1")

    assert result.path.startswith("user-1/files/")
    assert result.url.endswith(result.path)
    assert "/object/public/products/" in result.url

    request = calls[0]
    assert request.method == "POST"
    assert request.headers["Content-Type"] == "application/pdf"
    assert request.headers["x-upsert"] == "false"
    assert request.content == b"%PDF"


def test_upload_failure_raises(monkeypatch):
    _mock(monkeypatch, lambda request: httpx.Response(400, json={"message": "Bucket not found"}))

    with pytest.raises(storage.StorageError) as exc:
        storage.upload_file(b"x", "a.png", "image/png", "nope", "", "user-1")
    assert "Bucket not found" in str(exc.value)


def test_signed_url(monkeypatch):
    calls = _mock(
        monkeypatch,
        lambda request: httpx.Response(200, json={"signedURL": "/object/sign/products/user-1/a.pdf?token=t"}),
    )

    url = storage.create_signed_url("products", "user-1/a.pdf", expires_in=60)

    assert url.startswith("http")
    assert url.endswith("/storage/v1/object/sign/products/user-1/a.pdf?token=t")
    assert json.loads(calls[0].content) == {"expiresIn": 60}


def test_signed_url_empty_response(monkeypatch):
    _mock(monkeypatch, lambda request: httpx.Response(200, json={}))

    with pytest.raises(storage.StorageError):
        storage.create_signed_url("products", "user-1/a.pdf")


def test_delete_sends_prefixes(monkeypatch):
    calls = _mock(monkeypatch, lambda request: httpx.Response(200, json=[]))

    storage.delete_file("products", "user-1/a.pdf")

    assert calls[0].method == "DELETE"
    assert json.loads(calls[0].content) == {"prefixes": ["user-1/a.pdf"]}


# ============================================================
# UPLOAD ENDPOINTS
# ============================================================
def test_upload_image_endpoint_rejects_type(auth_client):
    r = auth_client.post("/api/uploads/image", files={"file": ("a.svg", b"<svg/>", "image/svg+xml")})
    assert r.status_code == 400
    assert r.json()["error"].startswith("Please upload a valid image file")


def test_upload_avatar_endpoint(auth_client, user, monkeypatch):
    _mock(monkeypatch, lambda request: httpx.Response(200, json={"Key": "ok"}))

    r = auth_client.post(
        "/api/uploads/image",
        params={"target": "avatar"},
        files={"file": ("me.png", b"\x89PNG", "image/png")},
    )

    assert r.status_code == 200
    body = r.json()
    assert body["path"].startswith(f"{user.id}/")
    assert "/object/public/avatars/" in body["url"]
    assert body["fileName"] == "me.png"


def test_upload_file_endpoint_storage_error(auth_client, monkeypatch):
    _mock(monkeypatch, lambda request: httpx.Response(500, json={"error": "boom"}))

    r = auth_client.post("/api/uploads/file", files={"file": ("a.pdf", b"%PDF", "application/pdf")})
    assert r.status_code == 502
    assert "boom" in r.json()["error"]


def test_upload_requires_auth(client):
    r = client.post("/api/uploads/file", files={"file": ("a.pdf", b"%PDF", "application/pdf")})
    assert r.status_code == 401
