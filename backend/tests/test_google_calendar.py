from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from app import models
from app.services import google_calendar
from app.services.google_calendar import CalendarResult

NOW = datetime(2030, 1, 1, 12, 0, tzinfo=timezone.utc)


def _mock(monkeypatch, handler):
    calls = []

    def _recording(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return handler(request)

    monkeypatch.setattr(
        google_calendar, "_client", lambda: httpx.Client(transport=httpx.MockTransport(_recording))
    )
    return calls


# ============================================================
# OAUTH
# ============================================================
def test_auth_url_requests_offline_consent():
    url = urlparse(google_calendar.get_google_auth_url("user-1|/dashboard/store"))
    params = parse_qs(url.query)

    assert url.netloc == "accounts.google.com"
    assert params["access_type"] == ["offline"]
    assert params["prompt"] == ["consent"]
    assert params["state"] == ["user-1|/dashboard/store"]
    assert params["scope"] == [" ".join(google_calendar.SCOPES)]


def test_token_exchange(monkeypatch):
    _mock(
        monkeypatch,
        lambda request: httpx.Response(
            200, json={"access_token": "a1", "refresh_token": "r1", "expires_in": 3600}
        ),
    )

    result = google_calendar.get_google_tokens("code-1")

    assert result.success
    assert result.data["access_token"] == "a1"
    assert result.data["refresh_token"] == "r1"
    assert result.data["expiry"] > datetime.now(timezone.utc)


def test_token_exchange_failure(monkeypatch):
    _mock(
        monkeypatch,
        lambda request: httpx.Response(400, json={"error": "invalid_grant", "error_description": "Bad Request"}),
    )

    result = google_calendar.get_google_tokens("code-1")
    assert result.success is False
    assert result.error == "invalid_grant: Bad Request"


# ============================================================
# TOKEN FRESHNESS
# ============================================================
def test_token_expiry(make_user):
    user = make_user(google_token_expiry=NOW)
    assert google_calendar.is_token_expired(user, NOW)
    assert not google_calendar.is_token_expired(user, NOW - timedelta(seconds=1))
    assert not google_calendar.is_token_expired(make_user(), NOW)


def test_not_connected_needs_reauth(db, make_user):
    result = google_calendar.ensure_fresh_access_token(db, make_user(), NOW)
    assert result.success is False
    assert result.needs_reauth is True
    assert result.error == "Google Calendar not connected. Please connect your Google account first."


def test_fresh_token_is_used_as_is(db, make_user, monkeypatch):
    calls = _mock(monkeypatch, lambda request: httpx.Response(500))
    user = make_user(
        google_access_token="current",
        google_refresh_token="refresh",
        google_token_expiry=NOW + timedelta(minutes=5),
    )

    result = google_calendar.ensure_fresh_access_token(db, user, NOW)
    assert result.data["access_token"] == "current"
    assert calls == []


def test_expired_token_is_refreshed_and_stored(db, make_user, monkeypatch):
    calls = _mock(monkeypatch, lambda request: httpx.Response(200, json={"access_token": "new", "expires_in": 3600}))
    user = make_user(
        google_access_token="old",
        google_refresh_token="refresh",
        google_token_expiry=NOW - timedelta(minutes=1),
    )

    result = google_calendar.ensure_fresh_access_token(db, user, NOW)

    assert result.success
    assert result.data["access_token"] == "new"
    assert parse_qs(calls[0].content.decode())["grant_type"] == ["refresh_token"]

    db.expire_all()
    stored = db.get(models.User, user.id)
    assert stored.google_access_token == "new"
    assert stored.google_refresh_token == "refresh"


def test_refresh_failure_needs_reauth(db, make_user, monkeypatch):
    _mock(monkeypatch, lambda request: httpx.Response(400, json={"error": "invalid_grant"}))
    user = make_user(
        google_access_token="old",
        google_refresh_token="revoked",
        google_token_expiry=NOW - timedelta(minutes=1),
    )

    result = google_calendar.ensure_fresh_access_token(db, user, NOW)
    assert result.success is False
    assert result.needs_reauth is True
    assert result.error == "Failed to refresh Google token. Please reconnect your Google account."


# ============================================================
# EVENTS
# ============================================================
def test_event_window_in_time_zone():
    start, end = google_calendar.event_window("2030-07-01", "09:00", 90, "America/Sao_Paulo")
    assert start.astimezone(timezone.utc) == datetime(2030, 7, 1, 12, 0, tzinfo=timezone.utc)
    assert end - start == timedelta(minutes=90)


def test_create_event_returns_meet_link(monkeypatch):
    calls = _mock(
        monkeypatch,
        lambda request: httpx.Response(
            200,
            json={
                "id": "evt-1",
                "htmlLink": "https://calendar.test/evt-1",
                "conferenceData": {"entryPoints": [{"entryPointType": "video", "uri": "https://meet.test/x"}]},
                "start": {"dateTime": "2030-07-01T09:00:00-03:00"},
                "end": {"dateTime": "2030-07-01T10:00:00-03:00"},
            },
        ),
    )

    result = google_calendar.create_webinar_calendar_event(
        "token", "Live", "Q&A", "2030-07-01", "09:00", 60, "America/Sao_Paulo", ["a@x.com"]
    )

    assert result.success
    assert result.data["id"] == "evt-1"
    assert result.data["meet_link"] == "https://meet.test/x"
    assert result.data["start_time"] == "2030-07-01T09:00:00-03:00"

    request = calls[0]
    assert request.headers["Authorization"] == "Bearer token"
    assert request.url.params["conferenceDataVersion"] == "1"
    body = json.loads(request.content)
    assert body["attendees"] == [{"email": "a@x.com"}]
    assert body["conferenceData"]["createRequest"]["conferenceSolutionKey"] == {"type": "hangoutsMeet"}
    assert body["start"]["timeZone"] == "America/Sao_Paulo"


@pytest.mark.parametrize(
    "message, friendly",
    [
        ("Request had insufficient authentication scopes.", "Insufficient permissions. Please reconnect your Google account."),
        ("invalid_grant", "Authentication expired. Please reconnect your Google account."),
    ],
)
def test_auth_errors_need_reauth(monkeypatch, message, friendly):
    _mock(monkeypatch, lambda request: httpx.Response(403, json={"error": {"code": 403, "message": message}}))

    result = google_calendar.create_webinar_calendar_event(
        "token", "Live", "", "2030-07-01", "09:00", 60, "UTC"
    )

    assert result.success is False
    assert result.needs_reauth is True
    assert result.error == friendly


def test_other_errors_do_not_need_reauth(monkeypatch):
    _mock(monkeypatch, lambda request: httpx.Response(500, json={"error": {"message": "Backend Error"}}))

    result = google_calendar.create_webinar_calendar_event("token", "Live", "", "2030-07-01", "09:00", 60, "UTC")
    assert result.success is False
    assert result.needs_reauth is False
    assert result.error == "Backend Error"


def test_add_attendee_skips_existing_email(monkeypatch):
    calls = _mock(
        monkeypatch,
        lambda request: httpx.Response(200, json={"id": "evt-1", "attendees": [{"email": "Bob@X.com"}]}),
    )

    result = google_calendar.add_attendee_to_webinar_event("token", "evt-1", "bob@x.com", "Bob")

    assert result.success
    assert result.data == {"message": "Attendee already added to event"}
    assert [r.method for r in calls] == ["GET"]


def test_add_attendee_appends(monkeypatch):
    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "GET":
            return httpx.Response(200, json={"id": "evt-1", "attendees": [{"email": "ann@x.com"}]})
        return httpx.Response(200, json={**json.loads(request.content), "htmlLink": "https://calendar.test/evt-1"})

    calls = _mock(monkeypatch, handler)

    result = google_calendar.add_attendee_to_webinar_event("token", "evt-1", "bob@x.com", "Bob")

    assert result.success
    assert result.data["attendees"] == 2
    put = calls[1]
    assert put.method == "PUT"
    assert put.url.params["sendUpdates"] == "all"
    assert json.loads(put.content)["attendees"][-1] == {
        "email": "bob@x.com",
        "displayName": "Bob",
        "responseStatus": "needsAction",
    }


def test_delete_event(monkeypatch):
    calls = _mock(monkeypatch, lambda request: httpx.Response(204))

    assert google_calendar.delete_webinar_calendar_event("token", "evt-1").success
    assert calls[0].method == "DELETE"
    assert calls[0].url.path.endswith("/calendars/primary/events/evt-1")


# ============================================================
# ROUTES
# ============================================================
def test_auth_redirect_keeps_relative_return_url(auth_client, user):
    r = auth_client.get("/api/google/auth", params={"returnUrl": "https://evil.test"}, follow_redirects=False)
    assert r.status_code == 302
    state = parse_qs(urlparse(r.headers["location"]).query)["state"]
    assert state == [f"{user.id}|/dashboard/store"]

    r = auth_client.get("/api/google/auth", params={"returnUrl": "/dashboard/webinars"}, follow_redirects=False)
    assert parse_qs(urlparse(r.headers["location"]).query)["state"] == [f"{user.id}|/dashboard/webinars"]


def test_callback_stores_tokens(client, db, user, monkeypatch):
    user.google_refresh_token = "previous"
    db.commit()
    monkeypatch.setattr(
        google_calendar,
        "get_google_tokens",
        lambda code: CalendarResult(success=True, data={"access_token": "a1", "refresh_token": None, "expiry": NOW}),
    )

    r = client.get(
        "/api/google/callback",
        params={"code": "c", "state": f"{user.id}|/dashboard/webinars"},
        follow_redirects=False,
    )

    assert r.status_code == 302
    assert r.headers["location"].endswith("/dashboard/webinars?google_connected=true")

    db.expire_all()
    stored = db.get(models.User, user.id)
    assert stored.google_access_token == "a1"
    assert stored.google_refresh_token == "previous"


def test_callback_reports_provider_error(client):
    r = client.get("/api/google/callback", params={"error": "access_denied"}, follow_redirects=False)
    assert r.status_code == 302
    assert r.headers["location"].endswith("/dashboard/store?google_error=access_denied")


def test_status_and_disconnect(auth_client, db, user):
    user.google_access_token = "a1"
    user.google_refresh_token = "r1"
    user.google_token_expiry = datetime(2020, 1, 1, tzinfo=timezone.utc)
    db.commit()

    status = auth_client.get("/api/google/status").json()
    assert status["isConnected"] is True
    assert status["isExpired"] is True
    assert status["tokenExpiry"].startswith("2020-01-01T00:00:00")

    assert auth_client.post("/api/google/disconnect").json() == {"success": True}
    assert auth_client.get("/api/google/status").json() == {
        "isConnected": False,
        "isExpired": False,
        "tokenExpiry": None,
    }
