from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional
from urllib.parse import quote, urlencode

import httpx
from dateutil import parser as date_parser
from dateutil import tz
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app import models
from app.config import settings
from app.models import utcnow

logger = logging.getLogger(__name__)


# ============================================================
# CONSTANTS
# ============================================================
AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
TOKEN_URL = "https://oauth2.googleapis.com/token"
CALENDAR_API = "https://www.googleapis.com/calendar/v3"

SCOPES = [
    "https://www.googleapis.com/auth/calendar",
    "https://www.googleapis.com/auth/calendar.events",
]

REAUTH_MESSAGES = {
    "insufficient authentication scopes": "Insufficient permissions. Please reconnect your Google account.",
    "invalid_grant": "Authentication expired. Please reconnect your Google account.",
}


@dataclass
class CalendarResult:
    success: bool
    data: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None
    needs_reauth: bool = False


class GoogleApiError(Exception):
    pass


def _client() -> httpx.Client:
    return httpx.Client(timeout=settings.HTTP_TIMEOUT_SECONDS)


def _fail(error: Exception, fallback: str) -> CalendarResult:
    message = str(error) or fallback
    lowered = message.lower()
    for needle, friendly in REAUTH_MESSAGES.items():
        if needle in lowered:
            return CalendarResult(success=False, error=friendly, needs_reauth=True)
    return CalendarResult(success=False, error=message)


def _error_message(resp: httpx.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        return resp.text or f"HTTP {resp.status_code}"

    err = body.get("error")
    if isinstance(err, dict):
        return err.get("message") or f"HTTP {resp.status_code}"
    if err:
        desc = body.get("error_description")
        return f"{err}: {desc}" if desc else str(err)
    return f"HTTP {resp.status_code}"


def _call(method: str, url: str, access_token: Optional[str] = None, **kwargs) -> Dict[str, Any]:
    headers = kwargs.pop("headers", {})
    if access_token:
        headers["Authorization"] = f"Bearer {access_token}"

    try:
        with _client() as client:
            resp = client.request(method, url, headers=headers, **kwargs)
    except httpx.HTTPError as e:
        raise GoogleApiError(str(e)) from e

    if resp.status_code >= 400:
        raise GoogleApiError(_error_message(resp))

    if resp.status_code == 204 or not resp.content:
        return {}
    return resp.json()


# ============================================================
# OAUTH
# ============================================================
def get_google_auth_url(state: str) -> str:
    params = {
        "client_id": settings.GOOGLE_CLIENT_ID or "",
        "redirect_uri": settings.GOOGLE_REDIRECT_URI,
        "response_type": "code",
        "scope": " ".join(SCOPES),
        "access_type": "offline",
        # forces the consent screen so a refresh token is issued every time
        "prompt": "consent",
        "state": state,
    }
    return f"{AUTH_URL}?{urlencode(params)}"


def _expiry_from(data: Dict[str, Any], now: Optional[datetime] = None) -> Optional[datetime]:
    expires_in = data.get("expires_in")
    if expires_in is None:
        return None
    return (now or utcnow()) + timedelta(seconds=int(expires_in))


def get_google_tokens(code: str) -> CalendarResult:
    try:
        data = _call(
            "POST",
            TOKEN_URL,
            data={
                "code": code,
                "client_id": settings.GOOGLE_CLIENT_ID or "",
                "client_secret": settings.GOOGLE_CLIENT_SECRET or "",
                "redirect_uri": settings.GOOGLE_REDIRECT_URI,
                "grant_type": "authorization_code",
            },
        )
    except GoogleApiError as e:
        logger.error("Error exchanging code for tokens: %s", e)
        return CalendarResult(success=False, error=str(e) or "Failed to get tokens")

    return CalendarResult(
        success=True,
        data={
            "access_token": data.get("access_token"),
            "refresh_token": data.get("refresh_token"),
            "expiry": _expiry_from(data),
        },
    )


def refresh_google_token(refresh_token: str) -> CalendarResult:
    try:
        data = _call(
            "POST",
            TOKEN_URL,
            data={
                "refresh_token": refresh_token,
                "client_id": settings.GOOGLE_CLIENT_ID or "",
                "client_secret": settings.GOOGLE_CLIENT_SECRET or "",
                "grant_type": "refresh_token",
            },
        )
    except GoogleApiError as e:
        logger.error("Error refreshing token: %s", e)
        return CalendarResult(success=False, error=str(e) or "Failed to refresh token")

    return CalendarResult(
        success=True,
        data={"access_token": data.get("access_token"), "expiry": _expiry_from(data)},
    )


def as_utc(dt: Optional[datetime]) -> Optional[datetime]:
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=tz.UTC)
    return dt.astimezone(tz.UTC)


def is_token_expired(user: models.User, now: Optional[datetime] = None) -> bool:
    expiry = as_utc(user.google_token_expiry)
    return bool(expiry and expiry <= (now or utcnow()))


def ensure_fresh_access_token(db: Session, user: models.User, now: Optional[datetime] = None) -> CalendarResult:
    """
    Reactive refresh: when the stored token is past its expiry, trade the
    refresh token for a new one and store it on the user. data["access_token"]
    is the token to use.
    """
    if not user.google_access_token or not user.google_refresh_token:
        return CalendarResult(
            success=False,
            error="Google Calendar not connected. Please connect your Google account first.",
            needs_reauth=True,
        )

    if not is_token_expired(user, now):
        return CalendarResult(success=True, data={"access_token": user.google_access_token})

    refreshed = refresh_google_token(user.google_refresh_token)
    if not refreshed.success or not refreshed.data.get("access_token"):
        return CalendarResult(
            success=False,
            error="Failed to refresh Google token. Please reconnect your Google account.",
            needs_reauth=True,
        )

    user.google_access_token = refreshed.data["access_token"]
    user.google_token_expiry = refreshed.data.get("expiry")
    try:
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Could not store refreshed Google token for user %s", user.id)

    return CalendarResult(success=True, data={"access_token": refreshed.data["access_token"]})


# ============================================================
# EVENTS
# ============================================================
def event_window(start_date: str, start_time: str, duration_minutes: int, time_zone: str):
    """(start, end) as aware datetimes in `time_zone` (UTC when unknown)."""
    zone = tz.gettz(time_zone or "UTC") or tz.UTC
    start = date_parser.parse(f"{start_date}T{start_time}")
    if start.tzinfo is None:
        start = start.replace(tzinfo=zone)
    return start, start + timedelta(minutes=duration_minutes)


def _event_body(
    title: str,
    description: str,
    start_date: str,
    start_time: str,
    duration_minutes: int,
    time_zone: str,
    attendee_emails: Optional[List[str]] = None,
) -> Dict[str, Any]:
    start, end = event_window(start_date, start_time, duration_minutes, time_zone)
    return {
        "summary": title,
        "description": description,
        "start": {"dateTime": start.isoformat(), "timeZone": time_zone},
        "end": {"dateTime": end.isoformat(), "timeZone": time_zone},
        "attendees": [{"email": e} for e in attendee_emails or []],
    }


def _event_summary(event: Dict[str, Any]) -> Dict[str, Any]:
    entry_points = (event.get("conferenceData") or {}).get("entryPoints") or []
    return {
        "id": event.get("id"),
        "html_link": event.get("htmlLink"),
        "meet_link": entry_points[0].get("uri") if entry_points else None,
        "start_time": (event.get("start") or {}).get("dateTime"),
        "end_time": (event.get("end") or {}).get("dateTime"),
    }


def _event_url(event_id: str = "") -> str:
    base = f"{CALENDAR_API}/calendars/primary/events"
    return f"{base}/{quote(event_id)}" if event_id else base


def create_webinar_calendar_event(
    access_token: str,
    title: str,
    description: str,
    start_date: str,
    start_time: str,
    duration_minutes: int,
    time_zone: str,
    attendee_emails: Optional[List[str]] = None,
) -> CalendarResult:
    body = _event_body(title, description, start_date, start_time, duration_minutes, time_zone, attendee_emails)
    body["conferenceData"] = {
        "createRequest": {
            "requestId": f"webinar-{int(utcnow().timestamp() * 1000)}",
            "conferenceSolutionKey": {"type": "hangoutsMeet"},
        }
    }
    body["reminders"] = {
        "useDefault": False,
        "overrides": [
            {"method": "email", "minutes": 24 * 60},
            {"method": "popup", "minutes": 30},
        ],
    }

    try:
        event = _call(
            "POST",
            _event_url(),
            access_token,
            params={"conferenceDataVersion": 1, "sendUpdates": "all"},
            json=body,
        )
    except (GoogleApiError, ValueError) as e:
        logger.error("Error creating calendar event: %s", e)
        return _fail(e, "Failed to create calendar event")

    return CalendarResult(success=True, data=_event_summary(event))


def update_webinar_calendar_event(
    access_token: str,
    event_id: str,
    title: str,
    description: str,
    start_date: str,
    start_time: str,
    duration_minutes: int,
    time_zone: str,
    attendee_emails: Optional[List[str]] = None,
) -> CalendarResult:
    body = _event_body(title, description, start_date, start_time, duration_minutes, time_zone, attendee_emails)

    try:
        event = _call("PUT", _event_url(event_id), access_token, params={"sendUpdates": "all"}, json=body)
    except (GoogleApiError, ValueError) as e:
        logger.error("Error updating calendar event %s: %s", event_id, e)
        return _fail(e, "Failed to update calendar event")

    return CalendarResult(success=True, data=_event_summary(event))


def delete_webinar_calendar_event(access_token: str, event_id: str) -> CalendarResult:
    try:
        _call("DELETE", _event_url(event_id), access_token, params={"sendUpdates": "all"})
    except GoogleApiError as e:
        logger.error("Error deleting calendar event %s: %s", event_id, e)
        return _fail(e, "Failed to delete calendar event")

    return CalendarResult(success=True)


def add_attendee_to_webinar_event(
    access_token: str,
    event_id: str,
    attendee_email: str,
    attendee_name: Optional[str] = None,
) -> CalendarResult:
    try:
        event = _call("GET", _event_url(event_id), access_token)
    except GoogleApiError as e:
        logger.error("Error loading calendar event %s: %s", event_id, e)
        return _fail(e, "Failed to add attendee to calendar event")

    attendees = event.get("attendees") or []
    if any((a.get("email") or "").lower() == attendee_email.lower() for a in attendees):
        return CalendarResult(success=True, data={"message": "Attendee already added to event"})

    attendees.append({
        "email": attendee_email,
        "displayName": attendee_name,
        "responseStatus": "needsAction",
    })
    event["attendees"] = attendees

    try:
        updated = _call("PUT", _event_url(event_id), access_token, params={"sendUpdates": "all"}, json=event)
    except GoogleApiError as e:
        logger.error("Error adding attendee to calendar event %s: %s", event_id, e)
        return _fail(e, "Failed to add attendee to calendar event")

    return CalendarResult(
        success=True,
        data={"id": updated.get("id"), "html_link": updated.get("htmlLink"), "attendees": len(attendees)},
    )


def get_google_calendar_info(access_token: str) -> CalendarResult:
    try:
        data = _call(
            "GET",
            f"{CALENDAR_API}/users/me/calendarList",
            access_token,
            params={"minAccessRole": "writer", "showHidden": "false"},
        )
    except GoogleApiError as e:
        logger.error("Error getting calendar info: %s", e)
        return _fail(e, "Failed to get calendar info")

    calendars = [
        {
            "id": c.get("id"),
            "summary": c.get("summary"),
            "primary": bool(c.get("primary")),
            "access_role": c.get("accessRole"),
        }
        for c in data.get("items") or []
    ]
    return CalendarResult(success=True, data={"calendars": calendars})
