from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

import httpx
from jinja2 import Environment, FileSystemLoader, select_autoescape

from app.config import EMAIL_TEMPLATES_DIR, settings

logger = logging.getLogger(__name__)

_env = Environment(
    loader=FileSystemLoader(str(EMAIL_TEMPLATES_DIR)),
    autoescape=select_autoescape(["html"]),
)


@dataclass(frozen=True)
class EmailResult:
    success: bool
    error: Optional[str] = None


@dataclass
class WebinarDetails:
    title: str
    description: str
    date: str
    time: str
    time_zone: str
    duration: str
    host_name: str
    host_email: Optional[str] = None
    meet_link: Optional[str] = None
    calendar_link: Optional[str] = None


@dataclass
class PurchaseDetails:
    buyer_name: str
    buyer_email: str
    purchase_date: str
    amount: str
    currency: str


def _client() -> httpx.Client:
    return httpx.Client(timeout=settings.HTTP_TIMEOUT_SECONDS)


def render(template: str, **context) -> str:
    return _env.get_template(template).render(**context)


# ============================================================
# TRANSPORT (SendGrid v3)
# ============================================================
def send_email(
    to: str,
    subject: str,
    html: str,
    from_email: Optional[str] = None,
    reply_to: Optional[str] = None,
) -> EmailResult:
    if not settings.SENDGRID_API_KEY:
        logger.warning("SendGrid API key not configured, email to %s not sent (%s)", to, subject)
        return EmailResult(success=False, error="SendGrid API key not configured")

    payload = {
        "personalizations": [{"to": [{"email": to}]}],
        "from": {"email": from_email or settings.SENDGRID_FROM_EMAIL},
        "subject": subject,
        "content": [{"type": "text/html", "value": html}],
    }
    if reply_to:
        payload["reply_to"] = {"email": reply_to}

    try:
        with _client() as client:
            resp = client.post(
                settings.SENDGRID_API_URL,
                json=payload,
                headers={"Authorization": f"Bearer {settings.SENDGRID_API_KEY}"},
            )
    except httpx.HTTPError as e:
        logger.error("Error sending email to %s: %s", to, e)
        return EmailResult(success=False, error=str(e) or "Failed to send email")

    if resp.status_code >= 400:
        try:
            message = resp.json()["errors"][0]["message"]
        except (ValueError, KeyError, IndexError, TypeError):
            message = f"HTTP {resp.status_code}"
        logger.error("SendGrid rejected email to %s: %s", to, message)
        return EmailResult(success=False, error=f"SendGrid error: {message}")

    logger.info("Email sent to %s", to)
    return EmailResult(success=True)


# ============================================================
# WEBINAR
# ============================================================
def send_webinar_confirmation_email(webinar: WebinarDetails, purchase: PurchaseDetails) -> EmailResult:
    html = render("webinar_confirmation.html", webinar=webinar, purchase=purchase)
    return send_email(
        to=purchase.buyer_email,
        subject=f"Registration Confirmed: {webinar.title}",
        html=html,
        reply_to=webinar.host_email,
    )


def send_webinar_reminder_email(webinar: WebinarDetails, purchase: PurchaseDetails) -> EmailResult:
    html = render("webinar_reminder.html", webinar=webinar, purchase=purchase)
    return send_email(
        to=purchase.buyer_email,
        subject=f"Tomorrow: {webinar.title}",
        html=html,
        reply_to=webinar.host_email,
    )


# ============================================================
# LEAD MAGNET
# ============================================================
def send_lead_magnet_email(
    recipient_email: str,
    recipient_name: str,
    product_title: str,
    product_description: str = "",
    file_url: Optional[str] = None,
    file_name: Optional[str] = None,
    host_name: str = "",
    host_email: Optional[str] = None,
) -> EmailResult:
    """
    With a download link: the file variant. Without one (no file, or the
    lead could not be stored): a plain thank-you.
    """
    context = dict(
        recipient_name=recipient_name,
        product_title=product_title,
        product_description=product_description,
        file_url=file_url,
        file_name=file_name,
        host_name=host_name,
        link_ttl_hours=settings.DOWNLOAD_LINK_TTL_HOURS,
    )

    if file_url:
        html = render("lead_magnet_file.html", **context)
        subject = f"Your Free Download: {product_title}"
    else:
        html = render("lead_magnet_thanks.html", **context)
        subject = f"Thank you for your interest: {product_title}"

    return send_email(to=recipient_email, subject=subject, html=html, reply_to=host_email)
