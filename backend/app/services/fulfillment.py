from __future__ import annotations

import logging
from datetime import datetime, timedelta
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Optional
from urllib.parse import quote

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app import models, schemas
from app.config import settings
from app.errors import ApiError
from app.models import AnalyticsType, DeliveryType, OrderStatus, ProductType, utcnow
from app.services import email, google_calendar, storage
from app.services.analytics import track_event

logger = logging.getLogger(__name__)

LEAD_SOURCE = "public_page"
DEFAULT_LEAD_MESSAGE = "Thank you! Check your email for your download."

REMINDER_WINDOW_HOURS = (20, 28)


# ============================================================
# LEAD SUBMISSION
# ============================================================
def _get_active_lead_magnet(db: Session, product_id: str) -> Optional[models.Product]:
    return (
        db.query(models.Product)
        .filter(
            models.Product.id == product_id,
            models.Product.type == ProductType.FREE_LEAD,
            models.Product.is_active.is_(True),
        )
        .first()
    )


def _field_value(form_data: Dict[str, Any], field: schemas.CollectedField) -> Any:
    # the name/email inputs may post under their legacy ids or their type
    value = form_data.get(field.id)
    if not value and field.type in ("name", "email", "phone"):
        value = form_data.get(field.type)
    return value


def download_link(product_id: str, customer_email: str, lead_id: str) -> str:
    return settings.public_url(
        f"/api/download/{product_id}?email={quote(customer_email, safe='')}&token={lead_id}"
    )


def submit_lead(
    db: Session,
    product_id: str,
    form_data: Dict[str, Any],
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
) -> Dict[str, Any]:
    product = _get_active_lead_magnet(db, product_id)
    if not product:
        raise ApiError(404, "Product not found or not available")

    # with no configured list only the email is required
    if product.form_fields is not None:
        fields = schemas.collected_fields(schemas.parse_form_fields(ProductType.FREE_LEAD, product.form_fields))
        for field in fields:
            if field.required and not _field_value(form_data, field):
                raise ApiError(400, f"{field.label} is required")

    customer_email = form_data.get("email") or form_data.get(schemas.EMAIL_FIELD_ID)
    customer_name = form_data.get("name") or form_data.get(schemas.NAME_FIELD_ID)
    if not customer_email:
        raise ApiError(400, "Email is required")

    lead = models.Lead(
        user_id=product.user_id,
        product_id=product.id,
        customer_email=str(customer_email).strip(),
        customer_name=customer_name,
        customer_phone=form_data.get("phone") or None,
        form_data=form_data,
        ip_address=ip_address or "unknown",
        user_agent=user_agent or "unknown",
        source=LEAD_SOURCE,
    )
    try:
        db.add(lead)
        db.commit()
        db.refresh(lead)
    except SQLAlchemyError:
        # delivery still goes out without a stored lead
        db.rollback()
        logger.exception("Error creating lead for product %s", product.id)
        lead = None

    result: Dict[str, Any] = {"success": True, "message": DEFAULT_LEAD_MESSAGE}

    if product.delivery_type == DeliveryType.REDIRECT.value and product.redirect_url:
        result.update(message="redirect", redirectUrl=product.redirect_url)
    else:
        has_file = bool(product.file_path or product.file_url)
        file_url = download_link(product.id, lead.customer_email, lead.id) if lead and has_file else None
        owner = product.owner
        sent = email.send_lead_magnet_email(
            recipient_email=str(customer_email).strip(),
            recipient_name=customer_name or "Friend",
            product_title=product.title,
            product_description=product.description or product.subtitle or "",
            file_url=file_url,
            file_name=product.file_name or f"{product.title}.pdf",
            host_name=(owner.full_name or owner.username) if owner else "Host",
            host_email=owner.email if owner else None,
        )
        if not sent.success:
            logger.error("Lead magnet email to %s failed: %s", customer_email, sent.error)

    if lead:
        track_event(
            db,
            product.user_id,
            AnalyticsType.LEAD_CAPTURED,
            {"productId": product.id, "leadId": lead.id, "source": LEAD_SOURCE},
        )
        result["leadId"] = lead.id

    return result


# ============================================================
# DOWNLOAD REDEMPTION
# ============================================================
def is_link_expired(created_at: datetime, now: Optional[datetime] = None) -> bool:
    # a link exactly DOWNLOAD_LINK_TTL_HOURS old still redeems
    age = (now or utcnow()) - google_calendar.as_utc(created_at)
    return age > timedelta(hours=settings.DOWNLOAD_LINK_TTL_HOURS)


def redeem_download(
    db: Session,
    product_id: str,
    customer_email: Optional[str],
    token: Optional[str],
    now: Optional[datetime] = None,
) -> str:
    """Returns the signed URL to redirect to."""
    if not customer_email or not token:
        raise ApiError(400, "Email and token are required")

    product = _get_active_lead_magnet(db, product_id)
    if not product:
        raise ApiError(404, "Product not found or not available")

    lead = (
        db.query(models.Lead)
        .filter(
            models.Lead.product_id == product_id,
            models.Lead.customer_email == customer_email,
            models.Lead.id == token,
        )
        .first()
    )
    if not lead:
        raise ApiError(403, "Invalid download link or email not found")

    if is_link_expired(lead.created_at, now):
        raise ApiError(410, "Download link has expired. Please request a new one.")

    bucket = settings.STORAGE_PRODUCTS_BUCKET
    path = product.file_path or storage.path_from_public_url(bucket, product.file_url)
    if not path:
        raise ApiError(404, "No file available for download")

    try:
        signed_url = storage.create_signed_url(bucket, path, settings.SIGNED_URL_TTL_SECONDS)
    except storage.StorageError:
        logger.exception("Error creating signed URL for %s", path)
        raise ApiError(500, "Failed to generate download link")

    track_event(
        db,
        product.user_id,
        AnalyticsType.FILE_DOWNLOAD,
        {"productId": product.id, "leadId": lead.id, "downloadedAt": (now or utcnow()).isoformat()},
    )
    return signed_url


# ============================================================
# WEBINARS
# ============================================================
def parse_webinar_schedule(product: models.Product) -> schemas.WebinarFields:
    fields = schemas.parse_form_fields(ProductType.WEBINAR, product.form_fields)
    if not isinstance(fields, schemas.WebinarFields):
        return schemas.WebinarFields()
    return fields


def webinar_start(schedule: schemas.WebinarFields) -> Optional[datetime]:
    if not schedule.webinar_date or not schedule.webinar_time:
        return None
    try:
        start, _ = google_calendar.event_window(
            schedule.webinar_date, schedule.webinar_time, 0, schedule.time_zone
        )
    except (ValueError, OverflowError):
        return None
    return start


def _webinar_details(product: models.Product, host: models.User) -> email.WebinarDetails:
    schedule = parse_webinar_schedule(product)
    return email.WebinarDetails(
        title=product.title,
        description=product.description or "",
        date=schedule.webinar_date,
        time=schedule.webinar_time,
        time_zone=schedule.time_zone or "UTC",
        duration=schedule.duration or "60",
        host_name=host.full_name or "Host",
        host_email=host.email,
        meet_link=product.google_meet_link,
        calendar_link=product.google_calendar_link,
    )


def _parse_amount(amount: Any) -> Optional[Decimal]:
    try:
        value = Decimal(str(amount).strip())
    except (InvalidOperation, ValueError):
        return None
    return value if value.is_finite() else None


def confirm_webinar_purchase(
    db: Session,
    purchase: schemas.WebinarPurchaseRequest,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """
    Each side effect (calendar invite, e-mail, order) is independent: a
    failure is logged and reported in `details`, never raised.
    """
    now = now or utcnow()

    product = (
        db.query(models.Product)
        .filter(models.Product.id == purchase.product_id, models.Product.type == ProductType.WEBINAR)
        .first()
    )
    if not product:
        raise ApiError(404, "Webinar not found")

    host = db.get(models.User, product.user_id)
    if not host:
        raise ApiError(404, "Host not found")

    attendee_added = False
    if host.google_access_token and host.google_refresh_token and product.google_event_id:
        token = google_calendar.ensure_fresh_access_token(db, host, now)
        if token.success:
            added = google_calendar.add_attendee_to_webinar_event(
                token.data["access_token"],
                product.google_event_id,
                purchase.buyer_email,
                purchase.buyer_name,
            )
            attendee_added = added.success
            if not added.success:
                logger.error("Failed to add attendee to calendar: %s", added.error)
        else:
            logger.error("Skipping calendar invite for %s: %s", purchase.buyer_email, token.error)

    sent = email.send_webinar_confirmation_email(
        _webinar_details(product, host),
        email.PurchaseDetails(
            buyer_name=purchase.buyer_name,
            buyer_email=purchase.buyer_email,
            purchase_date=now.strftime("%Y-%m-%d"),
            amount=purchase.amount,
            currency=purchase.currency,
        ),
    )
    if not sent.success:
        logger.error("Failed to send confirmation email: %s", sent.error)

    order_created = False
    amount = _parse_amount(purchase.amount)
    if amount is None:
        logger.error("Invalid amount %r for webinar purchase of %s", purchase.amount, product.id)
    else:
        order = models.Order(
            user_id=product.user_id,
            customer_email=purchase.buyer_email,
            customer_name=purchase.buyer_name,
            total_amount=amount,
            currency=purchase.currency,
            status=OrderStatus.COMPLETED,
            external_payment_id=purchase.payment_id,
        )
        order.items.append(models.OrderItem(product_id=product.id, quantity=1, price=amount))
        try:
            db.add(order)
            db.commit()
            order_created = True
        except SQLAlchemyError:
            db.rollback()
            logger.exception("Error creating order record for webinar %s", product.id)

    return {
        "success": True,
        "message": "Purchase confirmation processed",
        "details": {
            "emailSent": sent.success,
            "attendeeAdded": attendee_added,
            "orderCreated": order_created,
        },
    }


def send_webinar_reminders(db: Session, now: Optional[datetime] = None) -> Dict[str, Any]:
    now = now or utcnow()
    low, high = REMINDER_WINDOW_HOURS

    webinars = (
        db.query(models.Product)
        .filter(
            models.Product.type == ProductType.WEBINAR,
            models.Product.is_active.is_(True),
            models.Product.google_event_id.isnot(None),
        )
        .all()
    )

    reminders_sent = 0
    errors = 0

    for webinar in webinars:
        schedule = parse_webinar_schedule(webinar)
        start = webinar_start(schedule)
        if start is None:
            logger.info("Skipping webinar %s - missing or invalid date/time", webinar.id)
            continue

        hours_until = (start - now).total_seconds() / 3600
        if not (low <= hours_until <= high):
            continue

        try:
            orders = (
                db.query(models.Order)
                .join(models.OrderItem)
                .filter(
                    models.Order.status == OrderStatus.COMPLETED,
                    models.OrderItem.product_id == webinar.id,
                )
                .distinct()
                .all()
            )
        except SQLAlchemyError:
            logger.exception("Error fetching orders for webinar %s", webinar.id)
            errors += 1
            continue

        details = _webinar_details(webinar, webinar.owner)
        for order in orders:
            sent = email.send_webinar_reminder_email(
                details,
                email.PurchaseDetails(
                    buyer_name=order.customer_name or "Customer",
                    buyer_email=order.customer_email,
                    purchase_date=google_calendar.as_utc(order.created_at).strftime("%Y-%m-%d"),
                    amount="0",
                    currency=order.currency or "USD",
                ),
            )
            if sent.success:
                reminders_sent += 1
                logger.info("Reminder sent to %s for webinar %s", order.customer_email, webinar.title)
            else:
                errors += 1
                logger.error("Failed to send reminder to %s: %s", order.customer_email, sent.error)

    return {
        "success": True,
        "message": f"Processed {len(webinars)} webinars",
        "details": {
            "remindersSent": reminders_sent,
            "errors": errors,
            "webinarsChecked": len(webinars),
        },
    }


def _duration_minutes(value: str) -> int:
    try:
        return int(str(value).strip())
    except ValueError:
        return 60


def create_webinar_event(
    db: Session,
    user: models.User,
    request: schemas.WebinarEventRequest,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    token = google_calendar.ensure_fresh_access_token(db, user, now)
    if not token.success:
        raise ApiError(400, token.error, needsAuth=True)

    data = request.webinar_data
    result = google_calendar.create_webinar_calendar_event(
        token.data["access_token"],
        title=data.title,
        description=data.description,
        start_date=data.webinar_date,
        start_time=data.webinar_time,
        duration_minutes=_duration_minutes(data.duration),
        time_zone=data.time_zone or "UTC",
        attendee_emails=request.attendee_emails,
    )
    if not result.success:
        if result.needs_reauth:
            raise ApiError(400, result.error, needsAuth=True)
        raise ApiError(500, result.error or "Failed to create calendar event")

    event = result.data
    if request.product_id:
        product = (
            db.query(models.Product)
            .filter(models.Product.id == request.product_id, models.Product.user_id == user.id)
            .first()
        )
        if not product:
            logger.warning("Event %s created for unknown product %s", event.get("id"), request.product_id)
        else:
            product.google_event_id = event.get("id")
            product.google_meet_link = event.get("meet_link")
            product.google_calendar_link = event.get("html_link")
            try:
                db.commit()
            except SQLAlchemyError:
                db.rollback()
                logger.exception("Could not link event %s to product %s", event.get("id"), product.id)

    return {
        "success": True,
        "event": {
            "id": event.get("id"),
            "htmlLink": event.get("html_link"),
            "meetLink": event.get("meet_link"),
            "startTime": event.get("start_time"),
            "endTime": event.get("end_time"),
        },
    }
