from __future__ import annotations

import hmac
import logging
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Optional, Tuple

import mercadopago
from fastapi import APIRouter, Depends, Header, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app import models
from app.config import settings
from app.database import get_db
from app.errors import ApiError
from app.models import AnalyticsType, OrderStatus
from app.services.analytics import track_event

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/webhooks", tags=["Webhooks"])

DISABLED_BODY = {"message": "Payment webhooks temporarily disabled"}


# ============================================================
# Security (shared header secret)
# ============================================================
def _verify_webhook_secret(x_webhook_secret: Optional[str]) -> None:
    secret = settings.PAYMENT_WEBHOOK_SECRET
    if secret:
        if not x_webhook_secret or not hmac.compare_digest(x_webhook_secret, secret):
            raise ApiError(403, "Webhook not authorized")


# ============================================================
# Helpers
# ============================================================
def _extract_payment_id(payload: Dict[str, Any]) -> Optional[str]:
    data = payload.get("data") or {}
    pid = data.get("id") or payload.get("id") or payload.get("data_id")
    if pid:
        return str(pid)

    resource = payload.get("resource")
    if isinstance(resource, str) and resource.strip():
        return resource.rstrip("/").split("/")[-1]

    return None


def _parse_external_reference(external_reference: str) -> Tuple[str, str]:
    """"<productId>:<buyerEmail>" as set on the checkout preference."""
    product_id, _, buyer_email = (external_reference or "").partition(":")
    if not product_id or not buyer_email:
        raise ApiError(400, "Invalid external_reference")
    return product_id, buyer_email.strip()


def _lookup_payment(payment_id: str) -> Optional[Dict[str, Any]]:
    token = (settings.MP_ACCESS_TOKEN or "").strip()
    if not token:
        raise ApiError(500, "MP_ACCESS_TOKEN missing")

    sdk = mercadopago.SDK(token)
    mp_payment = sdk.payment().get(payment_id)
    if mp_payment.get("status") != 200:
        return None
    return mp_payment.get("response") or {}


def _amount(value: Any) -> Decimal:
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        return Decimal("0")


# ============================================================
# Payment webhook
# ============================================================
@router.get("/payment")
def payment_webhook_probe():
    if not settings.PAYMENT_WEBHOOK_ENABLED:
        return JSONResponse(status_code=503, content=DISABLED_BODY)
    return {"status": "ok"}


@router.post("/payment")
async def payment_webhook(
    request: Request,
    db: Session = Depends(get_db),
    x_webhook_secret: Optional[str] = Header(default=None),
):
    if not settings.PAYMENT_WEBHOOK_ENABLED:
        return JSONResponse(status_code=503, content=DISABLED_BODY)

    _verify_webhook_secret(x_webhook_secret)

    try:
        payload = await request.json()
    except ValueError:
        raise ApiError(400, "Invalid JSON")

    payment_id = _extract_payment_id(payload if isinstance(payload, dict) else {})
    if not payment_id:
        raise ApiError(400, "payment_id missing")

    if db.query(models.Order).filter(models.Order.external_payment_id == payment_id).first():
        return {"status": "ignored", "reason": "Payment already processed"}

    data = _lookup_payment(payment_id)
    if data is None:
        raise ApiError(400, "Payment not found")

    if data.get("status") != "approved":
        return {"status": "ignored", "reason": "Payment not approved"}

    product_id, buyer_email = _parse_external_reference(data.get("external_reference", ""))

    product = db.get(models.Product, product_id)
    if not product:
        raise ApiError(404, "Product not found")

    amount = _amount(data.get("transaction_amount"))
    payer = data.get("payer") or {}
    buyer_name = " ".join(filter(None, [payer.get("first_name"), payer.get("last_name")])) or None

    order = models.Order(
        user_id=product.user_id,
        customer_email=buyer_email,
        customer_name=buyer_name,
        total_amount=amount,
        currency=(data.get("currency_id") or product.currency or "USD")[:3],
        status=OrderStatus.COMPLETED,
        external_payment_id=payment_id,
    )
    order.items.append(models.OrderItem(product_id=product.id, quantity=1, price=amount))

    try:
        db.add(order)
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Error recording payment %s", payment_id)
        raise ApiError(500, "Failed to record payment")

    track_event(
        db,
        product.user_id,
        AnalyticsType.PURCHASE,
        {"productId": product.id, "orderId": order.id, "paymentId": payment_id},
    )

    logger.info("Payment %s recorded for product %s", payment_id, product.id)
    return {"status": "processed", "orderId": order.id}
