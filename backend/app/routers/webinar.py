from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app import models, schemas
from app.database import get_db
from app.dependencies import get_current_user, require_cron_secret
from app.services import fulfillment

router = APIRouter(prefix="/api/webinar", tags=["Webinar"])


@router.post("/create-event")
def create_event(
    payload: schemas.WebinarEventRequest,
    user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return fulfillment.create_webinar_event(db, user, payload)


@router.post("/purchase-confirmation")
def purchase_confirmation(payload: schemas.WebinarPurchaseRequest, db: Session = Depends(get_db)):
    return fulfillment.confirm_webinar_purchase(db, payload)


@router.post("/send-reminders", dependencies=[Depends(require_cron_secret)])
def send_reminders(db: Session = Depends(get_db)):
    return fulfillment.send_webinar_reminders(db)
