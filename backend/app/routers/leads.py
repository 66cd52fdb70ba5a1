from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import RedirectResponse
from sqlalchemy.orm import Session

from app import schemas
from app.database import get_db
from app.services import fulfillment

router = APIRouter(prefix="/api", tags=["Leads"])


def _client_ip(request: Request) -> Optional[str]:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


@router.post("/leads/submit")
def submit_lead(payload: schemas.LeadSubmitRequest, request: Request, db: Session = Depends(get_db)):
    return fulfillment.submit_lead(
        db,
        payload.product_id,
        payload.form_data,
        ip_address=_client_ip(request),
        user_agent=request.headers.get("user-agent"),
    )


@router.get("/download/{product_id}")
def download(
    product_id: str,
    email: Optional[str] = None,
    token: Optional[str] = None,
    db: Session = Depends(get_db),
):
    signed_url = fulfillment.redeem_download(db, product_id, email, token)
    return RedirectResponse(signed_url, status_code=302)
