from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app import models, schemas
from app.database import get_db
from app.dependencies import get_current_user
from app.errors import ApiError
from app.services import drafts, wizard
from app.services.wizard import WizardKind

router = APIRouter(prefix="/api", tags=["Drafts"])


# ============================================================
# DRAFTS
# ============================================================
@router.post("/drafts", status_code=201)
def save_draft(
    payload: schemas.DraftIn,
    user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    result = drafts.unwrap(drafts.save_draft(db, user.id, payload))
    return {"success": True, "productId": result.product_id}


@router.get("/drafts/{product_id}", response_model=schemas.DraftOut)
def load_draft(
    product_id: str,
    user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return drafts.unwrap(drafts.load_draft(db, user.id, product_id)).draft


@router.patch("/drafts/{product_id}")
def update_draft(
    product_id: str,
    payload: schemas.DraftIn,
    user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    result = drafts.unwrap(drafts.update_draft(db, user.id, product_id, payload))
    return {"success": True, "productId": result.product_id}


@router.post("/drafts/{product_id}/finalize")
def finalize_draft(
    product_id: str,
    payload: schemas.DraftIn,
    user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    result = drafts.unwrap(drafts.finalize_draft(db, user.id, product_id, payload))
    return {"success": True, "productId": result.product_id}


# ============================================================
# WIZARD
# ============================================================
def _wizard_response(state: wizard.WizardState) -> dict:
    return {
        "state": wizard.state_to_dict(state),
        "canProceed": wizard.can_proceed(state),
        "canFinalize": wizard.can_finalize(state),
        "draftPayload": wizard.to_draft_payload(state),
    }


@router.post("/wizard/{kind}/transition")
def wizard_transition(
    kind: WizardKind,
    payload: schemas.WizardTransitionRequest,
    user: models.User = Depends(get_current_user),
):
    try:
        state = wizard.state_from_dict(kind, payload.state)

        if payload.action == "next":
            state = wizard.next_step(state)
        elif payload.action == "previous":
            state = wizard.previous_step(state)
        elif payload.action == "add_field":
            state = wizard.add_field(state, payload.field_type or "text")
        elif payload.action == "remove_field":
            state = wizard.remove_field(state, payload.field_id or "")
        elif payload.action == "update_field":
            state = wizard.update_field(state, payload.field_id or "", **payload.changes)

        return _wizard_response(state)
    except ValueError as e:
        raise ApiError(400, str(e))


@router.get("/wizard/{kind}/resume/{product_id}")
def wizard_resume(
    kind: WizardKind,
    product_id: str,
    user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    loaded = drafts.unwrap(drafts.load_draft(db, user.id, product_id)).draft
    return _wizard_response(wizard.from_draft(kind, loaded))
