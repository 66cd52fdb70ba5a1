from __future__ import annotations

from decimal import Decimal

import pytest

from app import schemas
from app.models import ProductType
from app.services import wizard
from app.services.wizard import WizardKind, WizardState


def _state(kind=WizardKind.DIGITAL_PRODUCT, step=1, **data):
    return WizardState(kind=kind, current_step=step, data=data)


# ============================================================
# GATES
# ============================================================
def test_step_counts():
    assert _state(WizardKind.LEAD_MAGNET).step_count == 4
    assert _state(WizardKind.DIGITAL_PRODUCT).step_count == 3
    assert _state(WizardKind.WEBINAR).step_count == 3


def test_lead_magnet_early_steps_always_open():
    for step in (1, 2, 3):
        assert wizard.can_proceed(_state(WizardKind.LEAD_MAGNET, step))


def test_lead_magnet_terminal_needs_delivery():
    bare = _state(WizardKind.LEAD_MAGNET, 4)
    assert wizard.can_finalize(bare) is False

    assert wizard.can_finalize(_state(WizardKind.LEAD_MAGNET, 4, file_url="https://cdn.test/a.pdf"))
    assert wizard.can_finalize(_state(WizardKind.LEAD_MAGNET, 4, file_path="u/files/a.pdf"))

    redirect = _state(WizardKind.LEAD_MAGNET, 4, delivery_type="redirect", file_url="https://cdn.test/a.pdf")
    assert wizard.can_finalize(redirect) is False
    assert wizard.can_finalize(
        _state(WizardKind.LEAD_MAGNET, 4, delivery_type="redirect", redirect_url="https://example.com")
    )


def test_digital_step_one_needs_style_title_price():
    assert wizard.can_proceed(_state(style="button", title="Course", price="10"))
    assert not wizard.can_proceed(_state(style="button", title="  ", price="10"))
    assert not wizard.can_proceed(_state(style="button", title="Course", price=""))
    assert not wizard.can_proceed(_state(style="", title="Course", price="10"))


def test_digital_step_two_needs_description_and_cta():
    assert wizard.can_proceed(_state(step=2, description="Great", cta_button_text="Buy"))
    assert not wizard.can_proceed(_state(step=2, description="Great"))


def test_webinar_terminal_needs_date_and_time():
    assert not wizard.can_finalize(_state(WizardKind.WEBINAR, 3, webinar_date="2025-03-01"))
    assert wizard.can_finalize(_state(WizardKind.WEBINAR, 3, webinar_date="2025-03-01", webinar_time="18:00"))


def test_can_finalize_only_on_terminal_step():
    # delivery is complete but the wizard is still on step 2
    assert not wizard.can_finalize(_state(WizardKind.LEAD_MAGNET, 2, file_url="https://cdn.test/a.pdf"))


def test_next_step_is_noop_when_gate_fails():
    state = _state(title="Course")
    assert wizard.next_step(state) is state

    ready = _state(style="button", title="Course", price="10")
    assert wizard.next_step(ready).current_step == 2


def test_next_step_never_passes_terminal():
    state = _state(WizardKind.WEBINAR, 3, webinar_date="2025-03-01", webinar_time="18:00")
    assert wizard.next_step(state).current_step == 3


def test_previous_step_clamps_at_one():
    assert wizard.previous_step(_state(step=2)).current_step == 1
    assert wizard.previous_step(_state(step=1)).current_step == 1


# ============================================================
# COLLECTED FIELDS
# ============================================================
def test_add_field_ids_and_labels():
    state = wizard.add_field(_state(WizardKind.LEAD_MAGNET), "phone")
    assert [f.id for f in state.fields] == ["1", "2", "3"]
    assert state.fields[-1].label == "Phone Number"
    assert state.fields[-1].required is False

    state = wizard.add_field(state, "text")
    assert state.fields[-1].id == "4"
    assert state.fields[-1].label == "Message"


def test_add_field_after_gap_uses_max_id():
    state = WizardState(
        kind=WizardKind.LEAD_MAGNET,
        fields=[*schemas.default_collected_fields(), schemas.CollectedField(id="7", type="text")],
    )
    assert wizard.add_field(state, "text").fields[-1].id == "8"


def test_protected_fields_cannot_be_removed():
    state = _state(WizardKind.LEAD_MAGNET)
    for field_id in ("1", "2"):
        with pytest.raises(wizard.WizardError, match="cannot be removed"):
            wizard.remove_field(state, field_id)

    extended = wizard.add_field(state, "phone")
    assert [f.id for f in wizard.remove_field(extended, "3").fields] == ["1", "2"]


def test_protected_fields_only_change_label():
    state = wizard.update_field(_state(WizardKind.LEAD_MAGNET), "2", label="Work email", type="text", required=False)
    email = state.fields[1]
    assert email.label == "Work email"
    assert email.type == "email"
    assert email.required is True

    state = wizard.add_field(state, "phone")
    state = wizard.update_field(state, "3", required=True, label="Mobile")
    assert state.fields[2].required is True
    assert state.fields[2].label == "Mobile"


# ============================================================
# DRAFT PAYLOAD
# ============================================================
def test_lead_magnet_payload():
    state = _state(
        WizardKind.LEAD_MAGNET,
        2,
        title="Checklist",
        subtitle="Ten steps",
        button_text="Send it",
        file_url="https://cdn.test/c.pdf",
    )
    payload = wizard.to_draft_payload(state)

    assert payload["productType"] == "FREE_LEAD"
    assert payload["currentStep"] == 2
    assert payload["title"] == "Checklist"
    assert payload["buttonText"] == "Send it"
    assert payload["fileUrl"] == "https://cdn.test/c.pdf"
    assert [f["id"] for f in payload["formFields"]] == ["1", "2"]

    # the payload is accepted as-is by the drafts schema
    parsed = schemas.DraftIn.model_validate(payload)
    assert parsed.product_type == ProductType.FREE_LEAD


def test_webinar_payload_carries_schedule():
    state = _state(
        WizardKind.WEBINAR,
        3,
        title="Live Q&A",
        price=" 25 ",
        description="Ask me anything",
        webinar_date="2025-03-01",
        webinar_time="18:00",
        time_zone="America/Sao_Paulo",
    )
    payload = wizard.to_draft_payload(state)

    assert payload["productType"] == "WEBINAR"
    assert payload["price"] == "25"
    assert payload["description"] == "Ask me anything"
    assert payload["formFields"]["webinarDate"] == "2025-03-01"
    assert payload["formFields"]["webinarTime"] == "18:00"
    assert payload["formFields"]["timeZone"] == "America/Sao_Paulo"


def test_unparseable_price_is_left_out():
    payload = wizard.to_draft_payload(_state(price="abc"))
    assert "price" not in payload


def test_from_draft_resumes_at_saved_step():
    loaded = schemas.DraftOut(
        id="p1",
        type=ProductType.WEBINAR,
        title="Live Q&A",
        description="Ask",
        price=Decimal("25.00"),
        delivery_type="upload",
        form_fields={"webinarDate": "2025-03-01", "webinarTime": "18:00", "ctaButtonText": "Join"},
        current_step=7,
        is_draft=True,
        is_active=False,
    )

    state = wizard.from_draft(WizardKind.WEBINAR, loaded)

    assert state.current_step == 3
    assert state.draft_id == "p1"
    assert state.get("title") == "Live Q&A"
    assert state.get("price") == "25.00"
    assert state.get("webinar_time") == "18:00"
    assert state.get("cta_button_text") == "Join"
    assert wizard.can_finalize(state)


# ============================================================
# ENDPOINTS
# ============================================================
def test_transition_next(auth_client):
    r = auth_client.post(
        "/api/wizard/digital-product/transition",
        json={
            "state": {"currentStep": 1, "data": {"style": "button", "title": "Course", "price": "10"}},
            "action": "next",
        },
    )
    assert r.status_code == 200
    body = r.json()
    assert body["state"]["currentStep"] == 2
    assert body["state"]["stepCount"] == 3
    assert body["canProceed"] is False
    assert body["canFinalize"] is False
    assert body["draftPayload"]["productType"] == "DIGITAL"


def test_transition_remove_protected_field(auth_client):
    r = auth_client.post(
        "/api/wizard/lead-magnet/transition",
        json={"state": {"currentStep": 3}, "action": "remove_field", "fieldId": "1"},
    )
    assert r.status_code == 400
    assert r.json() == {"error": "The name and email fields cannot be removed"}


def test_transition_unknown_kind(auth_client):
    r = auth_client.post("/api/wizard/course/transition", json={"action": "next"})
    assert r.status_code == 400


def test_resume_from_stored_draft(auth_client):
    product_id = auth_client.post(
        "/api/drafts",
        json={"productType": "FREE_LEAD", "title": "Checklist", "currentStep": 4, "fileUrl": "https://cdn.test/c.pdf"},
    ).json()["productId"]

    r = auth_client.get(f"/api/wizard/lead-magnet/resume/{product_id}")
    assert r.status_code == 200
    body = r.json()
    assert body["state"]["draftId"] == product_id
    assert body["state"]["currentStep"] == 4
    assert body["state"]["data"]["title"] == "Checklist"
    assert body["canFinalize"] is True


def test_protected_field_keeps_label_when_renamed_to_blank():
    state = _state(WizardKind.LEAD_MAGNET)
    original = state.fields[0].label

    state = wizard.update_field(state, "1", label="")
    assert state.fields[0].label == original

    state = wizard.add_field(state, "text")
    state = wizard.update_field(state, "3", label="")
    assert state.fields[2].label == ""
