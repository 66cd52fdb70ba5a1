from __future__ import annotations

import enum
from dataclasses import dataclass, field, replace
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

from pydantic.alias_generators import to_camel, to_snake

from app import schemas
from app.models import DeliveryType, ProductType
from app.schemas import CollectedField, PROTECTED_FIELD_IDS


# ============================================================
# KINDS
# ============================================================
class WizardKind(str, enum.Enum):
    LEAD_MAGNET = "lead-magnet"
    DIGITAL_PRODUCT = "digital-product"
    WEBINAR = "webinar"


STEP_COUNT: Dict[WizardKind, int] = {
    WizardKind.LEAD_MAGNET: 4,
    WizardKind.DIGITAL_PRODUCT: 3,
    WizardKind.WEBINAR: 3,
}

PRODUCT_TYPE: Dict[WizardKind, ProductType] = {
    WizardKind.LEAD_MAGNET: ProductType.FREE_LEAD,
    WizardKind.DIGITAL_PRODUCT: ProductType.DIGITAL,
    WizardKind.WEBINAR: ProductType.WEBINAR,
}

FIELD_LABELS = {"phone": "Phone Number", "text": "Message"}
EDITABLE_FIELD_KEYS = ("label", "type", "required")

# product columns the wizard carries in `data`, as they appear on a draft
PRODUCT_KEYS = (
    "title", "subtitle", "price", "button_text", "delivery_type", "redirect_url",
    "image_url", "image_path", "file_url", "file_path", "file_name",
)


class WizardError(ValueError):
    pass


@dataclass(frozen=True)
class WizardState:
    kind: WizardKind
    current_step: int = 1
    data: Dict[str, Any] = field(default_factory=dict)
    fields: List[CollectedField] = field(default_factory=schemas.default_collected_fields)
    draft_id: Optional[str] = None

    @property
    def step_count(self) -> int:
        return STEP_COUNT[self.kind]

    @property
    def is_terminal(self) -> bool:
        return self.current_step == self.step_count

    def get(self, key: str, default: Any = "") -> Any:
        value = self.data.get(key)
        return default if value is None else value


def _filled(value: Any) -> bool:
    return str(value if value is not None else "").strip() != ""


def _clamp(kind: WizardKind, step: int) -> int:
    return max(1, min(int(step or 1), STEP_COUNT[kind]))


# ============================================================
# GATES (pure)
# ============================================================
def _delivery_complete(state: WizardState) -> bool:
    if state.get("delivery_type", DeliveryType.UPLOAD.value) == DeliveryType.REDIRECT.value:
        return _filled(state.get("redirect_url"))
    return _filled(state.get("file_url")) or _filled(state.get("file_path"))


def step_gate(state: WizardState, step: Optional[int] = None) -> bool:
    step = state.current_step if step is None else step

    if step == state.step_count:
        if state.kind == WizardKind.WEBINAR:
            return _filled(state.get("webinar_date")) and _filled(state.get("webinar_time"))
        return _delivery_complete(state)

    if state.kind == WizardKind.LEAD_MAGNET:
        return True

    if step == 1:
        return _filled(state.get("style")) and _filled(state.get("title")) and _filled(state.get("price"))
    if step == 2:
        return _filled(state.get("description")) and _filled(state.get("cta_button_text"))
    return True


def can_proceed(state: WizardState) -> bool:
    return not state.is_terminal and step_gate(state)


def can_finalize(state: WizardState) -> bool:
    # earlier steps are not re-checked here, they were gated on the way in
    return state.is_terminal and step_gate(state)


def next_step(state: WizardState) -> WizardState:
    if not can_proceed(state):
        return state
    return replace(state, current_step=state.current_step + 1)


def previous_step(state: WizardState) -> WizardState:
    return replace(state, current_step=max(1, state.current_step - 1))


# ============================================================
# COLLECTED FIELDS
# ============================================================
def _next_field_id(fields: List[CollectedField]) -> str:
    numeric = [int(f.id) for f in fields if f.id.isdigit()]
    return str(max(numeric + [len(PROTECTED_FIELD_IDS)]) + 1)


def add_field(state: WizardState, field_type: str) -> WizardState:
    field_type = (field_type or "text").strip().lower()
    new_field = CollectedField(
        id=_next_field_id(state.fields),
        type=field_type,
        label=FIELD_LABELS.get(field_type, field_type.capitalize()),
        required=False,
    )
    return replace(state, fields=[*state.fields, new_field])


def remove_field(state: WizardState, field_id: str) -> WizardState:
    if field_id in PROTECTED_FIELD_IDS:
        raise WizardError("The name and email fields cannot be removed")
    return replace(state, fields=[f for f in state.fields if f.id != field_id])


def update_field(state: WizardState, field_id: str, **changes: Any) -> WizardState:
    allowed = ("label",) if field_id in PROTECTED_FIELD_IDS else EDITABLE_FIELD_KEYS
    updates = {k: v for k, v in changes.items() if k in allowed}
    if field_id in PROTECTED_FIELD_IDS and not updates.get("label"):
        updates.pop("label", None)

    fields = [
        f.model_copy(update=updates) if f.id == field_id else f
        for f in state.fields
    ]
    return replace(state, fields=fields)


# ============================================================
# DRAFT <-> STATE
# ============================================================
def _form_fields(state: WizardState) -> schemas.FormFields:
    if state.kind == WizardKind.LEAD_MAGNET:
        return schemas.LeadMagnetFields(list(state.fields))

    model = schemas.WebinarFields if state.kind == WizardKind.WEBINAR else schemas.DigitalProductFields
    known = {
        name: state.data[name]
        for name in model.model_fields
        if name != "collect_fields" and state.data.get(name) is not None
    }
    return model(**known, collect_fields=list(state.fields))


def _price(value: Any) -> Optional[str]:
    try:
        return str(Decimal(str(value).strip()))
    except (InvalidOperation, ValueError):
        return None


def to_draft_payload(state: WizardState) -> Dict[str, Any]:
    """Body for POST /api/drafts, PATCH /api/drafts/{id} and finalize."""
    payload: Dict[str, Any] = {
        "productType": PRODUCT_TYPE[state.kind].value,
        "currentStep": state.current_step,
        "formFields": schemas.form_fields_to_json(_form_fields(state)),
    }

    for key in PRODUCT_KEYS:
        if key not in state.data:
            continue
        value = state.data[key]
        if key == "price":
            value = _price(value)
            if value is None:
                continue
        payload[to_camel(key)] = value

    if "description" in state.data:
        payload["description"] = state.data["description"]

    return payload


def from_draft(kind: WizardKind, loaded: schemas.DraftOut) -> WizardState:
    """Resume a stored draft at its saved step."""
    fields = schemas.parse_form_fields(PRODUCT_TYPE[kind], loaded.form_fields)

    data: Dict[str, Any] = {}
    if not isinstance(fields, schemas.LeadMagnetFields):
        data.update(fields.model_dump(exclude={"collect_fields"}))

    dumped = loaded.model_dump()
    for key in PRODUCT_KEYS:
        if dumped.get(key) is not None:
            data[key] = dumped[key]
    if kind == WizardKind.LEAD_MAGNET or not data.get("description"):
        data["description"] = loaded.description or ""
    if "price" in data:
        data["price"] = str(data["price"])

    return WizardState(
        kind=kind,
        current_step=_clamp(kind, loaded.current_step),
        data=data,
        fields=schemas.collected_fields(fields) or schemas.default_collected_fields(),
        draft_id=loaded.id,
    )


# ============================================================
# WIRE FORMAT (camelCase dicts for the transition endpoint)
# ============================================================
def state_from_dict(kind: WizardKind, raw: Dict[str, Any]) -> WizardState:
    raw = raw or {}
    data = {to_snake(k): v for k, v in (raw.get("data") or {}).items()}

    raw_fields = raw.get("fields")
    if raw_fields is None:
        fields = schemas.default_collected_fields()
    else:
        try:
            fields = schemas.LeadMagnetFields.model_validate(raw_fields).root
        except ValueError as e:
            raise WizardError("Invalid fields list") from e

    return WizardState(
        kind=kind,
        current_step=_clamp(kind, raw.get("currentStep") or 1),
        data=data,
        fields=fields,
        draft_id=raw.get("draftId"),
    )


def state_to_dict(state: WizardState) -> Dict[str, Any]:
    return {
        "kind": state.kind.value,
        "currentStep": state.current_step,
        "stepCount": state.step_count,
        "draftId": state.draft_id,
        "data": {to_camel(k): v for k, v in state.data.items()},
        "fields": [f.model_dump() for f in state.fields],
    }
