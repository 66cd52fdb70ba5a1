from __future__ import annotations

import json
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Literal, Optional, Type, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    RootModel,
    ValidationError,
    field_validator,
)
from pydantic.alias_generators import to_camel

from app.models import ProductType, SocialPlatform


class ApiModel(BaseModel):
    """camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


# ============================================================
# FORM FIELDS (per product type, stored as Product.form_fields)
# ============================================================
NAME_FIELD_ID = "1"
EMAIL_FIELD_ID = "2"
PROTECTED_FIELD_IDS = (NAME_FIELD_ID, EMAIL_FIELD_ID)


class CollectedField(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str
    type: str = "text"  # name | email | phone | text
    label: str = ""
    required: bool = False

    @field_validator("id", mode="before")
    @classmethod
    def _id_as_str(cls, v: Any) -> Any:
        return str(v) if isinstance(v, int) else v


def default_collected_fields() -> List[CollectedField]:
    return [
        CollectedField(id=NAME_FIELD_ID, type="name", label="Name", required=True),
        CollectedField(id=EMAIL_FIELD_ID, type="email", label="Email", required=True),
    ]


class LeadMagnetFields(RootModel[List[CollectedField]]):
    root: List[CollectedField] = Field(default_factory=default_collected_fields)

    @property
    def collect_fields(self) -> List[CollectedField]:
        return self.root


class DigitalProductFields(ApiModel):
    model_config = ConfigDict(extra="allow")

    style: str = "button"  # button | callout
    description: str = ""
    cta_button_text: str = "Purchase Now"
    collect_fields: List[CollectedField] = Field(default_factory=default_collected_fields)
    checkout_image_url: Optional[str] = None


class WebinarFields(DigitalProductFields):
    registration_image_url: Optional[str] = None
    webinar_date: str = ""  # YYYY-MM-DD
    webinar_time: str = ""  # HH:MM
    duration: str = "60"  # minutes
    time_zone: str = "UTC"
    max_attendees: str = ""
    meeting_platform: str = "google-meet"

    @field_validator("duration", "max_attendees", mode="before")
    @classmethod
    def _number_as_str(cls, v: Any) -> Any:
        if v is None:
            return ""
        if isinstance(v, (int, float)):
            return str(v)
        return v


class GenericFields(ApiModel):
    model_config = ConfigDict(extra="allow")


FormFields = Union[LeadMagnetFields, DigitalProductFields, WebinarFields, GenericFields]

FORM_FIELD_VARIANTS: Dict[ProductType, Type[BaseModel]] = {
    ProductType.FREE_LEAD: LeadMagnetFields,
    ProductType.DIGITAL: DigitalProductFields,
    ProductType.WEBINAR: WebinarFields,
}


class FormFieldsError(ValueError):
    pass


def form_fields_model(product_type: Optional[ProductType]) -> Type[BaseModel]:
    return FORM_FIELD_VARIANTS.get(product_type, GenericFields)


def parse_form_fields(product_type: Optional[ProductType], raw: Any, strict: bool = False) -> FormFields:
    """
    Validate the stored/submitted formFields blob against the variant for
    `product_type`.

    strict=True (writes): malformed JSON or a shape mismatch raises
    FormFieldsError. strict=False (reads): falls back to the variant defaults,
    since stored blobs are versionless and may predate current keys.
    """
    model = form_fields_model(product_type)

    if isinstance(raw, str):
        try:
            raw = json.loads(raw) if raw.strip() else None
        except ValueError as e:
            if strict:
                raise FormFieldsError(f"formFields is not valid JSON: {e}") from e
            raw = None

    if raw is None:
        return model()

    if model is LeadMagnetFields and isinstance(raw, dict) and not strict:
        # older lead magnet rows stored the list under a key
        raw = raw.get("collectFields") or raw.get("fields") or default_collected_fields()

    try:
        return model.model_validate(raw)
    except ValidationError as e:
        if strict:
            raise FormFieldsError(f"formFields does not match {product_type.value if product_type else 'product'} layout") from e
        return model()


def form_fields_to_json(fields: FormFields) -> Any:
    return fields.model_dump(mode="json", by_alias=True)


def collected_fields(fields: FormFields) -> List[CollectedField]:
    if isinstance(fields, LeadMagnetFields):
        return list(fields.root)
    return list(getattr(fields, "collect_fields", None) or [])


# ============================================================
# USERNAME
# ============================================================
class UsernameCheckRequest(ApiModel):
    username: Optional[Any] = None
    exclude_user_id: Optional[str] = None


class UsernameValidationOut(ApiModel):
    is_valid: bool
    error: Optional[str] = None


# ============================================================
# PROFILE
# ============================================================
class SocialLinkOut(ApiModel):
    platform: SocialPlatform
    url: str
    position: int


class ProfileOut(ApiModel):
    id: str
    email: str
    username: str
    full_name: Optional[str] = None
    bio: Optional[str] = None
    avatar_url: Optional[str] = None
    social_links: List[SocialLinkOut] = []


class ProfileUpdate(ApiModel):
    full_name: Optional[str] = None
    username: Optional[str] = None
    bio: Optional[str] = None
    avatar_url: Optional[str] = None
    avatar_path: Optional[str] = None


class SocialLinksUpdate(BaseModel):
    instagram: Optional[str] = None
    twitter: Optional[str] = None
    tiktok: Optional[str] = None
    youtube: Optional[str] = None
    linkedin: Optional[str] = None
    github: Optional[str] = None
    facebook: Optional[str] = None
    twitch: Optional[str] = None


# ============================================================
# PRODUCTS / DRAFTS
# ============================================================
class DraftIn(ApiModel):
    """
    Wizard payload. Only the keys the client actually sends count as
    supplied (model_fields_set): everything else keeps its stored value on
    update/finalize.
    """

    product_type: Optional[ProductType] = None
    title: Optional[str] = None
    subtitle: Optional[str] = None
    description: Optional[str] = None
    price: Optional[Decimal] = None
    button_text: Optional[str] = None
    delivery_type: Optional[Literal["upload", "redirect"]] = None
    redirect_url: Optional[str] = None
    form_fields: Optional[Any] = None
    image_url: Optional[str] = None
    image_path: Optional[str] = None
    file_url: Optional[str] = None
    file_path: Optional[str] = None
    file_name: Optional[str] = None
    current_step: Optional[int] = Field(default=None, ge=1)


class DraftOut(ApiModel):
    id: str
    type: ProductType
    title: str
    subtitle: Optional[str] = None
    description: Optional[str] = None
    price: Decimal
    button_text: Optional[str] = None
    image_url: Optional[str] = None
    file_url: Optional[str] = None
    file_name: Optional[str] = None
    delivery_type: str
    redirect_url: Optional[str] = None
    form_fields: Any = None
    current_step: int
    is_draft: bool
    is_active: bool


class ProductCreate(ApiModel):
    title: str
    type: ProductType
    price: Decimal
    description: Optional[str] = None
    currency: str = "USD"
    image_url: Optional[str] = None
    image_path: Optional[str] = None
    file_url: Optional[str] = None
    file_path: Optional[str] = None
    file_name: Optional[str] = None


class ProductOut(ApiModel):
    id: str
    type: ProductType
    title: str
    subtitle: Optional[str] = None
    description: Optional[str] = None
    price: Decimal
    currency: str
    image_url: Optional[str] = None
    file_name: Optional[str] = None
    delivery_type: str
    button_text: Optional[str] = None
    is_draft: bool
    is_active: bool
    current_step: int
    created_at: Optional[datetime] = None


class UploadOut(ApiModel):
    url: str
    path: str
    file_name: Optional[str] = None


# ============================================================
# PUBLIC PAGE
# ============================================================
class PublicProductOut(ApiModel):
    id: str
    type: ProductType
    title: str
    subtitle: Optional[str] = None
    description: Optional[str] = None
    price: Decimal
    currency: str
    image_url: Optional[str] = None
    button_text: Optional[str] = None
    delivery_type: str
    form_fields: Any = None


class PublicProfileOut(ApiModel):
    username: str
    full_name: Optional[str] = None
    bio: Optional[str] = None
    avatar_url: Optional[str] = None
    social_links: List[SocialLinkOut] = []
    products: List[PublicProductOut] = []


# ============================================================
# FULFILLMENT
# ============================================================
class LeadSubmitRequest(ApiModel):
    product_id: str
    form_data: Dict[str, Any] = Field(default_factory=dict)


class WebinarPurchaseRequest(ApiModel):
    product_id: str
    buyer_name: str
    buyer_email: str
    amount: str = "0"
    currency: str = "USD"
    payment_id: Optional[str] = None


class WebinarEventData(ApiModel):
    title: str
    description: str = ""
    webinar_date: str
    webinar_time: str
    duration: str = "60"
    time_zone: str = "UTC"

    @field_validator("duration", mode="before")
    @classmethod
    def _duration_as_str(cls, v: Any) -> Any:
        return str(v) if isinstance(v, (int, float)) else v


class WebinarEventRequest(ApiModel):
    webinar_data: WebinarEventData
    attendee_emails: List[str] = Field(default_factory=list)
    product_id: Optional[str] = None


# ============================================================
# WIZARD
# ============================================================
class WizardTransitionRequest(ApiModel):
    state: Dict[str, Any] = Field(default_factory=dict)
    action: Literal["next", "previous", "add_field", "remove_field", "update_field"]
    field_id: Optional[str] = None
    field_type: Optional[str] = None
    changes: Dict[str, Any] = Field(default_factory=dict)
