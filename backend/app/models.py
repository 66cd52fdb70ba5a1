from __future__ import annotations

import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import relationship

from .database import Base


def _uuid() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ============================================================
# ENUMS
# ============================================================
class ProductType(str, enum.Enum):
    FREE_LEAD = "FREE_LEAD"
    DIGITAL = "DIGITAL"
    WEBINAR = "WEBINAR"
    EBOOK = "EBOOK"
    COURSE = "COURSE"
    TEMPLATE = "TEMPLATE"
    CONSULTATION = "CONSULTATION"
    SUBSCRIPTION = "SUBSCRIPTION"
    PHYSICAL = "PHYSICAL"
    COACHING = "COACHING"


class DeliveryType(str, enum.Enum):
    UPLOAD = "upload"
    REDIRECT = "redirect"


class SocialPlatform(str, enum.Enum):
    INSTAGRAM = "instagram"
    TWITTER = "twitter"
    TIKTOK = "tiktok"
    YOUTUBE = "youtube"
    LINKEDIN = "linkedin"
    GITHUB = "github"
    FACEBOOK = "facebook"
    TWITCH = "twitch"


class OrderStatus(str, enum.Enum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"


class AnalyticsType(str, enum.Enum):
    PAGE_VIEW = "PAGE_VIEW"
    PRODUCT_VIEW = "PRODUCT_VIEW"
    FILE_DOWNLOAD = "FILE_DOWNLOAD"
    LEAD_CAPTURED = "LEAD_CAPTURED"
    PURCHASE = "PURCHASE"


# ============================================================
# USERS
# ============================================================
class User(Base):
    __tablename__ = "users"

    # id issued by the auth provider (token "sub")
    id = Column(String(36), primary_key=True, default=_uuid)

    email = Column(String(180), nullable=False, unique=True, index=True)
    username = Column(String(30), unique=True, index=True, nullable=False)
    full_name = Column(String(150), nullable=True)
    bio = Column(Text, nullable=True)

    avatar_url = Column(Text, nullable=True)
    avatar_path = Column(Text, nullable=True)

    # calendar integration (optional)
    google_access_token = Column(Text, nullable=True)
    google_refresh_token = Column(Text, nullable=True)
    google_token_expiry = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    products = relationship("Product", back_populates="owner", cascade="all, delete-orphan")
    social_links = relationship(
        "SocialLink",
        back_populates="owner",
        cascade="all, delete-orphan",
        order_by="SocialLink.position",
    )


class SocialLink(Base):
    __tablename__ = "social_links"

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)

    platform = Column(Enum(SocialPlatform, native_enum=False), nullable=False)
    url = Column(Text, nullable=False)
    position = Column(Integer, nullable=False, default=1)

    owner = relationship("User", back_populates="social_links")


# ============================================================
# PRODUCTS
# ============================================================
class Product(Base):
    __tablename__ = "products"

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)

    type = Column(Enum(ProductType, native_enum=False), nullable=False, default=ProductType.DIGITAL)

    title = Column(String(200), nullable=False)
    subtitle = Column(Text, nullable=True)
    description = Column(Text, nullable=True)

    price = Column(Numeric(10, 2), nullable=False, default=0)
    currency = Column(String(3), nullable=False, default="USD")

    image_url = Column(Text, nullable=True)
    image_path = Column(Text, nullable=True)

    file_url = Column(Text, nullable=True)
    file_path = Column(Text, nullable=True)
    file_name = Column(String(255), nullable=True)

    # upload | redirect
    delivery_type = Column(String(20), nullable=False, default=DeliveryType.UPLOAD.value)
    redirect_url = Column(Text, nullable=True)
    button_text = Column(String(120), nullable=True)

    # shape depends on `type`, see schemas.parse_form_fields
    form_fields = Column(JSON, nullable=True)
    current_step = Column(Integer, nullable=False, default=1)

    # draft: is_draft=True, is_active=False; published is the opposite
    is_draft = Column(Boolean, nullable=False, default=True)
    is_active = Column(Boolean, nullable=False, default=False)

    google_event_id = Column(String(255), nullable=True)
    google_meet_link = Column(Text, nullable=True)
    google_calendar_link = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    owner = relationship("User", back_populates="products")


# ============================================================
# LEADS / ORDERS
# ============================================================
class Lead(Base):
    __tablename__ = "leads"

    # also the bearer token of the download link
    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    product_id = Column(String(36), ForeignKey("products.id", ondelete="CASCADE"), nullable=False, index=True)

    customer_email = Column(String(180), nullable=False, index=True)
    customer_name = Column(String(150), nullable=True)
    customer_phone = Column(String(40), nullable=True)

    form_data = Column(JSON, nullable=True)
    ip_address = Column(String(64), nullable=True)
    user_agent = Column(Text, nullable=True)
    source = Column(String(40), nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


class Order(Base):
    __tablename__ = "orders"

    id = Column(String(36), primary_key=True, default=_uuid)
    # seller
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)

    customer_email = Column(String(180), nullable=False, index=True)
    customer_name = Column(String(150), nullable=True)

    total_amount = Column(Numeric(10, 2), nullable=False, default=0)
    currency = Column(String(3), nullable=False, default="USD")
    status = Column(Enum(OrderStatus, native_enum=False), nullable=False, default=OrderStatus.PENDING)
    external_payment_id = Column(String(120), nullable=True, unique=True)

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    items = relationship("OrderItem", back_populates="order", cascade="all, delete-orphan")


class OrderItem(Base):
    __tablename__ = "order_items"

    id = Column(String(36), primary_key=True, default=_uuid)
    order_id = Column(String(36), ForeignKey("orders.id"), nullable=False, index=True)
    product_id = Column(String(36), nullable=False, index=True)

    quantity = Column(Integer, nullable=False, default=1)
    price = Column(Numeric(10, 2), nullable=False, default=0)

    order = relationship("Order", back_populates="items")


# ============================================================
# ANALYTICS (append-only)
# ============================================================
class Analytics(Base):
    __tablename__ = "analytics"

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)

    type = Column(Enum(AnalyticsType, native_enum=False), nullable=False)
    # "metadata" is reserved on declarative classes
    event_metadata = Column("metadata", JSON, nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
