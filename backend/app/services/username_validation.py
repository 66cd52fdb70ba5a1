from __future__ import annotations

import logging
import random
import re
import string
import time
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app import models

logger = logging.getLogger(__name__)


# ============================================================
# RULES
# ============================================================
USERNAME_MIN_LENGTH = 3
USERNAME_MAX_LENGTH = 30
USERNAME_REGEX = re.compile(r"^[a-zA-Z0-9_-]+$")

RESERVED_USERNAMES = frozenset({
    # infra / app paths
    "admin", "api", "app", "www", "mail", "ftp", "blog", "store", "shop",
    "dashboard", "login", "signup", "auth", "oauth", "callback", "settings",
    "profile", "account", "help", "support", "contact", "about", "terms",
    "privacy", "legal", "docs", "documentation", "status", "health",
    "pricing", "features", "home", "landing", "welcome", "onboarding",
    "billing", "payment", "checkout", "success", "error", "notfound",
    "404", "500", "maintenance", "coming-soon", "soon", "beta", "alpha",
    "dev", "development", "staging", "test", "testing", "demo",
    "assets", "static", "public", "media", "uploads", "downloads",
    "images", "img", "css", "js", "javascript", "fonts", "favicon",
    "robots", "sitemap", "manifest", "security", "well-known",
    # social platforms
    "instagram", "twitter", "facebook", "linkedin", "youtube", "tiktok",
    "github", "discord", "telegram", "whatsapp", "snapchat", "pinterest",
    # reserved tokens
    "root", "user", "guest", "anonymous", "unknown", "null", "undefined",
    "true", "false", "yes", "no", "on", "off", "none", "all", "any",
})


@dataclass(frozen=True)
class UsernameValidationResult:
    is_valid: bool
    error: Optional[str] = None


VALID = UsernameValidationResult(is_valid=True)


def _invalid(error: str) -> UsernameValidationResult:
    return UsernameValidationResult(is_valid=False, error=error)


# ============================================================
# FORMAT (pure)
# ============================================================
def validate_username_format(username: str) -> UsernameValidationResult:
    if len(username) < USERNAME_MIN_LENGTH:
        return _invalid(f"Username must be at least {USERNAME_MIN_LENGTH} characters long")

    if len(username) > USERNAME_MAX_LENGTH:
        return _invalid(f"Username must be no more than {USERNAME_MAX_LENGTH} characters long")

    if not USERNAME_REGEX.match(username):
        return _invalid("Username can only contain letters, numbers, hyphens, and underscores")

    if username[0] in "-_" or username[-1] in "-_":
        return _invalid("Username cannot start or end with hyphens or underscores")

    if any(pair in username for pair in ("--", "__", "-_", "_-")):
        return _invalid("Username cannot contain consecutive special characters")

    if username.lower() in RESERVED_USERNAMES:
        return _invalid("This username is reserved and cannot be used")

    return VALID


# ============================================================
# AVAILABILITY (read-only, never raises)
# ============================================================
def check_username_availability(
    db: Session,
    username: str,
    exclude_user_id: Optional[str] = None,
) -> UsernameValidationResult:
    try:
        existing = (
            db.query(models.User.id)
            .filter(func.lower(models.User.username) == username.lower())
            .first()
        )
    except SQLAlchemyError:
        logger.exception("Error checking username availability for %r", username)
        return _invalid("Unable to check username availability")

    if existing and existing.id != exclude_user_id:
        return _invalid("This username is already taken")

    return VALID


def validate_username(
    db: Session,
    username: str,
    exclude_user_id: Optional[str] = None,
) -> UsernameValidationResult:
    result = validate_username_format(username)
    if not result.is_valid:
        return result
    return check_username_availability(db, username, exclude_user_id)


# ============================================================
# GENERATION (lazy user creation)
# ============================================================
def _random_suffix(length: int) -> str:
    return "".join(random.choices(string.ascii_lowercase + string.digits, k=length))


def generate_username_from_email(email: str) -> str:
    base = (email or "").split("@")[0].lower()
    clean = re.sub(r"[^a-z0-9]", "", base)

    if len(clean) < USERNAME_MIN_LENGTH:
        clean += _random_suffix(USERNAME_MIN_LENGTH - len(clean) + 1)

    return clean[:USERNAME_MAX_LENGTH]


def generate_unique_username(db: Session, base_username: str) -> str:
    username = base_username
    counter = 1

    while not validate_username(db, username).is_valid:
        suffix = str(counter)
        username = f"{base_username[:USERNAME_MAX_LENGTH - len(suffix)]}{suffix}"
        counter += 1

        if counter > 1000:
            stamp = str(int(time.time()))
            username = f"{base_username[:USERNAME_MAX_LENGTH - len(stamp)]}{stamp}"
            break

    return username
