from __future__ import annotations

from typing import Dict, Generator

from sqlalchemy import create_engine, text
from sqlalchemy.orm import sessionmaker, declarative_base
from sqlalchemy.pool import StaticPool

from app.config import settings

DATABASE_URL = settings.DATABASE_URL

if DATABASE_URL.startswith("sqlite"):
    engine = create_engine(
        DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
else:
    engine = create_engine(DATABASE_URL, pool_pre_ping=True)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


def get_db() -> Generator:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db(db_engine) -> None:
    # models must be imported so their tables register on Base.metadata
    from app import models  # noqa: F401

    Base.metadata.create_all(bind=db_engine)
    ensure_sqlite_schema(db_engine)


def ensure_sqlite_schema(db_engine) -> None:
    """
    SQLite: add missing columns without Alembic (ALTER TABLE ... ADD COLUMN ...).
    A no-op on a fresh database; a database file whose tables lack one of
    these nullable columns gets it added in place.
    """
    if not str(db_engine.url).startswith("sqlite"):
        return

    user_cols: Dict[str, str] = {
        "full_name": "VARCHAR(150)",
        "bio": "TEXT",
        "avatar_url": "TEXT",
        "avatar_path": "TEXT",

        "google_access_token": "TEXT",
        "google_refresh_token": "TEXT",
        "google_token_expiry": "DATETIME",

        "updated_at": "DATETIME",
    }

    product_cols: Dict[str, str] = {
        "subtitle": "TEXT",
        "description": "TEXT",
        "currency": "VARCHAR(3)",

        "image_url": "TEXT",
        "image_path": "TEXT",
        "file_url": "TEXT",
        "file_path": "TEXT",
        "file_name": "VARCHAR(255)",

        "delivery_type": "VARCHAR(20)",
        "redirect_url": "TEXT",
        "button_text": "VARCHAR(120)",
        "form_fields": "JSON",
        "current_step": "INTEGER",

        "google_event_id": "VARCHAR(255)",
        "google_meet_link": "TEXT",
        "google_calendar_link": "TEXT",

        "updated_at": "DATETIME",
    }

    def table_exists(conn, table: str) -> bool:
        row = conn.execute(
            text("SELECT name FROM sqlite_master WHERE type='table' AND name=:t"),
            {"t": table},
        ).fetchone()
        return row is not None

    def existing_cols(conn, table: str):
        rows = conn.execute(text(f"PRAGMA table_info({table})")).fetchall()
        return {r[1] for r in rows}

    with db_engine.connect() as conn:
        if table_exists(conn, "users"):
            existing = existing_cols(conn, "users")
            for col, coltype in user_cols.items():
                if col not in existing:
                    conn.execute(text(f"ALTER TABLE users ADD COLUMN {col} {coltype}"))

        if table_exists(conn, "products"):
            existing = existing_cols(conn, "products")
            for col, coltype in product_cols.items():
                if col not in existing:
                    conn.execute(text(f"ALTER TABLE products ADD COLUMN {col} {coltype}"))

        conn.commit()
