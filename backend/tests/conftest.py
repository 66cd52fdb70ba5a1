import os

# in-memory database shared through StaticPool; must be set before app.config loads
os.environ["DATABASE_URL"] = "sqlite://"
os.environ.pop("SENDGRID_API_KEY", None)
os.environ.pop("CRON_SECRET", None)
os.environ.pop("PAYMENT_WEBHOOK_ENABLED", None)

from uuid import uuid4

import pytest
from fastapi import Depends
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from app import models
from app.database import Base, SessionLocal, engine, get_db
from app.dependencies import get_current_user
from app.main import app


@pytest.fixture(scope="session", autouse=True)
def setup_db():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture()
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def make_user(db):
    def _make(**kwargs) -> models.User:
        suffix = uuid4().hex[:8]
        data = {
            "email": f"creator_{suffix}@example.com",
            "username": f"creator{suffix}",
            "full_name": "Test Creator",
        }
        data.update(kwargs)
        user = models.User(**data)
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return _make


@pytest.fixture()
def user(make_user):
    return make_user()


@pytest.fixture()
def make_product(db):
    def _make(user: models.User, **kwargs) -> models.Product:
        data = {
            "user_id": user.id,
            "type": models.ProductType.FREE_LEAD,
            "title": "Free Guide",
            "price": 0,
            "is_draft": False,
            "is_active": True,
        }
        data.update(kwargs)
        product = models.Product(**data)
        db.add(product)
        db.commit()
        db.refresh(product)
        return product

    return _make


@pytest.fixture()
def client():
    return TestClient(app)


@pytest.fixture()
def auth_client(user):
    """TestClient acting as `user`; the user is loaded in the request's own session."""
    user_id = user.id

    def _current_user(db: Session = Depends(get_db)) -> models.User:
        return db.get(models.User, user_id)

    app.dependency_overrides[get_current_user] = _current_user
    yield TestClient(app)
    app.dependency_overrides.pop(get_current_user, None)
