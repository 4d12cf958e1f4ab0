"""
Pytest fixtures: an in-memory database per test, a TestClient wired to it,
and users with tokens for each role.
"""
import os

os.environ.setdefault("ENVIRONMENT", "test")
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["AUTO_CREATE_DB"] = "false"
os.environ["SCHEDULER_ENABLED"] = "false"
os.environ["ENABLE_EMAIL"] = "false"
os.environ["RATE_LIMIT"] = "10000/minute"

from datetime import timedelta

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from assethub.auth.security import create_access_token, get_password_hash
from assethub.db import Base, get_db
from assethub.main import app as fastapi_app
from assethub.models.models import Asset, User
from assethub.services.lifecycle import refresh_status, utcnow


PASSWORD = "secret123"


@pytest.fixture()
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture()
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False)


@pytest.fixture()
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture()
def client(session_factory):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    fastapi_app.dependency_overrides[get_db] = override_get_db
    yield TestClient(fastapi_app)
    fastapi_app.dependency_overrides.clear()


def make_user(db, name="Test User", email=None, role="employee", department="Engineering", is_active=True):
    user = User(
        name=name,
        email=email or f"{name.lower().replace(' ', '.')}@example.com",
        password_hash=get_password_hash(PASSWORD),
        role=role,
        department=department,
        is_active=is_active,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def make_asset(db, creator, name="Laptop", asset_type="hardware", purchase_days=-100, expiry_days=365,
               assigned_to=None, serial_number=None, category="Computers"):
    """Insert an asset directly, dates relative to now in days (None for no expiry)."""
    now = utcnow()
    asset = Asset(
        name=name,
        type=asset_type,
        category=category,
        purchase_date=now + timedelta(days=purchase_days),
        expiry_date=now + timedelta(days=expiry_days) if expiry_days is not None else None,
        assigned_to=assigned_to,
        serial_number=serial_number,
        created_by=creator.id,
    )
    refresh_status(asset, now)
    db.add(asset)
    db.commit()
    db.refresh(asset)
    return asset


def auth_headers(user):
    return {"Authorization": f"Bearer {create_access_token(user)}"}


@pytest.fixture()
def admin(db):
    return make_user(db, name="Alice Admin", role="admin", department="IT")


@pytest.fixture()
def hr(db):
    return make_user(db, name="Harry Hr", role="hr", department="Human Resources")


@pytest.fixture()
def employee(db):
    return make_user(db, name="Eve Employee", role="employee", department="Engineering")
