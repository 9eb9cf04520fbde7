from __future__ import annotations

import os

# Must be set before propmarket modules read the environment.
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("JWT_SECRET", "test-secret")
os.environ.setdefault("EMAIL_BACKEND", "console")

from io import BytesIO

import pytest
from fastapi.testclient import TestClient
from PIL import Image
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from propmarket import verification
from propmarket.db import session_scope
from propmarket.main import app, get_db, get_notifier
from propmarket.models import Base, Property, User
from propmarket.rate_limit import limiter
from propmarket.security import create_access_token

SUPER_ADMIN = "root@propmarket.test"


@pytest.fixture(autouse=True)
def _env(monkeypatch):
    monkeypatch.setenv("SUPER_ADMIN_EMAIL", SUPER_ADMIN)
    for name in ("CLOUDINARY_CLOUD_NAME", "CLOUDINARY_API_KEY", "CLOUDINARY_API_SECRET"):
        monkeypatch.delenv(name, raising=False)
    limiter.reset()
    yield
    limiter.reset()


@pytest.fixture
def engine():
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    Base.metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, expire_on_commit=False, autoflush=False)


@pytest.fixture
def db(session_factory):
    """A plain session for service-level tests."""
    s = session_factory()
    yield s
    s.close()


@pytest.fixture
def sent_codes():
    """(email, code) pairs handed to the notifier."""
    return []


@pytest.fixture
def client(session_factory, sent_codes):
    def _get_db():
        with session_scope(session_factory) as s:
            yield s

    def _notifier(email: str, code: str) -> str:
        sent_codes.append((email, code))
        return "email"

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_notifier] = lambda: _notifier
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def fake_storage(monkeypatch):
    """Replace Cloudinary calls; records uploads and deletions."""
    calls = {"uploads": [], "destroyed": []}

    def _upload(*, raw, resource_type, public_id, filename):
        calls["uploads"].append({"public_id": public_id, "resource_type": resource_type, "filename": filename, "size": len(raw)})
        return f"https://res.cloudinary.com/demo/{resource_type}/upload/{public_id}", public_id

    def _destroy(*, public_id, resource_type):
        calls["destroyed"].append(public_id)

    monkeypatch.setattr(verification, "cloudinary_enabled", lambda: True)
    monkeypatch.setattr(verification, "upload_bytes", _upload)
    monkeypatch.setattr(verification, "destroy", _destroy)
    return calls


@pytest.fixture
def pdf_bytes():
    return b"%PDF-1.4\n1 0 obj\n<< /Type /Catalog >>\nendobj\ntrailer\n<< /Root 1 0 R >>\n%%EOF\n"


@pytest.fixture
def png_bytes():
    buf = BytesIO()
    Image.new("RGB", (8, 8), (200, 30, 30)).save(buf, format="PNG")
    return buf.getvalue()


def make_user(
    session_factory,
    email: str,
    *,
    role: str = "seller",
    onboarded: bool = True,
    super_admin: bool = False,
    active: bool = True,
) -> User:
    with session_scope(session_factory) as s:
        u = User(
            email=email,
            full_name="Test User" if onboarded else None,
            phone="5551234567" if onboarded else None,
            role=role,
            is_super_admin=super_admin,
            onboarding_complete=onboarded,
            is_active=active,
        )
        s.add(u)
        s.flush()
    return u


def make_listing(session_factory, owner: User, **overrides) -> Property:
    values = {
        "title": "Sunny family home",
        "description": "Three bedroom house close to parks and schools.",
        "listing_type": "sale",
        "property_type": "house",
        "price": 350000.0,
        "address": "12 Main Street",
        "city": "Springfield",
        "state": "IL",
        "zip_code": "62701",
        "bedrooms": 3,
        "bathrooms": 2,
        "square_feet": 1800,
        "status": "approved",
        "verification_status": "unverified",
    }
    values.update(overrides)
    with session_scope(session_factory) as s:
        p = Property(owner_id=owner.id, owner_type="agent" if owner.role == "agent" else "seller", **values)
        s.add(p)
        s.flush()
    return p


def auth(user: User) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(user_id=user.id, role=user.role)}"}


@pytest.fixture
def seller(session_factory):
    return make_user(session_factory, "seller@example.com", role="seller")


@pytest.fixture
def buyer(session_factory):
    return make_user(session_factory, "buyer@example.com", role="buyer")


@pytest.fixture
def admin(session_factory):
    return make_user(session_factory, "admin@example.com", role="admin")


@pytest.fixture
def super_admin(session_factory):
    return make_user(session_factory, SUPER_ADMIN, role="admin", super_admin=True)


@pytest.fixture
def listing(session_factory, seller):
    return make_listing(session_factory, seller)
