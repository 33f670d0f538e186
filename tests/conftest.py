import os
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("SECRET_KEY", "test-secret-key")

import smb_erp.models  # noqa: F401
from smb_erp.core.config import settings
from smb_erp.core.deps import get_db
from smb_erp.db.base import Base
from smb_erp.main import app
from smb_erp.models.contact import Contact
from smb_erp.models.inventory import InventoryItem
from smb_erp.routers.auth import login_rate_limiter

ADMIN_PASSWORD = "password123"


def _memory_engine():
    return create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )


@pytest.fixture()
def test_context():
    original_secret = settings.secret_key
    settings.secret_key = "test-secret-key"

    engine = _memory_engine()
    session_local = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.create_all(bind=engine)

    def override_get_db():
        db = session_local()
        try:
            yield db
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db

    with TestClient(app) as client:
        yield client, session_local

    app.dependency_overrides.clear()
    Base.metadata.drop_all(bind=engine)
    settings.secret_key = original_secret
    login_rate_limiter.clear()


@pytest.fixture()
def db_session():
    engine = _memory_engine()
    Base.metadata.create_all(bind=engine)
    session_local = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    db = session_local()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


def auth_headers(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture()
def admin_headers(test_context):
    client, _ = test_context
    res = client.post(
        "/auth/bootstrap",
        json={
            "email": "admin@example.com",
            "username": "admin",
            "full_name": "Ana Admin",
            "password": ADMIN_PASSWORD,
        },
    )
    assert res.status_code == 201, res.text
    return auth_headers(res.json()["access_token"])


@pytest.fixture()
def make_contact(db_session):
    def _make(name: str = "Distribuciones Norte", contact_type: str = "vendor") -> Contact:
        contact = Contact(
            name=name,
            email=f"{name.lower().replace(' ', '.')}@example.com",
            phone="+34 600 000 000",
            type=contact_type,
        )
        db_session.add(contact)
        db_session.commit()
        return contact

    return _make


@pytest.fixture()
def make_item(db_session):
    def _make(sku: str = "CAB-HDMI", stock: int = 10, unit_price: str = "2.00") -> InventoryItem:
        item = InventoryItem(
            name=f"Item {sku}",
            sku=sku,
            category="Cables",
            current_stock=stock,
            reorder_level=0,
            unit_price=Decimal(unit_price),
        )
        db_session.add(item)
        db_session.commit()
        return item

    return _make
