import importlib

import pytest
from werkzeug.security import generate_password_hash

from app.medinv import create_app
from app.medinv.db import session_scope
from app.medinv.models import Base, Permission, Role, User


@pytest.fixture()
def client(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("STORAGE_BACKEND", "local")
    monkeypatch.setenv("STORAGE_ROOT", str(tmp_path / "storage"))
    for k in ("S3_ENDPOINT", "S3_REGION", "S3_BUCKET", "S3_ACCESS_KEY_ID", "S3_SECRET_ACCESS_KEY", "SMTP_HOST"):
        monkeypatch.delenv(k, raising=False)

    app = create_app()

    engine = app.extensions["sqlalchemy_engine"]
    Base.metadata.create_all(bind=engine)

    with session_scope(app) as s:
        p_admin = Permission(key="admin.view", name="Admin: view dashboard")
        p_inv = Permission(key="inventory.view", name="Inventory: view")
        r = Role(key="admin", name="Administrator")
        r.permissions.extend([p_admin, p_inv])
        u = User(email="admin@example.com", password_hash=generate_password_hash("pw"), is_active=True)
        u.roles.append(r)
        s.add_all([p_admin, p_inv, r, u])

    return app.test_client()


def test_health_ok(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json["ok"] is True


def test_healthz_ok(client):
    r = client.get("/healthz")
    assert r.status_code == 200
    assert r.data == b"ok"


def test_login_and_admin_access(client):
    # Anonymous should be sent to login
    r = client.get("/admin/")
    assert r.status_code in (302, 403)

    r = client.post("/auth/login", data={"email": "admin@example.com", "password": "pw"}, follow_redirects=False)
    assert r.status_code == 302
    assert "/admin/items" in r.headers["Location"]

    r = client.get("/admin/")
    assert r.status_code == 200
    assert b"locations low on stock" in r.data


def test_wrong_password_rejected(client):
    r = client.post("/auth/login", data={"email": "admin@example.com", "password": "nope"}, follow_redirects=True)
    assert r.status_code == 200
    assert b"Invalid credentials" in r.data

    r = client.get("/admin/items")
    assert r.status_code == 302


def test_post_without_csrf_token_is_rejected(client):
    client.post("/auth/login", data={"email": "admin@example.com", "password": "pw"})
    r = client.post("/admin/categories", data={"name": "Wondverzorging"})
    assert r.status_code == 400


def test_missing_permission_is_forbidden(client):
    client.post("/auth/login", data={"email": "admin@example.com", "password": "pw"})
    r = client.get("/admin/backup")
    assert r.status_code == 403


@pytest.mark.parametrize(
    "module",
    [
        "app.medinv.modules",
        "app.medinv.modules.alerts.admin",
        "app.medinv.modules.backup.admin",
        "app.medinv.modules.cabinets.admin",
        "app.medinv.modules.inventory.admin",
        "app.medinv.modules.item_import.admin",
        "app.medinv.modules.photos.admin",
        "app.medinv.modules.posts.admin",
    ],
)
def test_feature_modules_import(module):
    assert importlib.import_module(module) is not None
