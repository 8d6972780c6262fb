"""Tests for the low-stock overview, supply request emails and email settings."""
import smtplib

import pytest
from werkzeug.security import generate_password_hash

from app.medinv import create_app
from app.medinv.db import session_scope
from app.medinv.models import Base, Permission, Role, User
from app.medinv.modules.alerts import mailer
from app.medinv.modules.alerts.models import EmailConfig, EmailNotification, SupplyRequest
from app.medinv.modules.cabinets.models import Cabinet
from app.medinv.modules.inventory.models import ItemLocation, MedicalItem
from app.medinv.modules.inventory.service import low_stock_locations
from app.medinv.modules.posts.models import AmbulancePost, PostContact

CSRF = "test-csrf-token"


class FakeSMTP:
    """Stands in for smtplib.SMTP; collects messages instead of sending them."""

    sent = []
    fail_with = None

    def __init__(self, host, port, timeout=None):
        self.host = host
        self.port = port

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def starttls(self):
        pass

    def login(self, user, password):
        pass

    def send_message(self, msg):
        if FakeSMTP.fail_with is not None:
            raise FakeSMTP.fail_with
        FakeSMTP.sent.append(msg)


def _seed_all_permissions(s):
    perm_keys = [
        ("inventory.view", "Inventory: view"),
        ("inventory.edit", "Inventory: edit"),
        ("alerts.send", "Alerts: send supply requests"),
        ("email_settings.edit", "Email settings: edit"),
    ]
    perms = []
    for key, name in perm_keys:
        p = Permission(key=key, name=name)
        s.add(p)
        perms.append(p)
    return perms


@pytest.fixture()
def smtp(monkeypatch):
    FakeSMTP.sent = []
    FakeSMTP.fail_with = None
    monkeypatch.setattr(mailer.smtplib, "SMTP", FakeSMTP)
    return FakeSMTP


@pytest.fixture()
def app(tmp_path, monkeypatch):
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
        perms = _seed_all_permissions(s)
        r = Role(key="admin", name="Administrator")
        for p in perms:
            r.permissions.append(p)
        u = User(email="admin@example.com", password_hash=generate_password_hash("pw"), is_active=True)
        u.roles.append(r)
        s.add_all([r, u])
        s.add_all(
            [
                AmbulancePost(id="hilversum", name="Hilversum"),
                AmbulancePost(id="blaricum", name="Blaricum"),
                Cabinet(id="A", name="Kast A", abbreviation="A"),
            ]
        )
        s.flush()
        s.add(PostContact(ambulance_post_id="hilversum", name="Jan de Vries", email="jan@example.nl"))
    return app


@pytest.fixture()
def client(app):
    return app.test_client()


def _login(client):
    client.post("/auth/login", data={"email": "admin@example.com", "password": "pw"}, follow_redirects=True)
    with client.session_transaction() as sess:
        sess["csrf_token"] = CSRF


def _configure_smtp(app):
    with session_scope(app) as s:
        s.add(
            EmailConfig(
                smtp_host="smtp.example.nl",
                smtp_port=587,
                smtp_user="voorraad",
                smtp_password="geheim",
                smtp_secure=True,
                from_email="voorraad@example.nl",
                from_name="Medische Inventaris",
            )
        )


def _location(app, name, post_id="hilversum", status="op-voorraad", with_contact=False, **item_fields):
    with session_scope(app) as s:
        item = MedicalItem(name=name, category="Wondverzorging", **item_fields)
        s.add(item)
        s.flush()
        contact_id = None
        if with_contact:
            contact_id = s.query(PostContact).filter(PostContact.ambulance_post_id == post_id).one().id
        loc = ItemLocation(
            item_id=item.id, ambulance_post_id=post_id, cabinet_id="A", drawer="1", contact_person_id=contact_id
        )
        loc.set_stock_status(status)
        s.add(loc)
        s.flush()
        return loc.id


# ---------- Low-stock overview ----------


def test_low_stock_overview_filters_by_post(app, client):
    _location(app, "Verband gaas", post_id="hilversum", status="bijna-op")
    _location(app, "Infuus set", post_id="blaricum", status="niet-meer-aanwezig")
    _location(app, "Pleisters", post_id="hilversum", status="op-voorraad")
    _login(client)

    r = client.get("/admin/low-stock")
    assert r.status_code == 200
    assert b"Verband gaas" in r.data
    assert b"Infuus set" in r.data
    assert b"Pleisters" not in r.data
    assert b"Email is not configured" in r.data

    r = client.get("/admin/low-stock?post=hilversum")
    assert b"Verband gaas" in r.data
    assert b"Infuus set" not in r.data


def test_low_stock_overview_unknown_post_is_404(client):
    _login(client)
    assert client.get("/admin/low-stock?post=nergens").status_code == 404


def test_back_in_stock_from_overview(app, client):
    loc_id = _location(app, "Verband gaas", status="bijna-op")
    _login(client)

    r = client.post(
        f"/admin/low-stock/locations/{loc_id}/reset",
        data={"csrf_token": CSRF, "post": "hilversum"},
        follow_redirects=True,
    )
    assert r.status_code == 200
    assert b"Everything is in stock." in r.data
    with session_scope(app) as s:
        assert s.get(ItemLocation, loc_id).is_low_stock is False


# ---------- Supply requests ----------


def test_supply_request_goes_to_location_contact(app, client, smtp):
    _configure_smtp(app)
    loc_id = _location(app, "Verband gaas", status="bijna-op", with_contact=True)
    _login(client)

    r = client.post(
        f"/admin/low-stock/locations/{loc_id}/supply-request", data={"csrf_token": CSRF}, follow_redirects=True
    )
    assert b"Supply request sent to jan@example.nl." in r.data

    assert len(smtp.sent) == 1
    msg = smtp.sent[0]
    assert msg["To"] == "jan@example.nl"
    assert msg["Subject"] == "Aanvulverzoek: Verband gaas (Hilversum)"
    assert "Bijna op" in msg.get_body(preferencelist=("plain",)).get_content()

    with session_scope(app) as s:
        req = s.query(SupplyRequest).one()
        assert req.status == "sent"
        assert req.is_automatic is False
        assert s.query(EmailNotification).one().success is True


def test_supply_request_falls_back_to_item_alert_email(app, client, smtp):
    _configure_smtp(app)
    loc_id = _location(app, "Infuus set", status="niet-meer-aanwezig", alert_email="apotheek@example.nl")
    _login(client)

    client.post(f"/admin/low-stock/locations/{loc_id}/supply-request", data={"csrf_token": CSRF})
    assert [m["To"] for m in smtp.sent] == ["apotheek@example.nl"]


def test_supply_request_smtp_failure_is_recorded(app, client, smtp):
    _configure_smtp(app)
    loc_id = _location(app, "Verband gaas", status="bijna-op", with_contact=True)
    smtp.fail_with = smtplib.SMTPException("mailbox unavailable")
    _login(client)

    r = client.post(
        f"/admin/low-stock/locations/{loc_id}/supply-request", data={"csrf_token": CSRF}, follow_redirects=True
    )
    assert r.status_code == 200
    assert b"SMTP error" in r.data
    with session_scope(app) as s:
        req = s.query(SupplyRequest).one()
        assert req.status == "failed"
        assert "mailbox unavailable" in req.error


def test_status_change_to_low_sends_automatic_alert_once(app, client, smtp):
    _configure_smtp(app)
    loc_id = _location(app, "Verband gaas", with_contact=True)
    _login(client)

    r = client.patch(
        f"/admin/api/locations/{loc_id}/status",
        json={"stock_status": "bijna-op"},
        headers={"X-CSRF-Token": CSRF},
    )
    assert r.status_code == 200
    assert r.json["alert_sent"] is True
    assert len(smtp.sent) == 1

    # Going from low to out is not a new transition from in stock
    r = client.patch(
        f"/admin/api/locations/{loc_id}/status",
        json={"stock_status": "niet-meer-aanwezig"},
        headers={"X-CSRF-Token": CSRF},
    )
    assert r.status_code == 200
    assert r.json["alert_sent"] is False
    assert len(smtp.sent) == 1

    with session_scope(app) as s:
        assert s.query(SupplyRequest).one().is_automatic is True


def test_status_change_survives_smtp_failure(app, client, smtp):
    _configure_smtp(app)
    loc_id = _location(app, "Verband gaas", with_contact=True)
    smtp.fail_with = OSError("connection refused")
    _login(client)

    r = client.patch(
        f"/admin/api/locations/{loc_id}/status",
        json={"stock_status": "niet-meer-aanwezig"},
        headers={"X-CSRF-Token": CSRF},
    )
    assert r.status_code == 200
    assert r.json["stock_status"] == "niet-meer-aanwezig"
    with session_scope(app) as s:
        assert s.get(ItemLocation, loc_id).is_low_stock is True


# ---------- Email settings ----------


def test_email_settings_validation(app, client):
    _login(client)
    r = client.post(
        "/admin/email-settings",
        data={"csrf_token": CSRF, "smtp_host": "", "smtp_port": "99999", "from_email": "geen-adres"},
        follow_redirects=True,
    )
    assert b"SMTP host is required." in r.data
    assert b"SMTP port must be a number between 1 and 65535." in r.data
    assert b"A valid sender address is required." in r.data
    with session_scope(app) as s:
        assert s.query(EmailConfig).count() == 0


def test_email_settings_blank_password_keeps_stored_one(app, client):
    _configure_smtp(app)
    _login(client)
    r = client.post(
        "/admin/email-settings",
        data={
            "csrf_token": CSRF,
            "smtp_host": "mail.example.nl",
            "smtp_port": "465",
            "smtp_user": "voorraad",
            "smtp_password": "",
            "from_email": "voorraad@example.nl",
        },
        follow_redirects=True,
    )
    assert b"Email settings saved." in r.data
    with session_scope(app) as s:
        config = s.query(EmailConfig).one()
        assert config.smtp_host == "mail.example.nl"
        assert config.smtp_port == 465
        assert config.smtp_password == "geheim"
        assert config.smtp_secure is False


def test_send_test_email(app, client, smtp):
    _configure_smtp(app)
    _login(client)

    r = client.post("/admin/email-settings/test", data={"csrf_token": CSRF, "to": "nope"}, follow_redirects=True)
    assert b"Enter a valid address" in r.data
    assert smtp.sent == []

    r = client.post(
        "/admin/email-settings/test", data={"csrf_token": CSRF, "to": "beheer@example.nl"}, follow_redirects=True
    )
    assert b"Test email sent to beheer@example.nl." in r.data
    assert smtp.sent[0]["To"] == "beheer@example.nl"


def test_low_stock_is_per_location_not_per_item(app, client):
    with session_scope(app) as s:
        s.add(Cabinet(id="B", name="Kast B", abbreviation="B"))
        item = MedicalItem(name="Verband gaas", category="Wondverzorging")
        s.add(item)
        s.flush()
        for post_id, cabinet_id, status in (
            ("hilversum", "A", "op-voorraad"),
            ("hilversum", "B", "bijna-op"),
            ("blaricum", "A", "op-voorraad"),
        ):
            loc = ItemLocation(item_id=item.id, ambulance_post_id=post_id, cabinet_id=cabinet_id)
            loc.set_stock_status(status)
            s.add(loc)

    with session_scope(app) as s:
        low = low_stock_locations(s, "hilversum")
        assert [(loc.ambulance_post_id, loc.cabinet_id) for loc in low] == [("hilversum", "B")]
        assert low_stock_locations(s, "blaricum") == []
    _login(client)

    r = client.get("/admin/low-stock?post=hilversum")
    assert b"Verband gaas" in r.data
    assert b"Kast B" in r.data
    assert b"1 location(s)" in r.data

    r = client.get("/admin/low-stock?post=blaricum")
    assert b"Verband gaas" not in r.data
    assert b"Everything is in stock." in r.data
