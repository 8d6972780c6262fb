"""Tests for CSV/Excel item import: header mapping, row validation and per-row commit."""
import io
import re

import pytest
from openpyxl import Workbook
from werkzeug.security import generate_password_hash

from app.medinv import create_app
from app.medinv.db import session_scope
from app.medinv.models import Base, Permission, Role, User
from app.medinv.modules.cabinets.models import Cabinet
from app.medinv.modules.inventory import service as inventory_service
from app.medinv.modules.inventory.models import ItemLocation, MedicalItem
from app.medinv.modules.item_import.parsers import detect_format, parse_item_file
from app.medinv.modules.item_import.parsers.csv import (
    ImportStructureError,
    build_template_csv,
    map_header_columns,
    parse_item_csv,
)
from app.medinv.modules.item_import.service import import_csv_bytes
from app.medinv.modules.posts.models import AmbulancePost, PostContact

CSRF = "test-csrf-token"


class TestHeaderMapping:
    def test_dutch_and_english_headers(self):
        cols = map_header_columns(["Naam", "Categorie", "Beschrijving", "Zoektermen"])
        assert cols == {"name": 0, "category": 1, "description": 2, "search_terms": 3}

        cols = map_header_columns(["name", "category", "description", "search-terms"])
        assert cols == {"name": 0, "category": 1, "description": 2, "search_terms": 3}

    def test_any_order_and_case(self):
        cols = map_header_columns(["KAST", "Categorie", "Ambulance-Post-ID", "NAAM", "Lade"])
        assert cols["name"] == 3
        assert cols["category"] == 1
        assert cols["ambulance_post_id"] == 2
        assert cols["cabinet_id"] == 0
        assert cols["drawer"] == 4

    def test_column_claimed_once(self):
        # each column maps to one field only
        cols = map_header_columns(["name", "category", "contact-person", "photo-url"])
        assert cols["contact_person"] == 2
        assert cols["photo_url"] == 3
        assert "ambulance_post_id" not in cols


class TestParseCsv:
    def test_valid_and_invalid_rows(self):
        data = (
            "Naam,Categorie,Beschrijving\n"
            "Verband gaas,Wondverzorging,Steriel\n"
            ",IV Therapie,Geen naam\n"
            "Infuus set,,Geen categorie\n"
        ).encode("utf-8")
        parsed = parse_item_csv(data)
        assert len(parsed.rows) == 3
        assert [r.row_number for r in parsed.rows] == [2, 3, 4]
        assert [r.name for r in parsed.valid_rows] == ["Verband gaas"]
        assert parsed.rows[1].errors == ["Naam (name) is required."]
        assert parsed.rows[2].errors == ["Categorie (category) is required."]

    def test_quotes_and_bom_are_stripped(self):
        data = '\ufeff"name","category"\n"Pleisters","Wondverzorging"\n'.encode("utf-8")
        parsed = parse_item_csv(data)
        assert parsed.rows[0].name == "Pleisters"
        assert parsed.rows[0].category == "Wondverzorging"

    def test_header_only_file_is_rejected(self):
        with pytest.raises(ImportStructureError, match="at least one data row"):
            parse_item_csv(b"Naam,Categorie\n\n")

    def test_missing_required_columns(self):
        with pytest.raises(ImportStructureError, match="Naam"):
            parse_item_csv(b"Beschrijving,Lade\nSteriel,1\n")

    def test_template_parses_cleanly(self):
        parsed = parse_item_csv(build_template_csv())
        assert len(parsed.valid_rows) == 2
        assert parsed.invalid_rows == []

    def test_row_numbers_follow_the_file_lines(self):
        data = b"Naam,Categorie\n\nVerband gaas,Wondverzorging\n\n,IV Therapie\n"
        parsed = parse_item_csv(data)
        assert [r.row_number for r in parsed.rows] == [3, 5]
        assert parsed.rows[1].errors == ["Naam (name) is required."]

    def test_multiline_field_counts_its_lines(self):
        data = (
            "Naam,Categorie,Beschrijving\n"
            'Verband gaas,Wondverzorging,"Steriel\n10x10 cm"\n'
            "Infuus set,IV Therapie,\n"
        ).encode("utf-8")
        parsed = parse_item_csv(data)
        assert [r.row_number for r in parsed.rows] == [2, 4]
        assert parsed.rows[0].description == "Steriel\n10x10 cm"


class TestParseXlsx:
    def _workbook_bytes(self, rows):
        wb = Workbook()
        ws = wb.active
        for row in rows:
            ws.append(row)
        buf = io.BytesIO()
        wb.save(buf)
        return buf.getvalue()

    def test_first_sheet_is_read(self):
        data = self._workbook_bytes(
            [
                ["Naam", "Categorie", "Post", "Kast", "Lade"],
                ["Verband gaas", "Wondverzorging", "hilversum", "A", 3],
                [None, None, None, None, None],
                [None, "IV Therapie", None, None, None],
            ]
        )
        parsed = parse_item_file(data, "xlsx")
        assert len(parsed.rows) == 2
        assert parsed.rows[0].drawer == "3"
        assert parsed.rows[0].has_location
        assert not parsed.rows[1].valid
        assert [r.row_number for r in parsed.rows] == [2, 4]

    def test_garbage_is_a_structure_error(self):
        with pytest.raises(ImportStructureError, match="Excel"):
            parse_item_file(b"not a zip file", "xlsx")

    def test_format_detection(self):
        assert detect_format("items.XLSX") == "xlsx"
        assert detect_format("items.csv") == "csv"
        assert detect_format("items") == "csv"
        with pytest.raises(ImportStructureError):
            detect_format("items.xls")


# ---------- End to end ----------


def _seed_all_permissions(s):
    perm_keys = [
        ("inventory.view", "Inventory: view"),
        ("import.run", "Import: run"),
    ]
    perms = []
    for key, name in perm_keys:
        p = Permission(key=key, name=name)
        s.add(p)
        perms.append(p)
    return perms


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
        s.add_all([AmbulancePost(id="hilversum", name="Hilversum"), Cabinet(id="A", name="Kast A", abbreviation="A")])
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


CSV_THREE_ROWS = (
    "naam,categorie,beschrijving,post,kast,lade,contactpersoon\n"
    "Verband gaas,Wondverzorging,Steriel,hilversum,A,,jan\n"
    "Infuus set,IV Therapie,Standaard,,,,\n"
    ",Wondverzorging,Geen naam,,,,\n"
).encode("utf-8")


def test_import_skips_invalid_rows_and_creates_only_valid(app, monkeypatch):
    calls = []
    original = inventory_service.create_item

    def counting_create_item(*args, **kwargs):
        calls.append(args[1]["name"])
        return original(*args, **kwargs)

    monkeypatch.setattr(inventory_service, "create_item", counting_create_item)

    with app.test_request_context():
        with session_scope(app) as s:
            result = import_csv_bytes(s, CSV_THREE_ROWS, None)

    assert calls == ["Verband gaas", "Infuus set"]
    assert result.imported == 2
    assert result.skipped == 1
    assert result.failed == 0
    assert result.locations_created == 1

    with session_scope(app) as s:
        loc = s.query(ItemLocation).one()
        assert loc.drawer == "-"
        assert loc.stock_status == "op-voorraad"
        assert loc.contact_person.email == "jan@example.nl"


def test_failing_row_does_not_stop_the_rest(app):
    data = (
        "name,category,ambulance-post-id,cabinet\n"
        "Verband gaas,Wondverzorging,onbekend,A\n"
        "Infuus set,IV Therapie,,\n"
    ).encode("utf-8")
    with app.test_request_context():
        with session_scope(app) as s:
            result = import_csv_bytes(s, data, None)

    assert result.imported == 1
    assert result.failed == 1
    assert result.failures[0].row_number == 2
    assert "does not exist" in result.failures[0].reason
    with session_scope(app) as s:
        assert [i.name for i in s.query(MedicalItem).all()] == ["Infuus set"]


def test_preview_then_commit(app, client):
    _login(client)
    r = client.post(
        "/admin/import/preview",
        data={"csrf_token": CSRF, "csv_file": (io.BytesIO(CSV_THREE_ROWS), "items.csv")},
        content_type="multipart/form-data",
    )
    assert r.status_code == 200
    assert b"2 valid, 1 invalid" in r.data
    token = re.search(rb'name="token" value="([0-9a-f]{32})"', r.data).group(1).decode()

    # Nothing is written before the commit step
    with session_scope(app) as s:
        assert s.query(MedicalItem).count() == 0

    r = client.post("/admin/import/commit", data={"csrf_token": CSRF, "token": token, "format": "csv"})
    assert r.status_code == 200
    assert b"2 of 2 items imported." in r.data
    with session_scope(app) as s:
        assert s.query(MedicalItem).count() == 2

    # The staged file is gone once committed
    r = client.post("/admin/import/commit", data={"csrf_token": CSRF, "token": token, "format": "csv"}, follow_redirects=True)
    assert b"expired" in r.data


def test_preview_rejects_file_without_required_columns(client):
    _login(client)
    r = client.post(
        "/admin/import/preview",
        data={"csrf_token": CSRF, "csv_file": (io.BytesIO(b"Beschrijving\nSteriel\n"), "items.csv")},
        content_type="multipart/form-data",
        follow_redirects=True,
    )
    assert b"must contain the columns" in r.data


def test_template_download(client):
    _login(client)
    r = client.get("/admin/import/template.csv")
    assert r.status_code == 200
    assert r.data.startswith(b'"name","category"')


def test_progress_is_reported_per_valid_row(app):
    seen = []
    with app.test_request_context():
        with session_scope(app) as s:
            import_csv_bytes(s, CSV_THREE_ROWS, None, progress=lambda done, total: seen.append((done, total)))
    assert seen == [(1, 2), (2, 2)]
