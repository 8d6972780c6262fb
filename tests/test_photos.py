"""Tests for photo preprocessing and the item photo upload route."""
import io

import pillow_heif
import pytest
from botocore.exceptions import ClientError
from PIL import Image
from werkzeug.security import generate_password_hash

from app.medinv import create_app
from app.medinv.db import session_scope
from app.medinv.models import Base, Permission, Role, User
from app.medinv.modules.inventory.models import MedicalItem
from app.medinv.modules.photos.imaging import (
    ImageFile,
    compress_image,
    convert_heic_to_jpeg,
    format_file_size,
    is_heic,
    preprocess_image,
    scaled_dimensions,
)
from app.medinv.storage import LocalStorage, S3Storage, StorageError

CSRF = "test-csrf-token"
ORIENTATION_TAG = 0x0112


def _image_bytes(width, height, fmt="PNG", color=(200, 30, 30)):
    buf = io.BytesIO()
    Image.new("RGB", (width, height), color).save(buf, format=fmt)
    return buf.getvalue()


class TestScaling:
    def test_narrow_images_keep_their_size(self):
        assert scaled_dimensions(800, 600) == (800, 600)
        assert scaled_dimensions(1200, 900) == (1200, 900)

    def test_wide_images_are_capped_with_aspect_ratio(self):
        assert scaled_dimensions(4000, 3000) == (1200, 900)
        assert scaled_dimensions(2400, 1000, max_width=600) == (600, 250)


class TestCompress:
    def test_wide_png_is_resized(self):
        f = ImageFile(filename="kast.png", content_type="image/png", data=_image_bytes(2400, 1200))
        out = compress_image(f)
        with Image.open(io.BytesIO(out.data)) as img:
            assert img.size == (1200, 600)
            assert img.format == "PNG"
        assert out.content_type == "image/png"
        assert out.filename == "kast.png"

    def test_jpeg_keeps_its_format(self):
        f = ImageFile(filename="foto.jpg", content_type="image/jpeg", data=_image_bytes(1600, 800, fmt="JPEG"))
        out = compress_image(f)
        with Image.open(io.BytesIO(out.data)) as img:
            assert img.format == "JPEG"
            assert img.size == (1200, 600)

    def test_failure_hands_back_the_input(self, monkeypatch):
        f = ImageFile(filename="foto.png", content_type="image/png", data=_image_bytes(2000, 1000))

        def broken_save(self, *args, **kwargs):
            raise OSError("encoder exploded")

        monkeypatch.setattr(Image.Image, "save", broken_save)
        assert compress_image(f) is f

    def test_undecodable_bytes_are_left_alone(self):
        f = ImageFile(filename="foto.jpg", content_type="image/jpeg", data=b"definitely not an image")
        result = preprocess_image(f)
        assert result.file is f
        assert result.processed_size == result.original_size

    def test_exif_rotated_photo_comes_out_upright(self):
        exif = Image.Exif()
        exif[ORIENTATION_TAG] = 6
        buf = io.BytesIO()
        Image.new("RGB", (2000, 1000), (10, 120, 200)).save(buf, format="JPEG", exif=exif.tobytes())
        f = ImageFile(filename="IMG_1234.jpg", content_type="image/jpeg", data=buf.getvalue())

        out = compress_image(f)
        with Image.open(io.BytesIO(out.data)) as img:
            assert img.size == (1000, 2000)
            assert img.getexif().get(ORIENTATION_TAG) in (None, 1)

    def test_rotated_wide_photo_is_capped_after_rotation(self):
        exif = Image.Exif()
        exif[ORIENTATION_TAG] = 6
        buf = io.BytesIO()
        Image.new("RGB", (3000, 1500), (10, 120, 200)).save(buf, format="JPEG", exif=exif.tobytes())
        f = ImageFile(filename="IMG_1235.jpg", content_type="image/jpeg", data=buf.getvalue())

        with Image.open(io.BytesIO(preprocess_image(f).file.data)) as img:
            assert img.size == (1200, 2400)


class TestHeic:
    def test_heif_upload_becomes_jpeg(self):
        buf = io.BytesIO()
        pillow_heif.from_pillow(Image.new("RGB", (1600, 800), (30, 160, 60))).save(buf)
        f = ImageFile(filename="IMG_0001.HEIC", content_type="image/heic", data=buf.getvalue())

        result = preprocess_image(f)
        assert result.converted is True
        assert result.file.content_type == "image/jpeg"
        assert result.file.filename == "IMG_0001.jpg"
        with Image.open(io.BytesIO(result.file.data)) as img:
            assert img.format == "JPEG"
            assert img.size == (1200, 600)

    def test_undecodable_heic_is_kept_as_is(self):
        f = ImageFile(filename="IMG_0002.heic", content_type="image/heic", data=b"\x00\x00\x00\x18ftypheic-truncated")

        assert convert_heic_to_jpeg(f) is f
        result = preprocess_image(f)
        assert result.converted is False
        assert result.file.data == f.data
        assert result.file.content_type == "image/heic"


class TestHelpers:
    def test_is_heic_by_type_or_extension(self):
        assert is_heic(ImageFile(filename="IMG_0001.HEIC", content_type="application/octet-stream", data=b""))
        assert is_heic(ImageFile(filename="upload", content_type="image/heif", data=b""))
        assert not is_heic(ImageFile(filename="foto.jpg", content_type="image/jpeg", data=b""))

    def test_format_file_size(self):
        assert format_file_size(512) == "512 B"
        assert format_file_size(2048) == "2.0 KB"
        assert format_file_size(5 * 1024 * 1024) == "5.0 MB"


# ---------- Upload route ----------


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
        p_view = Permission(key="inventory.view", name="Inventory: view")
        p_edit = Permission(key="inventory.edit", name="Inventory: edit")
        r = Role(key="admin", name="Administrator")
        r.permissions.extend([p_view, p_edit])
        u = User(email="admin@example.com", password_hash=generate_password_hash("pw"), is_active=True)
        u.roles.append(r)
        s.add_all([p_view, p_edit, r, u, MedicalItem(name="Verband gaas", category="Wondverzorging")])
    return app


@pytest.fixture()
def client(app):
    return app.test_client()


def _login(client):
    client.post("/auth/login", data={"email": "admin@example.com", "password": "pw"}, follow_redirects=True)
    with client.session_transaction() as sess:
        sess["csrf_token"] = CSRF


def _item_id(app):
    with session_scope(app) as s:
        return s.query(MedicalItem).one().id


def test_upload_stores_resized_photo(app, client, tmp_path):
    item_id = _item_id(app)
    _login(client)

    r = client.post(
        f"/admin/items/{item_id}/photo",
        data={"csrf_token": CSRF, "photo": (io.BytesIO(_image_bytes(3000, 1500)), "kast-a.png", "image/png")},
        content_type="multipart/form-data",
        follow_redirects=True,
    )
    assert r.status_code == 200
    assert b"Photo uploaded" in r.data

    with session_scope(app) as s:
        item = s.get(MedicalItem, item_id)
        key = item.photo_storage_key
        assert key.startswith(f"items/{item_id}/photos/")
        assert item.photo_content_type == "image/png"

    stored = tmp_path / "storage" / key
    with Image.open(stored) as img:
        assert img.size == (1200, 600)

    r = client.get(f"/admin/items/{item_id}/photo")
    assert r.status_code == 200
    assert r.mimetype == "image/png"


def test_upload_rejects_non_images(app, client):
    item_id = _item_id(app)
    _login(client)

    r = client.post(
        f"/admin/items/{item_id}/photo",
        data={"csrf_token": CSRF, "photo": (io.BytesIO(b"boodschappenlijst"), "notes.txt", "text/plain")},
        content_type="multipart/form-data",
        follow_redirects=True,
    )
    assert b"Only image files can be uploaded." in r.data
    with session_scope(app) as s:
        assert s.get(MedicalItem, item_id).photo_storage_key is None


def test_remove_photo_deletes_stored_file(app, client, tmp_path):
    item_id = _item_id(app)
    _login(client)
    client.post(
        f"/admin/items/{item_id}/photo",
        data={"csrf_token": CSRF, "photo": (io.BytesIO(_image_bytes(100, 100)), "klein.png", "image/png")},
        content_type="multipart/form-data",
    )
    with session_scope(app) as s:
        key = s.get(MedicalItem, item_id).photo_storage_key
    assert (tmp_path / "storage" / key).is_file()

    r = client.post(f"/admin/items/{item_id}/photo/delete", data={"csrf_token": CSRF}, follow_redirects=True)
    assert b"Photo removed." in r.data
    assert not (tmp_path / "storage" / key).exists()
    with session_scope(app) as s:
        assert s.get(MedicalItem, item_id).has_photo is False


def test_s3_upload_errors_become_storage_errors(monkeypatch):
    class FailingClient:
        def put_object(self, **kwargs):
            raise ClientError({"Error": {"Code": "AccessDenied", "Message": "Access Denied"}}, "PutObject")

    monkeypatch.setattr(S3Storage, "_client", lambda self: FailingClient())
    storage = S3Storage(endpoint="", region="", bucket="medinv", access_key_id="x", secret_access_key="y")
    with pytest.raises(StorageError, match="Upload failed"):
        storage.put_bytes("items/1/photos/a.png", b"data", content_type="image/png")


def test_upload_reports_storage_failure(app, client, monkeypatch):
    item_id = _item_id(app)

    def full_disk(self, key, data, *, content_type=None):
        raise StorageError(f"Upload failed: {key}")

    monkeypatch.setattr(LocalStorage, "put_bytes", full_disk)
    _login(client)

    r = client.post(
        f"/admin/items/{item_id}/photo",
        data={"csrf_token": CSRF, "photo": (io.BytesIO(_image_bytes(100, 100)), "klein.png", "image/png")},
        content_type="multipart/form-data",
        follow_redirects=True,
    )
    assert r.status_code == 200
    assert b"The photo could not be stored." in r.data
    with session_scope(app) as s:
        assert s.get(MedicalItem, item_id).photo_storage_key is None


def _set_photo_url(app, item_id, url):
    with session_scope(app) as s:
        s.get(MedicalItem, item_id).photo_url = url


def test_external_photo_url_is_followed(app, client):
    item_id = _item_id(app)
    _set_photo_url(app, item_id, "https://example.org/verband.jpg")
    _login(client)

    r = client.get(f"/admin/items/{item_id}/photo")
    assert r.status_code == 302
    assert r.headers["Location"] == "https://example.org/verband.jpg"


@pytest.mark.parametrize("url", ["javascript:alert(1)", "data:text/html,<b>x</b>", "//evil.example/x.jpg"])
def test_non_web_photo_url_is_not_followed(app, client, url):
    item_id = _item_id(app)
    _set_photo_url(app, item_id, url)
    _login(client)

    assert client.get(f"/admin/items/{item_id}/photo").status_code == 404
