from __future__ import annotations

from urllib.parse import urlsplit

from flask import Blueprint, abort, current_app, flash, g, redirect, request, send_file, url_for

from app.medinv.db import db_session
from app.medinv.modules.inventory.models import MedicalItem
from app.medinv.modules.photos.imaging import ImageFile
from app.medinv.modules.photos.service import PhotoRejected, remove_item_photo, upload_item_photo
from app.medinv.rbac import require_permission
from app.medinv.storage import StorageError, storage_from_config

bp = Blueprint("photos", __name__)


def _get_item(item_id: int) -> MedicalItem:
    item = db_session().get(MedicalItem, item_id)
    if not item:
        abort(404)
    return item


@bp.post("/items/<int:item_id>/photo")
@require_permission("inventory.edit")
def photo_upload(item_id: int):
    s = db_session()
    item = _get_item(item_id)

    f = request.files.get("photo")
    if not f or not f.filename:
        flash("Please select a photo to upload.", "danger")
        return redirect(url_for("inventory.item_edit_get", item_id=item_id))

    upload = ImageFile(
        filename=f.filename,
        content_type=(f.mimetype or "application/octet-stream").strip(),
        data=f.read(),
    )
    try:
        processed = upload_item_photo(s, item, upload, getattr(g, "current_user", None))
    except PhotoRejected as e:
        s.rollback()
        flash(str(e), "danger")
        return redirect(url_for("inventory.item_edit_get", item_id=item_id))
    except StorageError as e:
        s.rollback()
        current_app.logger.error("Photo upload for item %s failed in storage: %s", item_id, e)
        flash("The photo could not be stored. Please try again later.", "danger")
        return redirect(url_for("inventory.item_edit_get", item_id=item_id))
    s.commit()

    flash(f"Photo uploaded: {processed.summary()}", "success")
    return redirect(url_for("inventory.item_edit_get", item_id=item_id))


@bp.post("/items/<int:item_id>/photo/delete")
@require_permission("inventory.edit")
def photo_delete(item_id: int):
    s = db_session()
    item = _get_item(item_id)
    remove_item_photo(s, item, getattr(g, "current_user", None))
    s.commit()
    flash("Photo removed.", "success")
    return redirect(url_for("inventory.item_edit_get", item_id=item_id))


@bp.get("/items/<int:item_id>/photo")
@require_permission("inventory.view")
def photo_view(item_id: int):
    item = _get_item(item_id)
    if item.photo_storage_key:
        storage = storage_from_config(current_app.config)
        try:
            fobj = storage.open(item.photo_storage_key)
        except StorageError:
            current_app.logger.warning("Photo for item %s missing in storage: %s", item.id, item.photo_storage_key)
            abort(404)
        return send_file(fobj, mimetype=item.photo_content_type or "image/jpeg", max_age=300)
    # imported URLs are untrusted; only follow plain web links
    if item.photo_url and urlsplit(item.photo_url).scheme.lower() in ("http", "https"):
        return redirect(item.photo_url)
    abort(404)
