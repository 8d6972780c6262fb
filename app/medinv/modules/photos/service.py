from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING

from flask import current_app
from werkzeug.utils import secure_filename

from app.medinv.audit import record_event
from app.medinv.modules.photos.imaging import ImageFile, ProcessedImage, format_file_size, is_heic, preprocess_image
from app.medinv.storage import StorageError, storage_from_config

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.medinv.models import User
    from app.medinv.modules.inventory.models import MedicalItem

logger = logging.getLogger(__name__)

MAX_UPLOAD_BYTES = 20 * 1024 * 1024
MAX_STORED_BYTES = 5 * 1024 * 1024


class PhotoRejected(ValueError):
    pass


def validate_raw_upload(file: ImageFile) -> None:
    if file.size == 0:
        raise PhotoRejected("The selected file is empty.")
    if file.size > MAX_UPLOAD_BYTES:
        raise PhotoRejected(
            f"File too large ({format_file_size(file.size)}). Maximum is {format_file_size(MAX_UPLOAD_BYTES)}."
        )
    if not ((file.content_type or "").lower().startswith("image/") or is_heic(file)):
        raise PhotoRejected("Only image files can be uploaded.")


def build_photo_storage_key(item_id: int, filename: str, *, now: datetime | None = None) -> str:
    ts = int((now or datetime.utcnow()).timestamp() * 1000)
    safe = secure_filename(filename or "") or "photo.jpg"
    return f"items/{item_id}/photos/{ts}_{safe}"


def upload_item_photo(
    s: "Session",
    item: "MedicalItem",
    file: ImageFile,
    user: "User | None",
) -> ProcessedImage:
    """
    Preprocess, size-check and store a photo, then point the item at it.
    A previously uploaded photo is removed from storage once the new one is saved.
    """
    validate_raw_upload(file)

    max_width = int(current_app.config.get("PHOTO_MAX_WIDTH") or 1200)
    processed = preprocess_image(file, max_width=max_width)
    if processed.processed_size > MAX_STORED_BYTES:
        raise PhotoRejected(
            f"Photo is still {format_file_size(processed.processed_size)} after compression. "
            f"Maximum is {format_file_size(MAX_STORED_BYTES)}."
        )

    storage = storage_from_config(current_app.config)
    key = build_photo_storage_key(item.id, processed.file.filename)
    storage.put_bytes(key, processed.file.data, content_type=processed.file.content_type)

    old_key = item.photo_storage_key
    item.photo_storage_key = key
    item.photo_content_type = processed.file.content_type
    item.updated_at = datetime.utcnow()

    record_event(
        s,
        actor=user,
        action="item.photo_upload",
        entity_type="MedicalItem",
        entity_id=str(item.id),
        metadata={
            "storage_key": key,
            "original_filename": file.filename,
            "original_size": processed.original_size,
            "stored_size": processed.processed_size,
            "converted_from_heic": processed.converted,
        },
    )

    if old_key and old_key != key:
        _delete_quietly(storage, old_key)
    return processed


def remove_item_photo(s: "Session", item: "MedicalItem", user: "User | None") -> None:
    old_key = item.photo_storage_key
    item.photo_storage_key = None
    item.photo_content_type = None
    item.photo_url = None
    item.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=user,
        action="item.photo_remove",
        entity_type="MedicalItem",
        entity_id=str(item.id),
        metadata={"storage_key": old_key},
    )
    if old_key:
        _delete_quietly(storage_from_config(current_app.config), old_key)


def _delete_quietly(storage, key: str) -> None:
    # Cleanup failures are logged only; the item already points at the new photo.
    try:
        storage.delete(key)
    except (StorageError, OSError) as e:
        logger.warning("Could not delete old photo %s: %s", key, e)
