"""
JSON backup of the whole inventory.

The export holds every post, contact, cabinet, category, item, location and
per-post cabinet order. Import upserts by primary key so a backup can be
restored onto an empty database or over an existing one. It runs in the
caller's transaction; nothing is committed here.
"""
from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from datetime import date, datetime
from typing import TYPE_CHECKING, Any

from app.medinv.audit import record_event
from app.medinv.constants import STOCK_IN_STOCK, InvalidStockStatus, normalize_stock_status

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.medinv.models import User

logger = logging.getLogger(__name__)

BACKUP_VERSION = "1.0"

POST_FIELDS = ("id", "name", "location", "description", "is_active")
CONTACT_FIELDS = ("id", "ambulance_post_id", "name", "email", "department", "is_active")
CABINET_FIELDS = ("id", "name", "abbreviation", "description", "location", "color")
CATEGORY_FIELDS = ("id", "name")
ITEM_FIELDS = (
    "id",
    "name",
    "category",
    "description",
    "search_terms",
    "expiry_date",
    "alert_email",
    "photo_url",
    "photo_storage_key",
    "photo_content_type",
    "is_discontinued",
    "replacement_item_id",
)
LOCATION_FIELDS = ("id", "item_id", "ambulance_post_id", "cabinet_id", "drawer", "contact_person_id", "stock_status")
ORDER_FIELDS = ("ambulance_post_id", "cabinet_id", "position")


class InvalidBackup(ValueError):
    pass


@dataclass
class BackupImportStats:
    posts_imported: int = 0
    contacts_imported: int = 0
    cabinets_imported: int = 0
    categories_imported: int = 0
    items_imported: int = 0
    locations_imported: int = 0
    cabinet_orders_imported: int = 0

    def as_dict(self) -> dict[str, int]:
        return asdict(self)


def _serialize(value: Any) -> Any:
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return value


def _row(obj: Any, fields: tuple[str, ...]) -> dict[str, Any]:
    return {f: _serialize(getattr(obj, f)) for f in fields}


def export_backup(s: "Session") -> dict[str, Any]:
    from app.medinv.modules.cabinets.models import Cabinet, PostCabinetOrder
    from app.medinv.modules.inventory.models import Category, ItemLocation, MedicalItem
    from app.medinv.modules.posts.models import AmbulancePost, PostContact

    items = s.query(MedicalItem).order_by(MedicalItem.id.asc()).all()
    return {
        "version": BACKUP_VERSION,
        "exported_at": datetime.utcnow().isoformat(timespec="seconds") + "Z",
        "total_items": len(items),
        "ambulance_posts": [_row(p, POST_FIELDS) for p in s.query(AmbulancePost).order_by(AmbulancePost.id).all()],
        "post_contacts": [_row(c, CONTACT_FIELDS) for c in s.query(PostContact).order_by(PostContact.id).all()],
        "cabinets": [_row(c, CABINET_FIELDS) for c in s.query(Cabinet).order_by(Cabinet.id).all()],
        "categories": [_row(c, CATEGORY_FIELDS) for c in s.query(Category).order_by(Category.id).all()],
        "medical_items": [_row(i, ITEM_FIELDS) for i in items],
        "item_locations": [_row(l, LOCATION_FIELDS) for l in s.query(ItemLocation).order_by(ItemLocation.id).all()],
        "cabinet_orders": [
            _row(o, ORDER_FIELDS)
            for o in s.query(PostCabinetOrder).order_by(PostCabinetOrder.ambulance_post_id, PostCabinetOrder.position)
        ],
    }


def validate_backup(data: Any) -> None:
    if not isinstance(data, dict):
        raise InvalidBackup("Backup must be a JSON object.")
    if not data.get("version"):
        raise InvalidBackup("Backup has no version.")
    if not isinstance(data.get("medical_items"), list):
        raise InvalidBackup("Backup has no medical_items list.")
    for key in ("ambulance_posts", "post_contacts", "cabinets", "categories", "item_locations", "cabinet_orders"):
        if key in data and not isinstance(data[key], list):
            raise InvalidBackup(f"Backup field {key!r} must be a list.")
        if any(not isinstance(rec, dict) for rec in data.get(key) or []):
            raise InvalidBackup(f"Every entry in {key!r} must be an object.")
    if any(not isinstance(rec, dict) for rec in data["medical_items"]):
        raise InvalidBackup("Every entry in 'medical_items' must be an object.")


def _upsert(s: "Session", model, record: dict, fields: tuple[str, ...]):
    pk = record.get("id")
    if pk is None:
        raise InvalidBackup(f"{model.__name__} record without id.")
    obj = s.get(model, pk)
    if obj is None:
        obj = model(id=pk)
        s.add(obj)
    for f in fields:
        if f != "id" and f in record:
            setattr(obj, f, record[f])
    return obj


def _parse_date(value: Any) -> date | None:
    if not value:
        return None
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError as e:
        raise InvalidBackup(f"Invalid date {value!r}.") from e


def import_backup(s: "Session", data: Any, user: "User | None") -> BackupImportStats:
    from app.medinv.modules.cabinets.models import Cabinet, PostCabinetOrder
    from app.medinv.modules.inventory.models import Category, ItemLocation, MedicalItem
    from app.medinv.modules.posts.models import AmbulancePost, PostContact

    validate_backup(data)
    stats = BackupImportStats()

    for rec in data.get("ambulance_posts") or []:
        _upsert(s, AmbulancePost, rec, POST_FIELDS)
        stats.posts_imported += 1
    for rec in data.get("cabinets") or []:
        _upsert(s, Cabinet, rec, CABINET_FIELDS)
        stats.cabinets_imported += 1
    s.flush()

    for rec in data.get("categories") or []:
        name = (rec.get("name") or "").strip()
        if not name:
            continue
        existing = s.query(Category).filter(Category.name == name).one_or_none()
        if existing is None:
            s.add(Category(name=name))
        stats.categories_imported += 1

    for rec in data.get("post_contacts") or []:
        _upsert(s, PostContact, rec, CONTACT_FIELDS)
        stats.contacts_imported += 1
    s.flush()

    # Replacement links may point forward, so they are set after all items exist.
    replacements: dict[int, int | None] = {}
    for rec in data["medical_items"]:
        rec = dict(rec)
        rec["expiry_date"] = _parse_date(rec.get("expiry_date"))
        replacement_id = rec.pop("replacement_item_id", None)
        item = _upsert(s, MedicalItem, rec, tuple(f for f in ITEM_FIELDS if f != "replacement_item_id"))
        replacements[item.id] = replacement_id
        item.is_discontinued = bool(item.is_discontinued)
        item.updated_at = datetime.utcnow()
        stats.items_imported += 1
    s.flush()
    for item_id, replacement_id in replacements.items():
        if replacement_id is not None and replacement_id != item_id and s.get(MedicalItem, replacement_id):
            s.get(MedicalItem, item_id).replacement_item_id = replacement_id

    for rec in data.get("item_locations") or []:
        loc = _upsert(s, ItemLocation, rec, tuple(f for f in LOCATION_FIELDS if f != "stock_status"))
        try:
            loc.set_stock_status(normalize_stock_status(rec.get("stock_status") or STOCK_IN_STOCK))
        except InvalidStockStatus as e:
            raise InvalidBackup(f"Location {rec.get('id')}: {e}") from e
        stats.locations_imported += 1
    s.flush()

    orders_by_post: dict[str, list[dict]] = {}
    for rec in data.get("cabinet_orders") or []:
        if not rec.get("ambulance_post_id") or not rec.get("cabinet_id") or rec.get("position") is None:
            raise InvalidBackup("Cabinet order entries need ambulance_post_id, cabinet_id and position.")
        orders_by_post.setdefault(rec["ambulance_post_id"], []).append(rec)
    for post_id, recs in orders_by_post.items():
        s.query(PostCabinetOrder).filter(PostCabinetOrder.ambulance_post_id == post_id).delete(synchronize_session=False)
        for rec in recs:
            s.add(PostCabinetOrder(ambulance_post_id=post_id, cabinet_id=rec["cabinet_id"], position=int(rec["position"])))
            stats.cabinet_orders_imported += 1
    s.flush()

    record_event(
        s,
        actor=user,
        action="backup.import",
        entity_type="Backup",
        metadata={"version": data.get("version"), "exported_at": data.get("exported_at"), **stats.as_dict()},
    )
    logger.info("Backup imported: %s", stats.as_dict())
    return stats
