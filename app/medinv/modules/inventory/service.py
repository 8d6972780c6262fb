from __future__ import annotations

import logging
from datetime import date, datetime
from typing import TYPE_CHECKING

from sqlalchemy import func, or_

from app.medinv.audit import record_event
from app.medinv.constants import (
    LOW_STOCK_STATUSES,
    STOCK_IN_STOCK,
    InvalidStockStatus,
    normalize_stock_status,
)
from app.medinv.utils import clean_text, is_valid_email, parse_bool

if TYPE_CHECKING:
    from sqlalchemy.orm import Query, Session
    from app.medinv.models import User
    from app.medinv.modules.inventory.models import Category, ItemLocation, MedicalItem

logger = logging.getLogger(__name__)


class InvalidLocation(ValueError):
    def __init__(self, errors: list[str]):
        super().__init__("; ".join(errors))
        self.errors = errors


# ---------- Items ----------


def validate_item_payload(payload: dict) -> list[str]:
    errors = []
    if not (payload.get("name") or "").strip():
        errors.append("Name is required.")
    if not (payload.get("category") or "").strip():
        errors.append("Category is required.")
    alert_email = (payload.get("alert_email") or "").strip()
    if alert_email and not is_valid_email(alert_email):
        errors.append("Alert email is not a valid email address.")
    expiry = payload.get("expiry_date")
    if expiry is not None and not isinstance(expiry, date):
        errors.append("Expiry date must be a date.")
    return errors


def create_item(s: "Session", payload: dict, user: "User | None") -> "MedicalItem":
    from app.medinv.modules.inventory.models import MedicalItem

    now = datetime.utcnow()
    item = MedicalItem(
        name=(payload.get("name") or "").strip(),
        category=(payload.get("category") or "").strip(),
        description=clean_text(payload.get("description")),
        search_terms=clean_text(payload.get("search_terms")),
        expiry_date=payload.get("expiry_date"),
        alert_email=clean_text(payload.get("alert_email")),
        photo_url=clean_text(payload.get("photo_url")),
        is_discontinued=parse_bool(payload.get("is_discontinued")),
        replacement_item_id=payload.get("replacement_item_id"),
        created_at=now,
        updated_at=now,
        created_by_user_id=user.id if user else None,
    )
    s.add(item)
    s.flush()
    ensure_category(s, item.category)

    record_event(
        s,
        actor=user,
        action="item.create",
        entity_type="MedicalItem",
        entity_id=str(item.id),
        metadata={"name": item.name, "category": item.category},
    )
    return item


def update_item(s: "Session", item: "MedicalItem", payload: dict, user: "User | None") -> "MedicalItem":
    changes = {}

    def _set(attr: str, val):
        if val != getattr(item, attr):
            changes[attr] = {"old": getattr(item, attr), "new": val}
            setattr(item, attr, val)

    _set("name", (payload.get("name") or item.name).strip())
    _set("category", (payload.get("category") or item.category).strip())
    _set("description", clean_text(payload.get("description")))
    _set("search_terms", clean_text(payload.get("search_terms")))
    _set("expiry_date", payload.get("expiry_date"))
    _set("alert_email", clean_text(payload.get("alert_email")))
    if "photo_url" in payload:
        _set("photo_url", clean_text(payload.get("photo_url")))

    discontinued = parse_bool(payload.get("is_discontinued"))
    _set("is_discontinued", discontinued)
    replacement_id = payload.get("replacement_item_id") if discontinued else None
    if replacement_id == item.id:
        replacement_id = None
    _set("replacement_item_id", replacement_id)

    item.updated_at = datetime.utcnow()
    ensure_category(s, item.category)

    record_event(
        s,
        actor=user,
        action="item.edit",
        entity_type="MedicalItem",
        entity_id=str(item.id),
        metadata={"changes": changes},
    )
    return item


def delete_item(s: "Session", item: "MedicalItem", user: "User | None") -> None:
    """Delete an item everywhere; all its locations are removed with it."""
    record_event(
        s,
        actor=user,
        action="item.delete",
        entity_type="MedicalItem",
        entity_id=str(item.id),
        metadata={"name": item.name, "locations_removed": len(item.locations)},
    )
    s.delete(item)


def query_items(s: "Session", filters: dict | None = None) -> "Query":
    from app.medinv.modules.inventory.models import ItemLocation, MedicalItem

    filters = filters or {}
    q = s.query(MedicalItem)

    search = (filters.get("q") or "").strip()
    if search:
        like = f"%{search}%"
        q = q.filter(
            or_(
                MedicalItem.name.ilike(like),
                MedicalItem.description.ilike(like),
                MedicalItem.category.ilike(like),
                MedicalItem.search_terms.ilike(like),
            )
        )

    category = (filters.get("category") or "").strip()
    if category:
        q = q.filter(func.lower(MedicalItem.category) == category.lower())

    post_id = (filters.get("post") or "").strip()
    cabinet_id = (filters.get("cabinet") or "").strip()
    if post_id or cabinet_id:
        sub = s.query(ItemLocation.item_id)
        if post_id:
            sub = sub.filter(ItemLocation.ambulance_post_id == post_id)
        if cabinet_id:
            sub = sub.filter(ItemLocation.cabinet_id == cabinet_id)
        q = q.filter(MedicalItem.id.in_(sub))

    if parse_bool(filters.get("low_stock")):
        low = s.query(ItemLocation.item_id).filter(ItemLocation.is_low_stock.is_(True))
        if post_id:
            low = low.filter(ItemLocation.ambulance_post_id == post_id)
        q = q.filter(MedicalItem.id.in_(low))

    if not parse_bool(filters.get("include_discontinued", True)):
        q = q.filter(MedicalItem.is_discontinued.is_(False))

    return q


def locations_by_post(item: "MedicalItem") -> dict[str, list["ItemLocation"]]:
    """An item's locations grouped by post id, for the "available at other posts" panel."""
    grouped: dict[str, list] = {}
    for loc in sorted(item.locations, key=lambda l: (l.ambulance_post_id, l.cabinet_id, l.drawer or "")):
        grouped.setdefault(loc.ambulance_post_id, []).append(loc)
    return grouped


# ---------- Locations ----------


def validate_location_payload(s: "Session", item: "MedicalItem", payload: dict, *, location_id: int | None = None) -> list[str]:
    from app.medinv.modules.cabinets.models import Cabinet
    from app.medinv.modules.inventory.models import ItemLocation
    from app.medinv.modules.posts.models import AmbulancePost, PostContact

    errors = []
    post_id = (payload.get("ambulance_post_id") or "").strip()
    cabinet_id = (payload.get("cabinet_id") or "").strip()
    if not post_id:
        errors.append("Ambulance post is required.")
    elif s.get(AmbulancePost, post_id) is None:
        errors.append(f"Ambulance post {post_id!r} does not exist.")
    if not cabinet_id:
        errors.append("Cabinet is required.")
    elif s.get(Cabinet, cabinet_id) is None:
        errors.append(f"Cabinet {cabinet_id!r} does not exist.")

    try:
        normalize_stock_status(payload.get("stock_status"))
    except InvalidStockStatus as e:
        errors.append(str(e))

    contact_id = payload.get("contact_person_id")
    if contact_id:
        contact = s.get(PostContact, contact_id)
        if contact is None or contact.ambulance_post_id != post_id:
            errors.append("Contact person does not belong to this post.")

    if not errors:
        dup = s.query(ItemLocation).filter(
            ItemLocation.item_id == item.id,
            ItemLocation.ambulance_post_id == post_id,
            ItemLocation.cabinet_id == cabinet_id,
            ItemLocation.drawer == clean_text(payload.get("drawer")),
        )
        if location_id is not None:
            dup = dup.filter(ItemLocation.id != location_id)
        if dup.first() is not None:
            errors.append("This item already has a location in that post, cabinet and drawer.")
    return errors


def add_location(s: "Session", item: "MedicalItem", payload: dict, user: "User | None") -> "ItemLocation":
    from app.medinv.modules.inventory.models import ItemLocation

    errors = validate_location_payload(s, item, payload)
    if errors:
        raise InvalidLocation(errors)

    loc = ItemLocation(
        item_id=item.id,
        ambulance_post_id=(payload.get("ambulance_post_id") or "").strip(),
        cabinet_id=(payload.get("cabinet_id") or "").strip(),
        drawer=clean_text(payload.get("drawer")),
        contact_person_id=payload.get("contact_person_id") or None,
    )
    loc.set_stock_status(normalize_stock_status(payload.get("stock_status")))
    s.add(loc)
    s.flush()
    s.refresh(item, attribute_names=["locations"])

    record_event(
        s,
        actor=user,
        action="item.location_add",
        entity_type="ItemLocation",
        entity_id=str(loc.id),
        metadata={
            "item_id": item.id,
            "post_id": loc.ambulance_post_id,
            "cabinet_id": loc.cabinet_id,
            "drawer": loc.drawer,
            "stock_status": loc.stock_status,
        },
    )
    return loc


def update_location(s: "Session", loc: "ItemLocation", payload: dict, user: "User | None") -> "ItemLocation":
    errors = validate_location_payload(s, loc.item, payload, location_id=loc.id)
    if errors:
        raise InvalidLocation(errors)

    loc.ambulance_post_id = (payload.get("ambulance_post_id") or "").strip()
    loc.cabinet_id = (payload.get("cabinet_id") or "").strip()
    loc.drawer = clean_text(payload.get("drawer"))
    loc.contact_person_id = payload.get("contact_person_id") or None
    loc.set_stock_status(normalize_stock_status(payload.get("stock_status")))
    loc.updated_at = datetime.utcnow()
    s.flush()
    s.expire(loc, ["ambulance_post", "cabinet", "contact_person"])

    record_event(
        s,
        actor=user,
        action="item.location_edit",
        entity_type="ItemLocation",
        entity_id=str(loc.id),
        metadata={"item_id": loc.item_id, "stock_status": loc.stock_status},
    )
    return loc


def delete_location(s: "Session", loc: "ItemLocation", user: "User | None") -> None:
    record_event(
        s,
        actor=user,
        action="item.location_delete",
        entity_type="ItemLocation",
        entity_id=str(loc.id),
        metadata={"item_id": loc.item_id, "post_id": loc.ambulance_post_id, "cabinet_id": loc.cabinet_id},
    )
    s.delete(loc)


def set_location_status(s: "Session", loc: "ItemLocation", status: str | None, user: "User | None") -> bool:
    """
    Change the stock status of one location. Returns True when the location
    just became low on stock (was in stock before), which is when an alert is due.
    Raises InvalidStockStatus for values outside the fixed vocabulary.
    """
    new_status = normalize_stock_status(status)
    old_status = loc.stock_status
    if new_status == old_status:
        return False

    loc.set_stock_status(new_status)
    loc.updated_at = datetime.utcnow()

    record_event(
        s,
        actor=user,
        action="item.location_status",
        entity_type="ItemLocation",
        entity_id=str(loc.id),
        metadata={"item_id": loc.item_id, "old": old_status, "new": new_status},
    )
    logger.info("Location %s status %s -> %s", loc.id, old_status, new_status)
    return old_status == STOCK_IN_STOCK and new_status in LOW_STOCK_STATUSES


def low_stock_locations(s: "Session", post_id: str | None = None) -> list["ItemLocation"]:
    """Locations marked "bijna-op" or "niet-meer-aanwezig", optionally for one post only."""
    from app.medinv.modules.inventory.models import ItemLocation, MedicalItem

    q = (
        s.query(ItemLocation)
        .join(MedicalItem, MedicalItem.id == ItemLocation.item_id)
        .filter(ItemLocation.stock_status.in_(sorted(LOW_STOCK_STATUSES)))
    )
    if post_id:
        q = q.filter(ItemLocation.ambulance_post_id == post_id)
    return q.order_by(ItemLocation.ambulance_post_id.asc(), ItemLocation.cabinet_id.asc(), MedicalItem.name.asc()).all()


def group_by_post(locations: list["ItemLocation"]) -> dict[str, list["ItemLocation"]]:
    grouped: dict[str, list] = {}
    for loc in locations:
        grouped.setdefault(loc.ambulance_post_id, []).append(loc)
    return grouped


# ---------- Categories ----------


def list_categories(s: "Session") -> list["Category"]:
    from app.medinv.modules.inventory.models import Category

    return s.query(Category).order_by(Category.name.asc()).all()


def ensure_category(s: "Session", name: str | None) -> "Category | None":
    from app.medinv.modules.inventory.models import Category

    name = (name or "").strip()
    if not name:
        return None
    existing = s.query(Category).filter(func.lower(Category.name) == name.lower()).one_or_none()
    if existing:
        return existing
    cat = Category(name=name)
    s.add(cat)
    s.flush()
    return cat


def delete_category(s: "Session", category: "Category", user: "User | None") -> None:
    from app.medinv.modules.inventory.models import MedicalItem

    in_use = s.query(MedicalItem).filter(func.lower(MedicalItem.category) == category.name.lower()).count()
    if in_use:
        raise ValueError(f"Category {category.name!r} is used by {in_use} item(s).")
    record_event(
        s,
        actor=user,
        action="category.delete",
        entity_type="Category",
        entity_id=str(category.id),
        metadata={"name": category.name},
    )
    s.delete(category)
