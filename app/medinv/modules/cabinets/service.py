from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from app.medinv.audit import record_event
from app.medinv.constants import CABINET_ABBREVIATION_MAX, CABINET_ID_MAX, DEFAULT_CABINET_COLOR
from app.medinv.utils import clean_text

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.medinv.models import User
    from app.medinv.modules.cabinets.models import Cabinet


class CabinetInUse(RuntimeError):
    pass


@dataclass
class CabinetSummary:
    id: str
    name: str
    abbreviation: str
    color: str | None
    total_items: int = 0
    low_stock_items: int = 0
    categories: dict[str, int] = field(default_factory=dict)


def validate_cabinet_payload(payload: dict, *, is_new: bool = True) -> list[str]:
    errors = []
    if is_new:
        cabinet_id = (payload.get("id") or "").strip()
        if not cabinet_id:
            errors.append("Cabinet code is required.")
        elif len(cabinet_id) > CABINET_ID_MAX:
            errors.append(f"Cabinet code must be at most {CABINET_ID_MAX} characters.")
    if not (payload.get("name") or "").strip():
        errors.append("Cabinet name is required.")
    abbreviation = (payload.get("abbreviation") or "").strip()
    if not abbreviation:
        errors.append("Abbreviation is required.")
    elif len(abbreviation) > CABINET_ABBREVIATION_MAX:
        errors.append(f"Abbreviation must be at most {CABINET_ABBREVIATION_MAX} characters.")
    return errors


def list_cabinets(s: "Session") -> list["Cabinet"]:
    from app.medinv.modules.cabinets.models import Cabinet

    return s.query(Cabinet).order_by(Cabinet.id.asc()).all()


def create_cabinet(s: "Session", payload: dict, user: "User | None") -> "Cabinet":
    from app.medinv.modules.cabinets.models import Cabinet

    cabinet = Cabinet(
        id=(payload.get("id") or "").strip().upper(),
        name=(payload.get("name") or "").strip(),
        abbreviation=(payload.get("abbreviation") or "").strip().upper(),
        description=clean_text(payload.get("description")),
        location=clean_text(payload.get("location")),
        color=clean_text(payload.get("color")) or DEFAULT_CABINET_COLOR,
    )
    s.add(cabinet)
    s.flush()

    record_event(
        s,
        actor=user,
        action="cabinet.create",
        entity_type="Cabinet",
        entity_id=cabinet.id,
        metadata={"name": cabinet.name, "abbreviation": cabinet.abbreviation},
    )
    return cabinet


def update_cabinet(s: "Session", cabinet: "Cabinet", payload: dict, user: "User | None") -> "Cabinet":
    changes = {}

    def _set(attr: str, val):
        if val != getattr(cabinet, attr):
            changes[attr] = {"old": getattr(cabinet, attr), "new": val}
            setattr(cabinet, attr, val)

    _set("name", (payload.get("name") or cabinet.name).strip())
    _set("abbreviation", (payload.get("abbreviation") or cabinet.abbreviation).strip().upper())
    _set("description", clean_text(payload.get("description")))
    _set("location", clean_text(payload.get("location")))
    _set("color", clean_text(payload.get("color")) or DEFAULT_CABINET_COLOR)

    record_event(
        s,
        actor=user,
        action="cabinet.edit",
        entity_type="Cabinet",
        entity_id=cabinet.id,
        metadata={"changes": changes},
    )
    return cabinet


def delete_cabinet(s: "Session", cabinet: "Cabinet", user: "User | None") -> None:
    from app.medinv.modules.inventory.models import ItemLocation

    in_use = s.query(ItemLocation).filter(ItemLocation.cabinet_id == cabinet.id).count()
    if in_use:
        raise CabinetInUse(f"Cabinet {cabinet.id} still holds {in_use} item location(s).")

    record_event(
        s,
        actor=user,
        action="cabinet.delete",
        entity_type="Cabinet",
        entity_id=cabinet.id,
        metadata={"name": cabinet.name},
    )
    s.delete(cabinet)


# ---------- Per-post ordering ----------


def ordered_cabinets_for_post(s: "Session", post_id: str) -> list["Cabinet"]:
    """Cabinets with a stored position come first (by position); the rest follow by id."""
    from app.medinv.modules.cabinets.models import PostCabinetOrder

    orders = (
        s.query(PostCabinetOrder)
        .filter(PostCabinetOrder.ambulance_post_id == post_id)
        .order_by(PostCabinetOrder.position.asc(), PostCabinetOrder.id.asc())
        .all()
    )
    ordered = [o.cabinet for o in orders]
    seen = {c.id for c in ordered}
    rest = [c for c in list_cabinets(s) if c.id not in seen]
    return ordered + rest


def save_cabinet_order(s: "Session", post_id: str, cabinet_ids: list[str], user: "User | None") -> None:
    """Replace the stored order for a post. Unknown ids and duplicates are dropped."""
    from app.medinv.modules.cabinets.models import Cabinet, PostCabinetOrder

    known = {c.id for c in s.query(Cabinet.id).all()}
    clean_ids: list[str] = []
    for cid in cabinet_ids:
        cid = (cid or "").strip()
        if cid in known and cid not in clean_ids:
            clean_ids.append(cid)

    s.query(PostCabinetOrder).filter(PostCabinetOrder.ambulance_post_id == post_id).delete(synchronize_session=False)
    for position, cid in enumerate(clean_ids):
        s.add(PostCabinetOrder(ambulance_post_id=post_id, cabinet_id=cid, position=position))

    record_event(
        s,
        actor=user,
        action="cabinet.order_save",
        entity_type="AmbulancePost",
        entity_id=post_id,
        metadata={"order": clean_ids},
    )


def reset_cabinet_order(s: "Session", post_id: str, user: "User | None") -> None:
    from app.medinv.modules.cabinets.models import PostCabinetOrder

    s.query(PostCabinetOrder).filter(PostCabinetOrder.ambulance_post_id == post_id).delete(synchronize_session=False)
    record_event(s, actor=user, action="cabinet.order_reset", entity_type="AmbulancePost", entity_id=post_id)


# ---------- Summary ----------


def cabinet_summary(s: "Session", post_id: str | None = None) -> list[CabinetSummary]:
    """
    Per cabinet: number of distinct items stored, how many of them are low on stock,
    and an item count per category. Restricted to one post when post_id is given.
    """
    from app.medinv.modules.inventory.models import ItemLocation

    cabinets = ordered_cabinets_for_post(s, post_id) if post_id else list_cabinets(s)
    q = s.query(ItemLocation)
    if post_id:
        q = q.filter(ItemLocation.ambulance_post_id == post_id)
    locations = q.all()

    by_cabinet: dict[str, list] = {}
    for loc in locations:
        by_cabinet.setdefault(loc.cabinet_id, []).append(loc)

    summaries = []
    for cabinet in cabinets:
        locs = by_cabinet.get(cabinet.id, [])
        items = {loc.item_id: loc.item for loc in locs}
        low_items = {loc.item_id for loc in locs if loc.is_low_stock}
        categories = Counter(item.category for item in items.values())
        summaries.append(
            CabinetSummary(
                id=cabinet.id,
                name=cabinet.name,
                abbreviation=cabinet.abbreviation,
                color=cabinet.color,
                total_items=len(items),
                low_stock_items=len(low_items),
                categories=dict(sorted(categories.items())),
            )
        )
    return summaries
