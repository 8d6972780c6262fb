from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from app.medinv.audit import record_event
from app.medinv.utils import clean_text, is_valid_email, parse_bool, slugify

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.medinv.models import User
    from app.medinv.modules.posts.models import AmbulancePost, PostContact


def validate_post_payload(payload: dict, *, is_new: bool = True) -> list[str]:
    errors = []
    if not (payload.get("name") or "").strip():
        errors.append("Post name is required.")
    if is_new:
        post_id = slugify(payload.get("id") or payload.get("name") or "")
        if not post_id:
            errors.append("Post id is required.")
        elif len(post_id) > 64:
            errors.append("Post id must be at most 64 characters.")
    return errors


def list_posts(s: "Session", *, active_only: bool = False) -> list["AmbulancePost"]:
    from app.medinv.modules.posts.models import AmbulancePost

    q = s.query(AmbulancePost)
    if active_only:
        q = q.filter(AmbulancePost.is_active.is_(True))
    return q.order_by(AmbulancePost.name.asc()).all()


def create_post(s: "Session", payload: dict, user: "User | None") -> "AmbulancePost":
    from app.medinv.modules.posts.models import AmbulancePost

    now = datetime.utcnow()
    post = AmbulancePost(
        id=slugify(payload.get("id") or payload.get("name") or ""),
        name=(payload.get("name") or "").strip(),
        location=clean_text(payload.get("location")),
        description=clean_text(payload.get("description")),
        is_active=parse_bool(payload.get("is_active", True)),
        created_at=now,
        updated_at=now,
    )
    s.add(post)
    s.flush()

    record_event(
        s,
        actor=user,
        action="post.create",
        entity_type="AmbulancePost",
        entity_id=post.id,
        metadata={"name": post.name},
    )
    return post


def update_post(s: "Session", post: "AmbulancePost", payload: dict, user: "User | None") -> "AmbulancePost":
    changes = {}

    def _set(attr: str, val):
        if val != getattr(post, attr):
            changes[attr] = {"old": getattr(post, attr), "new": val}
            setattr(post, attr, val)

    _set("name", (payload.get("name") or post.name).strip())
    _set("location", clean_text(payload.get("location")))
    _set("description", clean_text(payload.get("description")))
    _set("is_active", parse_bool(payload.get("is_active")))
    post.updated_at = datetime.utcnow()

    record_event(
        s,
        actor=user,
        action="post.edit",
        entity_type="AmbulancePost",
        entity_id=post.id,
        metadata={"changes": changes},
    )
    return post


def delete_post(s: "Session", post: "AmbulancePost", user: "User | None") -> None:
    """Delete a post; its item locations, contacts and cabinet order go with it."""
    from app.medinv.modules.cabinets.models import PostCabinetOrder
    from app.medinv.modules.inventory.models import ItemLocation

    locations = s.query(ItemLocation).filter(ItemLocation.ambulance_post_id == post.id).all()
    for loc in locations:
        s.delete(loc)
    s.query(PostCabinetOrder).filter(PostCabinetOrder.ambulance_post_id == post.id).delete(synchronize_session=False)

    record_event(
        s,
        actor=user,
        action="post.delete",
        entity_type="AmbulancePost",
        entity_id=post.id,
        metadata={"name": post.name, "locations_removed": len(locations)},
    )
    s.delete(post)


# ---------- Contacts ----------


def validate_contact_payload(payload: dict) -> list[str]:
    errors = []
    if not (payload.get("name") or "").strip():
        errors.append("Contact name is required.")
    if not is_valid_email(payload.get("email")):
        errors.append("A valid email address is required.")
    return errors


def create_contact(s: "Session", post: "AmbulancePost", payload: dict, user: "User | None") -> "PostContact":
    from app.medinv.modules.posts.models import PostContact

    contact = PostContact(
        ambulance_post_id=post.id,
        name=(payload.get("name") or "").strip(),
        email=(payload.get("email") or "").strip().lower(),
        department=clean_text(payload.get("department")),
        is_active=parse_bool(payload.get("is_active", True)),
    )
    s.add(contact)
    s.flush()

    record_event(
        s,
        actor=user,
        action="post.contact_add",
        entity_type="PostContact",
        entity_id=str(contact.id),
        metadata={"post_id": post.id, "email": contact.email},
    )
    return contact


def update_contact(s: "Session", contact: "PostContact", payload: dict, user: "User | None") -> "PostContact":
    contact.name = (payload.get("name") or contact.name).strip()
    contact.email = (payload.get("email") or contact.email).strip().lower()
    contact.department = clean_text(payload.get("department"))
    contact.is_active = parse_bool(payload.get("is_active"))

    record_event(
        s,
        actor=user,
        action="post.contact_edit",
        entity_type="PostContact",
        entity_id=str(contact.id),
        metadata={"post_id": contact.ambulance_post_id},
    )
    return contact


def delete_contact(s: "Session", contact: "PostContact", user: "User | None") -> None:
    record_event(
        s,
        actor=user,
        action="post.contact_delete",
        entity_type="PostContact",
        entity_id=str(contact.id),
        metadata={"post_id": contact.ambulance_post_id, "email": contact.email},
    )
    s.delete(contact)


def find_contact_by_name(s: "Session", post_id: str, name: str | None) -> "PostContact | None":
    """
    Case-insensitive substring match on contact name, scoped to one post.
    Only active contacts are considered; the first match by name wins.
    """
    from app.medinv.modules.posts.models import PostContact

    needle = (name or "").strip().lower()
    if not needle:
        return None
    contacts = (
        s.query(PostContact)
        .filter(PostContact.ambulance_post_id == post_id, PostContact.is_active.is_(True))
        .order_by(PostContact.name.asc(), PostContact.id.asc())
        .all()
    )
    return next((c for c in contacts if needle in c.name.lower()), None)
