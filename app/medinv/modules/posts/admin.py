from __future__ import annotations

from flask import Blueprint, abort, flash, g, redirect, render_template, request, url_for

from app.medinv.db import db_session
from app.medinv.modules.posts.models import AmbulancePost, PostContact
from app.medinv.modules.posts.service import (
    create_contact,
    create_post,
    delete_contact,
    delete_post,
    list_posts,
    update_contact,
    update_post,
    validate_contact_payload,
    validate_post_payload,
)
from app.medinv.rbac import require_permission
from app.medinv.utils import slugify

bp = Blueprint("posts", __name__)


def _get_post(post_id: str) -> AmbulancePost:
    post = db_session().get(AmbulancePost, post_id)
    if not post:
        abort(404)
    return post


def _post_payload_from_form() -> dict:
    return {
        "id": request.form.get("id"),
        "name": request.form.get("name"),
        "location": request.form.get("location"),
        "description": request.form.get("description"),
        "is_active": request.form.get("is_active"),
    }


def _contact_payload_from_form() -> dict:
    return {
        "name": request.form.get("name"),
        "email": request.form.get("email"),
        "department": request.form.get("department"),
        "is_active": request.form.get("is_active"),
    }


@bp.get("/posts")
@require_permission("posts.view")
def posts_list():
    s = db_session()
    return render_template("admin/posts/list.html", posts=list_posts(s))


@bp.get("/posts/new")
@require_permission("posts.edit")
def post_new_get():
    return render_template("admin/posts/form.html", post=None)


@bp.post("/posts/new")
@require_permission("posts.edit")
def post_new_post():
    s = db_session()
    payload = _post_payload_from_form()
    errors = validate_post_payload(payload, is_new=True)
    if errors:
        for e in errors:
            flash(e, "danger")
        return redirect(url_for("posts.post_new_get"))

    if s.get(AmbulancePost, slugify(payload["id"] or payload["name"] or "")):
        flash("A post with that id already exists.", "danger")
        return redirect(url_for("posts.post_new_get"))

    post = create_post(s, payload, getattr(g, "current_user", None))
    s.commit()
    flash(f"Post {post.name} created.", "success")
    return redirect(url_for("posts.post_detail", post_id=post.id))


@bp.get("/posts/<post_id>")
@require_permission("posts.view")
def post_detail(post_id: str):
    return render_template("admin/posts/detail.html", post=_get_post(post_id))


@bp.get("/posts/<post_id>/edit")
@require_permission("posts.edit")
def post_edit_get(post_id: str):
    return render_template("admin/posts/form.html", post=_get_post(post_id))


@bp.post("/posts/<post_id>/edit")
@require_permission("posts.edit")
def post_edit_post(post_id: str):
    s = db_session()
    post = _get_post(post_id)
    payload = _post_payload_from_form()
    errors = validate_post_payload(payload, is_new=False)
    if errors:
        for e in errors:
            flash(e, "danger")
        return redirect(url_for("posts.post_edit_get", post_id=post_id))

    update_post(s, post, payload, getattr(g, "current_user", None))
    s.commit()
    flash("Post updated.", "success")
    return redirect(url_for("posts.post_detail", post_id=post_id))


@bp.post("/posts/<post_id>/delete")
@require_permission("posts.edit")
def post_delete(post_id: str):
    s = db_session()
    post = _get_post(post_id)
    name = post.name
    delete_post(s, post, getattr(g, "current_user", None))
    s.commit()
    flash(f"Post {name} deleted with all its locations and contacts.", "success")
    return redirect(url_for("posts.posts_list"))


# ---------- Contacts ----------
@bp.post("/posts/<post_id>/contacts")
@require_permission("posts.edit")
def contact_add(post_id: str):
    s = db_session()
    post = _get_post(post_id)
    payload = _contact_payload_from_form()
    payload["is_active"] = payload["is_active"] or "1"
    errors = validate_contact_payload(payload)
    if errors:
        for e in errors:
            flash(e, "danger")
        return redirect(url_for("posts.post_detail", post_id=post_id))

    create_contact(s, post, payload, getattr(g, "current_user", None))
    s.commit()
    flash("Contact added.", "success")
    return redirect(url_for("posts.post_detail", post_id=post_id))


@bp.post("/contacts/<int:contact_id>/edit")
@require_permission("posts.edit")
def contact_edit(contact_id: int):
    s = db_session()
    contact = s.get(PostContact, contact_id)
    if not contact:
        abort(404)
    payload = _contact_payload_from_form()
    errors = validate_contact_payload(payload)
    if errors:
        for e in errors:
            flash(e, "danger")
        return redirect(url_for("posts.post_detail", post_id=contact.ambulance_post_id))

    update_contact(s, contact, payload, getattr(g, "current_user", None))
    s.commit()
    flash("Contact updated.", "success")
    return redirect(url_for("posts.post_detail", post_id=contact.ambulance_post_id))


@bp.post("/contacts/<int:contact_id>/delete")
@require_permission("posts.edit")
def contact_delete(contact_id: int):
    s = db_session()
    contact = s.get(PostContact, contact_id)
    if not contact:
        abort(404)
    post_id = contact.ambulance_post_id
    delete_contact(s, contact, getattr(g, "current_user", None))
    s.commit()
    flash("Contact removed.", "success")
    return redirect(url_for("posts.post_detail", post_id=post_id))
