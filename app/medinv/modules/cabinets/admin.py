from __future__ import annotations

from flask import Blueprint, abort, flash, g, redirect, render_template, request, url_for

from app.medinv.db import db_session
from app.medinv.modules.cabinets.models import Cabinet
from app.medinv.modules.cabinets.service import (
    CabinetInUse,
    cabinet_summary,
    create_cabinet,
    delete_cabinet,
    list_cabinets,
    ordered_cabinets_for_post,
    reset_cabinet_order,
    save_cabinet_order,
    update_cabinet,
    validate_cabinet_payload,
)
from app.medinv.modules.posts.models import AmbulancePost
from app.medinv.modules.posts.service import list_posts
from app.medinv.rbac import require_permission

bp = Blueprint("cabinets", __name__)


def _cabinet_payload_from_form() -> dict:
    return {
        "id": request.form.get("id"),
        "name": request.form.get("name"),
        "abbreviation": request.form.get("abbreviation"),
        "description": request.form.get("description"),
        "location": request.form.get("location"),
        "color": request.form.get("color"),
    }


def _get_post(post_id: str) -> AmbulancePost:
    post = db_session().get(AmbulancePost, post_id)
    if not post:
        abort(404)
    return post


@bp.get("/cabinets")
@require_permission("cabinets.view")
def cabinets_list():
    s = db_session()
    return render_template("admin/cabinets/list.html", cabinets=list_cabinets(s))


@bp.get("/cabinets/new")
@require_permission("cabinets.edit")
def cabinet_new_get():
    return render_template("admin/cabinets/form.html", cabinet=None)


@bp.post("/cabinets/new")
@require_permission("cabinets.edit")
def cabinet_new_post():
    s = db_session()
    payload = _cabinet_payload_from_form()
    errors = validate_cabinet_payload(payload, is_new=True)
    if errors:
        for e in errors:
            flash(e, "danger")
        return redirect(url_for("cabinets.cabinet_new_get"))

    if s.get(Cabinet, (payload["id"] or "").strip().upper()):
        flash("A cabinet with that code already exists.", "danger")
        return redirect(url_for("cabinets.cabinet_new_get"))

    cabinet = create_cabinet(s, payload, getattr(g, "current_user", None))
    s.commit()
    flash(f"Cabinet {cabinet.id} created.", "success")
    return redirect(url_for("cabinets.cabinets_list"))


@bp.get("/cabinets/<cabinet_id>/edit")
@require_permission("cabinets.edit")
def cabinet_edit_get(cabinet_id: str):
    cabinet = db_session().get(Cabinet, cabinet_id)
    if not cabinet:
        abort(404)
    return render_template("admin/cabinets/form.html", cabinet=cabinet)


@bp.post("/cabinets/<cabinet_id>/edit")
@require_permission("cabinets.edit")
def cabinet_edit_post(cabinet_id: str):
    s = db_session()
    cabinet = s.get(Cabinet, cabinet_id)
    if not cabinet:
        abort(404)
    payload = _cabinet_payload_from_form()
    errors = validate_cabinet_payload(payload, is_new=False)
    if errors:
        for e in errors:
            flash(e, "danger")
        return redirect(url_for("cabinets.cabinet_edit_get", cabinet_id=cabinet_id))

    update_cabinet(s, cabinet, payload, getattr(g, "current_user", None))
    s.commit()
    flash("Cabinet updated.", "success")
    return redirect(url_for("cabinets.cabinets_list"))


@bp.post("/cabinets/<cabinet_id>/delete")
@require_permission("cabinets.edit")
def cabinet_delete(cabinet_id: str):
    s = db_session()
    cabinet = s.get(Cabinet, cabinet_id)
    if not cabinet:
        abort(404)
    try:
        delete_cabinet(s, cabinet, getattr(g, "current_user", None))
    except CabinetInUse as e:
        s.rollback()
        flash(str(e), "danger")
        return redirect(url_for("cabinets.cabinets_list"))
    s.commit()
    flash("Cabinet deleted.", "success")
    return redirect(url_for("cabinets.cabinets_list"))


# ---------- Overview per post ----------
@bp.get("/cabinets/overview")
@require_permission("cabinets.view")
def cabinets_overview():
    s = db_session()
    posts = list_posts(s)
    post_id = (request.args.get("post") or "").strip() or None
    if post_id:
        _get_post(post_id)
    return render_template(
        "admin/cabinets/overview.html",
        posts=posts,
        post_id=post_id,
        summaries=cabinet_summary(s, post_id),
    )


@bp.get("/posts/<post_id>/cabinet-order")
@require_permission("cabinets.view")
def cabinet_order_get(post_id: str):
    s = db_session()
    post = _get_post(post_id)
    return render_template("admin/cabinets/order.html", post=post, cabinets=ordered_cabinets_for_post(s, post.id))


@bp.post("/posts/<post_id>/cabinet-order")
@require_permission("cabinets.edit")
def cabinet_order_post(post_id: str):
    s = db_session()
    post = _get_post(post_id)
    # Form sends one "position_<cabinet id>" number per cabinet.
    positions = []
    for key, value in request.form.items():
        if key.startswith("position_"):
            try:
                positions.append((int(value), key[len("position_"):]))
            except ValueError:
                flash(f"Invalid position {value!r} for cabinet {key[len('position_'):]}.", "danger")
                return redirect(url_for("cabinets.cabinet_order_get", post_id=post.id))
    order = [cid for _, cid in sorted(positions)] or request.form.getlist("cabinet_ids")
    save_cabinet_order(s, post.id, order, getattr(g, "current_user", None))
    s.commit()
    flash("Cabinet order saved.", "success")
    return redirect(url_for("cabinets.cabinet_order_get", post_id=post.id))


@bp.post("/posts/<post_id>/cabinet-order/reset")
@require_permission("cabinets.edit")
def cabinet_order_reset(post_id: str):
    s = db_session()
    post = _get_post(post_id)
    reset_cabinet_order(s, post.id, getattr(g, "current_user", None))
    s.commit()
    flash("Cabinet order reset to alphabetical.", "success")
    return redirect(url_for("cabinets.cabinet_order_get", post_id=post.id))
