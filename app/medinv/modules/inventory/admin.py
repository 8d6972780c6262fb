from __future__ import annotations

from flask import Blueprint, abort, current_app, flash, g, jsonify, redirect, render_template, request, url_for

from app.medinv.constants import STOCK_STATUS_LABELS, STOCK_STATUSES, InvalidStockStatus
from app.medinv.db import db_session
from app.medinv.modules.alerts.service import maybe_send_low_stock_alert
from app.medinv.modules.cabinets.service import list_cabinets
from app.medinv.modules.inventory.models import Category, ItemLocation, MedicalItem
from app.medinv.modules.inventory.service import (
    InvalidLocation,
    add_location,
    create_item,
    delete_category,
    delete_item,
    delete_location,
    ensure_category,
    list_categories,
    locations_by_post,
    query_items,
    set_location_status,
    update_item,
    update_location,
    validate_item_payload,
)
from app.medinv.modules.posts.models import PostContact
from app.medinv.modules.posts.service import list_posts
from app.medinv.rbac import require_permission
from app.medinv.utils import parse_bool, parse_date, parse_int

bp = Blueprint("inventory", __name__)

PER_PAGE = 50


def _get_item(item_id: int) -> MedicalItem:
    item = db_session().get(MedicalItem, item_id)
    if not item:
        abort(404)
    return item


def _get_location(location_id: int) -> ItemLocation:
    loc = db_session().get(ItemLocation, location_id)
    if not loc:
        abort(404)
    return loc


def _item_payload_from_form() -> tuple[dict, list[str]]:
    expiry, expiry_error = parse_date(request.form.get("expiry_date"))
    payload = {
        "name": request.form.get("name"),
        "category": request.form.get("category"),
        "description": request.form.get("description"),
        "search_terms": request.form.get("search_terms"),
        "expiry_date": expiry,
        "alert_email": request.form.get("alert_email"),
        "is_discontinued": request.form.get("is_discontinued"),
        "replacement_item_id": parse_int(request.form.get("replacement_item_id")),
    }
    if "photo_url" in request.form:
        payload["photo_url"] = request.form.get("photo_url")
    errors = validate_item_payload(payload)
    if expiry_error:
        errors.append(expiry_error)
    return payload, errors


def _location_payload_from_form() -> dict:
    return {
        "ambulance_post_id": request.form.get("ambulance_post_id"),
        "cabinet_id": request.form.get("cabinet_id"),
        "drawer": request.form.get("drawer"),
        "contact_person_id": parse_int(request.form.get("contact_person_id")),
        "stock_status": request.form.get("stock_status"),
    }


def _form_context(s) -> dict:
    return {
        "categories": list_categories(s),
        "posts": list_posts(s),
        "cabinets": list_cabinets(s),
        "all_items": s.query(MedicalItem).order_by(MedicalItem.name.asc()).all(),
        "stock_statuses": STOCK_STATUSES,
        "stock_status_labels": STOCK_STATUS_LABELS,
    }


def _apply_status_change(s, loc: ItemLocation, status: str | None) -> tuple[bool, str | None]:
    """Persist a status change, then send the automatic alert if the location just went low."""
    became_low = set_location_status(s, loc, status, getattr(g, "current_user", None))
    s.commit()
    if not became_low:
        return False, None
    result = maybe_send_low_stock_alert(s, loc, getattr(g, "current_user", None))
    s.commit()
    return True, result.message if result else None


# ---------- Items ----------
@bp.get("/items")
@require_permission("inventory.view")
def items_list():
    s = db_session()
    filters = {
        "q": (request.args.get("q") or "").strip(),
        "category": (request.args.get("category") or "").strip(),
        "post": (request.args.get("post") or "").strip(),
        "cabinet": (request.args.get("cabinet") or "").strip(),
        "low_stock": parse_bool(request.args.get("low_stock")),
        "include_discontinued": not parse_bool(request.args.get("hide_discontinued")),
    }
    page = max(request.args.get("page", 1, type=int) or 1, 1)

    q = query_items(s, filters)
    total = q.count()
    items = q.order_by(MedicalItem.name.asc(), MedicalItem.id.asc()).offset((page - 1) * PER_PAGE).limit(PER_PAGE).all()
    total_pages = max((total + PER_PAGE - 1) // PER_PAGE, 1)
    first = (page - 1) * PER_PAGE + 1 if total else 0
    last = min(page * PER_PAGE, total)

    def build_url(p: int) -> str:
        args = {k: v for k, v in request.args.items() if k != "page" and v}
        return url_for("inventory.items_list", page=p, **args)

    return render_template(
        "admin/inventory/list.html",
        items=items,
        filters=filters,
        categories=list_categories(s),
        posts=list_posts(s),
        cabinets=list_cabinets(s),
        page=page,
        total=total,
        total_pages=total_pages,
        first=first,
        last=last,
        build_url=build_url,
    )


@bp.get("/items/new")
@require_permission("inventory.edit")
def item_new_get():
    return render_template("admin/inventory/form.html", item=None, **_form_context(db_session()))


@bp.post("/items/new")
@require_permission("inventory.edit")
def item_new_post():
    s = db_session()
    payload, errors = _item_payload_from_form()
    if errors:
        for e in errors:
            flash(e, "danger")
        return redirect(url_for("inventory.item_new_get"))

    item = create_item(s, payload, getattr(g, "current_user", None))
    s.commit()
    flash("Item created.", "success")
    return redirect(url_for("inventory.item_detail", item_id=item.id))


@bp.get("/items/<int:item_id>")
@require_permission("inventory.view")
def item_detail(item_id: int):
    s = db_session()
    item = _get_item(item_id)
    contacts = (
        s.query(PostContact)
        .filter(PostContact.is_active.is_(True))
        .order_by(PostContact.ambulance_post_id.asc(), PostContact.name.asc())
        .all()
    )
    return render_template(
        "admin/inventory/detail.html",
        item=item,
        locations_by_post=locations_by_post(item),
        contacts=contacts,
        **_form_context(s),
    )


@bp.get("/items/<int:item_id>/edit")
@require_permission("inventory.edit")
def item_edit_get(item_id: int):
    s = db_session()
    return render_template("admin/inventory/form.html", item=_get_item(item_id), **_form_context(s))


@bp.post("/items/<int:item_id>/edit")
@require_permission("inventory.edit")
def item_edit_post(item_id: int):
    s = db_session()
    item = _get_item(item_id)
    payload, errors = _item_payload_from_form()
    if errors:
        for e in errors:
            flash(e, "danger")
        return redirect(url_for("inventory.item_edit_get", item_id=item_id))

    update_item(s, item, payload, getattr(g, "current_user", None))
    s.commit()
    flash("Item updated.", "success")
    return redirect(url_for("inventory.item_detail", item_id=item_id))


@bp.post("/items/<int:item_id>/delete")
@require_permission("inventory.delete")
def item_delete(item_id: int):
    s = db_session()
    item = _get_item(item_id)
    name = item.name
    delete_item(s, item, getattr(g, "current_user", None))
    s.commit()
    flash(f"Item {name!r} deleted from all posts.", "success")
    return redirect(url_for("inventory.items_list"))


# ---------- Locations ----------
@bp.post("/items/<int:item_id>/locations")
@require_permission("inventory.edit")
def location_add(item_id: int):
    s = db_session()
    item = _get_item(item_id)
    try:
        add_location(s, item, _location_payload_from_form(), getattr(g, "current_user", None))
    except InvalidLocation as e:
        s.rollback()
        for err in e.errors:
            flash(err, "danger")
        return redirect(url_for("inventory.item_detail", item_id=item_id))
    s.commit()
    flash("Location added.", "success")
    return redirect(url_for("inventory.item_detail", item_id=item_id))


@bp.post("/locations/<int:location_id>/edit")
@require_permission("inventory.edit")
def location_edit(location_id: int):
    s = db_session()
    loc = _get_location(location_id)
    item_id = loc.item_id
    try:
        update_location(s, loc, _location_payload_from_form(), getattr(g, "current_user", None))
    except InvalidLocation as e:
        s.rollback()
        for err in e.errors:
            flash(err, "danger")
        return redirect(url_for("inventory.item_detail", item_id=item_id))
    s.commit()
    flash("Location updated.", "success")
    return redirect(url_for("inventory.item_detail", item_id=item_id))


@bp.post("/locations/<int:location_id>/delete")
@require_permission("inventory.edit")
def location_delete(location_id: int):
    s = db_session()
    loc = _get_location(location_id)
    item_id = loc.item_id
    delete_location(s, loc, getattr(g, "current_user", None))
    s.commit()
    flash("Location removed.", "success")
    return redirect(url_for("inventory.item_detail", item_id=item_id))


@bp.post("/locations/<int:location_id>/status")
@require_permission("inventory.edit")
def location_status_post(location_id: int):
    s = db_session()
    loc = _get_location(location_id)
    try:
        _, alert_message = _apply_status_change(s, loc, request.form.get("stock_status"))
    except InvalidStockStatus as e:
        s.rollback()
        flash(str(e), "danger")
    else:
        flash(f"Status set to {STOCK_STATUS_LABELS[loc.stock_status]}.", "success")
        if alert_message:
            flash(alert_message, "info")

    nxt = (request.form.get("next") or "").strip()
    if nxt.startswith("/") and not nxt.startswith("//"):
        return redirect(nxt)
    return redirect(url_for("inventory.item_detail", item_id=loc.item_id))


@bp.patch("/api/locations/<int:location_id>/status")
@require_permission("inventory.edit")
def location_status_patch(location_id: int):
    s = db_session()
    loc = _get_location(location_id)
    data = request.get_json(silent=True) or {}
    try:
        became_low, alert_message = _apply_status_change(s, loc, data.get("stock_status"))
    except InvalidStockStatus as e:
        s.rollback()
        return jsonify({"error": str(e)}), 400

    current_app.logger.info("Location %s status updated via API", loc.id)
    return jsonify(
        {
            "id": loc.id,
            "item_id": loc.item_id,
            "stock_status": loc.stock_status,
            "is_low_stock": loc.is_low_stock,
            "alert_sent": became_low and alert_message is not None,
            "alert_message": alert_message,
        }
    )


# ---------- Categories ----------
@bp.get("/categories")
@require_permission("inventory.view")
def categories_list():
    s = db_session()
    return render_template("admin/inventory/categories.html", categories=list_categories(s))


@bp.post("/categories")
@require_permission("inventory.edit")
def category_create():
    s = db_session()
    name = (request.form.get("name") or "").strip()
    if not name:
        flash("Category name is required.", "danger")
        return redirect(url_for("inventory.categories_list"))
    ensure_category(s, name)
    s.commit()
    flash(f"Category {name!r} saved.", "success")
    return redirect(url_for("inventory.categories_list"))


@bp.post("/categories/<int:category_id>/delete")
@require_permission("inventory.edit")
def category_delete(category_id: int):
    s = db_session()
    category = s.get(Category, category_id)
    if not category:
        abort(404)
    try:
        delete_category(s, category, getattr(g, "current_user", None))
    except ValueError as e:
        s.rollback()
        flash(str(e), "danger")
        return redirect(url_for("inventory.categories_list"))
    s.commit()
    flash("Category deleted.", "success")
    return redirect(url_for("inventory.categories_list"))
