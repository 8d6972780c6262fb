from __future__ import annotations

from flask import Blueprint, abort, flash, g, redirect, render_template, request, url_for

from app.medinv.constants import STOCK_IN_STOCK, STOCK_STATUS_LABELS
from app.medinv.db import db_session
from app.medinv.modules.alerts.service import (
    get_email_config,
    recent_supply_requests,
    save_email_config,
    send_supply_request,
    send_test_email,
    smtp_settings,
    validate_email_config_payload,
)
from app.medinv.modules.inventory.models import ItemLocation
from app.medinv.modules.inventory.service import group_by_post, low_stock_locations, set_location_status
from app.medinv.modules.posts.models import AmbulancePost
from app.medinv.modules.posts.service import list_posts
from app.medinv.rbac import require_permission
from app.medinv.utils import is_valid_email

bp = Blueprint("alerts", __name__)


def _get_location(location_id: int) -> ItemLocation:
    loc = db_session().get(ItemLocation, location_id)
    if not loc:
        abort(404)
    return loc


def _back_to_overview():
    post_id = (request.form.get("post") or "").strip()
    return redirect(url_for("alerts.low_stock", post=post_id or None))


# ---------- Low-stock overview ----------
@bp.get("/low-stock")
@require_permission("inventory.view")
def low_stock():
    s = db_session()
    post_id = (request.args.get("post") or "").strip() or None
    if post_id and not s.get(AmbulancePost, post_id):
        abort(404)

    locations = low_stock_locations(s, post_id)
    posts = list_posts(s)
    return render_template(
        "admin/alerts/low_stock.html",
        grouped=group_by_post(locations),
        posts_by_id={p.id: p for p in posts},
        posts=posts,
        post_id=post_id,
        total=len(locations),
        stock_status_labels=STOCK_STATUS_LABELS,
        smtp_ready=smtp_settings(s).is_configured,
    )


@bp.post("/low-stock/locations/<int:location_id>/reset")
@require_permission("inventory.edit")
def location_reset(location_id: int):
    s = db_session()
    loc = _get_location(location_id)
    set_location_status(s, loc, STOCK_IN_STOCK, getattr(g, "current_user", None))
    s.commit()
    flash(f"{loc.item.name} is back in stock at {loc.ambulance_post.name}.", "success")
    return _back_to_overview()


@bp.post("/low-stock/locations/<int:location_id>/supply-request")
@require_permission("alerts.send")
def supply_request(location_id: int):
    s = db_session()
    loc = _get_location(location_id)
    result = send_supply_request(s, loc, getattr(g, "current_user", None))
    s.commit()
    flash(result.message, "success" if result.ok else "danger")
    return _back_to_overview()


@bp.get("/supply-requests")
@require_permission("inventory.view")
def supply_requests_list():
    s = db_session()
    return render_template("admin/alerts/supply_requests.html", requests=recent_supply_requests(s, limit=200))


# ---------- Email settings ----------
@bp.get("/email-settings")
@require_permission("email_settings.edit")
def email_settings_get():
    s = db_session()
    return render_template(
        "admin/alerts/email_settings.html",
        config=get_email_config(s),
        effective=smtp_settings(s),
    )


@bp.post("/email-settings")
@require_permission("email_settings.edit")
def email_settings_post():
    s = db_session()
    payload = {
        "smtp_host": request.form.get("smtp_host"),
        "smtp_port": request.form.get("smtp_port"),
        "smtp_user": request.form.get("smtp_user"),
        "smtp_password": request.form.get("smtp_password"),
        "smtp_secure": request.form.get("smtp_secure"),
        "from_email": request.form.get("from_email"),
        "from_name": request.form.get("from_name"),
    }
    errors = validate_email_config_payload(payload)
    if errors:
        for e in errors:
            flash(e, "danger")
        return redirect(url_for("alerts.email_settings_get"))

    save_email_config(s, payload, getattr(g, "current_user", None))
    s.commit()
    flash("Email settings saved.", "success")
    return redirect(url_for("alerts.email_settings_get"))


@bp.post("/email-settings/test")
@require_permission("email_settings.edit")
def email_settings_test():
    s = db_session()
    to = (request.form.get("to") or "").strip()
    if not is_valid_email(to):
        flash("Enter a valid address to send the test email to.", "danger")
        return redirect(url_for("alerts.email_settings_get"))

    ok, message = send_test_email(s, to, getattr(g, "current_user", None))
    s.commit()
    if ok:
        flash(f"Test email sent to {to}.", "success")
    else:
        flash(f"Test email failed: {message}", "danger")
    return redirect(url_for("alerts.email_settings_get"))
