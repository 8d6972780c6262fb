from datetime import datetime, time, timedelta

from flask import Blueprint, current_app, flash, g, render_template, request
from sqlalchemy import func, text
from sqlalchemy.exc import SQLAlchemyError

from app.medinv.db import db_session
from app.medinv.models import AuditEvent
from app.medinv.modules.alerts.service import recent_supply_requests, smtp_settings
from app.medinv.modules.cabinets.models import Cabinet
from app.medinv.modules.inventory.models import ItemLocation, MedicalItem
from app.medinv.modules.posts.models import AmbulancePost
from app.medinv.rbac import require_permission
from app.medinv.utils import parse_date

bp = Blueprint("admin", __name__)


@bp.get("/")
@require_permission("admin.view")
def index():
    s = db_session()
    status = {
        "env": (current_app.config.get("ENV") or "development").strip().lower(),
        "db_connected": False,
        "db_error": None,
        "storage_backend": (current_app.config.get("STORAGE_BACKEND") or "local").strip().lower(),
        "storage_configured": True,
        "storage_error": None,
        "smtp_configured": False,
    }

    try:
        s.execute(text("SELECT 1"))
        status["db_connected"] = True
    except SQLAlchemyError as e:
        s.rollback()
        status["db_error"] = str(e)

    if status["storage_backend"] == "s3":
        missing = [k for k in ("S3_ENDPOINT", "S3_BUCKET", "S3_ACCESS_KEY_ID", "S3_SECRET_ACCESS_KEY") if not current_app.config.get(k)]
        status["storage_configured"] = not missing
        if missing:
            status["storage_error"] = f"Missing: {', '.join(missing)}"

    counts = {}
    if status["db_connected"]:
        status["smtp_configured"] = smtp_settings(s).is_configured
        counts = {
            "items": s.query(func.count(MedicalItem.id)).scalar() or 0,
            "locations": s.query(func.count(ItemLocation.id)).scalar() or 0,
            "low_stock_locations": s.query(func.count(ItemLocation.id)).filter(ItemLocation.is_low_stock.is_(True)).scalar() or 0,
            "posts": s.query(func.count(AmbulancePost.id)).scalar() or 0,
            "cabinets": s.query(func.count(Cabinet.id)).scalar() or 0,
        }

    return render_template(
        "admin/index.html",
        system_status=status,
        counts=counts,
        supply_requests=recent_supply_requests(s, limit=10) if status["db_connected"] else [],
    )


@bp.get("/me")
@require_permission("admin.view")
def me():
    user = getattr(g, "current_user", None)
    role_keys = sorted({r.key for r in (user.roles or [])})
    perm_keys = sorted({p.key for r in (user.roles or []) for p in (r.permissions or [])})
    return render_template("admin/me.html", user=user, role_keys=role_keys, perm_keys=perm_keys)


@bp.get("/audit")
@require_permission("admin.view")
def audit_list():
    """Last 200 audit events, filterable by action, actor and date range."""
    s = db_session()
    action = (request.args.get("action") or "").strip()
    actor_email = (request.args.get("actor_email") or "").strip()
    date_from, err_from = parse_date(request.args.get("date_from"))
    date_to, err_to = parse_date(request.args.get("date_to"))
    for err in (err_from, err_to):
        if err:
            flash(err, "danger")

    q = s.query(AuditEvent)
    if action:
        q = q.filter(AuditEvent.action.like(f"%{action}%"))
    if actor_email:
        q = q.filter(AuditEvent.actor_user_email.like(f"%{actor_email.lower()}%"))
    if date_from:
        q = q.filter(AuditEvent.created_at >= datetime.combine(date_from, time.min))
    if date_to:
        # inclusive end date
        q = q.filter(AuditEvent.created_at < datetime.combine(date_to + timedelta(days=1), time.min))

    events = q.order_by(AuditEvent.created_at.desc(), AuditEvent.id.desc()).limit(200).all()
    return render_template(
        "admin/audit/list.html",
        events=events,
        action=action,
        actor_email=actor_email,
        date_from=(request.args.get("date_from") or "").strip(),
        date_to=(request.args.get("date_to") or "").strip(),
    )
