import logging
import os
from datetime import timedelta

from dotenv import load_dotenv
from flask import Flask, flash, g, jsonify, redirect, render_template, request, session, url_for
from sqlalchemy import inspect as sa_inspect
from sqlalchemy.exc import SQLAlchemyError

from app.medinv.admin import bp as admin_bp
from app.medinv.auth import bp as auth_bp, load_current_user
from app.medinv.config import load_config
from app.medinv.constants import STOCK_STATUS_LABELS
from app.medinv.db import init_db, teardown_db_session
from app.medinv.modules.alerts.admin import bp as alerts_bp
from app.medinv.modules.backup.admin import bp as backup_bp
from app.medinv.modules.cabinets.admin import bp as cabinets_bp
from app.medinv.modules.inventory.admin import bp as inventory_bp
from app.medinv.modules.item_import.admin import bp as item_import_bp
from app.medinv.modules.photos.admin import bp as photos_bp
from app.medinv.modules.posts.admin import bp as posts_bp
from app.medinv.rbac import user_has_permission
from app.medinv.routes import bp as routes_bp
from app.medinv.security import ensure_csrf_token, validate_csrf

logger = logging.getLogger(__name__)

_UNGUARDED_PREFIXES = ("/static/", "/health", "/healthz")
_EXPECTED_TABLES = (
    "users",
    "ambulance_posts",
    "post_contacts",
    "cabinets",
    "post_cabinet_orders",
    "categories",
    "medical_items",
    "item_locations",
    "email_config",
    "supply_requests",
    "email_notifications",
)


def _wants_json() -> bool:
    return request.is_json or request.accept_mimetypes.best == "application/json"


def create_app(config_overrides: dict | None = None) -> Flask:
    load_dotenv()
    app = Flask(__name__, template_folder="templates", static_folder="static")
    app.config.from_mapping(load_config())
    if config_overrides:
        app.config.update(config_overrides)
    app.config["PERMANENT_SESSION_LIFETIME"] = timedelta(hours=8)
    app.config["SESSION_REFRESH_EACH_REQUEST"] = True

    @app.context_processor
    def _inject_globals() -> dict:
        def has_perm(key: str) -> bool:
            return user_has_permission(getattr(g, "current_user", None), key)

        return {
            "csrf_token": ensure_csrf_token(),
            "has_perm": has_perm,
            "stock_status_labels": STOCK_STATUS_LABELS,
        }

    @app.template_filter("dateformat")
    def _dateformat_filter(value, format: str = "%d-%m-%Y") -> str:
        if value is None:
            return "-"
        if hasattr(value, "strftime"):
            return value.strftime(format)
        return str(value)

    @app.before_request
    def _csrf_guard():
        if request.path.startswith(_UNGUARDED_PREFIXES):
            return None
        ensure_csrf_token()
        session.permanent = True
        if request.method in ("POST", "PUT", "PATCH", "DELETE"):
            if request.endpoint in ("auth.login_post",):
                return None
            if not validate_csrf(request):
                app.logger.warning("CSRF validation failed: %s %s", request.method, request.path)
                if _wants_json():
                    return jsonify({"error": "CSRF token missing or invalid."}), 400
                return render_template("errors/400.html", message="CSRF token missing or invalid."), 400
        return None

    env = (app.config.get("ENV") or "").strip().lower()
    if env in ("prod", "production"):
        if not str(app.config.get("DATABASE_URL") or "").strip():
            raise RuntimeError("DATABASE_URL is required in production.")
        if str(app.config["DATABASE_URL"]).startswith("sqlite"):
            raise RuntimeError("DATABASE_URL must be Postgres in production (not sqlite).")
        if str(app.config.get("SECRET_KEY") or "") in ("", "change-me"):
            raise RuntimeError("SECRET_KEY must be set to a strong value in production (not default).")

    init_db(app)

    if hasattr(os, "register_at_fork"):

        def _after_fork_child() -> None:
            engine = app.extensions.get("sqlalchemy_engine")
            if engine:
                engine.dispose()
                app.logger.info("Disposed DB engine after fork (pid=%s)", os.getpid())

        os.register_at_fork(after_in_child=_after_fork_child)

    if app.config.get("STORAGE_BACKEND") == "s3":
        missing_s3 = [k for k in ("S3_ENDPOINT", "S3_BUCKET", "S3_ACCESS_KEY_ID", "S3_SECRET_ACCESS_KEY") if not app.config.get(k)]
        if missing_s3:
            app.logger.error("STORAGE CONFIG ERROR: Missing required S3 env vars: %s", ", ".join(missing_s3))

    app.register_blueprint(routes_bp)
    app.register_blueprint(auth_bp, url_prefix="/auth")
    app.register_blueprint(admin_bp, url_prefix="/admin")
    app.register_blueprint(inventory_bp, url_prefix="/admin")
    app.register_blueprint(photos_bp, url_prefix="/admin")
    app.register_blueprint(cabinets_bp, url_prefix="/admin")
    app.register_blueprint(posts_bp, url_prefix="/admin")
    app.register_blueprint(alerts_bp, url_prefix="/admin")
    app.register_blueprint(item_import_bp, url_prefix="/admin")
    app.register_blueprint(backup_bp, url_prefix="/admin")

    app.before_request(load_current_user)
    app.teardown_appcontext(teardown_db_session)

    # Schema health: missing tables mean `alembic upgrade head` was not run.
    missing_tables: list[str] = []
    try:
        insp = sa_inspect(app.extensions["sqlalchemy_engine"])
        missing_tables = [t for t in _EXPECTED_TABLES if not insp.has_table(t)]
    except SQLAlchemyError as e:
        app.logger.exception("Schema health check failed: %s", e)
    if missing_tables:
        app.logger.error("DB schema out of date; run `alembic upgrade head`. Missing: %s", ", ".join(missing_tables))

    @app.errorhandler(400)
    def _err_400(e):
        if _wants_json():
            return jsonify({"error": getattr(e, "description", "Bad request")}), 400
        return render_template("errors/400.html", message=getattr(e, "description", None)), 400

    @app.errorhandler(403)
    def _err_403(e):
        missing = getattr(g, "missing_permission", None)
        if missing:
            app.logger.warning("Forbidden: missing_permission=%s request_id=%s", missing, getattr(g, "request_id", None))
        if _wants_json():
            return jsonify({"error": "Forbidden", "missing_permission": missing}), 403
        return render_template("errors/403.html", missing_permission=missing), 403

    @app.errorhandler(404)
    def _err_404(e):
        if _wants_json():
            return jsonify({"error": "Not found"}), 404
        return render_template("errors/404.html"), 404

    @app.errorhandler(413)
    def _err_413(e):
        max_mb = int(app.config.get("MAX_CONTENT_LENGTH") or 0) // (1024 * 1024)
        flash(f"File too large. Maximum upload size is {max_mb}MB.", "danger")
        referrer = request.referrer
        if referrer and referrer.startswith(request.host_url):
            return redirect(referrer), 302
        return redirect(url_for("inventory.items_list")), 302

    @app.errorhandler(500)
    def _err_500(e):
        app.logger.exception("Unhandled 500 (request_id=%s)", getattr(g, "request_id", None))
        return render_template("errors/500.html"), 500

    logger.info("create_app() complete; app ready to serve")
    return app
