from __future__ import annotations

import io
import json

from flask import Blueprint, current_app, flash, g, redirect, render_template, request, send_file, url_for
from sqlalchemy.exc import SQLAlchemyError

from app.medinv.audit import record_event
from app.medinv.db import db_session
from app.medinv.modules.backup.service import InvalidBackup, export_backup, import_backup
from app.medinv.rbac import require_permission

bp = Blueprint("backup", __name__)


@bp.get("/backup")
@require_permission("backup.run")
def backup_get():
    return render_template("admin/backup/index.html", stats=None)


@bp.get("/backup/export")
@require_permission("backup.run")
def backup_export():
    s = db_session()
    data = export_backup(s)
    record_event(
        s,
        actor=getattr(g, "current_user", None),
        action="backup.export",
        entity_type="Backup",
        metadata={"total_items": data["total_items"]},
    )
    s.commit()

    payload = json.dumps(data, indent=2, ensure_ascii=False).encode("utf-8")
    stamp = data["exported_at"][:10]
    return send_file(
        io.BytesIO(payload),
        mimetype="application/json",
        as_attachment=True,
        download_name=f"medische-inventaris-backup-{stamp}.json",
        max_age=0,
    )


@bp.post("/backup/import")
@require_permission("backup.run")
def backup_import():
    s = db_session()
    f = request.files.get("backup_file")
    if not f or not f.filename:
        flash("Choose a backup file to import.", "danger")
        return redirect(url_for("backup.backup_get"))

    try:
        data = json.loads(f.read().decode("utf-8-sig"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        flash(f"The selected file is not a valid backup: {e}", "danger")
        return redirect(url_for("backup.backup_get"))

    try:
        stats = import_backup(s, data, getattr(g, "current_user", None))
        s.commit()
    except InvalidBackup as e:
        s.rollback()
        flash(f"Invalid backup: {e}", "danger")
        return redirect(url_for("backup.backup_get"))
    except SQLAlchemyError as e:
        s.rollback()
        current_app.logger.exception("Backup import failed")
        flash(f"Backup import failed; nothing was changed. ({e.__class__.__name__})", "danger")
        return redirect(url_for("backup.backup_get"))

    flash(f"Backup imported: {stats.items_imported} items, {stats.locations_imported} locations.", "success")
    return render_template("admin/backup/index.html", stats=stats)
