from __future__ import annotations

import io

from flask import Blueprint, flash, g, redirect, render_template, request, send_file, url_for

from app.medinv.db import db_session
from app.medinv.modules.item_import.parsers import SUPPORTED_FORMATS, detect_format, parse_item_file
from app.medinv.modules.item_import.parsers.csv import ImportStructureError, build_template_csv
from app.medinv.modules.item_import.service import commit_import, discard_staged, load_staged, stage_upload
from app.medinv.rbac import require_permission
from app.medinv.storage import StorageError

bp = Blueprint("item_import", __name__)


def _form_format() -> str:
    fmt = (request.form.get("format") or "csv").strip()
    return fmt if fmt in SUPPORTED_FORMATS else "csv"


@bp.get("/import")
@require_permission("import.run")
def import_get():
    return render_template("admin/import/upload.html")


@bp.get("/import/template.csv")
@require_permission("import.run")
def import_template():
    return send_file(
        io.BytesIO(build_template_csv()),
        mimetype="text/csv",
        as_attachment=True,
        download_name="medische_items_template.csv",
        max_age=0,
    )


@bp.post("/import/preview")
@require_permission("import.run")
def import_preview():
    f = request.files.get("csv_file")
    if not f or not f.filename:
        flash("Choose a CSV or Excel file to import.", "danger")
        return redirect(url_for("item_import.import_get"))

    file_bytes = f.read()
    try:
        fmt = detect_format(f.filename)
        parsed = parse_item_file(file_bytes, fmt)
    except ImportStructureError as e:
        flash(str(e), "danger")
        return redirect(url_for("item_import.import_get"))

    token = stage_upload(file_bytes, fmt)
    return render_template("admin/import/preview.html", parsed=parsed, token=token, fmt=fmt, filename=f.filename)


@bp.post("/import/commit")
@require_permission("import.run")
def import_commit():
    s = db_session()
    u = getattr(g, "current_user", None)
    token = (request.form.get("token") or "").strip()
    fmt = _form_format()

    try:
        parsed = parse_item_file(load_staged(token, fmt), fmt)
    except StorageError:
        flash("The uploaded file has expired. Please upload it again.", "danger")
        return redirect(url_for("item_import.import_get"))
    except ImportStructureError as e:
        flash(str(e), "danger")
        return redirect(url_for("item_import.import_get"))

    if not parsed.valid_rows:
        flash("There are no valid rows to import.", "danger")
        return redirect(url_for("item_import.import_get"))

    result = commit_import(s, parsed, u)
    s.commit()
    discard_staged(token, fmt)

    flash(f"Import finished: {result.summary()}", "danger" if result.failed else "success")
    return render_template("admin/import/result.html", result=result)


@bp.post("/import/cancel")
@require_permission("import.run")
def import_cancel():
    token = (request.form.get("token") or "").strip()
    if token:
        discard_staged(token, _form_format())
    return redirect(url_for("item_import.import_get"))
