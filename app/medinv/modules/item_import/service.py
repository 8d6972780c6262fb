from __future__ import annotations

import logging
import re
import secrets
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Callable

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from app.medinv.audit import record_event
from app.medinv.constants import DRAWER_PLACEHOLDER, STOCK_IN_STOCK
from app.medinv.modules.inventory import service as inventory_service
from app.medinv.modules.item_import.parsers import SUPPORTED_FORMATS
from app.medinv.modules.item_import.parsers.csv import ImportRow, ParsedImport, parse_item_csv
from app.medinv.modules.posts import service as posts_service
from app.medinv.storage import StorageError, storage_from_config

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.medinv.models import User

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], None]

_TOKEN_RE = re.compile(r"^[0-9a-f]{32}$")
_STAGED_CONTENT_TYPES = {
    "csv": "text/csv",
    "xlsx": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
}


@dataclass(frozen=True)
class RowFailure:
    row_number: int
    name: str
    reason: str


@dataclass
class ImportResult:
    attempted: int = 0
    imported: int = 0
    skipped: int = 0
    failures: list[RowFailure] = field(default_factory=list)
    locations_created: int = 0

    @property
    def failed(self) -> int:
        return len(self.failures)

    def summary(self) -> str:
        msg = f"{self.imported} of {self.attempted} items imported."
        if self.failed:
            msg += f" {self.failed} failed."
        if self.skipped:
            msg += f" {self.skipped} invalid row(s) skipped."
        return msg


# ---------- Staging between preview and commit ----------


def _staged_key(token: str, fmt: str = "csv") -> str:
    if not _TOKEN_RE.match(token or "") or fmt not in SUPPORTED_FORMATS:
        raise StorageError("Invalid import token.")
    return f"imports/{token}.{fmt}"


def stage_upload(file_bytes: bytes, fmt: str = "csv") -> str:
    token = secrets.token_hex(16)
    storage_from_config(current_app.config).put_bytes(
        _staged_key(token, fmt), file_bytes, content_type=_STAGED_CONTENT_TYPES[fmt]
    )
    return token


def load_staged(token: str, fmt: str = "csv") -> bytes:
    return storage_from_config(current_app.config).get_bytes(_staged_key(token, fmt))


def discard_staged(token: str, fmt: str = "csv") -> None:
    try:
        storage_from_config(current_app.config).delete(_staged_key(token, fmt))
    except (StorageError, OSError) as e:
        logger.warning("Could not discard staged import %s: %s", token, e)


# ---------- Commit ----------


def _import_row(s: "Session", row: ImportRow, user: "User | None") -> bool:
    """Create the item and, when post and cabinet are given, its first location. Returns True if a location was added."""
    item = inventory_service.create_item(s, row.item_payload(), user)
    if not row.has_location:
        return False

    contact = posts_service.find_contact_by_name(s, row.ambulance_post_id, row.contact_person)
    inventory_service.add_location(
        s,
        item,
        {
            "ambulance_post_id": row.ambulance_post_id,
            "cabinet_id": row.cabinet_id,
            "drawer": row.drawer or DRAWER_PLACEHOLDER,
            "contact_person_id": contact.id if contact else None,
            "stock_status": STOCK_IN_STOCK,
        },
        user,
    )
    return True


def commit_import(
    s: "Session",
    parsed: ParsedImport,
    user: "User | None",
    *,
    progress: ProgressCallback | None = None,
) -> ImportResult:
    """
    Import the valid rows one at a time, each inside its own savepoint.
    A failing row is rolled back and recorded; the remaining rows still run.
    The caller commits the session.
    """
    valid = parsed.valid_rows
    result = ImportResult(attempted=len(valid), skipped=len(parsed.invalid_rows))

    for done, row in enumerate(valid, start=1):
        savepoint = s.begin_nested()
        try:
            if _import_row(s, row, user):
                result.locations_created += 1
            savepoint.commit()
            result.imported += 1
        except (SQLAlchemyError, ValueError) as e:
            savepoint.rollback()
            reason = "; ".join(getattr(e, "errors", None) or [str(e)])
            logger.warning("Import row %s (%s) failed: %s", row.row_number, row.name, reason)
            result.failures.append(RowFailure(row.row_number, row.name, reason))
        if progress is not None:
            progress(done, len(valid))

    record_event(
        s,
        actor=user,
        action="item_import.run",
        entity_type="MedicalItem",
        metadata={
            "attempted": result.attempted,
            "imported": result.imported,
            "failed": result.failed,
            "skipped": result.skipped,
            "locations_created": result.locations_created,
        },
    )
    logger.info("Item import finished: %s", result.summary())
    return result


def import_csv_bytes(
    s: "Session",
    file_bytes: bytes,
    user: "User | None",
    *,
    progress: ProgressCallback | None = None,
) -> ImportResult:
    """Parse and commit in one go. Raises ImportStructureError for unusable files."""
    return commit_import(s, parse_item_csv(file_bytes), user, progress=progress)
