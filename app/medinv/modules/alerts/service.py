from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING

from flask import current_app, render_template

from app.medinv.audit import record_event
from app.medinv.constants import STOCK_STATUS_LABELS
from app.medinv.modules.alerts.mailer import SmtpSettings, send_email
from app.medinv.utils import clean_text, is_valid_email, parse_bool, parse_int

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.medinv.models import User
    from app.medinv.modules.alerts.models import EmailConfig, SupplyRequest
    from app.medinv.modules.inventory.models import ItemLocation

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SupplyRequestResult:
    ok: bool
    message: str
    supply_request: "SupplyRequest"


# ---------- Email configuration ----------


def get_email_config(s: "Session") -> "EmailConfig | None":
    from app.medinv.modules.alerts.models import EmailConfig

    return s.query(EmailConfig).order_by(EmailConfig.id.asc()).first()


def validate_email_config_payload(payload: dict) -> list[str]:
    errors = []
    if not (payload.get("smtp_host") or "").strip():
        errors.append("SMTP host is required.")
    port = parse_int(str(payload.get("smtp_port") or ""))
    if port is None or not (1 <= port <= 65535):
        errors.append("SMTP port must be a number between 1 and 65535.")
    if not is_valid_email(payload.get("from_email")):
        errors.append("A valid sender address is required.")
    return errors


def save_email_config(s: "Session", payload: dict, user: "User | None") -> "EmailConfig":
    from app.medinv.modules.alerts.models import EmailConfig

    config = get_email_config(s)
    if config is None:
        config = EmailConfig(smtp_host="", from_email="")
        s.add(config)

    config.smtp_host = (payload.get("smtp_host") or "").strip()
    config.smtp_port = parse_int(str(payload.get("smtp_port") or "")) or 587
    config.smtp_user = clean_text(payload.get("smtp_user"))
    # Blank password on the form keeps the stored one.
    new_password = payload.get("smtp_password") or ""
    if new_password:
        config.smtp_password = new_password
    config.smtp_secure = parse_bool(payload.get("smtp_secure"))
    config.from_email = (payload.get("from_email") or "").strip()
    config.from_name = clean_text(payload.get("from_name")) or "Medische Inventaris"
    config.updated_at = datetime.utcnow()
    s.flush()

    record_event(
        s,
        actor=user,
        action="email_config.save",
        entity_type="EmailConfig",
        entity_id=str(config.id),
        metadata={"smtp_host": config.smtp_host, "smtp_port": config.smtp_port, "from_email": config.from_email},
    )
    return config


def smtp_settings(s: "Session") -> SmtpSettings:
    """Database config wins; otherwise fall back to SMTP_* environment settings."""
    config = get_email_config(s)
    if config is not None:
        return SmtpSettings(
            host=config.smtp_host,
            port=config.smtp_port,
            user=config.smtp_user,
            password=config.smtp_password,
            secure=config.smtp_secure,
            from_email=config.from_email,
            from_name=config.from_name,
        )
    cfg = current_app.config
    return SmtpSettings(
        host=cfg.get("SMTP_HOST") or "",
        port=int(cfg.get("SMTP_PORT") or 587),
        user=cfg.get("SMTP_USER") or None,
        password=cfg.get("SMTP_PASSWORD") or None,
        secure=bool(cfg.get("SMTP_SECURE", True)),
        from_email=cfg.get("EMAIL_FROM") or "",
        from_name=cfg.get("EMAIL_FROM_NAME") or "Medische Inventaris",
    )


def send_test_email(s: "Session", to: str, user: "User | None") -> tuple[bool, str]:
    settings = smtp_settings(s)
    ok, message = send_email(
        settings,
        to=to,
        subject="Test e-mail - Medische Inventaris",
        text="Dit is een test e-mail. De SMTP instellingen werken correct.",
    )
    record_event(
        s,
        actor=user,
        action="email_config.test",
        entity_type="EmailConfig",
        metadata={"to": to, "ok": ok, "message": message},
    )
    return ok, message


# ---------- Supply requests ----------


def resolve_recipient(loc: "ItemLocation", settings: SmtpSettings) -> str | None:
    """Contact person of the location, then the item's alert address, then the sender itself."""
    contact = loc.contact_person
    if contact is not None and contact.is_active and contact.email:
        return contact.email
    if loc.item.alert_email:
        return loc.item.alert_email
    return settings.from_email or None


def _record_notification(s: "Session", *, item_id: int, recipient: str, subject: str, success: bool) -> None:
    from app.medinv.modules.alerts.models import EmailNotification

    s.add(EmailNotification(item_id=item_id, recipient_email=recipient, subject=subject, success=success))


def send_supply_request(
    s: "Session",
    loc: "ItemLocation",
    user: "User | None",
    *,
    automatic: bool = False,
) -> SupplyRequestResult:
    from app.medinv.modules.alerts.models import SupplyRequest

    settings = smtp_settings(s)
    item = loc.item
    post = loc.ambulance_post
    recipient = resolve_recipient(loc, settings)

    subject = f"Aanvulverzoek: {item.name} ({post.name})"
    context = {
        "item": item,
        "location": loc,
        "post": post,
        "cabinet": loc.cabinet,
        "status_label": STOCK_STATUS_LABELS.get(loc.stock_status, loc.stock_status),
        "requested_by": user.email if user else None,
        "now": datetime.now(),
    }

    if not recipient:
        ok, message = False, "No recipient: location has no contact person and item has no alert email."
        logger.warning("Supply request for location %s skipped: %s", loc.id, message)
    else:
        ok, message = send_email(
            settings,
            to=recipient,
            subject=subject,
            text=render_template("email/supply_request.txt", **context),
            html=render_template("email/supply_request.html", **context),
        )

    req = SupplyRequest(
        item_id=item.id,
        item_location_id=loc.id,
        ambulance_post_id=loc.ambulance_post_id,
        recipient_email=recipient,
        stock_status=loc.stock_status,
        status="sent" if ok else "failed",
        error=None if ok else message,
        is_automatic=automatic,
        requested_by_user_id=user.id if user else None,
    )
    s.add(req)
    if recipient:
        _record_notification(s, item_id=item.id, recipient=recipient, subject=subject, success=ok)
    s.flush()

    record_event(
        s,
        actor=user,
        action="alert.supply_request",
        entity_type="ItemLocation",
        entity_id=str(loc.id),
        metadata={"recipient": recipient, "ok": ok, "automatic": automatic, "stock_status": loc.stock_status},
    )
    if ok:
        return SupplyRequestResult(True, f"Supply request sent to {recipient}.", req)
    return SupplyRequestResult(False, message, req)


def maybe_send_low_stock_alert(s: "Session", loc: "ItemLocation", user: "User | None") -> SupplyRequestResult | None:
    """Automatic alert for a location that just went low. Silent when SMTP is not set up."""
    if not smtp_settings(s).is_configured:
        logger.info("Low-stock alert for location %s skipped: SMTP not configured", loc.id)
        return None
    return send_supply_request(s, loc, user, automatic=True)


def recent_supply_requests(s: "Session", limit: int = 50) -> list["SupplyRequest"]:
    from app.medinv.modules.alerts.models import SupplyRequest

    return s.query(SupplyRequest).order_by(SupplyRequest.requested_at.desc(), SupplyRequest.id.desc()).limit(limit).all()
