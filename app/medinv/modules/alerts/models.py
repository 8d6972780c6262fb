from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.medinv.models import Base

if TYPE_CHECKING:
    from app.medinv.modules.inventory.models import MedicalItem


class EmailConfig(Base):
    """SMTP settings. Singleton: the service only ever reads/writes the first row."""

    __tablename__ = "email_config"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    smtp_host: Mapped[str] = mapped_column(String(255), nullable=False)
    smtp_port: Mapped[int] = mapped_column(Integer, nullable=False, default=587)
    smtp_user: Mapped[str | None] = mapped_column(String(255), nullable=True)
    smtp_password: Mapped[str | None] = mapped_column(String(255), nullable=True)
    smtp_secure: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    from_email: Mapped[str] = mapped_column(String(320), nullable=False)
    from_name: Mapped[str] = mapped_column(String(255), nullable=False, default="Medische Inventaris")

    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)


class SupplyRequest(Base):
    __tablename__ = "supply_requests"
    __table_args__ = (
        Index("idx_supply_requests_item", "item_id"),
        Index("idx_supply_requests_post", "ambulance_post_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    item_id: Mapped[int] = mapped_column(ForeignKey("medical_items.id", ondelete="CASCADE"), nullable=False)
    item_location_id: Mapped[int | None] = mapped_column(
        ForeignKey("item_locations.id", ondelete="SET NULL"), nullable=True
    )
    ambulance_post_id: Mapped[str | None] = mapped_column(
        ForeignKey("ambulance_posts.id", ondelete="SET NULL"), nullable=True
    )
    recipient_email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    stock_status: Mapped[str] = mapped_column(String(32), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="sent")  # sent | failed
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_automatic: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    requested_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    requested_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    item: Mapped["MedicalItem"] = relationship("MedicalItem", lazy="joined")


class EmailNotification(Base):
    __tablename__ = "email_notifications"
    __table_args__ = (Index("idx_email_notifications_item", "item_id"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    item_id: Mapped[int | None] = mapped_column(ForeignKey("medical_items.id", ondelete="CASCADE"), nullable=True)
    recipient_email: Mapped[str] = mapped_column(String(320), nullable=False)
    subject: Mapped[str] = mapped_column(String(512), nullable=False)
    success: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    sent_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
