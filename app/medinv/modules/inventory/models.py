from __future__ import annotations

from datetime import date, datetime
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, Date, DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.medinv.constants import STOCK_IN_STOCK, is_low_stock
from app.medinv.models import Base

if TYPE_CHECKING:
    from app.medinv.modules.cabinets.models import Cabinet
    from app.medinv.modules.posts.models import AmbulancePost, PostContact


class Category(Base):
    __tablename__ = "categories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False, unique=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)


class MedicalItem(Base):
    __tablename__ = "medical_items"
    __table_args__ = (
        Index("idx_medical_items_name", "name"),
        Index("idx_medical_items_category", "category"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    category: Mapped[str] = mapped_column(String(128), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    search_terms: Mapped[str | None] = mapped_column(Text, nullable=True)
    expiry_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    alert_email: Mapped[str | None] = mapped_column(String(320), nullable=True)

    # External URL (CSV import) or an uploaded photo in storage.
    photo_url: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    photo_storage_key: Mapped[str | None] = mapped_column(String(512), nullable=True)
    photo_content_type: Mapped[str | None] = mapped_column(String(128), nullable=True)

    is_discontinued: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    replacement_item_id: Mapped[int | None] = mapped_column(
        ForeignKey("medical_items.id", ondelete="SET NULL"), nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    created_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    locations: Mapped[list["ItemLocation"]] = relationship(
        "ItemLocation",
        back_populates="item",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="selectin",
    )
    replacement_item: Mapped["MedicalItem | None"] = relationship("MedicalItem", remote_side="MedicalItem.id")

    @property
    def has_photo(self) -> bool:
        return bool(self.photo_storage_key or self.photo_url)

    @property
    def is_low_stock_anywhere(self) -> bool:
        return any(loc.is_low_stock for loc in self.locations)


class ItemLocation(Base):
    __tablename__ = "item_locations"
    __table_args__ = (
        UniqueConstraint("item_id", "ambulance_post_id", "cabinet_id", "drawer", name="uq_item_location"),
        Index("idx_item_locations_item", "item_id"),
        Index("idx_item_locations_post", "ambulance_post_id"),
        Index("idx_item_locations_status", "stock_status"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    item_id: Mapped[int] = mapped_column(ForeignKey("medical_items.id", ondelete="CASCADE"), nullable=False)
    ambulance_post_id: Mapped[str] = mapped_column(
        ForeignKey("ambulance_posts.id", ondelete="CASCADE"), nullable=False
    )
    cabinet_id: Mapped[str] = mapped_column(ForeignKey("cabinets.id", ondelete="RESTRICT"), nullable=False)
    drawer: Mapped[str | None] = mapped_column(String(64), nullable=True)
    contact_person_id: Mapped[int | None] = mapped_column(
        ForeignKey("post_contacts.id", ondelete="SET NULL"), nullable=True
    )

    stock_status: Mapped[str] = mapped_column(String(32), nullable=False, default=STOCK_IN_STOCK)
    is_low_stock: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    item: Mapped["MedicalItem"] = relationship("MedicalItem", back_populates="locations")
    ambulance_post: Mapped["AmbulancePost"] = relationship("AmbulancePost", lazy="joined")
    cabinet: Mapped["Cabinet"] = relationship("Cabinet", lazy="joined")
    contact_person: Mapped["PostContact | None"] = relationship("PostContact", lazy="joined")

    def set_stock_status(self, status: str) -> None:
        """Status and the derived low-stock flag only ever change together."""
        self.stock_status = status
        self.is_low_stock = is_low_stock(status)
