from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.medinv.models import Base


class AmbulancePost(Base):
    __tablename__ = "ambulance_posts"

    # Human-readable slug, e.g. "hilversum"; CSV imports reference posts by it.
    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    location: Mapped[str | None] = mapped_column(String(255), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    contacts: Mapped[list["PostContact"]] = relationship(
        "PostContact",
        back_populates="ambulance_post",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="PostContact.name",
        lazy="selectin",
    )


class PostContact(Base):
    __tablename__ = "post_contacts"
    __table_args__ = (Index("idx_post_contacts_post", "ambulance_post_id"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    ambulance_post_id: Mapped[str] = mapped_column(
        ForeignKey("ambulance_posts.id", ondelete="CASCADE"), nullable=False
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(320), nullable=False)
    department: Mapped[str | None] = mapped_column(String(255), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    ambulance_post: Mapped["AmbulancePost"] = relationship("AmbulancePost", back_populates="contacts")
