from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.medinv.constants import DEFAULT_CABINET_COLOR
from app.medinv.models import Base


class Cabinet(Base):
    __tablename__ = "cabinets"

    id: Mapped[str] = mapped_column(String(10), primary_key=True)  # short code, e.g. "A"
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    abbreviation: Mapped[str] = mapped_column(String(3), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    location: Mapped[str | None] = mapped_column(String(255), nullable=True)
    color: Mapped[str | None] = mapped_column(String(20), nullable=True, default=DEFAULT_CABINET_COLOR)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)


class PostCabinetOrder(Base):
    """Display sequence of cabinets for one ambulance post."""

    __tablename__ = "post_cabinet_orders"
    __table_args__ = (
        UniqueConstraint("ambulance_post_id", "cabinet_id", name="uq_post_cabinet_order"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    ambulance_post_id: Mapped[str] = mapped_column(
        ForeignKey("ambulance_posts.id", ondelete="CASCADE"), nullable=False
    )
    cabinet_id: Mapped[str] = mapped_column(ForeignKey("cabinets.id", ondelete="CASCADE"), nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    cabinet: Mapped["Cabinet"] = relationship("Cabinet", lazy="joined")
