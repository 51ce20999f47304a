"""Supplier ORM model."""

from datetime import datetime
from decimal import Decimal

from sqlalchemy import DateTime, ForeignKey, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from spendpipe.models.base import Base, IdMixin, NameKeyMixin, TimestampMixin


class Supplier(Base, IdMixin, NameKeyMixin, TimestampMixin):
    """Payee named in the supplier column of a spend sheet."""

    __tablename__ = "suppliers"

    name: Mapped[str] = mapped_column(String(512), unique=True, nullable=False)
    entity_id: Mapped[int | None] = mapped_column(
        ForeignKey("entities.id", ondelete="SET NULL"),
        index=True,
        nullable=True,
    )
    match_status: Mapped[str] = mapped_column(String(32), default="pending", index=True, nullable=False)
    match_confidence: Mapped[Decimal | None] = mapped_column(Numeric(5, 2), nullable=True)
    manually_verified: Mapped[bool] = mapped_column(default=False, nullable=False)
    match_attempted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
