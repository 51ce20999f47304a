"""Canonical entity ORM model."""

from datetime import datetime
from decimal import Decimal

from sqlalchemy import DateTime, Float, Numeric, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from spendpipe.models.base import Base, IdMixin, TimestampMixin


class Entity(Base, IdMixin, TimestampMixin):
    """Deduplicated, registry-identified organisation."""

    __tablename__ = "entities"
    __table_args__ = (UniqueConstraint("entity_type", "registry_id", name="uq_entities_type_registry_id"),)

    entity_type: Mapped[str] = mapped_column(String(64), index=True, nullable=False)
    registry_id: Mapped[str] = mapped_column(String(128), nullable=False)
    name: Mapped[str] = mapped_column(String(512), index=True, nullable=False)
    status: Mapped[str | None] = mapped_column(String(64), nullable=True)
    address_line_1: Mapped[str | None] = mapped_column(String(255), nullable=True)
    address_line_2: Mapped[str | None] = mapped_column(String(255), nullable=True)
    locality: Mapped[str | None] = mapped_column(String(255), nullable=True)
    postal_code: Mapped[str | None] = mapped_column(String(16), index=True, nullable=True)
    country: Mapped[str | None] = mapped_column(String(128), nullable=True)
    latitude: Mapped[float | None] = mapped_column(Float, nullable=True)
    longitude: Mapped[float | None] = mapped_column(Float, nullable=True)
    uk_region: Mapped[str | None] = mapped_column(String(128), nullable=True)
    uk_country: Mapped[str | None] = mapped_column(String(64), nullable=True)
    location_source: Mapped[str | None] = mapped_column(String(64), nullable=True)
    location_updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    buyer_total_spend: Mapped[Decimal] = mapped_column(Numeric(18, 2), default=Decimal("0"), nullable=False)
    supplier_total_received: Mapped[Decimal] = mapped_column(
        Numeric(18, 2),
        default=Decimal("0"),
        nullable=False,
    )
    spend_totals_updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
