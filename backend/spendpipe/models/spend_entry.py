"""Spend entry ORM model."""

from datetime import date
from decimal import Decimal

from sqlalchemy import Date, ForeignKey, Integer, Numeric, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from spendpipe.models.base import Base, CreatedAtMixin, IdMixin


class SpendEntry(Base, IdMixin, CreatedAtMixin):
    """One ingested payment row with its source provenance."""

    __tablename__ = "spend_entries"
    __table_args__ = (
        UniqueConstraint("asset_id", "source_sheet", "source_row_number", name="uq_spend_entries_asset_sheet_row"),
    )

    asset_id: Mapped[int | None] = mapped_column(
        ForeignKey("pipeline_assets.id", ondelete="SET NULL"),
        index=True,
        nullable=True,
    )
    raw_buyer: Mapped[str] = mapped_column(String(512), nullable=False)
    raw_supplier: Mapped[str] = mapped_column(String(512), nullable=False)
    buyer_id: Mapped[int] = mapped_column(ForeignKey("buyers.id", ondelete="CASCADE"), index=True, nullable=False)
    supplier_id: Mapped[int | None] = mapped_column(
        ForeignKey("suppliers.id", ondelete="SET NULL"),
        index=True,
        nullable=True,
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    payment_date: Mapped[date] = mapped_column(Date, index=True, nullable=False)
    raw_amount: Mapped[str | None] = mapped_column(String(128), nullable=True)
    payment_date_raw: Mapped[str | None] = mapped_column(String(128), nullable=True)
    source_sheet: Mapped[str] = mapped_column(String(255), nullable=False)
    source_row_number: Mapped[int] = mapped_column(Integer, nullable=False)
