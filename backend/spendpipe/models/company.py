"""Company detail ORM model."""

from datetime import datetime

from sqlalchemy import JSON, DateTime, ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column

from spendpipe.models.base import Base, IdMixin, TimestampMixin


class Company(Base, IdMixin, TimestampMixin):
    """Companies House profile attached to a canonical entity."""

    __tablename__ = "companies"

    entity_id: Mapped[int] = mapped_column(
        ForeignKey("entities.id", ondelete="CASCADE"),
        unique=True,
        nullable=False,
    )
    company_number: Mapped[str] = mapped_column(String(16), unique=True, nullable=False)
    company_name: Mapped[str] = mapped_column(String(512), nullable=False)
    company_status: Mapped[str | None] = mapped_column(String(64), nullable=True)
    company_type: Mapped[str | None] = mapped_column(String(64), nullable=True)
    date_of_creation: Mapped[str | None] = mapped_column(String(16), nullable=True)
    jurisdiction: Mapped[str | None] = mapped_column(String(64), nullable=True)
    sic_codes_json: Mapped[list[str]] = mapped_column(JSON, default=list, nullable=False)
    previous_names_json: Mapped[list[dict[str, object]]] = mapped_column(JSON, default=list, nullable=False)
    raw_profile_json: Mapped[dict[str, object]] = mapped_column(JSON, default=dict, nullable=False)
    fetched_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
