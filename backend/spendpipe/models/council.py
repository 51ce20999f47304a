"""Council detail ORM model."""

from sqlalchemy import ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column

from spendpipe.models.base import Base, IdMixin, TimestampMixin


class Council(Base, IdMixin, TimestampMixin):
    """Local authority attributes keyed by GSS code."""

    __tablename__ = "councils"

    entity_id: Mapped[int] = mapped_column(
        ForeignKey("entities.id", ondelete="CASCADE"),
        unique=True,
        nullable=False,
    )
    gss_code: Mapped[str] = mapped_column(String(16), unique=True, nullable=False)
    ons_code: Mapped[str | None] = mapped_column(String(16), nullable=True)
    council_type: Mapped[str] = mapped_column(String(32), nullable=False)
    tier: Mapped[str | None] = mapped_column(String(16), nullable=True)
    homepage_url: Mapped[str | None] = mapped_column(String(512), nullable=True)
    region: Mapped[str | None] = mapped_column(String(128), nullable=True)
    nation: Mapped[str | None] = mapped_column(String(64), nullable=True)
    parent_entity_id: Mapped[int | None] = mapped_column(
        ForeignKey("entities.id", ondelete="SET NULL"),
        index=True,
        nullable=True,
    )
