"""Government department detail ORM model."""

from sqlalchemy import JSON, ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column

from spendpipe.models.base import Base, IdMixin, TimestampMixin


class GovernmentDepartment(Base, IdMixin, TimestampMixin):
    """GOV.UK organisation attributes keyed by slug."""

    __tablename__ = "government_departments"

    entity_id: Mapped[int] = mapped_column(
        ForeignKey("entities.id", ondelete="CASCADE"),
        unique=True,
        nullable=False,
    )
    slug: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    acronym: Mapped[str | None] = mapped_column(String(64), nullable=True)
    organisation_type: Mapped[str | None] = mapped_column(String(64), nullable=True)
    organisation_state: Mapped[str | None] = mapped_column(String(64), nullable=True)
    link: Mapped[str | None] = mapped_column(String(512), nullable=True)
    parent_slugs_json: Mapped[list[str]] = mapped_column(JSON, default=list, nullable=False)
