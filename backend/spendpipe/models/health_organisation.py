"""NHS organisation detail ORM model."""

from sqlalchemy import ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column

from spendpipe.models.base import Base, IdMixin, TimestampMixin


class HealthOrganisation(Base, IdMixin, TimestampMixin):
    """ODS attributes for a health-service entity."""

    __tablename__ = "health_organisations"

    entity_id: Mapped[int] = mapped_column(
        ForeignKey("entities.id", ondelete="CASCADE"),
        unique=True,
        nullable=False,
    )
    ods_code: Mapped[str] = mapped_column(String(32), unique=True, nullable=False)
    org_type: Mapped[str] = mapped_column(String(64), nullable=False)
    org_sub_type: Mapped[str | None] = mapped_column(String(128), nullable=True)
    role_code: Mapped[str | None] = mapped_column(String(16), nullable=True)
    parent_ods_code: Mapped[str | None] = mapped_column(String(32), nullable=True)
    official_website: Mapped[str | None] = mapped_column(String(512), nullable=True)
    is_active: Mapped[bool] = mapped_column(default=True, nullable=False)
