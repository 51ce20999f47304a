"""Pipeline run ORM model."""

from datetime import datetime

from sqlalchemy import JSON, DateTime, ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column

from spendpipe.models.base import Base, CreatedAtMixin, IdMixin


class PipelineRun(Base, IdMixin, CreatedAtMixin):
    """One execution of the stage list for an asset."""

    __tablename__ = "pipeline_runs"

    asset_id: Mapped[int | None] = mapped_column(
        ForeignKey("pipeline_assets.id", ondelete="SET NULL"),
        index=True,
        nullable=True,
    )
    org_type: Mapped[str] = mapped_column(String(32), default="nhs", nullable=False)
    trigger: Mapped[str] = mapped_column(String(32), default="web", nullable=False)
    created_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    status: Mapped[str] = mapped_column(String(32), default="queued", index=True, nullable=False)
    dry_run: Mapped[bool] = mapped_column(default=False, nullable=False)
    from_stage_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    to_stage_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    params_json: Mapped[dict[str, object]] = mapped_column(JSON, default=dict, nullable=False)
    error: Mapped[str | None] = mapped_column(String(4000), nullable=True)
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    finished_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
