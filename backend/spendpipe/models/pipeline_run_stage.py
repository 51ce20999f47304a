"""Pipeline run stage ORM model."""

from datetime import datetime

from sqlalchemy import JSON, DateTime, ForeignKey, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from spendpipe.models.base import Base, CreatedAtMixin, IdMixin


class PipelineRunStage(Base, IdMixin, CreatedAtMixin):
    """Execution record of one stage inside a run."""

    __tablename__ = "pipeline_run_stages"
    __table_args__ = (UniqueConstraint("run_id", "stage_id", name="uq_pipeline_run_stages_run_stage"),)

    run_id: Mapped[int] = mapped_column(ForeignKey("pipeline_runs.id", ondelete="CASCADE"), index=True, nullable=False)
    stage_id: Mapped[str] = mapped_column(String(64), nullable=False)
    status: Mapped[str] = mapped_column(String(32), default="queued", nullable=False)
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    finished_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    metrics_json: Mapped[dict[str, object] | None] = mapped_column(JSON, nullable=True)
    warnings_json: Mapped[list[str]] = mapped_column(JSON, default=list, nullable=False)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
