"""Pipeline run log ORM model."""

from datetime import datetime

from sqlalchemy import JSON, DateTime, ForeignKey, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from spendpipe.models.base import Base, IdMixin


class PipelineRunLog(Base, IdMixin):
    """Append-only structured log line for a run."""

    __tablename__ = "pipeline_run_logs"

    run_id: Mapped[int] = mapped_column(ForeignKey("pipeline_runs.id", ondelete="CASCADE"), index=True, nullable=False)
    ts: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    level: Mapped[str] = mapped_column(String(16), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    meta_json: Mapped[dict[str, object] | None] = mapped_column(JSON, nullable=True)
