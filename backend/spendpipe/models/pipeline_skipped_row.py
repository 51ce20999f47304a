"""Skipped import row ORM model."""

from sqlalchemy import JSON, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from spendpipe.models.base import Base, CreatedAtMixin, IdMixin


class PipelineSkippedRow(Base, IdMixin, CreatedAtMixin):
    """Spreadsheet row rejected during import, kept for operator triage."""

    __tablename__ = "pipeline_skipped_rows"

    run_id: Mapped[int] = mapped_column(ForeignKey("pipeline_runs.id", ondelete="CASCADE"), index=True, nullable=False)
    stage_id: Mapped[str] = mapped_column(String(64), nullable=False)
    sheet_name: Mapped[str] = mapped_column(String(255), nullable=False)
    row_number: Mapped[int] = mapped_column(Integer, nullable=False)
    reason: Mapped[str] = mapped_column(String(512), nullable=False)
    raw_data_json: Mapped[list[object]] = mapped_column(JSON, default=list, nullable=False)
