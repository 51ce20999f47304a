"""Audit log ORM model."""

from datetime import datetime

from sqlalchemy import JSON, DateTime, ForeignKey, String, func
from sqlalchemy.orm import Mapped, mapped_column

from spendpipe.models.base import Base, IdMixin


class AuditLog(Base, IdMixin):
    """Before/after record of one mutation, attributed to an actor."""

    __tablename__ = "audit_log"

    ts: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    actor_type: Mapped[str] = mapped_column(String(32), nullable=False)
    actor_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    run_id: Mapped[int | None] = mapped_column(
        ForeignKey("pipeline_runs.id", ondelete="SET NULL"),
        index=True,
        nullable=True,
    )
    stage_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    table_name: Mapped[str] = mapped_column(String(64), nullable=False)
    record_pk: Mapped[str] = mapped_column(String(64), nullable=False)
    action: Mapped[str] = mapped_column(String(32), nullable=False)
    before_json: Mapped[dict[str, object] | None] = mapped_column(JSON, nullable=True)
    after_json: Mapped[dict[str, object] | None] = mapped_column(JSON, nullable=True)
    reason: Mapped[str | None] = mapped_column(String(1024), nullable=True)
