"""Uploaded workbook asset model."""

from sqlalchemy import BigInteger, String
from sqlalchemy.orm import Mapped, mapped_column

from spendpipe.models.base import Base, CreatedAtMixin, IdMixin


class PipelineAsset(Base, IdMixin, CreatedAtMixin):
    """Object-storage reference to an uploaded spend workbook."""

    __tablename__ = "pipeline_assets"

    object_key: Mapped[str] = mapped_column(String(1024), unique=True, nullable=False)
    original_name: Mapped[str] = mapped_column(String(512), nullable=False)
    content_type: Mapped[str | None] = mapped_column(String(255), nullable=True)
    size_bytes: Mapped[int] = mapped_column(BigInteger, nullable=False)
    checksum: Mapped[str | None] = mapped_column(String(128), index=True, nullable=True)
