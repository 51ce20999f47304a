"""Declarative base and shared column mixins."""

from datetime import datetime

from sqlalchemy import DateTime, String, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from spendpipe.entity_resolution.similarity import normalize_org_name


class Base(DeclarativeBase):
    """Base class for all ORM models."""


class IdMixin:
    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)


class CreatedAtMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )


class TimestampMixin(CreatedAtMixin):
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )


def _name_key_default(context) -> str | None:
    return normalize_org_name(context.get_current_parameters().get("name") or "") or None


class NameKeyMixin:
    """Normalized ``name`` used to merge spellings of the same organisation."""

    name_key: Mapped[str | None] = mapped_column(String(512), index=True, nullable=True, default=_name_key_default)
