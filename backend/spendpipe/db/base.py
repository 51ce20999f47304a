"""SQLAlchemy metadata registry import for Alembic."""

from spendpipe.models import (
    AuditLog,
    Buyer,
    Company,
    Council,
    Entity,
    GovernmentDepartment,
    HealthOrganisation,
    PipelineAsset,
    PipelineRun,
    PipelineRunLog,
    PipelineRunStage,
    PipelineSkippedRow,
    SpendEntry,
    Supplier,
)
from spendpipe.models.base import Base

__all__ = [
    "Base",
    "AuditLog",
    "Buyer",
    "Company",
    "Council",
    "Entity",
    "GovernmentDepartment",
    "HealthOrganisation",
    "PipelineAsset",
    "PipelineRun",
    "PipelineRunLog",
    "PipelineRunStage",
    "PipelineSkippedRow",
    "SpendEntry",
    "Supplier",
]
