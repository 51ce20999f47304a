"""ORM models package exports."""

from spendpipe.models.audit_log import AuditLog
from spendpipe.models.buyer import Buyer
from spendpipe.models.company import Company
from spendpipe.models.council import Council
from spendpipe.models.entity import Entity
from spendpipe.models.government_department import GovernmentDepartment
from spendpipe.models.health_organisation import HealthOrganisation
from spendpipe.models.pipeline_asset import PipelineAsset
from spendpipe.models.pipeline_run import PipelineRun
from spendpipe.models.pipeline_run_log import PipelineRunLog
from spendpipe.models.pipeline_run_stage import PipelineRunStage
from spendpipe.models.pipeline_skipped_row import PipelineSkippedRow
from spendpipe.models.spend_entry import SpendEntry
from spendpipe.models.supplier import Supplier

__all__ = [
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
