"""Pipeline run, asset and diagnostics schemas."""

from datetime import date, datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

OrgTypeParam = Literal["nhs", "council", "government_department"]


class PipelineAssetRead(BaseModel):
    """Serialized uploaded workbook reference."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    object_key: str
    original_name: str
    content_type: str | None
    size_bytes: int
    checksum: str | None
    created_at: datetime


class AssetPresignRequest(BaseModel):
    original_name: str = Field(min_length=1, max_length=512)
    size_bytes: int = Field(gt=0)
    content_type: str | None = None
    checksum: str | None = Field(default=None, max_length=128)
    force: bool = False


class AssetPresignResponse(BaseModel):
    asset: PipelineAssetRead
    upload_url: str
    expires_in: int


class AssetDownloadResponse(BaseModel):
    url: str
    expires_in: int


class PipelineRunCreate(BaseModel):
    """Request payload for queuing a run."""

    asset_id: int | None = Field(default=None, gt=0)
    org_type: OrgTypeParam = "nhs"
    dry_run: bool = False
    from_stage_id: str | None = None
    to_stage_id: str | None = None
    params: dict[str, Any] = Field(default_factory=dict)
    created_by: str | None = None


class PipelineRunRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    asset_id: int | None
    org_type: str
    trigger: str
    created_by: str | None
    status: str
    dry_run: bool
    from_stage_id: str | None
    to_stage_id: str | None
    params_json: dict[str, Any]
    error: str | None
    created_at: datetime
    started_at: datetime | None
    finished_at: datetime | None


class PipelineRunListItem(PipelineRunRead):
    asset_original_name: str | None = None


class PipelineRunsListResponse(BaseModel):
    """Paginated run list payload."""

    items: list[PipelineRunListItem]
    total: int
    limit: int
    offset: int


class PipelineRunStageRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    stage_id: str
    status: str
    started_at: datetime | None
    finished_at: datetime | None
    metrics_json: dict[str, Any] | None
    warnings_json: list[str]
    error: str | None


class PipelineRunLogRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    ts: datetime
    level: str
    message: str
    meta_json: dict[str, Any] | None


class PipelineRunDetail(BaseModel):
    """Run with its asset, stages and most recent logs."""

    run: PipelineRunRead
    asset: PipelineAssetRead | None
    stages: list[PipelineRunStageRead]
    logs: list[PipelineRunLogRead]


class SkippedRowRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    stage_id: str
    sheet_name: str
    row_number: int
    reason: str
    raw_data_json: list[Any]


class SkippedRowsResponse(BaseModel):
    items: list[SkippedRowRead]
    total: int
    limit: int
    offset: int


class RunSupplierItem(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    match_status: str
    entity_id: int | None


class PipelineRunSummary(BaseModel):
    """Supplier and date-range overview of the data a run imported."""

    run_id: int
    asset_id: int | None
    supplier_count: int
    suppliers: list[RunSupplierItem]
    earliest_payment_date: date | None
    latest_payment_date: date | None


class PipelineRunDeleted(BaseModel):
    run_id: int
    status: str
    spend_entries_deleted: int
