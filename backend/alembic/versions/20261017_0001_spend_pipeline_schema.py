"""spend pipeline schema

Revision ID: 20261017_0001
Revises:
Create Date: 2026-10-17 00:00:01
"""

from collections.abc import Sequence

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "20261017_0001"
down_revision: str | None = None
branch_labels: Sequence[str] | None = None
depends_on: Sequence[str] | None = None


def _id() -> sa.Column:
    return sa.Column("id", sa.Integer(), autoincrement=True, nullable=False)


def _created_at() -> sa.Column:
    return sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False)


def _updated_at() -> sa.Column:
    return sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False)


def upgrade() -> None:
    op.create_table(
        "entities",
        _id(),
        sa.Column("entity_type", sa.String(length=64), nullable=False),
        sa.Column("registry_id", sa.String(length=128), nullable=False),
        sa.Column("name", sa.String(length=512), nullable=False),
        sa.Column("status", sa.String(length=64), nullable=True),
        sa.Column("address_line_1", sa.String(length=255), nullable=True),
        sa.Column("address_line_2", sa.String(length=255), nullable=True),
        sa.Column("locality", sa.String(length=255), nullable=True),
        sa.Column("postal_code", sa.String(length=16), nullable=True),
        sa.Column("country", sa.String(length=128), nullable=True),
        sa.Column("latitude", sa.Float(), nullable=True),
        sa.Column("longitude", sa.Float(), nullable=True),
        sa.Column("uk_region", sa.String(length=128), nullable=True),
        sa.Column("uk_country", sa.String(length=64), nullable=True),
        sa.Column("location_source", sa.String(length=64), nullable=True),
        sa.Column("location_updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("buyer_total_spend", sa.Numeric(18, 2), server_default=sa.text("0"), nullable=False),
        sa.Column("supplier_total_received", sa.Numeric(18, 2), server_default=sa.text("0"), nullable=False),
        sa.Column("spend_totals_updated_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
        _updated_at(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("entity_type", "registry_id", name="uq_entities_type_registry_id"),
    )
    op.create_index("ix_entities_entity_type", "entities", ["entity_type"], unique=False)
    op.create_index("ix_entities_name", "entities", ["name"], unique=False)
    op.create_index("ix_entities_postal_code", "entities", ["postal_code"], unique=False)

    op.create_table(
        "companies",
        _id(),
        sa.Column("entity_id", sa.Integer(), nullable=False),
        sa.Column("company_number", sa.String(length=16), nullable=False),
        sa.Column("company_name", sa.String(length=512), nullable=False),
        sa.Column("company_status", sa.String(length=64), nullable=True),
        sa.Column("company_type", sa.String(length=64), nullable=True),
        sa.Column("date_of_creation", sa.String(length=16), nullable=True),
        sa.Column("jurisdiction", sa.String(length=64), nullable=True),
        sa.Column("sic_codes_json", sa.JSON(), nullable=False),
        sa.Column("previous_names_json", sa.JSON(), nullable=False),
        sa.Column("raw_profile_json", sa.JSON(), nullable=False),
        sa.Column("fetched_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
        _updated_at(),
        sa.ForeignKeyConstraint(["entity_id"], ["entities.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("entity_id"),
        sa.UniqueConstraint("company_number"),
    )

    op.create_table(
        "health_organisations",
        _id(),
        sa.Column("entity_id", sa.Integer(), nullable=False),
        sa.Column("ods_code", sa.String(length=32), nullable=False),
        sa.Column("org_type", sa.String(length=64), nullable=False),
        sa.Column("org_sub_type", sa.String(length=128), nullable=True),
        sa.Column("role_code", sa.String(length=16), nullable=True),
        sa.Column("parent_ods_code", sa.String(length=32), nullable=True),
        sa.Column("official_website", sa.String(length=512), nullable=True),
        sa.Column("is_active", sa.Boolean(), server_default=sa.text("true"), nullable=False),
        _created_at(),
        _updated_at(),
        sa.ForeignKeyConstraint(["entity_id"], ["entities.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("entity_id"),
        sa.UniqueConstraint("ods_code"),
    )

    op.create_table(
        "councils",
        _id(),
        sa.Column("entity_id", sa.Integer(), nullable=False),
        sa.Column("gss_code", sa.String(length=16), nullable=False),
        sa.Column("ons_code", sa.String(length=16), nullable=True),
        sa.Column("council_type", sa.String(length=32), nullable=False),
        sa.Column("tier", sa.String(length=16), nullable=True),
        sa.Column("homepage_url", sa.String(length=512), nullable=True),
        sa.Column("region", sa.String(length=128), nullable=True),
        sa.Column("nation", sa.String(length=64), nullable=True),
        sa.Column("parent_entity_id", sa.Integer(), nullable=True),
        _created_at(),
        _updated_at(),
        sa.ForeignKeyConstraint(["entity_id"], ["entities.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["parent_entity_id"], ["entities.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("entity_id"),
        sa.UniqueConstraint("gss_code"),
    )
    op.create_index("ix_councils_parent_entity_id", "councils", ["parent_entity_id"], unique=False)

    op.create_table(
        "government_departments",
        _id(),
        sa.Column("entity_id", sa.Integer(), nullable=False),
        sa.Column("slug", sa.String(length=255), nullable=False),
        sa.Column("acronym", sa.String(length=64), nullable=True),
        sa.Column("organisation_type", sa.String(length=64), nullable=True),
        sa.Column("organisation_state", sa.String(length=64), nullable=True),
        sa.Column("link", sa.String(length=512), nullable=True),
        sa.Column("parent_slugs_json", sa.JSON(), nullable=False),
        _created_at(),
        _updated_at(),
        sa.ForeignKeyConstraint(["entity_id"], ["entities.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("entity_id"),
        sa.UniqueConstraint("slug"),
    )

    op.create_table(
        "buyers",
        _id(),
        sa.Column("name", sa.String(length=512), nullable=False),
        sa.Column("name_key", sa.String(length=512), nullable=True),
        sa.Column("org_type", sa.String(length=32), nullable=False),
        sa.Column("entity_id", sa.Integer(), nullable=True),
        sa.Column("match_status", sa.String(length=32), server_default="pending", nullable=False),
        sa.Column("match_confidence", sa.Numeric(5, 2), nullable=True),
        sa.Column("manually_verified", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        sa.Column("match_attempted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("official_website", sa.String(length=512), nullable=True),
        sa.Column("spending_data_url", sa.String(length=1024), nullable=True),
        sa.Column("missing_data_note", sa.String(length=1024), nullable=True),
        sa.Column("verified_via", sa.String(length=255), nullable=True),
        _created_at(),
        _updated_at(),
        sa.ForeignKeyConstraint(["entity_id"], ["entities.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("name"),
    )
    op.create_index("ix_buyers_org_type", "buyers", ["org_type"], unique=False)
    op.create_index("ix_buyers_entity_id", "buyers", ["entity_id"], unique=False)
    op.create_index("ix_buyers_match_status", "buyers", ["match_status"], unique=False)
    op.create_index("ix_buyers_name_key", "buyers", ["name_key"], unique=False)

    op.create_table(
        "suppliers",
        _id(),
        sa.Column("name", sa.String(length=512), nullable=False),
        sa.Column("name_key", sa.String(length=512), nullable=True),
        sa.Column("entity_id", sa.Integer(), nullable=True),
        sa.Column("match_status", sa.String(length=32), server_default="pending", nullable=False),
        sa.Column("match_confidence", sa.Numeric(5, 2), nullable=True),
        sa.Column("manually_verified", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        sa.Column("match_attempted_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
        _updated_at(),
        sa.ForeignKeyConstraint(["entity_id"], ["entities.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("name"),
    )
    op.create_index("ix_suppliers_entity_id", "suppliers", ["entity_id"], unique=False)
    op.create_index("ix_suppliers_match_status", "suppliers", ["match_status"], unique=False)
    op.create_index("ix_suppliers_name_key", "suppliers", ["name_key"], unique=False)

    op.create_table(
        "pipeline_assets",
        _id(),
        sa.Column("object_key", sa.String(length=1024), nullable=False),
        sa.Column("original_name", sa.String(length=512), nullable=False),
        sa.Column("content_type", sa.String(length=255), nullable=True),
        sa.Column("size_bytes", sa.BigInteger(), nullable=False),
        sa.Column("checksum", sa.String(length=128), nullable=True),
        _created_at(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("object_key"),
    )
    op.create_index("ix_pipeline_assets_checksum", "pipeline_assets", ["checksum"], unique=False)

    op.create_table(
        "spend_entries",
        _id(),
        sa.Column("asset_id", sa.Integer(), nullable=True),
        sa.Column("raw_buyer", sa.String(length=512), nullable=False),
        sa.Column("raw_supplier", sa.String(length=512), nullable=False),
        sa.Column("buyer_id", sa.Integer(), nullable=False),
        sa.Column("supplier_id", sa.Integer(), nullable=True),
        sa.Column("amount", sa.Numeric(14, 2), nullable=False),
        sa.Column("payment_date", sa.Date(), nullable=False),
        sa.Column("raw_amount", sa.String(length=128), nullable=True),
        sa.Column("payment_date_raw", sa.String(length=128), nullable=True),
        sa.Column("source_sheet", sa.String(length=255), nullable=False),
        sa.Column("source_row_number", sa.Integer(), nullable=False),
        _created_at(),
        sa.ForeignKeyConstraint(["asset_id"], ["pipeline_assets.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["buyer_id"], ["buyers.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["supplier_id"], ["suppliers.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("asset_id", "source_sheet", "source_row_number", name="uq_spend_entries_asset_sheet_row"),
    )
    op.create_index("ix_spend_entries_asset_id", "spend_entries", ["asset_id"], unique=False)
    op.create_index("ix_spend_entries_buyer_id", "spend_entries", ["buyer_id"], unique=False)
    op.create_index("ix_spend_entries_supplier_id", "spend_entries", ["supplier_id"], unique=False)
    op.create_index("ix_spend_entries_payment_date", "spend_entries", ["payment_date"], unique=False)

    op.create_table(
        "pipeline_runs",
        _id(),
        sa.Column("asset_id", sa.Integer(), nullable=True),
        sa.Column("org_type", sa.String(length=32), server_default="nhs", nullable=False),
        sa.Column("trigger", sa.String(length=32), server_default="web", nullable=False),
        sa.Column("created_by", sa.String(length=255), nullable=True),
        sa.Column("status", sa.String(length=32), server_default="queued", nullable=False),
        sa.Column("dry_run", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        sa.Column("from_stage_id", sa.String(length=64), nullable=True),
        sa.Column("to_stage_id", sa.String(length=64), nullable=True),
        sa.Column("params_json", sa.JSON(), nullable=False),
        sa.Column("error", sa.String(length=4000), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("finished_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
        sa.ForeignKeyConstraint(["asset_id"], ["pipeline_assets.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_pipeline_runs_asset_id", "pipeline_runs", ["asset_id"], unique=False)
    op.create_index("ix_pipeline_runs_status", "pipeline_runs", ["status"], unique=False)

    op.create_table(
        "pipeline_run_stages",
        _id(),
        sa.Column("run_id", sa.Integer(), nullable=False),
        sa.Column("stage_id", sa.String(length=64), nullable=False),
        sa.Column("status", sa.String(length=32), server_default="queued", nullable=False),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("finished_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("metrics_json", sa.JSON(), nullable=True),
        sa.Column("warnings_json", sa.JSON(), nullable=False),
        sa.Column("error", sa.Text(), nullable=True),
        _created_at(),
        sa.ForeignKeyConstraint(["run_id"], ["pipeline_runs.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("run_id", "stage_id", name="uq_pipeline_run_stages_run_stage"),
    )
    op.create_index("ix_pipeline_run_stages_run_id", "pipeline_run_stages", ["run_id"], unique=False)

    op.create_table(
        "pipeline_run_logs",
        _id(),
        sa.Column("run_id", sa.Integer(), nullable=False),
        sa.Column("ts", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("level", sa.String(length=16), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("meta_json", sa.JSON(), nullable=True),
        sa.ForeignKeyConstraint(["run_id"], ["pipeline_runs.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_pipeline_run_logs_run_id", "pipeline_run_logs", ["run_id"], unique=False)

    op.create_table(
        "pipeline_skipped_rows",
        _id(),
        sa.Column("run_id", sa.Integer(), nullable=False),
        sa.Column("stage_id", sa.String(length=64), nullable=False),
        sa.Column("sheet_name", sa.String(length=255), nullable=False),
        sa.Column("row_number", sa.Integer(), nullable=False),
        sa.Column("reason", sa.String(length=512), nullable=False),
        sa.Column("raw_data_json", sa.JSON(), nullable=False),
        _created_at(),
        sa.ForeignKeyConstraint(["run_id"], ["pipeline_runs.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_pipeline_skipped_rows_run_id", "pipeline_skipped_rows", ["run_id"], unique=False)

    op.create_table(
        "audit_log",
        _id(),
        sa.Column("ts", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("actor_type", sa.String(length=32), nullable=False),
        sa.Column("actor_id", sa.String(length=255), nullable=True),
        sa.Column("run_id", sa.Integer(), nullable=True),
        sa.Column("stage_id", sa.String(length=64), nullable=True),
        sa.Column("table_name", sa.String(length=64), nullable=False),
        sa.Column("record_pk", sa.String(length=64), nullable=False),
        sa.Column("action", sa.String(length=32), nullable=False),
        sa.Column("before_json", sa.JSON(), nullable=True),
        sa.Column("after_json", sa.JSON(), nullable=True),
        sa.Column("reason", sa.String(length=1024), nullable=True),
        sa.ForeignKeyConstraint(["run_id"], ["pipeline_runs.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_audit_log_run_id", "audit_log", ["run_id"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_audit_log_run_id", table_name="audit_log")
    op.drop_table("audit_log")
    op.drop_index("ix_pipeline_skipped_rows_run_id", table_name="pipeline_skipped_rows")
    op.drop_table("pipeline_skipped_rows")
    op.drop_index("ix_pipeline_run_logs_run_id", table_name="pipeline_run_logs")
    op.drop_table("pipeline_run_logs")
    op.drop_index("ix_pipeline_run_stages_run_id", table_name="pipeline_run_stages")
    op.drop_table("pipeline_run_stages")
    op.drop_index("ix_pipeline_runs_status", table_name="pipeline_runs")
    op.drop_index("ix_pipeline_runs_asset_id", table_name="pipeline_runs")
    op.drop_table("pipeline_runs")
    op.drop_index("ix_spend_entries_payment_date", table_name="spend_entries")
    op.drop_index("ix_spend_entries_supplier_id", table_name="spend_entries")
    op.drop_index("ix_spend_entries_buyer_id", table_name="spend_entries")
    op.drop_index("ix_spend_entries_asset_id", table_name="spend_entries")
    op.drop_table("spend_entries")
    op.drop_index("ix_pipeline_assets_checksum", table_name="pipeline_assets")
    op.drop_table("pipeline_assets")
    op.drop_index("ix_suppliers_name_key", table_name="suppliers")
    op.drop_index("ix_suppliers_match_status", table_name="suppliers")
    op.drop_index("ix_suppliers_entity_id", table_name="suppliers")
    op.drop_table("suppliers")
    op.drop_index("ix_buyers_name_key", table_name="buyers")
    op.drop_index("ix_buyers_match_status", table_name="buyers")
    op.drop_index("ix_buyers_entity_id", table_name="buyers")
    op.drop_index("ix_buyers_org_type", table_name="buyers")
    op.drop_table("buyers")
    op.drop_table("government_departments")
    op.drop_index("ix_councils_parent_entity_id", table_name="councils")
    op.drop_table("councils")
    op.drop_table("health_organisations")
    op.drop_table("companies")
    op.drop_index("ix_entities_postal_code", table_name="entities")
    op.drop_index("ix_entities_name", table_name="entities")
    op.drop_index("ix_entities_entity_type", table_name="entities")
    op.drop_table("entities")
