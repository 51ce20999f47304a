"""Upload registration and presigned download links for pipeline assets."""

from __future__ import annotations

import logging
import re
import uuid
from dataclasses import dataclass
from datetime import date

from sqlalchemy import select
from sqlalchemy.orm import Session

from spendpipe.models.pipeline_asset import PipelineAsset
from spendpipe.pipeline.types import PipelineError
from spendpipe.storage.object_storage import ObjectStorageClient

logger = logging.getLogger(__name__)

_UNSAFE_NAME_RE = re.compile(r"[^\w.\-() ]+")
MAX_SAFE_NAME_LENGTH = 200


@dataclass(slots=True)
class RegisteredAsset:
    asset: PipelineAsset
    upload_url: str
    expires_in: int


def safe_object_name(original_name: str) -> str:
    return _UNSAFE_NAME_RE.sub("_", original_name)[:MAX_SAFE_NAME_LENGTH]


def build_object_key(original_name: str, *, today: date | None = None, token: str | None = None) -> str:
    """``uploads/<YYYY-MM-DD>/<uuid>-<safe name>``."""

    day = (today or date.today()).isoformat()
    return f"uploads/{day}/{token or uuid.uuid4()}-{safe_object_name(original_name)}"


def find_assets_by_checksum(db: Session, checksum: str, *, limit: int = 5) -> list[PipelineAsset]:
    stmt = (
        select(PipelineAsset)
        .where(PipelineAsset.checksum == checksum)
        .order_by(PipelineAsset.id.asc())
        .limit(limit)
    )
    return list(db.scalars(stmt).all())


def register_asset(
    db: Session,
    storage: ObjectStorageClient,
    *,
    original_name: str,
    size_bytes: int,
    content_type: str | None = None,
    checksum: str | None = None,
    force: bool = False,
) -> RegisteredAsset:
    """Record a pending upload and return a presigned PUT URL for it.

    A checksum that matches an existing asset is rejected unless ``force``.
    """

    name = (original_name or "").strip()
    if not name:
        raise PipelineError("invalid_input", "original_name is required")
    if isinstance(size_bytes, bool) or size_bytes <= 0:
        raise PipelineError("invalid_input", "size_bytes must be > 0", {"size_bytes": size_bytes})

    if checksum and not force:
        duplicates = find_assets_by_checksum(db, checksum)
        if duplicates:
            raise PipelineError(
                "duplicate_checksum",
                "An asset with the same checksum already exists",
                {
                    "duplicate_assets": [
                        {
                            "id": asset.id,
                            "original_name": asset.original_name,
                            "size_bytes": asset.size_bytes,
                            "created_at": asset.created_at.isoformat() if asset.created_at else None,
                        }
                        for asset in duplicates
                    ]
                },
            )

    object_key = build_object_key(name)
    upload_url = storage.presign_upload(object_key)
    asset = PipelineAsset(
        object_key=object_key,
        original_name=name,
        content_type=content_type,
        size_bytes=int(size_bytes),
        checksum=checksum or None,
    )
    db.add(asset)
    db.commit()
    db.refresh(asset)
    logger.info("pipeline.asset_registered asset_id=%s object_key=%s size_bytes=%d", asset.id, object_key, size_bytes)
    return RegisteredAsset(asset=asset, upload_url=upload_url, expires_in=storage.upload_expiry_seconds)


def get_asset_download_url(db: Session, storage: ObjectStorageClient, asset_id: int) -> tuple[str, int]:
    asset = db.get(PipelineAsset, asset_id)
    if asset is None:
        raise PipelineError("asset_not_found", f"Asset {asset_id} not found", {"asset_id": asset_id})
    return storage.presign_download(asset.object_key), storage.download_expiry_seconds
