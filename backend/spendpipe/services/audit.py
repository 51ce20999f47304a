"""Audit trail writes."""

from __future__ import annotations

from typing import Any

from sqlalchemy.orm import Session

from spendpipe.models.audit_log import AuditLog


def record_audit(
    db: Session,
    *,
    actor_type: str,
    table_name: str,
    record_pk: int | str,
    action: str,
    actor_id: str | None = None,
    run_id: int | None = None,
    stage_id: str | None = None,
    before: dict[str, Any] | None = None,
    after: dict[str, Any] | None = None,
    reason: str | None = None,
) -> AuditLog:
    """Add an audit row to the caller's session; the caller commits."""

    row = AuditLog(
        actor_type=actor_type,
        actor_id=actor_id,
        run_id=run_id or None,
        stage_id=stage_id,
        table_name=table_name,
        record_pk=str(record_pk),
        action=action,
        before_json=before,
        after_json=after,
        reason=reason,
    )
    db.add(row)
    return row


def match_snapshot(entity_id: int | None, match_status: str, confidence: Any = None) -> dict[str, Any]:
    return {
        "entity_id": entity_id,
        "match_status": match_status,
        "match_confidence": None if confidence is None else str(confidence),
    }
