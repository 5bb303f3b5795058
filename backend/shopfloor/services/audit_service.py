# Overview: Service-layer operations for the audit trail; append-only writes.

"""
Audit Trail Invariants

- Append-only: rows are never updated or deleted by the application.
- Written inside the same DB transaction as the change they describe
  (flush only; the caller commits).
- old_value/new_value are JSON snapshots of the changed fields only.
"""

from __future__ import annotations

import json
from datetime import datetime
from typing import Any, Optional

from ..extensions import db
from ..models import AuditLog
from ..time_utils import utcnow


def _dump(value: Any) -> Optional[str]:
    if value is None:
        return None
    return json.dumps(value, default=str, sort_keys=True)


def append_audit_log(
    *,
    action: str,
    entity_name: str,
    entity_id: Any = None,
    user_id: int | None = None,
    old_value: Any = None,
    new_value: Any = None,
    occurred_at: Optional[datetime] = None,
) -> AuditLog:
    entry = AuditLog(
        user_id=user_id,
        action=action,
        entity_name=entity_name,
        entity_id=str(entity_id) if entity_id is not None else None,
        old_value=_dump(old_value),
        new_value=_dump(new_value),
        occurred_at=occurred_at or utcnow(),
    )
    db.session.add(entry)
    db.session.flush()
    return entry


def list_audit_logs(*, entity_name: str | None = None, entity_id: Any = None, limit: int = 100) -> list[AuditLog]:
    query = db.session.query(AuditLog)
    if entity_name:
        query = query.filter(AuditLog.entity_name == entity_name)
    if entity_id is not None:
        query = query.filter(AuditLog.entity_id == str(entity_id))
    return query.order_by(AuditLog.id.desc()).limit(limit).all()
