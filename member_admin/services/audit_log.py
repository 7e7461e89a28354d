"""Append-only admin audit writer. Never update or delete - immutable audit trail."""
from __future__ import annotations

import enum
import math
from datetime import date, datetime
from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session

from member_admin.models.audit_log import AdminAuditLog

STATUS_OK = "ok"
STATUS_ERROR = "error"
STATUS_PARTIAL = "partial"
_STATUSES = (STATUS_OK, STATUS_ERROR, STATUS_PARTIAL)

# Column limits (match model)
_ACTION_LEN = 100
_TARGET_TABLE_LEN = 100
_TARGET_ID_LEN = 255
_ERROR_MESSAGE_LEN = 10_000


def _sanitize_details_value(v: Any) -> Any:
    """Convert to JSON-serializable value so details never raises on INSERT."""
    if v is None:
        return None
    if isinstance(v, float) and not math.isfinite(v):
        return None
    if isinstance(v, (str, int, float, bool)):
        return v
    if isinstance(v, (datetime, date)):
        return v.isoformat()
    if isinstance(v, UUID):
        return str(v)
    if isinstance(v, enum.Enum):
        return getattr(v, "value", str(v))
    if isinstance(v, dict):
        return {str(k): _sanitize_details_value(x) for k, x in v.items()}
    if isinstance(v, (list, tuple, set)):
        return [_sanitize_details_value(x) for x in v]
    return str(v)


def _sanitize_details(details: dict[str, Any] | None) -> dict[str, Any]:
    if not details:
        return {}
    try:
        return {str(k): _sanitize_details_value(v) for k, v in details.items()}
    except Exception:
        return {"_error": "details_serialization", "raw_keys": [str(k) for k in list(details.keys())[:10]]}


def log_admin_action(
    db: Session,
    actor_id: str,
    action: str,
    *,
    target_table: str | None = None,
    target_id: str | None = None,
    status: str = STATUS_OK,
    error_message: str | None = None,
    details: dict[str, Any] | None = None,
) -> AdminAuditLog:
    """Append one application-level admin audit event.

    actor_id is the authenticated member UUID, action a stable key
    (member.create, member.rename, ...). target_table/target_id point at the
    logical target; bulk actions leave target_id empty and list ids in details.
    details carries counts, before/after values and member snapshots.
    Unknown statuses are stored as error. Commit remains with caller."""
    act = (action or "")[:_ACTION_LEN].strip() or "unknown"
    table = (target_table[:_TARGET_TABLE_LEN] if target_table else None) or None
    target = (str(target_id).strip()[:_TARGET_ID_LEN] if target_id else None) or None
    err = (error_message[:_ERROR_MESSAGE_LEN] if error_message else None) or None
    st = status if status in _STATUSES else STATUS_ERROR

    entry = AdminAuditLog(
        actor_id=(actor_id or "").strip() or None,
        action=act,
        target_table=table,
        target_id=target,
        status=st,
        error_message=err,
        details=_sanitize_details(details),
    )
    db.add(entry)
    db.flush()  # get entry.id if caller needs it
    return entry
