"""Admin audit log (dashboard "Logg" view)."""
from datetime import datetime, timezone
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from member_admin.database import get_db
from member_admin.dependencies import require_privilege
from member_admin.models.member import Member
from member_admin.schemas.audit import AuditLogResponse
from member_admin.services.audit_rows import fetch_audit_rows, filter_audit_rows

router = APIRouter(prefix="/dashboard", tags=["audit"])


def _parse_optional_utc(s: str | None) -> datetime | None:
    if not s or not s.strip():
        return None
    try:
        d = datetime.fromisoformat(s.strip().replace("Z", "+00:00"))
        if d.tzinfo is None:
            d = d.replace(tzinfo=timezone.utc)
        return d
    except (ValueError, TypeError):
        return None


@router.get("/audit", response_model=AuditLogResponse)
def audit_logs(
    db: Session = Depends(get_db),
    current_member: Member = Depends(require_privilege("view_audit_logs")),
    action: str | None = None,
    status: str | None = None,
    from_ts: str | None = None,
    to_ts: str | None = None,
    search: str | None = None,
):
    """Newest admin audit rows with resolved names and change lines. Filter by action key, status
    (ok/error/partial/unknown), time range (ISO UTC) and search (event/target/actor/changes).
    A missing or unreadable audit table is reported in error_message, not as an HTTP error."""
    result = fetch_audit_rows(db)
    if result.error_message:
        return AuditLogResponse(rows=[], error_message=result.error_message)
    rows = filter_audit_rows(
        result.rows,
        action=action,
        status=status,
        from_ts=_parse_optional_utc(from_ts),
        to_ts=_parse_optional_utc(to_ts),
        search=search,
    )
    return AuditLogResponse(rows=rows, error_message=None)
