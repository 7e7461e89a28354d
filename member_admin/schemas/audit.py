"""Audit log views for the dashboard audit table and details drawer."""
from datetime import datetime
from typing import Any, Literal
from pydantic import BaseModel


class AuditTargetItem(BaseModel):
    """One affected member in a bulk action."""
    id: str
    name: str | None = None
    email: str | None = None
    status: Literal["ok", "skipped", "error"]
    reason: str | None = None
    change: str | None = None


class AuditLogRow(BaseModel):
    """Display-ready audit entry: resolved names, change lines, bulk breakdown."""
    id: str
    created_at: datetime | str | None
    action_key: str | None
    event: str
    target: str | None
    target_name: str | None
    target_uuid: str | None
    target_email: str | None
    target_items: list[AuditTargetItem] = []
    change: str | None
    change_items: list[str] = []
    actor_label: str
    actor_id: str | None
    actor_email: str | None
    ip_address: str | None = None
    status: Literal["ok", "error", "partial", "unknown"]
    error_message: str | None
    source: str
    raw: dict[str, Any] = {}


class AuditLogResponse(BaseModel):
    """rows is empty and error_message set when the audit table could not be read."""
    rows: list[AuditLogRow]
    error_message: str | None = None
