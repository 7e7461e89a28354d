from member_admin.schemas.audit import AuditLogResponse, AuditLogRow, AuditTargetItem
