"""
All SQLAlchemy models. Base.metadata.create_all() creates every table that is missing.
"""
from member_admin.models.member import Member
from member_admin.models.audit_log import AdminAuditLog

__all__ = [
    "Member",
    "AdminAuditLog",
]
