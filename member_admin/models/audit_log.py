"""Append-only admin audit log.
Rows come from two writers: admin handlers (actor_id set) and database sync
triggers mirroring auth changes (actor_id null). No updates or deletes."""
from sqlalchemy import Column, BigInteger, Integer, String, Text, DateTime, JSON
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.sql import func
from member_admin.database import Base

# JSONB on PostgreSQL, plain JSON elsewhere (local/test databases)
DetailsType = JSON().with_variant(JSONB(), "postgresql")


class AdminAuditLog(Base):
    __tablename__ = "admin_audit_log"

    id = Column(BigInteger().with_variant(Integer(), "sqlite"), primary_key=True, autoincrement=True)

    # UTC only - server_default
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False, index=True)

    # Member UUID of the admin; null for trigger-generated sync rows
    actor_id = Column(String(36), nullable=True, index=True)

    # Stable action key, e.g. member.rename, member.privilege.update
    action = Column(String(100), nullable=False, index=True)
    target_table = Column(String(100), nullable=True)
    # Member UUID, email, or null for bulk actions
    target_id = Column(String(255), nullable=True)

    # ok | error | partial
    status = Column(String(16), nullable=True)
    error_message = Column(Text, nullable=True)

    # Action-specific payload (counts, before/after, id lists, member snapshots)
    details = Column(DetailsType, nullable=True)
