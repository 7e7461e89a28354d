"""Members table. One row per auth user; id is the auth user UUID."""
from sqlalchemy import Column, Integer, String, DateTime, Boolean
from sqlalchemy.sql import func
from member_admin.database import Base


class Member(Base):
    __tablename__ = "members"

    id = Column(String(36), primary_key=True)
    firstname = Column(String(255), nullable=True)
    lastname = Column(String(255), nullable=True)
    email = Column(String(255), nullable=True, index=True)

    # See member_admin.privileges.PrivilegeLevel
    privilege_type = Column(Integer, nullable=True, default=1)
    is_membership_active = Column(Boolean, nullable=True, default=True)
    is_banned = Column(Boolean, nullable=True, default=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
