"""
Database connection and session.

Schema source of truth: member_admin.models. The hosted database owns the real
tables (members rows are created by the auth trigger, admin_audit_log rows by
admin handlers and sync triggers). Base.metadata.create_all(bind=engine) only
creates what is missing, which is what a local or test database needs.
"""
from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker
from member_admin.config import get_settings

settings = get_settings()
engine = create_engine(
    settings.database_url,
    pool_pre_ping=True,
)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
