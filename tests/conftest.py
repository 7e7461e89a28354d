import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["JWT_SECRET_KEY"] = "test-secret"

from datetime import datetime, timedelta, timezone

import jwt
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from member_admin.database import Base, get_db
from member_admin.main import app
from member_admin.models import AdminAuditLog, Member

ADMIN_ID = "0a1b2c3d-0000-4000-8000-00000000000a"
OLA_ID = "11111111-1111-4111-8111-111111111111"
KARI_ID = "22222222-2222-4222-8222-222222222222"
PER_ID = "33333333-3333-4333-8333-333333333333"
GONE_ID = "44444444-4444-4444-8444-444444444444"

BASE_TIME = datetime(2025, 3, 1, 12, 0, 0)


@pytest.fixture()
def engine():
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=eng)
    yield eng
    eng.dispose()


@pytest.fixture()
def db(engine):
    session = sessionmaker(autocommit=False, autoflush=False, bind=engine)()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def members(db):
    rows = [
        Member(id=ADMIN_ID, firstname="Anne", lastname="Admin", email="anne@example.no", privilege_type=4),
        Member(id=OLA_ID, firstname="Ola", lastname="Nordmann", email="ola@example.no", privilege_type=1),
        Member(id=KARI_ID, firstname="Kari", lastname="Nordmann", email="Kari@Example.no", privilege_type=2),
        Member(id=PER_ID, firstname=None, lastname=None, email="per@example.no", privilege_type=1),
    ]
    db.add_all(rows)
    db.commit()
    return rows


@pytest.fixture()
def add_audit(db):
    """Insert a raw admin_audit_log row; seconds is the offset from BASE_TIME."""
    def _add(action, *, seconds=0, actor_id=ADMIN_ID, target_id=None, status="ok", details=None, error_message=None):
        entry = AdminAuditLog(
            created_at=BASE_TIME + timedelta(seconds=seconds),
            actor_id=actor_id,
            action=action,
            target_table="members",
            target_id=target_id,
            status=status,
            error_message=error_message,
            details=details if details is not None else {},
        )
        db.add(entry)
        db.commit()
        return entry

    return _add


def make_token(member_id, *, secret="test-secret", audience="authenticated", expires_in=3600):
    payload = {
        "sub": member_id,
        "aud": audience,
        "exp": datetime.now(timezone.utc) + timedelta(seconds=expires_in),
    }
    return jwt.encode(payload, secret, algorithm="HS256")


@pytest.fixture()
def client(engine):
    TestingSession = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    def _get_db():
        session = TestingSession()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = _get_db
    yield TestClient(app)
    app.dependency_overrides.clear()
