"""
Create admin_audit_log and members tables if they do not exist.
The hosted database normally has both; this is for local databases.
Run once: python scripts/migrate_admin_audit_log.py (from project root)
"""
import os
import sys

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from sqlalchemy import inspect
from member_admin.database import engine
from member_admin.models import AdminAuditLog, Member


def main():
    insp = inspect(engine)
    existing = set(insp.get_table_names())
    for model in (Member, AdminAuditLog):
        name = model.__tablename__
        if name in existing:
            print(f"  skip (exists): {name}")
        else:
            model.__table__.create(engine)
            print(f"  created: {name}")
    print("Done.")


if __name__ == "__main__":
    main()
