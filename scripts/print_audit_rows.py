"""
Print the enriched admin audit log as the dashboard would show it.

Usage (from project root):
  python scripts/print_audit_rows.py
  python scripts/print_audit_rows.py --limit 50 --action member.delete
  python scripts/print_audit_rows.py --status partial --json

Useful for checking how a raw details payload is rendered without opening the dashboard.
"""
import os
import sys
import argparse

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from sqlalchemy.orm import Session
from member_admin.database import SessionLocal
from member_admin.services.audit_rows import fetch_audit_rows, filter_audit_rows


def main():
    parser = argparse.ArgumentParser(description="Print enriched admin audit rows")
    parser.add_argument("--limit", type=int, default=None, help="Max raw rows to load (default: AUDIT_FETCH_LIMIT)")
    parser.add_argument("--action", type=str, default=None, help="Only this action key, e.g. member.rename")
    parser.add_argument("--status", type=str, default=None, help="ok, error, partial or unknown")
    parser.add_argument("--search", type=str, default=None, help="Text to match in event/target/actor/changes")
    parser.add_argument("--json", action="store_true", help="Print rows as JSON lines")
    args = parser.parse_args()

    db: Session = SessionLocal()
    try:
        result = fetch_audit_rows(db, limit=args.limit)
        if result.error_message:
            print(f"Error: {result.error_message}")
            return 1
        rows = filter_audit_rows(result.rows, action=args.action, status=args.status, search=args.search)
        for row in rows:
            if args.json:
                print(row.model_dump_json(exclude={"raw"}))
                continue
            print(f"{row.created_at}  [{row.status}]  {row.event}  {row.target or '-'}  ({row.actor_label})")
            for line in row.change_items:
                print(f"    {line}")
            for item in row.target_items:
                reason = f" - {item.reason}" if item.reason else ""
                print(f"    * {item.name or item.id}: {item.status}{reason}")
        print(f"{len(rows)} row(s).")
        return 0
    finally:
        db.close()


if __name__ == "__main__":
    sys.exit(main())
