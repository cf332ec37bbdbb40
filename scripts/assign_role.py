#!/usr/bin/env python3
"""Attach a role (admin, inspector, applicant) to a user, creating the user if asked (idempotent).

Usage:
  python scripts/assign_role.py --email reviewer@example.com --role inspector
  python scripts/assign_role.py --email new@example.com --role applicant --create --password secret
"""

import argparse
import os
import sys
from pathlib import Path

from werkzeug.security import generate_password_hash

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.hcard.models import Role, User  # noqa: E402
from app.hcard.rbac import ROLE_PERMISSIONS  # noqa: E402
from scripts._db_utils import script_session  # noqa: E402


def main() -> None:
    parser = argparse.ArgumentParser()
    parser.add_argument("--email", required=True, help="User email")
    parser.add_argument("--role", required=True, choices=sorted(ROLE_PERMISSIONS), help="Role key to attach")
    parser.add_argument("--create", action="store_true", help="Create the user when missing")
    parser.add_argument("--password", default=None, help="Password for a newly created user")
    args = parser.parse_args()

    db_url = (os.environ.get("DATABASE_URL") or "sqlite:///hcard.db").strip()
    email = args.email.strip().lower()
    with script_session(db_url) as s:
        role = s.query(Role).filter(Role.key == args.role).one_or_none()
        if not role:
            print(f"Role not found: {args.role}. Run python scripts/init_db.py first.")
            return
        user = s.query(User).filter(User.email.ilike(email)).one_or_none()
        if not user:
            if not args.create or not args.password:
                print(f"User not found: {email} (pass --create --password to create it)")
                return
            user = User(email=email, password_hash=generate_password_hash(args.password), is_active=True)
            s.add(user)
            print(f"Created user {email}")
        if role in (user.roles or []):
            print(f"User already has {args.role} role: {email}")
            return
        user.roles.append(role)
    print(f"{args.role} role attached to {email}")


if __name__ == "__main__":
    main()
