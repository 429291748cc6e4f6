from __future__ import annotations

import argparse
import getpass
import sys
from pathlib import Path

# Allow running this script from any working directory.
BACKEND_DIR = Path(__file__).resolve().parent
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

from sqlalchemy import func, select

from core.db import session_scope
from core.security import hash_password
from models.user import USER_ROLES, User


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Create a CBCS login. Students must use their register number as the username."
    )
    parser.add_argument("username", help="Register number (students) or admin login")
    parser.add_argument("--role", default="STUDENT", choices=USER_ROLES, type=str.upper)
    parser.add_argument("--password", default=None, help="Prompted when omitted")
    parser.add_argument("--yes", action="store_true", help="Write the row (default is a dry run)")
    args = parser.parse_args()

    username = args.username.strip()
    if not username:
        raise SystemExit("Username is required")

    if not args.yes:
        print(f"Dry run: would create {args.role} {username!r}. Re-run with --yes to apply.")
        return

    password = args.password if args.password is not None else getpass.getpass(f"Password for {username}: ")
    if len(password) < 8:
        raise SystemExit("Password must be at least 8 characters")

    with session_scope() as db:
        existing = db.execute(
            select(User).where(func.lower(User.username) == func.lower(username))
        ).scalar_one_or_none()
        if existing is not None:
            raise SystemExit(f"{existing.role} {existing.username!r} already exists")

        user = User(username=username, password_hash=hash_password(password), role=args.role)
        db.add(user)
        db.flush()
        print({"id": str(user.id), "username": user.username, "role": user.role})


if __name__ == "__main__":
    main()
