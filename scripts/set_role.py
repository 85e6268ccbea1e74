"""Set a user's role from the shell, creating the user if needed.

Usage:
  python scripts/set_role.py --user-id user_2abc --role admin
"""

from __future__ import annotations

import argparse

from app.config import Settings
from app.db import SessionLocal, atomic, init_db
from app.models import ROLES
from app.services import store


def set_role(user_id: str, role: str) -> str:
    if role not in ROLES:
        raise SystemExit(f"Invalid role {role!r}, expected one of {', '.join(ROLES)}")
    with SessionLocal() as session:
        user = store.get_or_create_user(session, user_id)
        previous = user.role
        with atomic(session, "set role"):
            user.role = role
    return previous


def main() -> None:
    parser = argparse.ArgumentParser()
    parser.add_argument("--user-id", required=True)
    parser.add_argument("--role", required=True, choices=ROLES)
    args = parser.parse_args()

    init_db(Settings())
    previous = set_role(args.user_id, args.role)
    print(f"{args.user_id}: {previous} -> {args.role}")


if __name__ == "__main__":
    main()
