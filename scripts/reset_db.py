"""Delete every vote, image, project and user.

Blobs are left in the bucket; run ``kill_orphans.py`` afterwards.

Usage:
  python scripts/reset_db.py --yes
"""

from __future__ import annotations

import argparse

from sqlalchemy import delete

from app.config import Settings
from app.db import SessionLocal, atomic, init_db
from app.models import Image, Project, User, Vote


def reset() -> dict[str, int]:
    counts: dict[str, int] = {}
    with SessionLocal() as session:
        with atomic(session, "reset database"):
            for model in (Vote, Image, Project, User):
                print(f"Deleting {model.__tablename__}...")
                result = session.execute(delete(model))
                counts[model.__tablename__] = result.rowcount
    return counts


def main() -> None:
    parser = argparse.ArgumentParser()
    parser.add_argument("--yes", action="store_true", help="confirm the reset")
    args = parser.parse_args()
    if not args.yes:
        raise SystemExit("Refusing to reset without --yes")

    init_db(Settings())
    counts = reset()
    print("Database reset completed: " + ", ".join(f"{k}={v}" for k, v in counts.items()))


if __name__ == "__main__":
    main()
