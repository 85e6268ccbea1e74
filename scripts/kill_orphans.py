"""Delete blobs in the bucket that no image row references.

Usage:
  python scripts/kill_orphans.py
  python scripts/kill_orphans.py --yes
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
from typing import Callable

from dotenv import load_dotenv

from app.config import Settings
from app.db import SessionLocal, init_db
from app.services import reclamation, storage, store

logger = logging.getLogger("kill_orphans")


def ask_for_confirmation(question: str, prompt: Callable[[str], str] = input) -> bool:
    answer = prompt(f"{question} (y/N): ")
    return answer.strip().lower() == "y"


def _known_locators() -> set[str]:
    with SessionLocal() as session:
        return store.all_image_locators(session)


async def sweep(
    *,
    assume_yes: bool = False,
    prompt: Callable[[str], str] = input,
) -> reclamation.ReclaimReport:
    known = await asyncio.to_thread(_known_locators)
    print(f"Found {len(known)} image locators in database")

    orphans = await reclamation.find_orphans(known)
    print(f"Found {len(orphans)} orphaned blobs")
    if not orphans:
        print("No orphaned blobs found.")
        return reclamation.ReclaimReport(deleted=[], failed=[])

    print("\nOrphaned blobs to be deleted:")
    for key in orphans:
        print(f"- {key}")

    if not assume_yes and not ask_for_confirmation(
        f"\nDelete these {len(orphans)} blobs?", prompt
    ):
        print("Operation cancelled.")
        return reclamation.ReclaimReport(deleted=[], failed=[])

    report = await reclamation.delete_orphans(orphans)
    print(f"Deleted {len(report.deleted)} orphaned blobs, {len(report.failed)} failed")
    return report


async def _run(args: argparse.Namespace) -> int:
    settings = Settings()
    init_db(settings)
    await storage.init_storage(settings)
    try:
        report = await sweep(assume_yes=args.yes)
    finally:
        await storage.close_client()
    return 1 if report.failed else 0


def main() -> None:
    load_dotenv()
    logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO"))
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--yes", action="store_true", help="skip the confirmation prompt")
    args = parser.parse_args()
    raise SystemExit(asyncio.run(_run(args)))


if __name__ == "__main__":
    main()
