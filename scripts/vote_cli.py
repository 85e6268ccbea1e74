"""Vote on a project's images from the terminal.

Deck order and voted images are kept in a local JSON file, so a later run
continues where the previous one stopped.

Usage:
  python scripts/vote_cli.py --base-url http://localhost:8000 --project 12
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
from pathlib import Path

import httpx
from dotenv import load_dotenv

from app.config import Settings
from app.services.scheduler import DeckStatus, PresentationScheduler
from app.services.viewer_state import JsonFileStateStore
from app.services.voting_client import VotingSession

DEFAULT_STATE = Path.home() / ".picvote" / "state.json"


async def run(base_url: str, project_id: int, state_path: Path) -> int:
    headers = {"X-API-Key": Settings().api_key, "X-API-Ver": "v1"}
    scheduler = PresentationScheduler(JsonFileStateStore(state_path))
    async with httpx.AsyncClient(base_url=base_url, headers=headers, timeout=10) as client:
        session = VotingSession(client, scheduler, project_id)
        state = await session.load()
        if state.status is DeckStatus.NO_IMAGES:
            print("This project has no images yet.")
            return 0
        print(f"{session.project_name}: {state.remaining} of {len(state.deck)} left")
        while state.status is DeckStatus.IN_PROGRESS:
            answer = await asyncio.to_thread(
                input, f"{session.current_url}\n[l]ike / [d]islike / [q]uit: "
            )
            answer = answer.strip().lower()
            if answer == "q":
                break
            if answer not in {"l", "d"}:
                continue
            state = await session.vote(answer == "l")
        await session.flush()
    if state.status is DeckStatus.COMPLETE:
        print("You have voted on every image.")
    if session.lost_votes:
        print(f"{len(session.lost_votes)} votes could not be recorded")
        return 1
    return 0


def main() -> None:
    load_dotenv()
    logging.basicConfig(level=os.getenv("LOG_LEVEL", "WARNING"))
    parser = argparse.ArgumentParser()
    parser.add_argument("--base-url", default=os.getenv("PICVOTE_URL", "http://localhost:8000"))
    parser.add_argument("--project", type=int, required=True)
    parser.add_argument("--state", type=Path, default=DEFAULT_STATE)
    args = parser.parse_args()
    raise SystemExit(asyncio.run(run(args.base_url, args.project, args.state)))


if __name__ == "__main__":
    main()
