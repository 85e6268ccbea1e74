"""Viewer-side voting session.

A vote is applied locally first (voted-set updated, deck advanced) and only
then sent to the ledger in the background. A failed send is logged and the
vote is considered lost: the local state is not rolled back and the request
is not retried.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any

import httpx

from app.services.scheduler import DeckState, DeckStatus, PresentationScheduler

logger = logging.getLogger(__name__)


class VotingSession:
    def __init__(
        self,
        client: httpx.AsyncClient,
        scheduler: PresentationScheduler,
        project_id: int,
    ) -> None:
        self.client = client
        self.scheduler = scheduler
        self.project_id = project_id
        self.project_name: str | None = None
        self.images: dict[Any, str] = {}
        self.state: DeckState | None = None
        self._inflight: set[asyncio.Task] = set()
        self.lost_votes: list[Any] = []

    async def load(self, *, count_view: bool = True) -> DeckState:
        """Fetch the project's images and resolve the local deck."""
        resp = await self.client.get(f"/v1/projects/{self.project_id}")
        resp.raise_for_status()
        data = resp.json()
        self.project_name = data.get("name")
        self.images = {img["id"]: img["url"] for img in data.get("images", [])}
        self.state = self.scheduler.open(self.project_id, list(self.images))
        if count_view:
            await self._record_view()
        return self.state

    async def _record_view(self) -> None:
        try:
            resp = await self.client.post(f"/v1/projects/{self.project_id}/view")
            resp.raise_for_status()
        except httpx.HTTPError as exc:
            logger.warning("Failed to record view for project %s: %s", self.project_id, exc)

    @property
    def current_url(self) -> str | None:
        if self.state is None or self.state.current is None:
            return None
        return self.images.get(self.state.current)

    async def vote(self, liked: bool) -> DeckState:
        """Vote on the current image and advance without waiting for the server."""
        if self.state is None:
            raise RuntimeError("call load() first")
        if self.state.status is not DeckStatus.IN_PROGRESS:
            return self.state
        image_id = self.state.current
        self.state = self.scheduler.mark_voted(self.state, image_id)
        task = asyncio.create_task(self._send(image_id, liked))
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)
        return self.state

    async def _send(self, image_id: Any, liked: bool) -> None:
        try:
            resp = await self.client.post(
                f"/v1/projects/{self.project_id}/vote",
                json={"image_id": image_id, "liked": liked},
            )
            resp.raise_for_status()
        except httpx.HTTPError as exc:
            self.lost_votes.append(image_id)
            logger.warning("Vote for image %s was not recorded: %s", image_id, exc)

    async def flush(self) -> None:
        """Wait for votes still being sent."""
        if self._inflight:
            await asyncio.gather(*self._inflight)


__all__ = ["VotingSession"]
