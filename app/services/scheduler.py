"""Per-viewer, per-project presentation order ("deck").

Rules applied by ``PresentationScheduler.open``:

1. No stored deck: shuffle the current image ids uniformly and store them.
2. Stored deck: keep its order, dropping ids that no longer exist.
3. Any current id missing from the stored deck (images added since the last
   visit): discard the old order, shuffle the full current set and store it.
   The voted-set is kept as is, so already voted images stay voted.
4. The current image is the first deck entry not in the voted-set. When there
   is none the deck is ``complete``; an empty project is ``no_images``.

Deck and voted-set live in an injected ``ViewerStateStore`` under the keys
``imageOrder_<project>`` and ``voted_<project>``.
"""
from __future__ import annotations

import enum
import json
import logging
import random
from dataclasses import dataclass
from typing import Any, Hashable, Iterable

from app.services.viewer_state import ViewerStateStore

logger = logging.getLogger(__name__)

ImageId = Hashable


class DeckStatus(str, enum.Enum):
    NO_IMAGES = "no_images"
    IN_PROGRESS = "in_progress"
    COMPLETE = "complete"


@dataclass(frozen=True)
class DeckState:
    project_id: str
    deck: tuple[ImageId, ...]
    voted: frozenset
    status: DeckStatus
    current: ImageId | None = None
    position: int | None = None
    regenerated: bool = False

    @property
    def remaining(self) -> int:
        return sum(1 for image_id in self.deck if image_id not in self.voted)


def order_key(project_id: Any) -> str:
    return f"imageOrder_{project_id}"


def voted_key(project_id: Any) -> str:
    return f"voted_{project_id}"


def _as_list(value: Any) -> list | None:
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except json.JSONDecodeError:
            return None
    if not isinstance(value, list):
        return None
    try:
        return list(dict.fromkeys(value))
    except TypeError:
        # unhashable entries
        return None


class PresentationScheduler:
    def __init__(self, store: ViewerStateStore, rng: random.Random | None = None) -> None:
        self.store = store
        self._rng = rng or random.Random()

    def _shuffled(self, image_ids: list[ImageId]) -> list[ImageId]:
        deck = list(image_ids)
        self._rng.shuffle(deck)
        return deck

    def _load_order(self, project_id: Any) -> list[ImageId] | None:
        raw = self.store.get(order_key(project_id))
        if raw is None:
            return None
        order = _as_list(raw)
        if order is None:
            logger.warning("Discarding unreadable deck order for project %s", project_id)
        return order

    def _save_order(self, project_id: Any, deck: list[ImageId]) -> None:
        self.store.set(order_key(project_id), list(deck))

    def voted(self, project_id: Any) -> set[ImageId]:
        raw = self.store.get(voted_key(project_id))
        if raw is None:
            return set()
        voted = _as_list(raw)
        if voted is None:
            logger.warning("Discarding unreadable voted-set for project %s", project_id)
            return set()
        return set(voted)

    def _state(
        self,
        project_id: Any,
        deck: Iterable[ImageId],
        voted: set[ImageId],
        regenerated: bool = False,
    ) -> DeckState:
        deck = tuple(deck)
        if not deck:
            return DeckState(
                project_id=str(project_id),
                deck=(),
                voted=frozenset(voted),
                status=DeckStatus.NO_IMAGES,
                regenerated=regenerated,
            )
        for position, image_id in enumerate(deck):
            if image_id not in voted:
                return DeckState(
                    project_id=str(project_id),
                    deck=deck,
                    voted=frozenset(voted),
                    status=DeckStatus.IN_PROGRESS,
                    current=image_id,
                    position=position,
                    regenerated=regenerated,
                )
        return DeckState(
            project_id=str(project_id),
            deck=deck,
            voted=frozenset(voted),
            status=DeckStatus.COMPLETE,
            regenerated=regenerated,
        )

    def open(self, project_id: Any, image_ids: Iterable[ImageId]) -> DeckState:
        """Resolve the viewer's deck against the project's current images."""
        current = list(dict.fromkeys(image_ids))
        voted = self.voted(project_id)
        if not current:
            return self._state(project_id, [], voted)

        stored = self._load_order(project_id)
        if stored is None:
            deck = self._shuffled(current)
            self._save_order(project_id, deck)
            return self._state(project_id, deck, voted, regenerated=True)

        current_set = set(current)
        if current_set.difference(stored):
            deck = self._shuffled(current)
            self._save_order(project_id, deck)
            logger.debug(
                "New images in project %s, deck regenerated (%d images)",
                project_id,
                len(deck),
            )
            return self._state(project_id, deck, voted, regenerated=True)

        deck = [image_id for image_id in stored if image_id in current_set]
        return self._state(project_id, deck, voted)

    def mark_voted(self, state: DeckState, image_id: ImageId) -> DeckState:
        """Record a vote locally and return the advanced deck state.

        Voting twice on the same image leaves the state unchanged.
        """
        if image_id not in state.deck:
            raise KeyError(f"image {image_id!r} is not part of the deck")
        voted = self.voted(state.project_id)
        if image_id not in voted:
            voted.add(image_id)
            stored = self.store.get(voted_key(state.project_id))
            ordered = _as_list(stored) or []
            ordered.append(image_id)
            self.store.set(voted_key(state.project_id), ordered)
        return self._state(state.project_id, state.deck, voted)

    def has_voted(self, project_id: Any, image_id: ImageId) -> bool:
        return image_id in self.voted(project_id)


__all__ = [
    "DeckStatus",
    "DeckState",
    "PresentationScheduler",
    "order_key",
    "voted_key",
]
