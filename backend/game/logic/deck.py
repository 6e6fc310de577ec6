"""Static catalog of the cards players rank.

The catalog is loaded once (from the bundled cards.json unless a path is
given) and then answers id lookups and random draws synchronously.
"""

from __future__ import annotations

import random
from pathlib import Path
from typing import TYPE_CHECKING

import structlog
from pydantic import BaseModel, TypeAdapter

if TYPE_CHECKING:
    from collections.abc import Iterable

logger = structlog.get_logger()

BUNDLED_DECK_PATH = Path(__file__).resolve().parent.parent / "data" / "cards.json"
PLACEHOLDER_CATEGORY = "unknown"


class Card(BaseModel, frozen=True):
    id: str
    text: str
    category: str | None = None


_CARD_LIST = TypeAdapter(list[Card])


class Deck:
    """Read-only card catalog with id lookup and sampling without replacement."""

    def __init__(self, cards: Iterable[Card]) -> None:
        self._cards: dict[str, Card] = {}
        for card in cards:
            if card.id in self._cards:
                raise ValueError(f"Duplicate card id in deck: {card.id!r}")
            self._cards[card.id] = card

    @classmethod
    def from_file(cls, path: str | Path) -> Deck:
        try:
            raw = Path(path).read_text(encoding="utf-8")
        except OSError as exc:
            raise OSError(f"Failed to read deck file: {path}") from exc
        deck = cls(_CARD_LIST.validate_json(raw))
        logger.info("deck loaded", path=str(path), cards=len(deck))
        return deck

    @classmethod
    def bundled(cls) -> Deck:
        return cls.from_file(BUNDLED_DECK_PATH)

    def __len__(self) -> int:
        return len(self._cards)

    def __contains__(self, card_id: object) -> bool:
        return card_id in self._cards

    @property
    def cards(self) -> list[Card]:
        return list(self._cards.values())

    def lookup(self, card_id: str) -> Card | None:
        return self._cards.get(card_id)

    def resolve(self, card_ids: Iterable[str]) -> list[Card]:
        """Materialize a round's cards, substituting a placeholder for unknown ids.

        A missing card never blocks a round: the placeholder shows the raw id.
        """
        resolved: list[Card] = []
        for card_id in card_ids:
            card = self._cards.get(card_id)
            if card is None:
                logger.warning("card not found in deck, using placeholder", card_id=card_id)
                card = Card(id=card_id, text=card_id, category=PLACEHOLDER_CATEGORY)
            resolved.append(card)
        return resolved

    def sample(self, count: int, rng: random.Random | None = None) -> list[Card]:
        """Draw count distinct cards uniformly at random."""
        if count > len(self._cards):
            raise ValueError(f"Cannot draw {count} cards from a deck of {len(self._cards)}")
        return (rng or random).sample(list(self._cards.values()), count)
