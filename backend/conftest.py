"""Root conftest: test environment, structlog wiring for caplog, and shared fixtures."""

import random
from pathlib import Path

import pytest
import structlog
from dotenv import load_dotenv

from game.logic.deck import Card, Deck
from shared.db import MemoryStore

load_dotenv(Path(__file__).resolve().parent.parent / ".env.tests")

# Route structlog through stdlib logging so caplog sees every event.
structlog.configure(
    processors=[
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
    ],
    logger_factory=structlog.stdlib.LoggerFactory(),
    wrapper_class=structlog.stdlib.BoundLogger,
    cache_logger_on_first_use=False,
)

FIVE_CARDS = [Card(id=card_id, text=f"Card {card_id.upper()}") for card_id in "abcde"]


@pytest.fixture(autouse=True)
def _clear_log_context():
    structlog.contextvars.clear_contextvars()
    yield
    structlog.contextvars.clear_contextvars()


@pytest.fixture
def five_card_deck() -> Deck:
    """A deck of exactly one round's worth of cards: every draw is a-e."""
    return Deck(FIVE_CARDS)


@pytest.fixture
def rng() -> random.Random:
    return random.Random(1234)


@pytest.fixture
def memory_store() -> MemoryStore:
    return MemoryStore()
