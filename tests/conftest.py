from datetime import datetime

import pytest

from increm.application.config import AppConfig
from increm.application.context import EngineContext
from increm.domain.constants import (
    CARD_PRIORITY_POWERUP,
    CARD_PRIORITY_SLOT,
    CARD_SOURCE_SLOT,
    HISTORY_SLOT,
    INCREMENTAL_POWERUP,
    MS_PER_DAY,
    NEXT_REP_DATE_SLOT,
    PRIORITY_SLOT,
)
from increm.domain.history import HistoryEntry, history_to_json
from increm.infrastructure.adapters.memory import (
    InMemoryFlashcards,
    InMemoryKnowledgeBase,
    InMemoryStore,
)

# Local noon keeps day arithmetic clear of midnight
NOW = int(datetime(2024, 3, 15, 12, 0).timestamp() * 1000)
DAY = MS_PER_DAY


class FakeClock:
    def __init__(self, now: int = NOW):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, days: float = 0, ms: int = 0) -> int:
        self.now += int(days * DAY) + ms
        return self.now


def add_item(
    kb: InMemoryKnowledgeBase,
    item_id: str,
    parent: str | None = None,
    priority: int = 10,
    next_rep_date: int = NOW,
    history: list[HistoryEntry] | None = None,
    **node_kwargs,
):
    """Add a node that is already tagged incremental."""
    kb.add_node(item_id, parent=parent, **node_kwargs)
    kb.nodes[item_id].properties[INCREMENTAL_POWERUP] = {
        NEXT_REP_DATE_SLOT: next_rep_date,
        PRIORITY_SLOT: str(priority),
        HISTORY_SLOT: history_to_json(history or []),
    }


def add_card_priority(
    kb: InMemoryKnowledgeBase, item_id: str, priority: int, source: str = "manual"
):
    kb.nodes[item_id].properties[CARD_PRIORITY_POWERUP] = {
        CARD_PRIORITY_SLOT: str(priority),
        CARD_SOURCE_SLOT: source,
    }


@pytest.fixture
def mock_home(tmp_path, monkeypatch):
    """Mocks Path.home() to point to a temp dir."""
    home = tmp_path / "home"
    home.mkdir()

    # Mocking HOME to a temp directory to isolate config/logs
    monkeypatch.setenv("HOME", str(home))
    return home


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def config():
    return AppConfig(
        batch_delay_ms=0,
        debounce_ms=0,
        cards_per_item=3,
        sorting_randomness=0.0,
        performance_mode="full",
    )


@pytest.fixture
def kb():
    return InMemoryKnowledgeBase()


@pytest.fixture
def cards():
    return InMemoryFlashcards()


@pytest.fixture
def ctx(kb, cards, config, clock):
    return EngineContext(
        kb=kb,
        cards=cards,
        session=InMemoryStore(),
        durable=InMemoryStore(),
        config=config,
        clock=clock,
    )
