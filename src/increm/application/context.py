"""Shared wiring for application services."""

import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime

from increm.application.config import AppConfig
from increm.domain.interfaces import FlashcardSource, KeyValueStore, KnowledgeBase


def now_ms() -> int:
    return int(time.time() * 1000)


def start_of_day_ms(epoch_ms: int) -> int:
    """Local midnight of the day containing ``epoch_ms``."""
    dt = datetime.fromtimestamp(epoch_ms / 1000)
    midnight = dt.replace(hour=0, minute=0, second=0, microsecond=0)
    return int(midnight.timestamp() * 1000)


@dataclass
class EngineContext:
    """
    Everything a service needs to talk to the host.

    Attributes:
        kb: Node hierarchy and property storage.
        cards: Read-only flashcard source.
        session: Session-scoped key-value storage (cleared with the host session).
        durable: Durable key-value storage (survives restarts).
        config: Resolved settings.
        clock: Returns the current time in epoch-ms; injectable for tests.
    """

    kb: KnowledgeBase
    cards: FlashcardSource
    session: KeyValueStore
    durable: KeyValueStore
    config: AppConfig = field(default_factory=AppConfig)
    clock: Callable[[], int] = now_ms
