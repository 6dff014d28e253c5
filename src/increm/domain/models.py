"""
Domain models for the increm engine.

These are pure data structures with no I/O or external dependencies.
History entries live in ``increm.domain.history``.
"""

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any

from increm.domain.history import HistoryEntry, dump_history, parse_history


class QueueMode(str, Enum):
    SRS = "srs"
    PRACTICE_ALL = "practice-all"
    IN_ORDER = "in-order"
    EDITOR = "editor"


class PrioritySource(str, Enum):
    """Where a card priority came from. ``MANUAL`` is sticky."""

    MANUAL = "manual"
    INHERITED = "inherited"
    DEFAULT = "default"


class PerformanceMode(str, Enum):
    FULL = "full"
    LIGHT = "light"


@dataclass
class IncrementalItem:
    """
    A content node under incremental scheduling.

    Attributes:
        id: Host node id.
        next_rep_date: Epoch-ms when the item is next due.
        priority: 0 (most important) to 100.
        history: Ordered review/event log.
    """

    id: str
    next_rep_date: int
    priority: int
    history: list[HistoryEntry] = field(default_factory=list)

    def is_due(self, now_ms: int) -> bool:
        return now_ms >= self.next_rep_date

    def to_record(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "nextRepDate": self.next_rep_date,
            "priority": self.priority,
            "history": dump_history(self.history),
        }

    @classmethod
    def from_record(cls, data: dict[str, Any]) -> "IncrementalItem":
        return cls(
            id=data["id"],
            next_rep_date=int(data["nextRepDate"]),
            priority=int(data["priority"]),
            history=parse_history(data.get("history"), data["id"]),
        )


@dataclass
class CardPriorityInfo:
    """Priority of a flashcard-bearing node plus its card counts."""

    id: str
    priority: int
    source: PrioritySource
    last_updated: int = 0
    card_count: int = 0
    due_cards: int = 0
    kb_percentile: int | None = None

    def to_record(self) -> dict[str, Any]:
        d = asdict(self)
        d["source"] = self.source.value
        return d

    @classmethod
    def from_record(cls, data: dict[str, Any]) -> "CardPriorityInfo":
        return cls(
            id=data["id"],
            priority=int(data["priority"]),
            source=PrioritySource(data.get("source", "default")),
            last_updated=int(data.get("last_updated", 0)),
            card_count=int(data.get("card_count", 0)),
            due_cards=int(data.get("due_cards", 0)),
            kb_percentile=data.get("kb_percentile"),
        )


@dataclass(frozen=True)
class Flashcard:
    """Read-only view of a host flashcard."""

    id: str
    item_id: str
    next_repetition_time: int | None = None

    def is_due(self, now_ms: int) -> bool:
        return self.next_repetition_time is not None and self.next_repetition_time <= now_ms


@dataclass
class QueueSessionCache:
    """
    Derived, disposable per-session state computed on queue entry.

    Attributes:
        doc_percentiles: Card node id -> percentile within the priority scope.
        due_cards_in_scope: Due card infos inside the priority scope.
        due_cards_in_kb: Due card infos across the knowledge base.
        due_items_in_scope: Due incremental items inside the priority scope.
        due_items_in_kb: Due incremental items across the knowledge base.
        item_doc_percentiles: Incremental item id -> percentile within scope.
    """

    doc_percentiles: dict[str, int] = field(default_factory=dict)
    due_cards_in_scope: list[CardPriorityInfo] = field(default_factory=list)
    due_cards_in_kb: list[CardPriorityInfo] = field(default_factory=list)
    due_items_in_scope: list[IncrementalItem] = field(default_factory=list)
    due_items_in_kb: list[IncrementalItem] = field(default_factory=list)
    item_doc_percentiles: dict[str, int] = field(default_factory=dict)

    def to_record(self) -> dict[str, Any]:
        return {
            "docPercentiles": dict(self.doc_percentiles),
            "dueCardsInScope": [c.to_record() for c in self.due_cards_in_scope],
            "dueCardsInKB": [c.to_record() for c in self.due_cards_in_kb],
            "dueIncRemsInScope": [i.to_record() for i in self.due_items_in_scope],
            "dueIncRemsInKB": [i.to_record() for i in self.due_items_in_kb],
            "incRemDocPercentiles": dict(self.item_doc_percentiles),
        }

    @classmethod
    def from_record(cls, data: dict[str, Any]) -> "QueueSessionCache":
        return cls(
            doc_percentiles=dict(data.get("docPercentiles", {})),
            due_cards_in_scope=[
                CardPriorityInfo.from_record(c) for c in data.get("dueCardsInScope", [])
            ],
            due_cards_in_kb=[CardPriorityInfo.from_record(c) for c in data.get("dueCardsInKB", [])],
            due_items_in_scope=[
                IncrementalItem.from_record(i) for i in data.get("dueIncRemsInScope", [])
            ],
            due_items_in_kb=[IncrementalItem.from_record(i) for i in data.get("dueIncRemsInKB", [])],
            item_doc_percentiles=dict(data.get("incRemDocPercentiles", {})),
        )


@dataclass(frozen=True)
class QueueScopes:
    """
    Scopes resolved on queue entry.

    ``scope_for_priority_calc`` is ``None`` for the full knowledge base.
    ``priority_scope_resolved`` is False when a review document was detected
    but its original scope could not be read.
    """

    scope_for_item_selection: str | None
    scope_for_priority_calc: str | None
    original_scope_id: str | None
    is_priority_review_doc: bool = False
    priority_scope_resolved: bool = True


@dataclass(frozen=True)
class ShieldEntry:
    absolute: int
    percentile: float | None


@dataclass(frozen=True)
class ShieldStatus:
    kb: ShieldEntry | None = None
    doc: ShieldEntry | None = None


class DecisionKind(str, Enum):
    SHOW_FLASHCARD = "flashcard"
    SHOW_INCREMENTAL_ITEM = "incremental"
    NO_ITEM_AVAILABLE = "none"


@dataclass(frozen=True)
class QueueDecision:
    kind: DecisionKind
    item_id: str | None = None
    remaining: int = 0  # candidates left after this step, for queue counters
