"""
Snapshot files: a whole knowledge base, its flashcards and both key-value
stores serialized to a single YAML (or JSON) document.

    nodes:
      - id: book
        text: ["A Book"]
        properties:
          incremental: {nextRepDate: 1700000000000, priority: 20}
      - id: chapter
        parent: book
    cards:
      - {id: c1, itemId: chapter, nextRepetitionTime: 1700000000000}
    session: {}
    durable: {}

Nodes must be listed parents first.
"""

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from increm.domain.errors import IncremError
from increm.infrastructure.adapters.memory import (
    InMemoryFlashcards,
    InMemoryKnowledgeBase,
    InMemoryStore,
)

logger = logging.getLogger(__name__)


class SnapshotError(IncremError):
    """The snapshot file is missing or unreadable."""


@dataclass
class Snapshot:
    kb: InMemoryKnowledgeBase = field(default_factory=InMemoryKnowledgeBase)
    cards: InMemoryFlashcards = field(default_factory=InMemoryFlashcards)
    session: InMemoryStore = field(default_factory=InMemoryStore)
    durable: InMemoryStore = field(default_factory=InMemoryStore)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Snapshot":
        snapshot = cls()
        for record in data.get("nodes") or []:
            snapshot.kb.add_node(
                str(record["id"]),
                parent=record.get("parent"),
                text=record.get("text"),
                tags=record.get("tags"),
                properties=record.get("properties"),
                context=record.get("context"),
                folder=record.get("folder"),
                sources=record.get("sources"),
            )
        for record in data.get("cards") or []:
            snapshot.cards.add_card(
                str(record["id"]), str(record["itemId"]), record.get("nextRepetitionTime")
            )
        snapshot.session = InMemoryStore(data.get("session"))
        snapshot.durable = InMemoryStore(data.get("durable"))
        return snapshot

    def to_dict(self) -> dict[str, Any]:
        return {
            "nodes": [node.to_record() for node in self.kb.nodes.values()],
            "cards": [
                {"id": c.id, "itemId": c.item_id, "nextRepetitionTime": c.next_repetition_time}
                for c in self.cards.cards
            ],
            "session": self.session.data,
            "durable": self.durable.data,
        }


def load_snapshot(path: Path) -> Snapshot:
    """Read a ``.yaml``/``.yml``/``.json`` snapshot."""
    if not path.exists():
        raise SnapshotError(f"Snapshot not found: {path}")
    try:
        content = path.read_text(encoding="utf-8")
        data = json.loads(content) if path.suffix == ".json" else yaml.safe_load(content)
    except (OSError, json.JSONDecodeError, yaml.YAMLError) as e:
        raise SnapshotError(f"Could not read snapshot {path}: {e}") from e

    if not isinstance(data, dict):
        raise SnapshotError(f"Snapshot {path} must contain a mapping at the top level")
    try:
        snapshot = Snapshot.from_dict(data)
    except (KeyError, ValueError) as e:
        raise SnapshotError(f"Invalid snapshot {path}: {e}") from e
    logger.debug(f"Loaded snapshot {path}: {len(snapshot.kb.nodes)} nodes")
    return snapshot


def save_snapshot(snapshot: Snapshot, path: Path) -> None:
    data = snapshot.to_dict()
    path.parent.mkdir(parents=True, exist_ok=True)
    if path.suffix == ".json":
        path.write_text(json.dumps(data, indent=2), encoding="utf-8")
    else:
        path.write_text(
            yaml.safe_dump(data, sort_keys=False, allow_unicode=True), encoding="utf-8"
        )
    logger.debug(f"Saved snapshot {path}")
