"""
In-process host implementation.

Used by the CLI against a snapshot file and by the test suite. Node
properties are stored per powerup; a node carries a powerup exactly when it
has an entry in ``properties`` for it.
"""

import copy
import logging
from dataclasses import dataclass, field
from typing import Any

from increm.domain.interfaces import FlashcardSource, KeyValueStore, KnowledgeBase, RichText
from increm.domain.models import Flashcard

logger = logging.getLogger(__name__)


@dataclass
class Node:
    id: str
    parent: str | None = None
    children: list[str] = field(default_factory=list)
    text: RichText = field(default_factory=list)
    tags: list[str] = field(default_factory=list)
    properties: dict[str, dict[str, Any]] = field(default_factory=dict)
    context: list[str] = field(default_factory=list)
    folder: list[str] = field(default_factory=list)
    sources: list[str] = field(default_factory=list)

    def to_record(self) -> dict[str, Any]:
        record: dict[str, Any] = {"id": self.id}
        if self.parent:
            record["parent"] = self.parent
        for name in ("text", "tags", "properties", "context", "folder", "sources"):
            value = getattr(self, name)
            if value:
                record[name] = copy.deepcopy(value)
        return record


class InMemoryKnowledgeBase(KnowledgeBase):
    def __init__(self):
        self.nodes: dict[str, Node] = {}

    def add_node(
        self,
        item_id: str,
        parent: str | None = None,
        text: RichText | str | None = None,
        tags: list[str] | None = None,
        properties: dict[str, dict[str, Any]] | None = None,
        context: list[str] | None = None,
        folder: list[str] | None = None,
        sources: list[str] | None = None,
    ) -> Node:
        """Insert a node as the last child of ``parent``."""
        if item_id in self.nodes:
            raise ValueError(f"Duplicate node id {item_id!r}")
        if parent is not None and parent not in self.nodes:
            raise ValueError(f"Parent {parent!r} of {item_id!r} does not exist")
        if isinstance(text, str):
            text = [text]
        node = Node(
            id=item_id,
            parent=parent,
            text=list(text or []),
            tags=list(tags or []),
            properties=copy.deepcopy(properties or {}),
            context=list(context or []),
            folder=list(folder or []),
            sources=list(sources or []),
        )
        self.nodes[item_id] = node
        if parent is not None:
            self.nodes[parent].children.append(item_id)
        return node

    def remove_node(self, item_id: str) -> None:
        """Delete a node and its whole subtree."""
        node = self.nodes.get(item_id)
        if node is None:
            return
        for child in list(node.children):
            self.remove_node(child)
        if node.parent in self.nodes:
            self.nodes[node.parent].children.remove(item_id)
        del self.nodes[item_id]

    def _node(self, item_id: str) -> Node | None:
        return self.nodes.get(item_id)

    async def exists(self, item_id: str) -> bool:
        return item_id in self.nodes

    async def parent_of(self, item_id: str) -> str | None:
        node = self._node(item_id)
        return node.parent if node else None

    async def descendants_of(self, item_id: str) -> list[str]:
        node = self._node(item_id)
        if node is None:
            return []
        result: list[str] = []
        stack = list(reversed(node.children))
        while stack:
            current = stack.pop()
            result.append(current)
            stack.extend(reversed(self.nodes[current].children))
        return result

    async def document_context_of(self, item_id: str) -> list[str]:
        node = self._node(item_id)
        return [i for i in node.context if i in self.nodes] if node else []

    async def folder_queue_of(self, item_id: str) -> list[str]:
        node = self._node(item_id)
        return [i for i in node.folder if i in self.nodes] if node else []

    async def sources_of(self, item_id: str) -> list[str]:
        node = self._node(item_id)
        return [i for i in node.sources if i in self.nodes] if node else []

    async def referencing_of(self, item_id: str) -> list[str]:
        referencing = []
        for node in self.nodes.values():
            for element in node.text:
                if isinstance(element, dict) and element.get("_id") == item_id:
                    referencing.append(node.id)
                    break
        return referencing

    async def text_of(self, item_id: str) -> RichText:
        node = self._node(item_id)
        return copy.deepcopy(node.text) if node else []

    async def tags_of(self, item_id: str) -> list[str]:
        node = self._node(item_id)
        return list(node.tags) if node else []

    async def get_property(self, item_id: str, powerup: str, slot: str) -> Any:
        node = self._node(item_id)
        if node is None:
            return None
        return copy.deepcopy(node.properties.get(powerup, {}).get(slot))

    async def set_property(self, item_id: str, powerup: str, slot: str, value: Any) -> None:
        node = self._node(item_id)
        if node is None:
            logger.warning(f"set_property on missing node {item_id}")
            return
        node.properties.setdefault(powerup, {})[slot] = copy.deepcopy(value)

    async def has_powerup(self, item_id: str, powerup: str) -> bool:
        node = self._node(item_id)
        return node is not None and powerup in node.properties

    async def add_powerup(self, item_id: str, powerup: str) -> None:
        node = self._node(item_id)
        if node is not None:
            node.properties.setdefault(powerup, {})

    async def remove_powerup(self, item_id: str, powerup: str) -> None:
        node = self._node(item_id)
        if node is not None:
            node.properties.pop(powerup, None)

    async def tagged_with(self, powerup: str) -> list[str]:
        return [node.id for node in self.nodes.values() if powerup in node.properties]


class InMemoryFlashcards(FlashcardSource):
    def __init__(self, cards: list[Flashcard] | None = None):
        self.cards: list[Flashcard] = list(cards or [])

    def add_card(
        self, card_id: str, item_id: str, next_repetition_time: int | None = None
    ) -> Flashcard:
        card = Flashcard(id=card_id, item_id=item_id, next_repetition_time=next_repetition_time)
        self.cards.append(card)
        return card

    async def cards_for(self, item_id: str) -> list[Flashcard]:
        return [c for c in self.cards if c.item_id == item_id]

    async def all_cards(self) -> list[Flashcard]:
        return list(self.cards)


class InMemoryStore(KeyValueStore):
    """Dict-backed store. Values are copied on the way in and out, like a real host."""

    def __init__(self, data: dict[str, Any] | None = None):
        self.data: dict[str, Any] = copy.deepcopy(data or {})

    async def get(self, key: str, default: Any = None) -> Any:
        value = self.data.get(key)
        return default if value is None else copy.deepcopy(value)

    async def set(self, key: str, value: Any) -> None:
        if value is None:
            self.data.pop(key, None)
        else:
            self.data[key] = copy.deepcopy(value)
