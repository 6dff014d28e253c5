"""
Ports (interfaces) for the host application.

These define the contract that infrastructure adapters must implement.
Application services depend on these abstractions, not concrete adapters.
"""

from abc import ABC, abstractmethod
from typing import Any

from increm.domain.models import Flashcard

# Rich text as the host stores it: plain strings interleaved with
# reference elements such as ``{"i": "q", "_id": "<node id>"}``.
RichText = list[str | dict[str, Any]]


class KnowledgeBase(ABC):
    """
    Port for the host's node hierarchy and property storage.

    Implementations:
        - InMemoryKnowledgeBase: in-process tree, loadable from a snapshot.
        - HostConnectAdapter: JSON-RPC bridge to a running host.
    """

    @abstractmethod
    async def exists(self, item_id: str) -> bool:
        pass

    @abstractmethod
    async def parent_of(self, item_id: str) -> str | None:
        pass

    @abstractmethod
    async def descendants_of(self, item_id: str) -> list[str]:
        """All hierarchical descendants, in document order."""
        pass

    @abstractmethod
    async def document_context_of(self, item_id: str) -> list[str]:
        """Nodes shown inside this node's document, portals and tables included."""
        pass

    @abstractmethod
    async def folder_queue_of(self, item_id: str) -> list[str]:
        pass

    @abstractmethod
    async def sources_of(self, item_id: str) -> list[str]:
        pass

    @abstractmethod
    async def referencing_of(self, item_id: str) -> list[str]:
        """
        Nodes whose text references this node (backlinks).

        A date written into an item's nextRepDate slot shows up here as the
        property row, a child of the item whose text starts with a reference
        to ``NEXT_REP_DATE_SLOT_NODE``. Callers map such rows to the item.
        """
        pass

    @abstractmethod
    async def text_of(self, item_id: str) -> RichText:
        pass

    @abstractmethod
    async def tags_of(self, item_id: str) -> list[str]:
        """Display names of the tags applied to the node."""
        pass

    @abstractmethod
    async def get_property(self, item_id: str, powerup: str, slot: str) -> Any:
        pass

    @abstractmethod
    async def set_property(self, item_id: str, powerup: str, slot: str, value: Any) -> None:
        pass

    @abstractmethod
    async def has_powerup(self, item_id: str, powerup: str) -> bool:
        pass

    @abstractmethod
    async def add_powerup(self, item_id: str, powerup: str) -> None:
        pass

    @abstractmethod
    async def remove_powerup(self, item_id: str, powerup: str) -> None:
        pass

    @abstractmethod
    async def tagged_with(self, powerup: str) -> list[str]:
        """Ids of every node carrying the given powerup marker."""
        pass


class FlashcardSource(ABC):
    """Port for the host's native flashcard engine (read-only)."""

    @abstractmethod
    async def cards_for(self, item_id: str) -> list[Flashcard]:
        pass

    @abstractmethod
    async def all_cards(self) -> list[Flashcard]:
        pass


class KeyValueStore(ABC):
    """Port for session-scoped or durable key-value storage."""

    @abstractmethod
    async def get(self, key: str, default: Any = None) -> Any:
        pass

    @abstractmethod
    async def set(self, key: str, value: Any) -> None:
        pass
