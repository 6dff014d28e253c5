import logging
from typing import Any

import httpx

from increm.domain.constants import HOST_API_VERSION, REQUEST_TIMEOUT, RESPONSIVENESS_TIMEOUT
from increm.domain.interfaces import FlashcardSource, KeyValueStore, KnowledgeBase, RichText
from increm.domain.models import Flashcard


class HostConnectAdapter(KnowledgeBase, FlashcardSource):
    """
    Talks to a running host through its JSON-RPC bridge.

    Every call is ``POST {"action", "version", "params"}`` and the bridge
    answers ``{"result", "error"}``.
    """

    def __init__(self, url: str = "http://127.0.0.1:8766"):
        self.logger = logging.getLogger(__name__)
        self.url = url
        self._client: httpx.AsyncClient | None = None
        self.logger.debug(f"HostConnectAdapter initialized with url={self.url}")

    async def is_responsive(self) -> bool:
        """Check if the bridge is reachable and speaks our API version."""
        try:
            payload = {"action": "version", "version": HOST_API_VERSION}
            if self._client is None:
                self._client = httpx.AsyncClient(timeout=REQUEST_TIMEOUT)
            resp = await self._client.post(self.url, json=payload, timeout=RESPONSIVENESS_TIMEOUT)
            if resp.status_code == 200:
                return int(resp.json().get("result", 0)) >= HOST_API_VERSION
            return False
        except Exception:
            return False

    async def _invoke(self, action: str, **params) -> Any:
        payload = {"action": action, "version": HOST_API_VERSION, "params": params}
        try:
            if self._client is None:
                self._client = httpx.AsyncClient(timeout=REQUEST_TIMEOUT)

            resp = await self._client.post(self.url, json=payload)
            resp.raise_for_status()
            data = resp.json()

            if len(data) != 2:
                raise ValueError("response has an unexpected number of fields")
            if "error" not in data:
                raise ValueError("response is missing required error field")
            if "result" not in data:
                raise ValueError("response is missing required result field")
            if data["error"] is not None:
                raise Exception(data["error"])
            return data["result"]
        except Exception as e:
            self.logger.error(f"Host bridge call {action} failed: {e}")
            raise

    # KnowledgeBase

    async def exists(self, item_id: str) -> bool:
        return bool(await self._invoke("exists", id=item_id))

    async def parent_of(self, item_id: str) -> str | None:
        return await self._invoke("parentOf", id=item_id)

    async def descendants_of(self, item_id: str) -> list[str]:
        return await self._invoke("descendantsOf", id=item_id) or []

    async def document_context_of(self, item_id: str) -> list[str]:
        return await self._invoke("documentContextOf", id=item_id) or []

    async def folder_queue_of(self, item_id: str) -> list[str]:
        return await self._invoke("folderQueueOf", id=item_id) or []

    async def sources_of(self, item_id: str) -> list[str]:
        return await self._invoke("sourcesOf", id=item_id) or []

    async def referencing_of(self, item_id: str) -> list[str]:
        return await self._invoke("referencingOf", id=item_id) or []

    async def text_of(self, item_id: str) -> RichText:
        return await self._invoke("textOf", id=item_id) or []

    async def tags_of(self, item_id: str) -> list[str]:
        return await self._invoke("tagsOf", id=item_id) or []

    async def get_property(self, item_id: str, powerup: str, slot: str) -> Any:
        return await self._invoke("getProperty", id=item_id, powerup=powerup, slot=slot)

    async def set_property(self, item_id: str, powerup: str, slot: str, value: Any) -> None:
        await self._invoke("setProperty", id=item_id, powerup=powerup, slot=slot, value=value)

    async def has_powerup(self, item_id: str, powerup: str) -> bool:
        return bool(await self._invoke("hasPowerup", id=item_id, powerup=powerup))

    async def add_powerup(self, item_id: str, powerup: str) -> None:
        await self._invoke("addPowerup", id=item_id, powerup=powerup)

    async def remove_powerup(self, item_id: str, powerup: str) -> None:
        await self._invoke("removePowerup", id=item_id, powerup=powerup)

    async def tagged_with(self, powerup: str) -> list[str]:
        return await self._invoke("taggedWith", powerup=powerup) or []

    # FlashcardSource

    @staticmethod
    def _card(raw: dict[str, Any]) -> Flashcard:
        return Flashcard(
            id=raw["id"],
            item_id=raw["itemId"],
            next_repetition_time=raw.get("nextRepetitionTime"),
        )

    async def cards_for(self, item_id: str) -> list[Flashcard]:
        return [self._card(c) for c in await self._invoke("cardsFor", id=item_id) or []]

    async def all_cards(self) -> list[Flashcard]:
        return [self._card(c) for c in await self._invoke("allCards") or []]

    # Storage

    def store(self, scope: str) -> "HostConnectStore":
        """Key-value store backed by the host; ``scope`` is ``session`` or ``durable``."""
        return HostConnectStore(self, scope)

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None


class HostConnectStore(KeyValueStore):
    def __init__(self, adapter: HostConnectAdapter, scope: str):
        self.adapter = adapter
        self.scope = scope

    async def get(self, key: str, default: Any = None) -> Any:
        value = await self.adapter._invoke("storageGet", scope=self.scope, key=key)
        return default if value is None else value

    async def set(self, key: str, value: Any) -> None:
        await self.adapter._invoke("storageSet", scope=self.scope, key=key, value=value)
