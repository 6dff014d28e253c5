"""
Queue session facade.

This is the surface the host and UI talk to. It owns the interleaver, the
debounced card priority cache and the session cache builder, and wires the
queue lifecycle together:

    await session.startup()              # load KB caches once
    await session.on_queue_enter(doc_id)
    item_id = await session.get_next_item(num_cards_remaining=12)
    await session.review(item_id)
    await session.remove_current_item_from_queue()
    await session.on_queue_exit()
"""

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from typing import Any

from increm.application import incremental
from increm.application.card_priority import (
    build_card_priority_cache,
    get_cached_card_infos,
    get_card_priority,
    set_card_priority,
)
from increm.application.context import EngineContext
from increm.application.interleaver import QueueInterleaver
from increm.application.percentile import fine_percentile, percentile
from increm.application.priority_cache import DebouncedPriorityCache
from increm.application.priority_inheritance import propagate_to_descendants
from increm.application.scheduler import NextSpacing
from increm.application.scope import resolve_queue_scopes
from increm.application.session_cache import SessionCacheBuilder
from increm.application.shield import calculate_card_shield, calculate_item_shield
from increm.application.shield_history import save_document_shield, save_kb_shield
from increm.domain.constants import (
    CARD_SHIELD_HISTORY_KEY,
    CURRENT_ITEM_KEY,
    CURRENT_QUEUE_MODE_KEY,
    CURRENT_SCOPE_IDS_KEY,
    CURRENT_SUB_QUEUE_KEY,
    DOC_CARD_SHIELD_HISTORY_KEY,
    DOC_ITEM_SHIELD_HISTORY_KEY,
    IS_PRIORITY_REVIEW_DOC_KEY,
    ITEM_SHIELD_HISTORY_KEY,
    ORIGINAL_SCOPE_KEY,
    PAUSE_TIMER_KEY,
    PRIORITY_CALC_SCOPE_IDS_KEY,
    QUEUE_SESSION_CACHE_KEY,
    SEEN_CARDS_KEY,
    SEEN_ITEMS_KEY,
    SKIP_CARD_SHIELD_KEY,
    SKIP_ITEM_SHIELD_KEY,
)
from increm.domain.errors import MissingEntity
from increm.domain.models import (
    CardPriorityInfo,
    DecisionKind,
    IncrementalItem,
    PerformanceMode,
    PrioritySource,
    QueueDecision,
    QueueMode,
    QueueScopes,
    QueueSessionCache,
    ShieldStatus,
)

logger = logging.getLogger(__name__)

_SESSION_KEYS = (
    SEEN_ITEMS_KEY,
    SEEN_CARDS_KEY,
    CURRENT_SCOPE_IDS_KEY,
    PRIORITY_CALC_SCOPE_IDS_KEY,
    CURRENT_SUB_QUEUE_KEY,
    ORIGINAL_SCOPE_KEY,
    IS_PRIORITY_REVIEW_DOC_KEY,
    QUEUE_SESSION_CACHE_KEY,
    SKIP_CARD_SHIELD_KEY,
    SKIP_ITEM_SHIELD_KEY,
)


class QueueSession:
    def __init__(
        self,
        ctx: EngineContext,
        rng: random.Random | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.ctx = ctx
        self.interleaver = QueueInterleaver(ctx, rng)
        self.priority_cache = DebouncedPriorityCache(ctx, sleep=sleep)
        self.cache_builder = SessionCacheBuilder(ctx)
        self.scopes: QueueScopes | None = None
        self.session_cache: QueueSessionCache | None = None
        self.due_item_count = 0

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def startup(self) -> None:
        """Load the KB-wide item and card priority caches."""
        await incremental.load_item_cache(self.ctx)
        await build_card_priority_cache(self.ctx)

    async def _reset_session_keys(self) -> None:
        for key in _SESSION_KEYS:
            await self.ctx.session.set(key, None)

    async def on_queue_enter(self, sub_queue_id: str | None = None) -> QueueSessionCache:
        logger.info(f"Queue enter, sub queue {sub_queue_id or 'full knowledge base'}")
        self.interleaver.enter()
        await self.ctx.session.set(SEEN_ITEMS_KEY, [])
        await self.ctx.session.set(SEEN_CARDS_KEY, [])
        await self.ctx.session.set(CURRENT_SCOPE_IDS_KEY, None)
        await self.ctx.session.set(PRIORITY_CALC_SCOPE_IDS_KEY, None)

        self.scopes = await resolve_queue_scopes(self.ctx, sub_queue_id)
        await self.ctx.session.set(CURRENT_SUB_QUEUE_KEY, sub_queue_id)
        await self.ctx.session.set(ORIGINAL_SCOPE_KEY, self.scopes.original_scope_id)
        await self.ctx.session.set(IS_PRIORITY_REVIEW_DOC_KEY, self.scopes.is_priority_review_doc)

        self.session_cache = await self.cache_builder.build(self.scopes)
        self.due_item_count = await self.cache_builder.due_item_count(
            self.scopes, self.session_cache
        )
        logger.info(f"Session cache ready, {self.due_item_count} due incremental items")
        return self.session_cache

    async def next_decision(
        self,
        num_cards_remaining: int,
        mode: QueueMode = QueueMode.SRS,
        sub_queue_id: str | None = None,
    ) -> QueueDecision:
        """Like ``get_next_item`` but returns the full decision. Never raises."""
        try:
            return await self.interleaver.next_item(num_cards_remaining, mode, sub_queue_id)
        except Exception as e:
            logger.error(f"Queue step failed, showing no item: {e}", exc_info=True)
            return QueueDecision(DecisionKind.NO_ITEM_AVAILABLE)

    async def get_next_item(
        self,
        num_cards_remaining: int,
        mode: QueueMode = QueueMode.SRS,
        sub_queue_id: str | None = None,
    ) -> str | None:
        """Id of the incremental item to show, or None to let the host show a flashcard."""
        decision = await self.next_decision(num_cards_remaining, mode, sub_queue_id)
        if decision.kind == DecisionKind.SHOW_INCREMENTAL_ITEM:
            return decision.item_id
        return None

    async def remove_current_item_from_queue(self) -> str | None:
        """Called after a completed review; the current item leaves the queue."""
        current = await self.ctx.session.get(CURRENT_ITEM_KEY)
        await self.ctx.session.set(CURRENT_ITEM_KEY, None)
        return current

    async def on_card_completed(self, item_id: str) -> None:
        """A host flashcard belonging to ``item_id`` was answered."""
        if self.ctx.config.performance_mode == PerformanceMode.LIGHT.value:
            return
        await self.priority_cache.update(item_id, light=True)
        seen = list(await self.ctx.session.get(SEEN_CARDS_KEY) or [])
        if item_id not in seen:
            seen.append(item_id)
            await self.ctx.session.set(SEEN_CARDS_KEY, seen)

    async def on_queue_exit(self, sub_queue_id: str | None = None) -> None:
        """Flush pending cache writes, save shield history, reset session state."""
        await self.priority_cache.flush_now()

        if self.ctx.config.performance_mode == PerformanceMode.FULL.value:
            await self._save_shield_history(sub_queue_id)
        else:
            logger.info("Light mode, skipping shield history")

        await self._reset_session_keys()
        self.interleaver.exit()
        self.scopes = None
        self.session_cache = None
        logger.info("Queue session reset")

    async def _save_shield_history(self, sub_queue_id: str | None) -> None:
        ctx = self.ctx
        now = ctx.clock()
        save_cards = not await ctx.session.get(SKIP_CARD_SHIELD_KEY)
        save_items = not await ctx.session.get(SKIP_ITEM_SHIELD_KEY)

        items = await incremental.get_cached_items(ctx)
        cards = await get_cached_card_infos(ctx)
        seen_items = set(await ctx.session.get(SEEN_ITEMS_KEY) or [])
        seen_cards = set(await ctx.session.get(SEEN_CARDS_KEY) or [])

        def item_due(i: IncrementalItem) -> bool:
            return i.is_due(now)

        def card_due(c: CardPriorityInfo) -> bool:
            return c.due_cards > 0

        if save_items:
            await save_kb_shield(
                ctx, items, item_due, seen_items, ITEM_SHIELD_HISTORY_KEY, "incremental"
            )
        if save_cards:
            await save_kb_shield(ctx, cards, card_due, seen_cards, CARD_SHIELD_HISTORY_KEY, "card")

        scope_key = (
            await ctx.session.get(ORIGINAL_SCOPE_KEY)
            or sub_queue_id
            or await ctx.session.get(CURRENT_SUB_QUEUE_KEY)
        )
        scope_ids = set(await ctx.session.get(PRIORITY_CALC_SCOPE_IDS_KEY) or [])
        if not scope_key or not scope_ids:
            return
        if save_items:
            await save_document_shield(
                ctx,
                items,
                scope_ids,
                item_due,
                seen_items,
                DOC_ITEM_SHIELD_HISTORY_KEY,
                scope_key,
                "incremental",
            )
        if save_cards:
            await save_document_shield(
                ctx,
                cards,
                scope_ids,
                card_due,
                seen_cards,
                DOC_CARD_SHIELD_HISTORY_KEY,
                scope_key,
                "card",
            )

    async def pause_incremental_items(self, minutes: float) -> int:
        """Show only flashcards for ``minutes``. Returns the end timestamp."""
        end = self.ctx.clock() + int(minutes * 60 * 1000)
        await self.ctx.durable.set(PAUSE_TIMER_KEY, end)
        logger.info(f"Incremental items paused for {minutes} minutes")
        return end

    async def resume_incremental_items(self) -> None:
        await self.ctx.durable.set(PAUSE_TIMER_KEY, None)

    # ------------------------------------------------------------------
    # Read accessors
    # ------------------------------------------------------------------

    async def get_item(self, item_id: str) -> IncrementalItem | None:
        return await incremental.get_incremental_item(self.ctx, item_id)

    async def get_priority(self, item_id: str) -> int:
        """Incremental priority if the node is incremental, else its card priority."""
        item = await self.get_item(item_id)
        if item:
            return item.priority
        if not await self.ctx.kb.exists(item_id):
            raise MissingEntity(item_id)
        return (await get_card_priority(self.ctx, item_id)).priority

    async def get_item_percentile(self, item_id: str) -> int | None:
        """KB-wide percentile of an incremental item (integer)."""
        return percentile(await incremental.get_cached_items(self.ctx), item_id)

    async def get_card_percentile(self, item_id: str) -> float | None:
        """KB-wide percentile of a card node (one decimal)."""
        return fine_percentile(await get_cached_card_infos(self.ctx), item_id)

    async def get_history(self, item_id: str) -> list:
        item = await self.get_item(item_id)
        return item.history if item else []

    async def get_next_due_date(self, item_id: str) -> int | None:
        item = await self.get_item(item_id)
        return item.next_rep_date if item else None

    async def get_shield(self, current_id: str | None = None) -> dict[str, ShieldStatus]:
        return {
            "incremental": await calculate_item_shield(self.ctx, current_id),
            "cards": await calculate_card_shield(self.ctx, current_id),
        }

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def tag_as_incremental(self, item_id: str) -> IncrementalItem | None:
        item = await incremental.init_incremental_item(self.ctx, item_id)
        await self.priority_cache.update(item_id)
        return item

    async def set_priority(self, item_id: str, priority: Any, propagate: bool = True) -> int:
        """
        Set a node's priority.

        Incremental items get their own priority changed; other nodes get a
        ``manual`` card priority. Either way the change is pushed down to
        inheriting descendants when ``propagate`` is set.
        """
        if not await self.ctx.kb.exists(item_id):
            raise MissingEntity(item_id)
        if await incremental.get_incremental_item(self.ctx, item_id):
            value = (await incremental.set_item_priority(self.ctx, item_id, priority)).priority
        else:
            value = await set_card_priority(self.ctx, item_id, priority, PrioritySource.MANUAL)
        await self.priority_cache.update(item_id)

        if propagate and await propagate_to_descendants(self.ctx, item_id, value):
            cached = {c.id for c in await get_cached_card_infos(self.ctx)}
            for descendant in await self.ctx.kb.descendants_of(item_id):
                if descendant in cached:
                    await self.priority_cache.update(descendant, light=True)
        return value

    async def review(
        self,
        item_id: str,
        lookback: bool = False,
        override_next_rep_date: int | None = None,
        override_interval_days: int | None = None,
    ) -> NextSpacing | None:
        mode = await self.ctx.session.get(CURRENT_QUEUE_MODE_KEY)
        return await incremental.review_item(
            self.ctx,
            item_id,
            lookback=lookback,
            queue_mode=mode,
            override_next_rep_date=override_next_rep_date,
            override_interval_days=override_interval_days,
        )

    async def reschedule(self, item_id: str, offset_days: int) -> NextSpacing | None:
        mode = await self.ctx.session.get(CURRENT_QUEUE_MODE_KEY)
        return await incremental.reschedule_item(self.ctx, item_id, offset_days, queue_mode=mode)

    async def dismiss(self, item_id: str) -> bool:
        return await incremental.dismiss_item(self.ctx, item_id)
