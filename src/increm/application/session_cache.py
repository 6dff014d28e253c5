"""
Session cache builder.

Runs once on queue entry and precomputes what the interleaver and the shield
would otherwise recompute on every step: scope id sets, due lists in scope
and across the knowledge base, and scoped percentile maps.

In ``light`` performance mode the percentile and due-list precomputation is
skipped; the accessors at the bottom of this module compute answers on demand.
"""

import logging

from increm.application.card_priority import get_cached_card_infos, get_due_cards_with_priorities
from increm.application.context import EngineContext
from increm.application.incremental import get_cached_items
from increm.application.percentile import calculate_all_percentiles, percentile
from increm.application.scope import build_comprehensive_scope
from increm.domain.constants import (
    CURRENT_SCOPE_IDS_KEY,
    PRIORITY_CALC_SCOPE_IDS_KEY,
    QUEUE_SESSION_CACHE_KEY,
    SKIP_CARD_SHIELD_KEY,
    SKIP_ITEM_SHIELD_KEY,
)
from increm.domain.models import (
    IncrementalItem,
    PerformanceMode,
    QueueScopes,
    QueueSessionCache,
)

logger = logging.getLogger(__name__)


class SessionCacheBuilder:
    def __init__(self, ctx: EngineContext):
        self.ctx = ctx

    @property
    def full_mode(self) -> bool:
        return self.ctx.config.performance_mode == PerformanceMode.FULL.value

    async def _priority_scope(self, scopes: QueueScopes, item_scope: list[str]) -> list[str]:
        if not scopes.is_priority_review_doc:
            return item_scope
        if scopes.scope_for_priority_calc is None:
            card_ids = [c.id for c in await get_cached_card_infos(self.ctx)]
            item_ids = [i.id for i in await get_cached_items(self.ctx)]
            scope = list(dict.fromkeys(card_ids + item_ids))
            logger.info(f"Review document uses the full knowledge base ({len(scope)} nodes)")
            return scope
        return await build_comprehensive_scope(self.ctx, scopes.scope_for_priority_calc)

    async def build(self, scopes: QueueScopes) -> QueueSessionCache:
        ctx = self.ctx
        now = ctx.clock()

        all_cards = await get_cached_card_infos(ctx)
        if not all_cards:
            logger.warning("Card priority cache is empty, card shield history will be skipped")
        await ctx.session.set(SKIP_CARD_SHIELD_KEY, not all_cards)

        all_items = await get_cached_items(ctx)
        if not all_items:
            logger.warning("Incremental item cache is empty, item shield history will be skipped")
        await ctx.session.set(SKIP_ITEM_SHIELD_KEY, not all_items)

        cache = QueueSessionCache(due_items_in_kb=[i for i in all_items if i.is_due(now)])
        if self.full_mode:
            cache.due_cards_in_kb = await get_due_cards_with_priorities(ctx)

        if scopes.scope_for_item_selection:
            item_scope = await build_comprehensive_scope(ctx, scopes.scope_for_item_selection)
            await ctx.session.set(CURRENT_SCOPE_IDS_KEY, item_scope)

            priority_scope = await self._priority_scope(scopes, item_scope)
            if priority_scope:
                await ctx.session.set(PRIORITY_CALC_SCOPE_IDS_KEY, priority_scope)

                if self.full_mode:
                    in_scope = set(priority_scope)
                    scoped_cards = [c for c in all_cards if c.id in in_scope]
                    cache.doc_percentiles = calculate_all_percentiles(scoped_cards)
                    cache.due_cards_in_scope = [c for c in cache.due_cards_in_kb if c.id in in_scope]

                    scoped_items = [i for i in all_items if i.id in in_scope]
                    cache.item_doc_percentiles = calculate_all_percentiles(scoped_items)
                    cache.due_items_in_scope = [i for i in cache.due_items_in_kb if i.id in in_scope]
                    logger.info(
                        f"Priority scope: {len(scoped_cards)} card nodes "
                        f"({len(cache.due_cards_in_scope)} due), {len(scoped_items)} items "
                        f"({len(cache.due_items_in_scope)} due)"
                    )
                else:
                    logger.info("Light mode, skipping session cache precomputation")

        await ctx.session.set(QUEUE_SESSION_CACHE_KEY, cache.to_record())
        return cache

    async def due_item_count(self, scopes: QueueScopes, cache: QueueSessionCache) -> int:
        """Number of due incremental items shown next to the queue counter."""
        ctx = self.ctx
        if not scopes.is_priority_review_doc and not scopes.scope_for_item_selection:
            return len(cache.due_items_in_kb)
        if not scopes.is_priority_review_doc and self.full_mode:
            return len(cache.due_items_in_scope)

        scope_ids = set(await ctx.session.get(CURRENT_SCOPE_IDS_KEY) or [])
        if not scope_ids:
            return 0
        now = ctx.clock()
        return sum(1 for i in await get_cached_items(ctx) if i.id in scope_ids and i.is_due(now))


async def get_session_cache(ctx: EngineContext) -> QueueSessionCache | None:
    record = await ctx.session.get(QUEUE_SESSION_CACHE_KEY)
    return QueueSessionCache.from_record(record) if record else None


async def _priority_scope_ids(ctx: EngineContext) -> set[str]:
    return set(await ctx.session.get(PRIORITY_CALC_SCOPE_IDS_KEY) or [])


async def get_item_doc_percentile(ctx: EngineContext, item_id: str) -> int | None:
    """Percentile of an incremental item within the session's priority scope."""
    cache = await get_session_cache(ctx)
    if cache and item_id in cache.item_doc_percentiles:
        return cache.item_doc_percentiles[item_id]
    scope = await _priority_scope_ids(ctx)
    if not scope:
        return None
    return percentile([i for i in await get_cached_items(ctx) if i.id in scope], item_id)


async def get_card_doc_percentile(ctx: EngineContext, item_id: str) -> int | None:
    """Percentile of a card node within the session's priority scope."""
    cache = await get_session_cache(ctx)
    if cache and item_id in cache.doc_percentiles:
        return cache.doc_percentiles[item_id]
    scope = await _priority_scope_ids(ctx)
    if not scope:
        return None
    return percentile([c for c in await get_cached_card_infos(ctx) if c.id in scope], item_id)


async def get_due_items_in_scope(ctx: EngineContext) -> list[IncrementalItem]:
    cache = await get_session_cache(ctx)
    if cache and cache.due_items_in_scope:
        return cache.due_items_in_scope
    scope = await _priority_scope_ids(ctx)
    now = ctx.clock()
    return [i for i in await get_cached_items(ctx) if i.id in scope and i.is_due(now)]
