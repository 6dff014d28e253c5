"""
Card priority service.

Flashcard-bearing nodes carry an independent priority under the
``cardPriority`` powerup. ``manual`` priorities are sticky; everything else
may be recomputed from ancestors at any time.
"""

import asyncio
import logging
from collections import Counter
from dataclasses import replace
from typing import Any

from increm.application.config import clamp_priority
from increm.application.context import EngineContext
from increm.application.incremental import get_incremental_item
from increm.application.percentile import calculate_all_percentiles
from increm.application.priority_inheritance import find_closest_ancestor_with_any_priority
from increm.domain.constants import (
    ALL_CARD_PRIORITY_KEY,
    CARD_CACHE_BATCH_SIZE,
    CARD_LAST_UPDATED_SLOT,
    CARD_PRIORITY_POWERUP,
    CARD_PRIORITY_SLOT,
    CARD_SOURCE_SLOT,
)
from increm.domain.errors import CacheUnavailable, ConfigurationError
from increm.domain.models import CardPriorityInfo, PrioritySource

logger = logging.getLogger(__name__)


def _unwrap(value: Any) -> Any:
    if isinstance(value, list) and len(value) == 1:
        return value[0]
    return value


def _parse_source(raw: Any) -> PrioritySource:
    try:
        return PrioritySource(_unwrap(raw))
    except ValueError:
        return PrioritySource.DEFAULT


async def get_card_priority(ctx: EngineContext, item_id: str) -> CardPriorityInfo:
    """
    Card priority of a node, resolved the way the queue sees it.

    A stored value wins. Otherwise the closest prioritized ancestor is
    reported as ``inherited``, and failing that the configured default.
    """
    now = ctx.clock()
    cards = await ctx.cards.cards_for(item_id)
    due = sum(1 for c in cards if c.is_due(now))

    raw = _unwrap(await ctx.kb.get_property(item_id, CARD_PRIORITY_POWERUP, CARD_PRIORITY_SLOT))
    if raw not in (None, ""):
        try:
            priority = clamp_priority(raw)
        except ConfigurationError:
            priority = ctx.config.default_card_priority
        source = _parse_source(
            await ctx.kb.get_property(item_id, CARD_PRIORITY_POWERUP, CARD_SOURCE_SLOT)
        )
        raw_updated = _unwrap(
            await ctx.kb.get_property(item_id, CARD_PRIORITY_POWERUP, CARD_LAST_UPDATED_SLOT)
        )
        try:
            last_updated = int(raw_updated)
        except (TypeError, ValueError):
            last_updated = now
        return CardPriorityInfo(item_id, priority, source, last_updated, len(cards), due)

    ancestor = await find_closest_ancestor_with_any_priority(ctx, item_id)
    if ancestor:
        return CardPriorityInfo(
            item_id, ancestor.priority, PrioritySource.INHERITED, 0, len(cards), due
        )
    return CardPriorityInfo(
        item_id, ctx.config.default_card_priority, PrioritySource.DEFAULT, 0, len(cards), due
    )


async def set_card_priority(
    ctx: EngineContext, item_id: str, priority: Any, source: PrioritySource
) -> int:
    """Store a card priority (clamped). Returns the stored value."""
    value = clamp_priority(priority)
    if not await ctx.kb.has_powerup(item_id, CARD_PRIORITY_POWERUP):
        await ctx.kb.add_powerup(item_id, CARD_PRIORITY_POWERUP)
    await asyncio.gather(
        ctx.kb.set_property(item_id, CARD_PRIORITY_POWERUP, CARD_PRIORITY_SLOT, str(value)),
        ctx.kb.set_property(item_id, CARD_PRIORITY_POWERUP, CARD_SOURCE_SLOT, source.value),
        ctx.kb.set_property(
            item_id, CARD_PRIORITY_POWERUP, CARD_LAST_UPDATED_SLOT, str(ctx.clock())
        ),
    )
    return value


async def calculate_new_priority(
    ctx: EngineContext, item_id: str, existing: CardPriorityInfo | None = None
) -> tuple[int, PrioritySource]:
    """What the priority should be, without saving it."""
    if existing and existing.source == PrioritySource.MANUAL:
        return existing.priority, PrioritySource.MANUAL

    item = await get_incremental_item(ctx, item_id)
    if item:
        return item.priority, PrioritySource.INHERITED

    ancestor = await find_closest_ancestor_with_any_priority(ctx, item_id)
    if ancestor:
        return ancestor.priority, PrioritySource.INHERITED

    if existing and existing.source == PrioritySource.INHERITED:
        return existing.priority, PrioritySource.INHERITED
    return ctx.config.default_card_priority, PrioritySource.DEFAULT


async def auto_assign_card_priority(ctx: EngineContext, item_id: str) -> int:
    """Compute and store a non-manual priority from context."""
    existing = await get_card_priority(ctx, item_id)
    if existing.source == PrioritySource.MANUAL:
        return existing.priority
    priority, source = await calculate_new_priority(ctx, item_id, existing)
    return await set_card_priority(ctx, item_id, priority, source)


def with_kb_percentiles(infos: list[CardPriorityInfo]) -> list[CardPriorityInfo]:
    """Sort by priority and stamp every entry with its KB-wide percentile."""
    percentiles = calculate_all_percentiles(infos)
    ordered = sorted(infos, key=lambda i: i.priority)
    return [replace(info, kb_percentile=percentiles[info.id]) for info in ordered]


async def get_cached_card_infos(ctx: EngineContext) -> list[CardPriorityInfo]:
    records = await ctx.session.get(ALL_CARD_PRIORITY_KEY) or []
    return [CardPriorityInfo.from_record(r) for r in records]


async def store_card_infos(ctx: EngineContext, infos: list[CardPriorityInfo]) -> None:
    await ctx.session.set(ALL_CARD_PRIORITY_KEY, [i.to_record() for i in infos])


async def build_card_priority_cache(
    ctx: EngineContext, batch_size: int = CARD_CACHE_BATCH_SIZE
) -> list[CardPriorityInfo]:
    """
    Build the KB-wide card priority cache.

    Covers every node that owns cards plus every node tagged with a card
    priority (inheritance-only nodes).
    """
    all_cards = await ctx.cards.all_cards()
    card_owner_ids = list(dict.fromkeys(c.item_id for c in all_cards))
    tagged_ids = await ctx.kb.tagged_with(CARD_PRIORITY_POWERUP)
    unique_ids = list(dict.fromkeys(card_owner_ids + tagged_ids))
    logger.info(
        f"Building card priority cache: {len(card_owner_ids)} card owners, "
        f"{len(tagged_ids)} tagged, {len(unique_ids)} total"
    )

    infos: list[CardPriorityInfo] = []
    delay = ctx.config.batch_delay_ms / 1000
    for start in range(0, len(unique_ids), batch_size):
        batch = unique_ids[start : start + batch_size]

        async def _load(item_id: str) -> CardPriorityInfo | None:
            if not await ctx.kb.exists(item_id):
                return None
            return await get_card_priority(ctx, item_id)

        results = await asyncio.gather(*(_load(i) for i in batch))
        infos.extend(r for r in results if r is not None)
        if start + batch_size < len(unique_ids):
            await asyncio.sleep(delay)

    enriched = with_kb_percentiles(infos)
    await store_card_infos(ctx, enriched)
    logger.info(f"Card priority cache holds {len(enriched)} entries")
    return enriched


async def _due_from_cache(
    ctx: EngineContext, scope_ids: set[str] | None
) -> list[CardPriorityInfo]:
    infos = await get_cached_card_infos(ctx)
    if not infos:
        raise CacheUnavailable("Card priority cache is empty")
    if scope_ids is None:
        return [i for i in infos if i.due_cards > 0]
    return [i for i in infos if i.id in scope_ids and i.due_cards > 0]


async def _due_from_scratch(
    ctx: EngineContext, scope_ids: set[str] | None
) -> list[CardPriorityInfo]:
    now = ctx.clock()
    due_counts = Counter(c.item_id for c in await ctx.cards.all_cards() if c.is_due(now))
    candidates = due_counts.keys() if scope_ids is None else scope_ids & due_counts.keys()

    results = []
    for item_id in candidates:
        if not await ctx.kb.exists(item_id):
            continue
        info = await get_card_priority(ctx, item_id)
        info.due_cards = due_counts[item_id]
        results.append(info)
    logger.info(f"Recomputed {len(results)} nodes with due cards without the cache")
    return results


async def get_due_cards_with_priorities(
    ctx: EngineContext, scope_ids: set[str] | None = None
) -> list[CardPriorityInfo]:
    """
    Card priority infos with at least one due card.

    ``scope_ids`` restricts the result; None means the whole knowledge base.
    Uses the KB cache and recomputes from scratch when it is empty.
    """
    try:
        return await _due_from_cache(ctx, scope_ids)
    except CacheUnavailable:
        logger.warning("Card priority cache is empty, falling back to slow path")
        return await _due_from_scratch(ctx, scope_ids)
