"""
Priority shield: the most important due item the learner has not reached yet.

Incremental items report the coarse (integer) percentile, cards the fine
(one decimal) one.
"""

from collections.abc import Callable, Iterable
from typing import TypeVar

from increm.application.card_priority import get_cached_card_infos
from increm.application.context import EngineContext
from increm.application.incremental import get_cached_items
from increm.application.percentile import fine_percentile, percentile
from increm.domain.constants import (
    CURRENT_SCOPE_IDS_KEY,
    PRIORITY_CALC_SCOPE_IDS_KEY,
    SEEN_CARDS_KEY,
    SEEN_ITEMS_KEY,
)
from increm.domain.models import CardPriorityInfo, IncrementalItem, ShieldEntry, ShieldStatus

T = TypeVar("T", IncrementalItem, CardPriorityInfo)


def top_missed(
    items: Iterable[T],
    is_due: Callable[[T], bool],
    seen_ids: set[str],
    current_id: str | None = None,
) -> T | None:
    """Lowest priority value among due items not yet seen. The current item counts as unseen."""
    candidates = [i for i in items if is_due(i) and (i.id not in seen_ids or i.id == current_id)]
    if not candidates:
        return None
    # min() keeps the first of equal priorities
    return min(candidates, key=lambda i: i.priority)


def item_shield(
    items: list[IncrementalItem],
    seen_ids: set[str],
    now_ms: int,
    scope_ids: set[str] | None = None,
    current_id: str | None = None,
) -> ShieldStatus:
    def is_due(i: IncrementalItem) -> bool:
        return i.is_due(now_ms)

    kb = doc = None
    top = top_missed(items, is_due, seen_ids, current_id)
    if top is not None:
        kb = ShieldEntry(top.priority, percentile(items, top.id))

    if scope_ids:
        scoped = [i for i in items if i.id in scope_ids]
        top = top_missed(scoped, is_due, seen_ids, current_id)
        if top is not None:
            doc = ShieldEntry(top.priority, percentile(scoped, top.id))
    return ShieldStatus(kb=kb, doc=doc)


def card_shield(
    infos: list[CardPriorityInfo],
    seen_ids: set[str],
    scope_ids: set[str] | None = None,
    current_id: str | None = None,
) -> ShieldStatus:
    def is_due(i: CardPriorityInfo) -> bool:
        return i.due_cards > 0

    kb = doc = None
    top = top_missed(infos, is_due, seen_ids, current_id)
    if top is not None:
        kb = ShieldEntry(top.priority, fine_percentile(infos, top.id) or 100.0)

    if scope_ids:
        scoped = [i for i in infos if i.id in scope_ids]
        top = top_missed(scoped, is_due, seen_ids, current_id)
        if top is not None:
            doc = ShieldEntry(top.priority, fine_percentile(scoped, top.id) or 100.0)
    return ShieldStatus(kb=kb, doc=doc)


async def _priority_scope(ctx: EngineContext) -> set[str] | None:
    ids = await ctx.session.get(PRIORITY_CALC_SCOPE_IDS_KEY)
    if ids is None:
        ids = await ctx.session.get(CURRENT_SCOPE_IDS_KEY)
    return set(ids) if ids else None


async def calculate_item_shield(ctx: EngineContext, current_id: str | None = None) -> ShieldStatus:
    items = await get_cached_items(ctx)
    seen = set(await ctx.session.get(SEEN_ITEMS_KEY) or [])
    return item_shield(items, seen, ctx.clock(), await _priority_scope(ctx), current_id)


async def calculate_card_shield(ctx: EngineContext, current_id: str | None = None) -> ShieldStatus:
    infos = await get_cached_card_infos(ctx)
    seen = set(await ctx.session.get(SEEN_CARDS_KEY) or [])
    return card_shield(infos, seen, await _priority_scope(ctx), current_id)
