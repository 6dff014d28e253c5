"""
Priority inheritance through the node hierarchy.

A new incremental item or flashcard-bearing node takes the priority of its
closest prioritized ancestor. Precedence while walking up:

1. An ancestor that is itself an incremental item wins immediately.
2. An ancestor with a ``manual`` card priority wins immediately.
3. Otherwise the closest ancestor with an ``inherited`` card priority is used.

Nothing found means the configured default.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Literal

from increm.application.config import clamp_priority
from increm.application.context import EngineContext
from increm.application.incremental import get_cached_item, get_incremental_item
from increm.domain.constants import (
    CARD_PRIORITY_POWERUP,
    CARD_PRIORITY_SLOT,
    CARD_SOURCE_SLOT,
    MAX_ANCESTOR_DEPTH,
)
from increm.domain.errors import ConfigurationError
from increm.domain.models import PrioritySource

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AncestorPriority:
    priority: int
    ancestor_id: str
    source_type: Literal["incremental", "card"]
    level: int  # 1 = parent, 2 = grandparent, ...


def _unwrap(value):
    if isinstance(value, list) and len(value) == 1:
        return value[0]
    return value


async def _incremental_priority(ctx: EngineContext, item_id: str) -> int | None:
    item = await get_cached_item(ctx, item_id)
    if item is None:
        item = await get_incremental_item(ctx, item_id)
    return item.priority if item else None


async def _card_priority(ctx: EngineContext, item_id: str) -> tuple[int, str] | None:
    raw = _unwrap(await ctx.kb.get_property(item_id, CARD_PRIORITY_POWERUP, CARD_PRIORITY_SLOT))
    if raw in (None, ""):
        return None
    try:
        priority = clamp_priority(raw)
    except ConfigurationError:
        return None
    source = _unwrap(await ctx.kb.get_property(item_id, CARD_PRIORITY_POWERUP, CARD_SOURCE_SLOT))
    return priority, source or PrioritySource.DEFAULT.value


async def find_closest_ancestor_with_any_priority(
    ctx: EngineContext, item_id: str
) -> AncestorPriority | None:
    """Walk the parent chain (at most ``MAX_ANCESTOR_DEPTH`` levels)."""
    inherited_fallback: AncestorPriority | None = None
    current = item_id

    for level in range(1, MAX_ANCESTOR_DEPTH + 1):
        parent = await ctx.kb.parent_of(current)
        if parent is None:
            break

        inc_priority = await _incremental_priority(ctx, parent)
        if inc_priority is not None:
            return AncestorPriority(inc_priority, parent, "incremental", level)

        card = await _card_priority(ctx, parent)
        if card is not None:
            priority, source = card
            if source == PrioritySource.MANUAL.value:
                return AncestorPriority(priority, parent, "card", level)
            if source == PrioritySource.INHERITED.value and inherited_fallback is None:
                inherited_fallback = AncestorPriority(priority, parent, "card", level)

        current = parent
    else:
        logger.warning(f"Ancestor walk from {item_id} hit the depth cap of {MAX_ANCESTOR_DEPTH}")

    return inherited_fallback


async def get_initial_priority(ctx: EngineContext, item_id: str, default_priority: int) -> int:
    ancestor = await find_closest_ancestor_with_any_priority(ctx, item_id)
    if ancestor:
        logger.info(
            f"Inheriting priority {ancestor.priority} from {ancestor.source_type} "
            f"ancestor {ancestor.ancestor_id}"
        )
        return ancestor.priority
    return default_priority


async def propagate_to_descendants(
    ctx: EngineContext,
    parent_id: str,
    new_priority: int,
    batch_size: int | None = None,
) -> int:
    """
    Push ``new_priority`` down to every descendant that still inherits.

    Incremental descendants keep their own priority and ``manual`` card
    priorities are never touched. A descendant is only updated when no
    closer ancestor overrides the new value.

    Returns:
        Number of descendants updated.
    """
    from increm.application.card_priority import get_card_priority, set_card_priority

    batch_size = batch_size or ctx.config.propagation_batch_size
    delay = ctx.config.batch_delay_ms / 1000
    descendants = await ctx.kb.descendants_of(parent_id)
    updated = 0

    async def _update(descendant: str) -> bool:
        if await get_incremental_item(ctx, descendant):
            return False
        info = await get_card_priority(ctx, descendant)
        if info.source == PrioritySource.MANUAL:
            return False
        closer = await find_closest_ancestor_with_any_priority(ctx, descendant)
        if closer is not None and closer.priority != new_priority:
            return False
        await set_card_priority(ctx, descendant, new_priority, PrioritySource.INHERITED)
        return True

    for start in range(0, len(descendants), batch_size):
        batch = descendants[start : start + batch_size]
        results = await asyncio.gather(*(_update(d) for d in batch))
        updated += sum(results)
        if start + batch_size < len(descendants):
            await asyncio.sleep(delay)

    logger.info(f"Propagated priority {new_priority} from {parent_id} to {updated} descendants")
    return updated
