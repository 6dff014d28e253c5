"""
Queue interleaver: decides, one queue step at a time, whether the host shows
one of its own flashcards or an incremental item, and which item.

The step counter lives on the interleaver instance and is reset through
``enter()`` / ``exit()``; it is never persisted.
"""

import logging
import math
import random

from increm.application.context import EngineContext
from increm.application.incremental import get_cached_items, get_incremental_item
from increm.application.scope import build_quick_scope
from increm.application.sorting import get_cards_per_item, get_sorting_randomness
from increm.domain.constants import (
    CURRENT_ITEM_KEY,
    CURRENT_QUEUE_MODE_KEY,
    CURRENT_SCOPE_IDS_KEY,
    FLASHCARDS_ONLY,
    ITEMS_ONLY,
    PAUSE_TIMER_KEY,
    REVIEW_START_TIME_KEY,
    SEEN_ITEMS_KEY,
)
from increm.domain.models import DecisionKind, IncrementalItem, QueueDecision, QueueMode

logger = logging.getLogger(__name__)


def apply_random_swaps(
    items: list[IncrementalItem], randomness: float, rng: random.Random
) -> list[IncrementalItem]:
    """``ceil(randomness * len(items))`` random pairwise swaps, in place."""
    swaps = math.ceil(randomness * len(items))
    for _ in range(swaps):
        a = rng.randrange(len(items))
        b = rng.randrange(len(items))
        items[a], items[b] = items[b], items[a]
    return items


class QueueInterleaver:
    """
    Per-step decision function.

    Args:
        ctx: Engine context.
        rng: Random source for the sorting swaps.
    """

    def __init__(self, ctx: EngineContext, rng: random.Random | None = None):
        self.ctx = ctx
        self.rng = rng or random.Random()
        self.counter = 0

    def enter(self) -> None:
        self.counter = 0

    def exit(self) -> None:
        self.counter = 0

    async def _pause_active(self) -> bool:
        end = await self.ctx.durable.get(PAUSE_TIMER_KEY)
        if not end:
            return False
        now = self.ctx.clock()
        if end > now:
            logger.info(f"Incremental items paused for {math.ceil((end - now) / 1000)} more seconds")
            return True
        await self.ctx.durable.set(PAUSE_TIMER_KEY, None)
        logger.info("Pause timer expired and cleared")
        return False

    async def _scope_ids(self, sub_queue_id: str | None) -> list[str] | None:
        scope = await self.ctx.session.get(CURRENT_SCOPE_IDS_KEY)
        if sub_queue_id and scope is None:
            logger.info("Session cache not ready, computing scope on the fly")
            scope = await build_quick_scope(self.ctx, sub_queue_id)
        return scope

    def _candidates(
        self,
        items: list[IncrementalItem],
        mode: QueueMode,
        scope: list[str] | None,
        sub_queue_id: str | None,
        seen: set[str],
    ) -> list[IncrementalItem]:
        if mode == QueueMode.IN_ORDER and scope:
            position = {item_id: pos for pos, item_id in enumerate(scope)}
            ordered = sorted(items, key=lambda i: position.get(i.id, -1))
        else:
            ordered = sorted(items, key=lambda i: i.priority)

        in_scope = set(scope or [])
        now = self.ctx.clock()
        candidates = []
        for item in ordered:
            if sub_queue_id and item.id not in in_scope:
                continue
            if item.id in seen:
                continue
            if mode == QueueMode.SRS and not item.is_due(now):
                continue
            candidates.append(item)
        return candidates

    def _should_show_item(self, cards_per_item: int | str, num_cards_remaining: int) -> bool:
        if cards_per_item == ITEMS_ONLY or num_cards_remaining == 0:
            return True
        if cards_per_item == FLASHCARDS_ONLY:
            return False
        return (self.counter + 1) % (int(cards_per_item) + 1) == 0

    async def next_item(
        self,
        num_cards_remaining: int,
        mode: QueueMode = QueueMode.SRS,
        sub_queue_id: str | None = None,
    ) -> QueueDecision:
        """Decide what the next queue step shows."""
        ctx = self.ctx

        if await self._pause_active():
            return QueueDecision(DecisionKind.SHOW_FLASHCARD)

        scope = await self._scope_ids(sub_queue_id)
        if sub_queue_id and not scope:
            logger.info(f"Could not build a scope for {sub_queue_id}")
            return QueueDecision(DecisionKind.NO_ITEM_AVAILABLE)

        seen = list(await ctx.session.get(SEEN_ITEMS_KEY) or [])
        items = await get_cached_items(ctx)
        candidates = self._candidates(items, mode, scope, sub_queue_id, set(seen))
        cards_per_item = await get_cards_per_item(ctx)

        if not self._should_show_item(cards_per_item, num_cards_remaining):
            logger.debug(f"Flashcard turn at step {self.counter}")
            self.counter += 1
            return QueueDecision(DecisionKind.SHOW_FLASHCARD, remaining=len(candidates))

        if not candidates:
            logger.debug("No incremental candidates, showing a flashcard")
            self.counter += 1
            return QueueDecision(DecisionKind.SHOW_FLASHCARD)

        remaining = len(candidates)
        apply_random_swaps(candidates, await get_sorting_randomness(ctx), self.rng)

        for candidate in candidates:
            if await get_incremental_item(ctx, candidate.id) is not None:
                break
            logger.info(f"Skipping stale queue entry {candidate.id}")
        else:
            logger.warning("Every candidate was stale")
            return QueueDecision(DecisionKind.NO_ITEM_AVAILABLE)

        seen.append(candidate.id)
        await ctx.session.set(SEEN_ITEMS_KEY, seen)
        await ctx.session.set(CURRENT_QUEUE_MODE_KEY, mode.value)
        await ctx.session.set(REVIEW_START_TIME_KEY, ctx.clock())
        await ctx.session.set(CURRENT_ITEM_KEY, candidate.id)
        self.counter += 1
        logger.info(f"Showing incremental item {candidate.id} (priority {candidate.priority})")
        return QueueDecision(
            DecisionKind.SHOW_INCREMENTAL_ITEM, item_id=candidate.id, remaining=remaining - 1
        )
