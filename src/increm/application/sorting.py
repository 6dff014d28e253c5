"""User-adjustable queue sorting settings, persisted in durable storage."""

from increm.application.context import EngineContext
from increm.domain.constants import (
    CARDS_PER_ITEM_KEY,
    FLASHCARDS_ONLY,
    ITEMS_ONLY,
    RANDOMNESS_KEY,
)

CardsPerItem = int | str


async def get_sorting_randomness(ctx: EngineContext) -> float:
    value = await ctx.durable.get(RANDOMNESS_KEY)
    if value is None:
        return ctx.config.sorting_randomness
    return min(1.0, max(0.0, float(value)))


async def set_sorting_randomness(ctx: EngineContext, randomness: float) -> None:
    await ctx.durable.set(RANDOMNESS_KEY, min(1.0, max(0.0, float(randomness))))


async def get_cards_per_item(ctx: EngineContext) -> CardsPerItem:
    """Flashcards shown between incremental items, or ``"no-cards"`` / ``"no-rem"``."""
    value = await ctx.durable.get(CARDS_PER_ITEM_KEY)
    if value is None:
        return ctx.config.cards_per_item
    if value in (ITEMS_ONLY, FLASHCARDS_ONLY):
        return value
    return max(0, int(value))


async def set_cards_per_item(ctx: EngineContext, value: CardsPerItem) -> None:
    if value not in (ITEMS_ONLY, FLASHCARDS_ONLY):
        value = max(0, int(value))
    await ctx.durable.set(CARDS_PER_ITEM_KEY, value)
