import pytest

from increm.application.sorting import (
    get_cards_per_item,
    get_sorting_randomness,
    set_cards_per_item,
    set_sorting_randomness,
)
from increm.domain.constants import CARDS_PER_ITEM_KEY, RANDOMNESS_KEY


@pytest.mark.asyncio
async def test_defaults_come_from_config(ctx):
    assert await get_sorting_randomness(ctx) == 0.0
    assert await get_cards_per_item(ctx) == 3


@pytest.mark.asyncio
async def test_randomness_is_clamped(ctx):
    await set_sorting_randomness(ctx, 1.7)
    assert await get_sorting_randomness(ctx) == 1.0

    await set_sorting_randomness(ctx, -0.2)
    assert await ctx.durable.get(RANDOMNESS_KEY) == 0.0


@pytest.mark.parametrize(
    "value,expected", [(0, 0), (7, 7), (-3, 0), ("5", 5), ("no-rem", "no-rem"), ("no-cards", "no-cards")]
)
@pytest.mark.asyncio
async def test_cards_per_item(ctx, value, expected):
    await set_cards_per_item(ctx, value)
    assert await get_cards_per_item(ctx) == expected


@pytest.mark.asyncio
async def test_stored_string_numbers_are_parsed(ctx):
    await ctx.durable.set(CARDS_PER_ITEM_KEY, "2")
    assert await get_cards_per_item(ctx) == 2
