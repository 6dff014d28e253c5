import pytest
from conftest import DAY, NOW, add_item

from increm.application.incremental import load_item_cache
from increm.application.shield import (
    calculate_item_shield,
    card_shield,
    item_shield,
    top_missed,
)
from increm.application.shield_history import (
    save_document_shield,
    save_kb_shield,
    shield_snapshot,
)
from increm.domain.constants import PRIORITY_CALC_SCOPE_IDS_KEY, SEEN_ITEMS_KEY
from increm.domain.models import (
    CardPriorityInfo,
    IncrementalItem,
    PrioritySource,
    ShieldEntry,
)


def _items():
    return [
        IncrementalItem("a", NOW, 10),
        IncrementalItem("b", NOW, 20),
        IncrementalItem("c", NOW + DAY, 5),  # not due
        IncrementalItem("d", NOW, 40),
    ]


def test_top_missed_ignores_seen_and_not_due():
    items = _items()
    top = top_missed(items, lambda i: i.is_due(NOW), {"a"})
    assert top.id == "b"


def test_current_item_counts_as_unseen():
    items = _items()
    top = top_missed(items, lambda i: i.is_due(NOW), {"a"}, current_id="a")
    assert top.id == "a"


def test_item_shield_kb_and_document():
    status = item_shield(_items(), {"a"}, NOW, scope_ids={"b", "d"})

    assert status.kb == ShieldEntry(absolute=20, percentile=75)
    assert status.doc == ShieldEntry(absolute=20, percentile=50)


def test_item_shield_all_seen():
    status = item_shield(_items(), {"a", "b", "d"}, NOW)
    assert status.kb is None
    assert status.doc is None


def test_card_shield_uses_fine_percentile():
    infos = [
        CardPriorityInfo("x", 10, PrioritySource.MANUAL, due_cards=0),
        CardPriorityInfo("y", 20, PrioritySource.DEFAULT, due_cards=2),
        CardPriorityInfo("z", 30, PrioritySource.DEFAULT, due_cards=1),
    ]
    status = card_shield(infos, set())
    assert status.kb == ShieldEntry(absolute=20, percentile=66.7)


@pytest.mark.asyncio
async def test_calculate_item_shield_reads_session(ctx, kb):
    add_item(kb, "a", priority=10)
    add_item(kb, "b", priority=20)
    await load_item_cache(ctx)
    await ctx.session.set(SEEN_ITEMS_KEY, ["a"])
    await ctx.session.set(PRIORITY_CALC_SCOPE_IDS_KEY, ["b"])

    status = await calculate_item_shield(ctx)

    assert status.kb.absolute == 20
    assert status.doc == ShieldEntry(absolute=20, percentile=100)


def test_shield_snapshot():
    snapshot = shield_snapshot(_items(), lambda i: i.is_due(NOW), set())
    assert snapshot == {"absolute": 10, "percentile": 50, "universeSize": 4}

    empty = shield_snapshot(_items(), lambda i: False, set())
    assert empty == {"absolute": None, "percentile": 100, "universeSize": 4}


@pytest.mark.asyncio
async def test_save_kb_shield_keys_by_local_date(ctx):
    await save_kb_shield(ctx, _items(), lambda i: i.is_due(NOW), set(), "hist", "incremental")

    history = await ctx.durable.get("hist")
    assert history == {"2024-03-15": {"absolute": 10, "percentile": 50, "universeSize": 4}}


@pytest.mark.asyncio
async def test_save_kb_shield_skips_empty_universe(ctx):
    await save_kb_shield(ctx, [], lambda i: True, set(), "hist", "incremental")
    assert await ctx.durable.get("hist") is None


@pytest.mark.asyncio
async def test_save_document_shield_nests_by_scope(ctx, clock):
    due = lambda i: i.is_due(clock())  # noqa: E731
    await save_document_shield(ctx, _items(), {"b", "d"}, due, set(), "doc-hist", "doc", "inc")
    clock.advance(days=1)
    await save_document_shield(ctx, _items(), {"b", "d"}, due, {"b"}, "doc-hist", "doc", "inc")

    history = await ctx.durable.get("doc-hist")
    assert history["doc"]["2024-03-15"]["absolute"] == 20
    assert history["doc"]["2024-03-16"] == {"absolute": 40, "percentile": 100, "universeSize": 2}
