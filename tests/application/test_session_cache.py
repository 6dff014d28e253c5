import pytest
import pytest_asyncio
from conftest import DAY, NOW, add_card_priority, add_item

from increm.application.card_priority import build_card_priority_cache
from increm.application.incremental import load_item_cache
from increm.application.scope import resolve_queue_scopes
from increm.application.session_cache import (
    SessionCacheBuilder,
    get_card_doc_percentile,
    get_due_items_in_scope,
    get_item_doc_percentile,
    get_session_cache,
)
from increm.domain.constants import (
    CURRENT_SCOPE_IDS_KEY,
    PRIORITY_CALC_SCOPE_IDS_KEY,
    SKIP_CARD_SHIELD_KEY,
    SKIP_ITEM_SHIELD_KEY,
)


@pytest_asyncio.fixture
async def populated(ctx, kb, cards):
    kb.add_node("doc")
    add_item(kb, "d1", parent="doc", priority=10)
    add_item(kb, "d2", parent="doc", priority=30, next_rep_date=NOW + 2 * DAY)
    add_item(kb, "elsewhere", priority=5)
    kb.add_node("cardnode", parent="doc")
    add_card_priority(kb, "cardnode", 40)
    cards.add_card("c1", "cardnode", NOW - DAY)
    kb.add_node("outside-cards")
    cards.add_card("c2", "outside-cards", NOW - DAY)
    await load_item_cache(ctx)
    await build_card_priority_cache(ctx)
    return ctx


@pytest.mark.asyncio
async def test_full_mode_precomputes_scoped_lists(populated):
    ctx = populated
    builder = SessionCacheBuilder(ctx)
    scopes = await resolve_queue_scopes(ctx, "doc")

    cache = await builder.build(scopes)

    assert {i.id for i in cache.due_items_in_kb} == {"d1", "elsewhere"}
    assert [i.id for i in cache.due_items_in_scope] == ["d1"]
    assert cache.item_doc_percentiles == {"d1": 50, "d2": 100}
    assert {c.id for c in cache.due_cards_in_kb} == {"cardnode", "outside-cards"}
    assert [c.id for c in cache.due_cards_in_scope] == ["cardnode"]
    assert cache.doc_percentiles == {"cardnode": 100}
    assert set(await ctx.session.get(CURRENT_SCOPE_IDS_KEY)) == {
        "doc",
        "d1",
        "d2",
        "cardnode",
    }
    assert await get_session_cache(ctx) == cache
    assert await builder.due_item_count(scopes, cache) == 1


@pytest.mark.asyncio
async def test_light_mode_skips_precomputation(populated):
    ctx = populated
    ctx.config.performance_mode = "light"
    builder = SessionCacheBuilder(ctx)
    scopes = await resolve_queue_scopes(ctx, "doc")

    cache = await builder.build(scopes)

    assert cache.due_items_in_scope == []
    assert cache.item_doc_percentiles == {}
    assert cache.due_cards_in_kb == []
    assert await builder.due_item_count(scopes, cache) == 1
    # On-demand accessors still answer
    assert await get_item_doc_percentile(ctx, "d2") == 100
    assert await get_card_doc_percentile(ctx, "cardnode") == 100
    assert [i.id for i in await get_due_items_in_scope(ctx)] == ["d1"]


@pytest.mark.asyncio
async def test_whole_kb_queue(populated):
    ctx = populated
    builder = SessionCacheBuilder(ctx)
    scopes = await resolve_queue_scopes(ctx, None)

    cache = await builder.build(scopes)

    assert await ctx.session.get(CURRENT_SCOPE_IDS_KEY) is None
    assert await builder.due_item_count(scopes, cache) == 2


@pytest.mark.asyncio
async def test_full_kb_review_document_ranks_against_everything(populated):
    ctx = populated
    ctx.kb.add_node(
        "review",
        text=["Priority Review - Full Knowledge Base"],
        tags=["Priority Review Queue"],
    )
    builder = SessionCacheBuilder(ctx)
    scopes = await resolve_queue_scopes(ctx, "review")

    cache = await builder.build(scopes)

    priority_scope = set(await ctx.session.get(PRIORITY_CALC_SCOPE_IDS_KEY))
    assert {"d1", "d2", "elsewhere", "cardnode", "outside-cards"} <= priority_scope
    assert cache.item_doc_percentiles["elsewhere"] == 33


@pytest.mark.asyncio
async def test_empty_caches_mark_shield_skips(ctx, kb):
    builder = SessionCacheBuilder(ctx)
    await builder.build(await resolve_queue_scopes(ctx, None))

    assert await ctx.session.get(SKIP_CARD_SHIELD_KEY) is True
    assert await ctx.session.get(SKIP_ITEM_SHIELD_KEY) is True
