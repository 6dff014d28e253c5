"""
Scope resolution for queue sessions.

A scope is the set of node ids that "belongs" to a queue anchor. It is much
broader than the anchor's subtree so that "due in this document" matches
what a learner would consider part of it.
"""

import asyncio
import logging
import time

from increm.application.context import EngineContext
from increm.domain.constants import FULL_KB_MARKER, NEXT_REP_DATE_SLOT_NODE, PRIORITY_REVIEW_TAG
from increm.domain.interfaces import RichText
from increm.domain.models import QueueScopes

logger = logging.getLogger(__name__)


async def _backlink_owner(ctx: EngineContext, ref_id: str) -> str | None:
    """A nextRepDate property row stands in for the item that owns it."""
    text = await ctx.kb.text_of(ref_id)
    first = text[0] if text else None
    if isinstance(first, dict) and first.get("_id") == NEXT_REP_DATE_SLOT_NODE:
        return await ctx.kb.parent_of(ref_id)
    return ref_id


async def build_comprehensive_scope(ctx: EngineContext, anchor_id: str) -> list[str]:
    """
    Anchor + descendants + document/portal context + folder queue + sources
    + referencing nodes, deduplicated in that order.

    A missing anchor yields an empty scope.
    """
    if not await ctx.kb.exists(anchor_id):
        return []

    start = time.perf_counter()
    descendants, context, folder, sources, referencing = await asyncio.gather(
        ctx.kb.descendants_of(anchor_id),
        ctx.kb.document_context_of(anchor_id),
        ctx.kb.folder_queue_of(anchor_id),
        ctx.kb.sources_of(anchor_id),
        ctx.kb.referencing_of(anchor_id),
    )
    owners = await asyncio.gather(*(_backlink_owner(ctx, ref) for ref in referencing))
    referencing = [owner for owner in owners if owner]
    scope = list(dict.fromkeys([anchor_id, *descendants, *context, *folder, *sources, *referencing]))
    logger.info(
        f"Scope for {anchor_id}: {len(scope)} nodes "
        f"({len(descendants)} descendants, {len(context)} in context, {len(folder)} folder, "
        f"{len(sources)} sources, {len(referencing)} referencing) "
        f"in {(time.perf_counter() - start) * 1000:.0f}ms"
    )
    return scope


async def build_quick_scope(ctx: EngineContext, anchor_id: str) -> list[str]:
    """Anchor + descendants + document context; used before the session cache is ready."""
    if not await ctx.kb.exists(anchor_id):
        return []
    descendants, context = await asyncio.gather(
        ctx.kb.descendants_of(anchor_id),
        ctx.kb.document_context_of(anchor_id),
    )
    return list(dict.fromkeys([anchor_id, *descendants, *context]))


async def is_priority_review_document(ctx: EngineContext, item_id: str) -> bool:
    tags = await ctx.kb.tags_of(item_id)
    return any(PRIORITY_REVIEW_TAG in tag for tag in tags)


def extract_original_scope(title: RichText) -> tuple[bool, str | None]:
    """
    Read the original scope out of a review document title.

    Returns:
        ``(True, node_id)`` for the first reference element,
        ``(True, None)`` when the title names the full knowledge base,
        ``(False, None)`` when the title cannot be interpreted.
    """
    if not title:
        logger.warning("Review document has no title to read a scope from")
        return False, None

    for element in title:
        if isinstance(element, dict) and element.get("i") == "q" and "_id" in element:
            return True, element["_id"]

    text = "".join(e for e in title if isinstance(e, str))
    if FULL_KB_MARKER in text:
        return True, None

    logger.warning("Could not extract scope from review document title")
    return False, None


async def resolve_queue_scopes(ctx: EngineContext, sub_queue_id: str | None) -> QueueScopes:
    """
    Decide which scopes drive item selection and priority calculations.

    Both are the queue anchor, except for a generated review document: items
    still come from the document, but percentiles are computed against the
    scope it was generated from.
    """
    base = QueueScopes(sub_queue_id, sub_queue_id, sub_queue_id)
    if not sub_queue_id or not await ctx.kb.exists(sub_queue_id):
        return base
    if not await is_priority_review_document(ctx, sub_queue_id):
        return base

    logger.info(f"Priority review document detected: {sub_queue_id}")
    resolved, original = extract_original_scope(await ctx.kb.text_of(sub_queue_id))
    if not resolved:
        return QueueScopes(
            scope_for_item_selection=sub_queue_id,
            scope_for_priority_calc=sub_queue_id,
            original_scope_id=sub_queue_id,
            is_priority_review_doc=True,
            priority_scope_resolved=False,
        )

    logger.info(f"Priority calculations use {original or 'the full knowledge base'}")
    return QueueScopes(
        scope_for_item_selection=sub_queue_id,
        scope_for_priority_calc=original,
        original_scope_id=original,
        is_priority_review_doc=True,
    )
