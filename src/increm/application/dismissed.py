"""Archive of review history for items that were dismissed."""

import logging

from increm.application.context import EngineContext
from increm.domain.constants import (
    DISMISSED_DATE_SLOT,
    DISMISSED_HISTORY_SLOT,
    DISMISSED_POWERUP,
)
from increm.domain.errors import MalformedPersistedData
from increm.domain.history import (
    EventType,
    HistoryEntry,
    LifecycleMarker,
    history_to_json,
    parse_history,
)

logger = logging.getLogger(__name__)


async def get_dismissed_history(
    ctx: EngineContext, item_id: str
) -> tuple[list[HistoryEntry], int | None] | None:
    """Archived history and dismissal date, or None if the item was never dismissed."""
    if not await ctx.kb.has_powerup(item_id, DISMISSED_POWERUP):
        return None
    raw = await ctx.kb.get_property(item_id, DISMISSED_POWERUP, DISMISSED_HISTORY_SLOT)
    try:
        history = parse_history(raw, item_id)
    except MalformedPersistedData as e:
        logger.warning(f"Ignoring dismissed archive: {e}")
        history = []
    raw_date = await ctx.kb.get_property(item_id, DISMISSED_POWERUP, DISMISSED_DATE_SLOT)
    dismissed_date = raw_date if isinstance(raw_date, int) else None
    return history, dismissed_date


async def transfer_to_dismissed(
    ctx: EngineContext, item_id: str, history: list[HistoryEntry]
) -> None:
    """
    Move ``history`` into the dismissed archive with a closing marker.

    An empty history is not archived. If the item already has an archive the
    new entries are appended to it.
    """
    if not history:
        return
    now = ctx.clock()
    with_marker = list(history) + [LifecycleMarker(now, now, EventType.DISMISSED)]

    existing = await get_dismissed_history(ctx, item_id)
    if existing is not None:
        merged = existing[0] + with_marker
        await ctx.kb.set_property(
            item_id, DISMISSED_POWERUP, DISMISSED_HISTORY_SLOT, history_to_json(merged)
        )
        return

    await ctx.kb.add_powerup(item_id, DISMISSED_POWERUP)
    await ctx.kb.set_property(
        item_id, DISMISSED_POWERUP, DISMISSED_HISTORY_SLOT, history_to_json(with_marker)
    )
    await ctx.kb.set_property(item_id, DISMISSED_POWERUP, DISMISSED_DATE_SLOT, now)


async def merge_history_from_dismissed(ctx: EngineContext, item_id: str) -> list[HistoryEntry]:
    """Take the archived history back out and drop the archive."""
    archived = await get_dismissed_history(ctx, item_id)
    if archived is None:
        return []
    history, _ = archived
    await ctx.kb.remove_powerup(item_id, DISMISSED_POWERUP)
    logger.info(f"Merged {len(history)} history entries from dismissed archive of {item_id}")
    return history
