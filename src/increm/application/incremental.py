"""
Incremental item service.

Reads and validates items from host properties, creates new items, records
reviews and keeps the session-wide item cache current. Invalid stored data
never propagates: the item is logged and treated as not incremental.
"""

import asyncio
import logging
from collections import Counter
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from increm.application import scheduler
from increm.application.config import clamp_priority
from increm.application.context import EngineContext
from increm.application.dismissed import merge_history_from_dismissed, transfer_to_dismissed
from increm.application.scheduler import NextSpacing
from increm.domain.constants import (
    ALL_INCREMENTAL_KEY,
    CURRENT_ITEM_KEY,
    HISTORY_SLOT,
    INCREMENTAL_POWERUP,
    ITEM_LOAD_BATCH_SIZE,
    MS_PER_DAY,
    NEXT_REP_DATE_SLOT,
    PRIORITY_SLOT,
    REVIEW_START_TIME_KEY,
)
from increm.domain.errors import ConfigurationError, MalformedPersistedData, MissingEntity
from increm.domain.history import EventType, LifecycleMarker, history_to_json, parse_history
from increm.domain.models import IncrementalItem

logger = logging.getLogger(__name__)

# Reviews of the same item must not interleave their read-modify-write.
# An entry lives only while some coroutine holds or waits for it.
_review_locks: dict[str, asyncio.Lock] = {}
_review_lock_users: Counter[str] = Counter()


@asynccontextmanager
async def _review_lock(item_id: str) -> AsyncIterator[None]:
    lock = _review_locks.setdefault(item_id, asyncio.Lock())
    _review_lock_users[item_id] += 1
    try:
        async with lock:
            yield
    finally:
        _review_lock_users[item_id] -= 1
        if _review_lock_users[item_id] <= 0:
            del _review_lock_users[item_id]
            _review_locks.pop(item_id, None)


def _unwrap(value: Any) -> Any:
    if isinstance(value, list) and len(value) == 1:
        return value[0]
    return value


def _parse_next_rep_date(raw: Any, item_id: str) -> int:
    raw = _unwrap(raw)
    if isinstance(raw, bool):
        raise MalformedPersistedData(item_id, f"nextRepDate is not a timestamp: {raw!r}")
    try:
        return int(raw)
    except (TypeError, ValueError) as e:
        raise MalformedPersistedData(item_id, f"nextRepDate is not a timestamp: {raw!r}") from e


def _parse_priority(raw: Any, item_id: str, default: int) -> int:
    raw = _unwrap(raw)
    if raw in (None, ""):
        return default
    try:
        return clamp_priority(raw)
    except ConfigurationError:
        logger.warning(f"Item {item_id} has non-numeric priority {raw!r}, using {default}")
        return default


async def get_incremental_item(ctx: EngineContext, item_id: str) -> IncrementalItem | None:
    """
    Build an item from its host properties.

    Returns None when the node is not tagged incremental or its stored data
    fails validation.
    """
    if not await ctx.kb.has_powerup(item_id, INCREMENTAL_POWERUP):
        return None

    raw_date, raw_priority, raw_history = await asyncio.gather(
        ctx.kb.get_property(item_id, INCREMENTAL_POWERUP, NEXT_REP_DATE_SLOT),
        ctx.kb.get_property(item_id, INCREMENTAL_POWERUP, PRIORITY_SLOT),
        ctx.kb.get_property(item_id, INCREMENTAL_POWERUP, HISTORY_SLOT),
    )
    if raw_date in (None, "", []):
        return None

    try:
        return IncrementalItem(
            id=item_id,
            next_rep_date=_parse_next_rep_date(raw_date, item_id),
            priority=_parse_priority(raw_priority, item_id, ctx.config.default_priority),
            history=parse_history(raw_history, item_id),
        )
    except MalformedPersistedData as e:
        logger.warning(f"Treating as non-incremental: {e}")
        return None


# ---------------------------------------------------------------------------
# Session cache of all incremental items
# ---------------------------------------------------------------------------


async def get_cached_items(ctx: EngineContext) -> list[IncrementalItem]:
    records = await ctx.session.get(ALL_INCREMENTAL_KEY) or []
    items = []
    for record in records:
        try:
            items.append(IncrementalItem.from_record(record))
        except (MalformedPersistedData, KeyError, TypeError, ValueError) as e:
            logger.warning(f"Dropping unreadable cache record: {e}")
    return items


async def get_cached_item(ctx: EngineContext, item_id: str | None) -> IncrementalItem | None:
    if not item_id:
        return None
    records = await ctx.session.get(ALL_INCREMENTAL_KEY) or []
    # Only the matching record is parsed; the ancestor walk calls this per level
    record = next((r for r in records if r.get("id") == item_id), None)
    if record is None:
        return None
    try:
        return IncrementalItem.from_record(record)
    except (MalformedPersistedData, KeyError, TypeError, ValueError) as e:
        logger.warning(f"Dropping unreadable cache record: {e}")
        return None


async def is_incremental(ctx: EngineContext, item_id: str | None) -> bool:
    return await get_cached_item(ctx, item_id) is not None


async def update_item_cache(ctx: EngineContext, item: IncrementalItem) -> None:
    records = await ctx.session.get(ALL_INCREMENTAL_KEY) or []
    records = [r for r in records if r.get("id") != item.id]
    records.append(item.to_record())
    await ctx.session.set(ALL_INCREMENTAL_KEY, records)


async def remove_from_item_cache(ctx: EngineContext, item_id: str) -> None:
    records = await ctx.session.get(ALL_INCREMENTAL_KEY) or []
    await ctx.session.set(ALL_INCREMENTAL_KEY, [r for r in records if r.get("id") != item_id])


async def load_item_cache(
    ctx: EngineContext,
    batch_size: int = ITEM_LOAD_BATCH_SIZE,
    batch_delay_ms: int | None = None,
) -> list[IncrementalItem]:
    """Read every tagged item in batches and store the valid ones in the session."""
    delay = (ctx.config.batch_delay_ms if batch_delay_ms is None else batch_delay_ms) / 1000
    tagged = await ctx.kb.tagged_with(INCREMENTAL_POWERUP)
    logger.info(f"Found {len(tagged)} incremental items, loading in batches of {batch_size}")

    loaded: list[IncrementalItem] = []
    for start in range(0, len(tagged), batch_size):
        batch = tagged[start : start + batch_size]
        results = await asyncio.gather(*(get_incremental_item(ctx, i) for i in batch))
        loaded.extend(r for r in results if r is not None)
        await asyncio.sleep(delay)

    await ctx.session.set(ALL_INCREMENTAL_KEY, [i.to_record() for i in loaded])
    logger.info(f"Incremental item cache holds {len(loaded)} items")
    return loaded


# ---------------------------------------------------------------------------
# Mutations
# ---------------------------------------------------------------------------


async def save_spacing(ctx: EngineContext, spacing: NextSpacing) -> IncrementalItem | None:
    """Write a scheduling result back to the host and refresh the cache."""
    await ctx.kb.set_property(
        spacing.item_id, INCREMENTAL_POWERUP, NEXT_REP_DATE_SLOT, spacing.next_rep_date
    )
    await ctx.kb.set_property(
        spacing.item_id, INCREMENTAL_POWERUP, HISTORY_SLOT, history_to_json(spacing.history)
    )
    item = await get_incremental_item(ctx, spacing.item_id)
    if item:
        await update_item_cache(ctx, item)
    return item


async def init_incremental_item(ctx: EngineContext, item_id: str) -> IncrementalItem | None:
    """
    Tag ``item_id`` as incremental.

    Priority is inherited from the closest prioritized ancestor or falls back
    to the configured default. A previously dismissed history is merged back
    and a ``made-incremental`` marker starts the new session. Already
    incremental nodes are returned unchanged.
    """
    from increm.application.priority_inheritance import get_initial_priority

    if not await ctx.kb.exists(item_id):
        raise MissingEntity(item_id)
    if await ctx.kb.has_powerup(item_id, INCREMENTAL_POWERUP):
        return await get_incremental_item(ctx, item_id)

    priority = await get_initial_priority(ctx, item_id, ctx.config.default_priority)
    history = await merge_history_from_dismissed(ctx, item_id)
    now = ctx.clock()
    history.append(LifecycleMarker(now, now, EventType.MADE_INCREMENTAL))
    next_rep_date = now + ctx.config.initial_interval * MS_PER_DAY

    await ctx.kb.add_powerup(item_id, INCREMENTAL_POWERUP)
    await ctx.kb.set_property(item_id, INCREMENTAL_POWERUP, NEXT_REP_DATE_SLOT, next_rep_date)
    await ctx.kb.set_property(item_id, INCREMENTAL_POWERUP, PRIORITY_SLOT, str(priority))
    await ctx.kb.set_property(item_id, INCREMENTAL_POWERUP, HISTORY_SLOT, history_to_json(history))

    item = IncrementalItem(item_id, next_rep_date, priority, history)
    await update_item_cache(ctx, item)
    logger.info(f"Made {item_id} incremental with priority {priority}")
    return item


async def set_item_priority(ctx: EngineContext, item_id: str, priority: Any) -> IncrementalItem:
    """Set an item's priority, clamped to [0, 100]."""
    item = await get_incremental_item(ctx, item_id)
    if item is None:
        raise MissingEntity(item_id)
    item.priority = clamp_priority(priority)
    await ctx.kb.set_property(item_id, INCREMENTAL_POWERUP, PRIORITY_SLOT, str(item.priority))
    await update_item_cache(ctx, item)
    return item


async def _review_time_seconds(ctx: EngineContext) -> int | None:
    started = await ctx.session.get(REVIEW_START_TIME_KEY)
    if not started:
        return None
    return max(0, (ctx.clock() - int(started)) // 1000)


async def review_item(
    ctx: EngineContext,
    item_id: str,
    lookback: bool = False,
    queue_mode: str | None = None,
    override_next_rep_date: int | None = None,
    override_interval_days: int | None = None,
) -> NextSpacing | None:
    """
    Record a review of ``item_id`` and schedule its next repetition.

    The review time is measured from the session review-start timestamp,
    which is left in place for other consumers.
    """
    async with _review_lock(item_id):
        item = await get_incremental_item(ctx, item_id)
        if item is None:
            logger.warning(f"Cannot review {item_id}: not an incremental item")
            return None
        spacing = scheduler.get_next_spacing(
            item,
            ctx.clock(),
            lookback=lookback,
            queue_mode=queue_mode,
            multiplier=ctx.config.multiplier,
        )
        spacing = scheduler.apply_review_overrides(
            spacing,
            review_time_seconds=await _review_time_seconds(ctx),
            override_next_rep_date=override_next_rep_date,
            override_interval_days=override_interval_days,
        )
        await save_spacing(ctx, spacing)
        logger.info(f"Reviewed {item_id}: next in {spacing.interval} days")
        return spacing


async def reschedule_item(
    ctx: EngineContext, item_id: str, offset_days: int, queue_mode: str | None = None
) -> NextSpacing | None:
    """Move an item to today + ``offset_days`` from inside the queue."""
    async with _review_lock(item_id):
        item = await get_incremental_item(ctx, item_id)
        if item is None:
            return None
        spacing = scheduler.reschedule_to_offset(
            item,
            offset_days,
            ctx.clock(),
            review_time_seconds=await _review_time_seconds(ctx),
            queue_mode=queue_mode,
        )
        await save_spacing(ctx, spacing)
        return spacing


async def reschedule_item_in_editor(
    ctx: EngineContext, item_id: str, new_date_ms: int
) -> NextSpacing | None:
    async with _review_lock(item_id):
        item = await get_incremental_item(ctx, item_id)
        if item is None:
            return None
        spacing = scheduler.reschedule_in_editor(item, new_date_ms, ctx.clock())
        await save_spacing(ctx, spacing)
        return spacing


async def record_manual_date_reset(
    ctx: EngineContext, item_id: str, old_date_ms: int
) -> NextSpacing | None:
    """Log that the due date was already changed by hand to its current value."""
    async with _review_lock(item_id):
        item = await get_incremental_item(ctx, item_id)
        if item is None or item.next_rep_date == old_date_ms:
            return None
        spacing = scheduler.manual_date_reset(item, old_date_ms, item.next_rep_date, ctx.clock())
        await save_spacing(ctx, spacing)
        return spacing


async def execute_repetition(
    ctx: EngineContext, item_id: str, interval_days: int, review_time_seconds: int | None = None
) -> NextSpacing | None:
    async with _review_lock(item_id):
        item = await get_incremental_item(ctx, item_id)
        if item is None:
            return None
        spacing = scheduler.execute_repetition(
            item, interval_days, ctx.clock(), review_time_seconds=review_time_seconds
        )
        await save_spacing(ctx, spacing)
        return spacing


async def dismiss_item(ctx: EngineContext, item_id: str) -> bool:
    """
    Stop scheduling ``item_id``.

    Its history moves to the dismissed archive and the item leaves the cache.
    Returns False when the item was not incremental.
    """
    item = await get_incremental_item(ctx, item_id)
    if item is None:
        return False
    await transfer_to_dismissed(ctx, item_id, item.history)
    await ctx.kb.remove_powerup(item_id, INCREMENTAL_POWERUP)
    await remove_from_item_cache(ctx, item_id)
    if await ctx.session.get(CURRENT_ITEM_KEY) == item_id:
        await ctx.session.set(CURRENT_ITEM_KEY, None)
    logger.info(f"Dismissed {item_id} ({len(item.history)} history entries archived)")
    return True


async def get_current_item_id(ctx: EngineContext) -> str | None:
    return await ctx.session.get(CURRENT_ITEM_KEY)


async def set_current_item_id(ctx: EngineContext, item_id: str | None) -> None:
    await ctx.session.set(CURRENT_ITEM_KEY, item_id)
