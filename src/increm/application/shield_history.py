"""Daily shield snapshots kept in durable storage."""

import logging
from collections.abc import Callable
from datetime import datetime
from typing import Any, TypeVar

from increm.application.context import EngineContext
from increm.application.percentile import percentile
from increm.application.shield import top_missed
from increm.domain.models import CardPriorityInfo, IncrementalItem

logger = logging.getLogger(__name__)

T = TypeVar("T", IncrementalItem, CardPriorityInfo)


def shield_snapshot(
    items: list[T], is_due: Callable[[T], bool], seen_ids: set[str]
) -> dict[str, Any]:
    """``{"absolute", "percentile", "universeSize"}`` for one universe of items."""
    snapshot: dict[str, Any] = {"absolute": None, "percentile": 100, "universeSize": len(items)}
    top = top_missed(items, is_due, seen_ids)
    if top is not None:
        snapshot["absolute"] = top.priority
        snapshot["percentile"] = percentile(items, top.id)
    return snapshot


def _today(ctx: EngineContext) -> str:
    return datetime.fromtimestamp(ctx.clock() / 1000).strftime("%Y-%m-%d")


async def save_kb_shield(
    ctx: EngineContext,
    items: list[T],
    is_due: Callable[[T], bool],
    seen_ids: set[str],
    storage_key: str,
    label: str,
) -> None:
    if not items:
        logger.info(f"No {label} items, skipping KB shield save")
        return
    snapshot = shield_snapshot(items, is_due, seen_ids)
    history = dict(await ctx.durable.get(storage_key) or {})
    history[_today(ctx)] = snapshot
    await ctx.durable.set(storage_key, history)
    logger.info(f"Saved KB {label} shield: {snapshot}")


async def save_document_shield(
    ctx: EngineContext,
    items: list[T],
    scope_ids: set[str],
    is_due: Callable[[T], bool],
    seen_ids: set[str],
    storage_key: str,
    scope_key: str,
    label: str,
) -> None:
    if not scope_ids:
        logger.info(f"No scope, skipping {label} document shield save")
        return
    scoped = [i for i in items if i.id in scope_ids]
    snapshot = shield_snapshot(scoped, is_due, seen_ids)
    history = dict(await ctx.durable.get(storage_key) or {})
    per_scope = dict(history.get(scope_key) or {})
    per_scope[_today(ctx)] = snapshot
    history[scope_key] = per_scope
    await ctx.durable.set(storage_key, history)
    logger.info(
        f"{label} document shield for {scope_key}: priority {snapshot['absolute']}, "
        f"percentile {snapshot['percentile']}, universe {snapshot['universeSize']}"
    )
