"""
Debounced writer for the KB-wide card priority cache.

Many priority recalculations arrive in bursts (a card review, a subtree
propagation). Each one only records a pending update keyed by node id; a
single quiet-period timer then applies them all in one write:

- existing entry + info: replace (a light update keeps the old percentile)
- new id + info: append
- info is None: remove

A heavy update, or ``flush_now``, re-sorts the cache and recomputes every
``kb_percentile``. ``flush_now`` must be awaited before a session ends so no
pending update is lost.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, replace

from increm.application.card_priority import (
    get_cached_card_infos,
    get_card_priority,
    store_card_infos,
    with_kb_percentiles,
)
from increm.application.context import EngineContext
from increm.domain.constants import CARD_PRIORITY_REFRESH_KEY
from increm.domain.models import CardPriorityInfo

logger = logging.getLogger(__name__)

_UNSET = object()


@dataclass
class PendingUpdate:
    info: CardPriorityInfo | None
    light: bool


class DebouncedPriorityCache:
    """
    Coalesces card priority cache writes.

    Args:
        ctx: Engine context; ``ctx.clock`` stamps the refresh key.
        delay_ms: Quiet period before a flush. Defaults to ``ctx.config.debounce_ms``.
        sleep: Awaitable sleep used by the timer; tests swap in a controllable one.
    """

    def __init__(
        self,
        ctx: EngineContext,
        delay_ms: int | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.ctx = ctx
        self.delay_ms = ctx.config.debounce_ms if delay_ms is None else delay_ms
        self._sleep = sleep
        self._pending: dict[str, PendingUpdate] = {}
        self._timer: asyncio.Task | None = None

    @property
    def pending(self) -> dict[str, PendingUpdate]:
        return dict(self._pending)

    def schedule(self, item_id: str, info: CardPriorityInfo | None, light: bool = False) -> None:
        """Record an update and restart the quiet-period timer. Last write wins per id."""
        self._pending[item_id] = PendingUpdate(info, light)
        if self._timer is not None:
            self._timer.cancel()
        self._timer = asyncio.get_running_loop().create_task(self._fire())

    async def update(self, item_id: str, light: bool = False, info=_UNSET) -> None:
        """
        Queue a cache update for ``item_id``.

        Without an explicit ``info`` the current priority is read from the
        host; a node that no longer exists is queued for removal.
        """
        try:
            if info is _UNSET:
                if await self.ctx.kb.exists(item_id):
                    info = await get_card_priority(self.ctx, item_id)
                else:
                    info = None
            self.schedule(item_id, info, light)
        except Exception as e:
            logger.error(
                f"Error queueing card priority cache update for {item_id}: {e}", exc_info=True
            )

    async def _fire(self) -> None:
        await self._sleep(self.delay_ms / 1000)
        self._timer = None
        await self._flush()

    async def wait(self) -> None:
        """Wait for the currently armed timer, if any, to flush."""
        timer = self._timer
        if timer is not None:
            try:
                await timer
            except asyncio.CancelledError:
                pass

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    async def flush(self, heavy: bool = False) -> None:
        """Apply pending updates now, honoring their light/heavy flags."""
        self._cancel_timer()
        await self._flush(force_heavy=heavy)

    async def flush_now(self) -> None:
        """Apply pending updates now and recompute every percentile."""
        await self.flush(heavy=True)

    async def _flush(self, force_heavy: bool = False) -> None:
        if not self._pending:
            return
        updates, self._pending = self._pending, {}
        heavy = force_heavy or any(not u.light for u in updates.values())

        cache = await get_cached_card_infos(self.ctx)
        index = {info.id: pos for pos, info in enumerate(cache)}
        removed: set[str] = set()

        for item_id, update in updates.items():
            pos = index.get(item_id)
            if pos is not None:
                if update.info is None:
                    removed.add(item_id)
                else:
                    cache[pos] = replace(update.info, kb_percentile=cache[pos].kb_percentile)
            elif update.info is not None:
                index[item_id] = len(cache)
                cache.append(update.info)

        cache = [info for info in cache if info.id not in removed]
        if heavy:
            logger.info(f"Recomputing KB percentiles for {len(cache)} card priority entries")
            cache = with_kb_percentiles(cache)

        await store_card_infos(self.ctx, cache)
        await self.ctx.session.set(CARD_PRIORITY_REFRESH_KEY, self.ctx.clock())
        logger.debug(f"Flushed {len(updates)} card priority cache updates")
