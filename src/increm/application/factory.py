"""
Host Factory
Centralizes the logic for selecting the host backend and wiring an EngineContext.
"""

import logging
import sys
from dataclasses import dataclass

from increm.application.config import AppConfig
from increm.application.context import EngineContext
from increm.domain.errors import IncremError
from increm.infrastructure.adapters.host_connect import HostConnectAdapter
from increm.infrastructure.snapshot import Snapshot, load_snapshot, save_snapshot

logger = logging.getLogger(__name__)


@dataclass
class Host:
    """A wired engine context plus whatever backs it."""

    ctx: EngineContext
    snapshot: Snapshot | None = None
    adapter: HostConnectAdapter | None = None

    def save(self) -> None:
        """Persist snapshot-backed state. A no-op for the connect backend."""
        path = self.ctx.config.snapshot_path
        if self.snapshot is not None and path is not None:
            save_snapshot(self.snapshot, path)

    async def close(self) -> None:
        if self.adapter is not None:
            await self.adapter.close()


async def get_host(config: AppConfig) -> Host:
    """
    Returns a Host for the configured backend.

    Raises:
        IncremError: if the connect backend is selected and the bridge is unreachable.
    """
    if config.backend == "connect":
        adapter = HostConnectAdapter(url=config.host_url)
        if not await adapter.is_responsive():
            await adapter.close()
            raise IncremError(f"Host bridge at {config.host_url} is not reachable")
        print("Backend: HostConnect", file=sys.stderr)
        ctx = EngineContext(
            kb=adapter,
            cards=adapter,
            session=adapter.store("session"),
            durable=adapter.store("durable"),
            config=config,
        )
        return Host(ctx=ctx, adapter=adapter)

    if config.snapshot_path is not None and config.snapshot_path.exists():
        snapshot = load_snapshot(config.snapshot_path)
    else:
        if config.snapshot_path is not None:
            logger.info(f"No snapshot at {config.snapshot_path}, starting empty")
        snapshot = Snapshot()
    ctx = EngineContext(
        kb=snapshot.kb,
        cards=snapshot.cards,
        session=snapshot.session,
        durable=snapshot.durable,
        config=config,
    )
    return Host(ctx=ctx, snapshot=snapshot)
