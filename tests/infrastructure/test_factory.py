from unittest.mock import AsyncMock, patch

import pytest

from increm.application.config import AppConfig
from increm.application.factory import get_host
from increm.domain.errors import IncremError
from increm.infrastructure.adapters.host_connect import HostConnectAdapter, HostConnectStore
from increm.infrastructure.snapshot import load_snapshot


@pytest.mark.asyncio
async def test_snapshot_backend_starts_empty_and_saves(tmp_path):
    path = tmp_path / "kb.yaml"
    host = await get_host(AppConfig(snapshot_path=path))

    assert host.snapshot is not None
    assert host.ctx.kb is host.snapshot.kb
    host.snapshot.kb.add_node("n")
    await host.ctx.durable.set("randomness", 0.5)
    host.save()
    await host.close()

    reloaded = load_snapshot(path)
    assert "n" in reloaded.kb.nodes
    assert reloaded.durable.data == {"randomness": 0.5}


@pytest.mark.asyncio
async def test_in_memory_backend_without_path():
    host = await get_host(AppConfig(snapshot_path=None))
    host.save()
    assert host.adapter is None


@pytest.mark.asyncio
@patch.object(HostConnectAdapter, "is_responsive", new_callable=AsyncMock, return_value=True)
async def test_connect_backend(_responsive, capsys):
    host = await get_host(AppConfig(backend="connect", host_url="http://bridge.test"))

    assert isinstance(host.adapter, HostConnectAdapter)
    assert host.ctx.kb is host.adapter
    assert isinstance(host.ctx.durable, HostConnectStore)
    assert host.ctx.durable.scope == "durable"
    assert "Backend: HostConnect" in capsys.readouterr().err
    await host.close()


@pytest.mark.asyncio
@patch.object(HostConnectAdapter, "is_responsive", new_callable=AsyncMock, return_value=False)
async def test_unreachable_bridge(_responsive):
    with pytest.raises(IncremError, match="not reachable"):
        await get_host(AppConfig(backend="connect"))
