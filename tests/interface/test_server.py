from unittest.mock import AsyncMock, patch

import pytest
from conftest import add_item
from fastapi.testclient import TestClient

from increm.application.config import AppConfig
from increm.application.context import EngineContext
from increm.application.factory import Host
from increm.consts import VERSION
from increm.infrastructure.snapshot import Snapshot
from increm.server import app

client = TestClient(app)


def test_health_check():
    response = client.get("/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "ok"
    assert data["version"] == VERSION


def test_get_version():
    response = client.get("/version")
    assert response.status_code == 200
    assert response.json() == {"version": VERSION}


@pytest.fixture
def live():
    """Client with the lifespan running against an in-memory knowledge base."""
    snapshot = Snapshot()
    snapshot.kb.add_node("doc")
    add_item(snapshot.kb, "a", parent="doc", priority=10)
    add_item(snapshot.kb, "b", parent="doc", priority=20)
    config = AppConfig(
        snapshot_path=None, batch_delay_ms=0, debounce_ms=0, cards_per_item="no-cards"
    )
    ctx = EngineContext(
        kb=snapshot.kb,
        cards=snapshot.cards,
        session=snapshot.session,
        durable=snapshot.durable,
        config=config,
    )
    host = Host(ctx=ctx, snapshot=snapshot)
    with patch("increm.server.get_host", new=AsyncMock(return_value=host)):
        with TestClient(app) as c:
            yield c


def test_queue_round_trip(live):
    response = live.post("/queue/enter", json={})
    assert response.json() == {"due_items": 2}

    response = live.post("/queue/next", json={"num_cards_remaining": 0})
    assert response.status_code == 200
    assert response.json() == {"kind": "incremental", "item_id": "a", "remaining": 1}

    response = live.post("/items/a/review", json={})
    assert response.status_code == 200
    assert response.json()["interval"] >= 1

    assert live.post("/queue/remove-current").json() == {"item_id": "a"}
    assert live.post("/queue/exit", json={}).json() == {"ok": True}


def test_next_with_bad_mode_is_rejected(live):
    response = live.post("/queue/next", json={"num_cards_remaining": 0, "mode": "sideways"})
    assert response.status_code == 422


def test_get_item(live):
    response = live.get("/items/b")
    assert response.status_code == 200
    data = response.json()
    assert data["incremental"] is True
    assert data["priority"] == 20
    assert data["percentile"] == 100
    assert data["history"] == []


def test_missing_item_is_404(live):
    assert live.get("/items/ghost").status_code == 404
    assert live.post("/items/ghost/priority", json={"priority": 5}).status_code == 404


def test_review_of_non_incremental_is_404(live):
    response = live.post("/items/doc/review", json={})
    assert response.status_code == 404


def test_priority_tag_and_dismiss(live):
    response = live.post("/items/doc/priority", json={"priority": 140, "propagate": False})
    assert response.json() == {"priority": 100}
    assert live.get("/items/doc").json()["priority"] == 100

    live.post("/items/a/dismiss")
    assert live.get("/items/a").json()["incremental"] is False

    response = live.post("/items/a/tag")
    assert response.json()["ok"] is True


def test_pause_and_resume(live):
    paused = live.post("/queue/pause", json={"minutes": 5}).json()
    assert paused["paused_until"] > 0
    assert live.post("/queue/next", json={"num_cards_remaining": 0}).json()["kind"] == "flashcard"

    assert live.post("/queue/pause", json={}).json() == {"paused_until": None}


def test_shield(live):
    live.post("/queue/enter", json={})

    data = live.get("/shield").json()

    assert data["incremental"]["kb"]["absolute"] == 10
    assert data["cards"] == {"kb": None, "doc": None}


@patch("increm.application.session.QueueSession.get_shield", new_callable=AsyncMock)
def test_shield_failure_is_500(mock_shield, live):
    mock_shield.side_effect = Exception("Boom")

    response = live.get("/shield")

    assert response.status_code == 500
    assert "Boom" in response.json()["detail"]
