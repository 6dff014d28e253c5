import logging
import time
from contextlib import asynccontextmanager
from dataclasses import asdict
from typing import Any

from fastapi import FastAPI, HTTPException, Request
from pydantic import BaseModel

from increm.application.config import resolve_config
from increm.application.factory import Host, get_host
from increm.application.session import QueueSession
from increm.consts import VERSION
from increm.domain.errors import MissingEntity
from increm.domain.history import dump_history
from increm.domain.models import QueueMode

# Setup logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("increm.server")


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    logger.info(f"increm Server v{VERSION} starting up...")
    host = await get_host(resolve_config())
    session = QueueSession(host.ctx)
    await session.startup()
    app.state.host = host
    app.state.session = session
    yield
    # Shutdown
    await session.priority_cache.flush_now()
    host.save()
    await host.close()
    logger.info("increm Server shutting down...")


app = FastAPI(
    title="increm Server",
    description="Incremental-reading scheduler for a knowledge base host.",
    version=VERSION,
    lifespan=lifespan,
)


class HealthResponse(BaseModel):
    status: str
    version: str
    uptime_seconds: float


start_time = time.time()


def _session(request: Request) -> QueueSession:
    return request.app.state.session


def _persist(request: Request) -> None:
    host: Host = request.app.state.host
    host.save()


def _fail(action: str, e: Exception) -> HTTPException:
    if isinstance(e, MissingEntity):
        return HTTPException(status_code=404, detail=str(e))
    logger.error(f"{action} failed: {e}", exc_info=True)
    return HTTPException(status_code=500, detail=str(e))


@app.get("/health", response_model=HealthResponse)
async def health_check():
    """
    Simple health check to verify server is reachable.
    """
    return HealthResponse(status="ok", version=VERSION, uptime_seconds=time.time() - start_time)


@app.get("/version")
async def get_version():
    return {"version": VERSION}


# ---------------------------------------------------------------------------
# Queue lifecycle
# ---------------------------------------------------------------------------


class QueueEnterRequest(BaseModel):
    sub_queue_id: str | None = None


class QueueNextRequest(BaseModel):
    num_cards_remaining: int
    mode: QueueMode = QueueMode.SRS
    sub_queue_id: str | None = None


class QueueDecisionResponse(BaseModel):
    kind: str
    item_id: str | None = None
    remaining: int = 0


@app.post("/queue/enter")
async def queue_enter(req: QueueEnterRequest, request: Request):
    session = _session(request)
    try:
        await session.on_queue_enter(req.sub_queue_id)
        return {"due_items": session.due_item_count}
    except Exception as e:
        raise _fail("Queue enter", e) from e


@app.post("/queue/next", response_model=QueueDecisionResponse)
async def queue_next(req: QueueNextRequest, request: Request):
    """Decide the next queue step. Degrades to ``none`` instead of failing."""
    decision = await _session(request).next_decision(
        req.num_cards_remaining, req.mode, req.sub_queue_id
    )
    return QueueDecisionResponse(
        kind=decision.kind.value, item_id=decision.item_id, remaining=decision.remaining
    )


@app.post("/queue/remove-current")
async def queue_remove_current(request: Request):
    return {"item_id": await _session(request).remove_current_item_from_queue()}


@app.post("/queue/exit")
async def queue_exit(req: QueueEnterRequest, request: Request):
    try:
        await _session(request).on_queue_exit(req.sub_queue_id)
        _persist(request)
        return {"ok": True}
    except Exception as e:
        raise _fail("Queue exit", e) from e


class PauseRequest(BaseModel):
    minutes: float | None = None  # None resumes


@app.post("/queue/pause")
async def queue_pause(req: PauseRequest, request: Request):
    session = _session(request)
    if req.minutes is None:
        await session.resume_incremental_items()
        end = None
    else:
        end = await session.pause_incremental_items(req.minutes)
    _persist(request)
    return {"paused_until": end}


# ---------------------------------------------------------------------------
# Items
# ---------------------------------------------------------------------------


class ItemResponse(BaseModel):
    id: str
    incremental: bool
    priority: int
    next_rep_date: int | None = None
    percentile: float | None = None
    history: list[dict[str, Any]] = []


class PriorityRequest(BaseModel):
    priority: float
    propagate: bool = True


class ReviewRequest(BaseModel):
    lookback: bool = False
    override_next_rep_date: int | None = None
    override_interval_days: int | None = None


@app.get("/items/{item_id}", response_model=ItemResponse)
async def get_item(item_id: str, request: Request):
    session = _session(request)
    try:
        item = await session.get_item(item_id)
        if item:
            pct: float | None = await session.get_item_percentile(item_id)
        else:
            pct = await session.get_card_percentile(item_id)
        return ItemResponse(
            id=item_id,
            incremental=item is not None,
            priority=await session.get_priority(item_id),
            next_rep_date=item.next_rep_date if item else None,
            percentile=pct,
            history=dump_history(item.history) if item else [],
        )
    except Exception as e:
        raise _fail("Item lookup", e) from e


@app.post("/items/{item_id}/tag")
async def tag_item(item_id: str, request: Request):
    try:
        item = await _session(request).tag_as_incremental(item_id)
        _persist(request)
        return {"ok": item is not None, "item": item.to_record() if item else None}
    except Exception as e:
        raise _fail("Tag", e) from e


@app.post("/items/{item_id}/priority")
async def set_priority(item_id: str, req: PriorityRequest, request: Request):
    try:
        value = await _session(request).set_priority(item_id, req.priority, req.propagate)
        _persist(request)
        return {"priority": value}
    except Exception as e:
        raise _fail("Set priority", e) from e


@app.post("/items/{item_id}/review")
async def review_item(item_id: str, req: ReviewRequest, request: Request):
    try:
        spacing = await _session(request).review(
            item_id,
            lookback=req.lookback,
            override_next_rep_date=req.override_next_rep_date,
            override_interval_days=req.override_interval_days,
        )
        if spacing is None:
            raise MissingEntity(item_id)
        _persist(request)
        return {"next_rep_date": spacing.next_rep_date, "interval": spacing.interval}
    except Exception as e:
        raise _fail("Review", e) from e


@app.post("/items/{item_id}/dismiss")
async def dismiss_item(item_id: str, request: Request):
    try:
        ok = await _session(request).dismiss(item_id)
        _persist(request)
        return {"ok": ok}
    except Exception as e:
        raise _fail("Dismiss", e) from e


@app.get("/shield")
async def get_shield(request: Request, current_id: str | None = None):
    try:
        status = await _session(request).get_shield(current_id)
        return {name: asdict(value) for name, value in status.items()}
    except Exception as e:
        raise _fail("Shield", e) from e
