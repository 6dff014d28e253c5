"""increm CLI: queue simulation, item commands, pause timer, config and server."""

import asyncio
import json
import logging
import os
import sys
from collections.abc import Awaitable, Callable
from datetime import datetime
from pathlib import Path
from typing import Annotated, Any, TypeVar

import typer

from increm.application.config import AppConfig, resolve_config
from increm.application.factory import Host, get_host
from increm.application.session import QueueSession
from increm.domain.errors import IncremError
from increm.domain.history import dump_history
from increm.domain.models import DecisionKind, QueueMode

T = TypeVar("T")

# ---------------------------------------------------------------------------
# Root app
# ---------------------------------------------------------------------------

app = typer.Typer(
    help="increm: incremental-reading scheduler for a knowledge base.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(levelname)s:%(name)s:%(message)s",
    stream=sys.stderr,
)
logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Subgroups
# ---------------------------------------------------------------------------

item_app = typer.Typer(help="Inspect and edit incremental items.", no_args_is_help=True)
app.add_typer(item_app, name="item")

config_app = typer.Typer(help="Manage increm configuration.")
app.add_typer(config_app, name="config")


# ---------------------------------------------------------------------------
# Global callback
# ---------------------------------------------------------------------------


@app.callback()
def main_callback(
    ctx: typer.Context,
    snapshot: Annotated[
        Path | None, typer.Option("--snapshot", "-s", help="Knowledge base snapshot (YAML/JSON).")
    ] = None,
    backend: Annotated[str | None, typer.Option(help="Host backend: snapshot, connect.")] = None,
    host_url: Annotated[str | None, typer.Option(help="Host bridge endpoint.")] = None,
    verbose: Annotated[
        int,
        typer.Option(
            "--verbose", "-v", count=True, help="Increase verbosity. Repeat for more detail."
        ),
    ] = 1,
):
    """Global settings for increm."""
    ctx.ensure_object(dict)
    ctx.obj["overrides"] = {
        "snapshot_path": snapshot,
        "backend": backend,
        "host_url": host_url,
        "verbose": verbose,
    }
    if verbose >= 2:
        logging.getLogger().setLevel(logging.DEBUG)


def _config(ctx: typer.Context) -> AppConfig:
    overrides = (ctx.obj or {}).get("overrides", {})
    return resolve_config(overrides)


def _log_to_file(config: AppConfig) -> None:
    """Mirror increm loggers into ``log_dir/increm.log``."""
    path = (config.log_dir / "increm.log").resolve()
    root = logging.getLogger("increm")
    for handler in root.handlers:
        if isinstance(handler, logging.FileHandler) and handler.baseFilename == str(path):
            return
    config.log_dir.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(path, encoding="utf-8")
    handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s:%(name)s:%(message)s"))
    root.addHandler(handler)


def _run(ctx: typer.Context, body: Callable[[QueueSession], Awaitable[T]]) -> T:
    """Wire a host, run ``body`` against a started session, then persist."""
    config = _config(ctx)
    _log_to_file(config)

    async def run() -> T:
        host: Host = await get_host(config)
        try:
            session = QueueSession(host.ctx)
            await session.startup()
            result = await body(session)
            # Debounced card-priority writes must land before the host persists
            await session.priority_cache.flush_now()
            host.save()
            return result
        finally:
            await host.close()

    try:
        return asyncio.run(run())
    except IncremError as e:
        typer.secho(f"Error: {e}", fg="red")
        raise typer.Exit(1) from e


def _fmt_date(epoch_ms: int | None) -> str:
    if epoch_ms is None:
        return "-"
    return datetime.fromtimestamp(epoch_ms / 1000).strftime("%Y-%m-%d %H:%M")


# ---------------------------------------------------------------------------
# Root commands
# ---------------------------------------------------------------------------


@app.command()
def queue(
    ctx: typer.Context,
    sub_queue: Annotated[
        str | None, typer.Argument(help="Document id to scope the queue to.")
    ] = None,
    steps: Annotated[int, typer.Option(help="Queue steps to simulate.")] = 20,
    cards: Annotated[int, typer.Option(help="Flashcards available in the host queue.")] = 20,
    mode: Annotated[QueueMode, typer.Option(help="Queue mode.")] = QueueMode.SRS,
    review: Annotated[
        bool, typer.Option("--review/--no-review", help="Review each item shown.")
    ] = True,
):
    """Simulate [bold green]interleaving[/bold green] flashcards and incremental items."""

    async def body(session: QueueSession) -> list[dict[str, Any]]:
        remaining_cards = cards
        log = []
        await session.on_queue_enter(sub_queue)
        typer.echo(f"Due incremental items: {session.due_item_count}")
        for step in range(steps):
            decision = await session.next_decision(remaining_cards, mode, sub_queue)
            log.append({"step": step, "kind": decision.kind.value, "item": decision.item_id})
            if decision.kind == DecisionKind.SHOW_INCREMENTAL_ITEM:
                priority = await session.get_priority(decision.item_id)
                typer.secho(
                    f"{step:>3}  item       {decision.item_id}  (priority {priority})",
                    fg="green",
                )
                if review:
                    await session.review(decision.item_id)
                await session.remove_current_item_from_queue()
            elif decision.kind == DecisionKind.SHOW_FLASHCARD:
                if remaining_cards == 0:
                    typer.echo(f"{step:>3}  done")
                    break
                remaining_cards -= 1
                typer.echo(f"{step:>3}  flashcard")
            else:
                typer.echo(f"{step:>3}  no item available")
                if remaining_cards == 0:
                    break
                remaining_cards -= 1
        await session.on_queue_exit(sub_queue)
        return log

    log = _run(ctx, body)
    shown = sum(1 for entry in log if entry["kind"] == DecisionKind.SHOW_INCREMENTAL_ITEM.value)
    typer.echo(f"Steps: {len(log)}, incremental items shown: {shown}")


@app.command()
def pause(
    ctx: typer.Context,
    minutes: Annotated[float, typer.Argument(help="Minutes to show only flashcards.")] = 30,
    resume: Annotated[bool, typer.Option("--resume", help="Clear an active pause.")] = False,
):
    """Temporarily show only flashcards."""

    async def body(session: QueueSession) -> int | None:
        if resume:
            await session.resume_incremental_items()
            return None
        return await session.pause_incremental_items(minutes)

    end = _run(ctx, body)
    if end is None:
        typer.secho("Incremental items resumed.", fg="green")
    else:
        typer.echo(f"Incremental items paused until {_fmt_date(end)}")


@app.command()
def serve(
    host: Annotated[str, typer.Option(help="Bind address.")] = "127.0.0.1",
    port: Annotated[int, typer.Option(help="Port to listen on.")] = 8777,
    reload: Annotated[bool, typer.Option(help="Auto-reload on code changes.")] = False,
):
    """Start the increm HTTP API."""
    import uvicorn

    uvicorn.run("increm.server:app", host=host, port=port, reload=reload)


@app.command()
def logs(
    ctx: typer.Context,
    open_dir: Annotated[
        bool, typer.Option("--open", help="Open the directory in the file manager.")
    ] = False,
):
    """Print (or open) the log directory."""
    import subprocess

    config = _config(ctx)
    if not config.log_dir.exists():
        config.log_dir.mkdir(parents=True, exist_ok=True)
    typer.echo(str(config.log_dir))
    if not open_dir:
        return

    if sys.platform == "darwin":
        subprocess.run(["open", str(config.log_dir)])
    elif sys.platform == "win32":
        os.startfile(str(config.log_dir))
    else:
        subprocess.run(["xdg-open", str(config.log_dir)])


# ---------------------------------------------------------------------------
# Item subgroup
# ---------------------------------------------------------------------------


@item_app.command("show")
def item_show(
    ctx: typer.Context,
    item_id: Annotated[str, typer.Argument(help="Node id.")],
    as_json: Annotated[bool, typer.Option("--json", help="Print JSON.")] = False,
):
    """Show priority, due date and history of a node."""

    async def body(session: QueueSession) -> dict[str, Any]:
        item = await session.get_item(item_id)
        return {
            "id": item_id,
            "incremental": item is not None,
            "priority": await session.get_priority(item_id),
            "nextRepDate": item.next_rep_date if item else None,
            "percentile": (
                await session.get_item_percentile(item_id)
                if item
                else await session.get_card_percentile(item_id)
            ),
            "history": dump_history(item.history) if item else [],
        }

    info = _run(ctx, body)
    if as_json:
        typer.echo(json.dumps(info, indent=2))
        return
    typer.echo(f"Item: {info['id']}")
    typer.echo(f"Incremental: {'yes' if info['incremental'] else 'no'}")
    typer.echo(f"Priority: {info['priority']}")
    if info["percentile"] is not None:
        typer.echo(f"Percentile: {info['percentile']}%")
    if info["incremental"]:
        typer.echo(f"Next due: {_fmt_date(info['nextRepDate'])}")
        typer.echo(f"History entries: {len(info['history'])}")


@item_app.command("tag")
def item_tag(
    ctx: typer.Context,
    item_id: Annotated[str, typer.Argument(help="Node id.")],
):
    """Make a node incremental."""

    async def body(session: QueueSession):
        return await session.tag_as_incremental(item_id)

    item = _run(ctx, body)
    if item is None:
        typer.secho(f"{item_id} carries unreadable incremental data.", fg="yellow")
        raise typer.Exit(1)
    typer.secho(
        f"{item_id} is incremental (priority {item.priority}, due {_fmt_date(item.next_rep_date)})",
        fg="green",
    )


@item_app.command("review")
def item_review(
    ctx: typer.Context,
    item_id: Annotated[str, typer.Argument(help="Node id.")],
    interval: Annotated[
        int | None, typer.Option(help="Override the computed interval (days).")
    ] = None,
    lookback: Annotated[
        bool, typer.Option("--lookback", help="Recompute the last review instead.")
    ] = False,
):
    """Record a review of an incremental item."""

    async def body(session: QueueSession):
        return await session.review(item_id, lookback=lookback, override_interval_days=interval)

    spacing = _run(ctx, body)
    if spacing is None:
        typer.secho(f"{item_id} is not incremental.", fg="yellow")
        raise typer.Exit(1)
    typer.echo(f"Next review in {spacing.interval} days ({_fmt_date(spacing.next_rep_date)})")


@item_app.command("reschedule")
def item_reschedule(
    ctx: typer.Context,
    item_id: Annotated[str, typer.Argument(help="Node id.")],
    days: Annotated[int, typer.Argument(help="Days from today.")],
):
    """Move an incremental item to a new due date."""

    async def body(session: QueueSession):
        return await session.reschedule(item_id, days)

    spacing = _run(ctx, body)
    if spacing is None:
        typer.secho(f"{item_id} is not incremental.", fg="yellow")
        raise typer.Exit(1)
    typer.echo(f"Rescheduled to {_fmt_date(spacing.next_rep_date)}")


@item_app.command("priority")
def item_priority(
    ctx: typer.Context,
    item_id: Annotated[str, typer.Argument(help="Node id.")],
    value: Annotated[float, typer.Argument(help="Priority, 0 (highest) to 100.")],
    propagate: Annotated[
        bool,
        typer.Option("--propagate/--no-propagate", help="Push to inheriting descendants."),
    ] = True,
):
    """Set the priority of a node."""

    async def body(session: QueueSession) -> int:
        return await session.set_priority(item_id, value, propagate=propagate)

    result = _run(ctx, body)
    typer.secho(f"Priority of {item_id} set to {result}", fg="green")


@item_app.command("dismiss")
def item_dismiss(
    ctx: typer.Context,
    item_id: Annotated[str, typer.Argument(help="Node id.")],
):
    """Stop incremental scheduling; history is archived."""

    async def body(session: QueueSession) -> bool:
        return await session.dismiss(item_id)

    if not _run(ctx, body):
        typer.secho(f"{item_id} is not incremental.", fg="yellow")
        raise typer.Exit(1)
    typer.secho(f"Dismissed {item_id}", fg="green")


# ---------------------------------------------------------------------------
# Config subgroup
# ---------------------------------------------------------------------------


@config_app.command("show")
def config_show(ctx: typer.Context):
    """Display final resolved configuration."""
    config = _config(ctx)
    d = {k: str(v) if isinstance(v, Path) else v for k, v in config.model_dump().items()}
    typer.echo(json.dumps(d, indent=2))


def main():
    app()


if __name__ == "__main__":
    main()
