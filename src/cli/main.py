"""
Adaptive Core CLI

Batch tools around the review core:

Usage:
    adaptive-core rescore events.json       # Replay graded events offline
    adaptive-core keywords keywords.json    # Keyword mastery from the platform
    adaptive-core due --limit 20            # Item schedules from the platform
    adaptive-core health                    # Platform reachability
"""

from __future__ import annotations

import asyncio
import sys
from datetime import UTC, datetime
from pathlib import Path
from typing import Annotated

import typer
from loguru import logger
from pydantic import BaseModel, Field, TypeAdapter, ValidationError
from rich.console import Console
from rich.table import Table

from config import Settings, get_settings
from src.core.errors import GatewayError
from src.core.gateway import ReviewItem, UtcDatetime
from src.core.mastery import BktSnapshot, Instrument, MasteryColor, MasteryConfig
from src.core.memory_gateway import MemoryGateway
from src.core.platform_client import PlatformClient
from src.cortex.session import ReviewSessionOrchestrator
from src.cortex.tracking_queue import TrackingQueue
from src.study.mastery_calculator import Keyword, MasteryAggregator
from src.study.retention_engine import FSRSScheduler, ItemState, ScheduleState

# =============================================================================
# CLI Setup
# =============================================================================

app = typer.Typer(
    name="adaptive-core",
    help="Adaptive learning core: BKT mastery, FSRS scheduling, review sessions",
    no_args_is_help=True,
)

console = Console()


class ReplayEvent(BaseModel):
    """One graded review read from a replay file."""

    item_id: str
    grade: int = Field(ge=1, le=4)
    concept_id: str | None = None
    instrument: Instrument = Instrument.FLASHCARD
    reviewed_at: UtcDatetime | None = None


def _read_json(path: Path, adapter: TypeAdapter):
    try:
        return adapter.validate_json(path.read_text(encoding="utf-8"))
    except (OSError, ValidationError) as e:
        console.print(f"[red]Could not read {path}:[/] {e}")
        raise typer.Exit(code=1) from e


def _format_dt(value: datetime | None) -> str:
    return value.strftime("%Y-%m-%d %H:%M") if value else "-"


def _warn_if_signed_out(settings: Settings) -> None:
    if not settings.has_access_token():
        console.print(
            "[yellow]No learner token set (API_ACCESS_TOKEN); "
            "the platform sees only the anonymous key.[/]"
        )


# =============================================================================
# Offline Re-scoring
# =============================================================================


async def replay_events(
    events: list[ReplayEvent],
    scheduler: FSRSScheduler,
    mastery_config: MasteryConfig,
    tracker: TrackingQueue | None = None,
) -> MemoryGateway:
    """
    Run events through a review session against an in-memory gateway.

    Repeated item ids share one queue entry, so each review starts from
    the schedule left by the previous one.
    """
    gateway = MemoryGateway()
    if not events:
        return gateway

    entries: dict[str, ReviewItem] = {}
    queue = []
    for event in events:
        item = entries.setdefault(
            event.item_id,
            ReviewItem(
                item_id=event.item_id,
                instrument=event.instrument,
                concept_id=event.concept_id,
            ),
        )
        queue.append(item)

    now = [events[0].reviewed_at or datetime.now(UTC)]
    tracker = tracker or TrackingQueue()
    async with tracker:
        orchestrator = ReviewSessionOrchestrator(
            gateway,
            tracker=tracker,
            scheduler=scheduler,
            mastery_config=mastery_config,
            clock=lambda: now[0],
        )
        session_id = await orchestrator.start(queue)
        for event in events:
            if event.reviewed_at:
                now[0] = event.reviewed_at
            await orchestrator.grade(session_id, event.item_id, event.grade)
        await tracker.drain()

    return gateway


def _concept_table(snapshots: list[BktSnapshot], config: MasteryConfig) -> Table:
    table = Table(title="Concept Mastery")
    table.add_column("Concept", style="cyan")
    table.add_column("p_know", justify="right")
    table.add_column("Attempts", justify="right")
    table.add_column("Band")
    for snapshot in sorted(snapshots, key=lambda s: s.concept_id):
        color = MasteryColor.from_score(snapshot.p_know, config)
        table.add_row(
            snapshot.concept_id,
            f"{snapshot.p_know:.3f}",
            f"{snapshot.correct_attempts}/{snapshot.total_attempts} ({snapshot.accuracy:.0%})",
            f"[{color.style}]{color.label}[/]",
        )
    return table


def _schedule_table(states: dict[str, ItemState], title: str, now: datetime | None = None) -> Table:
    table = Table(title=title)
    table.add_column("Item", style="cyan")
    table.add_column("State")
    table.add_column("Stability", justify="right")
    table.add_column("Difficulty", justify="right")
    table.add_column("Reps/Lapses", justify="right")
    table.add_column("Due")
    for item_id, state in states.items():
        due = _format_dt(state.due_at)
        table.add_row(
            item_id,
            state.state.value,
            f"{state.stability:.2f}d",
            f"{state.difficulty:.2f}",
            f"{state.reps}/{state.lapses}",
            f"[red]{due}[/]" if state.is_due(now) else due,
        )
    return table


@app.command()
def rescore(
    events_file: Annotated[
        Path, typer.Argument(help="JSON list of {item_id, grade, concept_id?, instrument?, reviewed_at?}")
    ],
) -> None:
    """
    Replay graded events offline and print the resulting mastery and schedules.

    Nothing is written to the platform.
    """
    settings = get_settings()
    events = _read_json(events_file, TypeAdapter(list[ReplayEvent]))
    if not events:
        console.print("[yellow]No events to replay.[/]")
        return

    mastery_config = settings.mastery_config()
    gateway = asyncio.run(
        replay_events(
            events,
            FSRSScheduler(settings.fsrs_parameters()),
            mastery_config,
            tracker=settings.tracking_queue(),
        )
    )

    console.print(f"[green]Replayed {len(gateway.reviews)} reviews[/]")
    if gateway.concept_states:
        console.print(_concept_table(list(gateway.concept_states.values()), mastery_config))
    console.print(_schedule_table(gateway.item_states, "Item Schedules"))


# =============================================================================
# Platform Commands
# =============================================================================


@app.command()
def keywords(
    keywords_file: Annotated[
        Path, typer.Argument(help="JSON list of {keyword_id, name, priority, concept_ids}")
    ],
) -> None:
    """Show keyword mastery for the signed-in learner (one platform call)."""
    settings = get_settings()
    keyword_list = _read_json(keywords_file, TypeAdapter(list[Keyword]))
    _warn_if_signed_out(settings)
    asyncio.run(_run_keywords(settings, keyword_list))


async def _run_keywords(settings: Settings, keyword_list: list[Keyword]) -> None:
    async with PlatformClient(settings.api_config()) as client:
        aggregator = MasteryAggregator(client, settings.mastery_config())
        try:
            loaded = await aggregator.refresh()
        except GatewayError as e:
            console.print(f"[red]Failed to load concept states:[/] {e}")
            raise typer.Exit(code=1) from e

    table = Table(title=f"Keyword Mastery ({loaded} concepts measured)")
    table.add_column("Keyword", style="cyan")
    table.add_column("Priority", justify="right")
    table.add_column("Mastery", justify="right")
    table.add_column("Measured", justify="right")
    table.add_column("Band")
    for row in aggregator.keyword_report(keyword_list):
        table.add_row(
            row.keyword.name,
            str(row.keyword.priority),
            f"{row.mastery:.0%}" if row.has_data else "-",
            f"{row.measured_concepts}/{len(row.keyword.concept_ids)}",
            f"[{row.color.style}]{row.label}[/]",
        )
    console.print(table)


@app.command()
def due(
    limit: Annotated[
        int, typer.Option("--limit", "-l", help="Maximum items to list")
    ] = 50,
    state: Annotated[
        ScheduleState | None, typer.Option("--state", "-s", help="Only items in this state")
    ] = None,
    all_items: Annotated[
        bool, typer.Option("--all", "-a", help="Include items not yet due")
    ] = False,
) -> None:
    """List item schedules stored on the platform."""
    settings = get_settings()
    _warn_if_signed_out(settings)
    asyncio.run(_run_due(settings, limit, state, all_items))


async def _run_due(
    settings: Settings,
    limit: int,
    state: ScheduleState | None,
    all_items: bool,
) -> None:
    now = datetime.now(UTC)
    due_before = None if all_items else now
    async with PlatformClient(settings.api_config()) as client:
        try:
            records = await client.fetch_item_states(due_before=due_before, state=state, limit=limit)
        except GatewayError as e:
            console.print(f"[red]Failed to load item states:[/] {e}")
            raise typer.Exit(code=1) from e

    if not records:
        console.print("[green]Nothing due.[/]")
        return
    states = {record.item_id: record.to_item_state() for record in records}
    console.print(_schedule_table(states, f"Due Items ({len(states)})", now))


@app.command()
def health() -> None:
    """Check whether the platform is reachable."""
    settings = get_settings()
    ok = asyncio.run(_run_health(settings))
    if ok:
        console.print(f"[green]✓ Platform reachable[/] ({settings.api_base_url})")
    else:
        console.print(f"[red]✗ Platform unreachable[/] ({settings.api_base_url})")
        raise typer.Exit(code=1)


async def _run_health(settings: Settings) -> bool:
    async with PlatformClient(settings.api_config()) as client:
        return await client.health_check()


# =============================================================================
# Entry Point
# =============================================================================


def main() -> None:
    """CLI entry point."""
    settings = get_settings()

    # Configure logging
    logger.remove()
    logger.add(
        sys.stderr,
        level=settings.log_level,
        format="<level>{message}</level>",
    )
    if settings.log_file:
        logger.add(
            settings.log_file,
            level=settings.log_level,
            rotation="10 MB",
            retention=5,
        )

    app()


if __name__ == "__main__":
    main()
