"""
longform CLI
 • estimate  --config PATH                 cost estimate before spending anything
 • generate  --config PATH [--session-dir]  outline → chapters, auto-approved
"""

from __future__ import annotations

import asyncio
from pathlib import Path

import typer
from rich import print

from longform.config import load_config
from longform.engine import logconf
from longform.engine.costs import estimate_cost
from longform.errors import LongformError
from longform.llm.openai_wrapper import OpenAIGenerator
from longform.models import EventType, ProgressEvent
from longform.runner import stream_book
from longform.storage import JsonFileSessionStorage

app = typer.Typer(pretty_exceptions_show_locals=False)


def _show(ev: ProgressEvent) -> None:
    ch = f"ch{ev.chapter:02d} " if ev.chapter is not None else ""
    d = ev.data
    match ev.type:
        case EventType.OUTLINE_GENERATED:
            print(f"[cyan]Outline:[/] {d.get('title')} ({d.get('chapters')} chapters)")
        case EventType.CHAPTER_STARTED:
            print(f"\n[bold cyan]─── {ch}{d.get('title')} ───[/]")
        case EventType.REFUSAL_DETECTED | EventType.WORD_COUNT_WARNING | EventType.CONTEXT_TRIMMED:
            print(f"[yellow]{ch}{ev.type.value}[/] {d}")
        case EventType.EDIT_CYCLE:
            flag = " (forced)" if d.get("forced") else ""
            print(f"[i]{ch}edit cycle {d.get('cycle')}: overall {d['scores']['overall']}/10"
                  f" approved={d.get('approved')}{flag}[/]")
        case EventType.CHAPTER_COMPLETE:
            print(f"[green]✔ {ch}{d.get('word_count'):,} words  ${d.get('cost', 0):.4f}[/]")
        case EventType.CHAPTER_FAILED:
            print(f"[red]✘ {ch}{d.get('error')}[/]")
        case EventType.GENERATION_COMPLETE:
            print(f"\n[bold green]Done:[/] {d['chapters_completed']}/{d['total_chapters']} chapters, "
                  f"{d['total_words']:,} words, ${d['total_cost']:.4f}  (session {d['session_id']})")
        case _:
            print(f"[grey50]{ch}{ev.type.value}[/]")


@app.command()
def estimate(config: Path = typer.Option(..., "--config", exists=True, dir_okay=False)):
    """Print the estimated cost of a run."""
    try:
        est = estimate_cost(load_config(config))
    except LongformError as exc:
        print(f"[red]{exc}[/]")
        raise typer.Exit(1)

    for row in est.breakdown:
        print(f" {row.step:<11} {row.model:<22} ${row.estimated_cost:.4f}")
    print(f"[bold]Total ≈ ${est.estimated_cost:.4f}[/] "
          f"({est.estimated_input_tokens:,} in / {est.estimated_output_tokens:,} out tokens)")
    for w in est.warnings:
        print(f"[yellow]! {w}[/]")


@app.command()
def generate(
    config: Path = typer.Option(..., "--config", exists=True, dir_okay=False),
    session_dir: Path = typer.Option(Path("sessions"), "--session-dir"),
    log_level: str = typer.Option("INFO", "--log-level"),
):
    """Generate a whole book without stopping for outline approval."""
    logconf.init(log_level, session_dir / "logs")

    async def _run() -> None:
        cfg = load_config(config)
        async for ev in stream_book(cfg, OpenAIGenerator(), storage=JsonFileSessionStorage(session_dir)):
            _show(ev)

    try:
        asyncio.run(_run())
    except LongformError as exc:
        print(f"[red]{exc}[/]")
        raise typer.Exit(1)


if __name__ == "__main__":
    app()
