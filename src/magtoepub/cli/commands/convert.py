"""Convert command: one magazine PDF to one EPUB."""

from pathlib import Path
from typing import Annotated

import anyio
import typer
from anyio.streams.memory import MemoryObjectReceiveStream
from rich.progress import BarColumn, Progress, SpinnerColumn, TaskProgressColumn, TextColumn
from rich.table import Table

from magtoepub.config import MagtoepubSettings, get_settings
from magtoepub.core.pipeline import ConversionOrchestrator
from magtoepub.core.state import ConversionState, ConversionStats, ProgressEvent, Stage
from magtoepub.epub.assembler import PackageAssembler
from magtoepub.exceptions import ConfigurationError, PackagingError
from magtoepub.llm.gemini import GeminiProvider
from magtoepub.utils.fs import atomic_write, safe_filename
from magtoepub.utils.logging import get_console, get_logger, setup_task_logging

console = get_console()
log = get_logger(__name__)

EVENT_BUFFER_SIZE = 1024


def convert(
    input_file: Annotated[
        Path,
        typer.Argument(
            help="Magazine PDF to convert.",
            exists=True,
            file_okay=True,
            dir_okay=False,
            readable=True,
            resolve_path=True,
        ),
    ],
    output: Annotated[
        Path | None,
        typer.Option(
            "--output",
            "-o",
            help="Output directory for the EPUB.",
            file_okay=False,
            dir_okay=True,
            resolve_path=True,
        ),
    ] = None,
    title: Annotated[
        str | None,
        typer.Option(
            "--title",
            "-t",
            help="Book title. Defaults to the file name without extension.",
        ),
    ] = None,
    save_markdown: Annotated[
        bool,
        typer.Option(
            "--save-markdown",
            help="Also write the generated Markdown next to the EPUB.",
        ),
    ] = False,
    verbose: Annotated[
        bool,
        typer.Option(
            "--verbose",
            "-v",
            help="Enable verbose output.",
        ),
    ] = False,
) -> None:
    """Convert a magazine PDF to an EPUB e-book.

    Examples:
        magtoepub convert issue.pdf
        magtoepub convert issue.pdf -o ./books --title "Spring Issue"
        magtoepub convert issue.pdf --save-markdown -v
    """
    settings = get_settings()

    task_id, log_path = setup_task_logging(
        log_dir=settings.log_dir,
        prefix="convert",
        verbose=verbose,
        level=settings.log_level,
    )
    if verbose:
        log.info("Logs will be saved to", log_file=str(log_path))

    config_dump = settings.model_dump(exclude={"llm": {"api_key"}})
    log.info("Task Configuration", task_id=task_id, config=config_dump)

    # Missing credentials are fatal before any stage runs
    try:
        api_key = settings.require_api_key()
    except ConfigurationError as e:
        log.error("Configuration error", error=str(e))
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from e

    output_dir = output or Path(settings.output.default_dir)

    provider = GeminiProvider(
        api_key=api_key,
        model=settings.llm.text_model,
        timeout=settings.llm.timeout,
    )
    orchestrator = ConversionOrchestrator(provider, settings)

    try:
        state = anyio.run(_run_with_progress, orchestrator, input_file, title, verbose)
    except KeyboardInterrupt:
        log.warning("Task Interrupted by KeyboardInterrupt", input_file=str(input_file))
        console.print("\n[yellow]Interrupted. Exiting...[/yellow]")
        raise typer.Exit(130) from None

    if state.stage is Stage.ERROR:
        log.error("Task Failed", error=state.error)
        console.print(f"[bold red]Conversion failed:[/bold red] {state.error}")
        raise typer.Exit(1)

    _write_outputs(state, output_dir, save_markdown or settings.output.save_markdown, settings)


async def _run_with_progress(
    orchestrator: ConversionOrchestrator,
    input_file: Path,
    title: str | None,
    verbose: bool,
) -> ConversionState:
    """Run the orchestrator while a consumer renders its progress events."""
    send_stream, receive_stream = anyio.create_memory_object_stream[ProgressEvent](
        EVENT_BUFFER_SIZE
    )
    result: list[ConversionState] = []

    async def produce() -> None:
        async with send_stream:
            result.append(await orchestrator.run(input_file, title=title, events=send_stream))

    async with anyio.create_task_group() as tg:
        tg.start_soon(produce)
        async with receive_stream:
            if verbose:
                await _print_events(receive_stream)
            else:
                await _render_progress(receive_stream)

    return result[0]


async def _render_progress(events: MemoryObjectReceiveStream[ProgressEvent]) -> None:
    generated_chars = 0
    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TaskProgressColumn(),
        console=console,
        transient=True,
    ) as progress:
        task = progress.add_task("Starting...", total=100)
        async for event in events:
            if event.kind == "chunk" and event.text:
                generated_chars += len(event.text)
                progress.update(
                    task, description=f"Generating text ({generated_chars:,} chars)..."
                )
            elif event.kind == "retry":
                progress.update(task, description=f"[yellow]{event.message}[/yellow]")
            elif event.kind in ("stage", "progress"):
                if event.progress is not None:
                    progress.update(task, completed=event.progress)
                if event.message:
                    progress.update(task, description=event.message)


async def _print_events(events: MemoryObjectReceiveStream[ProgressEvent]) -> None:
    async for event in events:
        if event.kind == "stage":
            console.print(f"[bold blue]{event.stage.value}[/bold blue] {event.message}")
        elif event.kind == "retry":
            console.print(f"[yellow]{event.message}[/yellow]")


def _write_outputs(
    state: ConversionState,
    output_dir: Path,
    save_markdown: bool,
    settings: MagtoepubSettings,
) -> None:
    stem = safe_filename(state.title)
    try:
        package = PackageAssembler().build(state.title, state.markdown, state.images)
    except PackagingError as e:
        log.error("Packaging failed", error=str(e))
        console.print(f"[bold red]Failed to generate EPUB file:[/bold red] {e}")
        raise typer.Exit(1) from e

    epub_path = package.write(output_dir / f"{stem}.epub")
    markdown_path: Path | None = None
    if save_markdown:
        markdown_path = output_dir / f"{stem}.md"
        with atomic_write(markdown_path) as f:
            f.write(state.markdown)

    stats = state.stats()
    log.info("Task Completed Successfully", output_path=str(epub_path), **vars(stats))

    console.print("[bold green]Conversion completed![/bold green]")
    console.print(f"  Output: {epub_path}")
    if markdown_path:
        console.print(f"  Markdown: {markdown_path}")
    console.print(_stats_table(stats, settings.llm.text_model))


def _stats_table(stats: ConversionStats, model: str) -> Table:
    table = Table(title="Conversion Statistics", show_header=False)
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right")
    table.add_row("Pages", str(stats.total_pages))
    table.add_row("Words", f"{stats.word_count:,}")
    table.add_row("Read Time", f"{stats.read_time_minutes} min")
    table.add_row("Images Extracted", str(stats.images_extracted))
    table.add_row("Images Used", str(stats.images_used))
    table.add_row("Tokens", f"{stats.token_usage:,}")
    table.add_row("Model", model)
    return table
