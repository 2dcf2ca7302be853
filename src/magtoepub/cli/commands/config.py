"""Config command for configuration inspection."""

import typer
from rich.console import Console
from rich.table import Table

from magtoepub.config import get_settings

config_app = typer.Typer(help="Configuration management.")
console = Console()


def mask_secret(value: str | None) -> str:
    """Show only the last four characters of a credential."""
    if not value:
        return "Not configured"
    if len(value) <= 8:
        return "***"
    return f"***{value[-4:]}"


@config_app.command("show")
def show() -> None:
    """Show current configuration."""
    settings = get_settings()

    console.print("\n[bold blue]Current Configuration[/bold blue]\n")

    table = Table(show_header=True, header_style="bold")
    table.add_column("Setting", style="cyan")
    table.add_column("Value")

    # Global settings
    table.add_row("Log Level", settings.log_level)
    table.add_row("Log Directory", settings.log_dir)

    # LLM settings
    table.add_row("API Key", mask_secret(settings.get_api_key()))
    table.add_row("Caption Model", settings.llm.caption_model)
    table.add_row("Text Model", settings.llm.text_model)
    table.add_row("Request Timeout", f"{settings.llm.timeout}s")
    table.add_row(
        "Rate Limit Retries",
        f"{settings.llm.retry_attempts} (from {settings.llm.retry_initial_delay:g}s, doubling)",
    )

    # Batching settings
    table.add_row("Max Chars per Batch", str(settings.batching.max_chars_per_batch))
    table.add_row("Max Pages per Batch", str(settings.batching.max_pages_per_batch))
    table.add_row("Pause Between Batches", f"{settings.batching.text_batch_delay:g}s")

    # Image settings
    table.add_row("Min Image Dimension", str(settings.image.min_dimension))
    table.add_row("Max Image Width", str(settings.image.max_width))
    table.add_row("Extraction Concurrency", str(settings.image.extraction_concurrency))
    table.add_row("Caption Batch Size", str(settings.image.caption_batch_size))

    # Output settings
    table.add_row("Output Directory", settings.output.default_dir)
    table.add_row("Save Markdown", str(settings.output.save_markdown))

    console.print(table)
    console.print()
