"""Main CLI application using Typer."""

from typing import Annotated

import typer
from dotenv import load_dotenv
from rich.console import Console

from magtoepub import __version__
from magtoepub.cli.commands.config import config_app
from magtoepub.cli.commands.convert import convert

# Load environment variables from .env file
load_dotenv()

app = typer.Typer(
    name="magtoepub",
    help="Convert magazine PDFs into EPUB e-books with AI-assisted text and image extraction.",
    add_completion=False,
    no_args_is_help=True,
    rich_markup_mode="rich",
    context_settings={"help_option_names": ["-h", "--help"]},
)

console = Console()

app.command(name="convert", help="Convert a magazine PDF to EPUB.")(convert)
app.add_typer(config_app, name="config")


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"[bold blue]MagToEpub[/bold blue] version [green]{__version__}[/green]")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        bool | None,
        typer.Option(
            "--version",
            "-V",
            help="Show version and exit.",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
) -> None:
    """MagToEpub - magazine PDF to EPUB conversion.

    Pages are read by a Gemini vision model in batches, images are extracted
    and captioned, and the result is packaged as an EPUB 3 book.
    """
    pass


if __name__ == "__main__":
    app()
