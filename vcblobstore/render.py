"""
Rendering functions for vcblobstore output.

This module handles all pretty-printing and table formatting.
Commands return data, this module makes it human-readable.
"""

from typing import Iterable, Optional

from rich import box
from rich.console import Console
from rich.table import Table

from .domain import CommitMetadata

console = Console()


def render_blob_keys(keys: Iterable[str], title: Optional[str] = None) -> None:
    """Render blob keys as a sorted one-column table."""
    sorted_keys = sorted(keys)
    if not sorted_keys:
        console.print("[yellow]No blobs stored.[/yellow]")
        return

    table = Table(
        title=title or "Blobs",
        box=box.ROUNDED,
        show_header=True,
        header_style="bold magenta"
    )
    table.add_column("Key", style="cyan")
    for key in sorted_keys:
        table.add_row(key)

    console.print(table)
    console.print(f"[dim]{len(sorted_keys)} blob(s)[/dim]")


def render_commit_metadata(metadata: CommitMetadata, token: str = "") -> None:
    """Render one version's provenance as a field/value table."""
    table = Table(
        title=f"Version {token}" if token else "Version",
        box=box.ROUNDED,
        show_header=False,
    )
    table.add_column("Field", style="bold cyan")
    table.add_column("Value")

    table.add_row("Author", metadata.author)
    table.add_row("Author date", metadata.author_date.isoformat())
    table.add_row("Committer", metadata.commit)
    table.add_row("Commit date", metadata.commit_date.isoformat())
    table.add_row("Message", metadata.message or "[dim](empty)[/dim]")

    console.print(table)
