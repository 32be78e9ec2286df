"""
Rich displays for CLI operations.

This module renders the graph, storage usage and cleanup prompts using the
rich library. All output goes to stderr to preserve stdout for
machine-readable output.
"""

from collections.abc import Iterator
from contextlib import contextmanager

from rich.console import Console
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn, TimeElapsedColumn
from rich.table import Table

from zenith import CleanupRequest, ConfigurationNode, GraphState, StorageStats
from zenith.cli.utils import format_bytes
from zenith.core.export import ExportReport

# Console for stderr output (preserves stdout for machine output)
console = Console(stderr=True)


@contextmanager
def fetch_progress(image_id: str) -> Iterator[None]:
    """
    Display a spinner while a result's bytes are downloaded and stored.

    Args:
        image_id: The image node receiving the result

    Yields:
        None while the fetch is in progress
    """
    progress = Progress(
        SpinnerColumn(spinner_name="dots"),
        TextColumn("[green]{task.description}"),
        TimeElapsedColumn(),
        console=console,
        transient=True,  # Disappears when done
    )
    with progress:
        task = progress.add_task(f"Fetching result [dim]({image_id})[/dim]", total=None)
        yield
        progress.update(task, completed=True)


def _image_status(node) -> str:
    if node.error:
        return f"[red]failed[/red] [dim]{node.error}[/dim]"
    if node.is_loading:
        return "[yellow]loading[/yellow]"
    if node.blob_id:
        return "[green]cached[/green]"
    return "[cyan]url only[/cyan]"


def print_graph(state: GraphState) -> None:
    """Print each configuration with its image nodes."""
    if not state.config_nodes:
        console.print("[dim]No configurations yet.[/dim]")
        return

    table = Table(show_header=True, header_style="bold cyan")
    table.add_column("Node")
    table.add_column("Position", justify="right")
    table.add_column("Details")
    table.add_column("Status")

    for config in state.config_nodes.values():
        table.add_row(
            f"[bold]{config.id}[/bold]",
            f"{config.position.x:g}, {config.position.y:g}",
            f"{config.width}x{config.height} seed {config.seed} x{config.batch_count}",
            f"[dim]{_truncate(config.prompt)}[/dim]",
        )
        for image in state.images_of(config.id):
            table.add_row(
                f"  {image.id}",
                f"{image.position.x:g}, {image.position.y:g}",
                f"seed {image.seed}" + (f" in {image.duration}" if image.duration else ""),
                _image_status(image),
            )
    console.print(table)


def print_confirmed(config: ConfigurationNode, image_ids: list[str]) -> None:
    """Print a panel describing a newly confirmed configuration."""
    table = Table.grid(padding=(0, 2))
    table.add_column(style="cyan", justify="right", vertical="top")
    table.add_column(style="white")

    table.add_row("Config", f"[bold green]{config.id}[/bold green]")
    table.add_row("Size", f"{config.width}x{config.height}")
    table.add_row("Seeds", ", ".join(str(config.seed + i) for i in range(config.batch_count)))
    table.add_row("Images", ", ".join(image_ids))
    table.add_row("Prompt", f"[dim]{config.prompt}[/dim]")

    panel = Panel(
        table,
        title="[bold green]✓ Configuration Added[/bold green]",
        border_style="green",
        padding=(1, 2),
    )
    console.print()
    console.print(panel)


def print_stats(stats: StorageStats) -> None:
    """Print blob cache usage against its ceilings."""
    table = Table.grid(padding=(0, 2))
    table.add_column(style="cyan", justify="right")
    table.add_column(style="white")
    table.add_row("Images", f"{stats.count} / {stats.max_images}")
    table.add_row("Storage", f"{stats.total_size_mb} MB / {stats.max_storage_mb} MB")

    style = "yellow" if stats.is_near_limit else "green"
    title = "⚠ Storage Nearly Full" if stats.is_near_limit else "Storage"
    console.print(Panel(table, title=f"[bold {style}]{title}[/bold {style}]", border_style=style))


def print_cleanup_request(request: CleanupRequest) -> None:
    """Explain why the cache is full and what the user can do about it."""
    if request.reason == "count":
        reason = f"the image limit is reached ({request.current_count} images)"
    else:
        reason = f"the storage limit is reached ({request.current_size_mb} MB used)"

    body = (
        f"Image [bold]{request.pending.blob_id}[/bold] "
        f"({format_bytes(request.pending.size)}) cannot be cached: {reason}.\n\n"
        "[cyan]export[/cyan]   download every image as a zip, then retry\n"
        "[cyan]cleanup[/cyan]  delete the least recently viewed images to make room\n"
        "[cyan]cancel[/cyan]   keep the image as a URL only"
    )
    console.print(
        Panel(body, title="[bold yellow]⚠ Storage Limit[/bold yellow]", border_style="yellow")
    )


def print_export_report(report: ExportReport) -> None:
    if report.written:
        print_success(f"Exported {len(report.written)} images to {report.path}")
    else:
        print_warning(f"No images exported to {report.path}")
    if report.failed:
        print_warning(f"Could not export: {', '.join(report.failed)}")


def _truncate(text: str, limit: int = 60) -> str:
    return text if len(text) <= limit else f"{text[: limit - 3]}..."


def print_info(message: str) -> None:
    """Print an info message in cyan."""
    console.print(f"[cyan]ℹ[/cyan] {message}")


def print_warning(message: str) -> None:
    """Print a warning message in yellow."""
    console.print(f"[yellow]⚠[/yellow] {message}")


def print_error(message: str) -> None:
    """Print an error message in red."""
    console.print(f"[red]✗[/red] {message}")


def print_success(message: str) -> None:
    """Print a success message in green."""
    console.print(f"[green]✓[/green] {message}")
