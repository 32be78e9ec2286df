"""
Click command definitions for the zenith CLI.

This module contains the Click command group and all CLI commands. Every
command opens a durable FlowSession under ZENITH_DATA_DIR, does its work and
closes it again; a parked cleanup decision therefore has to be resolved
within the command that triggered it.
"""

import json
import random
from collections.abc import Awaitable, Callable
from pathlib import Path

import click

from zenith import (
    Config,
    FlowSession,
    GenerationResult,
    PreviewInput,
    ResultOutcome,
    StoreStatus,
    ValidationError,
    __version__,
)
from zenith.cli import progress
from zenith.cli.handlers import run_with_error_handling
from zenith.cli.utils import default_export_path
from zenith.logging_config import configure_logging

MAX_SEED = 2**31 - 1

SessionBody = Callable[[FlowSession], Awaitable[None]]


def _run_session(ctx: click.Context, body: SessionBody) -> None:
    """Load config, open the session, run body, and map errors to exit codes."""

    async def run() -> None:
        config = Config.from_env()
        config.validate()
        async with FlowSession.from_config(config) as session:
            await body(session)

    run_with_error_handling(run, quiet=ctx.obj["quiet"])


def _require_image(session: FlowSession, image_id: str) -> None:
    if session.graph.get_image(image_id) is None:
        raise ValidationError(f"Unknown image node: {image_id}", field="image_id")


def _node_record(node) -> dict:
    return {
        "id": node.id,
        "type": node.kind,
        "position": node.position.to_dict(),
        "draggable": node.draggable,
        "isPreview": node.is_preview,
        "data": node.data.to_dict(),
    }


@click.group(
    help=f"""Generation graph with a bounded local image cache.

\b
Version: {__version__}
Data directory: ZENITH_DATA_DIR (default ~/.zenith)
"""
)
@click.version_option(version=__version__, package_name="zenith-flow")
@click.option(
    "--verbose",
    "-v",
    "verbose_count",
    count=True,
    help="Increase verbosity: -v also show prompts, -vv show storage detail.",
)
@click.option(
    "--quiet",
    "-q",
    is_flag=True,
    help="Minimize progress messages; only print ids or errors.",
)
@click.pass_context
def cli(ctx: click.Context, verbose_count: int, quiet: bool) -> None:
    ctx.color = True
    ctx.obj = {"quiet": quiet}

    # -v flags override ZENITH_VERBOSITY
    configure_logging(verbose_level=verbose_count or None, quiet=quiet)


@cli.command()
@click.option("--prompt", "-p", help="Text description of the images to generate.")
@click.option("--width", "-W", type=click.IntRange(min=1), help="Image width (default 1024).")
@click.option("--height", "-H", type=click.IntRange(min=1), help="Image height (default 1024).")
@click.option(
    "--batch",
    "-n",
    "batch_count",
    type=click.IntRange(min=1),
    help="Number of images; image k uses seed + k (default 1).",
)
@click.option("--seed", "-s", type=click.IntRange(min=0), help="Base seed (default random).")
@click.option(
    "--from",
    "from_config",
    metavar="CONFIG_ID",
    help="Start from an existing configuration; given options override its fields.",
)
@click.pass_context
def add(
    ctx: click.Context,
    prompt: str | None,
    width: int | None,
    height: int | None,
    batch_count: int | None,
    seed: int | None,
    from_config: str | None,
) -> None:
    """Add a configuration node and its batch of pending image nodes."""
    quiet = ctx.obj["quiet"]

    async def body(session: FlowSession) -> None:
        base = None
        if from_config is not None:
            base = await session.graph.load_for_editing(from_config)
            if base is None:
                raise ValidationError(f"Unknown configuration: {from_config}", field="from")

        draft = PreviewInput(
            prompt=prompt if prompt is not None else (base.prompt if base else ""),
            width=width or (base.width if base else 1024),
            height=height or (base.height if base else 1024),
            batch_count=batch_count or (base.batch_count if base else 1),
            seed=seed if seed is not None else random.randint(0, MAX_SEED),
        )
        if not draft.prompt.strip():
            raise ValidationError("Prompt cannot be empty", field="prompt")

        await session.graph.set_preview(draft)
        config_id = await session.graph.confirm_preview()
        if config_id is None:
            raise ValidationError("Nothing to confirm", field="prompt")

        image_ids = [n.id for n in session.graph.state.images_of(config_id)]
        if not quiet:
            progress.print_confirmed(session.graph.get_config(config_id), image_ids)
        click.echo(config_id)

    _run_session(ctx, body)


@cli.command()
@click.option("--json", "as_json", is_flag=True, help="Print nodes as JSON on stdout.")
@click.pass_context
def nodes(ctx: click.Context, as_json: bool) -> None:
    """List configuration and image nodes."""

    async def body(session: FlowSession) -> None:
        if as_json:
            click.echo(json.dumps([_node_record(n) for n in session.graph.all_nodes()], indent=2))
        else:
            progress.print_graph(session.graph.state)

    _run_session(ctx, body)


@cli.command()
@click.pass_context
def edges(ctx: click.Context) -> None:
    """Print one line per configuration-to-image edge."""

    async def body(session: FlowSession) -> None:
        for edge in session.graph.all_edges():
            click.echo(f"{edge.source}\t{edge.target}")

    _run_session(ctx, body)


@cli.command()
@click.argument("config_id")
@click.argument("x", type=float)
@click.argument("y", type=float)
@click.pass_context
def move(ctx: click.Context, config_id: str, x: float, y: float) -> None:
    """Move a configuration node; its images follow rigidly."""

    async def body(session: FlowSession) -> None:
        if session.graph.get_config(config_id) is None:
            raise ValidationError(f"Unknown configuration: {config_id}", field="config_id")
        await session.graph.update_position(config_id, x, y)
        if not ctx.obj["quiet"]:
            progress.print_success(f"Moved {config_id} to ({x:g}, {y:g})")

    _run_session(ctx, body)


@cli.command()
@click.argument("config_id")
@click.pass_context
def delete(ctx: click.Context, config_id: str) -> None:
    """Delete a configuration, its images and their cached bytes."""
    quiet = ctx.obj["quiet"]

    async def body(session: FlowSession) -> None:
        if session.graph.get_config(config_id) is None:
            if not quiet:
                progress.print_warning(f"No configuration {config_id}; nothing deleted")
            return
        report = await session.delete_config(config_id)
        if report.failed:
            progress.print_warning(
                f"Deleted {config_id}, but cached images could not be removed: "
                + ", ".join(report.failed)
            )
        elif not quiet:
            progress.print_success(f"Deleted {config_id} ({len(report.requested)} cached images)")

    _run_session(ctx, body)


@cli.command()
@click.option("--yes", "-y", is_flag=True, help="Do not ask for confirmation.")
@click.pass_context
def clear(ctx: click.Context, yes: bool) -> None:
    """Remove every node and every cached image."""
    if not yes:
        click.confirm("Delete all nodes and cached images?", abort=True, err=True)

    async def body(session: FlowSession) -> None:
        if not await session.clear_all():
            progress.print_warning("Graph cleared, but the image cache could not be emptied")
        elif not ctx.obj["quiet"]:
            progress.print_success("Cleared all nodes and cached images")

    _run_session(ctx, body)


@cli.command()
@click.pass_context
def stats(ctx: click.Context) -> None:
    """Show image cache usage."""

    async def body(session: FlowSession) -> None:
        usage = await session.storage_stats()
        if usage is None:
            progress.print_error("Could not read storage usage")
            return
        if not ctx.obj["quiet"]:
            progress.print_stats(usage)
        click.echo(f"{usage.count}\t{usage.total_size_mb}")

    _run_session(ctx, body)


async def _resolve_cleanup(
    session: FlowSession,
    outcome: ResultOutcome,
    on_limit: str,
    export_to: Path | None,
    quiet: bool,
) -> ResultOutcome:
    """Walk the storage limit decision until the governor is idle again."""
    choice = on_limit
    while session.cleanup_request is not None:
        if choice == "ask":
            progress.print_cleanup_request(session.cleanup_request)
            choice = click.prompt(
                "Choose",
                type=click.Choice(["export", "cleanup", "cancel"]),
                default="export",
                err=True,
            )
        elif not quiet:
            progress.print_cleanup_request(session.cleanup_request)

        if choice == "cleanup":
            outcome = await session.confirm_cleanup() or outcome
        elif choice == "export":
            dest = export_to or Path(default_export_path())
            report, retried = await session.download_all_then_retry(dest)
            if not quiet:
                progress.print_export_report(report)
            if retried is not None:
                outcome = retried
            # Still parked: exporting does not free space by itself
            choice = "ask" if on_limit == "ask" else "cancel"
        else:
            session.cancel_cleanup()
            outcome = ResultOutcome(outcome.image_id, StoreStatus.CANCELLED)
    return outcome


@cli.command()
@click.argument("image_id")
@click.argument("url")
@click.option("--duration", default="", help="Generation time label, e.g. '12.3s'.")
@click.option(
    "--on-limit",
    type=click.Choice(["ask", "export", "cleanup", "cancel"], case_sensitive=False),
    default="ask",
    show_default=True,
    help="What to do when the image cache is full.",
)
@click.option(
    "--export-to",
    type=click.Path(path_type=Path),
    help="Archive path for the export choice (default zenith_images_<timestamp>.zip).",
)
@click.pass_context
def result(
    ctx: click.Context,
    image_id: str,
    url: str,
    duration: str,
    on_limit: str,
    export_to: Path | None,
) -> None:
    """Record a finished image (data: or http(s) URL) and cache its bytes."""
    quiet = ctx.obj["quiet"]

    async def body(session: FlowSession) -> None:
        _require_image(session, image_id)
        generation = GenerationResult(url=url, duration_label=duration)
        if quiet:
            outcome = await session.record_result(image_id, generation)
        else:
            with progress.fetch_progress(image_id):
                outcome = await session.record_result(image_id, generation)
        if outcome is None:
            raise ValidationError(f"Image node {image_id} was removed", field="image_id")

        if outcome.status is StoreStatus.CLEANUP_NEEDED:
            outcome = await _resolve_cleanup(session, outcome, on_limit.lower(), export_to, quiet)

        if outcome.status is StoreStatus.STORED:
            if not quiet:
                progress.print_success(f"Cached {image_id}")
                if outcome.evicted_ids:
                    progress.print_info(
                        f"Evicted {len(outcome.evicted_ids)} older images: "
                        + ", ".join(outcome.evicted_ids)
                    )
        elif outcome.status is StoreStatus.FAILED:
            progress.print_warning(
                f"{image_id} is ready but not cached"
                + (f": {outcome.error}" if outcome.error else "")
            )
        elif not quiet:
            progress.print_warning(f"{image_id} is ready but not cached")
        click.echo(f"{image_id}\t{outcome.status.value}")

    _run_session(ctx, body)


@cli.command()
@click.argument("image_id")
@click.argument("message")
@click.pass_context
def fail(ctx: click.Context, image_id: str, message: str) -> None:
    """Mark an image node as failed."""

    async def body(session: FlowSession) -> None:
        _require_image(session, image_id)
        await session.record_failure(image_id, message)

    _run_session(ctx, body)


@cli.command()
@click.argument("image_id")
@click.option("--out", "-o", type=click.Path(path_type=Path), required=True, help="Output file.")
@click.pass_context
def save(ctx: click.Context, image_id: str, out: Path) -> None:
    """Write an image's cached bytes to a file."""

    async def body(session: FlowSession) -> None:
        _require_image(session, image_id)
        data = await session.load_image(image_id)
        if data is None:
            raise ValidationError(f"No cached bytes for {image_id}", field="image_id")
        out.write_bytes(data)
        click.echo(str(out))

    _run_session(ctx, body)


@cli.command()
@click.argument("dest", type=click.Path(path_type=Path), required=False)
@click.pass_context
def export(ctx: click.Context, dest: Path | None) -> None:
    """Download every finished image into a zip archive."""

    async def body(session: FlowSession) -> None:
        report = await session.export_all(dest or Path(default_export_path()))
        if not ctx.obj["quiet"]:
            progress.print_export_report(report)
        click.echo(str(report.path))

    _run_session(ctx, body)


def main() -> None:
    """Entry point for the zenith console script."""
    cli()


__all__ = ["cli", "main"]
