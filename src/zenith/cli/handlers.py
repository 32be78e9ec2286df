"""
Error handling for the CLI.

This module maps library exceptions to exit codes and runs the async body of
a command on a fresh event loop.
"""

import asyncio
import sys
from collections.abc import Awaitable, Callable

import click

from zenith import (
    APIError,
    ConfigurationError,
    ImageProcessingError,
    NetworkError,
    PersistenceError,
    RequestTimeoutError,
    ValidationError,
    ZenithError,
)
from zenith.cli import progress
from zenith.cli.utils import (
    EXIT_API_OR_NETWORK,
    EXIT_CANCELLED,
    EXIT_VALIDATION_OR_CONFIG,
)


def map_exception_to_exit(exc: BaseException) -> tuple[int, str]:
    """Map library and known exceptions to (exit_code, user_message)."""
    if isinstance(exc, ValidationError):
        msg = exc.args[0] if exc.args else "Validation failed."
        if getattr(exc, "field", None):
            msg = f"{msg} (field: {exc.field})"
        return (EXIT_VALIDATION_OR_CONFIG, msg)
    if isinstance(exc, ConfigurationError):
        return (EXIT_VALIDATION_OR_CONFIG, exc.args[0] if exc.args else "Invalid configuration.")
    if isinstance(exc, ImageProcessingError):
        return (EXIT_VALIDATION_OR_CONFIG, exc.args[0] if exc.args else "Image processing failed.")
    if isinstance(exc, KeyboardInterrupt):
        return (EXIT_CANCELLED, "Cancelled.")
    if isinstance(exc, PersistenceError):
        return (EXIT_API_OR_NETWORK, exc.args[0] if exc.args else "Storage error.")
    if isinstance(exc, (APIError, NetworkError, RequestTimeoutError)):
        return (EXIT_API_OR_NETWORK, exc.args[0] if exc.args else "API or network error.")
    if isinstance(exc, ZenithError):
        return (EXIT_API_OR_NETWORK, exc.args[0] if exc.args else "An error occurred.")
    # Unhandled
    return (EXIT_API_OR_NETWORK, str(exc) if exc.args else "An unexpected error occurred.")


def run_with_error_handling(
    fn: Callable[[], Awaitable[None]],
    *,
    quiet: bool = False,
    debug: bool = False,
) -> None:
    """
    Run the coroutine function fn on a new event loop; on exception map to exit
    code and message, print and sys.exit.
    Used so command bodies stay free of try/except for known errors.
    """
    try:
        asyncio.run(fn())
    except (ZenithError, KeyboardInterrupt) as e:
        code, msg = map_exception_to_exit(e)
        if code == EXIT_CANCELLED:
            if not quiet:
                progress.print_warning(msg)
        else:
            if quiet:
                click.echo(msg, err=True)
            else:
                progress.print_error(msg)
        sys.exit(code)
    except (click.ClickException, click.Abort):
        raise
    except Exception as e:
        if debug:
            raise
        code, msg = map_exception_to_exit(e)
        if quiet:
            click.echo(msg, err=True)
        else:
            progress.print_error(msg)
        sys.exit(EXIT_API_OR_NETWORK)


__all__ = [
    "map_exception_to_exit",
    "run_with_error_handling",
]
