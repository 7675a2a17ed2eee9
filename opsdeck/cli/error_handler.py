"""Error handling for Opsdeck CLI commands.

Commands are wrapped with ``handle_errors``, which turns CLI and scheduler
exceptions into a red one-line message on stderr and a matching exit code.
"""

from functools import wraps
from typing import Any, Callable, TypeVar
import logging

import typer
from rich.console import Console
from sqlalchemy.exc import SQLAlchemyError

from opsdeck.cli.exit_codes import ExitCode
from opsdeck.scheduler.exceptions import (
    JobNotFoundError,
    JobValidationError,
    SchedulingConflict,
)

# Console for error output (stderr)
console = Console(stderr=True)

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Any])


class OpsdeckError(Exception):
    """Base exception for the Opsdeck CLI.

    Attributes:
        message: Error message
        exit_code: Exit code to use when exiting
        details: Optional dictionary of additional error details
    """

    exit_code: int = ExitCode.GENERAL_ERROR

    def __init__(
        self,
        message: str,
        exit_code: int | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if exit_code is not None:
            self.exit_code = exit_code
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            details_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"{self.message} ({details_str})"
        return self.message


class ConfigurationError(OpsdeckError):
    """Invalid or unreadable configuration."""

    exit_code = ExitCode.CONFIGURATION_ERROR


class ValidationError(OpsdeckError):
    """Invalid command-line input or job definition."""

    exit_code = ExitCode.INVALID_ARGUMENT


class NotFoundError(OpsdeckError):
    """A job id or prefix did not match any job."""

    exit_code = ExitCode.NOT_FOUND


class ConflictError(OpsdeckError):
    """The job already has a running execution."""

    exit_code = ExitCode.CONFLICT


class ExecutionFailedError(OpsdeckError):
    """A run started from the CLI ended FAILED or TIMEOUT."""

    exit_code = ExitCode.EXECUTION_FAILED


def _translate(exc: Exception) -> OpsdeckError | None:
    """Map scheduler and database exceptions onto CLI errors."""
    if isinstance(exc, OpsdeckError):
        return exc
    if isinstance(exc, JobValidationError):
        details = {"field": exc.field} if exc.field else None
        return ValidationError(exc.message, details=details)
    if isinstance(exc, JobNotFoundError):
        return NotFoundError(exc.message)
    if isinstance(exc, SchedulingConflict):
        return ConflictError(exc.message)
    if isinstance(exc, SQLAlchemyError):
        return OpsdeckError(f"Database error: {exc}", exit_code=ExitCode.DATABASE_ERROR)
    return None


def handle_errors(func: F) -> F:
    """Decorator for consistent error handling across CLI commands.

    Example:
        @app.command()
        @handle_errors
        def pause(job_id: str):
            ...
    """
    @wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return func(*args, **kwargs)

        except KeyboardInterrupt:
            console.print("\n[yellow]Operation cancelled by user.[/yellow]")
            logger.info("Operation cancelled by user (KeyboardInterrupt)")
            raise typer.Exit(code=ExitCode.CANCELLED)

        except (typer.Exit, typer.Abort):
            raise

        except Exception as e:
            error = _translate(e)
            if error is None:
                logger.exception("Unexpected error occurred")
                console.print(f"[red]Unexpected error:[/red] {e}")
                console.print("[dim]Run with --verbose for more details[/dim]")
                raise typer.Exit(code=ExitCode.GENERAL_ERROR)

            logger.error(
                f"{error.__class__.__name__}: {error.message}",
                extra={"exit_code": error.exit_code, "details": error.details},
            )
            console.print(f"[red]Error:[/red] {error.message}")
            for key, value in error.details.items():
                console.print(f"  [dim]{key}:[/dim] {value}")

            raise typer.Exit(code=error.exit_code)

    return wrapper  # type: ignore[return-value]
