"""CLI command modules for Opsdeck.

This package contains the CLI command implementations and the shared
error handling and exit codes they use.
"""

from opsdeck.cli import handlers, jobs, run
from opsdeck.cli.exit_codes import ExitCode
from opsdeck.cli.error_handler import (
    ConfigurationError,
    ConflictError,
    ExecutionFailedError,
    NotFoundError,
    OpsdeckError,
    ValidationError,
    handle_errors,
)

__all__ = [
    # Command modules
    "handlers",
    "jobs",
    "run",
    # Exit codes
    "ExitCode",
    # Error handling
    "OpsdeckError",
    "ConfigurationError",
    "ConflictError",
    "ExecutionFailedError",
    "NotFoundError",
    "ValidationError",
    "handle_errors",
]
