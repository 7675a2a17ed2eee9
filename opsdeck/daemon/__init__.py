"""Daemon module for Opsdeck.

Runs the job scheduler as a long-lived foreground service.
"""

from opsdeck.daemon.service import OpsdeckDaemon, run_daemon

__all__ = [
    "OpsdeckDaemon",
    "run_daemon",
]
