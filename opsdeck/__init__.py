"""Opsdeck - job scheduling and execution for the seller operations dashboard."""

__app_name__ = "opsdeck"
__version__ = "0.1.0"
