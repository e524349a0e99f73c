"""Shared helpers."""

from car_fetch.utils.subprocess import CommandOutcome, run_capture, run_cmd, which

__all__ = [
    "CommandOutcome",
    "run_capture",
    "run_cmd",
    "which",
]
