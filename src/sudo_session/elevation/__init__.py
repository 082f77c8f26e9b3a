"""Elevated child process execution."""

from .launcher import ElevatedLauncher

__all__ = ["ElevatedLauncher"]
