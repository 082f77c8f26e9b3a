"""Reverse-operation application for recorded change-logs."""

from .engine import RestoreEngine, RestoreResult
from .script import parse_restore_report, render_restore_script

__all__ = ["RestoreEngine", "RestoreResult", "parse_restore_report", "render_restore_script"]
