"""Recorded application of the sudo session configuration."""

from .engine import DELEGATION_KEY, SetupEngine

__all__ = ["DELEGATION_KEY", "SetupEngine"]
