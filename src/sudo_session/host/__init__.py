"""Local host detection."""

from .detector import HostDetector

__all__ = ["HostDetector"]
