"""Change-log model and on-disk store."""

from .manager import ChangeLog, ChangeLogManager

__all__ = ["ChangeLog", "ChangeLogManager"]
