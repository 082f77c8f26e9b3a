"""Sudo sessions and the setup/teardown operations around them."""

from .manager import Credentials, SudoSession, SudoSessionManager

__all__ = ["Credentials", "SudoSession", "SudoSessionManager"]
