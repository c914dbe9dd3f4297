"""Core schema helpers and error types for Spotifier."""

from .keys import *  # noqa: F401,F403 re-export stable keys
from .errors import *  # noqa: F401,F403

__all__ = [name for name in globals() if name.startswith("K_") or name.endswith("Error")]
