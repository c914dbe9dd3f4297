"""Paced, session-persistent client for the SPOT learning portal."""

from .core.errors import *  # noqa: F401,F403
from .core.errors import __all__ as _error_names
from .workflows import *  # noqa: F401,F403
from .workflows import __all__ as _workflow_names

__version__ = "0.1.0"

__all__ = [*_workflow_names, *_error_names, "__version__"]
