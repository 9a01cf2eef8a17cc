"""Qt-aware controllers used by the desktop window."""

from .account_controller import AccountController
from .git_operations_controller import GitOperationsController
from .status_watch_controller import StatusWatchController

__all__ = [
    "AccountController",
    "GitOperationsController",
    "StatusWatchController",
]
