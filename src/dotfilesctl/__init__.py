"""Core package for the dotfilesctl project."""

from ._version import __version__
from .backup import SnapshotStore
from .cli import app, run
from .config import Config, ConfigError, Settings, load_config
from .errors import (
    ArchiveError,
    BackupNotPossible,
    ConfirmationDeclined,
    DotfilesError,
    LinkFailure,
    UserNotFound,
)
from .manager import DotfilesManager
from .models import (
    BackupSnapshot,
    DeployResult,
    LinkState,
    ManagedEntry,
    RemovalResult,
    RestoreResult,
    StatusEntry,
    StatusReport,
    UserAccount,
)

__all__ = [
    "__version__",
    "Config",
    "ConfigError",
    "Settings",
    "load_config",
    "DotfilesManager",
    "SnapshotStore",
    "DotfilesError",
    "UserNotFound",
    "BackupNotPossible",
    "LinkFailure",
    "ArchiveError",
    "ConfirmationDeclined",
    "BackupSnapshot",
    "DeployResult",
    "LinkState",
    "ManagedEntry",
    "RemovalResult",
    "RestoreResult",
    "StatusEntry",
    "StatusReport",
    "UserAccount",
    "app",
    "run",
]
