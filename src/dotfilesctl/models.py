"""Shared models and enums for dotfilesctl."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path


class LinkState(str, Enum):
    """Observed relationship between a managed entry and its home path."""

    CORRECT = "correct"
    INCORRECT = "incorrect"
    BLOCKED = "blocked"
    MISSING = "missing"


@dataclass(frozen=True, slots=True)
class ManagedEntry:
    """A top-level file in the repository's managed directory."""

    source_path: Path
    relative_name: str
    kind: str = "file"


@dataclass(frozen=True, slots=True)
class StatusEntry:
    """Status information for one managed entry."""

    entry: ManagedEntry
    destination: Path
    state: LinkState
    details: str | None = None

    @property
    def relative_name(self) -> str:
        return self.entry.relative_name


@dataclass(frozen=True, slots=True)
class StatusReport:
    """Ordered status results for a home directory."""

    home: Path
    entries: tuple[StatusEntry, ...]

    @property
    def correct(self) -> int:
        return sum(1 for entry in self.entries if entry.state is LinkState.CORRECT)

    @property
    def problems(self) -> int:
        return len(self.entries) - self.correct

    @property
    def has_problems(self) -> bool:
        return self.problems > 0


@dataclass(frozen=True, slots=True)
class DeployResult:
    """Aggregate outcome of a deploy run."""

    linked: int
    skipped: int
    failures: tuple[str, ...] = ()
    displaced: tuple[Path, ...] = ()

    @property
    def ok(self) -> bool:
        return not self.failures


@dataclass(frozen=True, slots=True)
class RemovalResult:
    """Counts of what ``remove_links`` deleted, plus per-entry failures."""

    removed: int
    backups_removed: int = 0
    failures: tuple[str, ...] = ()

    @property
    def ok(self) -> bool:
        return not self.failures


@dataclass(frozen=True, slots=True)
class UserAccount:
    """A resolvable login; ``uid``/``shell`` are ``None`` for fallback homes."""

    name: str
    home: Path
    uid: int | None = None
    gid: int | None = None
    shell: str | None = None


@dataclass(frozen=True, slots=True)
class BackupSnapshot:
    """One retained backup archive."""

    owner: str
    created_at: datetime
    archive_path: Path
    entries: tuple[str, ...] = ()

    @property
    def name(self) -> str:
        return self.archive_path.name


@dataclass(frozen=True, slots=True)
class RestoreResult:
    """Outcome of extracting a snapshot into a home directory."""

    snapshot: Path
    restored: tuple[str, ...]
    renamed: tuple[Path, ...] = ()
    skipped: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class InstallResult:
    """Backup, rotation and deploy outcome for a single user."""

    user: str
    deploy: DeployResult
    snapshot: BackupSnapshot | None = None
    rotated: int = 0


@dataclass(slots=True)
class BatchResult:
    """Accumulated results of an ``--all`` run."""

    installed: list[InstallResult] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failed and all(result.deploy.ok for result in self.installed)
