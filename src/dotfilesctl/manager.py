"""High level orchestration for dotfilesctl operations."""

from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import Callable

from .backup import SnapshotStore
from .config import Config
from .errors import DotfilesError, LinkFailure
from .filesystem import (
    backup_files_for,
    chown_to,
    displace,
    lexists,
    link_points_to,
    remove_path,
    replace_with_symlink,
    scan_managed_dir,
    timestamp,
)
from .models import (
    BackupSnapshot,
    BatchResult,
    DeployResult,
    InstallResult,
    LinkState,
    ManagedEntry,
    RemovalResult,
    RestoreResult,
    StatusEntry,
    StatusReport,
    UserAccount,
)
from .users import list_real_users, resolve_account


class DotfilesManager:
    """Coordinates deploy, status, removal and snapshot operations."""

    def __init__(self, config: Config, *, clock: Callable[[], datetime] = datetime.now) -> None:
        self.config = config
        self.snapshots = SnapshotStore(config.backup_root, config.settings.backup_candidates)
        self._clock = clock
        self._warnings: list[str] = []

    def account(self, user: str) -> UserAccount:
        return resolve_account(user)

    def managed_entries(self) -> list[ManagedEntry]:
        entries, _ = self._scan()
        return entries

    def deploy(self, home: Path, *, owner: UserAccount | None = None) -> DeployResult:
        """Link every managed entry into ``home``.

        Existing symlinks are always replaced. Anything else at a destination
        is renamed to ``<name>.bak_<stamp>``, with one stamp for the whole run.
        A failing entry is recorded and the run moves on.
        """

        entries, ignored = self._scan()
        self._require_home(home)
        stamp = timestamp(self._clock())

        linked = 0
        failures: list[str] = []
        displaced: list[Path] = []
        for entry in entries:
            destination = home / entry.relative_name
            try:
                moved = self._link_entry(entry, destination, stamp)
            except LinkFailure as exc:
                failures.append(str(exc))
                continue
            if moved is not None:
                displaced.append(moved)
            linked += 1
            self._chown(destination, owner)

        return DeployResult(
            linked=linked,
            skipped=len(ignored),
            failures=tuple(failures),
            displaced=tuple(displaced),
        )

    def status(self, home: Path) -> StatusReport:
        """Classify each managed entry's destination without touching it."""

        entries, _ = self._scan()
        return StatusReport(home=home, entries=tuple(self._status_for_entry(entry, home) for entry in entries))

    def remove_links(self, home: Path, *, also_remove_backups: bool = False) -> RemovalResult:
        """Delete managed destinations that are symlinks, and optionally ``.bak_*`` files."""

        entries, _ = self._scan()
        removed = 0
        backups_removed = 0
        failures: list[str] = []
        for entry in entries:
            destination = home / entry.relative_name
            try:
                if destination.is_symlink():
                    destination.unlink()
                    removed += 1
            except OSError as exc:
                failures.append(f"Failed to remove link '{destination}': {exc.strerror or exc}")
            if not also_remove_backups:
                continue
            for backup in backup_files_for(home, entry.relative_name):
                try:
                    remove_path(backup)
                except OSError as exc:
                    failures.append(f"Failed to remove backup '{backup}': {exc.strerror or exc}")
                    continue
                backups_removed += 1
        return RemovalResult(removed=removed, backups_removed=backups_removed, failures=tuple(failures))

    def reinstall(self, home: Path, *, owner: UserAccount | None = None) -> tuple[RemovalResult, DeployResult]:
        removal = self.remove_links(home)
        return removal, self.deploy(home, owner=owner)

    def snapshot(self, account: UserAccount) -> BackupSnapshot | None:
        extra: list[str] = []
        if self.config.settings.include_managed_in_backup and self.config.managed_dir.is_dir():
            extra = [entry.relative_name for entry in self.managed_entries()]
        return self.snapshots.create(account, now=self._clock(), extra_candidates=extra)

    def rotate(self, user: str) -> int:
        return self.snapshots.rotate(user, self.config.settings.retention)

    def restore(self, account: UserAccount, name: str, *, confirm: Callable[[str], bool]) -> RestoreResult:
        return self.snapshots.restore(account, name, confirm=confirm)

    def install(self, user: str, *, backup: bool = True) -> InstallResult:
        """Snapshot, rotate and deploy for one user.

        Having nothing to back up only produces a warning. A failed archive
        aborts before any link is touched.
        """

        account = self.account(user)
        self._scan()

        snapshot: BackupSnapshot | None = None
        rotated = 0
        if backup:
            snapshot = self.snapshot(account)
            rotated = self.rotate(account.name)

        result = self.deploy(account.home, owner=account)
        return InstallResult(user=account.name, deploy=result, snapshot=snapshot, rotated=rotated)

    def install_all(self, *, backup: bool = True) -> BatchResult:
        """Run ``install`` for every real user, one after another."""

        self._scan()
        batch = BatchResult()
        for user in list_real_users():
            try:
                batch.installed.append(self.install(user, backup=backup))
            except (DotfilesError, OSError) as exc:
                batch.failed[user] = str(exc)
        return batch

    def pull_warnings(self) -> list[str]:
        messages = [*self._warnings, *self.snapshots.pull_warnings()]
        self._warnings.clear()
        return messages

    # ------------------------------------------------------------------
    # Internal helpers

    def _scan(self) -> tuple[list[ManagedEntry], list[Path]]:
        managed_dir = self.config.managed_dir
        if not managed_dir.is_dir():
            raise DotfilesError(f"Managed directory '{managed_dir}' does not exist")
        return scan_managed_dir(managed_dir)

    @staticmethod
    def _require_home(home: Path) -> None:
        if not home.is_dir():
            raise DotfilesError(f"Home directory '{home}' does not exist")

    @staticmethod
    def _link_entry(entry: ManagedEntry, destination: Path, stamp: str) -> Path | None:
        moved: Path | None = None
        try:
            if lexists(destination) and not destination.is_symlink():
                moved = displace(destination, stamp)
            replace_with_symlink(destination, entry.source_path)
        except OSError as exc:
            raise LinkFailure(f"Failed to create link '{destination}': {exc.strerror or exc}") from exc
        return moved

    @staticmethod
    def _status_for_entry(entry: ManagedEntry, home: Path) -> StatusEntry:
        destination = home / entry.relative_name

        if destination.is_symlink():
            if link_points_to(destination, entry.source_path):
                return StatusEntry(entry=entry, destination=destination, state=LinkState.CORRECT)
            return StatusEntry(
                entry=entry,
                destination=destination,
                state=LinkState.INCORRECT,
                details=f"Points to '{destination.readlink()}'",
            )

        if destination.exists():
            return StatusEntry(
                entry=entry,
                destination=destination,
                state=LinkState.BLOCKED,
                details="A real file occupies the destination",
            )

        return StatusEntry(entry=entry, destination=destination, state=LinkState.MISSING)

    def _chown(self, path: Path, owner: UserAccount | None) -> None:
        if owner is None:
            return
        try:
            chown_to(path, owner)
        except OSError as exc:
            self._warnings.append(f"Could not hand '{path}' to {owner.name}: {exc}")
