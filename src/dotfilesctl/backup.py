"""Snapshot archives of a user's existing dotfiles."""

from __future__ import annotations

import re
import shutil
import tarfile
import tempfile
from datetime import datetime
from pathlib import Path
from typing import Callable, Iterable, Sequence

from .errors import ArchiveError, BackupNotPossible, ConfirmationDeclined, DotfilesError
from .filesystem import chown_to, ensure_parent, lexists, numbered_backup_path, timestamp
from .models import BackupSnapshot, RestoreResult, UserAccount

DEFAULT_RETENTION = 5
LATEST = "latest"

_SNAPSHOT_NAME = re.compile(
    r"^(?:snapshot_(?P<date>\d{8})_(?P<time>\d{6})|backup-(?P<alt_date>\d{8})-(?P<alt_time>\d{6}))\.tar\.gz$"
)


def snapshot_name(moment: datetime) -> str:
    return f"snapshot_{timestamp(moment)}.tar.gz"


def parse_snapshot_time(name: str) -> datetime | None:
    """Return the timestamp embedded in an archive name, or ``None``."""

    match = _SNAPSHOT_NAME.match(name)
    if match is None:
        return None
    date = match.group("date") or match.group("alt_date")
    time = match.group("time") or match.group("alt_time")
    try:
        return datetime.strptime(f"{date}{time}", "%Y%m%d%H%M%S")
    except ValueError:
        return None


def _stamped_archives(directory: Path) -> list[tuple[datetime, Path]]:
    if not directory.is_dir():
        return []
    stamped: list[tuple[datetime, Path]] = []
    for child in directory.iterdir():
        created = parse_snapshot_time(child.name)
        if created is not None and child.is_file():
            stamped.append((created, child))
    stamped.sort(key=lambda item: (item[0], item[1].name))
    return stamped


def sorted_archives(directory: Path) -> list[Path]:
    """Snapshot archives in ``directory``, oldest first."""

    return [path for _, path in _stamped_archives(directory)]


def rotate(directory: Path, retention: int = DEFAULT_RETENTION, *, warnings: list[str] | None = None) -> int:
    """Delete all but the newest ``retention`` archives, oldest first.

    A file that cannot be removed is reported through ``warnings`` and the
    remaining candidates are still processed. Returns the number deleted.
    """

    if retention < 1:
        raise ValueError("retention must be at least 1")

    archives = sorted_archives(directory)
    deleted = 0
    for path in archives[: max(len(archives) - retention, 0)]:
        try:
            path.unlink()
        except OSError as exc:
            if warnings is not None:
                warnings.append(f"Could not delete old snapshot '{path.name}': {exc}")
            continue
        deleted += 1
    return deleted


def _safe_member(member: tarfile.TarInfo) -> bool:
    if not (member.isfile() or member.isdir()):
        return False
    path = Path(member.name)
    if path.is_absolute() or ".." in path.parts:
        return False
    return bool(path.parts)


def _stays_inside(member: tarfile.TarInfo, home: Path) -> bool:
    """Whether ``member`` lands under ``home`` once symlinked parents are followed."""

    parent = (home / member.name).parent.resolve()
    return parent.is_relative_to(home.resolve())


class SnapshotStore:
    """Creates, lists, rotates and restores per-user snapshot archives."""

    def __init__(self, backup_root: Path, candidates: Sequence[str]) -> None:
        self.backup_root = backup_root
        self.candidates = tuple(dict.fromkeys(candidates))
        self._warnings: list[str] = []

    def user_dir(self, user: str) -> Path:
        return self.backup_root / user

    def list_snapshots(self, user: str) -> list[BackupSnapshot]:
        return [
            BackupSnapshot(owner=user, created_at=created, archive_path=path)
            for created, path in _stamped_archives(self.user_dir(user))
        ]

    def create(
        self,
        account: UserAccount,
        *,
        now: datetime | None = None,
        extra_candidates: Iterable[str] = (),
    ) -> BackupSnapshot | None:
        """Archive every candidate present in the account's home.

        Symlinks are followed so the archive holds file contents. Returns
        ``None`` (and records a warning) when no candidate exists.
        """

        moment = now or datetime.now()
        archive = self.user_dir(account.name) / snapshot_name(moment)
        if lexists(archive):
            raise ArchiveError(f"Snapshot '{archive.name}' already exists for {account.name}")

        candidates = tuple(dict.fromkeys((*self.candidates, *extra_candidates)))
        with tempfile.TemporaryDirectory(prefix="dotfilesctl-") as staging_name:
            staging = Path(staging_name)
            try:
                entries = self._stage(account.home, staging, candidates)
            except BackupNotPossible as exc:
                self._warnings.append(str(exc))
                return None

            try:
                archive.parent.mkdir(parents=True, exist_ok=True)
            except OSError as exc:
                raise DotfilesError(f"Cannot create backup directory '{archive.parent}': {exc}") from exc

            try:
                with tarfile.open(archive, "w:gz") as tar:
                    for name in entries:
                        tar.add(staging / name, arcname=name)
            except (OSError, tarfile.TarError) as exc:
                archive.unlink(missing_ok=True)
                raise ArchiveError(f"Failed to create archive '{archive}': {exc}") from exc

        self._chown(archive, account)
        return BackupSnapshot(
            owner=account.name,
            created_at=moment.replace(microsecond=0),
            archive_path=archive,
            entries=entries,
        )

    def rotate(self, user: str, retention: int = DEFAULT_RETENTION) -> int:
        return rotate(self.user_dir(user), retention, warnings=self._warnings)

    def find(self, user: str, name: str) -> Path:
        """Locate a snapshot by file name, or the newest one for ``latest``."""

        archives = sorted_archives(self.user_dir(user))
        if name == LATEST:
            if not archives:
                raise DotfilesError(f"No snapshots found for {user}")
            return archives[-1]

        wanted = Path(name).name
        for archive in archives:
            if archive.name == wanted:
                return archive
        raise DotfilesError(f"Snapshot '{name}' not found for {user}")

    def restore(
        self,
        account: UserAccount,
        name: str,
        *,
        confirm: Callable[[str], bool],
    ) -> RestoreResult:
        """Extract a snapshot into the account's home.

        ``confirm`` receives a prompt and must return ``True`` to proceed;
        automated callers pass an explicit always-true callback. Anything
        already at a destination is renamed to ``<name>.~N~`` first.
        """

        archive = self.find(account.name, name)
        if not confirm(f"Restore '{archive.name}' into '{account.home}'? Existing files will be renamed."):
            raise ConfirmationDeclined(f"Restore of '{archive.name}' cancelled")

        restored: list[str] = []
        renamed: list[Path] = []
        skipped: list[str] = []
        try:
            with tarfile.open(archive, "r:gz") as tar:
                for member in tar.getmembers():
                    if not _safe_member(member) or not _stays_inside(member, account.home):
                        skipped.append(member.name)
                        continue
                    destination = account.home / member.name
                    if member.isfile():
                        conflict = lexists(destination)
                    else:
                        conflict = destination.is_symlink() or (destination.exists() and not destination.is_dir())
                    if conflict:
                        backup = numbered_backup_path(destination)
                        destination.rename(backup)
                        renamed.append(backup)
                    ensure_parent(destination)
                    tar.extract(member, account.home, filter="data")
                    self._chown(destination, account)
                    restored.append(Path(member.name).as_posix())
        except (OSError, tarfile.TarError) as exc:
            raise ArchiveError(f"Failed to extract '{archive}': {exc}") from exc

        return RestoreResult(snapshot=archive, restored=tuple(restored), renamed=tuple(renamed), skipped=tuple(skipped))

    def pull_warnings(self) -> list[str]:
        messages = list(self._warnings)
        self._warnings.clear()
        return messages

    # ------------------------------------------------------------------
    # Internal helpers

    def _stage(self, home: Path, staging: Path, candidates: Sequence[str]) -> tuple[str, ...]:
        staged: list[str] = []
        for name in candidates:
            source = home / name
            if not source.exists():
                continue
            target = staging / name
            ensure_parent(target)
            try:
                if source.is_dir():
                    shutil.copytree(source, target, symlinks=False)
                else:
                    shutil.copy2(source, target)
            except OSError as exc:
                self._warnings.append(f"Skipped '{name}' while staging backup: {exc}")
                continue
            staged.append(name)

        if not staged:
            raise BackupNotPossible(f"Backup skipped: no relevant dotfiles found in '{home}'")
        return tuple(staged)

    def _chown(self, path: Path, account: UserAccount) -> None:
        try:
            chown_to(path, account)
        except OSError as exc:
            self._warnings.append(f"Could not hand '{path}' to {account.name}: {exc}")
