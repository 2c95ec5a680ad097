"""Filesystem helpers for dotfilesctl."""

from __future__ import annotations

import errno
import fnmatch
import glob
import os
import shutil
from datetime import datetime
from pathlib import Path

from .models import ManagedEntry, UserAccount

BACKUP_SUFFIX = ".bak_"
BACKUP_SUFFIX_PATTERN = f"*{BACKUP_SUFFIX}*"
TIMESTAMP_FORMAT = "%Y%m%d_%H%M%S"


def timestamp(moment: datetime) -> str:
    """Second-resolution, fixed-width, filesystem-safe stamp."""

    return moment.strftime(TIMESTAMP_FORMAT)


def ensure_parent(path: Path) -> None:
    """Ensure the parent directory exists."""

    path.parent.mkdir(parents=True, exist_ok=True)


def lexists(path: Path) -> bool:
    """``True`` if anything, including a dangling symlink, occupies ``path``."""

    return path.exists() or path.is_symlink()


def scan_managed_dir(managed_dir: Path) -> tuple[list[ManagedEntry], list[Path]]:
    """Split the top level of ``managed_dir`` into entries and ignored paths.

    Only non-directory members become entries, ordered by name. Directories
    (and symlinks to directories) are never descended into, and leftovers
    matching ``*.bak_*`` are ignored.
    """

    entries: list[ManagedEntry] = []
    ignored: list[Path] = []
    for child in sorted(managed_dir.iterdir(), key=lambda item: item.name):
        if child.is_dir() or fnmatch.fnmatchcase(child.name, BACKUP_SUFFIX_PATTERN):
            ignored.append(child)
            continue
        entries.append(ManagedEntry(source_path=child, relative_name=child.name))
    return entries, ignored


def link_points_to(destination: Path, source: Path) -> bool:
    """Return ``True`` if ``destination`` is a symlink whose raw target is ``source``.

    The comparison is exact string equality on what ``readlink`` returns; no
    path is normalised or resolved.
    """

    if not destination.is_symlink():
        return False
    return os.readlink(destination) == str(source)


def displace(path: Path, stamp: str) -> Path:
    """Rename ``path`` to ``<path>.bak_<stamp>`` and return the new path."""

    target = path.with_name(f"{path.name}{BACKUP_SUFFIX}{stamp}")
    if lexists(target):
        raise FileExistsError(errno.EEXIST, "Backup already exists", str(target))
    path.rename(target)
    return target


def replace_with_symlink(destination: Path, source: Path) -> None:
    """Point ``destination`` at ``source``, dropping any symlink already there."""

    if destination.is_symlink():
        destination.unlink()
    ensure_parent(destination)
    destination.symlink_to(source)


def backup_files_for(home: Path, name: str) -> list[Path]:
    """Every ``<name>.bak_*`` sibling in ``home``."""

    pattern = f"{glob.escape(name)}{BACKUP_SUFFIX}*"
    return sorted(home.glob(pattern))


def numbered_backup_path(path: Path) -> Path:
    """Next free ``<path>.~N~`` name, mirroring ``tar --backup=numbered``."""

    counter = 1
    while True:
        candidate = path.with_name(f"{path.name}.~{counter}~")
        if not lexists(candidate):
            return candidate
        counter += 1


def remove_path(path: Path) -> None:
    """Delete ``path`` whether it is a file, directory, or symlink."""

    if not lexists(path):
        return
    if path.is_symlink() or path.is_file():
        path.unlink()
        return
    shutil.rmtree(path)


def chown_to(path: Path, account: UserAccount | None) -> bool:
    """Hand ``path`` to ``account`` when running as root.

    Symlinks are changed themselves rather than their targets. Returns
    ``True`` if ownership was changed.
    """

    if account is None or account.uid is None or account.uid == 0:
        return False
    if not hasattr(os, "geteuid") or os.geteuid() != 0:
        return False
    gid = account.gid if account.gid is not None else -1
    os.lchown(path, account.uid, gid)
    return True
