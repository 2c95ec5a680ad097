from __future__ import annotations

import tarfile
from datetime import datetime
from pathlib import Path

import pytest

from dotfilesctl.backup import SnapshotStore, parse_snapshot_time, rotate, sorted_archives
from dotfilesctl.errors import ArchiveError, ConfirmationDeclined, DotfilesError
from dotfilesctl.models import UserAccount


def _archive_names(path: Path) -> list[str]:
    with tarfile.open(path, "r:gz") as tar:
        return sorted(member.name for member in tar.getmembers())


def _touch_archives(directory: Path, count: int) -> list[Path]:
    directory.mkdir(parents=True, exist_ok=True)
    paths = []
    for day in range(1, count + 1):
        path = directory / f"snapshot_202401{day:02d}_080000.tar.gz"
        path.write_bytes(b"")
        paths.append(path)
    return paths


@pytest.fixture
def store(tmp_path: Path) -> SnapshotStore:
    return SnapshotStore(tmp_path / "backups", [".bashrc", ".gitconfig", ".ssh/config"])


def test_parse_snapshot_time_accepts_both_formats() -> None:
    assert parse_snapshot_time("snapshot_20240501_123045.tar.gz") == datetime(2024, 5, 1, 12, 30, 45)
    assert parse_snapshot_time("backup-20240501-123045.tar.gz") == datetime(2024, 5, 1, 12, 30, 45)
    assert parse_snapshot_time("snapshot_20241301_000000.tar.gz") is None
    assert parse_snapshot_time("notes.txt") is None


def test_create_snapshot_archives_existing_candidates(store: SnapshotStore, account: UserAccount) -> None:
    (account.home / ".bashrc").write_text("export A=1\n")
    (account.home / ".ssh").mkdir()
    (account.home / ".ssh" / "config").write_text("Host *\n")

    snapshot = store.create(account, now=datetime(2024, 5, 1, 12, 30, 45))

    assert snapshot is not None
    assert snapshot.archive_path == store.user_dir("alice") / "snapshot_20240501_123045.tar.gz"
    assert snapshot.entries == (".bashrc", ".ssh/config")
    assert _archive_names(snapshot.archive_path) == [".bashrc", ".ssh/config"]


def test_create_snapshot_dereferences_symlinks(store: SnapshotStore, account: UserAccount, tmp_path: Path) -> None:
    real = tmp_path / "repo-gitconfig"
    real.write_text("[user]\n")
    (account.home / ".gitconfig").symlink_to(real)

    snapshot = store.create(account, now=datetime(2024, 5, 1, 12, 30, 45))

    assert snapshot is not None
    with tarfile.open(snapshot.archive_path, "r:gz") as tar:
        member = tar.getmember(".gitconfig")
        assert member.isfile()
        handle = tar.extractfile(member)
        assert handle is not None
        assert handle.read() == b"[user]\n"


def test_create_snapshot_with_nothing_to_back_up(store: SnapshotStore, account: UserAccount) -> None:
    snapshot = store.create(account, now=datetime(2024, 5, 1, 12, 30, 45))

    assert snapshot is None
    assert not store.user_dir("alice").exists()
    warnings = store.pull_warnings()
    assert any("Backup skipped" in message for message in warnings)


def test_create_snapshot_extra_candidates(store: SnapshotStore, account: UserAccount) -> None:
    (account.home / ".inputrc").write_text("set bell-style none\n")

    snapshot = store.create(account, now=datetime(2024, 5, 1, 12, 30, 45), extra_candidates=[".inputrc"])

    assert snapshot is not None
    assert snapshot.entries == (".inputrc",)


def test_create_snapshot_discards_partial_archive(
    store: SnapshotStore, account: UserAccount, monkeypatch: pytest.MonkeyPatch
) -> None:
    (account.home / ".bashrc").write_text("x\n")

    def broken_add(self, *_args, **_kwargs):  # noqa: ANN001
        raise OSError("disk full")

    monkeypatch.setattr(tarfile.TarFile, "add", broken_add)

    with pytest.raises(ArchiveError):
        store.create(account, now=datetime(2024, 5, 1, 12, 30, 45))

    assert list(store.user_dir("alice").iterdir()) == []


def test_create_snapshot_refuses_duplicate_timestamp(store: SnapshotStore, account: UserAccount) -> None:
    (account.home / ".bashrc").write_text("x\n")
    moment = datetime(2024, 5, 1, 12, 30, 45)
    store.create(account, now=moment)

    with pytest.raises(ArchiveError):
        store.create(account, now=moment)


def test_rotate_keeps_newest_five(tmp_path: Path) -> None:
    directory = tmp_path / "alice"
    archives = _touch_archives(directory, 8)
    (directory / "notes.txt").write_text("not an archive")

    deleted = rotate(directory, retention=5)

    assert deleted == 3
    assert sorted_archives(directory) == archives[3:]
    assert (directory / "notes.txt").exists()


def test_rotate_with_few_archives_deletes_nothing(tmp_path: Path) -> None:
    directory = tmp_path / "alice"
    archives = _touch_archives(directory, 5)

    assert rotate(directory, retention=5) == 0
    assert sorted_archives(directory) == archives


def test_rotate_missing_directory(tmp_path: Path) -> None:
    assert rotate(tmp_path / "nowhere") == 0


def test_rotate_orders_mixed_names_by_timestamp(tmp_path: Path) -> None:
    directory = tmp_path / "alice"
    directory.mkdir()
    older = directory / "snapshot_20230101_000000.tar.gz"
    newer = directory / "backup-20240101-000000.tar.gz"
    older.write_bytes(b"")
    newer.write_bytes(b"")

    assert rotate(directory, retention=1) == 1
    assert not older.exists()
    assert newer.exists()


def test_rotate_continues_after_failure(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    directory = tmp_path / "alice"
    archives = _touch_archives(directory, 8)
    original_unlink = Path.unlink

    def flaky_unlink(self: Path, *args, **kwargs) -> None:  # noqa: ANN002, ANN003
        if self == archives[0]:
            raise PermissionError("read-only")
        original_unlink(self, *args, **kwargs)

    monkeypatch.setattr(Path, "unlink", flaky_unlink)
    warnings: list[str] = []

    deleted = rotate(directory, retention=5, warnings=warnings)

    assert deleted == 2
    assert archives[0].exists()
    assert not archives[1].exists() and not archives[2].exists()
    assert len(warnings) == 1 and archives[0].name in warnings[0]


def test_list_snapshots_oldest_first(store: SnapshotStore) -> None:
    _touch_archives(store.user_dir("alice"), 3)

    listed = store.list_snapshots("alice")

    assert [snapshot.created_at.day for snapshot in listed] == [1, 2, 3]
    assert all(snapshot.owner == "alice" for snapshot in listed)


def test_restore_requires_confirmation(store: SnapshotStore, account: UserAccount) -> None:
    (account.home / ".bashrc").write_text("original\n")
    snapshot = store.create(account, now=datetime(2024, 5, 1, 12, 30, 45))
    assert snapshot is not None
    prompts: list[str] = []

    def decline(prompt: str) -> bool:
        prompts.append(prompt)
        return False

    with pytest.raises(ConfirmationDeclined):
        store.restore(account, snapshot.name, confirm=decline)

    assert prompts and snapshot.name in prompts[0]
    assert (account.home / ".bashrc").read_text() == "original\n"


def test_restore_renames_existing_files(store: SnapshotStore, account: UserAccount) -> None:
    bashrc = account.home / ".bashrc"
    bashrc.write_text("original\n")
    store.create(account, now=datetime(2024, 5, 1, 12, 30, 45))
    bashrc.write_text("changed\n")
    (account.home / ".bashrc.~1~").write_text("older backup\n")

    result = store.restore(account, "latest", confirm=lambda _prompt: True)

    assert result.restored == (".bashrc",)
    assert bashrc.read_text() == "original\n"
    assert (account.home / ".bashrc.~2~").read_text() == "changed\n"
    assert (account.home / ".bashrc.~1~").read_text() == "older backup\n"
    assert result.renamed == (account.home / ".bashrc.~2~",)


def test_restore_replaces_symlink_without_touching_target(
    store: SnapshotStore, account: UserAccount, tmp_path: Path
) -> None:
    bashrc = account.home / ".bashrc"
    bashrc.write_text("original\n")
    store.create(account, now=datetime(2024, 5, 1, 12, 30, 45))
    bashrc.unlink()
    repo_file = tmp_path / "repo-bashrc"
    repo_file.write_text("managed\n")
    bashrc.symlink_to(repo_file)

    store.restore(account, "snapshot_20240501_123045.tar.gz", confirm=lambda _prompt: True)

    assert not bashrc.is_symlink()
    assert bashrc.read_text() == "original\n"
    assert repo_file.read_text() == "managed\n"
    assert (account.home / ".bashrc.~1~").is_symlink()


def test_restore_skips_members_under_symlinked_directory(
    store: SnapshotStore, account: UserAccount, tmp_path: Path
) -> None:
    ssh = account.home / ".ssh"
    ssh.mkdir()
    (ssh / "config").write_text("Host saved\n")
    store.create(account, now=datetime(2024, 5, 1, 12, 30, 45))
    (ssh / "config").unlink()
    ssh.rmdir()
    outside = tmp_path / "outside"
    outside.mkdir()
    (outside / "config").write_text("Host live\n")
    ssh.symlink_to(outside)

    result = store.restore(account, "latest", confirm=lambda _prompt: True)

    assert result.skipped == (".ssh/config",)
    assert result.restored == ()
    assert sorted(path.name for path in outside.iterdir()) == ["config"]
    assert (outside / "config").read_text() == "Host live\n"


def test_restore_skips_unsafe_members(store: SnapshotStore, account: UserAccount, tmp_path: Path) -> None:
    directory = store.user_dir("alice")
    directory.mkdir(parents=True)
    payload = tmp_path / "payload"
    payload.write_text("evil\n")
    archive = directory / "backup-20240501-123045.tar.gz"
    with tarfile.open(archive, "w:gz") as tar:
        tar.add(payload, arcname="../escape")
        tar.add(payload, arcname=".profile")

    result = store.restore(account, archive.name, confirm=lambda _prompt: True)

    assert result.skipped == ("../escape",)
    assert result.restored == (".profile",)
    assert not (account.home.parent / "escape").exists()


def test_restore_unknown_snapshot(store: SnapshotStore, account: UserAccount) -> None:
    with pytest.raises(DotfilesError):
        store.restore(account, "snapshot_19990101_000000.tar.gz", confirm=lambda _prompt: True)
    with pytest.raises(DotfilesError):
        store.restore(account, "latest", confirm=lambda _prompt: True)
