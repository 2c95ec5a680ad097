from __future__ import annotations

import os
import pwd
from datetime import datetime
from pathlib import Path

import pytest

from dotfilesctl.config import Config, load_config
from dotfilesctl.manager import DotfilesManager
from dotfilesctl.models import UserAccount

FIXED_NOW = datetime(2024, 5, 1, 12, 30, 45)
FIXED_STAMP = "20240501_123045"


def passwd_entry(name: str, home: Path, *, uid: int | None = None, shell: str = "/bin/bash") -> pwd.struct_passwd:
    uid = os.getuid() if uid is None else uid
    return pwd.struct_passwd((name, "x", uid, os.getgid(), name.title(), str(home), shell))


@pytest.fixture
def fake_home(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Path:
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.setenv("USERPROFILE", str(home))
    return home


@pytest.fixture
def repo(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Path:
    root = tmp_path / "repo"
    (root / "home").mkdir(parents=True)
    monkeypatch.delenv("DF_REPO_ROOT", raising=False)
    return root


@pytest.fixture
def config(repo: Path) -> Config:
    return load_config(repo_root=repo)


@pytest.fixture
def manager(config: Config) -> DotfilesManager:
    return DotfilesManager(config, clock=lambda: FIXED_NOW)


@pytest.fixture
def account(fake_home: Path) -> UserAccount:
    return UserAccount(name="alice", home=fake_home)


@pytest.fixture
def known_user(monkeypatch: pytest.MonkeyPatch, fake_home: Path) -> str:
    """Make ``alice`` resolvable to ``fake_home`` and the default CLI user."""

    entries = {"alice": passwd_entry("alice", fake_home, uid=1000)}

    def getpwnam(name: str) -> pwd.struct_passwd:
        return entries[name]

    monkeypatch.setattr("dotfilesctl.users.pwd.getpwnam", getpwnam)
    monkeypatch.setattr("dotfilesctl.users.pwd.getpwall", lambda: list(entries.values()))
    monkeypatch.setattr("dotfilesctl.cli._default_user", lambda: "alice")
    return "alice"


@pytest.fixture
def make_passwd():
    return passwd_entry
