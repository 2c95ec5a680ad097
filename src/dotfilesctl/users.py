"""Account database lookups used to find home directories."""

from __future__ import annotations

import pwd
from pathlib import Path

from .errors import UserNotFound
from .models import UserAccount

ROOT_HOME = Path("/root")
HOME_BASE = Path("/home")
MIN_HUMAN_UID = 1000
DISABLED_SHELL_MARKERS = ("nologin", "false")


def _account_from_entry(entry: pwd.struct_passwd) -> UserAccount:
    return UserAccount(
        name=entry.pw_name,
        home=Path(entry.pw_dir),
        uid=entry.pw_uid,
        gid=entry.pw_gid,
        shell=entry.pw_shell,
    )


def lookup_account(username: str) -> UserAccount | None:
    """Return the account database entry for ``username`` or ``None``."""

    try:
        entry = pwd.getpwnam(username)
    except KeyError:
        return None
    return _account_from_entry(entry)


def fallback_home(username: str) -> Path:
    """Conventional home path used when the database has no usable entry."""

    return ROOT_HOME if username == "root" else HOME_BASE / username


def resolve_account(username: str) -> UserAccount:
    """Resolve ``username`` to an account with an existing home directory.

    The account database is consulted first. If it has no entry, or its home
    directory does not exist, ``/root`` or ``/home/<username>`` is tried.
    """

    if not username:
        raise UserNotFound("A user name is required")

    account = lookup_account(username)
    if account is not None and str(account.home) and account.home.is_dir():
        return account

    home = fallback_home(username)
    if home.is_dir():
        if account is None:
            return UserAccount(name=username, home=home)
        return UserAccount(name=username, home=home, uid=account.uid, gid=account.gid, shell=account.shell)

    raise UserNotFound(f"Home directory not found for: {username}")


def resolve_home(username: str) -> Path:
    return resolve_account(username).home


def _is_human(uid: int, shell: str) -> bool:
    if uid != 0 and uid < MIN_HUMAN_UID:
        return False
    return not any(marker in shell for marker in DISABLED_SHELL_MARKERS)


def is_real_user(username: str) -> bool:
    """Return ``True`` for root or UID >= 1000 accounts with a login shell."""

    account = lookup_account(username)
    if account is None or account.uid is None:
        return False
    return _is_human(account.uid, account.shell or "")


def list_real_users() -> list[str]:
    """Sorted, de-duplicated names of every real user in the database."""

    names = {entry.pw_name for entry in pwd.getpwall() if _is_human(entry.pw_uid, entry.pw_shell)}
    return sorted(names)
