"""TOML configuration loading for dotfilesctl."""

from __future__ import annotations

import os
import tomllib
from pathlib import Path
from typing import Any, Mapping

import tomli_w
from pydantic import BaseModel, ConfigDict, Field, field_validator

from ._version import __version__

DEFAULT_CONFIG_FILENAME = "dotfilesctl.toml"
DEFAULT_REPO_ROOT = Path("/opt/dotfiles")
REPO_ROOT_ENV = "DF_REPO_ROOT"

DEFAULT_BACKUP_CANDIDATES: tuple[str, ...] = (
    ".bashrc",
    ".profile",
    ".bash_profile",
    ".vimrc",
    ".gitconfig",
    ".tmux.conf",
    ".ssh/config",
    ".bashaliases",
    ".bashenv",
    ".bashprompt",
    ".bashfunctions",
    ".bashwartung",
    ".dircolors",
    ".nanorc",
)


class ConfigError(RuntimeError):
    """Raised when a configuration file cannot be parsed or validated."""


def _expand_path(raw: str | os.PathLike[str] | Path, *, base_dir: Path) -> Path:
    """Return an absolute ``Path`` by expanding env vars and user segments."""

    text = str(raw)
    expanded = Path(os.path.expandvars(text)).expanduser()
    if expanded.is_absolute():
        return expanded.resolve(strict=False)
    return (base_dir / expanded).resolve(strict=False)


class Settings(BaseModel):
    """Options read from the ``[settings]`` table."""

    model_config = ConfigDict(frozen=True)

    managed_dir: Path = Path("home")
    backup_dir: Path = Path("_backups")
    retention: int = Field(default=5, ge=1)
    backup_candidates: tuple[str, ...] = DEFAULT_BACKUP_CANDIDATES
    include_managed_in_backup: bool = True

    @field_validator("backup_candidates")
    @classmethod
    def _relative_candidates(cls, value: tuple[str, ...]) -> tuple[str, ...]:
        for candidate in value:
            path = Path(candidate)
            if path.is_absolute():
                raise ValueError(f"backup candidate '{candidate}' must be relative to the home directory")
            if ".." in path.parts:
                raise ValueError(f"backup candidate '{candidate}' must not escape the home directory")
        return value

    @classmethod
    def from_raw(cls, raw: Mapping[str, Any], *, base_dir: Path) -> "Settings":
        try:
            settings = cls(**dict(raw))
        except ValueError as exc:
            raise ConfigError(f"Invalid [settings] table: {exc}") from exc
        return settings.resolved(base_dir)

    def resolved(self, base_dir: Path) -> "Settings":
        """Return a copy whose directories are absolute under ``base_dir``."""

        return self.model_copy(
            update={
                "managed_dir": _expand_path(self.managed_dir, base_dir=base_dir),
                "backup_dir": _expand_path(self.backup_dir, base_dir=base_dir),
            }
        )


class Config(BaseModel):
    """Process-wide configuration constructed once at startup."""

    model_config = ConfigDict(frozen=True)

    repo_root: Path
    config_path: Path | None = None
    version: str = __version__
    settings: Settings

    @property
    def managed_dir(self) -> Path:
        return self.settings.managed_dir

    @property
    def backup_root(self) -> Path:
        return self.settings.backup_dir


def resolve_repo_root(repo_root: Path | str | None = None) -> Path:
    """Pick the repository root from the argument, ``$DF_REPO_ROOT`` or the default."""

    if repo_root is None:
        repo_root = os.environ.get(REPO_ROOT_ENV) or DEFAULT_REPO_ROOT
    return _expand_path(repo_root, base_dir=Path.cwd())


def load_config(path: Path | None = None, *, repo_root: Path | str | None = None) -> Config:
    """Load the configuration for a repository.

    Args:
        path: Optional TOML file (or directory containing one). When omitted, a
            ``dotfilesctl.toml`` in the repository root is used if present and
            defaults apply otherwise.
        repo_root: Repository root. Falls back to ``$DF_REPO_ROOT`` and then
            ``/opt/dotfiles``.
    """

    root = resolve_repo_root(repo_root)
    config_path = _resolve_config_path(path, root)

    if config_path is None:
        return Config(repo_root=root, settings=Settings().resolved(root))

    try:
        with config_path.open("rb") as handle:
            data = tomllib.load(handle)
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"Configuration file '{config_path}' is not valid TOML: {exc}") from exc

    raw_settings = data.get("settings", {})
    if not isinstance(raw_settings, Mapping):
        raise ConfigError(f"Configuration file '{config_path}': [settings] must be a table")
    settings = Settings.from_raw(raw_settings, base_dir=root)
    return Config(repo_root=root, config_path=config_path, settings=settings)


def render_default_config(settings: Settings | None = None) -> str:
    """Return the text of a starter ``dotfilesctl.toml``."""

    settings = settings or Settings()
    data = {
        "settings": {
            "managed_dir": settings.managed_dir.as_posix(),
            "backup_dir": settings.backup_dir.as_posix(),
            "retention": settings.retention,
            "include_managed_in_backup": settings.include_managed_in_backup,
            "backup_candidates": list(settings.backup_candidates),
        }
    }
    return "# dotfilesctl configuration\n\n" + tomli_w.dumps(data)


def _resolve_config_path(path: Path | None, repo_root: Path) -> Path | None:
    if path is None:
        candidate = repo_root / DEFAULT_CONFIG_FILENAME
        return candidate if candidate.is_file() else None

    path = Path(path)
    if not path.exists():
        raise ConfigError(f"Configuration file '{path}' does not exist")
    if path.is_dir():
        candidate = path / DEFAULT_CONFIG_FILENAME
        if not candidate.exists():
            raise ConfigError(f"Expected to find '{DEFAULT_CONFIG_FILENAME}' inside '{path}', but none was located")
        path = candidate

    return path.resolve(strict=False)
