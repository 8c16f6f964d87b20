"""Filesystem layout of vault directories and project files."""
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from .conf import (
    SECRETSAGE_DIRNAME,
    VAULT_FILENAME,
    IDENTITY_FILENAME,
    RECIPIENT_FILENAME,
    LOCK_FILENAME,
    CONFIG_FILENAME,
    ENV_FILENAME,
    GITIGNORE_FILENAME,
)


@dataclass(frozen=True)
class VaultPaths:
    """Files that make up one vault directory."""

    root: Path

    @property
    def vault_file(self) -> Path:
        return self.root / VAULT_FILENAME

    @property
    def identity_file(self) -> Path:
        return self.root / IDENTITY_FILENAME

    @property
    def recipient_file(self) -> Path:
        return self.root / RECIPIENT_FILENAME

    @property
    def lock_file(self) -> Path:
        return self.root / LOCK_FILENAME

    @property
    def config_file(self) -> Path:
        return self.root / CONFIG_FILENAME


def home_dir(home: Optional[Path] = None) -> Path:
    return Path(home) if home is not None else Path.home()


def global_dir(home: Optional[Path] = None) -> Path:
    """Shared per-user vault directory (``~/.secretsage``)."""
    return home_dir(home) / SECRETSAGE_DIRNAME


def local_dir(cwd: Optional[Path] = None) -> Path:
    """Project vault directory (``./.secretsage``)."""
    return (Path(cwd) if cwd is not None else Path.cwd()) / SECRETSAGE_DIRNAME


def expand_path(path: str, home: Optional[Path] = None, cwd: Optional[Path] = None) -> Path:
    """Expand a leading ``~`` and make the path absolute."""
    if path.startswith("~"):
        return home_dir(home) / path[1:].lstrip("/\\")
    candidate = Path(path)
    if not candidate.is_absolute():
        candidate = (Path(cwd) if cwd is not None else Path.cwd()) / candidate
    return candidate.resolve()


def env_path(cwd: Optional[Path] = None) -> Path:
    return (Path(cwd) if cwd is not None else Path.cwd()) / ENV_FILENAME


def gitignore_path(cwd: Optional[Path] = None) -> Path:
    return (Path(cwd) if cwd is not None else Path.cwd()) / GITIGNORE_FILENAME


def env_backup_path(env_file: Path, now: Optional[datetime] = None, attempt: int = 0) -> Path:
    """Timestamped backup name next to *env_file*.

    The timestamp carries microseconds; callers that find the name taken
    retry with an increasing *attempt*, which is appended as a suffix.
    """
    now = now or datetime.now(timezone.utc)
    stamp = now.strftime("%Y-%m-%dT%H-%M-%S-%fZ")
    suffix = f"-{attempt}" if attempt else ""
    return env_file.with_name(f"{env_file.name}.backup.{stamp}{suffix}")
