"""
Env Reconciler — Project vault credentials into a ``.env`` document and back.

The document is always handled as a whole: parsed into an ordered mapping,
changed in memory, serialised and atomically written back. Unrelated keys
survive every grant and revoke; comments and blank lines do not (the
document is re-rendered from the mapping).

Neither grant nor revoke touches the vault, so revoking is always safe and
re-granting restores what was revoked.

Security Note:
    Values written here are plaintext. Log names and paths only.
"""
import io
import os
import re
import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterable, Mapping
from pathlib import Path
from typing import Optional

from dotenv import dotenv_values

from .exceptions import EnvFileError
from .fileio import atomic_write
from .models import Credential, GrantResult, RevokeResult
from .paths import env_backup_path

logger = logging.getLogger("secretsage.env")

Resolver = Callable[[str], Awaitable[Optional[Credential]]]

# whitespace, either quote, backslash, '=' or '#' force double quotes
_NEEDS_QUOTES = re.compile(r"[\s\"'\\=#]")

_ESCAPES = {
    "\\": "\\\\",
    '"': '\\"',
    "\n": "\\n",
    "\r": "\\r",
}

# keys the env parser reads back unchanged
_ENV_KEY = re.compile(r"^[A-Za-z_][A-Za-z0-9_.-]*$")

_MAX_BACKUP_ATTEMPTS = 100


def quote_value(value: str) -> str:
    """Render *value* for the right-hand side of ``NAME=value``.

    Plain values are written bare; anything the env parser could misread is
    wrapped in double quotes with backslash, quote and line breaks escaped,
    so parsing the line back yields *value* exactly.
    """
    if not _NEEDS_QUOTES.search(value):
        return value
    escaped = "".join(_ESCAPES.get(ch, ch) for ch in value)
    return f'"{escaped}"'


def format_env(env: Mapping[str, str]) -> str:
    """Serialise *env* in insertion order; an empty mapping is an empty document."""
    if not env:
        return ""
    return "".join(f"{name}={quote_value(value)}\n" for name, value in env.items())


def is_env_key(name: str) -> bool:
    return bool(_ENV_KEY.match(name))


def parse_env(content: str) -> dict[str, str]:
    """Parse env document text; a ``KEY`` without value reads as ``""``."""
    parsed = dotenv_values(stream=io.StringIO(content), interpolate=False)
    return {key: (value if value is not None else "") for key, value in parsed.items()}


class EnvReconciler:
    """Grant and revoke credentials in one env document.

    Args:
        env_path: The document to manage, usually ``<project>/.env``.
    """

    def __init__(self, env_path: Path):
        self.env_path = Path(env_path)
        self._lock = asyncio.Lock()

    def __repr__(self) -> str:
        return f"<EnvReconciler {self.env_path}>"

    def exists(self) -> bool:
        return self.env_path.exists()

    def read(self) -> dict[str, str]:
        """Current mapping of the document; empty when it does not exist.

        Raises:
            EnvFileError: If the document is not valid UTF-8.
        """
        try:
            content = self.env_path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {}
        except UnicodeDecodeError as err:
            raise EnvFileError(
                f"{self.env_path} is not valid UTF-8", path=str(self.env_path),
            ) from err
        return parse_env(content)

    def _write(self, env: Mapping[str, str]) -> None:
        atomic_write(self.env_path, format_env(env).encode("utf-8"))

    def _backup(self) -> Path:
        """Copy the document verbatim next to itself (mode 0600).

        The name is claimed with an exclusive create, so two backups taken
        in the same microsecond still land in distinct files.
        """
        data = self.env_path.read_bytes()
        for attempt in range(_MAX_BACKUP_ATTEMPTS):
            target = env_backup_path(self.env_path, attempt=attempt)
            try:
                fd = os.open(target, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
            except FileExistsError:
                continue
            with os.fdopen(fd, "wb") as fh:
                fh.write(data)
                fh.flush()
                os.fsync(fh.fileno())
            return target
        raise FileExistsError(f"Could not claim a backup name for {self.env_path}")

    async def grant(
        self,
        names: Iterable[str],
        resolve: Resolver,
        backup: bool = True,
    ) -> GrantResult:
        """Write the value of every resolvable name into the document.

        Names that *resolve* returns ``None`` for, and names that are not
        valid env keys, are reported in ``skipped``. When at least one name
        is granted, an existing document is first backed up (if *backup*)
        and then rewritten in full.

        Args:
            names: Credential names to project.
            resolve: Async lookup returning the credential or ``None``.
            backup: Copy the current document before changing it.

        Raises:
            EnvFileError: If the existing document cannot be read.
        """
        result = GrantResult(env_path=self.env_path)
        invalid = []
        async with self._lock:
            env = await asyncio.to_thread(self.read)
            for name in dict.fromkeys(names):
                if not is_env_key(name):
                    invalid.append(name)
                    result.skipped.append(name)
                    continue
                credential = await resolve(name)
                if credential is None:
                    result.skipped.append(name)
                    continue
                env[name] = credential.value
                result.granted.append(name)

            if invalid:
                logger.warning("Not valid env keys, skipped: %s", ", ".join(invalid))
            if not result.granted:
                logger.debug("Nothing granted into %s", self.env_path)
                return result

            if backup and await asyncio.to_thread(self.exists):
                result.backup_path = await asyncio.to_thread(self._backup)
                logger.info("Backed up %s to %s", self.env_path, result.backup_path)
            await asyncio.to_thread(self._write, env)

        logger.info("Granted %s into %s", ", ".join(result.granted), self.env_path)
        absent = [name for name in result.skipped if name not in invalid]
        if absent:
            logger.warning("Not found, skipped: %s", ", ".join(absent))
        return result

    async def revoke(self, names: Iterable[str]) -> RevokeResult:
        """Remove *names* from the document, leaving every other key alone.

        A missing or empty document revokes nothing and is not an error.
        """
        result = RevokeResult(env_path=self.env_path)
        async with self._lock:
            env = await asyncio.to_thread(self.read)
            for name in dict.fromkeys(names):
                if name in env:
                    del env[name]
                    result.revoked.append(name)
                else:
                    result.skipped.append(name)
            if result.revoked:
                await asyncio.to_thread(self._write, env)

        if result.revoked:
            logger.info("Revoked %s from %s", ", ".join(result.revoked), self.env_path)
        return result
