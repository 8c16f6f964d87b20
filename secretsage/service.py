"""
Credential Service — the single entry point for command handlers.

The service decides which vault directory is active, builds the local vault
source on first use and composes the store, the source registry and the env
reconciler into the user-facing operations. There is no module-level
instance: callers construct a service with the working directory, home
directory and configuration they want, and hold on to it.

Active vault resolution (first match wins):
    1. ``<cwd>/.secretsage`` when it holds an identity
    2. the configured custom path (``vault.defaultLocation: custom``)
    3. ``<cwd>/.secretsage`` when configured as the default location
    4. ``~/.secretsage``

Security Note:
    Values only pass through here; log names, counts and paths, never values.
"""
from __future__ import annotations

import re
import asyncio
import logging
from collections.abc import Iterable, Mapping
from pathlib import Path
from typing import Any, Optional, Union

from .conf import CREDENTIAL_NAME_PATTERN, SECRETSAGE_DIRNAME
from .envfile import EnvReconciler, is_env_key
from .exceptions import (
    AlreadyInitialized,
    ConfigError,
    EnvFileError,
    MissingCredential,
    NotInitialized,
)
from .fileio import atomic_write
from .models import (
    Credential,
    CredentialMetadata,
    ExportResult,
    GrantResult,
    ImportResult,
    InitResult,
    RevokeResult,
    StatusReport,
    VaultLocation,
    VaultPresence,
)
from .paths import VaultPaths, env_path, expand_path, gitignore_path, global_dir, local_dir
from .sources import LocalVaultSource, SourceRegistry
from .vault.config import SageConfig, load_config
from .vault.crypto import EncryptionProvider
from .vault.store import VaultStore

logger = logging.getLogger("secretsage.service")

_NAME_RE = re.compile(CREDENTIAL_NAME_PATTERN)

GITIGNORE_HEADER = "# SecretSage"


def gitignore_entries() -> list[str]:
    return [".env", ".env.*", f"{SECRETSAGE_DIRNAME}/"]


def check_name(name: str) -> bool:
    """Warn when *name* does not follow the ENV convention; never rejects."""
    if _NAME_RE.match(name):
        return True
    logger.warning(
        "Credential name '%s' doesn't follow ENV convention (UPPER_SNAKE_CASE)", name,
    )
    return False


class CredentialService:
    """Composed credential operations for one project directory.

    Args:
        config: Settings to use; loaded from the config files on first use
            when omitted.
        cwd: Project directory (``.env``, ``.gitignore``, local vault).
        home: Home directory holding the global vault.
        provider: Encryption capability handed to the vault store.
        registry: Source registry; a fresh one is created when omitted.
    """

    def __init__(
        self,
        config: Optional[SageConfig] = None,
        *,
        cwd: Optional[Path] = None,
        home: Optional[Path] = None,
        provider: Optional[EncryptionProvider] = None,
        registry: Optional[SourceRegistry] = None,
    ):
        self.cwd = Path(cwd) if cwd is not None else Path.cwd()
        self.home = Path(home) if home is not None else Path.home()
        self.registry = registry if registry is not None else SourceRegistry()
        self.env = EnvReconciler(env_path(self.cwd))
        self._config = config
        self._provider = provider
        self._local_source: Optional[LocalVaultSource] = None
        self._initialized = False

    def __repr__(self) -> str:
        return f"<CredentialService cwd={self.cwd}>"

    @property
    def config(self) -> SageConfig:
        if self._config is None:
            self._config = load_config(cwd=self.cwd, home=self.home)
        return self._config

    @property
    def initialized(self) -> bool:
        return self._initialized

    @property
    def local_source(self) -> Optional[LocalVaultSource]:
        return self._local_source

    # ------------------------------------------------------------------
    # Vault location
    # ------------------------------------------------------------------

    def local_dir(self) -> Path:
        return local_dir(self.cwd)

    def global_dir(self) -> Path:
        return global_dir(self.home)

    def custom_dir(self) -> Optional[Path]:
        """Configured custom vault directory, if any."""
        vault = self.config.vault
        if vault.default_location is VaultLocation.CUSTOM and vault.custom_path:
            return expand_path(vault.custom_path, home=self.home, cwd=self.cwd)
        return None

    def resolve_location(self) -> tuple[Path, VaultLocation]:
        """Active vault directory and the kind of location it is."""
        local = self.local_dir()
        if VaultPaths(local).identity_file.exists():
            return local, VaultLocation.LOCAL
        custom = self.custom_dir()
        if custom is not None:
            return custom, VaultLocation.CUSTOM
        if self.config.vault.default_location is VaultLocation.LOCAL:
            return local, VaultLocation.LOCAL
        return self.global_dir(), VaultLocation.GLOBAL

    def vault_path(self) -> Path:
        return self.resolve_location()[0]

    def directory_for(
        self,
        location: Union[VaultLocation, str],
        custom_path: Optional[str] = None,
    ) -> Path:
        """Vault directory for an explicit *location*.

        Raises:
            ConfigError: If *location* is ``custom`` and no path is known.
        """
        location = VaultLocation(location)
        if location is VaultLocation.LOCAL:
            return self.local_dir()
        if location is VaultLocation.GLOBAL:
            return self.global_dir()
        path = custom_path or self.config.vault.custom_path
        if not path:
            raise ConfigError("A custom vault location needs a path")
        return expand_path(path, home=self.home, cwd=self.cwd)

    async def has_vault(self) -> VaultPresence:
        """Which vault directories currently hold an identity."""
        def probe(directory: Optional[Path]) -> bool:
            return directory is not None and VaultPaths(directory).identity_file.exists()

        local, global_, custom = await asyncio.gather(
            asyncio.to_thread(probe, self.local_dir()),
            asyncio.to_thread(probe, self.global_dir()),
            asyncio.to_thread(probe, self.custom_dir()),
        )
        return VaultPresence(local=local, global_=global_, custom=custom)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def _build_source(self, vault_dir: Path) -> LocalVaultSource:
        store = VaultStore(
            vault_dir,
            self._provider,
            lock_timeout=self.config.lock_timeout,
        )
        source = LocalVaultSource(store, priority=self.config.source_priority("local"))
        if self.config.source_enabled("local"):
            self.registry.register(source)
        else:
            logger.info("Local vault source disabled by configuration")
            self.registry.unregister(source.id)
        self._local_source = source
        return source

    async def init(self, local: Optional[bool] = None) -> None:
        """Construct and register the local vault source (once).

        Args:
            local: Force the project (True) or global (False) vault;
                ``None`` follows the active vault resolution.
        """
        if self._initialized:
            return
        if local is None:
            vault_dir = self.vault_path()
        else:
            vault_dir = self.local_dir() if local else self.global_dir()
        self._build_source(vault_dir)
        self._initialized = True
        logger.debug("Service initialized with vault %s", vault_dir)

    async def initialize_vault(
        self,
        location: Union[VaultLocation, str] = VaultLocation.GLOBAL,
        custom_path: Optional[str] = None,
        overwrite: bool = False,
    ) -> InitResult:
        """Create key material and an empty vault at *location*.

        Raises:
            AlreadyInitialized: If an identity exists there and *overwrite*
                is false.
        """
        location = VaultLocation(location)
        vault_dir = self.directory_for(location, custom_path)
        exists = await asyncio.to_thread(VaultPaths(vault_dir).identity_file.exists)
        if exists and not overwrite:
            raise AlreadyInitialized(
                f"A vault already exists at {vault_dir}", vault_dir=str(vault_dir),
            )
        source = self._build_source(vault_dir)
        public_key = await source.initialize()
        self._initialized = True
        return InitResult(public_key=public_key, vault_dir=vault_dir, location=location)

    async def ensure_vault(self) -> None:
        """Lazily initialize, then require at least one available source."""
        await self.init()
        if not await self.registry.available_sources():
            vault_dir = self._local_source.store.vault_dir if self._local_source else self.vault_path()
            raise NotInitialized(
                f"No vault found at {vault_dir}. Run 'secretsage init' first.",
                vault_dir=str(vault_dir),
            )

    def _require_local(self) -> LocalVaultSource:
        if self._local_source is None:
            raise NotInitialized("No local vault source configured")
        return self._local_source

    # ------------------------------------------------------------------
    # Credentials
    # ------------------------------------------------------------------

    async def add(
        self,
        name: str,
        value: str,
        *,
        description: Optional[str] = None,
        tags: Optional[Iterable[str]] = None,
        source_id: Optional[str] = None,
    ) -> CredentialMetadata:
        """Encrypt and store *value* under *name* (insert or replace)."""
        await self.ensure_vault()
        check_name(name)
        patch: dict[str, Any] = {}
        if description is not None:
            patch["description"] = description
        if tags is not None:
            patch["tags"] = list(tags)
        return await self.registry.set(name, value, source_id=source_id, metadata=patch)

    async def get(self, name: str) -> Optional[Credential]:
        await self.ensure_vault()
        return await self.registry.get(name)

    async def require(self, name: str) -> Credential:
        """Like :meth:`get` but an absent name is an error.

        Raises:
            MissingCredential: If no source holds *name*.
        """
        credential = await self.get(name)
        if credential is None:
            raise MissingCredential(f"Credential '{name}' not found", names=[name])
        return credential

    async def names(self) -> list[str]:
        return [meta.name for meta in await self.list()]

    async def missing(self, names: Iterable[str]) -> list[str]:
        """Names from *names* that no source holds, in request order."""
        stored = set(await self.names())
        return [name for name in dict.fromkeys(names) if name not in stored]

    async def rotate(self, name: str, value: str) -> CredentialMetadata:
        """Replace the value of an existing credential.

        Raises:
            MissingCredential: If *name* is not stored.
        """
        await self.ensure_vault()
        if await self.missing([name]):
            raise MissingCredential(f"Credential '{name}' not found", names=[name])
        metadata = await self.registry.set(name, value)
        logger.info("Rotated credential %s", name)
        return metadata

    async def delete(self, name: str) -> bool:
        await self.ensure_vault()
        return await self.registry.delete(name)

    async def remove(self, name: str) -> None:
        """Delete *name* from every writable source.

        Raises:
            MissingCredential: If no source held *name*.
        """
        if not await self.delete(name):
            raise MissingCredential(f"Credential '{name}' not found", names=[name])
        logger.info("Removed credential %s", name)

    async def list(self) -> list[CredentialMetadata]:
        await self.ensure_vault()
        return await self.registry.list()

    async def search(self, pattern: str) -> list[CredentialMetadata]:
        await self.ensure_vault()
        return await self.registry.search(pattern)

    async def get_all(self) -> ExportResult:
        """Decrypt every credential of the local vault (bulk export)."""
        await self.ensure_vault()
        return await self._require_local().get_all()

    async def export_encrypted(self) -> str:
        """The local vault file verbatim; values stay encrypted."""
        await self.ensure_vault()
        return await self._require_local().store.read_raw()

    async def import_credentials(
        self,
        items: Iterable[Mapping[str, Any]],
        merge: bool = False,
    ) -> ImportResult:
        """Store ``{"name", "value"}`` items.

        Existing names are overwritten only with *merge*; items without a
        name or with a non-string value are skipped.
        """
        await self.ensure_vault()
        existing = set(await self.names())
        result = ImportResult()
        for item in items:
            name = item.get("name") if isinstance(item, Mapping) else None
            value = item.get("value") if isinstance(item, Mapping) else None
            if not name or not isinstance(name, str) or not isinstance(value, str):
                logger.warning("Skipping invalid import item")
                result.skipped.append(str(name or ""))
                continue
            if name in existing and not merge:
                result.skipped.append(name)
                continue
            check_name(name)
            await self.registry.set(name, value)
            (result.updated if name in existing else result.added).append(name)
            existing.add(name)
        logger.info(
            "Imported credentials: %d added, %d updated, %d skipped",
            len(result.added), len(result.updated), len(result.skipped),
        )
        return result

    # ------------------------------------------------------------------
    # Env document
    # ------------------------------------------------------------------

    async def grant(
        self,
        names: Iterable[str],
        backup: Optional[bool] = None,
        strict: bool = False,
    ) -> GrantResult:
        """Write the named credentials into the project ``.env``.

        Args:
            names: Credentials to grant.
            backup: Back up an existing ``.env`` first; defaults to
                ``agent.backupEnvOnGrant``.
            strict: Fail before touching anything if a name is absent or
                is not a valid env key.

        Raises:
            MissingCredential: With *strict*, listing every absent name.
            EnvFileError: With *strict*, if a name is not a valid env key.
        """
        await self.ensure_vault()
        names = list(names)
        if strict:
            invalid = [name for name in names if not is_env_key(name)]
            if invalid:
                raise EnvFileError(
                    f"Not valid env keys: {', '.join(invalid)}",
                    path=str(self.env.env_path),
                )
            absent = await self.missing(names)
            if absent:
                raise MissingCredential(
                    f"Credentials not found: {', '.join(absent)}", names=absent,
                )
        if backup is None:
            backup = self.config.agent.backup_env_on_grant
        return await self.env.grant(names, self.registry.get, backup=backup)

    async def revoke(self, names: Iterable[str]) -> RevokeResult:
        """Remove names from the project ``.env``; never needs a vault."""
        return await self.env.revoke(names)

    async def granted(self) -> list[str]:
        """Stored credential names currently present in ``.env``."""
        env = await asyncio.to_thread(self.env.read)
        return [name for name in await self.names() if name in env]

    async def status(self) -> StatusReport:
        vault_dir, location = self.resolve_location()
        exists = await asyncio.to_thread(VaultPaths(vault_dir).identity_file.exists)
        report = StatusReport(
            vault_path=vault_dir,
            location=location if exists else None,
            exists=exists,
            env_path=self.env.env_path,
            env_exists=await asyncio.to_thread(self.env.exists),
        )
        if exists:
            await self.init()
            report.stored = len(await self.list())
            report.granted = await self.granted()
        return report

    # ------------------------------------------------------------------
    # .gitignore
    # ------------------------------------------------------------------

    def update_gitignore(self) -> list[str]:
        """Append the SecretSage entries missing from ``.gitignore``.

        Returns:
            The entries added; empty when all were already present.
        """
        path = gitignore_path(self.cwd)
        try:
            content = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            content = ""
        present = {line.strip() for line in content.splitlines()}
        additions = [entry for entry in gitignore_entries() if entry not in present]
        if not additions:
            return []
        head = content.rstrip()
        if head:
            head += "\n\n"
        body = head + GITIGNORE_HEADER + "\n" + "\n".join(additions) + "\n"
        atomic_write(path, body.encode("utf-8"), mode=None if content else 0o644)
        logger.info("Added %s to %s", ", ".join(additions), path)
        return additions
