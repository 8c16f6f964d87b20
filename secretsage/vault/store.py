"""
VaultStore — Encrypted credential records backed by one vault directory.

Provides the public API for a single vault:
- ``initialize()`` — generate key material and an empty record list
- ``set(name, value, metadata)`` — encrypt and upsert a record
- ``get(name)`` — decrypt one record (``None`` when absent)
- ``delete(name)`` — remove a record (idempotent)
- ``list()`` / ``search(pattern)`` — metadata only, identity never loaded
- ``get_all()`` — decrypt everything for bulk export

Every mutation is a full read-modify-write of ``vault.json`` under an
in-process ``asyncio.Lock`` and a cross-process advisory file lock, and the
file is replaced atomically, so an interrupted write leaves the previous
records intact.

Security Note:
    Never log plaintext or ciphertext values. Only log credential names,
    operations and vault paths. ``get_all()`` results are maximally
    sensitive.
"""
from __future__ import annotations

import re
import asyncio
import fnmatch
import logging
from collections.abc import Callable, Mapping
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Optional

import orjson
from pydantic import TypeAdapter, ValidationError

from ..conf import DEFAULT_LOCK_TIMEOUT
from ..exceptions import CorruptVault, DecryptionFailed, NotInitialized
from ..fileio import atomic_write
from ..models import Credential, CredentialMetadata, ExportResult, VaultEntry
from ..paths import VaultPaths
from .crypto import EncryptionProvider, X25519Provider
from .locking import VaultFileLock

logger = logging.getLogger("secretsage.vault")

_ENTRIES = TypeAdapter(list[VaultEntry])

# Metadata keys a caller may patch; name and timestamps are owned by the store.
_PATCHABLE = frozenset({"description", "tags"})


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def name_matcher(pattern: str) -> Callable[[str], bool]:
    """Case-insensitive matcher for credential names.

    *pattern* is a regular expression searched anywhere in the name; a
    pattern that does not compile is treated as a shell glob instead
    (``OPENAI_*``).
    """
    try:
        regex = re.compile(pattern, re.IGNORECASE)
    except re.error:
        glob = re.compile(fnmatch.translate(pattern), re.IGNORECASE)
        return lambda name: glob.match(name) is not None
    return lambda name: regex.search(name) is not None


class VaultStore:
    """Durable, encrypted-at-rest CRUD over the records of one vault.

    Args:
        vault_dir: Directory holding ``vault.json``, ``identity.txt`` and
            ``recipient.txt``.
        provider: Encryption capability; defaults to :class:`X25519Provider`.
        lock_timeout: Seconds to wait for the cross-process vault lock.
    """

    def __init__(
        self,
        vault_dir: Path,
        provider: Optional[EncryptionProvider] = None,
        *,
        lock_timeout: float = DEFAULT_LOCK_TIMEOUT,
    ):
        self.paths = VaultPaths(Path(vault_dir))
        self._provider = provider or X25519Provider()
        self._lock_timeout = lock_timeout
        self._write_lock = asyncio.Lock()
        self._identity: Optional[str] = None

    def __repr__(self) -> str:
        return f"<VaultStore {self.paths.root}>"

    @property
    def vault_dir(self) -> Path:
        return self.paths.root

    # ------------------------------------------------------------------
    # Record file helpers (blocking; run via asyncio.to_thread)
    # ------------------------------------------------------------------

    def _file_lock(self) -> VaultFileLock:
        return VaultFileLock(self.paths.lock_file, timeout=self._lock_timeout)

    def _load_entries(self) -> list[VaultEntry]:
        """Read and validate the record list.

        A missing file is an empty vault. A file that exists but does not
        hold a list of records with unique names is corrupt.

        Raises:
            CorruptVault: If the file content is not a valid record list.
            OSError: Any other read failure.
        """
        path = self.paths.vault_file
        try:
            raw = path.read_bytes()
        except FileNotFoundError:
            return []
        try:
            entries = _ENTRIES.validate_python(orjson.loads(raw))
        except orjson.JSONDecodeError as err:
            raise CorruptVault(
                f"Vault file {path} is not valid JSON: {err}", path=str(path),
            ) from err
        except ValidationError as err:
            raise CorruptVault(
                f"Vault file {path} is not a valid record list "
                f"({err.error_count()} invalid field(s))",
                path=str(path),
            ) from err
        seen: set[str] = set()
        for entry in entries:
            if entry.name in seen:
                raise CorruptVault(
                    f"Vault file {path} holds duplicate records for '{entry.name}'",
                    path=str(path),
                )
            seen.add(entry.name)
        return entries

    def _write_entries(self, entries: list[VaultEntry]) -> None:
        payload = [
            entry.model_dump(mode="json", by_alias=True, exclude_none=True)
            for entry in entries
        ]
        atomic_write(
            self.paths.vault_file,
            orjson.dumps(payload, option=orjson.OPT_INDENT_2),
            mode=0o600,
        )

    async def _read(self) -> list[VaultEntry]:
        return await asyncio.to_thread(self._load_entries)

    async def _load_identity(self) -> str:
        if self._identity is None:
            self._identity = await asyncio.to_thread(
                self._provider.load_identity, self.paths.identity_file,
            )
        return self._identity

    def _decrypt(self, entry: VaultEntry, identity: str) -> Credential:
        try:
            value = self._provider.decrypt(entry.encrypted_value, identity)
        except DecryptionFailed as err:
            raise DecryptionFailed(
                f"Cannot decrypt credential '{entry.name}' in {self.paths.root}: {err}",
                name=entry.name,
            ) from err
        return Credential(
            name=entry.name,
            value=value,
            source="local",
            metadata=entry.describe(),
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def exists(self) -> bool:
        """True when the identity file is present."""
        return await asyncio.to_thread(self.paths.identity_file.exists)

    async def initialize(self) -> str:
        """Generate a key pair and write an empty record list.

        Overwrites whatever key material is present; refusing to overwrite an
        existing vault is the caller's decision.

        Returns:
            The new recipient (public key).
        """
        async with self._write_lock:
            recipient = await asyncio.to_thread(self._initialize)
        logger.info("Vault initialized at %s", self.paths.root)
        return recipient

    def _initialize(self) -> str:
        pair = self._provider.generate_key_pair()
        with self._file_lock():
            # identity goes last: its presence marks the vault as initialized
            self._write_entries([])
            self._provider.save_recipient(pair.public_key, self.paths.recipient_file)
            self._provider.save_identity(pair.private_key, self.paths.identity_file)
        self._identity = None
        return pair.public_key

    async def public_key(self) -> str:
        return await asyncio.to_thread(
            self._provider.load_recipient, self.paths.recipient_file,
        )

    async def read_raw(self) -> str:
        """Return the encrypted record file verbatim (for encrypted export)."""
        path = self.paths.vault_file
        try:
            return await asyncio.to_thread(path.read_text, encoding="utf-8")
        except FileNotFoundError as err:
            raise NotInitialized(
                f"No vault file at {path}", vault_dir=str(self.paths.root),
            ) from err

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def get(self, name: str) -> Optional[Credential]:
        """Decrypt and return a credential, or ``None`` if it is absent.

        Raises:
            CorruptVault: If the vault file is invalid.
            DecryptionFailed: If the record cannot be decrypted.
            KeyMaterialError: If the identity file is missing.
        """
        entries = await self._read()
        entry = next((e for e in entries if e.name == name), None)
        if entry is None:
            return None
        identity = await self._load_identity()
        return self._decrypt(entry, identity)

    async def list(self) -> list[CredentialMetadata]:
        """Metadata of every record, in file order. No decryption."""
        return [entry.describe() for entry in await self._read()]

    async def search(self, pattern: str) -> list[CredentialMetadata]:
        """Metadata of records whose name matches *pattern* (case-insensitive)."""
        matches = name_matcher(pattern)
        return [entry.describe() for entry in await self._read() if matches(entry.name)]

    async def set(
        self,
        name: str,
        value: str,
        metadata: Optional[Mapping[str, Any]] = None,
    ) -> CredentialMetadata:
        """Encrypt *value* and insert or replace the record for *name*.

        ``createdAt`` of an existing record is preserved, ``updatedAt`` always
        moves forward. ``description`` and ``tags`` are kept unless
        *metadata* supplies them.

        Args:
            name: Credential name.
            value: Plaintext value.
            metadata: Optional patch with ``description`` and/or ``tags``.

        Returns:
            Metadata of the stored record.
        """
        async with self._write_lock:
            record = await asyncio.to_thread(self._upsert, name, value, dict(metadata or {}))
        logger.debug("Vault set: name=%s vault=%s", name, self.paths.root)
        return record

    def _upsert(self, name: str, value: str, patch: dict[str, Any]) -> CredentialMetadata:
        recipient = self._provider.load_recipient(self.paths.recipient_file)
        encrypted = self._provider.encrypt(value, recipient)
        with self._file_lock():
            entries = self._load_entries()
            index = next((i for i, e in enumerate(entries) if e.name == name), None)
            previous = entries[index].describe() if index is not None else None
            metadata = _merge_metadata(name, previous, patch, _utcnow())
            entry = VaultEntry(name=name, encrypted_value=encrypted, metadata=metadata)
            if index is None:
                entries.append(entry)
            else:
                entries[index] = entry
            self._write_entries(entries)
        return metadata

    async def delete(self, name: str) -> bool:
        """Remove the record for *name*.

        Returns:
            True if a record was removed, False if there was none.
        """
        async with self._write_lock:
            removed = await asyncio.to_thread(self._remove, name)
        if removed:
            logger.debug("Vault delete: name=%s vault=%s", name, self.paths.root)
        return removed

    def _remove(self, name: str) -> bool:
        with self._file_lock():
            entries = self._load_entries()
            kept = [e for e in entries if e.name != name]
            if len(kept) == len(entries):
                return False
            self._write_entries(kept)
        return True

    async def get_all(self) -> ExportResult:
        """Decrypt every record.

        A record that fails to decrypt is reported in ``failures`` and does
        not stop the others from being decrypted.
        """
        entries = await self._read()
        result = ExportResult()
        if not entries:
            return result
        identity = await self._load_identity()
        for entry in entries:
            try:
                result.credentials.append(self._decrypt(entry, identity))
            except DecryptionFailed as err:
                logger.error("Failed to decrypt credential name=%s: %s", entry.name, err)
                result.failures[entry.name] = str(err)
        logger.info(
            "Vault export from %s: %d decrypted, %d failed",
            self.paths.root, len(result.credentials), len(result.failures),
        )
        return result


def _merge_metadata(
    name: str,
    previous: Optional[CredentialMetadata],
    patch: dict[str, Any],
    now: datetime,
) -> CredentialMetadata:
    ignored = set(patch) - _PATCHABLE
    if ignored:
        logger.debug("Ignoring non-patchable metadata keys %s for %s", sorted(ignored), name)

    created = previous.created_at if previous and previous.created_at else now
    updated = now
    if previous and previous.updated_at and updated <= previous.updated_at:
        updated = previous.updated_at + timedelta(microseconds=1)

    description = previous.description if previous else None
    tags = previous.tags if previous else None
    if "description" in patch:
        description = patch["description"]
    if "tags" in patch:
        tags = list(patch["tags"]) if patch["tags"] is not None else None

    return CredentialMetadata(
        name=name,
        created_at=created,
        updated_at=updated,
        description=description,
        tags=tags,
    )
