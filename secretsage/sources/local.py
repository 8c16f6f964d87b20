"""Local vault source: the built-in backend over a :class:`VaultStore`."""
from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Optional

from ..models import Credential, CredentialMetadata, ExportResult
from ..vault.store import VaultStore
from .base import WritableSource


class LocalVaultSource(WritableSource):
    """Credentials stored in an encrypted vault directory on this machine.

    Available once the vault identity exists, which can change between
    calls (e.g. right after ``initialize``).
    """

    id = "local"
    name = "Local Vault"

    def __init__(self, store: VaultStore, priority: int = 1):
        self.store = store
        self.priority = priority

    def __repr__(self) -> str:
        return f"<LocalVaultSource {self.store.vault_dir} priority={self.priority}>"

    async def is_available(self) -> bool:
        return await self.store.exists()

    async def initialize(self) -> str:
        return await self.store.initialize()

    async def get(self, name: str) -> Optional[Credential]:
        credential = await self.store.get(name)
        if credential is None:
            return None
        return credential.model_copy(update={"source": self.id})

    async def list(self) -> list[CredentialMetadata]:
        return await self.store.list()

    async def search(self, pattern: str) -> list[CredentialMetadata]:
        return await self.store.search(pattern)

    async def set(
        self,
        name: str,
        value: str,
        metadata: Optional[Mapping[str, Any]] = None,
    ) -> CredentialMetadata:
        return await self.store.set(name, value, metadata)

    async def delete(self, name: str) -> bool:
        return await self.store.delete(name)

    async def get_all(self) -> ExportResult:
        result = await self.store.get_all()
        result.credentials = [
            c.model_copy(update={"source": self.id}) for c in result.credentials
        ]
        return result
