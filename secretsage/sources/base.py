"""
Credential source interface.

A source is a pluggable credential backend. Every source can be read
(``get``/``list``/``search``); sources that also accept writes derive from
:class:`WritableSource`. Writability is part of the type so the registry can
check it before dispatching, instead of probing for optional methods.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Mapping
from typing import Any, Optional

from ..models import Credential, CredentialMetadata
from ..vault.store import name_matcher


class CredentialSource(ABC):
    """Read capability shared by all credential backends.

    Attributes:
        id: Source identifier (``local``, ``1password``...).
        name: Human readable name.
        priority: Resolution order; lower numbers win.
    """

    id: str = ""
    name: str = ""
    priority: int = 100

    def __repr__(self) -> str:
        return f"<{type(self).__name__} id={self.id!r} priority={self.priority}>"

    @property
    def writable(self) -> bool:
        return False

    @abstractmethod
    async def is_available(self) -> bool:
        """True when the backend is configured and reachable right now."""

    @abstractmethod
    async def get(self, name: str) -> Optional[Credential]:
        """Credential with its decrypted value, or ``None``."""

    @abstractmethod
    async def list(self) -> list[CredentialMetadata]:
        """Metadata of every credential; values are never touched."""

    async def search(self, pattern: str) -> list[CredentialMetadata]:
        matches = name_matcher(pattern)
        return [meta for meta in await self.list() if matches(meta.name)]


class WritableSource(CredentialSource):
    """A source that also stores and deletes credentials."""

    @property
    def writable(self) -> bool:
        return True

    @abstractmethod
    async def set(
        self,
        name: str,
        value: str,
        metadata: Optional[Mapping[str, Any]] = None,
    ) -> CredentialMetadata:
        """Store *value* under *name*."""

    @abstractmethod
    async def delete(self, name: str) -> bool:
        """Remove *name*; False when it was not present."""
