"""Read-only in-memory source."""
from __future__ import annotations

from collections.abc import Mapping
from typing import Optional

from ..models import Credential, CredentialMetadata
from .base import CredentialSource


class StaticSource(CredentialSource):
    """Serves a fixed mapping of name to value.

    Useful for values a process already holds (CI-provided secrets, a
    decrypted export) that should take part in resolution without being
    written anywhere.
    """

    name = "Static values"

    def __init__(self, id: str, values: Mapping[str, str], priority: int = 50):
        self.id = id
        self.priority = priority
        self._values = dict(values)

    async def is_available(self) -> bool:
        return True

    async def get(self, name: str) -> Optional[Credential]:
        if name not in self._values:
            return None
        return Credential(
            name=name,
            value=self._values[name],
            source=self.id,
            metadata=CredentialMetadata(name=name),
        )

    async def list(self) -> list[CredentialMetadata]:
        return [CredentialMetadata(name=name) for name in self._values]
