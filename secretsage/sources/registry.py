"""
Credential Source Registry — priority-ordered resolution across backends.

Sources are resolved in ascending ``priority`` (lowest number first); sources
with equal priority keep registration order. Availability is probed on every
call because it can change between calls (a vault initialized mid-run).

Resolution policies:
- ``get``: first available source holding the name wins; no merging.
- ``list``/``search``: union de-duplicated by name, first-seen wins.
- ``set``: the named source, or the first available writable source.
- ``delete``: the named source, or *every* available writable source, so no
  stale copy survives in a lower-priority backend.
"""
from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any, Optional

from ..exceptions import NoWritableSource, ReadOnlySource, UnknownSource
from ..models import Credential, CredentialMetadata
from .base import CredentialSource, WritableSource

logger = logging.getLogger("secretsage.sources")


class SourceRegistry:
    """Ordered, in-memory collection of credential sources."""

    def __init__(self) -> None:
        self._sources: dict[str, CredentialSource] = {}

    def __contains__(self, source_id: object) -> bool:
        return source_id in self._sources

    def __len__(self) -> int:
        return len(self._sources)

    def register(self, source: CredentialSource) -> None:
        """Add *source*, replacing any source registered under the same id."""
        if source.id in self._sources:
            logger.debug("Replacing registered source %s", source.id)
            # re-insert so a replacement takes its own registration position
            del self._sources[source.id]
        self._sources[source.id] = source

    def unregister(self, source_id: str) -> None:
        self._sources.pop(source_id, None)

    def get_source(self, source_id: str) -> Optional[CredentialSource]:
        return self._sources.get(source_id)

    def all_sources(self) -> list[CredentialSource]:
        return list(self._sources.values())

    async def available_sources(self) -> list[CredentialSource]:
        """Registered sources whose availability probe passes, by priority."""
        available = [s for s in self._sources.values() if await s.is_available()]
        return sorted(available, key=lambda s: s.priority)

    def _writable(self, source_id: str) -> WritableSource:
        source = self._sources.get(source_id)
        if source is None:
            raise UnknownSource(f"Source '{source_id}' not found", source_id=source_id)
        if not isinstance(source, WritableSource):
            raise ReadOnlySource(f"Source '{source_id}' is read-only", source_id=source_id)
        return source

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    async def get(self, name: str) -> Optional[Credential]:
        for source in await self.available_sources():
            credential = await source.get(name)
            if credential is not None:
                return credential
        return None

    async def list(self) -> list[CredentialMetadata]:
        seen: set[str] = set()
        result: list[CredentialMetadata] = []
        for source in await self.available_sources():
            for meta in await source.list():
                if meta.name not in seen:
                    seen.add(meta.name)
                    result.append(meta)
        return result

    async def search(self, pattern: str) -> list[CredentialMetadata]:
        seen: set[str] = set()
        result: list[CredentialMetadata] = []
        for source in await self.available_sources():
            for meta in await source.search(pattern):
                if meta.name not in seen:
                    seen.add(meta.name)
                    result.append(meta)
        return result

    async def set(
        self,
        name: str,
        value: str,
        source_id: Optional[str] = None,
        metadata: Optional[Mapping[str, Any]] = None,
    ) -> CredentialMetadata:
        """Store a credential in *source_id* or the first writable source.

        Raises:
            UnknownSource: *source_id* is not registered.
            ReadOnlySource: *source_id* does not accept writes.
            NoWritableSource: No available source accepts writes.
        """
        if source_id is not None:
            target = self._writable(source_id)
        else:
            target = next(
                (s for s in await self.available_sources() if isinstance(s, WritableSource)),
                None,
            )
            if target is None:
                raise NoWritableSource("No writable credential source available")
        logger.debug("Routing set of %s to source %s", name, target.id)
        return await target.set(name, value, metadata)

    async def delete(self, name: str, source_id: Optional[str] = None) -> bool:
        """Delete *name* from *source_id*, or from every writable source.

        Returns:
            True if at least one source removed the credential.
        """
        if source_id is not None:
            return await self._writable(source_id).delete(name)
        deleted = False
        for source in await self.available_sources():
            if isinstance(source, WritableSource):
                removed = await source.delete(name)
                if removed:
                    logger.debug("Deleted %s from source %s", name, source.id)
                deleted = deleted or removed
        return deleted
