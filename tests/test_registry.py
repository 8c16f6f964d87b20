"""
Tests for SourceRegistry.

Tests cover:
- Priority ordering and availability probing
- First-match-wins get, first-seen-wins list/search
- Write routing and its errors
- Best-effort delete across writable sources
"""
from typing import Optional

import pytest

from secretsage.exceptions import NoWritableSource, ReadOnlySource, UnknownSource
from secretsage.models import Credential, CredentialMetadata
from secretsage.sources import LocalVaultSource, SourceRegistry, StaticSource, WritableSource


class MemorySource(WritableSource):
    """Writable in-memory backend with a switchable availability probe."""

    def __init__(self, id: str, priority: int, values: Optional[dict] = None):
        self.id = id
        self.name = id
        self.priority = priority
        self.values = dict(values or {})
        self.available = True

    async def is_available(self) -> bool:
        return self.available

    async def get(self, name):
        if name not in self.values:
            return None
        return Credential(name=name, value=self.values[name], source=self.id)

    async def list(self):
        return [CredentialMetadata(name=name) for name in self.values]

    async def set(self, name, value, metadata=None):
        self.values[name] = value
        return CredentialMetadata(name=name)

    async def delete(self, name):
        return self.values.pop(name, None) is not None


@pytest.fixture
def registry():
    return SourceRegistry()


class TestRegistration:
    """Tests for register/unregister and ordering."""

    @pytest.mark.asyncio
    async def test_available_sources_sorted_by_priority(self, registry):
        low = MemorySource("low", 10)
        high = MemorySource("high", 1)
        registry.register(low)
        registry.register(high)
        assert [s.id for s in await registry.available_sources()] == ["high", "low"]

    @pytest.mark.asyncio
    async def test_equal_priority_keeps_registration_order(self, registry):
        registry.register(MemorySource("first", 5))
        registry.register(MemorySource("second", 5))
        assert [s.id for s in await registry.available_sources()] == ["first", "second"]

    @pytest.mark.asyncio
    async def test_availability_recomputed_every_call(self, registry):
        source = MemorySource("mem", 1)
        source.available = False
        registry.register(source)
        assert await registry.available_sources() == []
        source.available = True
        assert await registry.available_sources() == [source]

    def test_unregister(self, registry):
        registry.register(MemorySource("mem", 1))
        registry.unregister("mem")
        registry.unregister("never-registered")
        assert registry.get_source("mem") is None
        assert len(registry) == 0

    def test_register_replaces_same_id(self, registry):
        registry.register(MemorySource("mem", 1))
        replacement = MemorySource("mem", 2)
        registry.register(replacement)
        assert registry.all_sources() == [replacement]


class TestResolution:
    """Tests for get/list/search."""

    @pytest.mark.asyncio
    async def test_get_prefers_lower_priority_number(self, registry):
        registry.register(StaticSource("backup", {"TOKEN": "from-backup"}, priority=20))
        registry.register(StaticSource("primary", {"TOKEN": "from-primary"}, priority=1))
        credential = await registry.get("TOKEN")
        assert credential.value == "from-primary"
        assert credential.source == "primary"

    @pytest.mark.asyncio
    async def test_get_falls_through_to_next_source(self, registry):
        registry.register(StaticSource("primary", {"A": "1"}, priority=1))
        registry.register(StaticSource("backup", {"B": "2"}, priority=2))
        assert (await registry.get("B")).value == "2"
        assert await registry.get("C") is None

    @pytest.mark.asyncio
    async def test_get_skips_unavailable(self, registry):
        primary = MemorySource("primary", 1, {"TOKEN": "hidden"})
        primary.available = False
        registry.register(primary)
        registry.register(StaticSource("backup", {"TOKEN": "shown"}, priority=5))
        assert (await registry.get("TOKEN")).value == "shown"

    @pytest.mark.asyncio
    async def test_list_deduplicates_first_seen(self, registry):
        registry.register(StaticSource("backup", {"TOKEN": "x", "OTHER": "y"}, priority=20))
        registry.register(StaticSource("primary", {"TOKEN": "z", "MINE": "w"}, priority=1))
        names = [m.name for m in await registry.list()]
        assert names == ["TOKEN", "MINE", "OTHER"]

    @pytest.mark.asyncio
    async def test_search_unions_sources(self, registry):
        registry.register(StaticSource("a", {"OPENAI_API_KEY": "1"}, priority=1))
        registry.register(StaticSource("b", {"ANTHROPIC_API_KEY": "2", "GITHUB_TOKEN": "3"}, priority=2))
        names = [m.name for m in await registry.search("api_key")]
        assert names == ["OPENAI_API_KEY", "ANTHROPIC_API_KEY"]

    @pytest.mark.asyncio
    async def test_empty_registry(self, registry):
        assert await registry.get("A") is None
        assert await registry.list() == []


class TestWriteRouting:
    """Tests for set/delete routing."""

    @pytest.mark.asyncio
    async def test_set_goes_to_first_writable(self, registry):
        registry.register(StaticSource("static", {}, priority=1))
        mem = MemorySource("mem", 5)
        registry.register(mem)
        await registry.set("TOKEN", "v")
        assert mem.values == {"TOKEN": "v"}

    @pytest.mark.asyncio
    async def test_set_named_source(self, registry):
        first = MemorySource("first", 1)
        second = MemorySource("second", 2)
        registry.register(first)
        registry.register(second)
        await registry.set("TOKEN", "v", source_id="second")
        assert first.values == {}
        assert second.values == {"TOKEN": "v"}

    @pytest.mark.asyncio
    async def test_set_unknown_source(self, registry):
        with pytest.raises(UnknownSource) as exc:
            await registry.set("TOKEN", "v", source_id="nope")
        assert exc.value.source_id == "nope"

    @pytest.mark.asyncio
    async def test_set_read_only_source(self, registry):
        registry.register(StaticSource("static", {}))
        with pytest.raises(ReadOnlySource):
            await registry.set("TOKEN", "v", source_id="static")

    @pytest.mark.asyncio
    async def test_set_without_writable_source(self, registry):
        registry.register(StaticSource("static", {}))
        with pytest.raises(NoWritableSource):
            await registry.set("TOKEN", "v")

    @pytest.mark.asyncio
    async def test_delete_everywhere(self, registry):
        first = MemorySource("first", 1, {"TOKEN": "a"})
        second = MemorySource("second", 2, {"TOKEN": "b"})
        registry.register(first)
        registry.register(second)
        assert await registry.delete("TOKEN") is True
        assert first.values == {} and second.values == {}
        assert await registry.delete("TOKEN") is False

    @pytest.mark.asyncio
    async def test_delete_named_source(self, registry):
        first = MemorySource("first", 1, {"TOKEN": "a"})
        second = MemorySource("second", 2, {"TOKEN": "b"})
        registry.register(first)
        registry.register(second)
        assert await registry.delete("TOKEN", source_id="second") is True
        assert first.values == {"TOKEN": "a"}

    @pytest.mark.asyncio
    async def test_delete_read_only_source(self, registry):
        registry.register(StaticSource("static", {"TOKEN": "a"}))
        with pytest.raises(ReadOnlySource):
            await registry.delete("TOKEN", source_id="static")


class TestLocalVaultSource:
    """The vault-backed source inside a registry."""

    @pytest.mark.asyncio
    async def test_available_after_initialize(self, registry, store):
        source = LocalVaultSource(store)
        registry.register(source)
        assert await registry.available_sources() == []
        await source.initialize()
        assert await registry.available_sources() == [source]
        assert source.writable is True

    @pytest.mark.asyncio
    async def test_round_trip_through_registry(self, registry, ready_store):
        registry.register(LocalVaultSource(ready_store))
        await registry.set("TOKEN", "v", metadata={"description": "d"})
        credential = await registry.get("TOKEN")
        assert credential.value == "v"
        assert credential.source == "local"
        assert credential.metadata.description == "d"
